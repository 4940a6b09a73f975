"""
Common building blocks shared across the retrieval stack.

This package provides small, widely-used primitives (document and result
schemas, the exception hierarchy, token counters) intended to be imported by
multiple layers of the system.

Classes
-------
Document
    A document to be indexed.
Chunk
    A chunk produced by a chunker.
SearchOptions
    Options accepted by search providers.
SearchResult
    A single ranked search hit.

See Also
--------
lodestar.common.schemas
    Defines the dataclasses re-exported here.
lodestar.common.exceptions
    Defines the exception hierarchy.

Notes
-----
- ``metadata`` fields are left untyped; read them with ``dict.get`` and
  defaults.
"""
from __future__ import annotations

from .exceptions import (
    ConfigurationError,
    EmbeddingCountMismatchError,
    FilterError,
    LodestarError,
    SyntaxFacilityUnavailableError,
)
from .schemas import (
    Chunk,
    ChunkEntity,
    ChunkImport,
    ChunkInfo,
    ChunkSibling,
    Document,
    SearchOptions,
    SearchResult,
    SplitChunk,
    chunk_document_id,
)

__all__ = [
    "Chunk",
    "ChunkEntity",
    "ChunkImport",
    "ChunkInfo",
    "ChunkSibling",
    "Document",
    "SearchOptions",
    "SearchResult",
    "SplitChunk",
    "chunk_document_id",
    "LodestarError",
    "ConfigurationError",
    "EmbeddingCountMismatchError",
    "SyntaxFacilityUnavailableError",
    "FilterError",
]
