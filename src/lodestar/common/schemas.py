"""lodestar.common.schemas

Core data schemas shared across the retrieval stack.

These lightweight dataclasses describe the canonical shapes for documents,
the transient chunks produced while indexing them, and the results returned by
search providers. They are passed between chunking, embedding, driver and
orchestration components.

Classes
-------
Document
    A caller-supplied document to be indexed.
ChunkEntity
    A declaration (function, class, ...) contained in a code chunk.
ChunkSibling
    A neighbouring top-level declaration of a code chunk.
ChunkImport
    An import binding of the file a code chunk was taken from.
Chunk
    A chunk produced by a chunker, carrying positional and contextual metadata.
SplitChunk
    A chunk produced by the recursive text splitter.
ChunkInfo
    Chunk provenance surfaced on a :class:`SearchResult`.
SearchOptions
    Options accepted by ``SearchProvider.search``.
SearchResult
    A single ranked search hit.

Notes
-----
``metadata`` is intentionally untyped (``dict[str, Any]``) to allow arbitrary
scalar or list-of-scalar values. Keys starting with ``_`` are reserved for
chunk provenance written by the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

CHUNK_ID_SEPARATOR = "#chunk-"

Span = Tuple[int, int]


@dataclass(frozen=True)
class Document:
    """Container for a document to be indexed.

    Attributes
    ----------
    id : str
        Identifier, unique within a search provider. For code-aware chunking the
        id doubles as a path-like hint (e.g., ``"src/app.py"``).
    content : str
        Full text of the document.
    metadata : Dict[str, Any]
        Scalar or list-of-scalar metadata. Defaults to an empty dict.
    """
    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_metadata(self, **updates: Any) -> "Document":
        """Return a copy of this document with ``updates`` merged into its metadata."""
        return replace(self, metadata={**self.metadata, **updates})


@dataclass(frozen=True)
class ChunkEntity:
    """A declaration reduced to its name, type tag and optional signature."""
    name: str
    type: str
    signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "type": self.type}
        if self.signature:
            data["signature"] = self.signature
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkEntity":
        return cls(name=data["name"], type=data["type"], signature=data.get("signature"))


@dataclass(frozen=True)
class ChunkSibling:
    """A top-level declaration neighbouring the first entity of a chunk.

    Attributes
    ----------
    name : str
        Declaration name.
    type : str
        Declaration type tag.
    position : str
        ``"before"`` or ``"after"`` relative to the chunk.
    distance : int
        Number of top-level declarations between the two, starting at ``1``.
    signature : str or None
        Optional declaration signature.
    """
    name: str
    type: str
    position: str
    distance: int
    signature: Optional[str] = None


@dataclass(frozen=True)
class ChunkImport:
    """An import binding declared by the chunked file."""
    name: str
    source: str
    is_default: bool = False
    is_namespace: bool = False


@dataclass(frozen=True)
class Chunk:
    """A chunk produced by a chunker.

    Chunks are ephemeral: they exist only for the duration of a single indexing
    call and are never persisted directly.

    Attributes
    ----------
    text : str
        Chunk text.
    char_range : tuple[int, int] or None
        Half-open ``[start, end)`` character offsets into the source content.
    line_range : tuple[int, int] or None
        Inclusive, 1-indexed ``(first_line, last_line)`` of the chunk.
    context : str or None
        Optional context prepended to ``text`` when indexing (e.g., scope chain).
    entities : list[ChunkEntity]
        Declarations contained in the chunk.
    scope : list[ChunkEntity]
        Ancestor declarations of the first entity, nearest first.
    imports : list[ChunkImport]
        Imports of the whole file.
    siblings : list[ChunkSibling]
        Up to three top-level declarations before and after the chunk.
    """
    text: str
    char_range: Optional[Span] = None
    line_range: Optional[Span] = None
    context: Optional[str] = None
    entities: List[ChunkEntity] = field(default_factory=list)
    scope: List[ChunkEntity] = field(default_factory=list)
    imports: List[ChunkImport] = field(default_factory=list)
    siblings: List[ChunkSibling] = field(default_factory=list)


@dataclass(frozen=True)
class SplitChunk:
    """A chunk emitted by :func:`lodestar.retrieval.text_splitter.split_text`."""
    text: str
    index: int
    range: Span


@dataclass(frozen=True)
class ChunkInfo:
    """Provenance of a search result that was indexed as a chunk.

    Attributes
    ----------
    parent_id : str
        Identifier of the document the chunk was cut from.
    index : int
        0-based chunk index within the parent.
    char_range, line_range : tuple[int, int] or None
        Positional information recorded at indexing time.
    entities, scope : list[ChunkEntity]
        Code-aware context recorded at indexing time.
    """
    parent_id: str
    index: int
    char_range: Optional[Span] = None
    line_range: Optional[Span] = None
    entities: List[ChunkEntity] = field(default_factory=list)
    scope: List[ChunkEntity] = field(default_factory=list)

    @property
    def display_id(self) -> str:
        """Return the ``"{parent_id}#chunk-{index}"`` form of this chunk's id."""
        return chunk_document_id(self.parent_id, self.index)


@dataclass(frozen=True)
class SearchOptions:
    """Options accepted by search providers.

    Attributes
    ----------
    limit : int or None
        Maximum number of results. ``None`` lets the provider decide.
    return_content : bool
        Whether results should carry document content.
    return_metadata : bool
        Whether results should carry document metadata.
    return_meta : bool
        Whether results should carry driver-specific extras.
    filter : dict or None
        Metadata filter, see :mod:`lodestar.retrieval.filter`.
    """
    limit: Optional[int] = None
    return_content: bool = False
    return_metadata: bool = False
    return_meta: bool = False
    filter: Optional[Dict[str, Any]] = None

    def with_limit(self, limit: Optional[int]) -> "SearchOptions":
        return replace(self, limit=limit)

    def with_filter(self, **clauses: Any) -> "SearchOptions":
        """Return a copy whose filter is AND-ed with ``clauses``."""
        return replace(self, filter={**(self.filter or {}), **clauses})


@dataclass(frozen=True)
class SearchResult:
    """A single search hit.

    Attributes
    ----------
    id : str
        Identifier of the matched document or chunk-document.
    score : float
        Relevance in ``[0, 1]``, higher is better. After fusion the value is
        only meaningful for relative ranking within one call.
    content : str or None
        Document content (or a snippet of it) when requested.
    metadata : dict or None
        Public document metadata when requested.
    chunk : ChunkInfo or None
        Chunk provenance when the hit is a chunk of a larger document.
    meta : dict or None
        Driver-specific extras (e.g., ``highlights``).
    """
    id: str
    score: float
    content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    chunk: Optional[ChunkInfo] = None
    meta: Optional[Dict[str, Any]] = None


def chunk_document_id(parent_id: str, index: int) -> str:
    """Return the storage id of chunk ``index`` of document ``parent_id``."""
    return f"{parent_id}{CHUNK_ID_SEPARATOR}{index}"
