"""lodestar

Lodestar retrieval orchestration package.

This package unifies keyword, vector and hybrid search backends behind one
contract, splits long documents and source files into position-addressable
chunks, fuses ranked result streams with reciprocal-rank fusion and extracts
highlighted snippets.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and cached accessors.
retrieval
    Chunking, filtering, embedding, fusion, reranking and orchestration.
common
    Shared schemas, exceptions and token counters.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
RetrievalOrchestrator
    Composite search provider over one or two backends.
ComposedDriver
    Vector/keyword provider pair for hybrid search.
Document
    Document container schema.
SearchOptions
    Search options schema.
SearchResult
    Search hit schema.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("lodestar-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .common import Document, SearchOptions, SearchResult
from .retrieval import ComposedDriver, RetrievalOrchestrator

__all__ = [
    "__version__",
    "GlobalConfig",
    "RetrievalOrchestrator",
    "ComposedDriver",
    "Document",
    "SearchOptions",
    "SearchResult",
]
