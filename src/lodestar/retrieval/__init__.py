"""
Retrieval layer of the Lodestar stack.

This package covers everything needed to turn documents into searchable
chunks and to fetch the most relevant ones for a query across one or more
search backends. It includes text and code chunkers, a metadata filter
language, embedding adapters with length-aware batching, reciprocal-rank
fusion, snippet extraction, optional rerankers and the orchestrator that
ties them together.

Submodules
----------
types
    Search provider, embedding provider and chunker contracts.
filter
    Metadata filter compilation to SQL and in-memory evaluation.
text_splitter
    Recursive, offset-tracking text splitting.
code_chunker
    Declaration-aware chunking of source code.
tree_sitter_facility
    TypeScript and JavaScript declarations via tree-sitter.
auto_chunker
    Routing between the code chunker and the text splitter.
snippet
    Query-aware snippet extraction.
embedder
    Embedding provider adapters and batch embedding.
query_expansion
    Code-identifier expansion of search queries.
fusion
    Reciprocal-rank fusion.
reranker
    Second-stage rerankers.
providers
    In-memory reference search providers.
retriever
    The retrieval orchestrator and its LlamaIndex adapter.
retriever_factory
    Configuration-driven construction of the above.

Re-exports
----------
RetrievalOrchestrator
    Composite search provider.
ComposedDriver
    Vector/keyword provider pair.
SearchProvider
    Search backend interface.
EmbeddingProvider
    Embedding model interface.
"""
from .types import ComposedDriver, EmbeddingProvider, SearchProvider
from .retriever import RetrievalOrchestrator

__all__ = [
    "ComposedDriver",
    "EmbeddingProvider",
    "RetrievalOrchestrator",
    "SearchProvider",
]
