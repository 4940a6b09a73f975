"""lodestar.retrieval.providers

In-memory reference search providers built on LlamaIndex components.

Both providers keep the indexed documents in a dictionary, evaluate metadata
filters with :func:`~lodestar.retrieval.filter.matches_filter` and normalise
scores into ``[0, 1]``. They are intended for tests, notebooks and small
corpora; production deployments plug their own
:class:`~lodestar.retrieval.types.SearchProvider` into the orchestrator.

Classes
-------
BM25SearchProvider
    Keyword provider over LlamaIndex's ``BM25Retriever``.
VectorSearchProvider
    Embedding provider over LlamaIndex's ``SimpleVectorStore``.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from llama_index.core.schema import TextNode
from llama_index.core.vector_stores import SimpleVectorStore
from llama_index.core.vector_stores.types import VectorStoreQuery
from llama_index.retrievers.bm25 import BM25Retriever

from lodestar.common.schemas import Document, SearchOptions, SearchResult
from lodestar.common.tokenisation import TokenCounter
from lodestar.retrieval.embedder import embed_batch
from lodestar.retrieval.filter import matches_filter
from lodestar.retrieval.snippet import extract_snippet
from lodestar.retrieval.types import EmbeddingProvider, SearchProvider

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def _build_result(
        doc: Document,
        score: float,
        options: SearchOptions,
        content: Optional[str] = None,
        meta: Optional[dict] = None,
    ) -> SearchResult:
    return SearchResult(
        id=doc.id,
        score=score,
        content=(content if content is not None else doc.content) if options.return_content else None,
        metadata=dict(doc.metadata) if options.return_metadata else None,
        meta=meta if options.return_meta else None,
    )


class BM25SearchProvider(SearchProvider):
    """In-memory keyword search provider.

    The LlamaIndex ``BM25Retriever`` is rebuilt lazily on the first search
    after any mutation. Scores are divided by the best score of the query so
    the top hit scores ``1.0``; documents with a zero BM25 score are not
    returned. With ``return_content`` the content is replaced by a snippet
    around the best-matching lines.

    Parameters
    ----------
    language : str, optional
        Stemmer/stopword language passed to ``BM25Retriever``. Defaults to ``"en"``.
    snippet_context_lines : int, optional
        Lines of context on each side of the best snippet line. Defaults to ``2``.
    """

    def __init__(self, language: str = "en", snippet_context_lines: int = 2):
        self.language = language
        self.snippet_context_lines = snippet_context_lines
        self._docs: Dict[str, Document] = {}
        self._retriever: Optional[BM25Retriever] = None

    def __len__(self) -> int:
        return len(self._docs)

    async def index(self, docs: Sequence[Document]) -> int:
        for doc in docs:
            self._docs[doc.id] = doc
        self._retriever = None
        return len(docs)

    def _get_retriever(self) -> BM25Retriever:
        if self._retriever is None:
            nodes = [TextNode(id_=doc.id, text=doc.content) for doc in self._docs.values()]
            logger.debug("Building BM25 index over %d document(s)", len(nodes))
            self._retriever = BM25Retriever.from_defaults(
                nodes=nodes,
                similarity_top_k=len(nodes),
                language=self.language,
            )
        return self._retriever

    async def search(
            self,
            query: str,
            options: Optional[SearchOptions] = None,
        ) -> List[SearchResult]:
        options = options or SearchOptions()
        if not self._docs or not query.strip():
            return []

        retriever = self._get_retriever()
        hits = retriever.retrieve(query)
        scored = [(h.node.node_id, float(h.score or 0.0)) for h in hits]
        scored = [(doc_id, s) for doc_id, s in scored if s > 0 and doc_id in self._docs]
        if not scored:
            return []

        best = max(s for _, s in scored)
        limit = options.limit or DEFAULT_LIMIT
        results: List[SearchResult] = []
        for doc_id, raw in scored:
            doc = self._docs[doc_id]
            if not matches_filter(options.filter, doc.metadata):
                continue
            snippet = extract_snippet(doc.content, query, self.snippet_context_lines)
            results.append(_build_result(
                doc,
                raw / best,
                options,
                content=snippet.snippet,
                meta={"highlights": snippet.highlights, "bm25_score": raw},
            ))
            if len(results) >= limit:
                break
        return results

    async def remove(self, ids: Sequence[str]) -> int:
        removed = 0
        for doc_id in ids:
            if self._docs.pop(doc_id, None) is not None:
                removed += 1
        if removed:
            self._retriever = None
        return removed

    async def clear(self) -> None:
        self._docs.clear()
        self._retriever = None

    async def close(self) -> None:
        self._retriever = None


class VectorSearchProvider(SearchProvider):
    """In-memory semantic search provider.

    Documents are embedded with :func:`~lodestar.retrieval.embedder.embed_batch`
    and stored in a LlamaIndex ``SimpleVectorStore``. Cosine similarity ``s``
    is reported as ``(s + 1) / 2``.

    Parameters
    ----------
    embedding : EmbeddingProvider
        Model used for documents and queries.
    token_counter : TokenCounter or None, optional
        Token estimator used to size embedding batches.
    """

    def __init__(self, embedding: EmbeddingProvider, token_counter: Optional[TokenCounter] = None):
        self.embedding = embedding
        self.token_counter = token_counter
        self._docs: Dict[str, Document] = {}
        self._store = SimpleVectorStore()

    def __len__(self) -> int:
        return len(self._docs)

    async def index(self, docs: Sequence[Document]) -> int:
        if not docs:
            return 0
        vectors = await embed_batch(
            self.embedding,
            [doc.content for doc in docs],
            token_counter=self.token_counter,
        )
        stale = [doc.id for doc in docs if doc.id in self._docs]
        if stale:
            self._store.delete_nodes(node_ids=stale)
        self._store.add([
            TextNode(id_=doc.id, text=doc.content, embedding=vector)
            for doc, vector in zip(docs, vectors)
        ])
        for doc in docs:
            self._docs[doc.id] = doc
        return len(docs)

    async def search(
            self,
            query: str,
            options: Optional[SearchOptions] = None,
        ) -> List[SearchResult]:
        options = options or SearchOptions()
        if not self._docs:
            return []

        query_embedding = (await self.embedding.embed([query]))[0]
        found = self._store.query(VectorStoreQuery(
            query_embedding=list(query_embedding),
            similarity_top_k=len(self._docs),
        ))

        limit = options.limit or DEFAULT_LIMIT
        results: List[SearchResult] = []
        for doc_id, similarity in zip(found.ids or [], found.similarities or []):
            doc = self._docs.get(doc_id)
            if doc is None or not matches_filter(options.filter, doc.metadata):
                continue
            score = min(1.0, max(0.0, (float(similarity) + 1.0) / 2.0))
            results.append(_build_result(doc, score, options, meta={"similarity": float(similarity)}))
            if len(results) >= limit:
                break
        return results

    async def remove(self, ids: Sequence[str]) -> int:
        present = [doc_id for doc_id in ids if doc_id in self._docs]
        if present:
            self._store.delete_nodes(node_ids=present)
        for doc_id in present:
            del self._docs[doc_id]
        return len(present)

    async def clear(self) -> None:
        self._docs.clear()
        self._store = SimpleVectorStore()

    async def close(self) -> None:
        await self.clear()


__all__ = ["BM25SearchProvider", "VectorSearchProvider", "DEFAULT_LIMIT"]
