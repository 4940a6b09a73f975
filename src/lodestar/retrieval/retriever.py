"""lodestar.retrieval.retriever

Retrieval orchestration over one or more search providers.

The :class:`RetrievalOrchestrator` presents the
:class:`~lodestar.retrieval.types.SearchProvider` contract itself while
composing one or two underlying providers. On the way in it tags documents
with a category and splits long documents into chunk-documents; on the way
out it expands code identifiers in the query, fuses the ranked lists of every
provider (and every category) with reciprocal-rank fusion, optionally
reranks, and surfaces chunk provenance on each result.

Classes
-------
RetrievalOrchestrator
    Composite search provider with chunking, category-fair fusion and reranking.
LlamaIndexRetriever
    LlamaIndex ``BaseRetriever`` adapter over an orchestrator.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from llama_index.core.callbacks import CallbackManager
from llama_index.core.retrievers import BaseRetriever
from llama_index.core.schema import NodeWithScore, QueryBundle, TextNode

from lodestar.common.exceptions import ConfigurationError
from lodestar.common.schemas import (
    ChunkEntity,
    ChunkInfo,
    Document,
    SearchOptions,
    SearchResult,
    chunk_document_id,
)
from lodestar.retrieval.fusion import DEFAULT_RRF_K, apply_rrf
from lodestar.retrieval.query_expansion import tokenize_code_query
from lodestar.retrieval.reranker import BaseReranker
from lodestar.retrieval.types import Chunker, ComposedDriver, DriverInput, SearchProvider

logger = logging.getLogger(__name__)

Categorizer = Callable[[Document], str]

CHUNK_METADATA_KEYS = (
    "_parent_id",
    "_chunk_index",
    "_chunk_range",
    "_chunk_line_range",
    "_chunk_entities",
    "_chunk_scope",
)


def resolve_drivers(driver: DriverInput) -> List[SearchProvider]:
    """Return the providers behind a driver input.

    Raises
    ------
    ConfigurationError
        If a :class:`ComposedDriver` has neither a vector nor a keyword member.
    """
    if isinstance(driver, ComposedDriver):
        members = driver.members()
        if not members:
            raise ConfigurationError("At least one driver (vector or keyword) is required.")
        return members
    if not isinstance(driver, SearchProvider):
        raise ConfigurationError(f"Expected a SearchProvider or ComposedDriver, got {type(driver).__name__}.")
    return [driver]


def _as_span(value: Any) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    start, end = value
    return int(start), int(end)


def _as_entities(value: Any) -> List[ChunkEntity]:
    return [e if isinstance(e, ChunkEntity) else ChunkEntity.from_dict(e) for e in value or []]


class RetrievalOrchestrator(SearchProvider):
    """Composite search provider over one or two underlying providers.

    Parameters
    ----------
    driver : SearchProvider or ComposedDriver
        A single provider, or a vector/keyword pair searched in parallel and
        fused.
    chunker : Chunker or None, optional
        Splits documents into chunks before indexing. Documents producing at
        most one chunk are indexed unchanged.
    reranker : BaseReranker or None, optional
        Reorders fused results against the original query.
    categorize : Callable[[Document], str] or None, optional
        Assigns a category to every indexed document. Once more than one
        category has been seen, each category is searched separately and the
        per-category lists are fused, so no category crowds out the others.
    rrf_k : int, optional
        RRF damping constant. Defaults to ``60``.
    over_fetch_factor : int, optional
        Multiplier applied to ``limit`` when a reranker is configured.
        Defaults to ``3``.

    Raises
    ------
    ConfigurationError
        If ``driver`` resolves to no provider.
    """

    def __init__(
            self,
            driver: DriverInput,
            *,
            chunker: Optional[Chunker] = None,
            reranker: Optional[BaseReranker] = None,
            categorize: Optional[Categorizer] = None,
            rrf_k: int = DEFAULT_RRF_K,
            over_fetch_factor: int = 3,
        ):
        if over_fetch_factor < 1:
            raise ConfigurationError(f"'over_fetch_factor' must be at least 1, got {over_fetch_factor}.")
        self._drivers = resolve_drivers(driver)
        self.chunker = chunker
        self.reranker = reranker
        self.categorize = categorize
        self.rrf_k = int(rrf_k)
        self.over_fetch_factor = int(over_fetch_factor)

        self._parents: Dict[str, Tuple[Document, int]] = {}
        self._categories: Dict[str, None] = {}

    @property
    def drivers(self) -> Tuple[SearchProvider, ...]:
        return tuple(self._drivers)

    @property
    def is_hybrid(self) -> bool:
        return len(self._drivers) > 1

    @property
    def categories(self) -> Tuple[str, ...]:
        """Distinct categories seen while indexing, in first-seen order."""
        return tuple(self._categories)

    @property
    def parent_documents(self) -> Mapping[str, Document]:
        """Read-only view of the documents that were split into chunks, by id."""
        return MappingProxyType({doc_id: doc for doc_id, (doc, _) in self._parents.items()})

    # ----------------- Indexing -----------------

    def _tag_categories(self, docs: Sequence[Document]) -> List[Document]:
        if self.categorize is None:
            return list(docs)
        tagged: List[Document] = []
        for doc in docs:
            category = self.categorize(doc)
            self._categories.setdefault(category, None)
            tagged.append(doc.with_metadata(category=category))
        return tagged

    async def _chunk(self, doc: Document) -> list:
        chunks = self.chunker(doc.content, id=doc.id, metadata=doc.metadata)
        if inspect.isawaitable(chunks):
            chunks = await chunks
        return list(chunks)

    async def _prepare(self, docs: Sequence[Document]) -> Tuple[List[Document], List[str]]:
        """Return the documents to index and the stale chunk ids to remove."""
        tagged = self._tag_categories(docs)
        if self.chunker is None:
            return tagged, []

        # last occurrence of a repeated id wins
        latest = {doc.id: doc for doc in tagged}

        prepared: List[Document] = []
        stale: List[str] = []
        for doc in latest.values():
            chunks = await self._chunk(doc)
            previous = self._parents.pop(doc.id, None)
            previous_count = previous[1] if previous else 0

            if len(chunks) <= 1:
                prepared.append(doc)
                stale.extend(chunk_document_id(doc.id, i) for i in range(previous_count))
                continue

            self._parents[doc.id] = (doc, len(chunks))
            if previous is None:
                # may have been indexed whole before
                stale.append(doc.id)
            stale.extend(chunk_document_id(doc.id, i) for i in range(len(chunks), previous_count))
            for i, chunk in enumerate(chunks):
                content = f"{chunk.context}\n{chunk.text}" if chunk.context else chunk.text
                metadata = dict(doc.metadata)
                metadata["_parent_id"] = doc.id
                metadata["_chunk_index"] = i
                metadata["_chunk_range"] = list(chunk.char_range) if chunk.char_range else None
                metadata["_chunk_line_range"] = list(chunk.line_range) if chunk.line_range else None
                if chunk.entities:
                    metadata["_chunk_entities"] = [e.to_dict() for e in chunk.entities]
                if chunk.scope:
                    metadata["_chunk_scope"] = [s.to_dict() for s in chunk.scope]
                prepared.append(Document(id=chunk_document_id(doc.id, i), content=content, metadata=metadata))

            logger.debug("Split %s into %d chunk(s)", doc.id, len(chunks))

        return prepared, stale

    async def index(self, docs: Sequence[Document]) -> int:
        """Index documents into every driver.

        Returns
        -------
        int
            The count reported by the first driver.
        """
        prepared, stale = await self._prepare(docs)
        if stale:
            await self._remove_from_drivers(stale)

        logger.debug("Indexing %d document(s) into %d driver(s)", len(prepared), len(self._drivers))
        counts = await asyncio.gather(*(d.index(prepared) for d in self._drivers))
        return counts[0]

    # ----------------- Search -----------------

    def _fetch_options(self, options: SearchOptions) -> SearchOptions:
        fetch = options
        if self.reranker is not None and options.limit:
            fetch = fetch.with_limit(options.limit * self.over_fetch_factor)
        if self.chunker is not None and not fetch.return_metadata:
            fetch = replace(fetch, return_metadata=True)
        return fetch

    async def _search_drivers(self, query: str, options: SearchOptions) -> List[SearchResult]:
        if not self.is_hybrid:
            return await self._drivers[0].search(query, options)
        result_sets = await asyncio.gather(*(d.search(query, options) for d in self._drivers))
        return apply_rrf(result_sets, k=self.rrf_k)

    async def search(
            self,
            query: str,
            options: Optional[SearchOptions] = None,
        ) -> List[SearchResult]:
        options = options or SearchOptions()
        expanded = tokenize_code_query(query)
        fetch = self._fetch_options(options)

        if len(self._categories) > 1:
            logger.debug("Category-fair search over %s (limit=%s)", list(self._categories), fetch.limit)
            per_category = await asyncio.gather(*(
                self._search_drivers(expanded, fetch.with_filter(category={"$eq": category}))
                for category in self._categories
            ))
            results = apply_rrf(per_category, k=self.rrf_k)
        else:
            logger.debug("Searching %d driver(s) (limit=%s)", len(self._drivers), fetch.limit)
            results = await self._search_drivers(expanded, fetch)

        if self.reranker is not None:
            results = await self._rerank(query, results)

        if options.limit:
            results = results[:options.limit]

        return self._annotate(results, keep_metadata=options.return_metadata)

    async def _rerank(self, query: str, results: List[SearchResult]) -> List[SearchResult]:
        known = {r.id for r in results}
        reranked = await self.reranker.rerank(query, results)
        kept = [r for r in reranked if r.id in known]
        if len(kept) != len(reranked):
            logger.warning("Reranker returned %d unknown result id(s); dropping them", len(reranked) - len(kept))
        return kept

    def _annotate(self, results: List[SearchResult], keep_metadata: bool) -> List[SearchResult]:
        """Move chunk provenance from metadata into ``SearchResult.chunk``."""
        if self.chunker is None:
            return results

        annotated: List[SearchResult] = []
        for result in results:
            metadata = dict(result.metadata or {})
            chunk = None
            if metadata.get("_parent_id") is not None and metadata.get("_chunk_index") is not None:
                chunk = ChunkInfo(
                    parent_id=metadata["_parent_id"],
                    index=int(metadata["_chunk_index"]),
                    char_range=_as_span(metadata.get("_chunk_range")),
                    line_range=_as_span(metadata.get("_chunk_line_range")),
                    entities=_as_entities(metadata.get("_chunk_entities")),
                    scope=_as_entities(metadata.get("_chunk_scope")),
                )
                for key in CHUNK_METADATA_KEYS:
                    metadata.pop(key, None)

            public = (metadata or None) if keep_metadata else None
            annotated.append(replace(result, metadata=public, chunk=chunk or result.chunk))
        return annotated

    # ----------------- Optional capabilities -----------------

    def _capable(self, capability: str) -> List[SearchProvider]:
        return [d for d in self._drivers if d.supports(capability)]

    async def _remove_from_drivers(self, ids: Sequence[str]) -> int:
        drivers = self._capable("remove")
        if not drivers:
            return 0
        counts = await asyncio.gather(*(d.remove(ids) for d in drivers))
        return counts[0]

    async def remove(self, ids: Sequence[str]) -> int:
        """Remove ids from every driver that supports removal.

        Returns
        -------
        int
            The count reported by the first participating driver, ``0`` if none.
        """
        return await self._remove_from_drivers(ids)

    async def clear(self) -> None:
        await asyncio.gather(*(d.clear() for d in self._capable("clear")))
        self._parents.clear()

    async def close(self) -> None:
        await asyncio.gather(*(d.close() for d in self._capable("close")))


class LlamaIndexRetriever(BaseRetriever):
    """LlamaIndex retriever backed by a :class:`RetrievalOrchestrator`.

    Parameters
    ----------
    orchestrator : RetrievalOrchestrator
        Orchestrator to query.
    options : SearchOptions or None, optional
        Options used for every query. Content and metadata are always
        requested.
    callback_manager : CallbackManager or None, optional
        LlamaIndex callback manager.
    """

    def __init__(
            self,
            orchestrator: RetrievalOrchestrator,
            options: Optional[SearchOptions] = None,
            callback_manager: Optional[CallbackManager] = None,
        ):
        self.orchestrator = orchestrator
        self.options = replace(options or SearchOptions(limit=5), return_content=True, return_metadata=True)
        super().__init__(callback_manager=callback_manager)

    @staticmethod
    def _to_node(result: SearchResult) -> NodeWithScore:
        metadata: Dict[str, Any] = dict(result.metadata or {})
        if result.chunk is not None:
            metadata["parent_id"] = result.chunk.parent_id
            metadata["chunk_index"] = result.chunk.index
        node = TextNode(id_=result.id, text=result.content or "", metadata=metadata)
        return NodeWithScore(node=node, score=result.score)

    async def _aretrieve(self, query_bundle: QueryBundle) -> List[NodeWithScore]:
        results = await self.orchestrator.search(query_bundle.query_str, self.options)
        return [self._to_node(r) for r in results]

    def _retrieve(self, query_bundle: QueryBundle) -> List[NodeWithScore]:
        """Synchronous retrieval; must not be called from a running event loop."""
        return asyncio.run(self._aretrieve(query_bundle))


__all__ = [
    "CHUNK_METADATA_KEYS",
    "Categorizer",
    "RetrievalOrchestrator",
    "LlamaIndexRetriever",
    "resolve_drivers",
]
