"""lodestar.retrieval.types

Shared type definitions for the retrieval layer.

This module defines the contracts that decouple the orchestrator from concrete
storage backends, embedding models and chunkers.

Classes
-------
SearchProvider
    Abstract search backend with two required and three optional operations.
EmbeddingProvider
    Abstract text-to-vector model with static dimensionality metadata.
ComposedDriver
    A vector and/or keyword provider pair for hybrid search.
Chunker
    Protocol for callables turning document content into chunks.

Attributes
----------
DriverInput : TypeAlias
    A single :class:`SearchProvider` or a :class:`ComposedDriver`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence, TypeAlias, Union

from lodestar.common.schemas import Chunk, Document, SearchOptions, SearchResult

OPTIONAL_CAPABILITIES = ("remove", "clear", "close")


class SearchProvider(ABC):
    """Abstract search backend.

    ``index`` and ``search`` are required. ``remove``, ``clear`` and ``close``
    are optional capabilities: a subclass opts in by overriding them, and
    :meth:`supports` reports which ones it overrides. Scores returned by
    ``search`` must be normalised into ``[0, 1]``.
    """

    @abstractmethod
    async def index(self, docs: Sequence[Document]) -> int:
        """Index documents, replacing any with the same id.

        Parameters
        ----------
        docs : Sequence[Document]
            Documents to index.

        Returns
        -------
        int
            Number of documents indexed.
        """

    @abstractmethod
    async def search(
            self,
            query: str,
            options: Optional[SearchOptions] = None,
        ) -> List[SearchResult]:
        """Search for documents matching ``query``.

        Parameters
        ----------
        query : str
            Query string.
        options : SearchOptions or None, optional
            Limit, payload and filter options.

        Returns
        -------
        list[SearchResult]
            Results ordered by descending relevance.
        """

    async def remove(self, ids: Sequence[str]) -> int:
        """Remove documents by id and return how many were removed."""
        raise NotImplementedError(f"{type(self).__name__} does not support remove")

    async def clear(self) -> None:
        """Remove every indexed document."""
        raise NotImplementedError(f"{type(self).__name__} does not support clear")

    async def close(self) -> None:
        """Release resources held by the provider."""
        raise NotImplementedError(f"{type(self).__name__} does not support close")

    def supports(self, capability: str) -> bool:
        """Return whether this provider implements an optional capability.

        Parameters
        ----------
        capability : str
            One of ``"remove"``, ``"clear"`` or ``"close"``.
        """
        if capability not in OPTIONAL_CAPABILITIES:
            raise ValueError(
                f"Unknown capability {capability!r}. Expected one of {OPTIONAL_CAPABILITIES}."
            )
        implementation = getattr(type(self), capability)
        return implementation is not getattr(SearchProvider, capability)


class EmbeddingProvider(ABC):
    """Abstract embedding model.

    Implementations return one vector per input text, in input order. Instances
    are callable, so they can be handed directly to
    :func:`lodestar.retrieval.embedder.embed_batch`.

    Attributes
    ----------
    dimensions : int
        Dimensionality of the produced vectors.
    max_tokens : int or None
        Context window of the model, when known.
    """

    dimensions: int
    max_tokens: Optional[int] = None

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed ``texts`` and return one vector per text."""

    async def __call__(self, texts: Sequence[str]) -> List[List[float]]:
        return await self.embed(texts)


@dataclass(frozen=True)
class ComposedDriver:
    """A vector and/or keyword provider pair searched together and fused.

    Attributes
    ----------
    vector : SearchProvider or None
        Semantic (embedding-based) provider.
    keyword : SearchProvider or None
        Lexical (e.g., BM25) provider.
    """
    vector: Optional[SearchProvider] = None
    keyword: Optional[SearchProvider] = None

    def members(self) -> List[SearchProvider]:
        """Return the configured providers, vector first."""
        return [d for d in (self.vector, self.keyword) if d is not None]


DriverInput: TypeAlias = Union[SearchProvider, ComposedDriver]


class Chunker(Protocol):
    """Callable turning document content into chunks.

    Implementations may be synchronous or return an awaitable.
    """

    def __call__(
            self,
            content: str,
            *,
            id: Optional[str] = None,
            metadata: Optional[Dict[str, Any]] = None,
        ) -> Union[List[Chunk], Awaitable[List[Chunk]]]:
        ...


__all__ = [
    "SearchProvider",
    "EmbeddingProvider",
    "ComposedDriver",
    "DriverInput",
    "Chunker",
    "OPTIONAL_CAPABILITIES",
]
