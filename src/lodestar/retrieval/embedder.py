"""lodestar.retrieval.embedder

Embedding providers and length-aware batch embedding.

This module adapts third-party embedding models to the
:class:`~lodestar.retrieval.types.EmbeddingProvider` contract, adds a
content-addressed caching wrapper, and implements :func:`embed_batch`, which
groups texts of similar length so each model call costs roughly the same.

Classes
-------
LlamaIndexEmbeddingProvider
    Provider backed by a LlamaIndex ``BaseEmbedding``.
LangChainEmbeddingProvider
    Provider backed by a LangChain ``Embeddings`` object.
EmbeddingCache
    Protocol for content-addressed embedding storage.
InMemoryEmbeddingCache
    Dictionary-backed :class:`EmbeddingCache`.
CachedEmbeddingProvider
    Provider wrapper serving previously seen texts from a cache.

Functions
---------
embed_batch
    Embed texts in adaptive, length-sorted batches with progress reporting.
create_embedding_provider
    Create an embedding provider from a configuration mapping.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from langchain_core.embeddings import Embeddings as LangChainEmbeddings
from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding

from lodestar.common.exceptions import ConfigurationError, EmbeddingCountMismatchError
from lodestar.common.tokenisation import HeuristicTokenCounter, TokenCounter
from lodestar.retrieval.types import EmbeddingProvider

logger = logging.getLogger(__name__)

MAX_BATCH_ITEMS = 64
TARGET_BATCH_TOKENS = MAX_BATCH_ITEMS * 128

EmbedFn = Callable[[List[str]], Awaitable[List[List[float]]]]
ProgressFn = Callable[[int, int], None]


async def embed_batch(
        embed: EmbedFn,
        texts: Sequence[str],
        on_progress: Optional[ProgressFn] = None,
        token_counter: Optional[TokenCounter] = None,
    ) -> List[List[float]]:
    """Embed texts in length-sorted, adaptively sized batches.

    Texts are sorted by length so that each batch holds texts of similar
    size. The batch size is chosen from the estimated token count of the
    longest text in the upcoming window so that every call targets roughly
    ``64 * 128`` tokens.

    Parameters
    ----------
    embed : Callable[[list[str]], Awaitable[list[list[float]]]]
        Async embedding function, e.g. an
        :class:`~lodestar.retrieval.types.EmbeddingProvider`.
    texts : Sequence[str]
        Texts to embed.
    on_progress : Callable[[int, int], None] or None, optional
        Called with ``(processed, total)``: once before the first batch and
        after every batch.
    token_counter : TokenCounter or None, optional
        Token estimator. Defaults to :class:`HeuristicTokenCounter`
        (``ceil(len / 4)``).

    Returns
    -------
    list[list[float]]
        One vector per input text, in input order.

    Raises
    ------
    EmbeddingCountMismatchError
        If ``embed`` returns a different number of vectors than it was given.
    """
    total = len(texts)
    if on_progress is not None:
        on_progress(0, total)
    if total == 0:
        return []

    counter = token_counter or HeuristicTokenCounter()
    order = sorted(range(total), key=lambda i: len(texts[i]))
    results: List[Optional[List[float]]] = [None] * total
    processed = 0

    while processed < total:
        longest = order[min(processed + MAX_BATCH_ITEMS - 1, total - 1)]
        est_tokens = max(1, counter.count(texts[longest]))
        batch_size = min(MAX_BATCH_ITEMS, total - processed, max(1, TARGET_BATCH_TOKENS // est_tokens))

        batch_indices = order[processed:processed + batch_size]
        vectors = await embed([texts[i] for i in batch_indices])
        if len(vectors) != len(batch_indices):
            raise EmbeddingCountMismatchError(expected=len(batch_indices), received=len(vectors))

        for i, vector in zip(batch_indices, vectors):
            results[i] = list(vector)

        processed += batch_size
        logger.debug("Embedded batch of %d (est. %d tokens/text), %d/%d done", batch_size, est_tokens, processed, total)
        if on_progress is not None:
            on_progress(processed, total)

    return results  # type: ignore[return-value]


class LlamaIndexEmbeddingProvider(EmbeddingProvider):
    """Embedding provider wrapping a LlamaIndex ``BaseEmbedding``.

    Parameters
    ----------
    embedder : LlamaIndexBaseEmbedding
        LlamaIndex embedding model.
    dimensions : int
        Dimensionality of the model's vectors.
    max_tokens : int or None, optional
        Context window of the model, when known.
    """

    def __init__(
            self,
            embedder: LlamaIndexBaseEmbedding,
            dimensions: int,
            max_tokens: Optional[int] = None,
        ):
        self.embedder = embedder
        self.dimensions = int(dimensions)
        self.max_tokens = max_tokens

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        return await self.embedder.aget_text_embedding_batch(list(texts))


class LangChainEmbeddingProvider(EmbeddingProvider):
    """Embedding provider wrapping a LangChain ``Embeddings`` object.

    LangChain's default ``aembed_documents`` runs the synchronous
    ``embed_documents`` in an executor, so blocking models stay off the loop.
    """

    def __init__(
            self,
            embeddings: LangChainEmbeddings,
            dimensions: int,
            max_tokens: Optional[int] = None,
        ):
        self.embeddings = embeddings
        self.dimensions = int(dimensions)
        self.max_tokens = max_tokens

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        return await self.embeddings.aembed_documents(list(texts))


def content_hash(text: str) -> str:
    """Return the hex SHA-256 digest of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingCache(Protocol):
    """Content-addressed storage for embeddings."""

    def get(self, key: str) -> Optional[List[float]]:
        """Return the cached vector for ``key``, or ``None`` on a miss."""

    def set(self, key: str, embedding: List[float]) -> None:
        """Store ``embedding`` under ``key``."""


class InMemoryEmbeddingCache:
    """Dictionary-backed embedding cache."""

    def __init__(self) -> None:
        self.store: Dict[str, List[float]] = {}

    def get(self, key: str) -> Optional[List[float]]:
        return self.store.get(key)

    def set(self, key: str, embedding: List[float]) -> None:
        self.store[key] = embedding

    def __len__(self) -> int:
        return len(self.store)


class CachedEmbeddingProvider(EmbeddingProvider):
    """Wrap a provider so previously embedded texts are served from a cache.

    Only cache misses are sent to the wrapped provider, in a single call.

    Parameters
    ----------
    provider : EmbeddingProvider
        Provider computing embeddings for cache misses.
    cache : EmbeddingCache or None, optional
        Storage keyed by the SHA-256 of each text. Defaults to a fresh
        :class:`InMemoryEmbeddingCache`.
    """

    def __init__(self, provider: EmbeddingProvider, cache: Optional[EmbeddingCache] = None):
        self.provider = provider
        self.cache = cache if cache is not None else InMemoryEmbeddingCache()
        self.dimensions = provider.dimensions
        self.max_tokens = provider.max_tokens

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        results: List[Optional[List[float]]] = [None] * len(texts)
        misses: List[int] = []

        for i, text in enumerate(texts):
            cached = self.cache.get(content_hash(text))
            if cached is not None:
                results[i] = cached
            else:
                misses.append(i)

        if misses:
            computed = await self.provider.embed([texts[i] for i in misses])
            if len(computed) != len(misses):
                raise EmbeddingCountMismatchError(expected=len(misses), received=len(computed))
            for i, vector in zip(misses, computed):
                results[i] = vector
                self.cache.set(content_hash(texts[i]), vector)

        logger.debug("Embedding cache: %d hit(s), %d miss(es)", len(texts) - len(misses), len(misses))
        return results  # type: ignore[return-value]


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider`` value of ``cfg``."""
    for key in ("kind", "type", "provider"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind to a registry key (``"OpenAILike"`` -> ``"openai_like"``)."""
    out: List[str] = []
    prev = ""
    for ch in kind.strip():
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k:
        k = k.replace("__", "_")
    k = k.lower()

    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k = k.replace(alias, "openai_like")
    return k


def _require(cfg: Mapping[str, Any], key: str, kind: str) -> Any:
    if key not in cfg:
        raise ConfigurationError(f"Embedder kind {kind!r} requires the {key!r} key.")
    return cfg[key]


def _build_mock(cfg: Mapping[str, Any]) -> LlamaIndexBaseEmbedding:
    from llama_index.core.embeddings import MockEmbedding

    return MockEmbedding(embed_dim=int(cfg.get("dimensions", 8)))


def _build_huggingface(cfg: Mapping[str, Any]) -> LlamaIndexBaseEmbedding:
    from llama_index.embeddings.huggingface import HuggingFaceEmbedding

    return HuggingFaceEmbedding(
        model_name=_require(cfg, "model_name", "huggingface"),
        device=cfg.get("device"),
        trust_remote_code=bool(cfg.get("trust_remote_code", False)),
        model_kwargs=dict(cfg.get("model_kwargs") or {}),
    )


def _build_openai_like(cfg: Mapping[str, Any]) -> LlamaIndexBaseEmbedding:
    from llama_index.embeddings.openai_like import OpenAILikeEmbedding

    return OpenAILikeEmbedding(
        model_name=_require(cfg, "model_name", "openai_like"),
        api_base=_require(cfg, "api_base", "openai_like"),
        api_key=cfg.get("api_key"),
        additional_kwargs=dict(cfg.get("model_kwargs") or {}),
        timeout=float(cfg.get("timeout", 60.0)),
        max_retries=int(cfg.get("max_retries", 10)),
        embed_batch_size=int(cfg.get("embed_batch_size", 10)),
    )


_REGISTRY = {
    "mock": _build_mock,
    "huggingface": _build_huggingface,
    "hf": _build_huggingface,
    "openai_like": _build_openai_like,
    "openai": _build_openai_like,
}


def create_embedding_provider(config: Mapping[str, Any]) -> EmbeddingProvider:
    """Create an embedding provider from a configuration mapping.

    The implementation is selected by a ``kind`` (or ``type``/``provider``)
    discriminator: ``mock`` (LlamaIndex ``MockEmbedding``), ``huggingface`` or
    ``openai_like``. The LlamaIndex integration packages for the latter two
    are imported on demand.

    Parameters
    ----------
    config : Mapping[str, Any]
        Embedder section of the configuration. ``dimensions`` is required for
        every kind except ``mock`` (defaults to ``8``). ``max_tokens`` and
        ``cache`` (bool) are optional.

    Returns
    -------
    EmbeddingProvider
        The configured provider, wrapped in a :class:`CachedEmbeddingProvider`
        when ``cache`` is true.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ConfigurationError
        If the kind is unknown or required keys are missing.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedding_provider expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config) or "mock"
    kind = _normalize_embedder_kind(kind_raw)
    builder = _REGISTRY.get(kind)
    if builder is None:
        raise ConfigurationError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(_REGISTRY)}."
        )

    dimensions = config.get("dimensions", 8) if kind == "mock" else _require(config, "dimensions", kind)
    provider: EmbeddingProvider = LlamaIndexEmbeddingProvider(
        builder(config),
        dimensions=int(dimensions),
        max_tokens=config.get("max_tokens"),
    )
    logger.debug("Created %s embedding provider (dimensions=%s)", kind, dimensions)

    if config.get("cache"):
        provider = CachedEmbeddingProvider(provider)
    return provider


__all__ = [
    "MAX_BATCH_ITEMS",
    "TARGET_BATCH_TOKENS",
    "embed_batch",
    "content_hash",
    "EmbeddingCache",
    "InMemoryEmbeddingCache",
    "CachedEmbeddingProvider",
    "LlamaIndexEmbeddingProvider",
    "LangChainEmbeddingProvider",
    "create_embedding_provider",
]
