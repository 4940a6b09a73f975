"""lodestar.retrieval.retriever_factory

Configuration-driven construction of retrieval components.

Chunker builders are kept in a small plugin-style registry keyed by the
``chunking.type`` configuration value; the remaining factories assemble the
reference drivers and the orchestrator from a
:class:`~lodestar.config.GlobalConfig`.

Functions
---------
register
    Decorator used to register a chunker builder under a name.
create_chunker
    Construct the configured chunker (or ``None``).
create_driver
    Construct a keyword, vector or hybrid reference driver.
create_orchestrator
    Construct a :class:`~lodestar.retrieval.retriever.RetrievalOrchestrator`.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from lodestar.common.exceptions import ConfigurationError
from lodestar.common.tokenisation import create_token_counter
from lodestar.config import GlobalConfig
from lodestar.retrieval.auto_chunker import AutoChunker
from lodestar.retrieval.code_chunker import CodeChunker
from lodestar.retrieval.embedder import create_embedding_provider
from lodestar.retrieval.providers import BM25SearchProvider, VectorSearchProvider
from lodestar.retrieval.reranker import create_reranker
from lodestar.retrieval.retriever import Categorizer, RetrievalOrchestrator
from lodestar.retrieval.text_splitter import TextSplitter
from lodestar.retrieval.types import Chunker, ComposedDriver, DriverInput

logger = logging.getLogger(__name__)

_BUILDERS: Dict[str, Callable[[dict], Optional[Chunker]]] = {}

DRIVER_KINDS = ("keyword", "vector", "hybrid")


def register(name: str):
    """Register a chunker builder under a name.

    The builder receives the normalised ``chunking`` section (see
    :attr:`GlobalConfig.chunking`) and returns a chunker or ``None``.

    Parameters
    ----------
    name : str
        Name under which the builder should be registered.

    Returns
    -------
    Callable
        Decorator that registers the wrapped builder function.
    """
    def _wrap(fn: Callable[[dict], Optional[Chunker]]):
        _BUILDERS[name] = fn
        return fn
    return _wrap


def _code_options(section: dict) -> dict:
    code = section.get("code", {})
    options = {}
    for key in ("max_chunk_size", "max_tokens", "overlap_lines"):
        if code.get(key) is not None:
            options[key] = int(code[key])
    return options


@register("none")
def _build_none(section: dict) -> Optional[Chunker]:
    return None


@register("text")
def _build_text(section: dict) -> Chunker:
    return TextSplitter(chunk_size=section["chunk_size"], chunk_overlap=section["chunk_overlap"])


@register("code")
def _build_code(section: dict) -> Chunker:
    return CodeChunker(**_code_options(section))


@register("auto")
def _build_auto(section: dict) -> Chunker:
    return AutoChunker(
        chunk_size=section["chunk_size"],
        chunk_overlap=section["chunk_overlap"],
        code_options=_code_options(section),
    )


def create_chunker(config: GlobalConfig) -> Optional[Chunker]:
    """Create the chunker selected by ``chunking.type``.

    Parameters
    ----------
    config : GlobalConfig
        Loaded configuration.

    Returns
    -------
    Chunker or None
        ``None`` when ``chunking.type`` is ``"none"``.

    Raises
    ------
    ConfigurationError
        If the chunking type has no registered builder.
    """
    section = config.chunking
    kind = section["type"]
    if kind not in _BUILDERS:
        raise ConfigurationError(f"Unknown chunking type: {kind}. Available: {list(_BUILDERS)}")
    return _BUILDERS[kind](section)


def create_driver(config: GlobalConfig, kind: str = "hybrid") -> DriverInput:
    """Create an in-memory reference driver.

    Parameters
    ----------
    config : GlobalConfig
        Loaded configuration; the ``embedder`` section (including an optional
        ``token_counter`` such as ``"tiktoken:cl100k_base"``) is read for the
        ``vector`` and ``hybrid`` kinds.
    kind : str, optional
        ``"keyword"`` (BM25 only), ``"vector"`` or ``"hybrid"`` (both,
        fused). Defaults to ``"hybrid"``.

    Raises
    ------
    ConfigurationError
        If ``kind`` is unknown.
    """
    if kind not in DRIVER_KINDS:
        raise ConfigurationError(f"Unknown driver kind: {kind}. Available: {list(DRIVER_KINDS)}")

    keyword = BM25SearchProvider() if kind in ("keyword", "hybrid") else None
    vector = None
    if kind in ("vector", "hybrid"):
        embedder_cfg = config.embedder
        vector = VectorSearchProvider(
            create_embedding_provider(embedder_cfg),
            token_counter=create_token_counter(embedder_cfg.get("token_counter")),
        )

    if kind == "keyword":
        return keyword
    if kind == "vector":
        return vector
    return ComposedDriver(vector=vector, keyword=keyword)


def create_orchestrator(
        config: GlobalConfig,
        driver: DriverInput,
        categorize: Optional[Categorizer] = None,
    ) -> RetrievalOrchestrator:
    """Create an orchestrator over ``driver`` from configuration.

    Parameters
    ----------
    config : GlobalConfig
        Loaded configuration (``chunking``, ``retriever`` and ``reranker``
        sections are read).
    driver : SearchProvider or ComposedDriver
        Provider(s) to orchestrate.
    categorize : Callable[[Document], str] or None, optional
        Category assignment for category-fair search.

    Returns
    -------
    RetrievalOrchestrator
        Configured orchestrator.
    """
    retriever_cfg = config.retriever
    orchestrator = RetrievalOrchestrator(
        driver,
        chunker=create_chunker(config),
        reranker=create_reranker(config.reranker),
        categorize=categorize,
        rrf_k=retriever_cfg["rrf_k"],
        over_fetch_factor=retriever_cfg["over_fetch_factor"],
    )
    logger.debug(
        "Created orchestrator (drivers=%d, chunking=%s, reranker=%s)",
        len(orchestrator.drivers),
        config.chunking["type"],
        type(orchestrator.reranker).__name__ if orchestrator.reranker else None,
    )
    return orchestrator


__all__ = [
    "DRIVER_KINDS",
    "register",
    "create_chunker",
    "create_driver",
    "create_orchestrator",
]
