"""lodestar.retrieval.reranker

Reranker abstractions and implementations.

This module defines:
- an abstract reranker interface operating on fused search results
- a cross-encoder reranker backed by Hugging Face ``transformers``
- a small reranker factory for configuration-driven construction
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, List, Mapping, Optional, Sequence

from lodestar.common.exceptions import ConfigurationError
from lodestar.common.schemas import SearchResult

logger = logging.getLogger(__name__)

DEFAULT_CROSS_ENCODER = "cross-encoder/ms-marco-MiniLM-L-6-v2"


class BaseReranker(ABC):
    """Abstract interface for reordering search results against a query."""

    @abstractmethod
    async def rerank(self, query: str, results: Sequence[SearchResult]) -> List[SearchResult]:
        """Return ``results`` reordered (and rescored) for ``query``.

        Implementations must only return results taken from ``results``.
        """
        raise NotImplementedError


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


class CrossEncoderReranker(BaseReranker):
    """Cross-encoder reranker.

    Each ``(query, content)`` pair is scored by a sequence-classification
    model; the first logit is mapped through a sigmoid into ``[0, 1]``.
    Results without content cannot be scored and are appended after the
    scored ones in their original order.

    Parameters
    ----------
    model_name : str, optional
        Hugging Face model id. Defaults to
        ``"cross-encoder/ms-marco-MiniLM-L-6-v2"``.
    max_length : int, optional
        Tokenizer truncation length. Defaults to ``512``.
    device : str or None, optional
        Torch device. Defaults to the library's default (CPU).
    """

    def __init__(
            self,
            model_name: str = DEFAULT_CROSS_ENCODER,
            *,
            max_length: int = 512,
            device: Optional[str] = None,
        ):
        self.model_name = model_name
        self.max_length = int(max_length)
        self.device = device
        self._tokenizer: Any = None
        self._model: Any = None

    def _load(self) -> None:
        if self._model is not None:
            return
        from transformers import AutoModelForSequenceClassification, AutoTokenizer

        logger.debug("Loading cross-encoder %s", self.model_name)
        self._tokenizer = AutoTokenizer.from_pretrained(self.model_name)
        self._model = AutoModelForSequenceClassification.from_pretrained(self.model_name)
        if self.device:
            self._model.to(self.device)
        self._model.eval()

    def _score_pairs(self, query: str, passages: List[str]) -> List[float]:
        """Return a relevance score in ``[0, 1]`` for each passage. Blocking."""
        import torch

        self._load()
        inputs = self._tokenizer(
            [query] * len(passages),
            passages,
            padding=True,
            truncation=True,
            max_length=self.max_length,
            return_tensors="pt",
        )
        if self.device:
            inputs = {k: v.to(self.device) for k, v in inputs.items()}
        with torch.no_grad():
            logits = self._model(**inputs).logits
        return [_sigmoid(float(row[0])) for row in logits]

    async def rerank(self, query: str, results: Sequence[SearchResult]) -> List[SearchResult]:
        with_content = [r for r in results if r.content]
        without_content = [r for r in results if not r.content]
        if not with_content:
            return list(results)

        loop = asyncio.get_running_loop()
        scores = await loop.run_in_executor(
            None, self._score_pairs, query, [r.content for r in with_content]
        )

        scored = [replace(r, score=s) for r, s in zip(with_content, scores)]
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored + without_content


def create_reranker(config: Optional[Mapping[str, Any]]) -> Optional[BaseReranker]:
    """Create a reranker from configuration.

    Parameters
    ----------
    config : Mapping[str, Any] or None
        Reranker section. ``type`` is ``"none"`` (default) or
        ``"cross_encoder"``; the latter accepts ``model_name``,
        ``max_length`` and ``device``.

    Returns
    -------
    BaseReranker or None
        ``None`` when reranking is disabled.

    Raises
    ------
    ConfigurationError
        If ``type`` is not supported.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type", "none")).lower().strip().replace("-", "_")

    if kind in ("none", ""):
        return None
    if kind in ("cross_encoder", "crossencoder"):
        return CrossEncoderReranker(
            model_name=cfg.get("model_name", DEFAULT_CROSS_ENCODER),
            max_length=int(cfg.get("max_length", 512)),
            device=cfg.get("device"),
        )

    raise ConfigurationError(
        f"Unsupported reranker type {kind!r}. Supported rerankers: ['none', 'cross_encoder']."
    )


__all__ = [
    "BaseReranker",
    "CrossEncoderReranker",
    "DEFAULT_CROSS_ENCODER",
    "create_reranker",
]
