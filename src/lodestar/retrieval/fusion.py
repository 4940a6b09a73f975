"""lodestar.retrieval.fusion

Reciprocal-rank fusion (RRF) of ranked result lists.

Each input list contributes ``weight / (k + rank + 1)`` to the score of every
result it contains (``rank`` is 0-based). Results are merged by id; the first
non-empty ``content`` and ``metadata`` seen for an id are kept.

Classes
-------
WeightedResultSet
    A ranked result list with a fusion weight.

Functions
---------
apply_rrf
    Fuse ranked result lists into one list ordered by RRF score.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Sequence, Union

from lodestar.common.schemas import SearchResult

DEFAULT_RRF_K = 60


@dataclass(frozen=True)
class WeightedResultSet:
    """A ranked result list and the weight of its RRF contribution."""
    results: Sequence[SearchResult]
    weight: float = 1.0


ResultSetInput = Union[Sequence[SearchResult], WeightedResultSet]


def _as_weighted(result_set: ResultSetInput) -> WeightedResultSet:
    if isinstance(result_set, WeightedResultSet):
        return result_set
    return WeightedResultSet(results=result_set)


def _first_non_empty(current, candidate):
    return current if current else (candidate if candidate else current)


def apply_rrf(result_sets: Sequence[ResultSetInput], k: int = DEFAULT_RRF_K) -> List[SearchResult]:
    """Fuse ranked result lists with reciprocal-rank fusion.

    Parameters
    ----------
    result_sets : Sequence[Sequence[SearchResult] | WeightedResultSet]
        Ranked lists, best first. Plain lists have weight ``1.0``.
    k : int, optional
        RRF damping constant. Defaults to ``60``.

    Returns
    -------
    list[SearchResult]
        One result per distinct id, ordered by descending fused score. Ties
        keep the order in which ids were first seen.

    Raises
    ------
    ValueError
        If ``k`` is negative.
    """
    if k < 0:
        raise ValueError(f"'rrf_k' must be non-negative, got {k}.")

    scores: Dict[str, float] = {}
    merged: Dict[str, SearchResult] = {}

    for result_set in map(_as_weighted, result_sets):
        for rank, result in enumerate(result_set.results):
            contribution = result_set.weight / (k + rank + 1)
            scores[result.id] = scores.get(result.id, 0.0) + contribution

            existing = merged.get(result.id)
            if existing is None:
                merged[result.id] = result
                continue
            merged[result.id] = replace(
                existing,
                content=_first_non_empty(existing.content, result.content),
                metadata=_first_non_empty(existing.metadata, result.metadata),
                chunk=existing.chunk or result.chunk,
                meta=existing.meta or result.meta,
            )

    fused = [replace(result, score=scores[doc_id]) for doc_id, result in merged.items()]
    fused.sort(key=lambda r: r.score, reverse=True)
    return fused


__all__ = ["DEFAULT_RRF_K", "WeightedResultSet", "apply_rrf"]
