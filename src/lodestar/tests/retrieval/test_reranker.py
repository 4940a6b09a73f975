import asyncio

import pytest

from lodestar.common.exceptions import ConfigurationError
from lodestar.common.schemas import SearchResult
from lodestar.retrieval.reranker import CrossEncoderReranker, create_reranker


class DummyCrossEncoder(CrossEncoderReranker):
    """Scores a passage by the fraction of query words it contains, without loading a model."""

    def __init__(self):
        super().__init__("dummy-model")
        self.seen = []

    def _score_pairs(self, query, passages):
        self.seen.append((query, list(passages)))
        words = query.lower().split()
        return [sum(w in p.lower() for w in words) / len(words) for p in passages]


def test_cross_encoder_reorders_by_score():
    reranker = DummyCrossEncoder()
    results = [
        SearchResult(id="a", score=0.9, content="unrelated text"),
        SearchResult(id="b", score=0.5, content="vector search with fusion"),
        SearchResult(id="c", score=0.4, content="vector index"),
    ]

    reranked = asyncio.run(reranker.rerank("vector fusion", results))

    assert [r.id for r in reranked] == ["b", "c", "a"]
    assert [r.score for r in reranked] == [1.0, 0.5, 0.0]
    assert reranker.seen == [("vector fusion", ["unrelated text", "vector search with fusion", "vector index"])]


def test_results_without_content_are_kept_last():
    reranker = DummyCrossEncoder()
    results = [
        SearchResult(id="bare", score=0.9),
        SearchResult(id="low", score=0.5, content="nothing"),
        SearchResult(id="high", score=0.4, content="query match"),
    ]

    reranked = asyncio.run(reranker.rerank("query match", results))

    assert [r.id for r in reranked] == ["high", "low", "bare"]
    assert reranked[-1].score == 0.9


def test_no_content_at_all_is_returned_unchanged():
    reranker = DummyCrossEncoder()
    results = [SearchResult(id="a", score=0.3), SearchResult(id="b", score=0.2)]

    assert asyncio.run(reranker.rerank("q", results)) == results
    assert reranker.seen == []


def test_create_reranker():
    assert create_reranker(None) is None
    assert create_reranker({"type": "none"}) is None

    reranker = create_reranker({"type": "cross-encoder", "model_name": "my/model", "max_length": 256})
    assert isinstance(reranker, CrossEncoderReranker)
    assert reranker.model_name == "my/model"
    assert reranker.max_length == 256
    assert reranker._model is None

    with pytest.raises(ConfigurationError):
        create_reranker({"type": "cohere"})
