import asyncio

import pytest

from lodestar.common.schemas import Document, SearchOptions
from lodestar.retrieval.providers import BM25SearchProvider, VectorSearchProvider
from lodestar.retrieval.types import EmbeddingProvider


DOCS = [
    Document(id="apple", content="Apples grow on trees in the orchard.", metadata={"colour": "red"}),
    Document(id="banana", content="Bananas are yellow and grow in bunches.", metadata={"colour": "yellow"}),
    Document(id="grape", content="Grapes are pressed to make wine.", metadata={"colour": "purple"}),
]


class KeywordEmbedding(EmbeddingProvider):
    """Embeds text as keyword counts plus a constant component."""

    dimensions = 4
    KEYWORDS = ("apple", "banana", "grape")

    async def embed(self, texts):
        return [[float(t.lower().count(k)) for k in self.KEYWORDS] + [0.1] for t in texts]


def _index(provider):
    asyncio.run(provider.index(DOCS))
    return provider


def test_bm25_ranks_matching_documents_and_normalises_scores():
    provider = _index(BM25SearchProvider())

    results = asyncio.run(provider.search("bananas bunches"))

    assert [r.id for r in results] == ["banana"]
    assert results[0].score == pytest.approx(1.0)
    assert results[0].content is None
    assert results[0].metadata is None


def test_bm25_returns_snippet_metadata_and_meta_on_request():
    provider = _index(BM25SearchProvider())
    options = SearchOptions(return_content=True, return_metadata=True, return_meta=True)

    result = asyncio.run(provider.search("wine", options))[0]

    assert result.id == "grape"
    assert result.content == "Grapes are pressed to make wine."
    assert result.metadata == {"colour": "purple"}
    assert result.meta["highlights"] == ["wine"]
    assert result.meta["bm25_score"] > 0


def test_bm25_filters_and_limits():
    provider = _index(BM25SearchProvider())

    red = asyncio.run(provider.search("grow", SearchOptions(filter={"colour": "red"})))
    assert [r.id for r in red] == ["apple"]
    assert len(asyncio.run(provider.search("grow", SearchOptions(limit=1)))) == 1
    assert asyncio.run(provider.search("   ")) == []
    assert asyncio.run(BM25SearchProvider().search("grow")) == []


def test_bm25_remove_and_clear():
    provider = _index(BM25SearchProvider())

    assert asyncio.run(provider.remove(["banana", "missing"])) == 1
    assert asyncio.run(provider.search("bananas")) == []
    assert len(provider) == 2
    asyncio.run(provider.clear())
    assert len(provider) == 0
    assert provider.supports("remove") and provider.supports("clear") and provider.supports("close")


def test_vector_ranks_by_similarity():
    provider = _index(VectorSearchProvider(KeywordEmbedding()))

    results = asyncio.run(provider.search("banana", SearchOptions(return_meta=True)))

    assert results[0].id == "banana"
    assert results[0].score == pytest.approx(1.0)
    assert results[0].meta["similarity"] == pytest.approx(1.0)
    assert all(0.0 <= r.score <= 1.0 for r in results)
    assert results[1].score < results[0].score


def test_vector_filters_reindexes_and_removes():
    provider = _index(VectorSearchProvider(KeywordEmbedding()))

    filtered = asyncio.run(provider.search("banana", SearchOptions(filter={"colour": {"$in": ["red", "purple"]}})))
    assert {r.id for r in filtered} == {"apple", "grape"}

    asyncio.run(provider.index([Document(id="apple", content="Now this one is about banana bread.")]))
    assert len(provider) == 3
    results = asyncio.run(provider.search("banana", SearchOptions(limit=2, return_content=True)))
    assert {r.id for r in results} == {"apple", "banana"}

    assert asyncio.run(provider.remove(["apple"])) == 1
    assert [r.id for r in asyncio.run(provider.search("banana", SearchOptions(limit=1)))] == ["banana"]
    asyncio.run(provider.close())
    assert asyncio.run(provider.search("banana")) == []
