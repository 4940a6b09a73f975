import asyncio

import pytest

from lodestar.common.exceptions import ConfigurationError
from lodestar.common.schemas import Document, SearchOptions
from lodestar.config import GlobalConfig
from lodestar.retrieval.auto_chunker import AutoChunker
from lodestar.retrieval.code_chunker import CodeChunker
from lodestar.retrieval.providers import BM25SearchProvider, VectorSearchProvider
from lodestar.retrieval.reranker import CrossEncoderReranker
from lodestar.retrieval.retriever_factory import (
    create_chunker,
    create_driver,
    create_orchestrator,
)
from lodestar.retrieval.text_splitter import TextSplitter
from lodestar.retrieval.types import ComposedDriver

CONFIG_YAML = """
chunking:
  type: auto
  chunk_size: 400
  chunk_overlap: 40
  code:
    max_tokens: 512
    overlap_lines: 2
retriever:
  rrf_k: 30
embedder:
  kind: ${LODESTAR_TEST_EMBEDDER}
  dimensions: 16
reranker:
  type: none
"""


def test_load_expands_environment_variables(tmp_path, monkeypatch):
    """${VAR} references in the YAML file are expanded at load time."""
    monkeypatch.setenv("LODESTAR_TEST_EMBEDDER", "mock")
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    config = GlobalConfig.load(path)

    assert config.config_path == path.resolve()
    assert config.embedder == {"kind": "mock", "dimensions": 16}
    assert config.chunking == {
        "type": "auto",
        "chunk_size": 400,
        "chunk_overlap": 40,
        "code": {"max_tokens": 512, "overlap_lines": 2},
    }
    assert config.retriever == {"rrf_k": 30, "over_fetch_factor": 3}
    assert config.reranker == {"type": "none"}


def test_defaults_for_missing_sections():
    config = GlobalConfig.from_dict({})

    assert config.chunking["type"] == "auto"
    assert config.chunking["chunk_size"] == 1000
    assert config.retriever["rrf_k"] == 60
    assert config.reranker == {}
    with pytest.raises(KeyError):
        config.embedder


@pytest.mark.parametrize(
    "raw",
    [
        {"chunking": {"type": "semantic"}},
        {"chunking": {"chunk_size": 0}},
        {"chunking": {"chunk_overlap": "lots"}},
        {"retriever": {"rrf_k": -1}},
        {"retriever": {"over_fetch_factor": 0}},
    ],
)
def test_invalid_values_raise(raw):
    config = GlobalConfig.from_dict(raw)
    with pytest.raises(ConfigurationError):
        config.chunking
        config.retriever


def test_non_mapping_sections_raise():
    with pytest.raises(TypeError):
        GlobalConfig(["not", "a", "mapping"])
    with pytest.raises(TypeError):
        GlobalConfig.from_dict({"chunking": ["auto"]}).chunking


@pytest.mark.parametrize(
    "kind,expected",
    [("auto", AutoChunker), ("text", TextSplitter), ("code", CodeChunker), ("none", type(None))],
)
def test_create_chunker_by_type(kind, expected):
    config = GlobalConfig.from_dict({"chunking": {"type": kind, "chunk_size": 300, "chunk_overlap": 0}})

    assert isinstance(create_chunker(config), expected)


def test_code_options_are_passed_through():
    config = GlobalConfig.from_dict({"chunking": {"type": "code", "code": {"max_tokens": 100, "overlap_lines": 1}}})
    chunker = create_chunker(config)

    assert chunker.max_chunk_size == 297
    assert chunker.overlap_lines == 1


def test_create_driver_kinds():
    config = GlobalConfig.from_dict({"embedder": {"kind": "mock", "dimensions": 4}})

    assert isinstance(create_driver(config, "keyword"), BM25SearchProvider)
    assert isinstance(create_driver(config, "vector"), VectorSearchProvider)
    hybrid = create_driver(config)
    assert isinstance(hybrid, ComposedDriver)
    assert len(hybrid.members()) == 2
    with pytest.raises(ConfigurationError):
        create_driver(config, "graph")


def test_create_orchestrator_end_to_end():
    config = GlobalConfig.from_dict({
        "chunking": {"type": "auto", "chunk_size": 200, "chunk_overlap": 0},
        "retriever": {"rrf_k": 10},
        "embedder": {"kind": "mock", "dimensions": 4},
        "reranker": {"type": "cross_encoder"},
    })
    orchestrator = create_orchestrator(config, create_driver(config))

    assert orchestrator.rrf_k == 10
    assert orchestrator.is_hybrid
    assert isinstance(orchestrator.reranker, CrossEncoderReranker)

    orchestrator.reranker = None
    docs = [
        Document(id="notes/apple.md", content="Apples grow on trees."),
        Document(id="notes/banana.md", content="Bananas grow in bunches."),
    ]
    assert asyncio.run(orchestrator.index(docs)) == 2

    results = asyncio.run(orchestrator.search("bunches", SearchOptions(limit=1, return_content=True)))
    assert [r.id for r in results] == ["notes/banana.md"]
