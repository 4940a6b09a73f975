import pytest

from lodestar.common.exceptions import SyntaxFacilityUnavailableError
from lodestar.common.schemas import ChunkImport
from lodestar.retrieval.code_chunker import (
    CodeChunker,
    PythonSyntaxFacility,
    detect_language,
    resolve_max_chunk_size,
)


SOURCE = '''"""Shapes."""
import os
from typing import List as L
from enum import Enum
from typing import Protocol


class Color(Enum):
    RED = 1


class Drawable(Protocol):
    def draw(self) -> None: ...


class Shape:
    sides: int = 0

    def __init__(self, name):
        self.name = name

    @property
    def label(self):
        return self.name.upper()

    @label.setter
    def label(self, value):
        self.name = value

    def area(self):
        return 0


def make_square(size: int) -> int:
    return size * size


MAX_SIZE = 10
'''


def _functions(count: int) -> str:
    return "\n\n".join(
        f"def func_{i}(x):\n    value = x + {i}\n    return value * {i}\n" for i in range(count)
    )


def test_python_facility_declaration_kinds():
    """Top-level and nested declarations get the expected type tags."""
    parsed = PythonSyntaxFacility().parse(SOURCE)
    forest = parsed.forest

    top = {d.name: d.type for d in forest.top_level()}
    assert top == {
        "Color": "enum",
        "Drawable": "interface",
        "Shape": "class",
        "make_square": "function",
        "MAX_SIZE": "variable",
    }

    shape = next(d for d in forest.top_level() if d.name == "Shape")
    members = [(forest.nodes[i].name, forest.nodes[i].type) for i in shape.children]
    assert members == [
        ("sides", "property"),
        ("__init__", "constructor"),
        ("label", "getter"),
        ("label", "setter"),
        ("area", "method"),
    ]

    area = next(forest.nodes[i] for i in shape.children if forest.nodes[i].name == "area")
    assert [a.name for a in forest.ancestors(area.index)] == ["Shape"]

    square = next(d for d in forest.top_level() if d.name == "make_square")
    assert square.signature == "def make_square(size: int) -> int"


def test_python_facility_spans_include_decorators():
    parsed = PythonSyntaxFacility().parse(SOURCE)
    getter = next(d for d in parsed.forest.nodes if d.type == "getter")

    assert SOURCE[getter.start:].startswith("@property\n    def label(self):")
    assert SOURCE[getter.start:getter.end].endswith("return self.name.upper()")


def test_python_facility_imports():
    parsed = PythonSyntaxFacility().parse(SOURCE)

    assert parsed.imports[:2] == [
        ChunkImport(name="os", source="os", is_namespace=True),
        ChunkImport(name="L", source="typing"),
    ]
    assert [i.name for i in parsed.imports] == ["os", "L", "Enum", "Protocol"]


def test_small_file_is_single_chunk_with_metadata():
    chunks = CodeChunker()(SOURCE, id="shapes.py")

    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk.char_range == (0, len(SOURCE.strip()))
    assert chunk.line_range[0] == 1
    assert [e.name for e in chunk.entities] == ["Color", "Drawable", "Shape", "make_square", "MAX_SIZE"]
    assert len(chunk.imports) == 4
    assert chunk.scope == []
    assert chunk.context is None


def test_declarations_grouped_under_size_limit():
    """Consecutive top-level functions are packed into chunks no larger than the limit."""
    content = _functions(6)
    chunks = CodeChunker(max_chunk_size=120)(content, id="funcs.py")

    assert [[e.name for e in c.entities] for c in chunks] == [
        ["func_0", "func_1"],
        ["func_2", "func_3"],
        ["func_4", "func_5"],
    ]
    for chunk in chunks:
        start, end = chunk.char_range
        assert content[start:end] == chunk.text
        assert len(chunk.text) <= 120
    assert chunks[0].line_range == (1, 8)
    assert chunks[1].line_range == (11, 18)
    assert chunks[1].text.startswith("def func_2(x):")


def test_siblings_of_first_entity():
    chunks = CodeChunker(max_chunk_size=120)(_functions(6), id="funcs.py")
    siblings = [(s.name, s.position, s.distance) for s in chunks[1].siblings]

    assert siblings == [
        ("func_1", "before", 1),
        ("func_0", "before", 2),
        ("func_3", "after", 1),
        ("func_4", "after", 2),
        ("func_5", "after", 3),
    ]


def test_overlap_lines_prepend_preceding_code():
    content = _functions(6)
    chunks = CodeChunker(max_chunk_size=120, overlap_lines=4)(content, id="funcs.py")

    assert chunks[1].text.startswith("    value = x + 1\n    return value * 1\ndef func_2(x):")
    assert chunks[1].char_range[0] == content.index("def func_2")
    assert chunks[0].text.startswith("def func_0")


def test_oversized_declaration_is_emitted_alone_and_trailing_code_is_kept():
    big = "def big():\n" + "".join(f"    v{i} = {i}\n" for i in range(20)) + "    return v0\n"
    content = "def a():\n    return 1\n\n\n" + big + "\n\ndef c():\n    return 3\n\nprint('done')\n"
    chunks = CodeChunker(max_chunk_size=60)(content, id="big.py")

    assert [[e.name for e in c.entities] for c in chunks] == [["a"], ["big"], ["c"]]
    assert len(chunks[1].text) > 60
    assert chunks[2].text.endswith("print('done')")


def test_unsupported_language_raises():
    with pytest.raises(SyntaxFacilityUnavailableError):
        CodeChunker()("fn main() {}", id="main.rs")
    assert CodeChunker().supports("pkg/module.pyi")
    assert not CodeChunker().supports("main.rs")


def test_max_chunk_size_resolution():
    assert resolve_max_chunk_size() == 1000
    assert resolve_max_chunk_size(max_tokens=512) == 1523
    assert resolve_max_chunk_size(max_chunk_size=300, max_tokens=512) == 300
    assert CodeChunker(max_tokens=100).max_chunk_size == 297
    with pytest.raises(ValueError):
        CodeChunker(overlap_lines=-1)


def test_detect_language():
    assert detect_language("src/App.TSX") == "tsx"
    assert detect_language("lib/util.py") == "python"
    assert detect_language("README") is None
