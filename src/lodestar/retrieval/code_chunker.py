"""lodestar.retrieval.code_chunker

Structure-aware chunking of source code.

The code chunker asks a syntax facility for the declarations of a file
(functions, classes, methods, ...) and their positions, then groups top-level
declarations into chunks of bounded size. Every chunk carries the entities it
contains, the scope chain of its first entity, the file's imports and the
neighbouring top-level declarations, so that embedding and keyword search see
each piece of code together with its surroundings.

Classes
-------
Declaration
    A declaration node with its span, stored in a :class:`DeclarationForest`.
DeclarationForest
    Arena of declaration nodes linked by parent/children indices.
ParsedSource
    Declarations and imports of one file.
SyntaxFacility
    Protocol for parsers producing a :class:`ParsedSource`.
PythonSyntaxFacility
    Syntax facility for Python built on the standard library :mod:`ast` module.
CompositeSyntaxFacility
    Delegates each language to the first facility supporting it.
CodeChunker
    Chunker callable producing code-aware :class:`~lodestar.common.schemas.Chunk` objects.

Functions
---------
detect_language
    Map a path's extension to a language variant name.
resolve_max_chunk_size
    Derive the chunk size limit from an explicit size or a model token budget.
default_syntax_facility
    Python via :mod:`ast` plus TypeScript and JavaScript via tree-sitter.
"""

from __future__ import annotations

import ast
import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from lodestar.common.exceptions import SyntaxFacilityUnavailableError
from lodestar.common.schemas import Chunk, ChunkEntity, ChunkImport, ChunkSibling

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 1000
CHARS_PER_TOKEN = 3.5
TOKEN_HEADROOM = 0.85
MAX_SIBLINGS = 3

ENTITY_TYPES = frozenset({
    "function",
    "class",
    "interface",
    "type",
    "enum",
    "variable",
    "method",
    "property",
    "getter",
    "setter",
    "constructor",
    "namespace",
})

LANGUAGE_BY_EXTENSION = {
    "ts": "typescript",
    "mts": "typescript",
    "cts": "typescript",
    "tsx": "tsx",
    "js": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "jsx": "jsx",
    "py": "python",
    "pyi": "python",
}


def file_extension(path: str) -> str:
    """Return the lower-cased extension of ``path`` without the dot, or ``""``."""
    name = path.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def detect_language(path: str) -> Optional[str]:
    """Return the language variant for ``path``, or ``None`` when unknown."""
    return LANGUAGE_BY_EXTENSION.get(file_extension(path))


def resolve_max_chunk_size(
        max_chunk_size: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ) -> int:
    """Return the effective chunk size limit in characters.

    An explicit ``max_chunk_size`` wins. Otherwise a model token budget is
    converted at ~3.5 characters per token with 15% headroom. Without either,
    ``1000`` is used.
    """
    if max_chunk_size is not None:
        if max_chunk_size <= 0:
            raise ValueError(f"'max_chunk_size' must be positive, got {max_chunk_size}.")
        return max_chunk_size
    if max_tokens:
        return int(max_tokens * CHARS_PER_TOKEN * TOKEN_HEADROOM)
    return DEFAULT_MAX_CHUNK_SIZE


@dataclass
class Declaration:
    """A declaration node.

    Attributes
    ----------
    name : str
        Declared name.
    type : str
        Type tag from :data:`ENTITY_TYPES`.
    signature : str or None
        Human-readable signature, when the facility provides one.
    start, end : int
        Half-open character offsets of the declaration in the source.
    line_start, line_end : int
        1-indexed first and last line.
    index : int
        Position of the node in its forest.
    parent : int or None
        Index of the enclosing declaration, ``None`` for top-level nodes.
    children : list[int]
        Indices of directly nested declarations, in source order.
    """
    name: str
    type: str
    start: int
    end: int
    line_start: int
    line_end: int
    signature: Optional[str] = None
    index: int = -1
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    def to_entity(self) -> ChunkEntity:
        return ChunkEntity(name=self.name, type=self.type, signature=self.signature or None)


class DeclarationForest:
    """Arena of declarations linked by parent/children indices.

    Nodes are appended in a single pre-order pass; a node's parent must be
    added before the node itself.
    """

    def __init__(self) -> None:
        self.nodes: List[Declaration] = []
        self.roots: List[int] = []

    def add(self, decl: Declaration, parent: Optional[int] = None) -> int:
        decl.index = len(self.nodes)
        decl.parent = parent
        self.nodes.append(decl)
        if parent is None:
            self.roots.append(decl.index)
        else:
            self.nodes[parent].children.append(decl.index)
        return decl.index

    def top_level(self) -> List[Declaration]:
        return [self.nodes[i] for i in self.roots]

    def ancestors(self, index: int) -> List[Declaration]:
        """Return the enclosing declarations of node ``index``, nearest first."""
        chain: List[Declaration] = []
        parent = self.nodes[index].parent
        while parent is not None:
            chain.append(self.nodes[parent])
            parent = self.nodes[parent].parent
        return chain

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass
class ParsedSource:
    """Declarations and imports of a source file."""
    forest: DeclarationForest
    imports: List[ChunkImport] = field(default_factory=list)


class SyntaxFacility(Protocol):
    """Parser producing declaration forests for one or more languages."""

    def supports(self, language: Optional[str]) -> bool:
        """Return whether ``language`` can be parsed."""

    def parse(self, content: str, language: str) -> ParsedSource:
        """Parse ``content``; may raise on invalid source."""


class _LineIndex:
    """Offset/line conversions for a source string."""

    def __init__(self, content: str):
        self.content = content
        self.starts = [0]
        self.starts.extend(i + 1 for i, ch in enumerate(content) if ch == "\n")

    def line_of(self, offset: int) -> int:
        """Return the 1-indexed line containing character ``offset``."""
        return bisect_right(self.starts, offset)

    def offset(self, lineno: int, byte_col: int) -> int:
        """Convert an :mod:`ast` (line, UTF-8 byte column) position to a character offset."""
        line_start = self.starts[lineno - 1]
        line_end = self.starts[lineno] if lineno < len(self.starts) else len(self.content)
        line = self.content[line_start:line_end]
        return line_start + len(line.encode("utf-8")[:byte_col].decode("utf-8", errors="ignore"))


_ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
_INTERFACE_BASES = {"Protocol", "ABC"}


def _base_name(node: ast.expr) -> str:
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Subscript):
        return _base_name(node.value)
    if isinstance(node, ast.Name):
        return node.id
    return ""


def _decorator_names(node: ast.AST) -> List[str]:
    return [ast.unparse(d) for d in getattr(node, "decorator_list", [])]


class PythonSyntaxFacility:
    """Syntax facility for Python source built on :mod:`ast`.

    Recognised declarations: classes (``enum`` for Enum subclasses,
    ``interface`` for Protocol/ABC subclasses), functions, methods,
    constructors (``__init__``), properties and their setters, ``type``
    aliases, module-level variables and class-level attributes. Decorators are
    included in a declaration's span.
    """

    languages = frozenset({"python"})

    def supports(self, language: Optional[str]) -> bool:
        return language in self.languages

    def parse(self, content: str, language: str = "python") -> ParsedSource:
        tree = ast.parse(content)
        lines = _LineIndex(content)
        forest = DeclarationForest()
        self._visit(tree.body, forest, lines, parent=None, in_class=False)
        return ParsedSource(forest=forest, imports=self._imports(tree))

    def _visit(
            self,
            body: Iterable[ast.stmt],
            forest: DeclarationForest,
            lines: _LineIndex,
            parent: Optional[int],
            in_class: bool,
        ) -> None:
        for node in body:
            decl = self._declaration(node, lines, in_class)
            if decl is None:
                continue
            index = forest.add(decl, parent)
            if isinstance(node, ast.ClassDef):
                self._visit(node.body, forest, lines, parent=index, in_class=True)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self._visit(node.body, forest, lines, parent=index, in_class=False)

    def _declaration(self, node: ast.stmt, lines: _LineIndex, in_class: bool) -> Optional[Declaration]:
        if isinstance(node, ast.ClassDef):
            name, kind, signature = node.name, self._class_kind(node), self._class_signature(node)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            name, kind, signature = node.name, self._function_kind(node, in_class), self._function_signature(node)
        elif isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
            name = node.target.id
            kind = "property" if in_class else "variable"
            signature = f"{name}: {ast.unparse(node.annotation)}"
        elif isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
            name = node.targets[0].id
            kind = "property" if in_class else "variable"
            signature = None
        elif hasattr(ast, "TypeAlias") and isinstance(node, ast.TypeAlias):
            name, kind, signature = node.name.id, "type", f"type {node.name.id}"
        else:
            return None

        first = min([node, *getattr(node, "decorator_list", [])], key=lambda n: (n.lineno, n.col_offset))
        start = lines.offset(first.lineno, first.col_offset)
        if first is not node:
            # decorator positions point past the "@"
            at = lines.content.rfind("@", lines.starts[first.lineno - 1], start)
            if at != -1:
                start = at
        end = lines.offset(node.end_lineno, node.end_col_offset)
        return Declaration(
            name=name,
            type=kind,
            signature=signature,
            start=start,
            end=end,
            line_start=first.lineno,
            line_end=node.end_lineno,
        )

    @staticmethod
    def _class_kind(node: ast.ClassDef) -> str:
        bases = {_base_name(b) for b in node.bases}
        if bases & _ENUM_BASES:
            return "enum"
        if bases & _INTERFACE_BASES:
            return "interface"
        return "class"

    @staticmethod
    def _function_kind(node: ast.FunctionDef | ast.AsyncFunctionDef, in_class: bool) -> str:
        if not in_class:
            return "function"
        if node.name == "__init__":
            return "constructor"
        decorators = _decorator_names(node)
        if any(d.endswith(".setter") for d in decorators):
            return "setter"
        if any(d in ("property", "cached_property", "functools.cached_property") for d in decorators):
            return "getter"
        return "method"

    @staticmethod
    def _class_signature(node: ast.ClassDef) -> str:
        bases = [ast.unparse(b) for b in node.bases] + [ast.unparse(k) for k in node.keywords]
        return f"class {node.name}({', '.join(bases)})" if bases else f"class {node.name}"

    @staticmethod
    def _function_signature(node: ast.FunctionDef | ast.AsyncFunctionDef) -> str:
        prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
        returns = f" -> {ast.unparse(node.returns)}" if node.returns is not None else ""
        return f"{prefix} {node.name}({ast.unparse(node.args)}){returns}"

    @staticmethod
    def _imports(tree: ast.Module) -> List[ChunkImport]:
        imports: List[ChunkImport] = []
        for node in tree.body:
            if isinstance(node, ast.Import):
                for alias in node.names:
                    imports.append(ChunkImport(
                        name=alias.asname or alias.name,
                        source=alias.name,
                        is_namespace=True,
                    ))
            elif isinstance(node, ast.ImportFrom):
                source = "." * node.level + (node.module or "")
                for alias in node.names:
                    if alias.name == "*":
                        imports.append(ChunkImport(name=source, source=source))
                    else:
                        imports.append(ChunkImport(name=alias.asname or alias.name, source=source))
        return imports


class CompositeSyntaxFacility:
    """Syntax facility delegating each language to the first member supporting it."""

    def __init__(self, *facilities: SyntaxFacility):
        self.facilities = list(facilities)

    def supports(self, language: Optional[str]) -> bool:
        return any(f.supports(language) for f in self.facilities)

    def parse(self, content: str, language: str) -> ParsedSource:
        for facility in self.facilities:
            if facility.supports(language):
                return facility.parse(content, language)
        raise SyntaxFacilityUnavailableError(f"No syntax facility for language {language!r}.")


def default_syntax_facility() -> CompositeSyntaxFacility:
    from lodestar.retrieval.tree_sitter_facility import TreeSitterSyntaxFacility

    return CompositeSyntaxFacility(PythonSyntaxFacility(), TreeSitterSyntaxFacility())


@dataclass
class _ChunkSpan:
    start: int
    end: int
    entities: List[Declaration]


class CodeChunker:
    """Chunker callable splitting source code along declaration boundaries.

    Parameters
    ----------
    max_chunk_size : int or None, optional
        Maximum chunk size in characters. Defaults to ``1000`` or, when
        ``max_tokens`` is given, ``floor(max_tokens * 3.5 * 0.85)``.
    max_tokens : int or None, optional
        Context window of the embedding model the chunks are destined for.
    overlap_lines : int, optional
        Number of lines preceding a chunk to prepend to it. Defaults to ``0``.
    facility : SyntaxFacility or None, optional
        Parser used to extract declarations. Defaults to
        :func:`default_syntax_facility`.

    Notes
    -----
    A single declaration larger than ``max_chunk_size`` is emitted as one
    oversized chunk; it is not subdivided.
    """

    def __init__(
            self,
            max_chunk_size: Optional[int] = None,
            max_tokens: Optional[int] = None,
            overlap_lines: int = 0,
            facility: Optional[SyntaxFacility] = None,
        ):
        if overlap_lines < 0:
            raise ValueError(f"'overlap_lines' must be non-negative, got {overlap_lines}.")
        self.max_chunk_size = resolve_max_chunk_size(max_chunk_size, max_tokens)
        self.overlap_lines = overlap_lines
        self.facility = facility if facility is not None else default_syntax_facility()

    def supports(self, path: str) -> bool:
        """Return whether the facility can parse the language of ``path``."""
        return self.facility.supports(detect_language(path))

    def __call__(
            self,
            content: str,
            *,
            id: Optional[str] = None,
            metadata: Optional[Dict[str, Any]] = None,
        ) -> List[Chunk]:
        """Chunk ``content``, using ``id`` as the file path.

        Raises
        ------
        SyntaxFacilityUnavailableError
            If the facility does not support the language of ``id``.
        """
        path = id or "file.py"
        language = detect_language(path)
        if not self.facility.supports(language):
            raise SyntaxFacilityUnavailableError(
                f"No syntax facility for {path!r} (language={language!r})."
            )

        parsed = self.facility.parse(content, language)
        lines = _LineIndex(content)
        top_level = parsed.forest.top_level()
        spans = self._group(content, top_level)
        logger.debug("Chunked %s into %d chunk(s) from %d declaration(s)", path, len(spans), len(parsed.forest))

        chunks: List[Chunk] = []
        for span in spans:
            chunk = self._build_chunk(content, lines, span, parsed, top_level)
            if chunk is not None:
                chunks.append(chunk)
        return chunks or [Chunk(text=content, char_range=(0, len(content)), line_range=(1, len(lines.starts)))]

    def _group(self, content: str, top_level: Sequence[Declaration]) -> List[_ChunkSpan]:
        """Greedily group top-level declarations into spans of bounded size.

        Text between two declarations (comments, module-level statements) opens
        the following span, and the last span runs to the end of the file.
        """
        limit = self.max_chunk_size
        if len(content) <= limit or not top_level:
            return [_ChunkSpan(0, len(content), list(top_level))]

        spans: List[_ChunkSpan] = []
        current: List[Declaration] = []
        start = 0

        for decl in top_level:
            if current and decl.end - start > limit:
                spans.append(_ChunkSpan(start, current[-1].end, current))
                start = current[-1].end
                current = []
            current.append(decl)
            if decl.end - decl.start > limit:
                spans.append(_ChunkSpan(start, decl.end, current))
                current = []
                start = decl.end

        if current:
            spans.append(_ChunkSpan(start, len(content), current))
        elif content[start:].strip():
            spans.append(_ChunkSpan(start, len(content), []))
        return spans

    def _build_chunk(
            self,
            content: str,
            lines: _LineIndex,
            span: _ChunkSpan,
            parsed: ParsedSource,
            top_level: Sequence[Declaration],
        ) -> Optional[Chunk]:
        raw = content[span.start:span.end]
        stripped = raw.strip()
        if not stripped:
            return None
        start = span.start + (len(raw) - len(raw.lstrip()))
        end = start + len(stripped)
        line_start = lines.line_of(start)
        line_end = lines.line_of(end - 1)

        text = stripped
        if self.overlap_lines > 0 and line_start > 1:
            first = max(0, line_start - 1 - self.overlap_lines)
            overlap = content[lines.starts[first]:lines.starts[line_start - 1]].rstrip("\n")
            if overlap.strip():
                text = f"{overlap}\n{text}"

        entities = [d.to_entity() for d in span.entities]
        scope: List[ChunkEntity] = []
        siblings: List[ChunkSibling] = []
        if span.entities:
            first_entity = span.entities[0]
            scope = [ChunkEntity(name=d.name, type=d.type) for d in parsed.forest.ancestors(first_entity.index)]
            siblings = _siblings(first_entity, top_level)

        context = " > ".join(f"{s.type} {s.name}" for s in reversed(scope)) or None
        return Chunk(
            text=text,
            char_range=(start, end),
            line_range=(line_start, line_end),
            context=context,
            entities=entities,
            scope=scope,
            imports=list(parsed.imports),
            siblings=siblings,
        )


def _siblings(decl: Declaration, top_level: Sequence[Declaration]) -> List[ChunkSibling]:
    """Return up to three top-level declarations before and after ``decl``."""
    position = next((i for i, d in enumerate(top_level) if d.index == decl.index), None)
    if position is None:
        return []

    siblings: List[ChunkSibling] = []
    for i in range(position - 1, max(-1, position - 1 - MAX_SIBLINGS), -1):
        sib = top_level[i]
        siblings.append(ChunkSibling(name=sib.name, type=sib.type, position="before", distance=position - i))
    for i in range(position + 1, min(len(top_level), position + 1 + MAX_SIBLINGS)):
        sib = top_level[i]
        siblings.append(ChunkSibling(name=sib.name, type=sib.type, position="after", distance=i - position))
    return siblings


__all__ = [
    "DEFAULT_MAX_CHUNK_SIZE",
    "ENTITY_TYPES",
    "LANGUAGE_BY_EXTENSION",
    "Declaration",
    "DeclarationForest",
    "ParsedSource",
    "SyntaxFacility",
    "PythonSyntaxFacility",
    "CompositeSyntaxFacility",
    "CodeChunker",
    "default_syntax_facility",
    "detect_language",
    "file_extension",
    "resolve_max_chunk_size",
]
