"""lodestar.retrieval.tree_sitter_facility

Syntax facility for TypeScript and JavaScript built on tree-sitter.

The grammars come from the optional ``code`` extra (``tree-sitter``,
``tree-sitter-typescript`` and ``tree-sitter-javascript``) and are imported on
first use. Without them the facility reports every language as unsupported,
so the code chunker raises
:class:`~lodestar.common.exceptions.SyntaxFacilityUnavailableError` and the
auto chunker falls back to text splitting.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from lodestar.common.exceptions import SyntaxFacilityUnavailableError
from lodestar.common.schemas import ChunkImport
from lodestar.retrieval.code_chunker import Declaration, DeclarationForest, ParsedSource, _LineIndex

logger = logging.getLogger(__name__)

_NAMED_KINDS = {
    "function_declaration": "function",
    "generator_function_declaration": "function",
    "function_signature": "function",
    "class_declaration": "class",
    "abstract_class_declaration": "class",
    "interface_declaration": "interface",
    "type_alias_declaration": "type",
    "enum_declaration": "enum",
    "public_field_definition": "property",
    "field_definition": "property",
    "abstract_method_signature": "method",
    "internal_module": "namespace",
    "module": "namespace",
}


def _text(node: Any) -> str:
    return node.text.decode("utf-8")


def _has_token(node: Any, token: str) -> bool:
    return any(not child.is_named and child.type == token for child in node.children)


def _type_suffix(annotation: Any) -> str:
    """Render a ``type_annotation`` node as ``": T"``."""
    if annotation is None:
        return ""
    return f": {_text(annotation).lstrip(':').strip()}"


def _parameters(node: Any) -> str:
    params = node.child_by_field_name("parameters")
    if params is None:
        return ""
    return ", ".join(_text(p) for p in params.named_children if p.type != "comment")


class TreeSitterSyntaxFacility:
    """Syntax facility for TypeScript, TSX, JavaScript and JSX.

    Recognised declarations: functions (including overload signatures),
    classes, interfaces, type aliases, enums, namespaces, ``const``/``let``/
    ``var`` declarators, methods, constructors, getters, setters and class
    fields. Exported declarations span their ``export`` keyword; decorators
    are part of the declaration they decorate.
    """

    languages = frozenset({"typescript", "tsx", "javascript", "jsx"})

    def __init__(self) -> None:
        self._parsers: Dict[str, Any] = {}

    def _parser(self, language: str):
        if language in self._parsers:
            return self._parsers[language]
        try:
            from tree_sitter import Language, Parser

            if language in ("typescript", "tsx"):
                import tree_sitter_typescript

                grammar = (
                    tree_sitter_typescript.language_tsx()
                    if language == "tsx"
                    else tree_sitter_typescript.language_typescript()
                )
            else:
                import tree_sitter_javascript

                grammar = tree_sitter_javascript.language()
        except ImportError as exc:
            raise SyntaxFacilityUnavailableError(
                f"tree-sitter grammar for {language!r} is not installed. "
                "Install it with: pip install 'lodestar-rag[code]'"
            ) from exc

        parser = Parser(Language(grammar))
        self._parsers[language] = parser
        return parser

    def supports(self, language: Optional[str]) -> bool:
        if language not in self.languages:
            return False
        try:
            self._parser(language)
        except SyntaxFacilityUnavailableError as exc:
            logger.debug("%s", exc)
            return False
        return True

    def parse(self, content: str, language: str = "typescript") -> ParsedSource:
        encoded = content.encode("utf-8")
        tree = self._parser(language).parse(encoded)
        if tree.root_node.has_error:
            logger.debug("tree-sitter reported syntax errors in %s source", language)

        lines = _LineIndex(content)
        ascii_only = content.isascii()

        def to_char(offset: int) -> int:
            if ascii_only:
                return offset
            return len(encoded[:offset].decode("utf-8", errors="ignore"))

        forest = DeclarationForest()
        self._visit(tree.root_node, forest, lines, to_char, parent=None)
        return ParsedSource(forest=forest, imports=self._imports(tree.root_node))

    def _visit(self, node: Any, forest: DeclarationForest, lines: _LineIndex, to_char, parent: Optional[int]) -> None:
        for child in node.named_children:
            decl = self._declaration(child, lines, to_char)
            if decl is None:
                self._visit(child, forest, lines, to_char, parent)
            else:
                index = forest.add(decl, parent)
                self._visit(child, forest, lines, to_char, index)

    def _declaration(self, node: Any, lines: _LineIndex, to_char) -> Optional[Declaration]:
        kind = self._kind(node)
        if kind is None:
            return None
        name_node = node.child_by_field_name("name")
        if name_node is None and node.type == "field_definition":
            name_node = node.child_by_field_name("property")
        if name_node is None:
            return None
        if node.type == "variable_declarator" and name_node.type != "identifier":
            return None
        name = _text(name_node)

        outer = node.parent if node.parent is not None and node.parent.type == "export_statement" else node
        start = to_char(outer.start_byte)
        end = to_char(node.end_byte)
        return Declaration(
            name=name,
            type=kind,
            signature=self._signature(node, kind, name),
            start=start,
            end=end,
            line_start=lines.line_of(start),
            line_end=lines.line_of(max(start, end - 1)),
        )

    @staticmethod
    def _kind(node: Any) -> Optional[str]:
        if node.type in _NAMED_KINDS:
            return _NAMED_KINDS[node.type]
        if node.type == "variable_declarator":
            return "variable"
        if node.type == "method_definition":
            name = node.child_by_field_name("name")
            if name is not None and _text(name) == "constructor":
                return "constructor"
            if _has_token(node, "get"):
                return "getter"
            if _has_token(node, "set"):
                return "setter"
            return "method"
        return None

    @staticmethod
    def _signature(node: Any, kind: str, name: str) -> str:
        if kind == "function" and node.type != "function_signature":
            exported = "export " if node.parent is not None and node.parent.type == "export_statement" else ""
            is_async = "async " if _has_token(node, "async") else ""
            returns = _type_suffix(node.child_by_field_name("return_type"))
            return f"{exported}{is_async}function {name}({_parameters(node)}){returns}"
        if kind in ("method", "getter", "setter", "constructor") and node.type == "method_definition":
            is_async = "async " if _has_token(node, "async") else ""
            returns = _type_suffix(node.child_by_field_name("return_type"))
            return f"{is_async}{name}({_parameters(node)}){returns}"
        if kind in ("class", "interface"):
            heritage = [
                _text(c) for c in node.named_children
                if c.type in ("class_heritage", "extends_type_clause", "extends_clause")
            ]
            return " ".join([f"{kind} {name}", *heritage])
        if kind == "variable":
            return f"{name}{_type_suffix(node.child_by_field_name('type'))}"
        return name

    @staticmethod
    def _imports(root: Any) -> List[ChunkImport]:
        imports: List[ChunkImport] = []
        for stmt in root.named_children:
            if stmt.type != "import_statement":
                continue
            source_node = stmt.child_by_field_name("source")
            if source_node is None:
                continue
            source = _text(source_node)[1:-1]
            clause = next((c for c in stmt.named_children if c.type == "import_clause"), None)
            if clause is None:
                imports.append(ChunkImport(name=source, source=source))
                continue

            for binding in clause.named_children:
                if binding.type == "identifier":
                    imports.append(ChunkImport(name=_text(binding), source=source, is_default=True))
                elif binding.type == "namespace_import":
                    alias = next((c for c in binding.named_children if c.type == "identifier"), None)
                    if alias is not None:
                        imports.append(ChunkImport(name=_text(alias), source=source, is_namespace=True))
                elif binding.type == "named_imports":
                    for spec in binding.named_children:
                        if spec.type != "import_specifier":
                            continue
                        local = spec.child_by_field_name("alias")
                        if local is None:
                            local = spec.child_by_field_name("name")
                        imports.append(ChunkImport(name=_text(local), source=source))
        return imports


__all__ = ["TreeSitterSyntaxFacility"]
