"""lodestar.retrieval.filter

Backend-agnostic metadata filter DSL.

A filter is a plain mapping from metadata field name to either a literal
scalar (implicit equality) or an operator object holding exactly one of
``$eq``, ``$ne``, ``$gt``, ``$gte``, ``$lt``, ``$lte``, ``$in``, ``$prefix`` or
``$exists``. Fields are combined with AND; an empty filter matches everything.

Two implementations are provided and must agree on every input:

- :func:`compile_filter` renders SQL ``WHERE`` fragments with positional
  ``?`` parameters for JSON-in-SQLite or JSONB-in-PostgreSQL storage;
- :func:`matches_filter` evaluates the filter against a metadata mapping.

Examples
--------
>>> compile_filter({"category": "blog", "score": {"$gt": 5}}, FilterDialect.JSON).sql
"json_extract(metadata, '$.category') = ? AND json_extract(metadata, '$.score') > ?"
>>> matches_filter({"status": {"$ne": "deleted"}}, {"status": "active"})
True
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from lodestar.common.exceptions import FilterError

OPERATORS = ("$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$prefix", "$exists")

_COMPARISON_SQL = {
    "$eq": "=",
    "$ne": "!=",
    "$gt": ">",
    "$gte": ">=",
    "$lt": "<",
    "$lte": "<=",
}

# Field names are interpolated into SQL: plain identifiers and dotted paths only.
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_PLACEHOLDER_RE = re.compile(r"\?")


class FilterDialect(str, Enum):
    """SQL dialect used to reference a metadata field."""

    JSON = "json"
    JSONB = "jsonb"


@dataclass(frozen=True)
class CompiledFilter:
    """SQL fragment plus positional parameters.

    An empty ``sql`` means "no filtering": callers must omit the ``WHERE``
    clause entirely rather than emit an empty one.
    """
    sql: str = ""
    params: List[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.sql)


def _field_ref(name: str, dialect: FilterDialect) -> str:
    if not _FIELD_RE.match(name):
        raise FilterError(f"Invalid filter field name {name!r}.")
    if FilterDialect(dialect) is FilterDialect.JSON:
        return f"json_extract(metadata, '$.{name}')"
    return f"metadata->>'{name}'"


def _is_operator(value: Any) -> bool:
    return isinstance(value, Mapping)


def _unpack_operator(name: str, value: Mapping[str, Any]) -> Tuple[str, Any]:
    """Return the single ``(operator, operand)`` pair of an operator object."""
    if len(value) != 1:
        raise FilterError(
            f"Filter on {name!r} must hold exactly one operator, got {sorted(value)}."
        )
    op, operand = next(iter(value.items()))
    if op not in OPERATORS:
        raise FilterError(f"Unsupported filter operator {op!r} on {name!r}.")
    if op == "$in" and not isinstance(operand, (list, tuple)):
        raise FilterError(f"'$in' on {name!r} expects a list, got {type(operand).__name__}.")
    return op, operand


def _escape_like(value: str) -> str:
    """Escape ``LIKE`` wildcards so the value matches literally under ``ESCAPE '\\'``."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def compile_filter(
        filter: Optional[Mapping[str, Any]],
        dialect: FilterDialect | str = FilterDialect.JSON,
    ) -> CompiledFilter:
    """Compile a search filter to a SQL ``WHERE`` fragment.

    Parameters
    ----------
    filter : Mapping[str, Any] or None
        Filter expression.
    dialect : FilterDialect or str, optional
        ``"json"`` for SQLite ``json_extract`` or ``"jsonb"`` for PostgreSQL
        ``->>``. Defaults to ``"json"``.

    Returns
    -------
    CompiledFilter
        Fragment with ``?`` placeholders and the matching parameters. Empty
        for an empty or ``None`` filter.

    Raises
    ------
    FilterError
        If an operator object is malformed or a field name is unsafe.
    """
    if not filter:
        return CompiledFilter()

    dialect = FilterDialect(dialect)
    clauses: List[str] = []
    params: List[Any] = []

    for name, value in filter.items():
        ref = _field_ref(name, dialect)
        if not _is_operator(value):
            clauses.append(f"{ref} = ?")
            params.append(value)
            continue

        op, operand = _unpack_operator(name, value)
        if op in _COMPARISON_SQL:
            clauses.append(f"{ref} {_COMPARISON_SQL[op]} ?")
            params.append(operand)
        elif op == "$in":
            placeholders = ", ".join("?" for _ in operand)
            clauses.append(f"{ref} IN ({placeholders})")
            params.extend(operand)
        elif op == "$prefix":
            clauses.append(f"{ref} LIKE ? ESCAPE '\\'")
            params.append(_escape_like(str(operand)) + "%")
        else:
            clauses.append(f"{ref} IS NOT NULL" if operand else f"{ref} IS NULL")

    return CompiledFilter(sql=" AND ".join(clauses), params=params)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _same(actual: Any, expected: Any) -> bool:
    """Strict equality: booleans never equal numbers."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    return actual == expected


def _ordered(actual: Any, operand: Any, op: str) -> bool:
    if not (_is_number(actual) and _is_number(operand)):
        return False
    if op == "$gt":
        return actual > operand
    if op == "$gte":
        return actual >= operand
    if op == "$lt":
        return actual < operand
    return actual <= operand


def _match_operator(actual: Any, op: str, operand: Any) -> bool:
    if op == "$exists":
        return (actual is not None) if operand else (actual is None)
    # SQL NULL semantics: any comparison against a missing value is false.
    if actual is None:
        return False
    if op == "$eq":
        return _same(actual, operand)
    if op == "$ne":
        return not _same(actual, operand)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        return _ordered(actual, operand, op)
    if op == "$in":
        return any(_same(actual, candidate) for candidate in operand)
    if op == "$prefix":
        return isinstance(actual, str) and actual.startswith(str(operand))
    raise FilterError(f"Unsupported filter operator {op!r}.")


def matches_filter(
        filter: Optional[Mapping[str, Any]],
        metadata: Optional[Mapping[str, Any]],
    ) -> bool:
    """Evaluate a search filter against a metadata mapping.

    Parameters
    ----------
    filter : Mapping[str, Any] or None
        Filter expression. ``None`` or empty matches everything.
    metadata : Mapping[str, Any] or None
        Metadata of a single document. ``None`` matches only an empty filter.

    Returns
    -------
    bool
        ``True`` when every field clause holds. A missing or ``None`` field
        fails every clause except ``{"$exists": False}``, as in SQL.

    Raises
    ------
    FilterError
        If an operator object is malformed.
    """
    if not filter:
        return True
    if metadata is None:
        return False

    for name, value in filter.items():
        actual = metadata.get(name)
        if _is_operator(value):
            op, operand = _unpack_operator(name, value)
            if not _match_operator(actual, op, operand):
                return False
        elif actual is None or not _same(actual, value):
            return False

    return True


def pg_params(sql: str, offset: int = 1) -> str:
    """Rewrite ``?`` placeholders to PostgreSQL ``$N`` placeholders.

    Parameters
    ----------
    sql : str
        SQL containing positional ``?`` placeholders.
    offset : int, optional
        Number assigned to the first placeholder. Defaults to ``1``; callers
        that prepend their own parameters pass the next free number.

    Returns
    -------
    str
        SQL with ``$offset``, ``$offset+1``, ... in left-to-right order.
    """
    counter = iter(range(offset, offset + sql.count("?")))
    return _PLACEHOLDER_RE.sub(lambda _: f"${next(counter)}", sql)


__all__ = [
    "OPERATORS",
    "FilterDialect",
    "CompiledFilter",
    "compile_filter",
    "matches_filter",
    "pg_params",
]
