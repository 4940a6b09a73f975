import json
import sqlite3

import pytest

from lodestar.common.exceptions import FilterError
from lodestar.retrieval.filter import (
    CompiledFilter,
    FilterDialect,
    compile_filter,
    matches_filter,
    pg_params,
)


def _sqlite_matches(filter, metadata) -> bool:
    """Evaluate a compiled JSON filter against a single-row in-memory SQLite table."""
    compiled = compile_filter(filter, FilterDialect.JSON)
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE TABLE docs (id TEXT, metadata TEXT)")
        conn.execute("INSERT INTO docs VALUES (?, ?)", ("doc", json.dumps(metadata)))
        sql = "SELECT COUNT(*) FROM docs"
        if compiled:
            sql += f" WHERE {compiled.sql}"
        (count,) = conn.execute(sql, compiled.params).fetchone()
        return count == 1
    finally:
        conn.close()


def test_empty_filter_compiles_to_nothing_and_matches_everything():
    """An empty or missing filter yields an empty fragment and matches any metadata."""
    for empty in (None, {}):
        compiled = compile_filter(empty)
        assert compiled == CompiledFilter("", [])
        assert not compiled
        assert matches_filter(empty, {"a": 1})
        assert matches_filter(empty, None)


def test_compile_json_dialect():
    compiled = compile_filter({"category": "blog", "score": {"$gt": 5}}, FilterDialect.JSON)

    assert compiled.sql == (
        "json_extract(metadata, '$.category') = ? AND json_extract(metadata, '$.score') > ?"
    )
    assert compiled.params == ["blog", 5]


def test_compile_jsonb_dialect_with_every_operator():
    compiled = compile_filter(
        {
            "a": {"$eq": 1},
            "b": {"$ne": "x"},
            "c": {"$gte": 2},
            "d": {"$lt": 3},
            "e": {"$lte": 4},
            "f": {"$in": ["p", "q"]},
            "g": {"$prefix": "src/"},
            "h": {"$exists": True},
            "i": {"$exists": False},
        },
        "jsonb",
    )

    assert compiled.sql.split(" AND ") == [
        "metadata->>'a' = ?",
        "metadata->>'b' != ?",
        "metadata->>'c' >= ?",
        "metadata->>'d' < ?",
        "metadata->>'e' <= ?",
        "metadata->>'f' IN (?, ?)",
        "metadata->>'g' LIKE ? ESCAPE '\\'",
        "metadata->>'h' IS NOT NULL",
        "metadata->>'i' IS NULL",
    ]
    assert compiled.params == [1, "x", 2, 3, 4, "p", "q", "src/%"]


def test_pg_params_rewrites_placeholders_in_order():
    compiled = compile_filter({"a": 1, "b": {"$in": [2, 3]}}, FilterDialect.JSONB)

    assert pg_params(compiled.sql) == "metadata->>'a' = $1 AND metadata->>'b' IN ($2, $3)"
    assert pg_params(compiled.sql, offset=4).endswith("IN ($5, $6)")


def test_prefix_escapes_like_wildcards():
    """``%``, ``_`` and backslashes in a prefix match themselves, not any character."""
    compiled = compile_filter({"path": {"$prefix": "src_100%\\"}})

    assert compiled.sql == "json_extract(metadata, '$.path') LIKE ? ESCAPE '\\'"
    assert compiled.params == ["src\\_100\\%\\\\%"]
    assert _sqlite_matches({"path": {"$prefix": "src_"}}, {"path": "srcX/app.py"}) is False
    assert _sqlite_matches({"path": {"$prefix": "100%"}}, {"path": "100 apples"}) is False
    assert _sqlite_matches({"path": {"$prefix": "src_"}}, {"path": "src_app.py"}) is True


def test_ne_scenario():
    """``$ne`` matches a different value and rejects the same one."""
    f = {"status": {"$ne": "deleted"}}

    assert matches_filter(f, {"status": "active"}) is True
    assert matches_filter(f, {"status": "deleted"}) is False


def test_missing_metadata_only_matches_empty_filter():
    assert matches_filter({"a": {"$exists": False}}, None) is False
    assert matches_filter({}, None) is True


def test_type_mismatches_return_false():
    """Ordering and prefix operators never raise on values of the wrong type."""
    assert matches_filter({"n": {"$gt": 1}}, {"n": "10"}) is False
    assert matches_filter({"n": {"$lte": 1}}, {"n": [1]}) is False
    assert matches_filter({"p": {"$prefix": "ab"}}, {"p": 123}) is False
    assert matches_filter({"flag": 1}, {"flag": True}) is False
    assert matches_filter({"flag": True}, {"flag": True}) is True


def test_in_and_exists():
    assert matches_filter({"lang": {"$in": ["py", "ts"]}}, {"lang": "ts"})
    assert not matches_filter({"lang": {"$in": ["py", "ts"]}}, {"lang": "go"})
    assert matches_filter({"x": {"$exists": True}}, {"x": 0})
    assert matches_filter({"x": {"$exists": False}}, {"y": 0})
    assert not matches_filter({"x": {"$exists": False}}, {"x": 0})


@pytest.mark.parametrize(
    "bad",
    [
        {"a": {}},
        {"a": {"$eq": 1, "$ne": 2}},
        {"a": {"$regex": "x"}},
        {"a": {"$in": "abc"}},
        {"a; DROP TABLE docs": 1},
    ],
)
def test_malformed_filters_raise(bad):
    with pytest.raises(FilterError):
        compile_filter(bad)
    if "a" in bad:
        with pytest.raises(ValueError):
            matches_filter(bad, {"a": 1})


RECORDS = [
    {"status": "active", "score": 7, "path": "src/app.py", "lang": "py"},
    {"status": "deleted", "score": 2, "path": "docs/index.md"},
    {"status": "draft", "path": "src/util.ts", "lang": "ts"},
    {"path": "srcX/app.py", "note": "100 apples"},
    {"path": "src_helpers/io.py", "note": "100% done"},
    {"path": "C:\\temp\\log.txt", "note": "a_b"},
    {},
]

FILTERS = [
    {"status": "active"},
    {"status": {"$ne": "deleted"}},
    {"score": {"$gt": 5}},
    {"score": {"$gte": 2}, "status": {"$in": ["active", "deleted"]}},
    {"score": {"$lt": 7}},
    {"path": {"$prefix": "src/"}},
    {"lang": {"$exists": True}},
    {"lang": {"$exists": False}},
    {"lang": {"$in": ["py", "go"]}, "path": {"$prefix": "src/"}},
    {"score": {"$lte": 7}, "lang": "ts"},
    {"path": {"$prefix": "src_"}},
    {"note": {"$prefix": "100%"}},
    {"note": {"$prefix": "a_"}},
    {"path": {"$prefix": "C:\\temp\\"}},
]


@pytest.mark.parametrize("filter", FILTERS)
def test_compile_and_match_agree(filter):
    """The in-memory matcher agrees with the compiled SQL on every record."""
    for record in RECORDS:
        assert matches_filter(filter, record) == _sqlite_matches(filter, record), (filter, record)
