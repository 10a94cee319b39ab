"""Tests for persisted column filters and quick search."""

from __future__ import annotations

import pytest

from progtable.engine.filters import (
    ColumnFilter,
    apply_filters,
    matches_filter,
    parse_filter,
    quick_search,
)
from progtable.engine.registry import SchemaRegistry


@pytest.mark.parametrize("text, expected", [
    (None, None),
    ("", None),
    ("empty:", ColumnFilter("empty")),
    ("notEmpty:", ColumnFilter("notEmpty")),
    ("between:1:5", ColumnFilter("between", ("1", "5"))),
    ("between:1", None),
    (">=:3", ColumnFilter("gte", ("3",))),
    ("<=:3", ColumnFilter("lte", ("3",))),
    (">:3", ColumnFilter("gt", ("3",))),
    ("<:3", ColumnFilter("lt", ("3",))),
    ("!=:3", ColumnFilter("neq", ("3",))),
    ("=:3", ColumnFilter("eq", ("3",))),
    ("brack", ColumnFilter("like", ("brack",))),
])
def test_parse_filter(text, expected):
    assert parse_filter(text) == expected


class TestMatchesFilter:
    def test_like_is_case_insensitive(self):
        assert matches_filter("Bracket", parse_filter("BRACK"))
        assert not matches_filter(None, parse_filter("x"))

    def test_numeric_comparisons(self):
        assert matches_filter(5, parse_filter(">=:5"), "number")
        assert not matches_filter(4, parse_filter(">=:5"), "number")
        assert matches_filter("10", parse_filter(">:9"), "number")

    def test_between_inclusive(self):
        flt = parse_filter("between:2:4")
        assert [matches_filter(v, flt, "number") for v in (1, 2, 3, 4, 5)] == [False, True, True, True, False]

    def test_between_dates(self):
        flt = parse_filter("between:2024-01-01:2024-01-31")
        assert matches_filter("2024-01-15", flt, "date")
        assert not matches_filter("2024-02-01", flt, "date")

    def test_empty_filters(self):
        assert matches_filter("", parse_filter("empty:"))
        assert matches_filter(0, parse_filter("notEmpty:"), "number")

    def test_file_column_uses_name(self):
        assert matches_filter({"name": "bracket.nc"}, parse_filter("bracket"), "file")
        assert matches_filter({"path": "/x"}, parse_filter("empty:"), "file")

    def test_date_like_matches_iso_day(self):
        assert matches_filter("2024-01-09T12:00:00Z", parse_filter("2024-01-09"), "datetime")

    def test_incomparable_is_excluded(self):
        assert not matches_filter("abc", parse_filter(">:1"), "number")


def test_apply_filters(registry):
    registry = SchemaRegistry([
        c.model_copy(update={"filter": ">=:2"}) if c.key == "count" else c
        for c in registry.columns
    ])
    rows = [{"count": 1}, {"count": 2}, {"count": None}, {"count": 7}]
    assert apply_filters(rows, registry) == [{"count": 2}, {"count": 7}]


def test_apply_filters_ignores_archived_columns(registry):
    registry = SchemaRegistry([
        c.model_copy(update={"filter": "empty:"}) if c.key == "legacy" else c
        for c in registry.columns
    ])
    rows = [{"legacy": "x"}]
    assert apply_filters(rows, registry) == rows


def test_quick_search(registry):
    rows = [
        {"name": "Bracket", "notes": "hidden match"},
        {"name": "Shaft", "file": {"name": "shaft.nc"}},
        {"name": "Housing", "totalTime": 14},
    ]
    assert quick_search(rows, registry, "SHAFT") == [rows[1]]
    assert quick_search(rows, registry, "hidden") == []
    assert quick_search(rows, registry, "14") == []
    assert quick_search(rows, registry, "") == rows
