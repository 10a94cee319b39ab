"""Persisted column filter state and quick search over materialized rows.

Filter strings are stored on the column record:

==================  =========================================
``empty:``          value is empty
``notEmpty:``       value is present
``between:a:b``     ``a <= value <= b``
``>=:v`` ``<=:v``   comparisons (also ``>:``, ``<:``, ``!=:``, ``=:``)
anything else       case-insensitive substring match
==================  =========================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from progtable.contracts.schema import TEMPORAL_TYPES
from progtable.engine.registry import SchemaRegistry
from progtable.engine.values import compare, file_name, is_empty, to_date, to_text

_PREFIXES = (
    (">=:", "gte"),
    ("<=:", "lte"),
    ("!=:", "neq"),
    (">:", "gt"),
    ("<:", "lt"),
    ("=:", "eq"),
)


@dataclass(frozen=True)
class ColumnFilter:
    op: str
    args: tuple[str, ...] = ()


def parse_filter(text: str | None) -> ColumnFilter | None:
    """Parse a stored filter string. Malformed ``between`` filters are ignored."""
    if not text:
        return None
    if text == "empty:":
        return ColumnFilter("empty")
    if text == "notEmpty:":
        return ColumnFilter("notEmpty")
    if text.startswith("between:"):
        values = text[len("between:"):].split(":")
        if len(values) != 2:
            return None
        return ColumnFilter("between", tuple(values))
    for prefix, op in _PREFIXES:
        if text.startswith(prefix):
            return ColumnFilter(op, (text[len(prefix):],))
    return ColumnFilter("like", (text,))


def _search_text(value: Any, column_type: str) -> str | None:
    if column_type in TEMPORAL_TYPES:
        day = to_date(value)
        return day.isoformat() if day else to_text(value)
    return to_text(value, column_type)


def matches_filter(value: Any, flt: ColumnFilter, column_type: str = "string") -> bool:
    blank = is_empty(file_name(value)) if column_type == "file" else is_empty(value)
    if flt.op == "empty":
        return blank
    if flt.op == "notEmpty":
        return not blank
    if flt.op == "like":
        haystack = _search_text(value, column_type)
        return haystack is not None and flt.args[0].casefold() in haystack.casefold()
    if flt.op == "between":
        low = compare(value, flt.args[0], column_type)
        high = compare(value, flt.args[1], column_type)
        return low is not None and high is not None and low >= 0 and high <= 0

    result = compare(value, flt.args[0], column_type)
    if result is None:
        return False
    return {
        "eq": result == 0,
        "neq": result != 0,
        "gt": result > 0,
        "gte": result >= 0,
        "lt": result < 0,
        "lte": result <= 0,
    }[flt.op]


def active_filters(registry: SchemaRegistry) -> list[tuple[str, str, ColumnFilter]]:
    """``(key, type, filter)`` for every live column carrying a usable filter."""
    active = []
    for col in registry.live_columns():
        flt = parse_filter(col.filter)
        if flt is not None:
            active.append((col.key, col.type, flt))
    return active


def passes_filters(
    row: Mapping[str, Any], active: Iterable[tuple[str, str, ColumnFilter]],
) -> bool:
    return all(matches_filter(row.get(key), flt, ctype) for key, ctype, flt in active)


def apply_filters(
    rows: Iterable[Mapping[str, Any]], registry: SchemaRegistry,
) -> list[Mapping[str, Any]]:
    """Keep rows that pass every live column's filter."""
    active = active_filters(registry)
    if not active:
        return list(rows)
    return [row for row in rows if passes_filters(row, active)]


def searchable_columns(registry: SchemaRegistry) -> list[tuple[str, str]]:
    return [
        (c.key, c.type) for c in registry.visible_columns()
        if not c.is_computed and c.type != ""
    ]


def matches_search(
    row: Mapping[str, Any], searchable: Iterable[tuple[str, str]], term: str,
) -> bool:
    if not term:
        return True
    needle = term.casefold()
    for key, ctype in searchable:
        text = _search_text(row.get(key), ctype)
        if text is not None and needle in text.casefold():
            return True
    return False


def quick_search(
    rows: Iterable[Mapping[str, Any]], registry: SchemaRegistry, term: str,
) -> list[Mapping[str, Any]]:
    """Keep rows where any visible stored column contains ``term``."""
    if not term:
        return list(rows)
    searchable = searchable_columns(registry)
    return [row for row in rows if matches_search(row, searchable, term)]
