"""Column view-state edits: sorting, visibility, filters.

Every function takes the current column list and returns a new one; the
input definitions are never modified, so a registry built from the old list
stays valid for a pass already in flight.
"""

from __future__ import annotations

from typing import Sequence

from progtable.contracts.common import ChangeRecord
from progtable.contracts.schema import ColumnDefinition

_VIEW_FIELDS = ("sort", "sort_position", "visible", "filter")


def _index(columns: Sequence[ColumnDefinition], key: str) -> int:
    for i, col in enumerate(columns):
        if col.key == key:
            return i
    raise KeyError(f"Column not found: {key}")


def _replace(
    columns: Sequence[ColumnDefinition], key: str, **update: object,
) -> list[ColumnDefinition]:
    new = list(columns)
    i = _index(new, key)
    new[i] = new[i].model_copy(update=update)
    return new


def last_sort_position(columns: Sequence[ColumnDefinition]) -> int:
    return max((c.sort_position for c in columns if c.sort != 0), default=0)


def remove_sort(columns: Sequence[ColumnDefinition], key: str) -> list[ColumnDefinition]:
    """Drop a column from the sort axis and close the gap it leaves."""
    target = columns[_index(columns, key)]
    if target.sort == 0:
        return list(columns)
    removed = target.sort_position
    new: list[ColumnDefinition] = []
    for col in columns:
        if col.key == key:
            col = col.model_copy(update={"sort": 0, "sort_position": 0})
        elif col.sort != 0 and col.sort_position > removed:
            col = col.model_copy(update={"sort_position": col.sort_position - 1})
        new.append(col)
    return new


def add_sort(columns: Sequence[ColumnDefinition], key: str) -> list[ColumnDefinition]:
    """Sort ascending by ``key`` as the last sort axis."""
    new = remove_sort(columns, key)
    return _replace(new, key, sort=1, sort_position=last_sort_position(new) + 1)


def toggle_sort(columns: Sequence[ColumnDefinition], key: str) -> list[ColumnDefinition]:
    """Cycle unsorted -> ascending -> descending -> unsorted."""
    col = columns[_index(columns, key)]
    if col.sort == 0:
        return add_sort(columns, key)
    if col.sort > 0:
        return _replace(columns, key, sort=-1)
    return remove_sort(columns, key)


def set_visible(
    columns: Sequence[ColumnDefinition], key: str, visible: bool,
) -> list[ColumnDefinition]:
    return _replace(columns, key, visible=visible)


def set_filter(
    columns: Sequence[ColumnDefinition], key: str, filter_state: str | None,
) -> list[ColumnDefinition]:
    return _replace(columns, key, filter=filter_state or None)


def diff_columns(
    before: Sequence[ColumnDefinition], after: Sequence[ColumnDefinition],
) -> list[ChangeRecord]:
    """Change records for view fields that differ between two column lists."""
    old = {c.key: c for c in before}
    changes: list[ChangeRecord] = []
    for col in after:
        prev = old.get(col.key)
        if prev is None:
            continue
        b = {f: getattr(prev, f) for f in _VIEW_FIELDS if getattr(prev, f) != getattr(col, f)}
        if b:
            changes.append(ChangeRecord(
                type="column.update",
                target=col.key,
                before=b,
                after={f: getattr(col, f) for f in b},
            ))
    return changes
