"""SchemaRegistry: an immutable view over column metadata for one pass."""

from __future__ import annotations

from typing import Iterable

from progtable.contracts.responses import SortKey
from progtable.contracts.schema import ColumnDefinition


class SchemaRegistry:
    """Holds column definitions and exposes the live table shape.

    The registry is built once from a metadata snapshot and never mutated;
    column edits produce a new column list and a new registry.
    """

    def __init__(self, columns: Iterable[ColumnDefinition]) -> None:
        self._all: tuple[ColumnDefinition, ...] = tuple(columns)
        self._by_key: dict[str, ColumnDefinition] = {c.key: c for c in self._all}
        self._live: tuple[ColumnDefinition, ...] = tuple(
            sorted(
                (c for c in self._by_key.values() if not c.archived),
                key=lambda c: (c.position, c.key),
            )
        )
        self._live_by_key: dict[str, ColumnDefinition] = {c.key: c for c in self._live}

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "SchemaRegistry":
        return cls(ColumnDefinition.model_validate(r) for r in records)

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, key: object) -> bool:
        return key in self._live_by_key

    @property
    def columns(self) -> tuple[ColumnDefinition, ...]:
        """Every definition, archived included, in snapshot order."""
        return self._all

    def live_columns(self) -> list[ColumnDefinition]:
        """Non-archived columns ordered by position, ties by key."""
        return list(self._live)

    def visible_columns(self) -> list[ColumnDefinition]:
        return [c for c in self._live if c.visible]

    def computed_columns(self) -> list[ColumnDefinition]:
        return [c for c in self._live if c.is_computed]

    def sort_spec(self) -> list[SortKey]:
        """Sort axes of live columns, by sortPosition then key."""
        sorted_cols = sorted(
            (c for c in self._live if c.sort != 0),
            key=lambda c: (c.sort_position, c.key),
        )
        return [
            SortKey(key=c.key, direction="asc" if c.sort > 0 else "desc")
            for c in sorted_cols
        ]

    def resolve(self, key: str) -> ColumnDefinition | None:
        """Look up a live column. Archived and unknown keys resolve to None."""
        return self._live_by_key.get(key)

    def get(self, key: str, *, include_archived: bool = True) -> ColumnDefinition | None:
        if include_archived:
            return self._by_key.get(key)
        return self.resolve(key)

    def column_type(self, key: str) -> str | None:
        col = self.resolve(key)
        return col.type if col else None

    def label(self, key: str) -> str:
        col = self._by_key.get(key)
        return col.display_label if col else key
