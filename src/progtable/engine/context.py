"""Snapshot loading: column metadata, formatting rules and rows for one pass."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml
from pydantic import ValidationError

from progtable.contracts.common import SnapshotCorruptError, Target
from progtable.contracts.rules import FormattingRule
from progtable.contracts.schema import ColumnDefinition
from progtable.engine.registry import SchemaRegistry
from progtable.io.fileops import atomic_write, fingerprint, read_text_safe

YAML_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class Snapshot:
    """Immutable columns/rules/rows triple that a rendering pass reads."""

    columns: tuple[ColumnDefinition, ...] = ()
    rules: tuple[FormattingRule, ...] = ()
    rows: tuple[Mapping[str, Any], ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Snapshot":
        """Build from a decoded snapshot document (camelCase records)."""
        sections = {}
        for name in ("columns", "rules", "rows"):
            value = data.get(name)
            if value is None:
                value = []
            if not isinstance(value, list):
                raise SnapshotCorruptError(f"Snapshot '{name}' must be an array")
            sections[name] = value
        columns, rules, rows = sections["columns"], sections["rules"], sections["rows"]
        if not all(isinstance(r, dict) for r in rows):
            raise SnapshotCorruptError("Snapshot rows must be objects")
        try:
            return cls(
                columns=tuple(ColumnDefinition.model_validate(c) for c in columns),
                rules=tuple(FormattingRule.model_validate(r) for r in rules),
                rows=tuple(rows),
                extra={k: v for k, v in data.items() if k not in ("columns", "rules", "rows")},
            )
        except ValidationError as e:
            raise SnapshotCorruptError(f"Invalid snapshot record: {e}") from e

    @cached_property
    def registry(self) -> SchemaRegistry:
        return SchemaRegistry(self.columns)

    def with_columns(self, columns: Iterable[ColumnDefinition]) -> "Snapshot":
        return Snapshot(columns=tuple(columns), rules=self.rules, rows=self.rows, extra=self.extra)

    def with_rows(self, rows: Iterable[Mapping[str, Any]]) -> "Snapshot":
        return Snapshot(columns=self.columns, rules=self.rules, rows=tuple(rows), extra=self.extra)

    def to_document(self) -> dict[str, Any]:
        return {
            **self.extra,
            "columns": [c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in self.columns],
            "rules": [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in self.rules],
            "rows": [dict(r) for r in self.rows],
        }


def _decode(path: Path, text: str) -> Any:
    if path.suffix.lower() in YAML_SUFFIXES:
        return yaml.safe_load(text)
    return json.loads(text)


def _encode(path: Path, document: dict[str, Any]) -> bytes:
    if path.suffix.lower() in YAML_SUFFIXES:
        return yaml.safe_dump(document, sort_keys=False, allow_unicode=True).encode("utf-8")
    return (json.dumps(document, indent=2, ensure_ascii=False, default=str) + "\n").encode("utf-8")


class SnapshotContext:
    """Wraps a snapshot file with its fingerprint and helper methods."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).resolve()
        if not self.path.exists():
            raise FileNotFoundError(f"Snapshot not found: {self.path}")
        self.fp = fingerprint(self.path)
        try:
            data = _decode(self.path, read_text_safe(self.path))
        except (ValueError, yaml.YAMLError) as e:
            raise SnapshotCorruptError(f"Cannot parse snapshot {self.path}: {e}") from e
        except RecursionError as e:
            raise SnapshotCorruptError(f"Cannot parse snapshot {self.path}: nesting is too deep") from e
        if not isinstance(data, dict):
            raise SnapshotCorruptError(f"Snapshot {self.path} must contain an object")
        self.snapshot = Snapshot.from_document(data)

    @property
    def registry(self) -> SchemaRegistry:
        return self.snapshot.registry

    def target(self, **overrides: Any) -> Target:
        t = Target(file=str(self.path))
        for k, v in overrides.items():
            if v is not None:
                setattr(t, k, v)
        return t

    def save(self, snapshot: Snapshot, path: str | Path | None = None) -> str:
        """Atomically write ``snapshot``; returns the new fingerprint."""
        dest = Path(path) if path else self.path
        atomic_write(dest, _encode(dest, snapshot.to_document()))
        self.snapshot = snapshot
        if dest.resolve() == self.path:
            self.fp = fingerprint(self.path)
        return fingerprint(dest)
