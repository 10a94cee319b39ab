"""Settings: load progtable.yaml evaluation options."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import yaml

from progtable.engine.conditions import DEFAULT_MAX_DEPTH, MAX_DEPTH_LIMIT
from progtable.io.fileops import read_text_safe

SETTINGS_FILENAME = "progtable.yaml"


def _parse_today(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValueError(f"Invalid 'today' setting {value!r}: expected YYYY-MM-DD") from e


class Settings:
    """Evaluation options for a rendering pass."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        data = data or {}
        self.max_condition_depth: int = int(data.get("max_condition_depth", DEFAULT_MAX_DEPTH))
        self.workers: int = int(data.get("workers", 0))
        self.today: date | None = _parse_today(data.get("today"))
        self.apply_filters: bool = bool(data.get("apply_filters", True))
        if not 1 <= self.max_condition_depth <= MAX_DEPTH_LIMIT:
            raise ValueError(f"max_condition_depth must be between 1 and {MAX_DEPTH_LIMIT}")
        if self.workers < 0:
            raise ValueError("workers must not be negative")

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        text = read_text_safe(path)
        data = yaml.safe_load(text) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        return cls(data)

    @classmethod
    def load_from_dir(cls, directory: str | Path) -> "Settings":
        """Load progtable.yaml from a directory, or defaults when absent."""
        path = Path(directory) / SETTINGS_FILENAME
        if path.exists():
            return cls.load(path)
        return cls()

    def override(self, **values: Any) -> "Settings":
        """Copy with the non-None values replaced."""
        data = self.to_dict()
        data.update({k: v for k, v in values.items() if v is not None})
        return Settings(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_condition_depth": self.max_condition_depth,
            "workers": self.workers,
            "today": self.today.isoformat() if self.today else None,
            "apply_filters": self.apply_filters,
        }
