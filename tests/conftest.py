"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

import pytest
import yaml

from progtable.config import Settings
from progtable.engine.context import Snapshot

TODAY = date(2024, 2, 1)

TOTAL_TIME_EXPRESSION = (
    "(COALESCE(count, 0) * COALESCE(machineWorking, 0))"
    " + COALESCE(programing, 0) + COALESCE(preparing, 0)"
)


def program_columns() -> list[dict[str, Any]]:
    """Column metadata for the seeded programs table."""
    return [
        {"key": "name", "type": "string", "position": 0, "label": "Name"},
        {"key": "count", "type": "number", "position": 1, "label": "Count"},
        {"key": "machineWorking", "type": "number", "position": 2, "label": "Machine working"},
        {"key": "programing", "type": "number", "position": 3, "label": "Programming"},
        {"key": "preparing", "type": "number", "position": 4, "label": "Preparing"},
        {
            "key": "totalTime", "type": "computed", "position": 5, "label": "Total time",
            "computeExpression": TOTAL_TIME_EXPRESSION,
        },
        {"key": "deadlineAt", "type": "date", "position": 6, "label": "Deadline"},
        {"key": "doneAt", "type": "datetime", "position": 7, "label": "Done"},
        {"key": "file", "type": "file", "position": 8, "label": "Program file"},
        {"key": "notes", "type": "string", "position": 9, "visible": False},
        {"key": "legacy", "type": "string", "position": 10, "archived": True},
    ]


def program_rules() -> list[dict[str, Any]]:
    """The two seeded row rules."""
    return [
        {
            "id": 1,
            "name": "Completed items",
            "target": "row",
            "conditionTree": {
                "logic": "AND",
                "conditions": [{"column": "doneAt", "operator": "notEmpty"}],
            },
            "backgroundColor": "#dcfce7",
            "textColor": "#166534",
            "enabled": True,
            "priority": 1,
        },
        {
            "id": 2,
            "name": "Overdue items (not done)",
            "target": "row",
            "conditionTree": json.dumps({
                "logic": "AND",
                "conditions": [
                    {"column": "deadlineAt", "operator": "lt", "value": "today"},
                    {"column": "doneAt", "operator": "empty"},
                ],
            }),
            "backgroundColor": "#fee2e2",
            "textColor": "#991b1b",
            "enabled": True,
            "priority": 2,
        },
    ]


def program_rows() -> list[dict[str, Any]]:
    return [
        {
            "name": "Bracket", "count": 5, "machineWorking": 2, "programing": 3, "preparing": 1,
            "deadlineAt": "2024-01-10", "doneAt": "2024-01-09T12:00:00Z",
            "file": {"name": "bracket.nc", "path": "/nc/bracket.nc"},
            "notes": "rush order",
        },
        {
            "name": "Housing", "count": None, "machineWorking": 2, "programing": None, "preparing": 1,
            "deadlineAt": "2024-01-05", "doneAt": None, "file": None,
        },
        {
            "name": "Shaft", "count": 2, "machineWorking": 10, "programing": 4, "preparing": 0,
            "deadlineAt": "2024-03-01", "doneAt": "", "file": '{"name": "shaft.nc"}',
        },
    ]


def program_document() -> dict[str, Any]:
    return {"columns": program_columns(), "rules": program_rules(), "rows": program_rows()}


@pytest.fixture()
def snapshot() -> Snapshot:
    return Snapshot.from_document(program_document())


@pytest.fixture()
def registry(snapshot: Snapshot):
    return snapshot.registry


@pytest.fixture()
def settings() -> Settings:
    return Settings({"today": TODAY.isoformat()})


@pytest.fixture()
def snapshot_file(tmp_path: Path) -> Path:
    """Snapshot JSON with a progtable.yaml pinning today's date."""
    path = tmp_path / "programs.json"
    path.write_text(json.dumps(program_document(), indent=2))
    (tmp_path / "progtable.yaml").write_text(yaml.safe_dump({"today": TODAY.isoformat()}))
    return path


@pytest.fixture()
def yaml_snapshot_file(tmp_path: Path) -> Path:
    path = tmp_path / "programs.yaml"
    path.write_text(yaml.safe_dump(program_document(), sort_keys=False))
    return path


@pytest.fixture()
def make_document():
    """Factory for fresh, independently mutable snapshot documents."""
    return program_document
