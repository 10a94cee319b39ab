"""Tests for the openpyxl exporter and row importer."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

import openpyxl
import pytest
from openpyxl import Workbook

from progtable.adapters.openpyxl_export import (
    export_workbook,
    import_rows,
    is_bold,
    to_argb,
)
from progtable.contracts.common import WARN_STYLE_COLOR, SnapshotCorruptError
from progtable.engine.context import Snapshot
from progtable.engine.render import render_table
from progtable.observe.events import WarningLog


@pytest.mark.parametrize("color, expected", [
    ("#dcfce7", "FFDCFCE7"),
    ("#abc", "FFAABBCC"),
    (" #166534 ", "FF166534"),
    ("red", None),
    ("rgb(1,2,3)", None),
    ("", None),
    (None, None),
])
def test_to_argb(color, expected):
    assert to_argb(color) == expected


@pytest.mark.parametrize("weight, expected", [
    ("bold", True), ("700", True), ("600", True), ("500", False), ("normal", False), (None, False),
])
def test_is_bold(weight, expected):
    assert is_bold(weight) is expected


class TestExport:
    def test_writes_headers_values_and_fills(self, snapshot, settings, tmp_path: Path):
        result = render_table(snapshot, settings=settings)
        out = tmp_path / "programs.xlsx"
        info = export_workbook(result, snapshot.registry, out)
        assert info["rows"] == 3
        assert info["styled_cells"] == 2 * len(result.columns)

        wb = openpyxl.load_workbook(out)
        ws = wb["Programs"]
        headers = [c.value for c in ws[1]]
        assert headers[:2] == ["Name", "Count"]
        assert "notes" not in headers
        total_col = result.columns.index("totalTime") + 1
        assert [ws.cell(row=r, column=total_col).value for r in (2, 3, 4)] == [14, 1, 24]

        first = ws.cell(row=2, column=1)
        assert first.fill.start_color.rgb == "FFDCFCE7"
        assert first.font.color.rgb == "FF166534"
        assert ws.cell(row=4, column=1).fill.fill_type is None
        assert ws.freeze_panes == "A2"
        wb.close()

    def test_dates_and_files(self, snapshot, settings, tmp_path: Path):
        result = render_table(snapshot, settings=settings)
        out = tmp_path / "programs.xlsx"
        export_workbook(result, snapshot.registry, out)
        ws = openpyxl.load_workbook(out)["Programs"]
        deadline = ws.cell(row=2, column=result.columns.index("deadlineAt") + 1).value
        assert deadline.date() == date(2024, 1, 10)
        done = ws.cell(row=2, column=result.columns.index("doneAt") + 1).value
        assert done == datetime(2024, 1, 9, 12)
        assert ws.cell(row=2, column=result.columns.index("file") + 1).value == "bracket.nc"

    def test_unsupported_color_warns(self, tmp_path: Path):
        snap = Snapshot.from_document({
            "columns": [{"key": "name"}],
            "rules": [{"id": 5, "name": "named color", "backgroundColor": "tomato"}],
            "rows": [{"name": "a"}, {"name": "b"}],
        })
        warnings = WarningLog()
        export_workbook(render_table(snap), snap.registry, tmp_path / "x.xlsx", warnings=warnings)
        assert warnings.codes() == [WARN_STYLE_COLOR]
        assert warnings.items[0].path == "rules.5.colors"

    def test_numeric_width(self, tmp_path: Path):
        snap = Snapshot.from_document({
            "columns": [{"key": "name", "width": 140}],
            "rows": [{"name": "a"}],
        })
        out = tmp_path / "w.xlsx"
        export_workbook(render_table(snap), snap.registry, out)
        ws = openpyxl.load_workbook(out).active
        assert ws.column_dimensions["A"].width == pytest.approx(20.0)


class TestImport:
    def _workbook(self, path: Path, rows: list[list]) -> Path:
        wb = Workbook()
        ws = wb.active
        ws.title = "Data"
        for row in rows:
            ws.append(row)
        wb.save(path)
        return path

    def test_headers_by_label_or_key(self, registry, tmp_path: Path):
        path = self._workbook(tmp_path / "in.xlsx", [
            ["Name", "count", "Total time", "Deadline", "Unknown"],
            ["Arm", 3, 99, datetime(2024, 5, 1), "x"],
            [None, None, None, None, None],
            ["Gear", None, None, None, None],
        ])
        rows, ignored = import_rows(path, registry=registry)
        assert rows == [
            {"name": "Arm", "count": 3, "deadlineAt": "2024-05-01"},
            {"name": "Gear", "count": None, "deadlineAt": None},
        ]
        assert ignored == ["Total time", "Unknown"]

    def test_round_trip_through_export(self, snapshot, settings, tmp_path: Path):
        out = tmp_path / "rt.xlsx"
        export_workbook(render_table(snapshot, settings=settings), snapshot.registry, out)
        rows, _ = import_rows(out, registry=snapshot.registry)
        assert [r["name"] for r in rows] == ["Bracket", "Housing", "Shaft"]
        assert rows[0]["count"] == 5
        assert "totalTime" not in rows[0]

    def test_without_registry_keeps_headers(self, tmp_path: Path):
        path = self._workbook(tmp_path / "in.xlsx", [["a", "b"], [1, 2]])
        rows, ignored = import_rows(path)
        assert rows == [{"a": 1, "b": 2}]
        assert ignored == []

    def test_missing_sheet(self, tmp_path: Path):
        path = self._workbook(tmp_path / "in.xlsx", [["a"], [1]])
        with pytest.raises(ValueError):
            import_rows(path, sheet="Nope")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            import_rows(tmp_path / "nope.xlsx")

    def test_not_a_workbook(self, tmp_path: Path):
        path = tmp_path / "bad.xlsx"
        path.write_text("not a zip")
        with pytest.raises(SnapshotCorruptError):
            import_rows(path)
