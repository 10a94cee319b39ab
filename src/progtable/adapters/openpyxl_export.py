"""openpyxl-based export of rendered tables and import of rows from workbooks."""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from progtable.contracts.common import WARN_STYLE_COLOR, SnapshotCorruptError
from progtable.contracts.responses import RenderResult
from progtable.contracts.rules import Style
from progtable.engine.registry import SchemaRegistry
from progtable.engine.values import file_name, is_empty, to_date, to_datetime
from progtable.io.fileops import atomic_write
from progtable.observe.events import WarningLog

DEFAULT_SHEET = "Programs"
_HEX_COLOR = re.compile(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_PX_PER_CHAR = 7
_MAX_AUTO_WIDTH = 60


# ---------------------------------------------------------------------------
# style conversion
# ---------------------------------------------------------------------------
def to_argb(color: str | None) -> str | None:
    """Convert ``#rgb`` / ``#rrggbb`` to openpyxl's ``FFRRGGBB``; None otherwise."""
    if not color:
        return None
    m = _HEX_COLOR.match(color.strip())
    if not m:
        return None
    digits = m.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return "FF" + digits.upper()


def is_bold(font_weight: str | None) -> bool:
    if not font_weight:
        return False
    weight = font_weight.strip().lower()
    if weight in ("bold", "bolder"):
        return True
    return weight.isdigit() and int(weight) >= 600


def _apply_style(cell: Any, style: Style, warnings: WarningLog) -> None:
    if style.is_empty:
        return
    path = f"rules.{style.rule_id}.colors" if style.rule_id is not None else None
    for color in (style.background_color, style.text_color):
        if color and to_argb(color) is None:
            warnings.add(
                WARN_STYLE_COLOR,
                f"Color {color!r} of rule '{style.rule_name}' is not #rgb/#rrggbb; not exported",
                path,
            )
    fill = to_argb(style.background_color)
    if fill:
        cell.fill = PatternFill(fill_type="solid", start_color=fill, end_color=fill)
    text = to_argb(style.text_color)
    bold = is_bold(style.font_weight)
    if text or bold:
        cell.font = Font(color=text, bold=bold)


# ---------------------------------------------------------------------------
# value conversion
# ---------------------------------------------------------------------------
def to_cell_value(value: Any, column_type: str) -> Any:
    """Map a stored value to something openpyxl can write."""
    if is_empty(value):
        return None
    if column_type == "file":
        return file_name(value)
    if column_type == "date":
        return to_date(value) or str(value)
    if column_type == "datetime":
        return to_datetime(value) or str(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return value


def from_cell_value(value: Any, column_type: str | None) -> Any:
    """Map a cell read back from a workbook to a JSON-friendly stored value."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    if isinstance(value, datetime):
        if column_type == "date":
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def _column_width(ws: Worksheet, idx: int, width: Any) -> float:
    if isinstance(width, (int, float)) and not isinstance(width, bool):
        return max(4.0, float(width) / _PX_PER_CHAR)
    longest = 0
    for (val,) in ws.iter_rows(min_col=idx, max_col=idx, values_only=True):
        if val is not None:
            longest = max(longest, len(str(val)))
    return float(min(_MAX_AUTO_WIDTH, longest + 2))


# ---------------------------------------------------------------------------
# export
# ---------------------------------------------------------------------------
def export_workbook(
    result: RenderResult,
    registry: SchemaRegistry,
    path: str | Path,
    *,
    sheet: str = DEFAULT_SHEET,
    warnings: WarningLog | None = None,
) -> dict[str, Any]:
    """Write the rendered table to an .xlsx file with its resolved styles."""
    warnings = warnings if warnings is not None else WarningLog()
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet

    for c, key in enumerate(result.columns, start=1):
        ws.cell(row=1, column=c, value=result.labels.get(key, key)).font = Font(bold=True)

    styled = 0
    for r, row in enumerate(result.rows, start=2):
        for c, key in enumerate(result.columns, start=1):
            ctype = registry.column_type(key) or "string"
            cell = ws.cell(row=r, column=c, value=to_cell_value(row.values.get(key), ctype))
            style = row.cell_styles.get(key, row.row_style)
            if not style.is_empty:
                styled += 1
                _apply_style(cell, style, warnings)

    for c, key in enumerate(result.columns, start=1):
        col = registry.resolve(key)
        width = col.width if col else "auto"
        ws.column_dimensions[get_column_letter(c)].width = _column_width(ws, c, width)
    ws.freeze_panes = "A2"

    buf = BytesIO()
    wb.save(buf)
    atomic_write(path, buf.getvalue())
    return {
        "path": str(path),
        "sheet": sheet,
        "rows": len(result.rows),
        "columns": len(result.columns),
        "styled_cells": styled,
    }


# ---------------------------------------------------------------------------
# import
# ---------------------------------------------------------------------------
def _header_map(headers: list[Any], registry: SchemaRegistry | None) -> tuple[dict[int, str], list[str]]:
    """Map header cells to column keys. Returns ``(index -> key, ignored)``."""
    by_name: dict[str, str] = {}
    if registry is not None:
        for col in registry.live_columns():
            if col.is_computed or col.type == "":
                continue
            by_name.setdefault(col.key.casefold(), col.key)
            by_name.setdefault(col.display_label.casefold(), col.key)

    mapping: dict[int, str] = {}
    ignored: list[str] = []
    for i, header in enumerate(headers):
        if header is None or str(header).strip() == "":
            continue
        name = str(header).strip()
        if registry is None:
            mapping[i] = name
        elif name.casefold() in by_name:
            mapping[i] = by_name[name.casefold()]
        else:
            ignored.append(name)
    return mapping, ignored


def import_rows(
    path: str | Path,
    *,
    sheet: str | None = None,
    registry: SchemaRegistry | None = None,
) -> tuple[list[dict[str, Any]], list[str]]:
    """Read data rows from a worksheet whose first row holds headers.

    Headers match column keys or labels case-insensitively. Computed columns
    and unknown headers are skipped. Returns ``(rows, ignored_headers)``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {path}")
    try:
        wb = openpyxl.load_workbook(str(path), read_only=True, data_only=True)
    except Exception as e:
        raise SnapshotCorruptError(f"Cannot open workbook {path}: {e}") from e

    try:
        if sheet is not None:
            if sheet not in wb.sheetnames:
                raise ValueError(f"Sheet not found: {sheet}")
            ws = wb[sheet]
        else:
            ws = wb.worksheets[0]

        it = ws.iter_rows(values_only=True)
        headers = list(next(it, ()))
        mapping, ignored = _header_map(headers, registry)
        rows: list[dict[str, Any]] = []
        for values in it:
            record = {}
            for i, key in mapping.items():
                raw = values[i] if i < len(values) else None
                ctype = registry.column_type(key) if registry is not None else None
                record[key] = from_cell_value(raw, ctype)
            if any(v is not None for v in record.values()):
                rows.append(record)
    finally:
        wb.close()
    return rows, ignored
