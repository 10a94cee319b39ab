"""Value model: classification, coercion and typed comparison of cell values.

Rows carry plain Python values as they come out of storage (``None``,
``str``, ``int``/``float``, ``bool``, ISO-8601 text for dates, and
``{"name": ...}`` objects for file columns). The declared column type decides
how a value is read:

- ``number`` / ``computed`` compare numerically,
- ``date`` compares calendar days,
- ``datetime`` compares instants (naive values are taken as UTC),
- everything else compares as case-sensitive text.

Comparisons never raise. When either side cannot be read as the column's type
the comparison result is ``None`` and callers treat it as "no match".
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from progtable.contracts.schema import NUMERIC_TYPES

TODAY_TOKEN = "today"


class ValueKind(str, Enum):
    EMPTY = "empty"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"


def is_empty(value: Any) -> bool:
    """Absent, ``None`` or the empty string. Zero and ``False`` are values."""
    return value is None or (isinstance(value, str) and value == "")


def kind_of(value: Any) -> ValueKind:
    if is_empty(value):
        return ValueKind.EMPTY
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, datetime):
        return ValueKind.DATETIME
    if isinstance(value, date):
        return ValueKind.DATE
    return ValueKind.STRING


def normalize_number(value: float | int) -> float | int:
    """Collapse integral floats to ``int`` (``14.0`` -> ``14``)."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_number(value: Any) -> float | int | None:
    if isinstance(value, bool) or is_empty(value):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return normalize_number(float(value.strip()))
        except ValueError:
            return None
    return None


def to_arithmetic(value: Any) -> float | int:
    """Numeric operand for computed columns: empty or unreadable is ``0``."""
    number = to_number(value)
    return 0 if number is None else number


def _parse_iso(text: str) -> datetime | None:
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _as_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_date(value: Any, *, today: date | None = None) -> date | None:
    if isinstance(value, datetime):
        return _as_utc_naive(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and not is_empty(value):
        if value.strip().lower() == TODAY_TOKEN:
            return today or date.today()
        parsed = _parse_iso(value)
        return _as_utc_naive(parsed).date() if parsed else None
    return None


def to_datetime(value: Any, *, today: date | None = None) -> datetime | None:
    if isinstance(value, datetime):
        return _as_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and not is_empty(value):
        if value.strip().lower() == TODAY_TOKEN:
            day = today or date.today()
            return datetime(day.year, day.month, day.day)
        parsed = _parse_iso(value)
        return _as_utc_naive(parsed) if parsed else None
    return None


def _is_date_only(value: Any) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    if isinstance(value, str):
        text = value.strip()
        return text.lower() == TODAY_TOKEN or (len(text) == 10 and _parse_iso(text) is not None)
    return False


def iso_kind(value: Any) -> ValueKind | None:
    """``DATE`` or ``DATETIME`` for ISO-8601 text (``YYYY-MM-DD...``), else None."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if len(text) < 10 or text[4] != "-" or text[7] != "-":
        return None
    if _parse_iso(text) is None:
        return None
    return ValueKind.DATE if len(text) == 10 else ValueKind.DATETIME


def file_name(value: Any) -> str | None:
    """File columns store ``{"name": ..., ...}``, sometimes as JSON text."""
    if isinstance(value, dict):
        name = value.get("name")
        return str(name) if name is not None else None
    if isinstance(value, str) and value.lstrip().startswith("{"):
        try:
            decoded = json.loads(value)
        except ValueError:
            return value
        if isinstance(decoded, dict):
            return file_name(decoded)
    if is_empty(value):
        return None
    return str(value)


def to_text(value: Any, column_type: str = "string") -> str | None:
    """Text form used by string comparisons and substring operators."""
    if is_empty(value):
        return None
    if column_type == "file":
        return file_name(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(normalize_number(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _cmp(left: Any, right: Any) -> int:
    return (left > right) - (left < right)


def compare(
    left: Any,
    right: Any,
    column_type: str = "string",
    *,
    today: date | None = None,
) -> int | None:
    """Three-way compare ``left`` (row value) against ``right`` (literal).

    Returns ``-1``, ``0`` or ``1``, or ``None`` when either side is empty or
    the two sides cannot be read as the same type.
    """
    if is_empty(left) or is_empty(right):
        return None

    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return _cmp(int(left), int(right))
        return None

    if column_type in NUMERIC_TYPES:
        lnum, rnum = to_number(left), to_number(right)
        if lnum is None or rnum is None:
            return None
        return _cmp(lnum, rnum)

    if column_type == "date" or (column_type == "datetime" and _is_date_only(right)):
        ldate, rdate = to_date(left, today=today), to_date(right, today=today)
        if ldate is None or rdate is None:
            return None
        return _cmp(ldate, rdate)

    if column_type == "datetime":
        ldt, rdt = to_datetime(left, today=today), to_datetime(right, today=today)
        if ldt is None or rdt is None:
            return None
        return _cmp(ldt, rdt)

    if not isinstance(right, (str, int, float)):
        return None
    ltext, rtext = to_text(left, column_type), to_text(right)
    if ltext is None or rtext is None:
        return None
    return _cmp(ltext, rtext)


def sort_key(value: Any, column_type: str = "string") -> tuple:
    """Total-order key: empties first, typed values, then unreadable leftovers."""
    if is_empty(value):
        return (0,)
    typed: Any
    if column_type in NUMERIC_TYPES:
        typed = to_number(value)
    elif column_type == "date":
        typed = to_date(value)
    elif column_type == "datetime":
        typed = to_datetime(value)
    else:
        typed = to_text(value, column_type)
    if typed is None:
        return (2, to_text(value) or "")
    return (1, typed)
