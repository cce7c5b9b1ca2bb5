from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import pandas as pd
from dateutil import parser as dateutil_parser

from sheetload.models.cell_value import CellKind, CellValue, to_cell_value
from sheetload.models.row_data import CoercedRow, RawRow
from sheetload.models.table_schema import ColumnDescriptor, is_temporal_type

"""Cell coercion: tagged worksheet cell -> value ready for parameter binding.

Rules, in priority order:

1. rich objects were already reduced to display text / computed result when
   the cell was tagged (sheetload.models.cell_value)
2. date / timestamp columns:
   - NUMBER: spreadsheet serial date (epoch 1899-12-30, fraction = time of day)
   - DATE: ISO-8601 instant
   - TEXT: numeric text as serial date, otherwise parsed as a fully
     specified calendar date/time; relative words ("now", "today"), partial
     dates ("March 5") and unparseable text are passed on (the driver
     rejects them and the row becomes a row error)
3. remaining strings are trimmed; "" becomes None
4. everything else passes through unchanged

Naive date/times are interpreted as UTC, like serial dates. coerce_cell()
is a pure function of (cell, sql_type).
"""

__all__ = [
    "EXCEL_EPOCH",
    "InsertPlan",
    "build_insert_plan",
    "coerce_cell",
    "coerce_value",
    "coerce_row",
    "serial_to_iso",
    "format_instant",
]

EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=UTC)
MS_PER_DAY = 24 * 60 * 60 * 1000

_NUMERIC_TEXT = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}($|[T ])")
_RELATIVE_WORDS = frozenset({"now", "today", "tomorrow", "yesterday"})
# 2 つの異なる既定値 (時刻は同じ)
_DEFAULT_A = datetime(2000, 1, 1)
_DEFAULT_B = datetime(2001, 2, 2)


def format_instant(value: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (UTC, millisecond precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    v = value.astimezone(UTC)
    return (
        f"{v.year:04d}-{v.month:02d}-{v.day:02d}"
        f"T{v.hour:02d}:{v.minute:02d}:{v.second:02d}.{v.microsecond // 1000:03d}Z"
    )


def serial_to_iso(serial: float) -> str | None:
    """Convert a spreadsheet serial date to an ISO-8601 instant.

    Returns None when the serial is not representable.

    >>> serial_to_iso(44927)
    '2023-01-01T00:00:00.000Z'
    >>> serial_to_iso(44927.5)
    '2023-01-01T12:00:00.000Z'
    """
    try:
        serial = float(serial)
        if not math.isfinite(serial):
            return None
        instant = EXCEL_EPOCH + timedelta(milliseconds=round(serial * MS_PER_DAY))
    except (OverflowError, ValueError):
        return None
    return format_instant(instant)


def _date_to_iso(value: date | datetime | time) -> str:
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, date):
        return format_instant(datetime(value.year, value.month, value.day, tzinfo=UTC))
    # time only (時刻のみセル)
    return value.isoformat()


def _parse_free_form(text: str) -> datetime | None:
    # 年/月/日のどれかを既定値で補った解析結果は採用しない ("March 5" など)
    try:
        first = dateutil_parser.parse(text, default=_DEFAULT_A)
        second = dateutil_parser.parse(text, default=_DEFAULT_B)
    except (ValueError, OverflowError):
        return None
    return first if first == second else None


def _parse_date_text(text: str) -> str | None:
    """Numeric text -> serial date, otherwise a fully specified calendar date.

    Relative words (now, today, ...) and partial dates return None so the
    text reaches the driver unchanged.
    """
    if _NUMERIC_TEXT.fullmatch(text):
        return serial_to_iso(float(text))
    if text.lower() in _RELATIVE_WORDS:
        return None
    if _ISO_DATE.match(text):
        try:
            ts = pd.to_datetime(text, utc=True, format="ISO8601")
        except (ValueError, TypeError, OverflowError):
            return None
        return None if pd.isna(ts) else format_instant(ts.to_pydatetime())
    parsed = _parse_free_form(text)
    return None if parsed is None else format_instant(parsed)


def coerce_cell(cell: CellValue, sql_type: str) -> Any:
    """Coerce one tagged cell for a column of the given SQL type."""
    kind, value = cell.kind, cell.value
    if kind is CellKind.EMPTY:
        return None

    if is_temporal_type(sql_type):
        if kind is CellKind.NUMBER:
            iso = serial_to_iso(value)
            return iso if iso is not None else value
        if kind is CellKind.DATE:
            return _date_to_iso(value)
        if kind is CellKind.TEXT and value.strip():
            iso = _parse_date_text(value.strip())
            if iso is not None:
                return iso

    if kind is CellKind.TEXT:
        stripped = value.strip()
        return stripped if stripped else None
    return value


def coerce_value(raw: Any, sql_type: str) -> Any:
    """Convenience wrapper: tag a raw Python value, then coerce it."""
    return coerce_cell(to_cell_value(raw), sql_type)


@dataclass(frozen=True)
class InsertPlan:
    """Which header positions are written, and into which columns."""
    columns: tuple[ColumnDescriptor, ...]
    positions: tuple[int, ...]  # RawRow.values 内のインデックス

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


def build_insert_plan(headers: Sequence[str], columns: Sequence[ColumnDescriptor]) -> InsertPlan:
    """Map worksheet headers onto table columns, in worksheet order.

    Headers without a matching column are left out (only reachable when extra
    headers are explicitly ignored).
    """
    by_name = {c.name: c for c in columns}
    targets: list[ColumnDescriptor] = []
    positions: list[int] = []
    for idx, header in enumerate(headers):
        column = by_name.get(header)
        if column is None:
            continue
        targets.append(column)
        positions.append(idx)
    return InsertPlan(columns=tuple(targets), positions=tuple(positions))


def coerce_row(row: RawRow, plan: InsertPlan) -> CoercedRow:
    cells = [row.values[i] for i in plan.positions]
    return CoercedRow(
        row_number=row.row_number,
        values=tuple(coerce_cell(cell, col.sql_type) for cell, col in zip(cells, plan.columns)),
        raw_values=tuple(cell.display() for cell in cells),
    )
