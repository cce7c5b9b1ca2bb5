from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .cell_value import CellValue

"""Row models flowing from the worksheet reader to the batch writer.

RawRow comes straight out of the row stream (tagged cells, aligned with the
header set); CoercedRow holds bindable values aligned with the INSERT column
list.
"""

__all__ = [
    "RawRow",
    "CoercedRow",
]


@dataclass(frozen=True)
class RawRow:
    """One data row as read from the worksheet.

    row_number is the 1-based worksheet row (header = row 1, so the first
    data row is 2).
    """
    row_number: int
    values: tuple[CellValue, ...]  # HeaderSet と位置で対応


@dataclass(frozen=True)
class CoercedRow:
    """Row ready for parameter binding."""
    row_number: int
    values: tuple[Any, ...]  # insert 列順
    raw_values: tuple[Any, ...] | None = None  # エラーレポート用の表示値
