from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

"""Tagged cell value produced at the worksheet boundary.

openpyxl hands back plain Python objects (str / int / float / bool / datetime)
and, depending on load options, rich objects such as ``CellRichText``.
Every raw value is classified exactly once here so that the coercion layer
works on a closed set of kinds instead of inspecting arbitrary objects.
"""

__all__ = [
    "CellKind",
    "CellValue",
    "EMPTY_CELL",
    "to_cell_value",
]


class CellKind(Enum):
    """Closed set of cell kinds understood by the coercer."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    EMPTY = "empty"


@dataclass(frozen=True)
class CellValue:
    kind: CellKind
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    def display(self) -> Any:
        """Value suitable for echoing back to a user (error reports)."""
        if self.kind is CellKind.DATE:
            return self.value.isoformat()
        return self.value


EMPTY_CELL = CellValue(CellKind.EMPTY)


def _reduce_rich(raw: Any) -> Any:
    # display text 優先、無ければ計算結果
    text = getattr(raw, "text", None)
    if text:
        return str(text)
    result = getattr(raw, "result", None)
    if result is not None:
        return result
    return str(raw)


def to_cell_value(raw: Any) -> CellValue:
    """Classify a raw openpyxl value.

    Rich objects (rich text, hyperlink-like or formula-like objects exposing
    ``text`` / ``result``) are reduced to their display text, else their
    computed result, before classification.
    """
    if raw is None:
        return EMPTY_CELL
    # bool は int のサブクラスなので先に判定
    if isinstance(raw, bool):
        return CellValue(CellKind.BOOLEAN, raw)
    if isinstance(raw, (int, float, Decimal)):
        return CellValue(CellKind.NUMBER, raw)
    if isinstance(raw, (datetime, date, time)):
        return CellValue(CellKind.DATE, raw)
    if isinstance(raw, str):
        return CellValue(CellKind.TEXT, raw)
    return to_cell_value(_reduce_rich(raw))
