from __future__ import annotations

from collections.abc import Sequence

from sheetload.models.processing_result import ReconciliationResult
from sheetload.models.table_schema import ColumnDescriptor

"""Header reconciliation: worksheet header set vs. destination columns.

- extra header: not a column of the table (misspelled headers must not be
  silently dropped)
- missing required: table column absent from the headers that is NOT NULL
  and has no default (every row would fail at insert time)
"""

__all__ = [
    "reconcile_headers",
    "ordered_missing",
    "ordered_extra",
]


def reconcile_headers(
    headers: Sequence[str], columns: Sequence[ColumnDescriptor]
) -> ReconciliationResult:
    column_names = {c.name for c in columns}
    header_set = set(headers)
    extra = frozenset(h for h in headers if h not in column_names)
    missing = frozenset(
        c.name for c in columns if c.name not in header_set and c.is_required
    )
    return ReconciliationResult(missing_required=missing, extra_headers=extra)


def ordered_missing(result: ReconciliationResult, columns: Sequence[ColumnDescriptor]) -> list[str]:
    """Missing required columns in table (ordinal) order."""
    return [c.name for c in columns if c.name in result.missing_required]


def ordered_extra(result: ReconciliationResult, headers: Sequence[str]) -> list[str]:
    """Extra headers in worksheet order."""
    return [h for h in headers if h in result.extra_headers]
