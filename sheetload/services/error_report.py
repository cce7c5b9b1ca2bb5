from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from ..models.processing_result import ImportReport

"""Rejected-row report export.

One row per RowError: ``rowNumber``, the original worksheet values under the
worksheet headers, then ``error`` (the driver message). Format is picked from
the file suffix (.xlsx / .csv) unless given explicitly.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ErrorReportError",
    "build_error_frame",
    "write_error_report",
]

SUPPORTED_FORMATS = ("xlsx", "csv")


class ErrorReportError(Exception):
    """The error report could not be written."""


def build_error_frame(report: ImportReport) -> pd.DataFrame:
    headers = list(report.headers)
    records = []
    for err in report.errors:
        values = list(err.values) if err.values is not None else []
        # 値が取れない行は空欄で埋める
        values = (values + [None] * len(headers))[: len(headers)]
        record = {"rowNumber": err.row_number}
        record.update(zip(headers, values))
        record["error"] = err.message
        records.append(record)
    columns = ["rowNumber", *headers, "error"]
    return pd.DataFrame.from_records(records, columns=columns)


def write_error_report(report: ImportReport, path: Path | str, fmt: str | None = None) -> Path:
    """Write the rejected rows of ``report`` to ``path``; returns the path."""
    path = Path(path)
    fmt = (fmt or path.suffix.lstrip(".") or "xlsx").lower()
    if fmt not in SUPPORTED_FORMATS:
        raise ErrorReportError(f"unsupported error report format: {fmt} (expected one of {SUPPORTED_FORMATS})")

    df = build_error_frame(report)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == "csv":
            df.to_csv(path, index=False, encoding="utf-8")
        else:
            df.to_excel(path, index=False, sheet_name="errors", engine="openpyxl")
    except OSError as e:
        raise ErrorReportError(f"cannot write error report {path}: {e}") from e
    logger.info(f"error report written: {path} ({len(df)} rows)")
    return path
