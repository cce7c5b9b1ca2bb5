from __future__ import annotations

from ..models.processing_result import ImportReport

"""SUMMARY line rendering.

Format (one line, fixed key order)::

    SUMMARY table=<schema.table> sheet=<name> rows=<total> ok=<ok> errors=<err>
    batches=<n> elapsed_sec=<s> throughput_rps=<r>

The leading ``SUMMARY`` token is added by the logging label when the line is
emitted through log_summary(); render_summary_line() returns the full text so
it can also be printed or asserted directly.
"""

__all__ = [
    "render_summary_line",
    "format_number",
]


def format_number(value: float) -> str:
    """Integers without a fraction, tiny values without scientific notation.

    >>> format_number(2.0)
    '2'
    >>> format_number(0.0005)
    '0.0005'
    """
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return str(round(value, 3))


def render_summary_line(report: ImportReport) -> str:
    """Render the SUMMARY line for one import.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2023, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2023, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> report = ImportReport(
        ...     total_rows=3, ok_rows=2, error_rows=1, errors=(),
        ...     table="public.orders", sheet="Sheet1",
        ...     start_time=start, end_time=end, elapsed_seconds=2.0, total_batches=1,
        ... )
        >>> render_summary_line(report)
        'SUMMARY table=public.orders sheet=Sheet1 rows=3 ok=2 errors=1 batches=1 elapsed_sec=2 throughput_rps=1'
    """
    sheet = report.sheet.replace(" ", "_") if report.sheet else "-"
    return (
        f"SUMMARY table={report.table or '-'} "
        f"sheet={sheet} "
        f"rows={report.total_rows} "
        f"ok={report.ok_rows} "
        f"errors={report.error_rows} "
        f"batches={report.total_batches} "
        f"elapsed_sec={format_number(report.elapsed_seconds)} "
        f"throughput_rps={format_number(report.throughput_rows_per_sec)}"
    )
