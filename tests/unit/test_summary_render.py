from __future__ import annotations

from datetime import UTC, datetime

from sheetload.models.processing_result import (
    BatchStatsAccumulator,
    ImportReport,
    ReportAccumulator,
    RowError,
)
from sheetload.services.summary import format_number, render_summary_line


def _report(**kw) -> ImportReport:
    base = dict(total_rows=3, ok_rows=2, error_rows=1, errors=(), table="public.orders", sheet="Sheet1")
    base.update(kw)
    return ImportReport(**base)


def test_render_basic():
    line = render_summary_line(_report(elapsed_seconds=2.0, total_batches=1))
    assert line == (
        "SUMMARY table=public.orders sheet=Sheet1 rows=3 ok=2 errors=1 "
        "batches=1 elapsed_sec=2 throughput_rps=1"
    )


def test_zero_elapsed():
    line = render_summary_line(_report(elapsed_seconds=0.0))
    assert "elapsed_sec=0 throughput_rps=0" in line


def test_sheet_names_with_spaces_stay_one_token():
    line = render_summary_line(_report(sheet="Order List"))
    assert "sheet=Order_List " in line


def test_format_number():
    assert format_number(0) == "0"
    assert format_number(3.0) == "3"
    assert format_number(0.0005) == "0.0005"
    assert format_number(1.23456) == "1.235"
    assert "e" not in format_number(0.000001)


def test_report_from_accumulator():
    acc = ReportAccumulator(total_rows=4)
    acc.record_ok(3)
    acc.record_error(RowError(row_number=5, message="bad"))
    stats = BatchStatsAccumulator()
    stats.add_batch_time(0.5)
    start = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)
    end = datetime(2024, 1, 1, 0, 0, 3, tzinfo=UTC)
    report = ImportReport.from_accumulator(
        acc, table="public.t", sheet="S", headers=("a",), start_time=start, end_time=end, batch_stats=stats
    )
    assert report.total_rows == 4
    assert report.ok_rows + report.error_rows == report.total_rows
    assert report.elapsed_seconds == 3.0
    assert report.throughput_rows_per_sec == 1.0
    assert report.total_batches == 1
    assert report.has_errors
    assert report.to_dict() == {
        "total_rows": 4,
        "ok_rows": 3,
        "error_rows": 1,
        "errors": [{"row_number": 5, "message": "bad"}],
    }


def test_batch_stats_p95():
    stats = BatchStatsAccumulator()
    for t in [0.1] * 19 + [1.0]:
        stats.add_batch_time(t)
    total, avg, p95 = stats.get_stats()
    assert total == 20
    assert 0.1 < p95 <= 1.0
    assert avg > 0.1
