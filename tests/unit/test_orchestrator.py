from __future__ import annotations

import json
from datetime import UTC, datetime

import psycopg2
import pytest

from sheetload.logging.error_log import ErrorLogBuffer
from sheetload.models.config_models import ImportOptions
from sheetload.services.orchestrator import (
    ImportAbortedError,
    ImportPhase,
    ImportValidationError,
    import_table,
)
from sheetload.services.progress import RowProgress
from tests.pgfake import FakeColumn

HEADER = ["customer", "amount", "placed_at"]


@pytest.fixture()
def orders_book(make_workbook):
    return make_workbook(
        [
            HEADER,
            ["alice", 10, 44927],
            ["bob", 20.5, datetime(2023, 2, 1, 9, 30)],
            ["carol", None, "2023-03-01"],
        ],
        name="orders.xlsx",
    )


def test_happy_path(fake_db, orders_table, pools, orders_book):
    report = import_table(pools, "orders", orders_book)
    assert (report.total_rows, report.ok_rows, report.error_rows) == (3, 3, 0)
    assert report.errors == ()
    assert report.table == "public.orders"
    assert report.sheet == "Sheet1"
    assert report.headers == tuple(HEADER)

    rows = orders_table.rows
    assert [r["id"] for r in rows] == [1, 2, 3]
    assert rows[0]["placed_at"] == datetime(2023, 1, 1, tzinfo=UTC)
    assert rows[1]["placed_at"] == datetime(2023, 2, 1, 9, 30, tzinfo=UTC)
    assert rows[2]["amount"] is None
    assert fake_db.statements.count("BEGIN") == 1
    assert fake_db.statements[-1] == "COMMIT"
    assert not fake_db.in_transaction


def test_connection_returned_after_import(fake_db, orders_table, pools, orders_book):
    import_table(pools, "orders", orders_book)
    (pool,) = pools.created_pools
    assert len(pool.returned) == 1
    conn, closed = pool.returned[0]
    assert closed is False
    assert all(c.closed for c in conn.cursors)


def test_row_errors_do_not_abort(fake_db, orders_table, pools, make_workbook, tmp_path):
    book = make_workbook(
        [HEADER, ["alice", 10, None], [None, 5, None], ["carol", "lots", None], ["dave", 1, None]]
    )
    log = ErrorLogBuffer(tmp_path / "logs")
    report = import_table(pools, "orders", book, error_log=log, options=ImportOptions(batch_size=10))

    assert report.total_rows == 4
    assert report.ok_rows == 2
    assert report.error_rows == 2
    assert report.total_rows == report.ok_rows + report.error_rows
    assert [e.row_number for e in report.errors] == [3, 4]
    assert [r["customer"] for r in orders_table.rows] == ["alice", "dave"]

    path = log.flush()
    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["row"] for r in records] == [3, 4]
    assert records[0]["error_type"] == "NOT_NULL_VIOLATION"
    assert records[0]["file"] == "book.xlsx"
    assert records[0]["sheet"] == "Sheet1"


def test_all_rows_failing_still_commits(fake_db, orders_table, pools, make_workbook):
    book = make_workbook([HEADER, [None, 1, None], [None, 2, None]])
    report = import_table(pools, "orders", book)
    assert report.ok_rows == 0 and report.error_rows == 2
    assert fake_db.statements[-1] == "COMMIT"


def test_missing_required_column_refused_before_writing(fake_db, orders_table, pools, make_workbook):
    book = make_workbook([["amount"], [1]])
    with pytest.raises(ImportValidationError) as ei:
        import_table(pools, "orders", book)
    err = ei.value
    assert err.missing_columns == ["customer"]
    assert err.extra_headers == []
    assert err.expected_columns == ["id", "customer", "amount", "placed_at"]
    assert err.provided_headers == ["amount"]
    assert err.to_dict()["missing_columns"] == ["customer"]
    assert "BEGIN" not in fake_db.statements
    assert orders_table.rows == []


def test_extra_headers_refused_by_default(fake_db, orders_table, pools, make_workbook):
    book = make_workbook([["customer", "Ammount"], ["a", 1]])
    with pytest.raises(ImportValidationError) as ei:
        import_table(pools, "orders", book)
    assert ei.value.extra_headers == ["Ammount"]
    assert orders_table.rows == []


def test_extra_headers_ignored_when_asked(fake_db, orders_table, pools, make_workbook):
    book = make_workbook([["customer", "note", "amount"], ["a", "x", 1]])
    report = import_table(pools, "orders", book, options=ImportOptions(ignore_extra_headers=True))
    assert report.ok_rows == 1
    assert orders_table.rows[0]["amount"] == 1.0
    assert "note" not in orders_table.rows[0]


def test_unknown_table(fake_db, pools, orders_book):
    with pytest.raises(ImportValidationError, match="public.missing"):
        import_table(pools, "missing", orders_book)


def test_unknown_sheet(fake_db, orders_table, pools, orders_book):
    with pytest.raises(ImportValidationError, match="Nope"):
        import_table(pools, "orders", orders_book, "Nope")


def test_invalid_table_identifier(fake_db, orders_table, pools, orders_book):
    with pytest.raises(ImportValidationError):
        import_table(pools, "  ", orders_book)


def test_schema_qualified_table(fake_db, pools, make_workbook):
    table = fake_db.create_table("items", [FakeColumn("sku", nullable=False)], schema="sales")
    book = make_workbook([["sku"], ["A-1"], ["A-2"]])
    report = import_table(pools, "sales.items", book)
    assert report.table == "sales.items"
    assert [r["sku"] for r in table.rows] == ["A-1", "A-2"]


def test_default_schema_option(fake_db, pools, make_workbook):
    table = fake_db.create_table("items", [FakeColumn("sku")], schema="sales")
    book = make_workbook([["sku"], ["A-1"]])
    import_table(pools, "items", book, options=ImportOptions(default_schema="sales"))
    assert len(table.rows) == 1


def test_infrastructure_failure_rolls_back_everything(fake_db, orders_table, pools, make_workbook, tmp_path):
    rows = [HEADER] + [[f"c{i}", i, None] for i in range(5)]
    book = make_workbook(rows)
    # 2 バッチ目で接続断
    fake_db.inject_failure("VALUES %s", psycopg2.OperationalError("server closed the connection"), skip=1)
    log = ErrorLogBuffer(tmp_path / "logs")
    with pytest.raises(ImportAbortedError) as ei:
        import_table(pools, "orders", book, options=ImportOptions(batch_size=2), error_log=log)

    assert orders_table.rows == []
    assert "ROLLBACK" in fake_db.statements
    assert "COMMIT" not in fake_db.statements
    partial = ei.value.report
    assert partial.ok_rows == 2
    assert partial.total_rows == 4

    (pool,) = pools.created_pools
    assert pool.returned[-1][1] is False  # ROLLBACK 済みなので再利用可

    records = [json.loads(x) for x in log.flush().read_text(encoding="utf-8").splitlines()]
    assert records[-1]["row"] == -1
    assert records[-1]["error_type"] == "IMPORT_ABORTED"


def test_commit_failure_is_aborted(fake_db, orders_table, pools, orders_book):
    fake_db.inject_failure("COMMIT", psycopg2.OperationalError("terminating connection"))
    with pytest.raises(ImportAbortedError):
        import_table(pools, "orders", orders_book)
    assert orders_table.rows == []


def test_interrupt_rolls_back_and_propagates(fake_db, orders_table, pools, orders_book):
    fake_db.inject_failure("VALUES %s", KeyboardInterrupt())
    with pytest.raises(KeyboardInterrupt):
        import_table(pools, "orders", orders_book)
    assert orders_table.rows == []
    assert "ROLLBACK" in fake_db.statements


def test_catalog_failure_is_aborted_not_validation(fake_db, orders_table, pools, orders_book, tmp_path):
    fake_db.inject_failure("information_schema", psycopg2.OperationalError("connection reset"))
    log = ErrorLogBuffer(tmp_path / "logs")
    with pytest.raises(ImportAbortedError) as ei:
        import_table(pools, "orders", orders_book, error_log=log)
    assert ei.value.report.total_rows == 0
    assert "BEGIN" not in fake_db.statements

    path = log.flush()
    assert path is not None
    (record,) = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert record["row"] == -1
    assert record["error_type"] == "IMPORT_ABORTED"
    assert "connection reset" in record["db_message"]
    assert record["sheet"] == "Sheet1"


def test_phases_reported_in_order(fake_db, orders_table, pools, orders_book):
    phases = []
    import_table(pools, "orders", orders_book, on_phase=phases.append)
    assert phases == [ImportPhase.VALIDATING, ImportPhase.IMPORTING, ImportPhase.COMMITTING]


def test_empty_rows_not_counted(fake_db, orders_table, pools, make_workbook):
    book = make_workbook([HEADER, ["a", 1, None], [None, None, None], ["b", 2, None]])
    report = import_table(pools, "orders", book)
    assert report.total_rows == 2
    assert report.ok_rows == 2


def test_header_only_sheet(fake_db, orders_table, pools, make_workbook):
    report = import_table(pools, "orders", make_workbook([HEADER]))
    assert (report.total_rows, report.ok_rows, report.error_rows) == (0, 0, 0)


def test_progress_counts_rows(fake_db, orders_table, pools, orders_book):
    progress = RowProgress(enabled=False)
    import_table(pools, "orders", orders_book, progress=progress)
    assert progress.rows_seen == 3


def test_binary_stream_source(fake_db, orders_table, pools, orders_book):
    with orders_book.open("rb") as fh:
        report = import_table(pools, "orders", fh)
    assert report.ok_rows == 3


def test_batch_size_one(fake_db, orders_table, pools, orders_book):
    report = import_table(pools, "orders", orders_book, options=ImportOptions(batch_size=1))
    assert report.total_batches == 3
    assert report.ok_rows == 3
