from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import execute_values

from sheetload.models.processing_result import ReportAccumulator, RowError
from sheetload.models.row_data import CoercedRow
from sheetload.models.table_schema import TableRef

from .schema import qualified_table_sql, quote_ident

"""Savepoint-isolated batch INSERT.

State machine per batch::

    ACCUMULATING -> FLUSHING -> COMMITTED  -> ACCUMULATING
                             -> RECOVERING -> ACCUMULATING

- FLUSHING: SAVEPOINT batch_<n>; one multi-row INSERT (execute_values with
  page_size = batch length, i.e. a single statement)
- COMMITTED: RELEASE SAVEPOINT; all rows counted OK
- RECOVERING: ROLLBACK TO SAVEPOINT batch_<n>, then replay row by row, each
  in its own SAVEPOINT row_<rowNumber>; rejected rows become RowError

Only row-level failures (bad data, constraint violations) are absorbed.
Anything else is raised as BatchInsertError and the caller rolls back the
whole transaction. The batch buffer is cleared after every flush attempt.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "BatchWriter",
    "WriterState",
    "ROW_LEVEL_ERRORS",
    "build_insert_sql",
    "is_row_level_error",
    "error_type_of",
    "driver_message",
]

DEFAULT_BATCH_SIZE = 1000

# 行単位で切り分け可能なエラー (データ不正 / 制約違反 / 型不一致 / トリガ例外)
ROW_LEVEL_ERRORS: tuple[type[BaseException], ...] = (
    psycopg2.DataError,
    psycopg2.IntegrityError,
    pg_errors.DatatypeMismatch,
    pg_errors.RaiseException,
)


class BatchInsertError(Exception):
    """Infrastructure failure while writing (not attributable to a row)."""


class WriterState(Enum):
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    COMMITTED = "committed"
    RECOVERING = "recovering"


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single multi-row INSERT statement."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())
    succeeded: bool  # False when the batch fell back to row-by-row


def is_row_level_error(exc: BaseException) -> bool:
    return isinstance(exc, ROW_LEVEL_ERRORS)


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def error_type_of(exc: BaseException) -> str:
    """``NotNullViolation`` -> ``NOT_NULL_VIOLATION``."""
    return _CAMEL_BOUNDARY.sub("_", type(exc).__name__).upper()


def driver_message(exc: BaseException) -> str:
    """Primary driver message, falling back to str(exc)."""
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    if primary:
        return str(primary)
    return str(exc).strip()


def build_insert_sql(table: TableRef, columns: Sequence[str]) -> tuple[str, str]:
    """Return (multi-row SQL for execute_values, single-row SQL).

    Identifiers are quoted; values are always bound parameters.
    """
    if not columns:
        raise ValueError("at least one insert column is required")
    cols_sql = ",".join(quote_ident(c) for c in columns)
    target = qualified_table_sql(table)
    placeholders = ",".join(["%s"] * len(columns))
    batch_sql = f"INSERT INTO {target} ({cols_sql}) VALUES %s"
    row_sql = f"INSERT INTO {target} ({cols_sql}) VALUES ({placeholders})"
    return batch_sql, row_sql


class BatchWriter:
    """Accumulate coerced rows and write them batch by batch.

    Parameters
    ----------
    cursor: psycopg2 cursor inside an open transaction (BEGIN 済み)
    table: 対象テーブル
    columns: INSERT 列 (CoercedRow.values と同順)
    report: 件数 / 行エラーの集計先
    batch_size: 1 バッチの上限行数
    metrics_callback: 各 multi-row INSERT の計測値を受け取る callback
    on_row_error: 行エラー確定時に呼ばれる callback (エラーログ連携用)
    state_listener: 状態遷移ごとに呼ばれる callback
    """

    def __init__(
        self,
        cursor: Any,
        table: TableRef,
        columns: Sequence[str],
        *,
        report: ReportAccumulator,
        batch_size: int = DEFAULT_BATCH_SIZE,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
        on_row_error: Callable[[RowError], None] | None = None,
        state_listener: Callable[[WriterState], None] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        self.cursor = cursor
        self.table = table
        self.columns = list(columns)
        self.report = report
        self.batch_size = batch_size
        self.metrics_callback = metrics_callback
        self.on_row_error = on_row_error
        self.state_listener = state_listener
        self._batch_sql, self._row_sql = build_insert_sql(table, self.columns)
        self._batch: list[CoercedRow] = []
        self._batch_seq = 0
        self._state = WriterState.ACCUMULATING

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def pending(self) -> int:
        return len(self._batch)

    def _transition(self, state: WriterState) -> None:
        self._state = state
        if self.state_listener is not None:
            self.state_listener(state)

    # -- savepoint helpers -------------------------------------------------
    def _savepoint(self, name: str) -> None:
        self.cursor.execute(f"SAVEPOINT {quote_ident(name)}")

    def _release(self, name: str) -> None:
        self.cursor.execute(f"RELEASE SAVEPOINT {quote_ident(name)}")

    def _rollback_to(self, name: str) -> None:
        self.cursor.execute(f"ROLLBACK TO SAVEPOINT {quote_ident(name)}")
        self.cursor.execute(f"RELEASE SAVEPOINT {quote_ident(name)}")

    # -- public API ----------------------------------------------------------
    def add(self, row: CoercedRow) -> None:
        if len(row.values) != len(self.columns):
            raise ValueError(
                f"row {row.row_number}: {len(row.values)} values for {len(self.columns)} columns"
            )
        self._batch.append(row)
        if len(self._batch) >= self.batch_size:
            self.flush()

    def flush(self) -> int:
        """Write the pending batch; returns the number of rows written OK."""
        if not self._batch:
            return 0
        rows = self._batch
        self._batch = []
        self._batch_seq += 1
        before = self.report.ok_rows
        try:
            self._flush_batch(rows, f"batch_{self._batch_seq}")
        finally:
            self._transition(WriterState.ACCUMULATING)
        return self.report.ok_rows - before

    def _flush_batch(self, rows: list[CoercedRow], savepoint: str) -> None:
        self._transition(WriterState.FLUSHING)
        self._savepoint(savepoint)
        values = [r.values for r in rows]
        start_time = time.time()
        failure: BaseException | None = None
        succeeded = False
        try:
            execute_values(self.cursor, self._batch_sql, values, page_size=len(values))
            succeeded = True
        except Exception as e:
            if not is_row_level_error(e):
                raise BatchInsertError(f"batch insert into {self.table.qualified_name} failed: {e}") from e
            failure = e
        finally:
            end_time = time.time()
            if self.metrics_callback is not None:
                self.metrics_callback(
                    BatchMetrics(
                        batch_size=len(values),
                        elapsed_seconds=end_time - start_time,
                        start_time=start_time,
                        end_time=end_time,
                        succeeded=succeeded,
                    )
                )

        if failure is None:
            self._release(savepoint)
            self._transition(WriterState.COMMITTED)
            self.report.record_ok(len(rows))
            logger.debug("batch %s: %d rows inserted", savepoint, len(rows))
            return

        self._rollback_to(savepoint)
        logger.debug(
            "batch %s failed (%s); retrying %d rows one by one",
            savepoint,
            error_type_of(failure),
            len(rows),
        )
        self._transition(WriterState.RECOVERING)
        self._recover(rows)

    def _recover(self, rows: list[CoercedRow]) -> None:
        for row in rows:
            savepoint = f"row_{row.row_number}"
            self._savepoint(savepoint)
            try:
                self.cursor.execute(self._row_sql, row.values)
            except Exception as e:
                if not is_row_level_error(e):
                    raise BatchInsertError(
                        f"row {row.row_number}: insert into {self.table.qualified_name} failed: {e}"
                    ) from e
                self._rollback_to(savepoint)
                error = RowError(
                    row_number=row.row_number,
                    message=driver_message(e),
                    error_type=error_type_of(e),
                    values=row.raw_values,
                )
                self.report.record_error(error)
                logger.debug("row %d rejected: %s", row.row_number, error.message)
                if self.on_row_error is not None:
                    self.on_row_error(error)
                continue
            self._release(savepoint)
            self.report.record_ok()
