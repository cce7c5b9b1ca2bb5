from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO, Any

import psycopg2

from ..db.batch_insert import BatchMetrics, BatchWriter
from ..db.pool import ConnectionPoolRegistry
from ..db.schema import TableNotFoundError, inspect_table, parse_table_identifier
from ..excel.reader import (
    RowStream,
    SheetHeaderError,
    WorkbookReadError,
    WorksheetNotFoundError,
    open_row_stream,
)
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.config_models import ImportOptions
from ..models.processing_result import (
    BatchStatsAccumulator,
    ImportReport,
    ReportAccumulator,
    RowError,
)
from ..models.table_schema import TableRef
from .coercion import InsertPlan, build_insert_plan, coerce_row
from .progress import RowProgress
from .reconcile import ordered_extra, ordered_missing, reconcile_headers

logger = logging.getLogger(__name__)

"""Import orchestration: one worksheet into one table, in one transaction.

Phases::

    VALIDATING -> IMPORTING -> COMMITTING
                            -> ABORTING

- VALIDATING: open the row stream (header row), inspect the table, reconcile.
  Failures raise ImportValidationError; no transaction has been opened.
- IMPORTING: BEGIN, then pull / coerce / batch one row at a time.
- COMMITTING: COMMIT. Row errors never abort the run.
- ABORTING: infrastructure failure -> ROLLBACK of the whole transaction and
  ImportAbortedError carrying the partial report; nothing from the run
  persists.

The connection comes from a caller-owned ConnectionPoolRegistry and goes back
to it on every exit path.
"""


class ProcessingError(Exception):
    """Base exception for processing errors."""
    pass


class ImportValidationError(ProcessingError):
    """Import refused before any row was written.

    missing_columns / extra_headers are reported verbatim so the caller can
    show exactly what to fix.
    """

    def __init__(
        self,
        message: str,
        *,
        missing_columns: Sequence[str] = (),
        extra_headers: Sequence[str] = (),
        expected_columns: Sequence[str] = (),
        provided_headers: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.missing_columns = list(missing_columns)
        self.extra_headers = list(extra_headers)
        self.expected_columns = list(expected_columns)
        self.provided_headers = list(provided_headers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "missing_columns": self.missing_columns,
            "extra_headers": self.extra_headers,
            "expected_columns": self.expected_columns,
            "provided_headers": self.provided_headers,
        }


class ImportAbortedError(ProcessingError):
    """Infrastructure failure; the whole transaction was rolled back.

    ``report`` is the partial report for diagnostics only: none of its OK rows
    were committed.
    """

    def __init__(self, message: str, report: ImportReport) -> None:
        super().__init__(message)
        self.report = report


class ImportPhase(Enum):
    VALIDATING = "validating"
    IMPORTING = "importing"
    COMMITTING = "committing"
    ABORTING = "aborting"


PhaseListener = Callable[[ImportPhase], None]


def _source_label(source: IO[bytes] | Path | str) -> str:
    if isinstance(source, (str, Path)):
        return Path(source).name
    name = getattr(source, "name", None)
    return Path(name).name if isinstance(name, str) else "<stream>"


def _open_stream(source: IO[bytes] | Path | str, sheet_name: str | None) -> RowStream:
    try:
        return open_row_stream(source, sheet_name)
    except WorksheetNotFoundError as e:
        raise ImportValidationError(str(e)) from e
    except SheetHeaderError as e:
        raise ImportValidationError(str(e)) from e
    except WorkbookReadError as e:
        raise ImportValidationError(str(e)) from e


def _resolve_table(table: str, options: ImportOptions, headers: Sequence[str]) -> TableRef:
    try:
        return parse_table_identifier(table, options.default_schema)
    except ValueError as e:
        raise ImportValidationError(str(e), provided_headers=headers) from e


def _validate(
    cursor: Any,
    table_ref: TableRef,
    headers: Sequence[str],
    options: ImportOptions,
    *,
    file_label: str,
    sheet: str,
    error_log: ErrorLogBuffer | None,
) -> InsertPlan:
    """Inspect the table and reconcile headers; returns the insert plan."""
    try:
        columns = inspect_table(cursor, table_ref)
    except TableNotFoundError as e:
        raise ImportValidationError(str(e), provided_headers=headers) from e
    except psycopg2.Error as e:
        if error_log is not None:
            error_log.append(ErrorRecord.create(file_label, sheet, -1, "IMPORT_ABORTED", str(e)))
        empty = ImportReport.from_accumulator(ReportAccumulator(), table=table_ref.qualified_name, sheet=sheet)
        raise ImportAbortedError(f"schema inspection failed for {table_ref.qualified_name}: {e}", empty) from e

    result = reconcile_headers(headers, columns)
    expected = [c.name for c in columns]
    missing = ordered_missing(result, columns)
    extra = ordered_extra(result, headers)

    if result.is_blocking(options.ignore_extra_headers):
        parts = []
        if missing:
            parts.append(f"missing required columns: {missing}")
        if extra:
            parts.append(f"headers not in table: {extra}")
        raise ImportValidationError(
            f"worksheet does not match {table_ref.qualified_name}: " + "; ".join(parts),
            missing_columns=missing,
            extra_headers=extra,
            expected_columns=expected,
            provided_headers=headers,
        )
    if extra:
        logger.warning("ignoring headers not in %s: %s", table_ref.qualified_name, extra)

    plan = build_insert_plan(headers, columns)
    if not plan.columns:  # pragma: no cover - blocked by reconciliation unless extras ignored
        raise ImportValidationError(
            f"no worksheet header matches a column of {table_ref.qualified_name}",
            extra_headers=extra,
            expected_columns=expected,
            provided_headers=headers,
        )
    return plan


def _rollback(cursor: Any, error_log: ErrorLogBuffer | None, file_label: str, sheet: str) -> None:
    try:
        cursor.execute("ROLLBACK")
    except Exception as rollback_e:
        # 元の例外を優先するため記録のみ (接続はプール返却時に破棄される)
        logger.error(f"rollback failed: {rollback_e}")
        if error_log is not None:
            error_log.append(
                ErrorRecord.create(file_label, sheet, -1, "TRANSACTION_ROLLBACK_ERROR", str(rollback_e))
            )


def _load(
    cursor: Any,
    stream: RowStream,
    table_ref: TableRef,
    plan: InsertPlan,
    options: ImportOptions,
    *,
    file_label: str,
    progress: RowProgress | None,
    error_log: ErrorLogBuffer | None,
    on_phase: PhaseListener,
) -> ImportReport:
    acc = ReportAccumulator()
    stats = BatchStatsAccumulator()
    start_time = datetime.now(UTC)
    sheet = stream.sheet_name

    def on_metrics(metrics: BatchMetrics) -> None:
        stats.add_batch_time(metrics.elapsed_seconds)

    def on_row_error(error: RowError) -> None:
        if error_log is not None:
            error_log.append(ErrorRecord.from_row_error(file_label, sheet, error))

    def build_report() -> ImportReport:
        return ImportReport.from_accumulator(
            acc,
            table=table_ref.qualified_name,
            sheet=sheet,
            headers=stream.headers,
            start_time=start_time,
            end_time=datetime.now(UTC),
            batch_stats=stats,
        )

    on_phase(ImportPhase.IMPORTING)
    cursor.execute("BEGIN")
    try:
        writer = BatchWriter(
            cursor,
            table_ref,
            plan.column_names,
            report=acc,
            batch_size=options.batch_size,
            metrics_callback=on_metrics,
            on_row_error=on_row_error,
        )
        for raw in stream:
            acc.total_rows += 1
            writer.add(coerce_row(raw, plan))
            if progress is not None:
                progress.advance(acc)
        writer.flush()
        on_phase(ImportPhase.COMMITTING)
        cursor.execute("COMMIT")
    except Exception as e:
        on_phase(ImportPhase.ABORTING)
        _rollback(cursor, error_log, file_label, sheet)
        report = build_report()
        if error_log is not None:
            error_log.append(ErrorRecord.create(file_label, sheet, -1, "IMPORT_ABORTED", str(e)))
        raise ImportAbortedError(
            f"import into {table_ref.qualified_name} aborted, transaction rolled back: {e}",
            report,
        ) from e
    except BaseException:
        # 中断 (KeyboardInterrupt 等) でも部分コミットは残さない
        on_phase(ImportPhase.ABORTING)
        _rollback(cursor, error_log, file_label, sheet)
        raise
    finally:
        if progress is not None:
            progress.finish(acc)

    return build_report()


def import_table(
    pools: ConnectionPoolRegistry,
    table: str,
    source: IO[bytes] | Path | str,
    sheet_name: str | None = None,
    *,
    database: str | None = None,
    options: ImportOptions | None = None,
    progress: RowProgress | None = None,
    error_log: ErrorLogBuffer | None = None,
    on_phase: PhaseListener | None = None,
) -> ImportReport:
    """Import one worksheet into an existing table.

    Args:
        pools: caller-owned connection pool registry
        table: ``table`` or ``schema.table``
        source: .xlsx binary stream or path
        sheet_name: worksheet name (None = first worksheet)
        database: destination database name (None = configured default)
        options: batch size / extra-header policy / default schema
        progress: optional row progress display
        error_log: optional JSON Lines buffer receiving one record per row error
        on_phase: optional callback for phase transitions

    Returns:
        ImportReport of the committed run (row errors included)

    Raises:
        ImportValidationError: nothing was written, see its fields for the fix
        ImportAbortedError: infrastructure failure, the transaction was rolled back
        PoolError: no connection could be obtained
    """
    options = options or ImportOptions()
    file_label = _source_label(source)

    def phase(p: ImportPhase) -> None:
        logger.debug(f"phase={p.value} table={table}")
        if on_phase is not None:
            on_phase(p)

    phase(ImportPhase.VALIDATING)
    with _open_stream(source, sheet_name) as stream:
        headers = stream.headers
        table_ref = _resolve_table(table, options, headers)
        logger.info(
            f"importing sheet '{stream.sheet_name}' ({len(headers)} columns) from {file_label} "
            f"into {table_ref.qualified_name}"
        )
        with pools.connection(database) as conn:
            cursor = conn.cursor()
            try:
                plan = _validate(
                    cursor,
                    table_ref,
                    headers,
                    options,
                    file_label=file_label,
                    sheet=stream.sheet_name,
                    error_log=error_log,
                )
                return _load(
                    cursor,
                    stream,
                    table_ref,
                    plan,
                    options,
                    file_label=file_label,
                    progress=progress,
                    error_log=error_log,
                    on_phase=phase,
                )
            finally:
                cursor.close()
