from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

"""Import result models.

ReportAccumulator is the mutable side used while an import runs (the batch
writer bumps counters and appends row errors); ImportReport is the frozen
record handed back to the caller once the run is over. ReconciliationResult
is the header/column diff computed before any row is written.
"""

__all__ = [
    "RowError",
    "ReconciliationResult",
    "ReportAccumulator",
    "ImportReport",
    "BatchStatsAccumulator",
]


@dataclass(frozen=True)
class RowError:
    """A worksheet row rejected by the database."""
    row_number: int  # シート上の行番号 (1-based)
    message: str  # ドライバのエラーメッセージ
    error_type: str = "ROW_INSERT_FAILED"  # UPPER_SNAKE
    values: tuple[Any, ...] | None = None  # 元の表示値 (エラーレポート用)

    def to_dict(self) -> dict[str, Any]:
        return {"row_number": self.row_number, "message": self.message}


@dataclass(frozen=True)
class ReconciliationResult:
    """Difference between worksheet headers and table columns."""
    missing_required: frozenset[str]
    extra_headers: frozenset[str]

    @property
    def ok(self) -> bool:
        return not self.missing_required and not self.extra_headers

    def is_blocking(self, ignore_extra_headers: bool = False) -> bool:
        """Whether the import must stop before any row is written.

        Missing required columns always block. Extra headers block unless the
        caller explicitly opted into ignoring them.
        """
        if self.missing_required:
            return True
        return bool(self.extra_headers) and not ignore_extra_headers


class BatchStatsAccumulator:
    """Helper class to accumulate batch timing statistics.

    Collects individual batch timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a batch timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 95th percentile (19th out of 20 quantiles, 0-indexed)

        return (total_batches, avg_batch_seconds, p95_batch_seconds)


@dataclass
class ReportAccumulator:
    """Mutable counters for one running import."""
    total_rows: int = 0
    ok_rows: int = 0
    error_rows: int = 0
    errors: list[RowError] = field(default_factory=list)

    def record_ok(self, count: int = 1) -> None:
        self.ok_rows += count

    def record_error(self, error: RowError) -> None:
        self.error_rows += 1
        self.errors.append(error)


@dataclass(frozen=True)
class ImportReport:
    """Final outcome of one import run (immutable).

    The core contract is ``total_rows / ok_rows / error_rows / errors``; the
    remaining fields are diagnostics for the summary line and error report.
    """
    total_rows: int
    ok_rows: int
    error_rows: int
    errors: tuple[RowError, ...]
    table: str = ""
    sheet: str = ""
    headers: tuple[str, ...] = ()
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float = 0.0
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.ok_rows / self.elapsed_seconds

    @property
    def has_errors(self) -> bool:
        return self.error_rows > 0

    @classmethod
    def from_accumulator(
        cls,
        acc: ReportAccumulator,
        *,
        table: str = "",
        sheet: str = "",
        headers: tuple[str, ...] = (),
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        batch_stats: BatchStatsAccumulator | None = None,
    ) -> ImportReport:
        elapsed = 0.0
        if start_time is not None and end_time is not None:
            elapsed = (end_time - start_time).total_seconds()
        total_batches, avg_batch, p95_batch = (
            batch_stats.get_stats() if batch_stats is not None else (0, 0.0, 0.0)
        )
        return cls(
            total_rows=acc.total_rows,
            ok_rows=acc.ok_rows,
            error_rows=acc.error_rows,
            errors=tuple(acc.errors),
            table=table,
            sheet=sheet,
            headers=headers,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=elapsed,
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain record form: counters plus ``[{row_number, message}]``."""
        return {
            "total_rows": self.total_rows,
            "ok_rows": self.ok_rows,
            "error_rows": self.error_rows,
            "errors": [e.to_dict() for e in self.errors],
        }
