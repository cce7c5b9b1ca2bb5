from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.processing_result import ReportAccumulator

"""Row progress display with tqdm (TTY only).

The total row count is unknown while streaming, so the bar is an open-ended
counter with ok / error postfix. In non-TTY environments (CI, redirected
output) nothing is drawn so log lines stay clean.
"""

__all__ = [
    "RowProgress",
    "is_tty_enabled",
]

# postfix 更新間隔 (行数)
POSTFIX_EVERY = 500


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class RowProgress:
    """Open-ended row counter for one import."""

    def __init__(self, *, description: str = "Importing rows", enabled: bool | None = None) -> None:
        self.description = description
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.rows_seen = 0
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ascii=True,  # ASCII chars for better compatibility
                mininterval=1.0,
            )
        else:
            self.pbar = None

    def advance(self, acc: ReportAccumulator, rows: int = 1) -> None:
        self.rows_seen += rows
        if self.pbar is None:
            return
        self.pbar.update(rows)
        if self.rows_seen % POSTFIX_EVERY == 0:
            self.pbar.set_postfix(ok=acc.ok_rows, errors=acc.error_rows)

    def finish(self, acc: ReportAccumulator) -> None:
        """Show the final counters and close the bar."""
        if self.pbar is None:
            return
        self.pbar.set_postfix(ok=acc.ok_rows, errors=acc.error_rows)
        self.close()

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
