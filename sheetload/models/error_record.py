from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from .processing_result import RowError

"""ErrorRecord model for the JSON Lines row error log.

One record per rejected worksheet row. The key set is fixed (no extra keys)
so downstream tooling can rely on it; row=-1 is allowed for failures that
cannot be tied to a single row (e.g. an aborted import).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Workbook filename being imported
        sheet: Worksheet name within the workbook
        row: Worksheet row number (1-based). -1 when unknown
        error_type: Error classification in UPPER_SNAKE_CASE format
        db_message: Database error message or description
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    error_type: str
    db_message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, db_message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            db_message=db_message,
        )

    @staticmethod
    def from_row_error(file: str, sheet: str, error: RowError) -> ErrorRecord:
        return ErrorRecord.create(file, sheet, error.row_number, error.error_type, error.message)

    def to_json_line(self) -> str:
        """Serialize to one JSON line (fixed key set)."""
        return json.dumps(asdict(self), ensure_ascii=False)
