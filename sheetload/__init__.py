"""Bulk loader: one Excel worksheet into one existing PostgreSQL table."""

from sheetload.db.pool import ConnectionPoolRegistry, PoolError
from sheetload.models.config_models import ImportOptions
from sheetload.models.processing_result import ImportReport, RowError
from sheetload.services.orchestrator import (
    ImportAbortedError,
    ImportValidationError,
    ProcessingError,
    import_table,
)

__version__ = "0.1.0"

__all__ = [
    "ConnectionPoolRegistry",
    "ImportAbortedError",
    "ImportOptions",
    "ImportReport",
    "ImportValidationError",
    "PoolError",
    "ProcessingError",
    "RowError",
    "import_table",
]
