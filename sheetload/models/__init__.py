"""Domain models for the worksheet -> PostgreSQL loader."""

from .cell_value import EMPTY_CELL, CellKind, CellValue, to_cell_value
from .config_models import DatabaseConfig, ImportConfig, ImportOptions
from .error_record import ErrorRecord
from .processing_result import ImportReport, ReconciliationResult, ReportAccumulator, RowError
from .row_data import CoercedRow, RawRow
from .table_schema import ColumnDescriptor, TableRef

__all__ = [
    # Cell values
    "CellKind",
    "CellValue",
    "EMPTY_CELL",
    "to_cell_value",
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportOptions",
    # Schema
    "ColumnDescriptor",
    "TableRef",
    # Rows
    "RawRow",
    "CoercedRow",
    # Results
    "ErrorRecord",
    "ImportReport",
    "ReconciliationResult",
    "ReportAccumulator",
    "RowError",
]
