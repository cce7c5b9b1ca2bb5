from __future__ import annotations

from dataclasses import dataclass

"""Destination table models: TableRef and ColumnDescriptor.

ColumnDescriptor rows are produced once per import by the schema inspector
(sheetload.db.schema) and stay immutable for the rest of the run.
"""

__all__ = [
    "TableRef",
    "ColumnDescriptor",
    "is_temporal_type",
]


def is_temporal_type(sql_type: str) -> bool:
    """date, timestamp [with|without time zone] (case-insensitive)."""
    t = sql_type.lower()
    return "date" in t or "timestamp" in t


@dataclass(frozen=True)
class TableRef:
    """Schema-qualified table name (unquoted)."""
    schema: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def __str__(self) -> str:  # pragma: no cover (trivial)
        return self.qualified_name


@dataclass(frozen=True)
class ColumnDescriptor:
    """Catalog entry for one destination column.

    sql_type is the lower-cased information_schema ``data_type`` (e.g.
    ``integer``, ``timestamp without time zone``). has_default also covers
    identity and generated columns since PostgreSQL fills them itself.
    """
    name: str
    sql_type: str
    nullable: bool
    has_default: bool
    ordinal_position: int

    @property
    def is_required(self) -> bool:
        """Column must be supplied by the worksheet."""
        return not self.nullable and not self.has_default
