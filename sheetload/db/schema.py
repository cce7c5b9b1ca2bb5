from __future__ import annotations

import logging
from typing import Any

from sheetload.models.table_schema import ColumnDescriptor, TableRef

"""Destination table schema inspection.

One catalog query per import against information_schema.columns. Identity
and generated columns count as "has default" because PostgreSQL fills them
without help from the worksheet.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "TableNotFoundError",
    "parse_table_identifier",
    "inspect_table",
    "quote_ident",
    "qualified_table_sql",
]

COLUMNS_QUERY = """
SELECT column_name,
       data_type,
       is_nullable,
       (column_default IS NOT NULL
        OR is_identity = 'YES'
        OR is_generated <> 'NEVER') AS has_default,
       ordinal_position
FROM information_schema.columns
WHERE table_schema = %s AND table_name = %s
ORDER BY ordinal_position
"""


class TableNotFoundError(Exception):
    """Raised when the table has no visible columns (missing or no privilege)."""

    def __init__(self, table: TableRef) -> None:
        super().__init__(f"table not found or has no visible columns: {table.qualified_name}")
        self.table = table


def quote_ident(name: str) -> str:
    """Quote an SQL identifier, doubling embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'


def qualified_table_sql(table: TableRef) -> str:
    return f"{quote_ident(table.schema)}.{quote_ident(table.name)}"


def parse_table_identifier(identifier: str, default_schema: str = "public") -> TableRef:
    """Parse ``table`` or ``schema.table`` into a TableRef.

    Only the first dot separates schema from table name.

    >>> parse_table_identifier("orders")
    TableRef(schema='public', name='orders')
    >>> parse_table_identifier("sales.orders")
    TableRef(schema='sales', name='orders')
    """
    text = (identifier or "").strip()
    if not text:
        raise ValueError("table identifier is empty")
    if "." in text:
        schema, name = (part.strip() for part in text.split(".", 1))
    else:
        schema, name = default_schema, text
    if not schema or not name:
        raise ValueError(f"invalid table identifier: {identifier!r}")
    return TableRef(schema=schema, name=name)


def inspect_table(cursor: Any, table: TableRef) -> list[ColumnDescriptor]:
    """Return the table's columns ordered by ordinal position.

    Raises:
        TableNotFoundError: zero columns returned
    """
    cursor.execute(COLUMNS_QUERY, (table.schema, table.name))
    rows = cursor.fetchall()
    columns = [
        ColumnDescriptor(
            name=str(name),
            sql_type=str(data_type).lower(),
            nullable=str(is_nullable).upper() == "YES",
            has_default=bool(has_default),
            ordinal_position=int(position),
        )
        for name, data_type, is_nullable, has_default, position in rows
    ]
    if not columns:
        raise TableNotFoundError(table)
    columns.sort(key=lambda c: c.ordinal_position)
    logger.debug(
        "schema %s: %s",
        table.qualified_name,
        ", ".join(f"{c.name}:{c.sql_type}{'' if c.nullable else '!'}" for c in columns),
    )
    return columns
