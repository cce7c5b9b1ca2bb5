# Shared pytest fixtures
from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

from sheetload.db.pool import ConnectionPoolRegistry
from sheetload.logging.init import reset_logging
from tests.pgfake import FakeColumn, FakeDatabase, FakePool, fake_execute_values


@pytest.fixture()
def temp_workdir(monkeypatch, tmp_path: Path) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def make_workbook(tmp_path: Path) -> Callable[..., Path]:
    """Write an .xlsx file; ``sheets`` maps sheet name -> rows (header row first)."""

    def _make(
        rows: Sequence[Sequence[Any]] | None = None,
        *,
        name: str = "book.xlsx",
        sheet: str = "Sheet1",
        sheets: dict[str, Sequence[Sequence[Any]]] | None = None,
    ) -> Path:
        wb = Workbook()
        wb.remove(wb.active)
        content = sheets if sheets is not None else {sheet: rows or []}
        for title, sheet_rows in content.items():
            ws = wb.create_sheet(title)
            for r in sheet_rows:
                ws.append(list(r))
        path = tmp_path / name
        wb.save(path)
        return path

    return _make


@pytest.fixture()
def fake_db(monkeypatch) -> FakeDatabase:
    import sheetload.db.batch_insert as bi

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return FakeDatabase()


@pytest.fixture()
def orders_table(fake_db: FakeDatabase):
    """orders(id identity, customer text NOT NULL, amount numeric, placed_at timestamptz)."""
    return fake_db.create_table(
        "orders",
        [
            FakeColumn("id", "integer", nullable=False, identity=True),
            FakeColumn("customer", "text", nullable=False),
            FakeColumn("amount", "numeric"),
            FakeColumn("placed_at", "timestamp with time zone"),
        ],
    )


@pytest.fixture()
def pools(fake_db: FakeDatabase):
    created: list[FakePool] = []

    def factory(dsn: str) -> FakePool:
        pool = FakePool(fake_db, dsn)
        created.append(pool)
        return pool

    registry = ConnectionPoolRegistry(pool_factory=factory, environ={})
    registry.created_pools = created  # type: ignore[attr-defined]
    yield registry
    registry.close_all()
