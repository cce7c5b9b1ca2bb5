from __future__ import annotations

import zipfile
from collections import Counter
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from sheetload.models.cell_value import EMPTY_CELL, to_cell_value
from sheetload.models.row_data import RawRow

"""Streaming worksheet reader.

- 1行目をヘッダ行、2行目以降をデータ行として扱う
- openpyxl read-only モードで 1 行ずつ読み出す (ファイル全体をメモリに載せない)
- 全セル空のデータ行はスキップ (total_rows にも数えない)

The stream is forward-only and single pass: iterating a second time raises
RowStreamConsumedError; re-open the workbook for another pass.
"""

__all__ = [
    "HeaderColumn",
    "RowStream",
    "open_row_stream",
    "WorkbookReadError",
    "WorksheetNotFoundError",
    "SheetHeaderError",
    "DuplicateHeaderError",
    "RowStreamConsumedError",
]


class WorkbookReadError(Exception):
    """Raised when the source is not a readable .xlsx workbook."""


class WorksheetNotFoundError(Exception):
    """Raised when the requested worksheet does not exist."""

    def __init__(self, sheet_name: str, available: Sequence[str]) -> None:
        super().__init__(f"worksheet '{sheet_name}' not found (available: {list(available)})")
        self.sheet_name = sheet_name
        self.available = list(available)


class SheetHeaderError(Exception):
    """Raised when the header row (1st line) is missing or empty."""


class DuplicateHeaderError(SheetHeaderError):
    """Raised when the header row repeats a column name."""

    def __init__(self, sheet_name: str, duplicates: Sequence[str]) -> None:
        super().__init__(f"sheet '{sheet_name}' has duplicate headers: {list(duplicates)}")
        self.sheet_name = sheet_name
        self.duplicates = list(duplicates)


class RowStreamConsumedError(RuntimeError):
    """Raised on a second iteration over the same RowStream."""


@dataclass(frozen=True)
class HeaderColumn:
    name: str
    index: int  # 0-based column index in the worksheet


def extract_headers(values: Sequence[Any], sheet_name: str) -> list[HeaderColumn]:
    """Build the header set from the raw first-row values.

    Blank header cells are skipped but the remaining headers keep their
    original column index so data cells stay aligned.
    """
    columns: list[HeaderColumn] = []
    for idx, raw in enumerate(values):
        cell = to_cell_value(raw)
        if cell.is_empty:
            continue
        name = str(cell.display()).strip()
        if name:
            columns.append(HeaderColumn(name=name, index=idx))
    if not columns:
        raise SheetHeaderError(f"sheet '{sheet_name}' header row is empty")
    counts = Counter(c.name for c in columns)
    duplicates = [name for name, n in counts.items() if n > 1]
    if duplicates:
        raise DuplicateHeaderError(sheet_name, duplicates)
    return columns


class RowStream:
    """Lazy, forward-only sequence of RawRow for one worksheet.

    Use open_row_stream() rather than constructing this directly; the stream
    owns the workbook handle and closes it on close() / context exit.
    """

    def __init__(self, workbook: Any, worksheet: Any) -> None:
        self._workbook = workbook
        self.sheet_name: str = worksheet.title
        self._rows = enumerate(worksheet.iter_rows(values_only=True), start=1)
        first = next(self._rows, None)
        if first is None:
            raise SheetHeaderError(f"sheet '{self.sheet_name}' is empty")
        self.header_columns = extract_headers(first[1], self.sheet_name)
        self._consumed = False

    @property
    def headers(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.header_columns)

    def __iter__(self) -> Iterator[RawRow]:
        if self._consumed:
            raise RowStreamConsumedError(
                f"rows of sheet '{self.sheet_name}' were already read; re-open the workbook"
            )
        self._consumed = True
        return self._generate()

    def _generate(self) -> Iterator[RawRow]:
        for row_number, values in self._rows:
            width = len(values)
            cells = tuple(
                to_cell_value(values[h.index]) if h.index < width else EMPTY_CELL
                for h in self.header_columns
            )
            if all(c.is_empty for c in cells):
                continue
            yield RawRow(row_number=row_number, values=cells)

    def close(self) -> None:
        if self._workbook is not None:
            self._workbook.close()
            self._workbook = None

    def __enter__(self) -> RowStream:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


def _select_worksheet(workbook: Any, sheet_name: str | None) -> Any:
    worksheets = workbook.worksheets
    if sheet_name is None:
        if not worksheets:  # pragma: no cover - openpyxl refuses such files
            raise WorksheetNotFoundError("<first>", [])
        return worksheets[0]
    for ws in worksheets:
        if ws.title == sheet_name:
            return ws
    raise WorksheetNotFoundError(sheet_name, [ws.title for ws in worksheets])


def open_row_stream(source: IO[bytes] | Path | str, sheet_name: str | None = None) -> RowStream:
    """Open a worksheet of an .xlsx workbook as a RowStream.

    Parameters
    ----------
    source: バイナリストリーム、またはファイルパス
    sheet_name: 対象シート名 (None なら先頭のワークシート)

    Raises
    ------
    WorkbookReadError: source が .xlsx として読めない
    WorksheetNotFoundError: 指定シートが存在しない
    SheetHeaderError / DuplicateHeaderError: ヘッダ行が空 / 重複
    """
    try:
        workbook = load_workbook(source, read_only=True, data_only=True, keep_links=False)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise WorkbookReadError(f"cannot read workbook: {e}") from e
    try:
        worksheet = _select_worksheet(workbook, sheet_name)
        return RowStream(workbook, worksheet)
    except BaseException:
        workbook.close()
        raise
