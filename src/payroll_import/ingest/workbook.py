"""Workbook row extraction.

Locates the sheet named after the requested month and yields its raw rows,
skipping the header.
"""

from __future__ import annotations

import logging
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from payroll_import.errors import PayrollImportError
from payroll_import.types import Period

logger = logging.getLogger(__name__)

MONTH_SHEET_NAMES: dict[int, str] = {
    1: "JANEIRO",
    2: "FEVEREIRO",
    3: "MARÇO",
    4: "ABRIL",
    5: "MAIO",
    6: "JUNHO",
    7: "JULHO",
    8: "AGOSTO",
    9: "SETEMBRO",
    10: "OUTUBRO",
    11: "NOVEMBRO",
    12: "DEZEMBRO",
}


class UnreadableWorkbookError(PayrollImportError):
    """Raised when the uploaded file cannot be opened as a workbook."""

    code = "UNREADABLE_FILE"

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read workbook {path.name}: {reason}")


class SheetNotFound(PayrollImportError):
    """Raised when the workbook has no sheet for the requested month."""

    code = "SHEET_NOT_FOUND"

    def __init__(self, expected: str, available: list[str]):
        self.expected = expected
        self.available = available
        super().__init__(
            f"Sheet '{expected}' not found. Available sheets: {', '.join(available) or '(none)'}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["expected"] = self.expected
        data["available"] = self.available
        return data


@dataclass(frozen=True)
class RawRow:
    """One spreadsheet row as read, with its 1-based sheet row number."""

    row_number: int
    cells: tuple[Any, ...]

    def cell(self, index: int) -> Any:
        """Cell value at a 0-based column index (None past the row's end)."""
        if index < len(self.cells):
            return self.cells[index]
        return None


@contextmanager
def open_workbook(path: Path) -> Iterator[Workbook]:
    """Open a workbook read-only with cached formula values."""
    try:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise UnreadableWorkbookError(path, str(e) or e.__class__.__name__) from e
    try:
        yield workbook
    finally:
        workbook.close()


def sheet_name_for(period: Period) -> str:
    return MONTH_SHEET_NAMES[period.month]


def resolve_sheet(workbook: Workbook, period: Period) -> Worksheet:
    """Find the month's sheet by case-insensitive exact name match."""
    expected = sheet_name_for(period)
    for name in workbook.sheetnames:
        if name.strip().casefold() == expected.casefold():
            logger.debug("Using sheet %r for period %s", name, period)
            return workbook[name]
    raise SheetNotFound(expected, list(workbook.sheetnames))


def iter_raw_rows(workbook: Workbook, period: Period) -> Iterator[RawRow]:
    """Lazily yield the data rows of the period's sheet (header skipped).

    The sheet is resolved eagerly so a missing sheet fails before iteration.
    """
    sheet = resolve_sheet(workbook, period)
    return _rows(sheet)


def _rows(sheet: Worksheet) -> Iterator[RawRow]:
    for offset, cells in enumerate(sheet.iter_rows(min_row=2, values_only=True)):
        yield RawRow(row_number=offset + 2, cells=tuple(cells))
