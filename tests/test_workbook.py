"""Tests for workbook row extraction."""

import pytest

from payroll_import.ingest.workbook import (
    SheetNotFound,
    UnreadableWorkbookError,
    iter_raw_rows,
    open_workbook,
)
from payroll_import.ingest.normalizer import Column
from payroll_import.types import Period
from workbooks import sheet_row


class TestRowExtraction:
    """Sheet resolution and header skipping."""

    def test_yields_data_rows_with_sheet_row_numbers(self, make_workbook):
        path = make_workbook(
            [
                sheet_row("Ana", "ana@x.com", 100),
                sheet_row("Bob", "bob@x.com", 200),
            ],
            sheet="MARÇO",
        )

        with open_workbook(path) as workbook:
            rows = list(iter_raw_rows(workbook, Period(year=2025, month=3)))

        assert [r.row_number for r in rows] == [2, 3]
        assert rows[0].cell(Column.NAME) == "Ana"
        assert rows[1].cell(Column.EMAIL) == "bob@x.com"
        assert rows[1].cell(Column.NET_AMOUNT) == 200

    def test_sheet_name_is_case_insensitive(self, make_workbook):
        path = make_workbook([sheet_row("Ana", "ana@x.com", 100)], sheet="Fevereiro")

        with open_workbook(path) as workbook:
            rows = list(iter_raw_rows(workbook, Period(year=2025, month=2)))

        assert len(rows) == 1

    def test_missing_sheet_lists_available(self, make_workbook):
        path = make_workbook([], sheet="JANEIRO", extra_sheets=("RESUMO",))

        with open_workbook(path) as workbook:
            with pytest.raises(SheetNotFound) as exc_info:
                iter_raw_rows(workbook, Period(year=2025, month=4))

        assert exc_info.value.expected == "ABRIL"
        assert exc_info.value.available == ["JANEIRO", "RESUMO"]
        assert exc_info.value.to_dict()["code"] == "SHEET_NOT_FOUND"

    def test_cell_past_row_end_is_none(self, make_workbook):
        path = make_workbook([["Ana"]])

        with open_workbook(path) as workbook:
            (row,) = list(iter_raw_rows(workbook, Period(year=2025, month=1)))

        assert row.cell(Column.NET_AMOUNT) is None

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"not a zip archive")

        with pytest.raises(UnreadableWorkbookError):
            with open_workbook(path):
                pass
