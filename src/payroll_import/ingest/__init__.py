"""Spreadsheet ingestion: row extraction and normalization."""

from payroll_import.ingest.normalizer import (
    Column,
    NormalizationResult,
    NormalizedRow,
    RowNormalizer,
    RowValidationError,
)
from payroll_import.ingest.workbook import (
    MONTH_SHEET_NAMES,
    RawRow,
    SheetNotFound,
    UnreadableWorkbookError,
    iter_raw_rows,
    open_workbook,
)

__all__ = [
    "Column",
    "MONTH_SHEET_NAMES",
    "NormalizationResult",
    "NormalizedRow",
    "RawRow",
    "RowNormalizer",
    "RowValidationError",
    "SheetNotFound",
    "UnreadableWorkbookError",
    "iter_raw_rows",
    "open_workbook",
]
