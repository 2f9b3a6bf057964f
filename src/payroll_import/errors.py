"""Base exception types shared across the import pipeline."""

from __future__ import annotations

from typing import Any


class PayrollImportError(Exception):
    """Base class for every error surfaced to the operator."""

    code = "IMPORT_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured form for CLI/JSON output."""
        return {"code": self.code, "message": str(self)}


class InvalidPeriodError(PayrollImportError):
    """Raised when month/year or collaborator kind is missing or invalid."""

    code = "INVALID_PERIOD"
