"""Row normalization: raw spreadsheet cells to typed row records.

Column positions are a contract with the spreadsheet layout. Nothing past
this module reads cells by index.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import IntEnum
from typing import Any

from payroll_import.errors import PayrollImportError
from payroll_import.ingest.aliases import (
    NOT_APPLICABLE_MARKERS,
    normalize_specialty,
    normalize_unit,
    resolve_shift,
    strip_shift_annotations,
)
from payroll_import.ingest.workbook import RawRow
from payroll_import.types import CollaboratorKind, Shift

logger = logging.getLogger(__name__)


class Column(IntEnum):
    """0-based column positions of the upload layout."""

    NAME = 0
    SPECIALTY = 1
    UNIT = 2
    GROSS_BILLING = 3
    PROFESSIONAL_SHARE = 4
    FIXED_AMOUNT = 5
    TARGET = 6
    ABSENCES = 10
    EMAIL = 11
    SHIFT = 12
    NET_AMOUNT = 19


YES_MARKERS = frozenset({"S", "SIM", "Y", "YES", "TRUE"})
NO_MARKERS = frozenset({"N", "NAO", "NÃO", "NO", "FALSE"})

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


class RowValidationError(PayrollImportError):
    """Raised when a row fails a hard field constraint."""

    code = "INVALID_ROW"

    def __init__(self, row_number: int, field: str, value: Any, reason: str):
        self.row_number = row_number
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Row {row_number}: invalid {field} ({value!r}): {reason}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            row_number=self.row_number,
            field=self.field,
            value=None if self.value is None else str(self.value),
            reason=self.reason,
        )
        return data


@dataclass(frozen=True)
class NormalizedRow:
    """A validated upload row with named, typed fields."""

    row_number: int
    email: str
    name: str
    shift: Shift
    specialty: str | None
    unit: str | None
    gross_billing: Decimal
    professional_share: Decimal
    fixed_amount: Decimal
    is_fixed: bool
    target: Decimal | None
    absences: int
    net_amount: Decimal

    def binding_key(
        self, contract_kind: CollaboratorKind
    ) -> tuple[str, str, str | None, str | None]:
        """Binding identity tuple for this row under a contract kind."""
        return (contract_kind.value, self.shift.value, self.specialty, self.unit)


@dataclass
class NormalizationResult:
    """Outcome of normalizing a sheet."""

    rows: list[NormalizedRow] = field(default_factory=list)
    rejected: list[RowValidationError] = field(default_factory=list)
    skipped: int = 0


def normalize_email(value: Any) -> str | None:
    """Trimmed, lower-cased email; None for blanks, sentinels and malformed values."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.upper() in NOT_APPLICABLE_MARKERS or "@" not in text:
        return None
    email = text.lower()
    if not EMAIL_PATTERN.match(email):
        return None
    return email


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a numeric cell; None for blank cells.

    Accepts native numbers and strings such as "1234.5" or "R$ 1.234,56".

    Raises:
        ValueError: If the cell holds something that is not a number
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("not a finite number")
        number = Decimal(str(value))
    else:
        text = str(value).strip().replace("R$", "").replace(" ", "")
        if not text:
            return None
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}") from None
    if not number.is_finite():
        raise ValueError("not a finite number")
    return number.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_target(value: Any) -> Decimal | None:
    """Monthly target; sentinels, blanks, zero and non-numbers mean no target."""
    if isinstance(value, str) and value.strip().upper() in NOT_APPLICABLE_MARKERS:
        return None
    try:
        target = parse_decimal(value)
    except ValueError:
        return None
    if target is None or target == 0:
        return None
    return target


def parse_fixed(value: Any) -> tuple[Decimal, bool]:
    """Fixed-amount column: a yes/no marker or an amount."""
    if isinstance(value, bool):
        return ZERO, value
    if isinstance(value, str):
        marker = value.strip().upper()
        if marker in YES_MARKERS:
            return ZERO, True
        if marker in NO_MARKERS:
            return ZERO, False
    amount = _optional_amount(value)
    return amount, amount != 0


def _optional_amount(value: Any) -> Decimal:
    try:
        amount = parse_decimal(value)
    except ValueError:
        logger.debug("Coercing non-numeric optional amount %r to 0", value)
        return ZERO
    return ZERO if amount is None else amount


def _absences(value: Any) -> int:
    count = int(_optional_amount(value))
    return max(count, 0)


class RowNormalizer:
    """Converts raw rows into NormalizedRow records."""

    def normalize(self, raw: RawRow) -> NormalizedRow | None:
        """Normalize one row.

        Returns None for rows that are not collaborator rows (blank name,
        blank/sentinel/malformed email).

        Raises:
            RowValidationError: If a mandatory field is invalid
        """
        raw_name = raw.cell(Column.NAME)
        name_text = "" if raw_name is None else str(raw_name).strip()
        if not name_text:
            return None

        email = normalize_email(raw.cell(Column.EMAIL))
        if email is None:
            logger.debug(
                "Skipping row %d (%s): no usable email %r",
                raw.row_number,
                name_text,
                raw.cell(Column.EMAIL),
            )
            return None

        net_cell = raw.cell(Column.NET_AMOUNT)
        try:
            net_amount = parse_decimal(net_cell)
        except ValueError as e:
            raise RowValidationError(raw.row_number, "net_amount", net_cell, str(e)) from None
        if net_amount is None:
            raise RowValidationError(raw.row_number, "net_amount", net_cell, "value is required")

        fixed_amount, is_fixed = parse_fixed(raw.cell(Column.FIXED_AMOUNT))

        return NormalizedRow(
            row_number=raw.row_number,
            email=email,
            name=strip_shift_annotations(name_text) or name_text,
            shift=resolve_shift(raw.cell(Column.SHIFT), name_text),
            specialty=normalize_specialty(raw.cell(Column.SPECIALTY)),
            unit=normalize_unit(raw.cell(Column.UNIT)),
            gross_billing=_optional_amount(raw.cell(Column.GROSS_BILLING)),
            professional_share=_optional_amount(raw.cell(Column.PROFESSIONAL_SHARE)),
            fixed_amount=fixed_amount,
            is_fixed=is_fixed,
            target=parse_target(raw.cell(Column.TARGET)),
            absences=_absences(raw.cell(Column.ABSENCES)),
            net_amount=net_amount,
        )

    def normalize_all(self, raw_rows: Iterable[RawRow]) -> NormalizationResult:
        """Normalize every row, collecting validation failures instead of raising."""
        result = NormalizationResult()
        for raw in raw_rows:
            try:
                row = self.normalize(raw)
            except RowValidationError as e:
                logger.warning("%s", e)
                result.rejected.append(e)
                continue
            if row is None:
                result.skipped += 1
            else:
                result.rows.append(row)
        return result
