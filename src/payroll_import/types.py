"""Type definitions shared by the import pipeline."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from enum import Enum

from payroll_import.errors import InvalidPeriodError


class CollaboratorKind(str, Enum):
    """Account kinds stored on a collaborator.

    Only CONTRACTOR and EMPLOYEE are payable; ADMIN and MASTER are
    administrative accounts that share the email namespace.
    """

    CONTRACTOR = "contractor"
    EMPLOYEE = "employee"
    ADMIN = "admin"
    MASTER = "master"

    @property
    def is_payable(self) -> bool:
        return self in PAYABLE_KINDS

    @classmethod
    def parse_payable(cls, value: str | CollaboratorKind) -> CollaboratorKind:
        """Parse a payable kind, rejecting administrative kinds."""
        try:
            kind = cls(value)
        except ValueError:
            raise InvalidPeriodError(
                f"Invalid collaborator kind {value!r}; use 'contractor' or 'employee'"
            ) from None
        if not kind.is_payable:
            raise InvalidPeriodError(f"Collaborator kind {kind.value!r} is not payable")
        return kind


PAYABLE_KINDS = frozenset({CollaboratorKind.CONTRACTOR, CollaboratorKind.EMPLOYEE})
ADMINISTRATIVE_KINDS = frozenset({CollaboratorKind.ADMIN, CollaboratorKind.MASTER})


class ProvisioningStatus(str, Enum):
    """Collaborator provisioning status."""

    PENDING = "pending"
    ACTIVE = "active"


class Shift(str, Enum):
    """Work shift of a binding."""

    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"
    NIGHT = "NIGHT"
    FULL = "FULL"
    UNDEFINED = "UNDEFINED"


class MatchStatus(str, Enum):
    """Reconciliation classification against persisted state."""

    NEW = "NEW"
    EXISTING = "EXISTING"


# Employees close payroll on the 25th; contractors are paid for the full month.
EMPLOYEE_CUTOFF_DAY = 25


@dataclass(frozen=True, order=True)
class Period:
    """A (month, year) pair."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise InvalidPeriodError(f"Invalid month: {self.month}")
        if not 1900 <= self.year <= 9999:
            raise InvalidPeriodError(f"Invalid year: {self.year}")

    @classmethod
    def parse(cls, month: int | str | None, year: int | str | None) -> Period:
        """Build a period from loosely typed operator input."""
        if month in (None, "") or year in (None, ""):
            raise InvalidPeriodError("Month and year are required")
        try:
            return cls(year=int(year), month=int(month))
        except (TypeError, ValueError):
            raise InvalidPeriodError(f"Invalid period: {month}/{year}") from None

    @property
    def last_day(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def reference_bounds(self, kind: CollaboratorKind) -> ReferencePeriod:
        """First/last day of the paid reference period for a collaborator kind."""
        if kind == CollaboratorKind.EMPLOYEE:
            return ReferencePeriod(start_day=1, end_day=EMPLOYEE_CUTOFF_DAY)
        return ReferencePeriod(start_day=1, end_day=self.last_day)

    def __str__(self) -> str:
        return f"{self.month:02d}/{self.year}"


@dataclass(frozen=True)
class ReferencePeriod:
    """Day bounds of the reference period within a month."""

    start_day: int
    end_day: int


@dataclass(frozen=True)
class Scope:
    """A (period, collaborator kind) scope for commits, backups and deletions."""

    period: Period
    kind: CollaboratorKind

    @property
    def key(self) -> str:
        """Stable string key used for locking."""
        return f"monthly_record:{self.period.year}-{self.period.month:02d}:{self.kind.value}"

    def __str__(self) -> str:
        return f"{self.period} ({self.kind.value})"
