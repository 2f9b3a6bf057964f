"""ORM models for collaborators, bindings and monthly records."""

from payroll_import.models.base import Base, TimestampMixin
from payroll_import.models.collaborator import Binding, Collaborator
from payroll_import.models.records import (
    FINANCIAL_FIELDS,
    BackupSnapshot,
    ImmutableSnapshotError,
    MonthlyRecord,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Collaborator",
    "Binding",
    "MonthlyRecord",
    "BackupSnapshot",
    "ImmutableSnapshotError",
    "FINANCIAL_FIELDS",
]
