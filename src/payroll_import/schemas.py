"""Pydantic models for staged reconciliation results and operation results."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from payroll_import.types import CollaboratorKind, MatchStatus, Period, Scope, Shift


# ============================================================================
# Reconciliation candidates
# ============================================================================


class CandidateBinding(BaseModel):
    """One upload row: a binding tuple plus its figures for the period."""

    model_config = ConfigDict(frozen=True)

    row_number: int
    contract_kind: CollaboratorKind
    shift: Shift
    specialty: str | None = None
    unit: str | None = None
    status: MatchStatus
    binding_id: UUID | None = None

    gross_billing: Decimal
    professional_share: Decimal
    fixed_amount: Decimal
    is_fixed: bool = False
    target: Decimal | None = None
    absences: int = 0
    net_amount: Decimal

    @property
    def key(self) -> tuple[str, str, str | None, str | None]:
        """(contract_kind, shift, specialty, unit) compared by exact equality."""
        return (self.contract_kind.value, self.shift.value, self.specialty, self.unit)


class CandidateCollaborator(BaseModel):
    """All rows of one normalized email."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: str
    status: MatchStatus
    collaborator_id: UUID | None = None
    bindings: list[CandidateBinding]

    @property
    def new_bindings(self) -> list[CandidateBinding]:
        return [b for b in self.bindings if b.status == MatchStatus.NEW]

    @property
    def existing_bindings(self) -> list[CandidateBinding]:
        return [b for b in self.bindings if b.status == MatchStatus.EXISTING]


class ReconciliationSummary(BaseModel):
    """Counts reported to the operator at stage time."""

    total_collaborators: int
    new_collaborators: int
    existing_collaborators: int
    total_bindings: int
    new_bindings: int
    excluded: int


# ============================================================================
# Staging artifact
# ============================================================================


class StagingArtifact(BaseModel):
    """Everything the confirm phase needs, persisted between stage and confirm."""

    month: int
    year: int
    collaborator_kind: CollaboratorKind
    period_start_day: int
    period_end_day: int
    source_file: str
    created_at: datetime
    collaborators: list[CandidateCollaborator]
    excluded_emails: list[str] = Field(default_factory=list)

    @property
    def period(self) -> Period:
        return Period(year=self.year, month=self.month)

    @property
    def scope(self) -> Scope:
        return Scope(period=self.period, kind=self.collaborator_kind)


# ============================================================================
# Operation results
# ============================================================================


class ScopeSummary(BaseModel):
    """Existing data for one (period, collaborator kind) scope."""

    exists: bool
    records: int
    collaborators: int
    net_total: Decimal
    period_start_day: int
    period_end_day: int


class PeriodCheck(BaseModel):
    """Pre-check answer for a (month, year)."""

    month: int
    year: int
    kinds: dict[str, ScopeSummary]
    total_records: int
    total_collaborators: int
    net_total: Decimal


class StageResult(BaseModel):
    """Result of staging an upload."""

    token: str
    month: int
    year: int
    collaborator_kind: CollaboratorKind
    new: list[CandidateCollaborator]
    existing: list[CandidateCollaborator]
    excluded_emails: list[str]
    rejected_rows: list[dict[str, Any]]
    skipped_rows: int
    summary: ReconciliationSummary
    existing_data: ScopeSummary

    @property
    def requires_override(self) -> bool:
        """Existing records would be skipped unless the operator overrides."""
        return self.existing_data.exists


class EntryError(BaseModel):
    """A single failed write during confirm."""

    email: str
    row_number: int | None = None
    message: str


class CommitResult(BaseModel):
    """Counts produced by the confirm phase.

    records_written counts binding tuples written once each; records_skipped
    counts every upload row that hit an existing record without override.
    """

    month: int
    year: int
    collaborator_kind: CollaboratorKind
    override: bool
    collaborators_created: int = 0
    bindings_created: int = 0
    records_written: int = 0
    records_skipped: int = 0
    collaborators_excluded: int = 0
    backup_snapshot_id: UUID | None = None
    errors: list[EntryError] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class DeletionResult(BaseModel):
    """Counts produced by a period deletion."""

    month: int
    year: int
    collaborator_kind: CollaboratorKind | None = None
    records_deleted: int = 0
    bindings_deleted: int = 0
    collaborators_deleted: int = 0


class BackupInfo(BaseModel):
    """Listing entry for a backup snapshot."""

    model_config = ConfigDict(from_attributes=True)

    snapshot_id: UUID
    month: int
    year: int
    collaborator_kind: str
    record_count: int
    created_at: datetime
