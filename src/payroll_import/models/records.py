"""Monthly record and backup snapshot models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_import.models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from payroll_import.models.collaborator import Binding, Collaborator


# Fields replaced when a record is overwritten by a re-import; the manual-edit
# trail is never touched.
FINANCIAL_FIELDS = (
    "collaborator_id",
    "collaborator_kind",
    "period_start_day",
    "period_end_day",
    "net_amount",
    "gross_billing",
    "professional_share",
    "fixed_amount",
    "is_fixed",
    "absences",
    "target_met",
)


class MonthlyRecord(Base, TimestampMixin):
    """Financial outcome of one binding in one (month, year)."""

    __tablename__ = "monthly_record"

    record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    collaborator_id: Mapped[UUID] = mapped_column(
        ForeignKey("collaborator.collaborator_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Nullable for rows imported before bindings existed.
    binding_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("collaborator_binding.binding_id", ondelete="SET NULL"),
        nullable=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    collaborator_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    period_end_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gross_billing: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    professional_share: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0
    )
    fixed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    is_fixed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    absences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Manual edit trail (written by payroll editing, never by imports)
    value_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    edited_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    edited_by: Mapped[str | None] = mapped_column(String, nullable=True)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    edit_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "binding_id", "month", "year", name="monthly_record_binding_period_unique"
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="monthly_record_month_check"),
        CheckConstraint(
            "collaborator_kind IN ('contractor', 'employee')",
            name="monthly_record_kind_check",
        ),
        CheckConstraint("absences >= 0", name="monthly_record_absences_check"),
        Index("monthly_record_scope_idx", "year", "month", "collaborator_kind"),
        Index("monthly_record_collaborator_idx", "collaborator_id"),
    )

    # Relationships
    collaborator: Mapped[Collaborator] = relationship()
    binding: Mapped[Binding | None] = relationship(back_populates="records")


class BackupSnapshot(Base, TimestampMixin):
    """Immutable copy of a scope's monthly records taken before an overwrite."""

    __tablename__ = "backup_snapshot"

    snapshot_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    collaborator_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False)
    records: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)

    __table_args__ = (
        Index("backup_snapshot_scope_idx", "year", "month", "collaborator_kind"),
    )


class ImmutableSnapshotError(Exception):
    """Raised when code attempts to modify or delete a backup snapshot."""


@event.listens_for(BackupSnapshot, "before_update")
def _reject_snapshot_update(mapper: Any, connection: Any, target: BackupSnapshot) -> None:
    raise ImmutableSnapshotError(f"Backup snapshot {target.snapshot_id} is immutable")


@event.listens_for(BackupSnapshot, "before_delete")
def _reject_snapshot_delete(mapper: Any, connection: Any, target: BackupSnapshot) -> None:
    raise ImmutableSnapshotError(f"Backup snapshot {target.snapshot_id} is immutable")
