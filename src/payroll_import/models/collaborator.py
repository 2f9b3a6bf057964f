"""Collaborator and binding models."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_import.models.base import Base, JSONType, TimestampMixin
from payroll_import.types import ProvisioningStatus

if TYPE_CHECKING:
    from payroll_import.models.records import MonthlyRecord


class Collaborator(Base, TimestampMixin):
    """A person who may be paid, identified by normalized email.

    Administrative accounts share this table (and the email namespace) but
    are never payable.
    """

    __tablename__ = "collaborator"

    collaborator_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    confirmation_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    specialty: Mapped[str | None] = mapped_column(String(100), nullable=True)
    units: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    monthly_target: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    __table_args__ = (
        UniqueConstraint("email", name="collaborator_email_unique"),
        CheckConstraint(
            "kind IN ('contractor', 'employee', 'admin', 'master')",
            name="collaborator_kind_check",
        ),
        CheckConstraint(
            "status IN ('pending', 'active')",
            name="collaborator_status_check",
        ),
    )

    # Relationships
    bindings: Mapped[list[Binding]] = relationship(back_populates="collaborator")

    @property
    def is_pending(self) -> bool:
        return self.status == ProvisioningStatus.PENDING.value


class Binding(Base, TimestampMixin):
    """Contractual attachment of a collaborator to a shift/specialty/unit."""

    __tablename__ = "collaborator_binding"

    binding_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    collaborator_id: Mapped[UUID] = mapped_column(
        ForeignKey("collaborator.collaborator_id", ondelete="CASCADE"),
        nullable=False,
    )
    contract_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    shift: Mapped[str] = mapped_column(String(20), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(100), nullable=True)
    monthly_target: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "contract_kind IN ('contractor', 'employee')",
            name="binding_contract_kind_check",
        ),
        Index("binding_collaborator_idx", "collaborator_id"),
    )

    # Relationships
    collaborator: Mapped[Collaborator] = relationship(back_populates="bindings")
    records: Mapped[list[MonthlyRecord]] = relationship(back_populates="binding")

    @property
    def identity(self) -> tuple[str, str, str | None, str | None]:
        """(contract_kind, shift, specialty, unit) compared by exact equality."""
        return (self.contract_kind, self.shift, self.specialty, self.unit)


# Binding identity; a NULL specialty or unit counts as equal to another NULL.
Index(
    "binding_identity_unique",
    Binding.collaborator_id,
    Binding.contract_kind,
    Binding.shift,
    func.coalesce(Binding.specialty, ""),
    func.coalesce(Binding.unit, ""),
    unique=True,
)
