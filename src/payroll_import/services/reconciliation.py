"""Reconciliation of normalized rows against persisted collaborators/bindings.

The engine is a pure transformation: it reads a directory snapshot that the
caller loads beforehand and performs no writes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_import.ingest.normalizer import NormalizedRow
from payroll_import.models import Binding, Collaborator
from payroll_import.schemas import CandidateBinding, CandidateCollaborator, ReconciliationSummary
from payroll_import.types import ADMINISTRATIVE_KINDS, CollaboratorKind, MatchStatus, Scope

logger = logging.getLogger(__name__)

BindingKey = tuple[str, str, str | None, str | None]


@dataclass(frozen=True)
class PersistedCollaborator:
    """Read-only view of a stored collaborator and its binding keys."""

    collaborator_id: UUID
    email: str
    kind: str
    bindings: dict[BindingKey, UUID] = field(default_factory=dict)

    @property
    def is_administrative(self) -> bool:
        return self.kind in {k.value for k in ADMINISTRATIVE_KINDS}


@dataclass(frozen=True)
class DirectorySnapshot:
    """Persisted collaborators keyed by normalized email."""

    collaborators: dict[str, PersistedCollaborator] = field(default_factory=dict)

    def lookup(self, email: str) -> PersistedCollaborator | None:
        return self.collaborators.get(email)


async def load_directory(session: AsyncSession, emails: Iterable[str]) -> DirectorySnapshot:
    """Load the collaborators (and their bindings) for a set of emails."""
    wanted = sorted(set(emails))
    if not wanted:
        return DirectorySnapshot()

    result = await session.execute(select(Collaborator).where(Collaborator.email.in_(wanted)))
    collaborators = list(result.scalars().all())
    ids = [c.collaborator_id for c in collaborators]

    bindings_by_owner: dict[UUID, dict[BindingKey, UUID]] = {cid: {} for cid in ids}
    if ids:
        binding_result = await session.execute(
            select(Binding).where(Binding.collaborator_id.in_(ids))
        )
        for binding in binding_result.scalars().all():
            bindings_by_owner[binding.collaborator_id][binding.identity] = binding.binding_id

    return DirectorySnapshot(
        collaborators={
            c.email: PersistedCollaborator(
                collaborator_id=c.collaborator_id,
                email=c.email,
                kind=c.kind,
                bindings=bindings_by_owner[c.collaborator_id],
            )
            for c in collaborators
        }
    )


@dataclass
class ReconciliationResult:
    """Classified candidates for one upload."""

    scope: Scope
    collaborators: list[CandidateCollaborator] = field(default_factory=list)
    excluded_emails: list[str] = field(default_factory=list)

    @property
    def new(self) -> list[CandidateCollaborator]:
        return [c for c in self.collaborators if c.status == MatchStatus.NEW]

    @property
    def existing(self) -> list[CandidateCollaborator]:
        return [c for c in self.collaborators if c.status == MatchStatus.EXISTING]

    def summary(self) -> ReconciliationSummary:
        bindings = [b for c in self.collaborators for b in c.bindings]
        return ReconciliationSummary(
            total_collaborators=len(self.collaborators),
            new_collaborators=len(self.new),
            existing_collaborators=len(self.existing),
            total_bindings=len(bindings),
            new_bindings=sum(1 for b in bindings if b.status == MatchStatus.NEW),
            excluded=len(self.excluded_emails),
        )


class ReconciliationEngine:
    """Groups rows into candidate collaborators/bindings and classifies them.

    1. Rows are grouped by normalized email, keeping first-seen order and the
       first-seen display name.
    2. Each email is looked up in the directory: administrative accounts are
       excluded, others are EXISTING or NEW.
    3. Each row becomes one candidate binding, EXISTING when its tuple equals a
       persisted binding of that collaborator, otherwise NEW. Duplicate tuples
       within the upload are kept as separate entries.
    """

    def reconcile(
        self,
        rows: Iterable[NormalizedRow],
        scope: Scope,
        directory: DirectorySnapshot,
    ) -> ReconciliationResult:
        grouped: dict[str, list[NormalizedRow]] = {}
        for row in rows:
            grouped.setdefault(row.email, []).append(row)

        result = ReconciliationResult(scope=scope)
        for email, email_rows in grouped.items():
            persisted = directory.lookup(email)

            if persisted is not None and persisted.is_administrative:
                logger.info("Excluding %s: administrative account (%s)", email, persisted.kind)
                result.excluded_emails.append(email)
                continue

            result.collaborators.append(
                self._classify(email, email_rows, scope.kind, persisted)
            )

        return result

    def _classify(
        self,
        email: str,
        rows: list[NormalizedRow],
        contract_kind: CollaboratorKind,
        persisted: PersistedCollaborator | None,
    ) -> CandidateCollaborator:
        bindings: list[CandidateBinding] = []
        for row in rows:
            binding_id = None
            if persisted is not None:
                binding_id = persisted.bindings.get(row.binding_key(contract_kind))
            bindings.append(
                CandidateBinding(
                    row_number=row.row_number,
                    contract_kind=contract_kind,
                    shift=row.shift,
                    specialty=row.specialty,
                    unit=row.unit,
                    status=MatchStatus.NEW if binding_id is None else MatchStatus.EXISTING,
                    binding_id=binding_id,
                    gross_billing=row.gross_billing,
                    professional_share=row.professional_share,
                    fixed_amount=row.fixed_amount,
                    is_fixed=row.is_fixed,
                    target=row.target,
                    absences=row.absences,
                    net_amount=row.net_amount,
                )
            )

        return CandidateCollaborator(
            email=email,
            name=rows[0].name,
            status=MatchStatus.NEW if persisted is None else MatchStatus.EXISTING,
            collaborator_id=None if persisted is None else persisted.collaborator_id,
            bindings=bindings,
        )
