"""Confirm phase: provision collaborators/bindings and write monthly records."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_import.events import (
    CollaboratorProvisioned,
    EventEmitter,
    EventMetadata,
    ImportCommitted,
)
from payroll_import.models import FINANCIAL_FIELDS, Binding, Collaborator, MonthlyRecord
from payroll_import.schemas import (
    CandidateBinding,
    CandidateCollaborator,
    CommitResult,
    EntryError,
    StagingArtifact,
)
from payroll_import.services.staging import StagingStore
from payroll_import.types import ADMINISTRATIVE_KINDS, ProvisioningStatus

logger = logging.getLogger(__name__)

ADMIN_KIND_VALUES = frozenset(k.value for k in ADMINISTRATIVE_KINDS)


def generate_confirmation_token() -> str:
    """Opaque token a pending collaborator uses to complete registration."""
    return secrets.token_hex(32)


def is_target_met(gross_billing: Decimal, target: Decimal | None) -> bool:
    """Gross billing reached the target; no target is never met."""
    if target is None:
        return False
    return gross_billing >= target


def group_by_binding(
    bindings: list[CandidateBinding],
) -> dict[tuple[str, str, str | None, str | None], list[CandidateBinding]]:
    """Group entries by binding tuple, preserving upload row order."""
    groups: dict[tuple[str, str, str | None, str | None], list[CandidateBinding]] = {}
    for entry in bindings:
        groups.setdefault(entry.key, []).append(entry)
    return groups


class CommitEngine:
    """Applies a staged artifact to persisted state.

    Key invariants:
    1. A staging token is consumed before anything is written, so one
       artifact commits at most once.
    2. Collaborator, binding and record lookups happen immediately before
       each write, never from the stage-time snapshot.
    3. Duplicate tuples within one artifact are written once, with the last
       row's figures; a new binding takes the first row's target.
    4. Each binding tuple is written inside its own SAVEPOINT; a failure is
       reported in the result and does not abort the remaining entries.
    5. Overwrites replace financial fields only, never the manual-edit trail.

    The caller owns the transaction: nothing here commits the session.
    """

    def __init__(
        self,
        session: AsyncSession,
        staging: StagingStore,
        emitter: EventEmitter | None = None,
        token_factory: Callable[[], str] = generate_confirmation_token,
    ):
        self.session = session
        self.staging = staging
        self.emitter = emitter or EventEmitter()
        self.token_factory = token_factory

    async def commit(
        self,
        token: str,
        override: bool,
        *,
        actor: str | None = None,
        correlation_id: UUID | None = None,
        backup_snapshot_id: UUID | None = None,
    ) -> CommitResult:
        """Consume a staging token and write its contents.

        Raises:
            StagingTokenInvalid: If the token was already consumed or never existed
        """
        artifact = self.staging.consume(token)
        correlation_id = correlation_id or uuid4()
        result = CommitResult(
            month=artifact.month,
            year=artifact.year,
            collaborator_kind=artifact.collaborator_kind,
            override=override,
            backup_snapshot_id=backup_snapshot_id,
        )

        logger.info(
            "Committing %s (override=%s, %d collaborator(s))",
            artifact.scope,
            override,
            len(artifact.collaborators),
        )
        try:
            for candidate in artifact.collaborators:
                await self._commit_collaborator(
                    artifact, candidate, override, result, correlation_id, actor
                )
        finally:
            self.staging.remove_source(artifact)

        logger.info(
            "Commit of %s done: %d collaborator(s), %d binding(s), %d record(s) written, "
            "%d skipped, %d error(s)",
            artifact.scope,
            result.collaborators_created,
            result.bindings_created,
            result.records_written,
            result.records_skipped,
            len(result.errors),
        )
        self.emitter.emit(
            ImportCommitted(
                metadata=EventMetadata.create(correlation_id=correlation_id, actor=actor),
                month=artifact.month,
                year=artifact.year,
                collaborator_kind=artifact.collaborator_kind.value,
                override=override,
                records_written=result.records_written,
                records_skipped=result.records_skipped,
                collaborators_created=result.collaborators_created,
                bindings_created=result.bindings_created,
                error_count=len(result.errors),
            )
        )
        return result

    async def _commit_collaborator(
        self,
        artifact: StagingArtifact,
        candidate: CandidateCollaborator,
        override: bool,
        result: CommitResult,
        correlation_id: UUID,
        actor: str | None,
    ) -> None:
        try:
            async with self.session.begin_nested():
                collaborator, created = await self._resolve_collaborator(artifact, candidate)
        except SQLAlchemyError as e:
            logger.exception("Could not provision %s", candidate.email)
            result.errors.append(EntryError(email=candidate.email, message=str(e)))
            return

        if collaborator is None:
            result.collaborators_excluded += 1
            return

        collaborator_id = collaborator.collaborator_id
        if created:
            result.collaborators_created += 1
            self.emitter.emit(
                CollaboratorProvisioned(
                    metadata=EventMetadata.create(correlation_id=correlation_id, actor=actor),
                    collaborator_id=collaborator_id,
                    email=collaborator.email,
                    name=collaborator.name,
                    kind=collaborator.kind,
                    confirmation_token=collaborator.confirmation_token or "",
                )
            )

        for entries in group_by_binding(candidate.bindings).values():
            if len(entries) > 1:
                logger.info(
                    "%s has %d rows for %s; keeping row %d",
                    candidate.email,
                    len(entries),
                    entries[0].key,
                    entries[-1].row_number,
                )
            try:
                async with self.session.begin_nested():
                    binding_created, written = await self._commit_binding(
                        artifact, collaborator_id, entries, override
                    )
            except SQLAlchemyError as e:
                logger.exception(
                    "Could not write %s row %d", candidate.email, entries[-1].row_number
                )
                result.errors.append(
                    EntryError(
                        email=candidate.email,
                        row_number=entries[-1].row_number,
                        message=str(e),
                    )
                )
                continue

            if binding_created:
                result.bindings_created += 1
            if written:
                result.records_written += 1
            else:
                result.records_skipped += len(entries)

    async def _resolve_collaborator(
        self,
        artifact: StagingArtifact,
        candidate: CandidateCollaborator,
    ) -> tuple[Collaborator | None, bool]:
        """Find or provision the collaborator for a candidate.

        Returns (collaborator, created); collaborator is None when the email
        now belongs to an administrative account.
        """
        found = await self.session.execute(
            select(Collaborator).where(Collaborator.email == candidate.email)
        )
        collaborator = found.scalar_one_or_none()

        specialties = [b.specialty for b in candidate.bindings if b.specialty]
        units = list(dict.fromkeys(b.unit for b in candidate.bindings if b.unit))

        if collaborator is not None and collaborator.kind in ADMIN_KIND_VALUES:
            logger.info(
                "Skipping %s: administrative account (%s)", candidate.email, collaborator.kind
            )
            return None, False

        if collaborator is None:
            collaborator = Collaborator(
                email=candidate.email,
                name=candidate.name,
                kind=artifact.collaborator_kind.value,
                status=ProvisioningStatus.PENDING.value,
                confirmation_token=self.token_factory(),
                specialty=specialties[0] if specialties else None,
                units=units,
                monthly_target=candidate.bindings[0].target if candidate.bindings else None,
            )
            self.session.add(collaborator)
            await self.session.flush()
            logger.info("Provisioned pending collaborator %s", candidate.email)
            return collaborator, True

        if not collaborator.specialty and specialties:
            collaborator.specialty = specialties[0]
        merged_units = list(dict.fromkeys([*(collaborator.units or []), *units]))
        if merged_units != list(collaborator.units or []):
            collaborator.units = merged_units
        await self.session.flush()
        return collaborator, False

    async def _commit_binding(
        self,
        artifact: StagingArtifact,
        collaborator_id: UUID,
        entries: list[CandidateBinding],
        override: bool,
    ) -> tuple[bool, bool]:
        """Write one binding tuple; returns (binding created, record written)."""
        first, last = entries[0], entries[-1]

        found = await self.session.execute(
            select(Binding).where(
                Binding.collaborator_id == collaborator_id,
                Binding.contract_kind == first.contract_kind.value,
                Binding.shift == first.shift.value,
                Binding.specialty == first.specialty,
                Binding.unit == first.unit,
            )
        )
        binding = found.scalar_one_or_none()
        binding_created = binding is None
        if binding is None:
            binding = Binding(
                collaborator_id=collaborator_id,
                contract_kind=first.contract_kind.value,
                shift=first.shift.value,
                specialty=first.specialty,
                unit=first.unit,
                monthly_target=first.target,
                active=True,
            )
            self.session.add(binding)
            await self.session.flush()

        target = last.target if last.target is not None else binding.monthly_target
        values = {
            "collaborator_id": collaborator_id,
            "collaborator_kind": artifact.collaborator_kind.value,
            "period_start_day": artifact.period_start_day,
            "period_end_day": artifact.period_end_day,
            "net_amount": last.net_amount,
            "gross_billing": last.gross_billing,
            "professional_share": last.professional_share,
            "fixed_amount": last.fixed_amount,
            "is_fixed": last.is_fixed,
            "absences": last.absences,
            "target_met": is_target_met(last.gross_billing, target),
        }

        found_record = await self.session.execute(
            select(MonthlyRecord).where(
                MonthlyRecord.binding_id == binding.binding_id,
                MonthlyRecord.month == artifact.month,
                MonthlyRecord.year == artifact.year,
            )
        )
        record = found_record.scalar_one_or_none()

        if record is None:
            self.session.add(
                MonthlyRecord(
                    binding_id=binding.binding_id,
                    month=artifact.month,
                    year=artifact.year,
                    **values,
                )
            )
        elif override:
            for name in FINANCIAL_FIELDS:
                setattr(record, name, values[name])
            record.updated_at = datetime.now(timezone.utc)
        else:
            logger.info(
                "Skipped existing record for binding %s in %s",
                binding.binding_id,
                artifact.period,
            )
            return binding_created, False

        await self.session.flush()
        return binding_created, True
