"""Removal of a period's monthly records and the provisioning they orphan."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_import.models import Binding, Collaborator, MonthlyRecord
from payroll_import.schemas import DeletionResult
from payroll_import.types import CollaboratorKind, Period

logger = logging.getLogger(__name__)


class DeletionEngine:
    """Deletes monthly records for a period and cleans up orphans.

    1. Records of the period (optionally one collaborator kind) are deleted.
    2. A binding referenced by a deleted record is deleted only if no record
       of any other period still references it.
    3. A collaborator touched by the deletion is deleted only if it has no
       remaining records and is still pending. Active collaborators are kept.

    Running it twice is harmless: the second run finds nothing to delete.
    The caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def delete_period(
        self,
        period: Period,
        kind: CollaboratorKind | None = None,
    ) -> DeletionResult:
        result = DeletionResult(month=period.month, year=period.year, collaborator_kind=kind)

        scope_filter = [MonthlyRecord.month == period.month, MonthlyRecord.year == period.year]
        if kind is not None:
            scope_filter.append(MonthlyRecord.collaborator_kind == kind.value)

        touched = await self.session.execute(
            select(MonthlyRecord.binding_id, MonthlyRecord.collaborator_id).where(*scope_filter)
        )
        rows = touched.all()
        if not rows:
            logger.info(
                "Nothing to delete for %s (%s)", period, kind.value if kind else "all kinds"
            )
            return result

        binding_ids = {row.binding_id for row in rows if row.binding_id is not None}
        collaborator_ids = {row.collaborator_id for row in rows}

        deleted = await self.session.execute(delete(MonthlyRecord).where(*scope_filter))
        result.records_deleted = deleted.rowcount or 0

        result.bindings_deleted = await self._delete_orphan_bindings(binding_ids)
        result.collaborators_deleted = await self._delete_orphan_collaborators(collaborator_ids)

        logger.info(
            "Deleted %s (%s): %d record(s), %d binding(s), %d collaborator(s)",
            period,
            kind.value if kind else "all kinds",
            result.records_deleted,
            result.bindings_deleted,
            result.collaborators_deleted,
        )
        return result

    async def _delete_orphan_bindings(self, binding_ids: set[UUID]) -> int:
        if not binding_ids:
            return 0
        still_used = await self.session.execute(
            select(MonthlyRecord.binding_id)
            .where(MonthlyRecord.binding_id.in_(binding_ids))
            .distinct()
        )
        orphans = binding_ids - set(still_used.scalars().all())
        if not orphans:
            return 0
        for binding_id in sorted(orphans, key=str):
            logger.info("Deleting orphan binding %s", binding_id)
        deleted = await self.session.execute(
            delete(Binding).where(Binding.binding_id.in_(orphans))
        )
        return deleted.rowcount or 0

    async def _delete_orphan_collaborators(self, collaborator_ids: set[UUID]) -> int:
        if not collaborator_ids:
            return 0
        remaining = await self.session.execute(
            select(MonthlyRecord.collaborator_id, func.count())
            .where(MonthlyRecord.collaborator_id.in_(collaborator_ids))
            .group_by(MonthlyRecord.collaborator_id)
        )
        with_records = {collaborator_id for collaborator_id, _ in remaining.all()}

        candidates = await self.session.execute(
            select(Collaborator).where(
                Collaborator.collaborator_id.in_(collaborator_ids - with_records)
            )
        )
        orphans = []
        for collaborator in candidates.scalars().all():
            if collaborator.is_pending:
                orphans.append(collaborator)
            else:
                logger.debug(
                    "Keeping %s: %s with no remaining records",
                    collaborator.email,
                    collaborator.status,
                )
        if not orphans:
            return 0

        orphan_ids = [c.collaborator_id for c in orphans]
        for collaborator in orphans:
            logger.info("Deleting orphan pending collaborator %s", collaborator.email)
        # Bindings of other kinds go with the collaborator.
        await self.session.execute(delete(Binding).where(Binding.collaborator_id.in_(orphan_ids)))
        deleted = await self.session.execute(
            delete(Collaborator).where(Collaborator.collaborator_id.in_(orphan_ids))
        )
        return deleted.rowcount or 0
