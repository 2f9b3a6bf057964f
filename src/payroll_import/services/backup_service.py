"""Snapshot of a scope's monthly records before a destructive overwrite."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_import.errors import PayrollImportError
from payroll_import.models import BackupSnapshot, MonthlyRecord
from payroll_import.types import CollaboratorKind, Period, Scope

logger = logging.getLogger(__name__)


class BackupError(PayrollImportError):
    """Raised when a snapshot cannot be durably written.

    Callers must abort the overwrite.
    """

    code = "BACKUP_FAILED"

    def __init__(self, scope: Scope, reason: str):
        self.scope = scope
        self.reason = reason
        super().__init__(f"Backup of {scope} failed: {reason}")


class BackupManager:
    """Creates immutable BackupSnapshot rows.

    Snapshots are never updated or deleted by this package. Durability is the
    caller's commit: the orchestrator commits the snapshot before letting an
    overwrite start.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def snapshot(self, scope: Scope) -> UUID:
        """Copy every monthly record in scope into a new snapshot.

        Raises:
            BackupError: If the records cannot be read or the snapshot written
        """
        try:
            result = await self.session.execute(
                select(MonthlyRecord)
                .where(
                    MonthlyRecord.month == scope.period.month,
                    MonthlyRecord.year == scope.period.year,
                    MonthlyRecord.collaborator_kind == scope.kind.value,
                )
                .order_by(MonthlyRecord.record_id)
            )
            records = [r.to_dict() for r in result.scalars().all()]

            snapshot = BackupSnapshot(
                month=scope.period.month,
                year=scope.period.year,
                collaborator_kind=scope.kind.value,
                record_count=len(records),
                records=records,
            )
            self.session.add(snapshot)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.exception("Backup of %s failed", scope)
            raise BackupError(scope, str(e)) from e

        logger.info(
            "Backup %s created for %s (%d records)", snapshot.snapshot_id, scope, len(records)
        )
        return snapshot.snapshot_id

    async def get_snapshot(self, snapshot_id: UUID) -> BackupSnapshot | None:
        return await self.session.get(BackupSnapshot, snapshot_id)

    async def list_snapshots(
        self,
        period: Period,
        kind: CollaboratorKind | None = None,
    ) -> list[BackupSnapshot]:
        """Snapshots for a period, newest first."""
        query = select(BackupSnapshot).where(
            BackupSnapshot.month == period.month,
            BackupSnapshot.year == period.year,
        )
        if kind is not None:
            query = query.where(BackupSnapshot.collaborator_kind == kind.value)
        result = await self.session.execute(query.order_by(BackupSnapshot.created_at.desc()))
        return list(result.scalars().all())
