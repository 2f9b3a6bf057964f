"""Import orchestration: pre-check, stage, confirm, discard, delete."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_import.config import Settings, get_settings
from payroll_import.events import (
    BackupCreated,
    EventEmitter,
    EventMetadata,
    PeriodDeleted,
    default_emitter,
)
from payroll_import.ingest import RowNormalizer, iter_raw_rows, open_workbook
from payroll_import.schemas import (
    BackupInfo,
    CommitResult,
    DeletionResult,
    PeriodCheck,
    StageResult,
    StagingArtifact,
)
from payroll_import.services.backup_service import BackupError, BackupManager
from payroll_import.services.commit_service import CommitEngine
from payroll_import.services.deletion_service import DeletionEngine
from payroll_import.services.locking_service import ScopeLockService
from payroll_import.services.period_service import PeriodService
from payroll_import.services.reconciliation import ReconciliationEngine, load_directory
from payroll_import.services.staging import StagingStore, StagingWriteError
from payroll_import.types import PAYABLE_KINDS, CollaboratorKind, Period, Scope

logger = logging.getLogger(__name__)


class ImportService:
    """Entry point for every operator-facing import operation.

    Stage performs no writes to the database. Confirm and period deletion
    hold the scope lock for their whole unit of work and commit the session
    themselves; their events are only published once that commit succeeds.
    """

    def __init__(
        self,
        session: AsyncSession,
        staging: StagingStore,
        *,
        emitter: EventEmitter | None = None,
        locks: ScopeLockService | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.staging = staging
        self.emitter = emitter or default_emitter()
        self.locks = locks or ScopeLockService(session.bind)
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Pre-check
    # ------------------------------------------------------------------

    async def check_existing(self, month: int | str, year: int | str) -> PeriodCheck:
        """Existing records per collaborator kind for a period."""
        period = Period.parse(month, year)
        return await PeriodService(self.session).check(period)

    # ------------------------------------------------------------------
    # Stage
    # ------------------------------------------------------------------

    async def stage(
        self,
        source: Path,
        month: int | str,
        year: int | str,
        kind: str | CollaboratorKind,
    ) -> StageResult:
        """Read an upload, reconcile it and stage the result for confirmation.

        Raises:
            InvalidPeriodError: If month, year or kind is invalid
            InvalidUploadError: If the file is missing, too large or not a workbook type
            UnreadableWorkbookError: If the workbook cannot be opened
            SheetNotFound: If the workbook has no sheet for the month
            StagingWriteError: If the artifact cannot be persisted
        """
        period = Period.parse(month, year)
        collaborator_kind = CollaboratorKind.parse_payable(kind)
        scope = Scope(period=period, kind=collaborator_kind)

        upload = self.staging.accept_upload(Path(source))
        try:
            with open_workbook(upload) as workbook:
                normalization = RowNormalizer().normalize_all(iter_raw_rows(workbook, period))

            directory = await load_directory(self.session, (r.email for r in normalization.rows))
            reconciliation = ReconciliationEngine().reconcile(
                normalization.rows, scope, directory
            )

            bounds = period.reference_bounds(collaborator_kind)
            artifact = StagingArtifact(
                month=period.month,
                year=period.year,
                collaborator_kind=collaborator_kind,
                period_start_day=bounds.start_day,
                period_end_day=bounds.end_day,
                source_file=str(upload),
                created_at=datetime.now(timezone.utc),
                collaborators=reconciliation.collaborators,
                excluded_emails=reconciliation.excluded_emails,
            )
            token = self.staging.stage(artifact)
        except StagingWriteError:
            logger.error("Staging failed; upload kept at %s", upload)
            raise
        except Exception:
            self.staging.remove_upload(upload)
            raise

        existing_data = await PeriodService(self.session).summarize(period, collaborator_kind)
        if existing_data.exists:
            logger.info(
                "%s already has %d record(s); confirm needs override to replace them",
                scope,
                existing_data.records,
            )

        return StageResult(
            token=token,
            month=period.month,
            year=period.year,
            collaborator_kind=collaborator_kind,
            new=reconciliation.new,
            existing=reconciliation.existing,
            excluded_emails=reconciliation.excluded_emails,
            rejected_rows=[e.to_dict() for e in normalization.rejected],
            skipped_rows=normalization.skipped,
            summary=reconciliation.summary(),
            existing_data=existing_data,
        )

    # ------------------------------------------------------------------
    # Confirm / discard
    # ------------------------------------------------------------------

    async def confirm(
        self,
        token: str,
        override: bool = False,
        *,
        actor: str | None = None,
    ) -> CommitResult:
        """Commit a staged artifact.

        With override, existing records of the scope are snapshotted (and the
        snapshot committed) before anything is overwritten.

        Raises:
            StagingTokenInvalid: If the token is unknown or already used
            ScopeBusyError: If another confirm or deletion holds the scope
            BackupError: If the pre-overwrite snapshot fails; the token stays valid
        """
        artifact = self.staging.peek(token)
        scope = artifact.scope
        correlation_id = uuid4()

        async with self.locks.hold(scope):
            backup_snapshot_id = None
            if override:
                existing = await PeriodService(self.session).summarize(scope.period, scope.kind)
                if existing.exists:
                    backup_snapshot_id = await self._backup(scope, actor, correlation_id)

            engine = CommitEngine(self.session, self.staging, self.emitter)
            try:
                with self.emitter.batch():
                    result = await engine.commit(
                        token,
                        override,
                        actor=actor,
                        correlation_id=correlation_id,
                        backup_snapshot_id=backup_snapshot_id,
                    )
                    await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        return result

    async def _backup(self, scope: Scope, actor: str | None, correlation_id: UUID) -> UUID:
        manager = BackupManager(self.session)
        try:
            snapshot_id = await manager.snapshot(scope)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Backup commit of %s failed", scope)
            raise BackupError(scope, str(e)) from e
        except BackupError:
            await self.session.rollback()
            raise

        snapshot = await manager.get_snapshot(snapshot_id)
        self.emitter.emit(
            BackupCreated(
                metadata=EventMetadata.create(correlation_id=correlation_id, actor=actor),
                snapshot_id=snapshot_id,
                month=scope.period.month,
                year=scope.period.year,
                collaborator_kind=scope.kind.value,
                record_count=snapshot.record_count if snapshot else 0,
            )
        )
        return snapshot_id

    def discard(self, token: str) -> None:
        """Cancel a staged import; nothing is written."""
        self.staging.discard(token)

    def purge_staging(self, max_age: timedelta | None = None) -> int:
        """Discard staged imports older than the configured TTL."""
        if max_age is None:
            max_age = timedelta(hours=self.settings.staging_ttl_hours)
        purged = self.staging.purge_stale(max_age)
        logger.info("Purged %d stale staging artifact(s)", purged)
        return purged

    # ------------------------------------------------------------------
    # Deletion and audit
    # ------------------------------------------------------------------

    async def delete_period(
        self,
        month: int | str,
        year: int | str,
        kind: str | CollaboratorKind | None = None,
        *,
        actor: str | None = None,
    ) -> DeletionResult:
        """Delete a period's records (one kind or both) and their orphans.

        Raises:
            ScopeBusyError: If a confirm or deletion holds any affected scope
        """
        period = Period.parse(month, year)
        collaborator_kind = None if kind in (None, "") else CollaboratorKind.parse_payable(kind)
        kinds = [collaborator_kind] if collaborator_kind else list(PAYABLE_KINDS)

        async with self.locks.hold(*(Scope(period=period, kind=k) for k in kinds)):
            try:
                with self.emitter.batch():
                    result = await DeletionEngine(self.session).delete_period(
                        period, collaborator_kind
                    )
                    self.emitter.emit(
                        PeriodDeleted(
                            metadata=EventMetadata.create(actor=actor),
                            month=period.month,
                            year=period.year,
                            collaborator_kind=(
                                collaborator_kind.value if collaborator_kind else None
                            ),
                            records_deleted=result.records_deleted,
                            bindings_deleted=result.bindings_deleted,
                            collaborators_deleted=result.collaborators_deleted,
                        )
                    )
                    await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        return result

    async def list_backups(
        self,
        month: int | str,
        year: int | str,
        kind: str | CollaboratorKind | None = None,
    ) -> list[BackupInfo]:
        period = Period.parse(month, year)
        collaborator_kind = None if kind in (None, "") else CollaboratorKind.parse_payable(kind)
        snapshots = await BackupManager(self.session).list_snapshots(period, collaborator_kind)
        return [BackupInfo.model_validate(s) for s in snapshots]
