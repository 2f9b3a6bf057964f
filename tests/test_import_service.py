"""End-to-end tests for the import workflow (stage, confirm, discard, delete)."""

from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select

from payroll_import.errors import InvalidPeriodError
from payroll_import.ingest import SheetNotFound
from payroll_import.models import BackupSnapshot, Binding, Collaborator, MonthlyRecord
from payroll_import.services import (
    BackupError,
    BackupManager,
    ScopeBusyError,
    ScopeLockService,
    StagingTokenInvalid,
)
from payroll_import.types import CollaboratorKind, MatchStatus, Period, Scope
from workbooks import sheet_row

JANUARY_CONTRACTORS = Scope(period=Period(year=2025, month=1), kind=CollaboratorKind.CONTRACTOR)


def bob_morning(net=100, **kwargs):
    return sheet_row(
        "Bob", "bob@x.com", net, shift="M", specialty="Acup", unit="Matriz", **kwargs
    )


async def count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


def upload_files(settings) -> list[Path]:
    if not settings.upload_dir.is_dir():
        return []
    return [p for p in settings.upload_dir.iterdir() if p.is_file()]


class TestStage:
    """Stage reads, reconciles and stages without writing."""

    async def test_new_collaborator_example(self, service, session, make_workbook):
        path = make_workbook([bob_morning()])

        staged = await service.stage(path, 1, 2025, "contractor")

        assert [c.email for c in staged.new] == ["bob@x.com"]
        assert staged.existing == []
        (binding,) = staged.new[0].bindings
        assert binding.status == MatchStatus.NEW
        assert binding.key == ("contractor", "MORNING", "Acupuntura", "MATRIZ")
        assert staged.requires_override is False
        assert await count(session, Collaborator) == 0

    async def test_emails_match_valid_rows_minus_admins(self, service, session, make_workbook):
        session.add(Collaborator(email="boss@x.com", name="Boss", kind="master", status="active"))
        await session.commit()
        path = make_workbook(
            [
                sheet_row("Ana", " ANA@x.com", 10),
                sheet_row("Ana again", "ana@x.com", 20, shift="T"),
                sheet_row("Boss", "boss@x.com", 30),
                sheet_row("No email", "NP", 40),
                sheet_row("Broken", "broken-at-x.com", 50),
                sheet_row("", "ghost@x.com", 60),
                sheet_row("Caio", "caio@x.com", 70),
            ]
        )

        staged = await service.stage(path, 1, 2025, "contractor")

        emails = {c.email for c in staged.new + staged.existing}
        assert emails == {"ana@x.com", "caio@x.com"}
        assert staged.excluded_emails == ["boss@x.com"]
        assert staged.skipped_rows == 3
        assert staged.summary.total_bindings == 3

    async def test_rejected_rows_are_reported(self, service, make_workbook):
        path = make_workbook([bob_morning(), sheet_row("Caio", "caio@x.com", "abc")])

        staged = await service.stage(path, 1, 2025, "contractor")

        assert [c.email for c in staged.new] == ["bob@x.com"]
        assert len(staged.rejected_rows) == 1
        assert staged.rejected_rows[0]["row_number"] == 3
        assert staged.rejected_rows[0]["field"] == "net_amount"

    async def test_reference_bounds_per_kind(self, service, staging_store, make_workbook):
        path = make_workbook([bob_morning()], sheet="FEVEREIRO")

        employee = await service.stage(path, 2, 2024, "employee")
        contractor = await service.stage(path, 2, 2024, "contractor")

        employee_artifact = staging_store.peek(employee.token)
        contractor_artifact = staging_store.peek(contractor.token)
        assert (employee_artifact.period_start_day, employee_artifact.period_end_day) == (1, 25)
        assert (contractor_artifact.period_start_day, contractor_artifact.period_end_day) == (1, 29)

    async def test_missing_sheet_removes_upload(self, service, settings, make_workbook):
        path = make_workbook([bob_morning()], sheet="JANEIRO")

        with pytest.raises(SheetNotFound):
            await service.stage(path, 3, 2025, "contractor")

        assert upload_files(settings) == []
        assert path.exists()

    @pytest.mark.parametrize(
        "month,year,kind",
        [(13, 2025, "contractor"), (None, 2025, "contractor"), (1, 2025, "admin"), (1, 2025, "x")],
    )
    async def test_invalid_period_or_kind(
        self, service, settings, make_workbook, month, year, kind
    ):
        path = make_workbook([bob_morning()])

        with pytest.raises(InvalidPeriodError):
            await service.stage(path, month, year, kind)

        assert upload_files(settings) == []


class TestConfirm:
    """Confirm commits a staged artifact at most once."""

    async def test_new_collaborator_example(self, service, session, make_workbook):
        staged = await service.stage(make_workbook([bob_morning(net=100)]), 1, 2025, "contractor")

        result = await service.confirm(staged.token)

        assert (result.collaborators_created, result.bindings_created, result.records_written) == (
            1,
            1,
            1,
        )
        bob = (await session.execute(select(Collaborator))).scalar_one()
        assert bob.status == "pending"
        record = (await session.execute(select(MonthlyRecord))).scalar_one()
        assert record.net_amount == Decimal("100")

    async def test_existing_collaborator_gains_one_binding(self, service, session, make_workbook):
        first = await service.stage(make_workbook([bob_morning(net=100)]), 1, 2025, "contractor")
        await service.confirm(first.token)

        second_upload = make_workbook(
            [
                bob_morning(net=100),
                sheet_row("Bob", "bob@x.com", 200, shift="T", specialty="Fisio", unit="Matriz"),
            ]
        )
        staged = await service.stage(second_upload, 1, 2025, "contractor")

        assert staged.new == []
        (bob,) = staged.existing
        assert [b.key for b in bob.new_bindings] == [
            ("contractor", "AFTERNOON", "Fisio", "MATRIZ")
        ]
        assert len(bob.existing_bindings) == 1
        assert staged.requires_override is True

        result = await service.confirm(staged.token)

        assert result.bindings_created == 1
        assert result.records_written == 1
        assert result.records_skipped == 1
        assert result.collaborators_created == 0
        assert await count(session, Binding) == 2
        nets = (await session.execute(select(MonthlyRecord.net_amount))).scalars().all()
        assert sorted(nets) == [Decimal("100"), Decimal("200")]

    async def test_sentinel_target_never_met(self, service, session, make_workbook):
        path = make_workbook([bob_morning(gross=1_000_000, target="N/P")])
        staged = await service.stage(path, 1, 2025, "contractor")

        await service.confirm(staged.token)

        record = (await session.execute(select(MonthlyRecord))).scalar_one()
        assert record.target_met is False

    async def test_not_applicable_specialty_and_unit_stay_blank(
        self, service, session, make_workbook
    ):
        path = make_workbook(
            [sheet_row("Dani", "dani@x.com", 80, shift="T", specialty="NP", unit="N/P")]
        )
        staged = await service.stage(path, 1, 2025, "contractor")
        (binding,) = staged.new[0].bindings
        assert binding.key[2:] == (None, None)

        await service.confirm(staged.token)

        dani = (await session.execute(select(Collaborator))).scalar_one()
        assert dani.specialty is None
        assert dani.units == []
        stored = (await session.execute(select(Binding))).scalar_one()
        assert (stored.specialty, stored.unit) == (None, None)

    async def test_restage_without_override_adds_nothing(self, service, session, make_workbook):
        path = make_workbook([bob_morning(), sheet_row("Caio", "caio@x.com", 70)])
        first = await service.stage(path, 1, 2025, "contractor")
        await service.confirm(first.token)
        before = await count(session, MonthlyRecord)

        second = await service.stage(path, 1, 2025, "contractor")
        result = await service.confirm(second.token, override=False)

        assert result.records_written == 0
        assert result.records_skipped == 2
        assert result.backup_snapshot_id is None
        assert await count(session, MonthlyRecord) == before == 2
        assert await count(session, BackupSnapshot) == 0

    async def test_override_backs_up_then_replaces(
        self, service, session, make_workbook, captured_events
    ):
        first = await service.stage(make_workbook([bob_morning(net=100)]), 1, 2025, "contractor")
        await service.confirm(first.token)
        captured_events.clear()

        second = await service.stage(make_workbook([bob_morning(net=250)]), 1, 2025, "contractor")
        result = await service.confirm(second.token, override=True, actor="supervisor")

        assert result.records_written == 1
        assert result.backup_snapshot_id is not None
        assert await count(session, MonthlyRecord) == 1
        assert await count(session, BackupSnapshot) == 1
        snapshot = await session.get(BackupSnapshot, result.backup_snapshot_id)
        assert snapshot.record_count == 1
        assert Decimal(snapshot.records[0]["net_amount"]) == Decimal("100")
        record = (await session.execute(select(MonthlyRecord))).scalar_one()
        assert record.net_amount == Decimal("250")

        assert [e.event_type for e in captured_events] == ["BackupCreated", "ImportCommitted"]
        assert len({e.metadata.correlation_id for e in captured_events}) == 1
        assert captured_events[1].metadata.actor == "supervisor"

    async def test_override_on_empty_scope_takes_no_backup(self, service, session, make_workbook):
        staged = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")

        result = await service.confirm(staged.token, override=True)

        assert result.backup_snapshot_id is None
        assert await count(session, BackupSnapshot) == 0

    async def test_duplicate_rows_last_wins(self, service, session, make_workbook):
        path = make_workbook([bob_morning(net=100, gross=10), bob_morning(net=300, gross=30)])
        staged = await service.stage(path, 1, 2025, "contractor")
        assert len(staged.new[0].bindings) == 2

        await service.confirm(staged.token)

        assert await count(session, Binding) == 1
        record = (await session.execute(select(MonthlyRecord))).scalar_one()
        assert record.net_amount == Decimal("300")
        assert record.gross_billing == Decimal("30")

    async def test_token_is_single_use(self, service, settings, make_workbook):
        staged = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")
        await service.confirm(staged.token)

        with pytest.raises(StagingTokenInvalid):
            await service.confirm(staged.token)
        assert upload_files(settings) == []

    async def test_backup_failure_aborts_with_token_valid(
        self, service, session, staging_store, make_workbook, monkeypatch
    ):
        first = await service.stage(make_workbook([bob_morning(net=100)]), 1, 2025, "contractor")
        await service.confirm(first.token)
        second = await service.stage(make_workbook([bob_morning(net=250)]), 1, 2025, "contractor")

        async def failing_snapshot(self, scope):
            raise BackupError(scope, "disk full")

        monkeypatch.setattr(BackupManager, "snapshot", failing_snapshot)

        with pytest.raises(BackupError):
            await service.confirm(second.token, override=True)

        assert staging_store.peek(second.token).month == 1
        record = (await session.execute(select(MonthlyRecord))).scalar_one()
        assert record.net_amount == Decimal("100")

    async def test_busy_scope_fails_fast_with_token_valid(
        self, service, staging_store, make_workbook
    ):
        staged = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")

        async with ScopeLockService().hold(JANUARY_CONTRACTORS):
            with pytest.raises(ScopeBusyError):
                await service.confirm(staged.token)

        assert staging_store.peek(staged.token).collaborator_kind == CollaboratorKind.CONTRACTOR
        result = await service.confirm(staged.token)
        assert result.records_written == 1

    async def test_events_published_after_commit(self, service, make_workbook, captured_events):
        staged = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")

        await service.confirm(staged.token)

        assert [e.event_type for e in captured_events] == [
            "CollaboratorProvisioned",
            "ImportCommitted",
        ]


class TestDiscard:
    """Discard cancels a staged import."""

    async def test_discard(self, service, session, settings, make_workbook):
        staged = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")
        assert len(upload_files(settings)) == 1

        service.discard(staged.token)

        assert upload_files(settings) == []
        with pytest.raises(StagingTokenInvalid):
            await service.confirm(staged.token)
        assert await count(session, Collaborator) == 0


class TestPeriodOperations:
    """Pre-check, deletion and backup listing."""

    async def test_check_existing(self, service, make_workbook):
        path = make_workbook([bob_morning(net=100), sheet_row("Caio", "caio@x.com", "50,25")])
        staged = await service.stage(path, 1, 2025, "contractor")
        await service.confirm(staged.token)

        check = await service.check_existing(1, 2025)

        contractors = check.kinds["contractor"]
        assert contractors.exists is True
        assert contractors.records == 2
        assert contractors.collaborators == 2
        assert contractors.net_total == Decimal("150.25")
        assert (contractors.period_start_day, contractors.period_end_day) == (1, 31)
        employees = check.kinds["employee"]
        assert employees.exists is False
        assert employees.period_end_day == 25
        assert check.total_records == 2
        assert check.net_total == Decimal("150.25")

    async def test_delete_period(self, service, session, make_workbook, captured_events):
        staged = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")
        await service.confirm(staged.token)
        captured_events.clear()

        result = await service.delete_period(1, 2025)
        again = await service.delete_period(1, 2025, "contractor")

        assert (result.records_deleted, result.bindings_deleted, result.collaborators_deleted) == (
            1,
            1,
            1,
        )
        assert (again.records_deleted, again.bindings_deleted, again.collaborators_deleted) == (
            0,
            0,
            0,
        )
        assert await count(session, Collaborator) == 0
        assert [e.event_type for e in captured_events] == ["PeriodDeleted", "PeriodDeleted"]
        assert captured_events[0].collaborator_kind is None

    async def test_delete_all_kinds_is_busy_if_one_kind_is_held(self, service):
        async with ScopeLockService().hold(JANUARY_CONTRACTORS):
            with pytest.raises(ScopeBusyError):
                await service.delete_period(1, 2025)

    async def test_list_backups(self, service, make_workbook):
        first = await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")
        await service.confirm(first.token)
        second = await service.stage(make_workbook([bob_morning(net=5)]), 1, 2025, "contractor")
        result = await service.confirm(second.token, override=True)

        backups = await service.list_backups(1, 2025)
        employee_backups = await service.list_backups(1, 2025, "employee")

        assert [b.snapshot_id for b in backups] == [result.backup_snapshot_id]
        assert backups[0].record_count == 1
        assert employee_backups == []

    async def test_purge_staging(self, service, settings, make_workbook):
        await service.stage(make_workbook([bob_morning()]), 1, 2025, "contractor")

        assert service.purge_staging() == 0
        assert service.purge_staging(timedelta(seconds=-1)) == 1
        assert upload_files(settings) == []
