"""Pytest fixtures for payroll import tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from payroll_import.config import Settings
from payroll_import.database import create_schema, get_engine, make_session_factory
from payroll_import.events import EventEmitter
from payroll_import.services import FileStagingStore, ImportService
from workbooks import HEADER


@pytest.fixture
def make_workbook(tmp_path: Path) -> Callable[..., Path]:
    """Build an .xlsx upload in tmp_path with the given rows on one sheet."""
    counter = {"n": 0}

    def _make(
        rows: list[list[Any]],
        sheet: str = "JANEIRO",
        extra_sheets: tuple[str, ...] = (),
    ) -> Path:
        counter["n"] += 1
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = sheet
        worksheet.append(HEADER)
        for row in rows:
            worksheet.append(row)
        for name in extra_sheets:
            workbook.create_sheet(name)
        path = tmp_path / "incoming" / f"planilha-{counter['n']}.xlsx"
        path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(path)
        return path

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        staging_dir=tmp_path / "uploads" / "temp",
        upload_dir=tmp_path / "uploads",
        staging_ttl_hours=48,
        max_upload_bytes=10 * 1024 * 1024,
        log_level="DEBUG",
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with a fresh schema per test."""
    engine = get_engine(settings.database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def staging_store(settings: Settings) -> FileStagingStore:
    return FileStagingStore(
        staging_dir=settings.staging_dir,
        upload_dir=settings.upload_dir,
        max_upload_bytes=settings.max_upload_bytes,
    )


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def captured_events(emitter: EventEmitter) -> list:
    """Every event dispatched by the test emitter, in order."""
    events: list = []
    emitter.on_all(events.append)
    return events


@pytest.fixture
def service(
    session: AsyncSession,
    staging_store: FileStagingStore,
    emitter: EventEmitter,
    settings: Settings,
) -> ImportService:
    return ImportService(session, staging_store, emitter=emitter, settings=settings)
