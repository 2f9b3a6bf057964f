"""Per-scope mutual exclusion for confirm and period deletion."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any, ClassVar

from payroll_import.database import (
    acquire_advisory_lock,
    is_postgresql,
    release_advisory_lock,
)
from payroll_import.errors import PayrollImportError
from payroll_import.types import Scope

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class ScopeBusyError(PayrollImportError):
    """Raised when another confirm or deletion holds the scope."""

    code = "SCOPE_BUSY"

    def __init__(self, scope: Scope):
        self.scope = scope
        super().__init__(f"Another import or deletion is running for {scope}; try again later")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["scope"] = self.scope.key
        return data


class ScopeLockService:
    """Fail-fast locks keyed by (period, collaborator kind).

    Within a process, a registry of asyncio locks shared by every instance.
    On PostgreSQL a session-level advisory lock is also taken on a dedicated
    connection, which covers other processes. Locks are never waited on: a
    held scope raises ScopeBusyError immediately.
    """

    _local_locks: ClassVar[dict[str, asyncio.Lock]] = {}

    def __init__(self, engine: AsyncEngine | None = None):
        self.engine = engine

    @asynccontextmanager
    async def hold(self, *scopes: Scope) -> AsyncIterator[None]:
        """Hold every given scope for the duration of the block.

        Scopes are acquired in key order; if any is busy, those already taken
        are released before ScopeBusyError propagates.
        """
        ordered = sorted(set(scopes), key=lambda s: s.key)
        async with AsyncExitStack() as stack:
            for scope in ordered:
                await stack.enter_async_context(self._hold_one(scope))
            yield

    @asynccontextmanager
    async def _hold_one(self, scope: Scope) -> AsyncIterator[None]:
        lock = self._local_locks.setdefault(scope.key, asyncio.Lock())
        if lock.locked():
            logger.warning("Scope %s busy in this process", scope)
            raise ScopeBusyError(scope)

        await lock.acquire()
        try:
            if self.engine is not None and is_postgresql(self.engine):
                async with self.engine.connect() as conn:
                    if not await acquire_advisory_lock(conn, scope.key):
                        logger.warning("Scope %s busy in another process", scope)
                        raise ScopeBusyError(scope)
                    logger.debug("Acquired advisory lock %s", scope.key)
                    try:
                        yield
                    finally:
                        await release_advisory_lock(conn, scope.key)
                        await conn.commit()
            else:
                yield
        finally:
            lock.release()
            # Locks are never waited on, so a released lock has no other user.
            if self._local_locks.get(scope.key) is lock:
                del self._local_locks[scope.key]
