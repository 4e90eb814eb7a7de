"""Tenant-scoped database connections for row-level security.

Every tenant-scoped query must run on a connection whose
``app.current_tenant`` setting names exactly one restaurant. The RLS
policies on business tables compare ``restaurant_id`` against it.

Per checkout the connection moves through::

    ACQUIRED -> MARKED -> IN_USE -> UNMARKED -> RELEASED

``MARKED -> UNMARKED`` runs whether the work returns or raises. A
connection whose marker cannot be reset is invalidated (closed and
dropped from the pool) instead of being returned to it, so the next
borrower can never inherit a stale tenant.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import TypeVar

import structlog
from sqlalchemy import text
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from restaurant_checklist.errors import PoolUnavailableError

logger = structlog.get_logger()

T = TypeVar("T")

TENANT_SETTING = "app.current_tenant"

# Tenant id is always a bound parameter, never interpolated.
_SET_SESSION_MARKER = text(f"SELECT set_config('{TENANT_SETTING}', :tenant_id, false)")
_SET_LOCAL_MARKER = text(f"SELECT set_config('{TENANT_SETTING}', :tenant_id, true)")
_RESET_MARKER = text(f"RESET {TENANT_SETTING}")

Work = Callable[[AsyncConnection], Awaitable[T]]


class CheckoutState(StrEnum):
    ACQUIRED = "acquired"
    MARKED = "marked"
    IN_USE = "in_use"
    UNMARKED = "unmarked"
    RELEASED = "released"


def _require_tenant_id(tenant_id: str) -> str:
    # An empty marker is the unrestricted admin scope; never set it by accident.
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise ValueError("tenant_id must be a non-empty string")
    return tenant_id


class TenantSessionManager:
    """Scoped acquisition of tenant-tagged connections.

    Each call checks out its own connection, so concurrent units of work
    for different tenants never share marker state. When the pool is
    exhausted callers wait up to the engine's ``pool_timeout`` and then
    fail with :class:`PoolUnavailableError`.
    """

    def __init__(self, engine: AsyncEngine | None) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise PoolUnavailableError("Database pool not initialized")
        return self._engine

    async def _acquire(self) -> AsyncConnection:
        engine = self.engine
        try:
            conn = await engine.connect()
        except PoolTimeoutError as exc:
            logger.error("db_pool_checkout_timeout")
            raise PoolUnavailableError(
                "Timed out waiting for a database connection"
            ) from exc
        return conn

    async def _release(self, conn: AsyncConnection, *, clean: bool) -> None:
        if not clean:
            await conn.invalidate()
        await conn.close()

    async def _reset_marker(self, conn: AsyncConnection, tenant_id: str) -> bool:
        try:
            await conn.execute(_RESET_MARKER)
        except Exception:
            logger.critical(
                "tenant_marker_reset_failed",
                tenant_id=tenant_id,
                action="connection_invalidated",
                exc_info=True,
            )
            return False
        return True

    @asynccontextmanager
    async def tenant_connection(self, tenant_id: str) -> AsyncIterator[AsyncConnection]:
        """Autocommit connection with a session-level tenant marker."""
        tenant_id = _require_tenant_id(tenant_id)
        conn = await self._acquire()
        state = CheckoutState.ACQUIRED
        clean = False
        try:
            await conn.execution_options(isolation_level="AUTOCOMMIT")
            try:
                await conn.execute(_SET_SESSION_MARKER, {"tenant_id": tenant_id})
            except Exception:
                logger.error("tenant_marker_set_failed", tenant_id=tenant_id)
                raise
            state = CheckoutState.MARKED
            try:
                state = CheckoutState.IN_USE
                yield conn
            finally:
                clean = await self._reset_marker(conn, tenant_id)
                if clean:
                    state = CheckoutState.UNMARKED
        finally:
            await self._release(conn, clean=clean)
            logger.debug(
                "tenant_connection_released",
                tenant_id=tenant_id,
                last_state=str(state),
                clean=clean,
            )

    @asynccontextmanager
    async def tenant_transaction(self, tenant_id: str) -> AsyncIterator[AsyncConnection]:
        """Explicit transaction with a transaction-local tenant marker.

        Commits when the block exits normally, rolls back on any error.
        The marker disappears with the transaction, so no reset step.
        """
        tenant_id = _require_tenant_id(tenant_id)
        conn = await self._acquire()
        clean = False
        try:
            trans = await conn.begin()
            try:
                await conn.execute(_SET_LOCAL_MARKER, {"tenant_id": tenant_id})
                yield conn
            except BaseException:
                await trans.rollback()
                clean = True
                raise
            await trans.commit()
            clean = True
        finally:
            await self._release(conn, clean=clean)

    @asynccontextmanager
    async def admin_connection(self) -> AsyncIterator[AsyncConnection]:
        """Autocommit connection with the tenant marker explicitly cleared.

        Bypasses row-level filtering. Use only for queries that carry
        their own explicit tenant filter or touch no tenant-scoped table,
        e.g. looking a user up by email before the tenant is known.
        """
        conn = await self._acquire()
        clean = False
        try:
            await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(_RESET_MARKER)
            clean = True
            yield conn
        finally:
            await self._release(conn, clean=clean)

    async def with_tenant(self, tenant_id: str, work: Work[T]) -> T:
        """Run ``work`` on a connection scoped to ``tenant_id``."""
        async with self.tenant_connection(tenant_id) as conn:
            return await work(conn)

    async def with_tenant_transaction(self, tenant_id: str, work: Work[T]) -> T:
        """Run ``work`` in one transaction scoped to ``tenant_id``."""
        async with self.tenant_transaction(tenant_id) as conn:
            return await work(conn)

    async def without_tenant(self, work: Work[T]) -> T:
        """Run ``work`` with no tenant marker (cross-tenant admin scope)."""
        async with self.admin_connection() as conn:
            return await work(conn)

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
