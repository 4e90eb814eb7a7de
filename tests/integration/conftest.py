"""Shared fixtures for integration tests requiring live infrastructure.

Superusers bypass row-level security even with FORCE, so tenant-scoped
connections log in as the configured user and then act as a dedicated
non-superuser role (``-c role=...`` in the startup options).
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from restaurant_checklist.config import get_settings
from restaurant_checklist.storage.orm import (
    TENANT_SCOPED_TABLES,
    Base,
    Restaurant,
)
from restaurant_checklist.storage.rls import enable_rls_statements
from restaurant_checklist.storage.tenant_session import TenantSessionManager

APP_ROLE = "restaurant_checklist_rls_probe"

# ── Owner engine (schema, seeds, cleanup) ──────────────────────────


@pytest.fixture()
async def owner_engine() -> AsyncGenerator[AsyncEngine]:
    """Engine connecting as the configured (owner) user.

    Creates the schema, applies the tenant policies and prepares the
    unprivileged role used by ``sessions``.
    """
    engine = create_async_engine(get_settings().database_url, pool_size=2)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        for table in TENANT_SCOPED_TABLES:
            for stmt in enable_rls_statements(table):
                await conn.execute(text(stmt))
        await conn.execute(
            text(
                "DO $$ BEGIN "
                f"IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{APP_ROLE}') "
                f"THEN CREATE ROLE {APP_ROLE} NOLOGIN; END IF; END $$"
            )
        )
        await conn.execute(text(f"GRANT USAGE ON SCHEMA public TO {APP_ROLE}"))
        await conn.execute(
            text(
                "GRANT SELECT, INSERT, UPDATE, DELETE "
                f"ON restaurants, users, orders TO {APP_ROLE}"
            )
        )
        await conn.execute(
            text(f"GRANT USAGE, SELECT ON ALL SEQUENCES IN SCHEMA public TO {APP_ROLE}")
        )
    yield engine
    await engine.dispose()


# ── Tenant session manager (unprivileged role) ─────────────────────


@pytest.fixture()
async def sessions(
    owner_engine: AsyncEngine,
) -> AsyncGenerator[TenantSessionManager]:
    """Session manager whose connections are subject to RLS.

    A single pooled connection, so consecutive checkouts reuse it and
    marker leaks between borrowers would be visible.
    """
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=1,
        max_overflow=0,
        connect_args={"options": f"-c role={APP_ROLE}"},
    )
    manager = TenantSessionManager(engine)
    yield manager
    await manager.dispose()


@pytest.fixture()
async def wide_sessions(
    owner_engine: AsyncEngine,
) -> AsyncGenerator[TenantSessionManager]:
    """Like ``sessions`` but with room for concurrent checkouts."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=4,
        max_overflow=0,
        connect_args={"options": f"-c role={APP_ROLE}"},
    )
    manager = TenantSessionManager(engine)
    yield manager
    await manager.dispose()


# ── Committed seeds (real commit + DELETE cleanup) ─────────────────


@pytest.fixture()
async def restaurants(owner_engine: AsyncEngine) -> AsyncGenerator[tuple[str, str]]:
    """Two active restaurants; their users and orders are removed afterwards."""
    suffix = uuid.uuid4().hex[:8]
    ids = (f"it-a-{suffix}", f"it-b-{suffix}")
    async with owner_engine.begin() as conn:
        for rid in ids:
            await conn.execute(
                Restaurant.__table__.insert().values(
                    id=rid, name=f"Integration {rid}", is_active=True
                )
            )

    yield ids

    # ON DELETE CASCADE clears users and orders.
    async with owner_engine.begin() as conn:
        await conn.execute(
            Restaurant.__table__.delete().where(Restaurant.id.in_(ids))
        )
