"""Row-level security policy DDL and diagnostics.

Each tenant-scoped table gets one policy comparing ``restaurant_id``
with the ``app.current_tenant`` setting. An empty or unset marker is the
administrative scope and sees every row; that is what
``TenantSessionManager.without_tenant`` relies on.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from restaurant_checklist.storage.orm import TENANT_SCOPED_TABLES
from restaurant_checklist.storage.tenant_session import (
    TENANT_SETTING,
    TenantSessionManager,
)

POLICY_NAME = "tenant_isolation"

_MARKER = f"current_setting('{TENANT_SETTING}', true)"
_PREDICATE = f"(COALESCE({_MARKER}, '') = '' OR restaurant_id = {_MARKER})"


def _check_table(table: str) -> str:
    # Table names cannot be bound parameters; only known names are allowed.
    if table not in TENANT_SCOPED_TABLES:
        raise ValueError(f"Not a tenant-scoped table: {table}")
    return table


def enable_rls_statements(table: str) -> list[str]:
    """DDL enabling and forcing the tenant policy on ``table``.

    FORCE makes the policy apply to the table owner too; superusers
    still bypass it.
    """
    table = _check_table(table)
    return [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY",
        f"DROP POLICY IF EXISTS {POLICY_NAME} ON {table}",
        (
            f"CREATE POLICY {POLICY_NAME} ON {table} "
            f"USING {_PREDICATE} WITH CHECK {_PREDICATE}"
        ),
    ]


def disable_rls_statements(table: str) -> list[str]:
    table = _check_table(table)
    return [
        f"DROP POLICY IF EXISTS {POLICY_NAME} ON {table}",
        f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY",
        f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY",
    ]


async def is_rls_enabled(conn: AsyncConnection, table: str) -> bool:
    result = await conn.execute(
        text(
            "SELECT rowsecurity FROM pg_tables "
            "WHERE schemaname = 'public' AND tablename = :table"
        ),
        {"table": table},
    )
    value = result.scalar_one_or_none()
    return bool(value)


async def rls_policies(conn: AsyncConnection, table: str) -> list[dict[str, Any]]:
    result = await conn.execute(
        text(
            "SELECT policyname, permissive, roles, cmd, qual, with_check "
            "FROM pg_policies "
            "WHERE schemaname = 'public' AND tablename = :table "
            "ORDER BY policyname"
        ),
        {"table": table},
    )
    return [dict(row) for row in result.mappings().all()]


async def isolation_counts(
    sessions: TenantSessionManager,
    table: str,
    restaurant_ids: list[str],
) -> dict[str, int]:
    """Row count of ``table`` as seen from each restaurant's scope.

    No explicit WHERE clause: the counts come from the RLS policy alone.
    """
    table = _check_table(table)
    stmt = text(f"SELECT COUNT(*) FROM {table}")  # noqa: S608

    async def _count(conn: AsyncConnection) -> int:
        return int((await conn.execute(stmt)).scalar_one())

    return {rid: await sessions.with_tenant(rid, _count) for rid in restaurant_ids}
