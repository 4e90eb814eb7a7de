"""Tests for RLS policy DDL and diagnostics (no DB required)."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from restaurant_checklist.storage.rls import (
    POLICY_NAME,
    disable_rls_statements,
    enable_rls_statements,
    is_rls_enabled,
    isolation_counts,
    rls_policies,
)


class TestStatements:
    def test_enable_orders(self) -> None:
        stmts = enable_rls_statements("orders")
        assert stmts[0] == "ALTER TABLE orders ENABLE ROW LEVEL SECURITY"
        assert stmts[1] == "ALTER TABLE orders FORCE ROW LEVEL SECURITY"
        assert stmts[2] == f"DROP POLICY IF EXISTS {POLICY_NAME} ON orders"
        create = stmts[3]
        assert create.startswith(f"CREATE POLICY {POLICY_NAME} ON orders USING ")
        assert "WITH CHECK" in create
        assert "current_setting('app.current_tenant', true)" in create
        assert "restaurant_id = current_setting" in create

    def test_empty_marker_is_unrestricted(self) -> None:
        create = enable_rls_statements("users")[3]
        assert "COALESCE(current_setting('app.current_tenant', true), '') = ''" in create

    def test_disable_reverses_enable(self) -> None:
        assert disable_rls_statements("orders") == [
            f"DROP POLICY IF EXISTS {POLICY_NAME} ON orders",
            "ALTER TABLE orders NO FORCE ROW LEVEL SECURITY",
            "ALTER TABLE orders DISABLE ROW LEVEL SECURITY",
        ]

    @pytest.mark.parametrize("table", ["restaurants", "orders; DROP TABLE users", ""])
    def test_unknown_table_rejected(self, table: str) -> None:
        with pytest.raises(ValueError, match="tenant-scoped"):
            enable_rls_statements(table)
        with pytest.raises(ValueError, match="tenant-scoped"):
            disable_rls_statements(table)


class TestDiagnostics:
    async def test_is_rls_enabled(self) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = True
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=result)

        assert await is_rls_enabled(conn, "orders") is True
        assert conn.execute.await_args.args[1] == {"table": "orders"}

    async def test_is_rls_enabled_missing_table(self) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=result)

        assert await is_rls_enabled(conn, "orders") is False

    async def test_rls_policies(self) -> None:
        row = {"policyname": POLICY_NAME, "cmd": "ALL"}
        result = MagicMock()
        result.mappings.return_value.all.return_value = [row]
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=result)

        assert await rls_policies(conn, "users") == [row]

    async def test_isolation_counts_scopes_each_restaurant(self) -> None:
        counts = {"rest-a": 3, "rest-b": 0}
        scoped: list[str] = []

        async def _with_tenant(tenant_id: str, work: Any) -> Any:
            scoped.append(tenant_id)
            result = MagicMock()
            result.scalar_one.return_value = counts[tenant_id]
            conn = MagicMock()
            conn.execute = AsyncMock(return_value=result)
            return await work(conn)

        sessions = MagicMock()
        sessions.with_tenant = AsyncMock(side_effect=_with_tenant)

        assert await isolation_counts(sessions, "orders", ["rest-a", "rest-b"]) == counts
        assert scoped == ["rest-a", "rest-b"]

    async def test_isolation_counts_unknown_table(self) -> None:
        with pytest.raises(ValueError):
            await isolation_counts(MagicMock(), "restaurants", ["rest-a"])
