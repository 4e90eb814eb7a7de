"""Tenant-scoped repositories over a marked connection.

Queries also filter on ``restaurant_id`` explicitly; row-level security
is the safety net, not the only filter.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncConnection

from restaurant_checklist.storage.orm import Order, OrderStatus

_ORDER_COLUMNS = Order.__table__.c


class OrderRepository:
    """Orders of one restaurant.

    Expects a connection obtained from ``TenantSessionManager`` for the
    same ``restaurant_id``.
    """

    def __init__(self, conn: AsyncConnection, restaurant_id: str) -> None:
        self._conn = conn
        self._restaurant_id = restaurant_id

    async def create(
        self,
        *,
        department: str,
        order_data: dict[str, Any],
        created_by: int | None = None,
        created_by_role: str | None = None,
    ) -> dict[str, Any]:
        stmt = (
            insert(Order)
            .values(
                restaurant_id=self._restaurant_id,
                department=department,
                order_data=order_data,
                status=OrderStatus.PENDING,
                created_by=created_by,
                created_by_role=created_by_role,
            )
            .returning(*_ORDER_COLUMNS)
        )
        result = await self._conn.execute(stmt)
        return dict(result.mappings().one())

    async def list_recent(self, *, limit: int = 100) -> list[dict[str, Any]]:
        stmt = (
            select(*_ORDER_COLUMNS)
            .where(Order.restaurant_id == self._restaurant_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        result = await self._conn.execute(stmt)
        return [dict(row) for row in result.mappings().all()]
