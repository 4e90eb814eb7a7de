"""Order endpoints, scoped to the caller's restaurant."""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncConnection

from restaurant_checklist.api.deps import get_session_manager
from restaurant_checklist.api.perimeter import RequestContext, require_perimeter
from restaurant_checklist.api.schemas import (
    OrderCreateRequest,
    OrderEnvelope,
    OrderListEnvelope,
    OrderResponse,
)
from restaurant_checklist.storage.orm import UserRole
from restaurant_checklist.storage.repositories import OrderRepository
from restaurant_checklist.storage.tenant_session import TenantSessionManager

logger = structlog.get_logger()

router = APIRouter(tags=["orders"])

SessionsDep = Annotated[TenantSessionManager, Depends(get_session_manager)]
ReadDep = Annotated[RequestContext, Depends(require_perimeter())]
WriteDep = Annotated[
    RequestContext,
    Depends(
        require_perimeter(
            "write", roles=(UserRole.ADMIN, UserRole.MANAGER, UserRole.STAFF)
        )
    ),
]


@router.get("/orders")
async def list_orders(
    ctx: ReadDep,
    sessions: SessionsDep,
    limit: int = Query(default=100, ge=1, le=500),
) -> OrderListEnvelope:
    """Most recent orders of the current restaurant."""

    async def _list(conn: AsyncConnection) -> list[dict[str, Any]]:
        return await OrderRepository(conn, ctx.restaurant_id).list_recent(limit=limit)

    rows = await sessions.with_tenant(ctx.restaurant_id, _list)
    return OrderListEnvelope(data=[OrderResponse.model_validate(r) for r in rows])


@router.post("/orders", status_code=201)
async def create_order(
    body: OrderCreateRequest,
    ctx: WriteDep,
    sessions: SessionsDep,
) -> OrderEnvelope:
    """Submit a shopping cart as a pending order."""
    order_data = {
        "items": [item.model_dump(exclude_none=True) for item in body.items],
        "section_id": body.section_id,
        "notes": body.notes,
    }

    async def _create(conn: AsyncConnection) -> dict[str, Any]:
        return await OrderRepository(conn, ctx.restaurant_id).create(
            department=body.department,
            order_data=order_data,
            created_by=ctx.user_id,
            created_by_role=ctx.user_role,
        )

    row = await sessions.with_tenant_transaction(ctx.restaurant_id, _create)
    logger.info("order_created", order_id=row["id"], items=len(body.items))
    return OrderEnvelope(data=OrderResponse.model_validate(row))
