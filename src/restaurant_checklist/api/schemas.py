"""Request/response schemas for the API layer.

Responses use the ``{"success": true, "data": ...}`` envelope the web
client expects; rejections are rendered from ``PerimeterError``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- CSRF ---


class CsrfTokenData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    csrf_token: str = Field(alias="csrfToken")


class CsrfTokenResponse(BaseModel):
    """Response for ``GET /api/csrf``."""

    success: bool = True
    data: CsrfTokenData


# --- Orders ---


class OrderItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    quantity: float = Field(..., gt=0)
    unit: str | None = Field(default=None, max_length=32)
    product_id: int | None = None
    supplier_id: int | None = None


class OrderCreateRequest(BaseModel):
    """Request body for ``POST /api/orders``."""

    department: str = Field(..., min_length=1, max_length=100)
    items: list[OrderItem] = Field(..., min_length=1)
    section_id: int | None = None
    notes: str | None = Field(default=None, max_length=2000)


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    department: str
    order_data: dict[str, Any]
    status: str
    created_by: int | None
    created_by_role: str | None
    created_at: datetime


class OrderEnvelope(BaseModel):
    success: bool = True
    data: OrderResponse


class OrderListEnvelope(BaseModel):
    success: bool = True
    data: list[OrderResponse]
