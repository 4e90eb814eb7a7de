"""FastAPI dependency injection.

Long-lived components are built in the app lifespan and kept on
``app.state``; these accessors let tests swap them through
``app.dependency_overrides``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import cast

from fastapi import Request

from restaurant_checklist.security.csrf import CsrfTokenCodec
from restaurant_checklist.security.rate_limiter import RateLimiter
from restaurant_checklist.storage.tenant_session import TenantSessionManager
from restaurant_checklist.storage.tenants import TenantDirectory

__all__ = [
    "Identity",
    "get_csrf_codec",
    "get_identity",
    "get_rate_limiter",
    "get_session_manager",
    "get_tenant_directory",
]

SESSION_USER_KEY = "user"
SESSION_TOKEN_KEY = "sid"


@dataclass(frozen=True)
class Identity:
    """Authenticated user as stored in the session by the login flow."""

    user_id: int
    role: str
    restaurant_id: str | None
    session_token: str | None


async def get_identity(request: Request) -> Identity | None:
    """Read the logged-in user from the signed session cookie.

    Returns None for anonymous callers; the perimeter decides whether
    that is acceptable.
    """
    if "session" not in request.scope:
        return None
    user = request.session.get(SESSION_USER_KEY)
    if not isinstance(user, dict) or user.get("id") is None:
        return None
    restaurant_id = user.get("restaurant_id")
    return Identity(
        user_id=int(user["id"]),
        role=str(user.get("role", "staff")),
        restaurant_id=str(restaurant_id) if restaurant_id is not None else None,
        session_token=request.session.get(SESSION_TOKEN_KEY),
    )


async def get_session_manager(request: Request) -> TenantSessionManager:
    return cast(TenantSessionManager, request.app.state.sessions)


async def get_rate_limiter(request: Request) -> RateLimiter:
    return cast(RateLimiter, request.app.state.rate_limiter)


async def get_csrf_codec(request: Request) -> CsrfTokenCodec:
    return cast(CsrfTokenCodec, request.app.state.csrf_codec)


async def get_tenant_directory(request: Request) -> TenantDirectory:
    return cast(TenantDirectory, request.app.state.tenant_directory)
