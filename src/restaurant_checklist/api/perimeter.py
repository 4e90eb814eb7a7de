"""Request perimeter: rate limit, CSRF and tenant checks as one dependency.

Order for every protected route:

1. resolve the caller identifier (``restaurant_id`` cookie, else client IP)
2. rate limit, short-circuit with 429
3. CSRF token for mutating methods, 403 with a ``CSRF`` error
4. authenticated user and an active restaurant they may act for
5. hand a typed :class:`RequestContext` to the handler

The perimeter never queries business tables itself; handlers do that
through ``TenantSessionManager`` with ``context.restaurant_id``.
"""

from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import Depends, Request, Response

from restaurant_checklist.api.deps import (
    Identity,
    get_csrf_codec,
    get_identity,
    get_rate_limiter,
    get_tenant_directory,
)
from restaurant_checklist.errors import (
    AuthenticationRequiredError,
    CsrfRejectedError,
    InsufficientPermissionsError,
    PerimeterError,
    RateLimitExceededError,
    TenantInvalidError,
)
from restaurant_checklist.security.csrf import (
    CSRF_HEADER,
    CsrfTokenCodec,
    requires_csrf_validation,
)
from restaurant_checklist.security.rate_limiter import (
    RATE_LIMITS,
    RateLimitConfig,
    RateLimiter,
    policy_for_method,
)
from restaurant_checklist.storage.orm import UserRole
from restaurant_checklist.storage.tenants import TenantDirectory

logger = structlog.get_logger()

RESTAURANT_COOKIE = "restaurant_id"

_identity_dep = Depends(get_identity)
_limiter_dep = Depends(get_rate_limiter)
_codec_dep = Depends(get_csrf_codec)
_directory_dep = Depends(get_tenant_directory)


@dataclass(frozen=True)
class RequestContext:
    """Who is calling and for which restaurant. Passed to handlers."""

    restaurant_id: str
    user_id: int
    user_role: str
    identifier: str


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


def _resolve_policy(policy: RateLimitConfig | str | None, method: str) -> RateLimitConfig:
    if policy is None:
        return policy_for_method(method)
    if isinstance(policy, str):
        return RATE_LIMITS[policy]
    return policy


def require_perimeter(
    policy: RateLimitConfig | str | None = None,
    *,
    roles: tuple[str, ...] = (),
) -> Callable[..., Coroutine[Any, Any, RequestContext]]:
    """Dependency factory guarding a route.

    Usage::

        async def endpoint(
            ctx: RequestContext = Depends(require_perimeter("export")),
        ): ...

    Args:
        policy: Rate limit policy or its name in ``RATE_LIMITS``.
            Defaults to read/write by HTTP method.
        roles: If given, the caller's role must be one of them.

    Raises:
        RateLimitExceededError: 429 with Retry-After.
        CsrfRejectedError: 403, missing or invalid X-CSRF-Token.
        AuthenticationRequiredError: 401, no session or no restaurant.
        TenantInvalidError: 403, unknown/inactive/foreign restaurant.
        InsufficientPermissionsError: 403, role not allowed.
    """

    async def _guard(
        request: Request,
        response: Response,
        identity: Identity | None = _identity_dep,
        limiter: RateLimiter = _limiter_dep,
        codec: CsrfTokenCodec = _codec_dep,
        directory: TenantDirectory = _directory_dep,
    ) -> RequestContext:
        # 1. Identifier
        restaurant_id = request.cookies.get(RESTAURANT_COOKIE)
        identifier = restaurant_id or client_ip(request)

        # 2. Rate limit
        config = _resolve_policy(policy, request.method)
        result = await limiter.check_limit(identifier, request.url.path, config)
        rate_headers = result.headers()
        response.headers.update(rate_headers)
        if not result.allowed:
            retry_after = result.retry_after(limiter.now_ms())
            logger.info(
                "rate_limit_exceeded",
                identifier=identifier,
                path=request.url.path,
                retry_after=retry_after,
            )
            raise RateLimitExceededError(retry_after, headers=rate_headers)

        try:
            # 3. CSRF
            if requires_csrf_validation(request.method):
                _check_csrf(request, identity, codec)

            # 4. Tenant
            if identity is None or not restaurant_id:
                raise AuthenticationRequiredError(
                    "Please select a restaurant to continue"
                )
            # Non-admins act only for the restaurant bound to their session;
            # a user with no restaurant assigned may act for none.
            if (
                identity.role != UserRole.ADMIN
                and identity.restaurant_id != restaurant_id
            ):
                logger.warning(
                    "restaurant_mismatch",
                    user_id=identity.user_id,
                    restaurant_id=restaurant_id,
                )
                raise TenantInvalidError("Selected restaurant is not available")
            if not await directory.is_active(restaurant_id):
                raise TenantInvalidError("Selected restaurant is not available")
            if roles and identity.role not in roles:
                raise InsufficientPermissionsError()
        except PerimeterError as exc:
            exc.headers = {**rate_headers, **exc.headers}
            raise

        structlog.contextvars.bind_contextvars(
            restaurant_id=restaurant_id, user_id=identity.user_id
        )
        return RequestContext(
            restaurant_id=restaurant_id,
            user_id=identity.user_id,
            user_role=identity.role,
            identifier=identifier,
        )

    return _guard


def _check_csrf(
    request: Request, identity: Identity | None, codec: CsrfTokenCodec
) -> None:
    token = request.headers.get(CSRF_HEADER)
    if not token:
        logger.info("csrf_token_rejected", reason="missing", path=request.url.path)
        raise CsrfRejectedError("CSRF token missing")

    binding = codec.session_binding(
        identity.session_token if identity else None,
        identity.user_id if identity else None,
    )
    if not codec.verify(token, binding):
        raise CsrfRejectedError("CSRF token invalid or expired")
