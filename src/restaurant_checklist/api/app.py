"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection
from starlette.middleware.sessions import SessionMiddleware

from restaurant_checklist.api.middleware import RequestLoggingMiddleware
from restaurant_checklist.api.routes.csrf import router as csrf_router
from restaurant_checklist.api.routes.orders import router as orders_router
from restaurant_checklist.config import settings
from restaurant_checklist.errors import PerimeterError
from restaurant_checklist.logging_config import configure_logging
from restaurant_checklist.security.csrf import CsrfTokenCodec
from restaurant_checklist.security.rate_limiter import (
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitStore,
    RedisRateLimitStore,
)
from restaurant_checklist.storage.database import create_engine
from restaurant_checklist.storage.tenant_session import TenantSessionManager
from restaurant_checklist.storage.tenants import TenantDirectory

logger = structlog.get_logger()

HEALTH_CHECK_TIMEOUT = 5.0


async def _cleanup_loop(limiter: RateLimiter, interval: float) -> None:
    """Periodic cleanup of expired rate limit windows."""
    while True:
        await asyncio.sleep(interval)
        try:
            cleaned = await limiter.cleanup()
            if cleaned:
                logger.debug("rate_limiter_cleanup", keys_removed=cleaned)
        except Exception:
            logger.exception("rate_limiter_cleanup_error")


def _build_store() -> RateLimitStore:
    if settings.redis_url:
        logger.info("rate_limiter_store", backend="redis")
        return RedisRateLimitStore.from_url(
            settings.redis_url, socket_timeout=settings.redis_socket_timeout
        )
    logger.info("rate_limiter_store", backend="memory")
    return InMemoryRateLimitStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Create the connection pool and tenant session manager.
        - Create rate limiter (Redis when configured) and its cleanup task.
        - Create CSRF codec and tenant directory.
    Shutdown:
        - Cancel cleanup task, close the rate limit store.
        - Dispose database engine (close connection pool).
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
    )

    sessions = TenantSessionManager(create_engine(settings))
    limiter = RateLimiter(_build_store())
    app.state.sessions = sessions
    app.state.rate_limiter = limiter
    app.state.csrf_codec = CsrfTokenCodec(
        settings.auth_secret.get_secret_value(),
        ttl_ms=settings.csrf_token_ttl_ms,
    )
    app.state.tenant_directory = TenantDirectory(
        sessions,
        ttl_seconds=settings.tenant_cache_ttl,
        max_entries=settings.tenant_cache_max_entries,
        poster_domain=settings.poster_api_domain,
    )

    cleanup_task = asyncio.create_task(
        _cleanup_loop(limiter, settings.rate_limit_cleanup_interval)
    )

    logger.info("app_started", environment=str(settings.environment))
    yield

    cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await cleanup_task
    await limiter.close()
    await sessions.dispose()
    logger.info("app_stopped")


app = FastAPI(
    title="Restaurant Checklist",
    description="Multi-tenant restaurant inventory ordering API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.auth_secret.get_secret_value(),
    session_cookie=settings.session_cookie_name,
    max_age=settings.session_max_age,
    same_site="lax",
    https_only=settings.is_prod,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)


@app.get("/api/health")
async def health(request: Request) -> JSONResponse:
    """Deep health check: verifies DB and (if configured) Redis connectivity."""
    checks: dict[str, str] = {}
    overall = "ok"

    async def _ping(conn: AsyncConnection) -> None:
        await conn.execute(text("SELECT 1"))

    # DB check
    try:
        sessions: TenantSessionManager = request.app.state.sessions
        await asyncio.wait_for(
            sessions.without_tenant(_ping),
            timeout=HEALTH_CHECK_TIMEOUT,
        )
        checks["db"] = "ok"
    except (TimeoutError, OperationalError, SQLAlchemyError, PerimeterError) as e:
        logger.warning("health_check_db_error", error=type(e).__name__)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_db_unexpected", error=str(e), exc_info=True)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"

    # Redis check
    limiter: RateLimiter = request.app.state.rate_limiter
    if isinstance(limiter.store, RedisRateLimitStore):
        try:
            await asyncio.wait_for(limiter.store.ping(), timeout=HEALTH_CHECK_TIMEOUT)
            checks["redis"] = "ok"
        except (TimeoutError, ConnectionError, OSError) as e:
            logger.warning("health_check_redis_error", error=type(e).__name__)
            checks["redis"] = f"error: {type(e).__name__}"
            overall = "degraded"
        except Exception as e:
            logger.error("health_check_redis_unexpected", error=str(e), exc_info=True)
            checks["redis"] = f"error: {type(e).__name__}"
            overall = "degraded"
    else:
        checks["redis"] = "disabled"

    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "success": overall == "ok",
            "data": {
                "status": overall,
                "checks": checks,
                "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
            },
        },
    )


@app.exception_handler(PerimeterError)
async def perimeter_error_handler(
    request: Request,
    exc: PerimeterError,
) -> JSONResponse:
    """Render rejections as ``{success: false, error, message}``."""
    if exc.status_code >= 500:
        logger.error(
            "request_failed", path=request.url.path, error=exc.error, exc_info=exc
        )
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.error,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


app.include_router(csrf_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
