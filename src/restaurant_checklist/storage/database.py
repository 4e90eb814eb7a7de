"""Async engine (connection pool) construction."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from restaurant_checklist.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the shared connection pool.

    ``pool_timeout`` bounds connection acquisition and the server-side
    ``statement_timeout`` bounds every query, so a unit of work fails
    loudly instead of hanging.
    """
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        connect_args={
            "application_name": settings.db_application_name,
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        },
    )
