"""Restaurant (tenant) directory with a bounded TTL cache."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from restaurant_checklist.errors import PosterNotConfiguredError
from restaurant_checklist.storage.orm import Restaurant
from restaurant_checklist.storage.tenant_session import TenantSessionManager

logger = structlog.get_logger()


@dataclass(frozen=True)
class RestaurantConfig:
    id: str
    name: str
    is_active: bool
    currency: str
    locale: str
    poster_token: str | None
    poster_account_name: str | None


@dataclass(frozen=True)
class PosterConfig:
    """Credentials for the Poster POS API of one restaurant."""

    token: str
    base_url: str
    account_name: str


class TenantDirectory:
    """Looks restaurants up and caches them for ``ttl_seconds``.

    Constructed once at startup and injected into the perimeter. The
    ``restaurants`` table is not tenant-scoped, so lookups go through
    the admin (no-marker) connection.
    """

    def __init__(
        self,
        sessions: TenantSessionManager,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 1024,
        poster_domain: str = "joinposter.com",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions = sessions
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._poster_domain = poster_domain
        self._clock = clock
        self._cache: dict[str, tuple[float, RestaurantConfig]] = {}

    async def _load(self, restaurant_id: str) -> RestaurantConfig | None:
        async def _query(conn: AsyncConnection) -> RestaurantConfig | None:
            stmt = select(
                Restaurant.id,
                Restaurant.name,
                Restaurant.is_active,
                Restaurant.currency,
                Restaurant.locale,
                Restaurant.poster_token,
                Restaurant.poster_account_name,
            ).where(Restaurant.id == restaurant_id)
            row = (await conn.execute(stmt)).mappings().one_or_none()
            return RestaurantConfig(**row) if row is not None else None

        return await self._sessions.without_tenant(_query)

    def _store(self, config: RestaurantConfig) -> None:
        now = self._clock()
        if config.id not in self._cache and len(self._cache) >= self._max_entries:
            expired = [k for k, (at, _) in self._cache.items() if now - at >= self._ttl]
            for key in expired:
                del self._cache[key]
            while len(self._cache) >= self._max_entries:
                del self._cache[next(iter(self._cache))]
        self._cache[config.id] = (now, config)

    async def get(self, restaurant_id: str) -> RestaurantConfig | None:
        cached = self._cache.get(restaurant_id)
        if cached is not None:
            stored_at, config = cached
            if self._clock() - stored_at < self._ttl:
                return config
            del self._cache[restaurant_id]

        config = await self._load(restaurant_id)
        if config is None:
            logger.warning("restaurant_not_found", restaurant_id=restaurant_id)
            return None
        self._store(config)
        return config

    async def is_active(self, restaurant_id: str) -> bool:
        config = await self.get(restaurant_id)
        return config is not None and config.is_active

    async def poster_config(self, restaurant_id: str) -> PosterConfig:
        """Resolve the account-specific Poster API base URL and token.

        Raises:
            PosterNotConfiguredError: unknown restaurant, or no token or
                account name configured.
        """
        config = await self.get(restaurant_id)
        if config is None:
            raise PosterNotConfiguredError(
                f"Restaurant configuration not found for tenant: {restaurant_id}"
            )
        if not config.poster_token:
            raise PosterNotConfiguredError(
                f"Poster token not configured for tenant: {restaurant_id}"
            )
        if not config.poster_account_name:
            raise PosterNotConfiguredError(
                f"Poster account name not configured for tenant: {restaurant_id}"
            )
        return PosterConfig(
            token=config.poster_token,
            base_url=f"https://{config.poster_account_name}.{self._poster_domain}/api",
            account_name=config.poster_account_name,
        )

    def invalidate(self, restaurant_id: str | None = None) -> None:
        """Forget one restaurant, or everything when called without an id."""
        if restaurant_id is None:
            self._cache.clear()
        else:
            self._cache.pop(restaurant_id, None)

    def __len__(self) -> int:
        return len(self._cache)
