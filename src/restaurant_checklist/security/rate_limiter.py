"""Fixed-window request counters with pluggable backing stores.

Two stores share one contract: ``increment(key, window_ms, now_ms)``
returns the post-increment count and the window reset time. The first
hit in a window starts it at ``now + window_ms``; later hits only bump
the count.

Backend failures fail OPEN (the request is allowed and the error is
logged), while CSRF and tenant checks fail closed. Availability wins
over strict enforcement for throttling only.
"""

from __future__ import annotations

import abc
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from threading import Lock

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from restaurant_checklist.errors import RateLimitBackendError

logger = structlog.get_logger()

KEY_PREFIX = "ratelimit"


@dataclass(frozen=True)
class RateLimitConfig:
    window_ms: int
    max_requests: int


RATE_LIMITS: dict[str, RateLimitConfig] = {
    "default": RateLimitConfig(window_ms=60_000, max_requests=100),
    "auth": RateLimitConfig(window_ms=900_000, max_requests=5),
    "write": RateLimitConfig(window_ms=60_000, max_requests=50),
    "read": RateLimitConfig(window_ms=60_000, max_requests=200),
    "export": RateLimitConfig(window_ms=300_000, max_requests=10),
}


def policy_for_method(method: str) -> RateLimitConfig:
    """Pick the read/write/default policy for an HTTP method."""
    method = method.upper()
    if method == "GET":
        return RATE_LIMITS["read"]
    if method in {"POST", "PUT", "PATCH", "DELETE"}:
        return RATE_LIMITS["write"]
    return RATE_LIMITS["default"]


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int
    limit: int

    def retry_after(self, now_ms: int) -> int:
        """Whole seconds until the window resets, never negative."""
        return max(0, math.ceil((self.reset_at - now_ms) / 1000))

    def headers(self) -> dict[str, str]:
        reset = datetime.fromtimestamp(self.reset_at / 1000, tz=UTC)
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset.isoformat(timespec="milliseconds"),
        }


class RateLimitStore(abc.ABC):
    """Atomic increment-in-window counter."""

    @abc.abstractmethod
    async def increment(self, key: str, window_ms: int, now_ms: int) -> tuple[int, int]:
        """Bump ``key`` and return ``(count, reset_at_ms)``."""

    async def cleanup(self, now_ms: int) -> int:
        """Drop expired windows. Returns the number of keys removed."""
        return 0

    async def close(self) -> None:
        return None


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store. Single-instance deployments only.

    ``increment`` never awaits, so check-and-bump happens within one
    event loop turn. The lock additionally covers ``cleanup`` running
    in a worker thread.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self._entries: dict[str, tuple[int, int]] = {}
        self._max_entries = max_entries
        self._lock = Lock()

    async def increment(self, key: str, window_ms: int, now_ms: int) -> tuple[int, int]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[1] <= now_ms:
                del self._entries[key]
                entry = None

            if entry is None:
                if len(self._entries) >= self._max_entries:
                    self._evict(now_ms)
                entry = (1, now_ms + window_ms)
            else:
                entry = (entry[0] + 1, entry[1])
            self._entries[key] = entry
            return entry

    def _evict(self, now_ms: int) -> None:
        # Caller holds the lock.
        self._sweep(now_ms)
        while len(self._entries) >= self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]

    def _sweep(self, now_ms: int) -> int:
        expired = [k for k, (_, reset_at) in self._entries.items() if reset_at <= now_ms]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def sweep(self, now_ms: int) -> int:
        """Synchronous sweep, safe to run via ``asyncio.to_thread``."""
        with self._lock:
            return self._sweep(now_ms)

    async def cleanup(self, now_ms: int) -> int:
        return self.sweep(now_ms)

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore(RateLimitStore):
    """Shared store for multi-instance deployments.

    INCR, PEXPIRE NX and PTTL run in one MULTI/EXEC, so concurrent
    increments across processes cannot race and only the first hit in a
    window sets the expiry.
    """

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 1.0) -> RedisRateLimitStore:
        return cls(
            Redis.from_url(
                url,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    async def increment(self, key: str, window_ms: int, now_ms: int) -> tuple[int, int]:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, window_ms, nx=True)
                pipe.pttl(key)
                count, _, ttl_ms = await pipe.execute()
        except (RedisError, OSError, TimeoutError) as exc:
            raise RateLimitBackendError(str(exc)) from exc

        if ttl_ms is None or ttl_ms < 0:
            ttl_ms = window_ms
        return int(count), now_ms + int(ttl_ms)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class RateLimiter:
    """Per ``(identifier, endpoint)`` request limiter.

    Constructed once at startup and injected; tests build isolated
    instances with their own store and clock.
    """

    def __init__(
        self,
        store: RateLimitStore,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self._clock = clock

    def now_ms(self) -> int:
        return self._clock()

    @staticmethod
    def make_key(identifier: str, endpoint: str) -> str:
        return f"{KEY_PREFIX}:{identifier}:{endpoint}"

    async def check_limit(
        self,
        identifier: str,
        endpoint: str,
        config: RateLimitConfig,
    ) -> RateLimitResult:
        """Count this request and decide whether it may proceed."""
        key = self.make_key(identifier, endpoint)
        now = self._clock()
        try:
            count, reset_at = await self.store.increment(key, config.window_ms, now)
        except Exception:
            # Fail open: throttling is not a security boundary.
            logger.exception("rate_limit_backend_error", key=key)
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests,
                reset_at=now + config.window_ms,
                limit=config.max_requests,
            )

        return RateLimitResult(
            allowed=count <= config.max_requests,
            remaining=max(0, config.max_requests - count),
            reset_at=reset_at,
            limit=config.max_requests,
        )

    async def cleanup(self) -> int:
        return await self.store.cleanup(self._clock())

    async def close(self) -> None:
        await self.store.close()
