"""Request perimeter primitives: CSRF tokens and rate limiting."""

from restaurant_checklist.security.csrf import CsrfTokenCodec
from restaurant_checklist.security.rate_limiter import (
    RATE_LIMITS,
    InMemoryRateLimitStore,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    RedisRateLimitStore,
)

__all__ = [
    "RATE_LIMITS",
    "CsrfTokenCodec",
    "InMemoryRateLimitStore",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "RedisRateLimitStore",
]
