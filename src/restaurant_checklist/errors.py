"""Domain-specific exceptions for restaurant-checklist.

Perimeter errors carry everything needed to render the rejection
response: HTTP status, the ``error`` string clients match on, an
optional human-readable message and extra headers.
"""

from __future__ import annotations


class PerimeterError(Exception):
    """Base class for request rejections rendered as JSON responses."""

    status_code: int = 400
    error: str = "Bad request"

    def __init__(
        self,
        message: str | None = None,
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message
        self.headers = headers or {}
        super().__init__(message or self.error)

    def to_body(self) -> dict[str, object]:
        body: dict[str, object] = {"success": False, "error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class AuthenticationRequiredError(PerimeterError):
    """No identity or no restaurant selected."""

    status_code = 401
    error = "Authentication required"


class TenantInvalidError(PerimeterError):
    """Restaurant is unknown, inactive or not the caller's."""

    status_code = 403
    error = "Invalid restaurant"


class InsufficientPermissionsError(PerimeterError):
    status_code = 403
    error = "Insufficient permissions"


class CsrfRejectedError(PerimeterError):
    """Missing, expired or mismatched anti-forgery token.

    The ``error`` string contains ``CSRF`` so clients can detect it,
    refresh the token and retry exactly once.
    """

    status_code = 403
    error = "Invalid CSRF token"


class RateLimitExceededError(PerimeterError):
    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, retry_after: int, *, headers: dict[str, str]) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Too many requests. Please try again in {retry_after} seconds.",
            headers={**headers, "Retry-After": str(retry_after)},
        )


class PoolUnavailableError(PerimeterError):
    """Connection pool is not initialized or no connection could be acquired."""

    status_code = 500
    error = "Database unavailable"


class RateLimitBackendError(Exception):
    """Shared rate limit store could not be reached. Never surfaced to clients."""


class PosterNotConfiguredError(Exception):
    """Restaurant has no Poster token or account name."""
