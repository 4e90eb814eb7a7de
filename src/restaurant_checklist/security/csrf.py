"""Session-bound, time-boxed CSRF tokens.

Token format: ``<random>.<timestamp_ms>.<signature>`` where ``random`` is
32 random bytes and ``signature`` is HMAC-SHA256 over
``random.timestamp.session_binding``. Binary parts are base64url without
padding; the timestamp is a decimal millisecond epoch.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from collections.abc import Callable

import structlog

logger = structlog.get_logger()

CSRF_HEADER = "X-CSRF-Token"
TOKEN_TTL_MS = 60 * 60 * 1000
RANDOM_BYTES = 32
BINDING_LENGTH = 32
ANONYMOUS_BINDING = "anonymous"

MUTATING_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def requires_csrf_validation(method: str) -> bool:
    """Return True for methods that mutate state."""
    return method.upper() in MUTATING_METHODS


class CsrfTokenCodec:
    """Issue and verify CSRF tokens. Stateless apart from the secret.

    Args:
        secret: HMAC key shared by every instance of the app.
        ttl_ms: Token lifetime measured from issuance.
        clock: Millisecond epoch source, injectable for tests.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_ms: int = TOKEN_TTL_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._key = secret.encode()
        self._ttl_ms = ttl_ms
        self._clock = clock

    def _sign(self, data: str) -> str:
        return _b64url(hmac.new(self._key, data.encode(), hashlib.sha256).digest())

    def session_binding(
        self, session_token: str | None, user_id: str | int | None
    ) -> str:
        """Derive a stable per-session identifier to bind tokens to.

        Both parts present: keyed hash of ``token.user``. Otherwise the
        keyed hash of whichever is present, or of ``"anonymous"``.
        """
        user = "" if user_id is None else str(user_id)
        if session_token and user:
            material = f"{session_token}.{user}"
        else:
            material = session_token or user or ANONYMOUS_BINDING
        return self._sign(material)[:BINDING_LENGTH]

    def issue(self, session_binding: str) -> str:
        """Mint a new token bound to ``session_binding``."""
        random_part = _b64url(secrets.token_bytes(RANDOM_BYTES))
        timestamp = self._clock()
        signature = self._sign(f"{random_part}.{timestamp}.{session_binding}")
        return f"{random_part}.{timestamp}.{signature}"

    def verify(self, token: str | None, session_binding: str) -> bool:
        """Check structure, age and signature. Never raises on bad input."""
        if not token or not isinstance(token, str):
            return False

        parts = token.split(".")
        if len(parts) != 3:
            logger.debug("csrf_token_rejected", reason="malformed")
            return False

        random_part, timestamp_str, provided = parts
        try:
            timestamp = int(timestamp_str)
        except ValueError:
            logger.debug("csrf_token_rejected", reason="bad_timestamp")
            return False

        if self._clock() - timestamp > self._ttl_ms:
            logger.info("csrf_token_rejected", reason="expired")
            return False

        expected = self._sign(f"{random_part}.{timestamp_str}.{session_binding}")
        try:
            provided_bytes = provided.encode("ascii")
        except UnicodeEncodeError:
            return False

        if not hmac.compare_digest(provided_bytes, expected.encode("ascii")):
            logger.info("csrf_token_rejected", reason="signature_mismatch")
            return False
        return True
