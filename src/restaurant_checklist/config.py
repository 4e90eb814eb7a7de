"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache
from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


DEFAULT_AUTH_SECRET = "fallback-csrf-secret-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets use SecretStr to prevent accidental logging.
    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"

    # --- CORS ---
    cors_allowed_origins: list[str] = []
    cors_allow_credentials: bool = True
    cors_allowed_methods: list[str] = ["GET", "POST", "PUT", "PATCH", "DELETE"]
    cors_allowed_headers: list[str] = ["Content-Type", "X-CSRF-Token"]

    # --- PostgreSQL ---
    postgres_user: str = "restaurant_checklist"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "restaurant_checklist"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # --- Connection pool ---
    db_pool_size: int = 20
    db_max_overflow: int = 0
    db_pool_timeout: float = 10.0
    db_pool_recycle: int = 1800
    db_statement_timeout_ms: int = 10_000
    db_application_name: str = "restaurant-checklist"

    @property
    def database_url(self) -> str:
        """Assemble database URL from components.

        Uses psycopg v3 driver which supports both sync (create_engine)
        and async (create_async_engine) modes natively.
        """
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Redis ---
    # Unset means the in-process rate limit store (single instance only).
    redis_url: str | None = None
    redis_socket_timeout: float = 1.0

    # --- Auth / CSRF ---
    auth_secret: SecretStr = SecretStr(DEFAULT_AUTH_SECRET)
    csrf_token_ttl_ms: int = 60 * 60 * 1000
    session_cookie_name: str = "session"
    session_max_age: int = 7 * 24 * 60 * 60

    # --- Rate limiting ---
    rate_limit_cleanup_interval: int = 300

    # --- Tenant directory ---
    tenant_cache_ttl: int = 300
    tenant_cache_max_entries: int = 1024

    # --- Poster POS ---
    poster_api_domain: str = "joinposter.com"

    @model_validator(mode="after")
    def _require_auth_secret_in_production(self) -> Self:
        # The secret signs session cookies; the public default forges admins.
        if (
            self.environment == Environment.PRODUCTION
            and self.auth_secret.get_secret_value() == DEFAULT_AUTH_SECRET
        ):
            raise ValueError("AUTH_SECRET must be set in production")
        return self

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from restaurant_checklist.config import get_settings
        settings = get_settings()
    """
    return Settings()


settings = get_settings()
