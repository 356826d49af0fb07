"""
Spark — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Spark platform."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via Unix socket or private IP
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "spark_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "spark"

    # ------------------------------------------------------------------ #
    # Redis – realtime pub/sub backbone (empty disables the relay)
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""
    REALTIME_CHANNEL: str = "spark:realtime"

    # ------------------------------------------------------------------ #
    # Security
    # ------------------------------------------------------------------ #
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60 * 24 * 7

    # ------------------------------------------------------------------ #
    # Discovery defaults
    # ------------------------------------------------------------------ #
    DISCOVERY_DEFAULT_LIMIT: int = 20
    DISCOVERY_DEFAULT_MIN_AGE: int = 18
    DISCOVERY_DEFAULT_MAX_AGE: int = 100

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #
    CHAT_PAGE_SIZE: int = 50
    MESSAGE_PREVIEW_LENGTH: int = 50
    MESSAGE_MAX_LENGTH: int = 2000

    # ------------------------------------------------------------------ #
    # Realtime connections
    # ------------------------------------------------------------------ #
    WS_AUTH_TIMEOUT_SECONDS: float = 5.0
    WS_SEND_QUEUE_SIZE: int = 256

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # Google Cloud Platform
    # ------------------------------------------------------------------ #
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = False

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def redis_enabled(self) -> bool:
        return bool(self.REDIS_URL)

    @field_validator("WS_SEND_QUEUE_SIZE", "JWT_EXPIRE_MINUTES", "DISCOVERY_DEFAULT_LIMIT")
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def _age_defaults_ordered(self) -> "Settings":
        if self.DISCOVERY_DEFAULT_MIN_AGE > self.DISCOVERY_DEFAULT_MAX_AGE:
            raise ValueError(
                "DISCOVERY_DEFAULT_MIN_AGE must not exceed DISCOVERY_DEFAULT_MAX_AGE"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
