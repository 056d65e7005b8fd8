"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"
    DEBUG: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./fingov.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # HTTP
    CORS_ORIGINS: list[str] = []
    CLIENT_ORIGIN: str | None = None
    IDENTITY_HEADER: str = "X-User-Id"

    # Exports
    EXPORT_LINK_TTL_DAYS: int = 7
    EXPORT_TOKEN_SECRET: SecretStr | None = None

    # Retention
    RETENTION_SWEEP_INTERVAL_HOURS: float = 6.0
    RETENTION_SWEEP_ENABLED: bool = True

    # Erasure
    ERASURE_CONFIRMATION_PHRASE: str = "DELETE ALL MY DATA"
    OWNER_KEY_PREFIX: str = "clerk:"
    INTERRUPTED_ERASURE_AFTER_MINUTES: int = 30

    # Audit trail query limits
    AUDIT_TRAIL_DEFAULT_LIMIT: int = 250
    AUDIT_TRAIL_MIN_LIMIT: int = 50
    AUDIT_TRAIL_MAX_LIMIT: int = 2000

    def owner_key_for(self, user_id: str) -> str:
        """Derive the owner key used by dashboard tables for a user."""
        return f"{self.OWNER_KEY_PREFIX}{user_id}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
