"""
Catalog API - Configuration
===========================
Environment-based settings using pydantic-settings.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Database Configuration
    # ==========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/catalog.db",
        description="SQLAlchemy async database URL"
    )
    database_echo: bool = Field(default=False, description="Log every SQL statement")
    auto_create_schema: bool = Field(
        default=True,
        description="Create missing tables on startup (no migrations)"
    )

    # ==========================================================================
    # HTTP Configuration
    # ==========================================================================
    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:3001",
            "http://localhost:5173",
        ]
    )

    # ==========================================================================
    # Rate Limiting
    # ==========================================================================
    rate_limit_max_requests: int = Field(default=100, ge=1)
    rate_limit_window_seconds: float = Field(default=15 * 60, gt=0)
    login_rate_limit_max_requests: int = Field(default=5, ge=1)
    login_rate_limit_window_seconds: float = Field(default=15 * 60, gt=0)

    # ==========================================================================
    # Response Cache
    # ==========================================================================
    cache_enabled: bool = Field(default=True)
    cache_max_entries: int = Field(default=1024, ge=1)
    cache_ttl_short_seconds: float = Field(default=60, gt=0)
    cache_ttl_medium_seconds: float = Field(default=5 * 60, gt=0)
    cache_ttl_long_seconds: float = Field(default=15 * 60, gt=0)

    # ==========================================================================
    # Security
    # ==========================================================================
    bcrypt_rounds: int = Field(default=12, description="bcrypt cost factor")

    # ==========================================================================
    # Streaming Export
    # ==========================================================================
    export_default_limit: int = Field(default=100, ge=1)
    export_max_limit: int = Field(default=1_000_000, ge=1)
    export_batch_size: int = Field(
        default=500,
        ge=1,
        description="Rows buffered by the database driver per fetch"
    )
    export_row_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Maximum wait for the next row from the database"
    )

    # ==========================================================================
    # Runtime Configuration
    # ==========================================================================
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        """bcrypt only accepts cost factors between 4 and 31."""
        if v < 4 or v > 31:
            raise ValueError("bcrypt_rounds must be between 4 and 31")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_export_limits(self) -> "Settings":
        """Validate the default export size fits under the maximum."""
        if self.export_default_limit > self.export_max_limit:
            raise ValueError(
                f"export_default_limit ({self.export_default_limit}) must not exceed "
                f"export_max_limit ({self.export_max_limit})"
            )
        return self

    @model_validator(mode="after")
    def validate_cache_tiers(self) -> "Settings":
        """Validate cache tiers are ordered short <= medium <= long."""
        if not (
            self.cache_ttl_short_seconds
            <= self.cache_ttl_medium_seconds
            <= self.cache_ttl_long_seconds
        ):
            raise ValueError("cache TTL tiers must satisfy short <= medium <= long")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment on every call.
    """
    return Settings()
