"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
indexer, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DB_POOL_SIZE",
        ge=1,
        le=200,
        description="Persistent connections kept in the pool; also bounds concurrent chunk writes",
    )
    max_overflow: int = Field(
        default=10,
        alias="DB_MAX_OVERFLOW",
        ge=0,
        le=200,
        description="Extra connections opened above pool_size under load",
    )
    pool_timeout: float = Field(
        default=30.0,
        alias="DB_POOL_TIMEOUT",
        gt=0,
        le=600,
        description="Seconds to wait for a pooled connection",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class IndexerSettings(BaseSettings):
    """Batch processing settings."""

    model_config = SettingsConfigDict(env_prefix="INDEXER_", extra="ignore")

    processor_name: str = Field(
        default="trade_processor",
        alias="INDEXER_PROCESSOR_NAME",
        min_length=1,
        max_length=50,
        description="Consumer name under which progress is checkpointed",
    )
    starting_version: int = Field(
        default=0,
        alias="INDEXER_STARTING_VERSION",
        ge=0,
        description="First stream version to request when no checkpoint exists",
    )
    table_chunk_sizes: dict[str, int] = Field(
        default_factory=dict,
        alias="INDEXER_TABLE_CHUNK_SIZES",
        description='Per-table rows per chunk, as JSON (e.g. {"trades": 500})',
    )
    chunk_timeout_seconds: float = Field(
        default=60.0,
        alias="INDEXER_CHUNK_TIMEOUT_SECONDS",
        gt=0,
        le=3600,
        description="Deadline for a single chunk transaction",
    )

    @field_validator("table_chunk_sizes")
    @classmethod
    def validate_table_chunk_sizes(cls, v: dict[str, int]) -> dict[str, int]:
        for table, size in v.items():
            if size < 1:
                raise ValueError(f"INDEXER_TABLE_CHUNK_SIZES[{table!r}] must be >= 1")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from aptos_trade_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.indexer.processor_name)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    indexer: IndexerSettings = Field(
        default_factory=lambda: IndexerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "database_pool": {
                "pool_size": str(self.database.pool_size),
                "max_overflow": str(self.database.max_overflow),
                "pool_timeout": str(self.database.pool_timeout),
            },
            "indexer": {
                "processor_name": self.indexer.processor_name,
                "starting_version": str(self.indexer.starting_version),
                "table_chunk_sizes": str(self.indexer.table_chunk_sizes or "(defaults)"),
                "chunk_timeout_seconds": str(self.indexer.chunk_timeout_seconds),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


def configure_logging(settings: Settings) -> None:
    """Set the root log level and a plain formatter from ``LOG_LEVEL``."""
    logging.basicConfig(level=settings.get_logging_level(), format=_LOG_FORMAT, force=True)
    logging.getLogger(__name__).debug("Settings: %s", settings.redacted_summary())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
