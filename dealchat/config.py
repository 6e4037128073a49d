"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from dealchat.config import get_settings

    settings = get_settings()
    print(settings.cache.query_ttl_seconds)
    print(settings.record_store.instance_url)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RecordStoreSettings(BaseSettings):
    """Remote CRM record store configuration."""

    instance_url: AnyHttpUrl | None = Field(
        None,
        description="Base URL of the CRM instance (e.g. https://acme.my.salesforce.com)",
    )
    access_token: SecretStr | None = Field(
        None,
        description="Bearer token issued by the CRM (session refresh is the caller's concern)",
    )
    api_version: str = Field(
        default="59.0",
        description="REST API version used for query endpoints",
    )
    timeout: int = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="RECORD_STORE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("instance_url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | AnyHttpUrl | None) -> str | AnyHttpUrl | None:
        """Treat empty strings as missing."""
        if v == "":
            return None
        return v

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """API version must look like '59.0'."""
        major, _, minor = v.partition(".")
        if not (major.isdigit() and minor.isdigit()):
            raise ValueError("api_version must look like '59.0'")
        return v


class CacheSettings(BaseSettings):
    """In-process cache lifetimes."""

    query_ttl_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Lifetime of cached query results",
    )
    resolver_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        le=3600,
        description="Lifetime of cached account resolutions",
    )
    sweep_interval_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Period of the background expired-entry sweep",
    )
    context_ttl_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Lifetime of per-user conversation context",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        extra="ignore",
    )


class ResolverSettings(BaseSettings):
    """Fuzzy account resolution tuning."""

    acceptance_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a resolved account to be used downstream",
    )
    candidate_limit: int = Field(
        default=10,
        gt=0,
        le=50,
        description="Maximum candidates fetched for fuzzy scoring",
    )
    max_alternatives: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Runner-up names returned alongside a fuzzy match",
    )

    model_config = SettingsConfigDict(
        env_prefix="RESOLVER_",
        env_file=".env",
        extra="ignore",
    )


class QuerySettings(BaseSettings):
    """Query synthesis limits."""

    max_results: int = Field(
        default=200,
        gt=0,
        le=1000,
        description="Default row limit for record queries",
    )
    aggregate_limit: int = Field(
        default=50,
        gt=0,
        description="Default row limit for grouped queries",
    )
    max_aggregate_limit: int = Field(
        default=200,
        gt=0,
        description="Largest limit accepted for grouped queries",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUERY_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_aggregate_limits(self) -> "QuerySettings":
        """Ensure the default aggregate limit fits under the cap."""
        if self.aggregate_limit > self.max_aggregate_limit:
            raise ValueError(
                f"aggregate_limit ({self.aggregate_limit}) must not exceed "
                f"max_aggregate_limit ({self.max_aggregate_limit})"
            )
        return self


class FormatterSettings(BaseSettings):
    """Chat rendering options."""

    max_table_rows: int = Field(
        default=15,
        ge=5,
        le=50,
        description="Rows shown in a result table before truncation",
    )
    relative_date_window_days: int = Field(
        default=30,
        gt=0,
        le=365,
        description="Dates closer than this render relative ('2 days ago')",
    )

    model_config = SettingsConfigDict(
        env_prefix="FORMAT_",
        env_file=".env",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stdout only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,
        )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by concern (record_store, cache, resolver, query,
    formatter, logging).

    Environment Variables:
        ENVIRONMENT: Deployment environment (development, staging, production)
        APP_NAME: Application name for logging
        DEBUG: Enable debug mode
        RECORD_STORE_*: CRM connection (see RecordStoreSettings)
        CACHE_*: Cache lifetimes (see CacheSettings)
        RESOLVER_*: Account resolution tuning (see ResolverSettings)
        QUERY_*: Query limits (see QuerySettings)
        FORMAT_*: Rendering options (see FormatterSettings)
        LOG_*: Logging configuration (see LoggingSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.resolver.acceptance_threshold
        0.7
        >>> settings.is_production
        False
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    app_name: str = Field(
        default="DealChat",
        description="Application name",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    record_store: RecordStoreSettings = Field(default_factory=RecordStoreSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)
    formatter: FormatterSettings = Field(default_factory=FormatterSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @model_validator(mode="after")
    def configure_logging(self) -> "Settings":
        """Configure logging when settings are loaded."""
        self.logging.configure()
        return self

    def model_post_init(self, __context) -> None:
        """Log configuration on initialization."""
        logger = logging.getLogger(__name__)
        logger.info(
            f"Settings loaded for {self.app_name} ({self.environment})",
            extra={
                "environment": self.environment,
                "debug": self.debug,
                "query_ttl_seconds": self.cache.query_ttl_seconds,
                "record_store_configured": self.record_store.instance_url is not None,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("DEALCHAT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses functools.lru_cache to ensure settings are loaded only once.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
