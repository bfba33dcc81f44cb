"""
Application Settings - Pydantic Settings for configuration management.

Supports environment variables and .env file loading.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_to_lowercase(v: str) -> str:
    """Normalize string to lowercase."""
    if isinstance(v, str):
        return v.lower()
    return v


class MigrationSettings(BaseSettings):
    """Migration engine settings."""

    model_config = SettingsConfigDict(env_prefix="MIGRATIONS_")

    # Target backend (case-insensitive via BeforeValidator)
    backend: Annotated[
        Literal["sqlite", "pg"],
        BeforeValidator(normalize_to_lowercase),
    ] = Field(default="sqlite", description="Backend whose DDL is applied")

    database: str = Field(default="app.db", description="SQLite database path")
    migrations_file: Path | None = Field(
        default=None, description="Serialized migration set (JSON)"
    )
    ledger_table: str = Field(
        default="butane_migrations",
        description="Table recording applied migration names",
    )
    advisory_lock_key: int = Field(
        default=7264353, description="PostgreSQL advisory lock id held while migrating"
    )
    dry_run: bool = Field(default=False, description="Plan migrations without executing them")


class ObservabilitySettings(BaseSettings):
    """Observability settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    log_format: Literal["json", "console"] = Field(
        default="json", description="Log format (json for production, console for development)"
    )


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="schemachain", description="Application name")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Sub-settings
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
