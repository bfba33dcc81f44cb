"""Configuration for the migration engine."""

from schemachain.config.settings import (
    MigrationSettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "MigrationSettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
