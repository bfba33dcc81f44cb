"""
Observability Module.

Structured logging for the migration engine.
"""

from schemachain.observability.logging import (
    LogContext,
    configure_logging,
    current_log_context,
    get_logger,
    get_migration_logger,
)

__all__ = [
    "LogContext",
    "configure_logging",
    "current_log_context",
    "get_logger",
    "get_migration_logger",
]
