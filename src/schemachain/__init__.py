"""
schemachain - versioned, chained schema migrations.

A database schema is a chain of migration records, each holding the
resulting schema snapshot and forward/reverse DDL per SQL backend.
"""

from schemachain.errors import (
    CycleError,
    DuplicateNameError,
    ExecutionError,
    MalformedMigrationError,
    MigrationError,
    NoPathError,
    NoSuchMigrationError,
    UnsupportedBackendError,
)
from schemachain.migrations import (
    MigrationBuilder,
    MigrationManager,
    MigrationRecord,
    MigrationResult,
    MigrationSet,
    load_migrations,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "MigrationError",
    "DuplicateNameError",
    "MalformedMigrationError",
    "CycleError",
    "NoPathError",
    "NoSuchMigrationError",
    "UnsupportedBackendError",
    "ExecutionError",
    # Engine
    "MigrationRecord",
    "MigrationBuilder",
    "MigrationSet",
    "MigrationManager",
    "MigrationResult",
    "load_migrations",
]
