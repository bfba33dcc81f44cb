"""
Schema Migration System.

Provides database migration capabilities:
- Migration sets with chained, versioned records
- Up/down scripts per SQL backend
- Applied-state ledger in the target database
- Rollback support
- Dry-run mode

Usage:
    ```python
    from schemachain.executors import SqliteExecutor
    from schemachain.migrations import MigrationManager, MigrationSet

    migrations = MigrationSet.load(json_text)
    manager = MigrationManager(migrations, SqliteExecutor(conn))

    # Apply all pending migrations
    manager.migrate()

    # Rollback last migration
    manager.rollback()

    # Check migration status
    status = manager.get_status()
    ```
"""

from schemachain.migrations.chain import ChainResolver, MigrationPath
from schemachain.migrations.ledger import Ledger, MemoryLedger, SqlLedger
from schemachain.migrations.loader import (
    FileSource,
    MigrationSource,
    PackageResourceSource,
    StringSource,
    dump_migrations,
    load_migrations,
)
from schemachain.migrations.migration_manager import (
    MigrationManager,
    MigrationResult,
    MigrationStep,
    StepState,
    create_migration_manager,
)
from schemachain.migrations.migration_set import CURRENT_NAME, MigrationSet
from schemachain.migrations.record import (
    DEFAULT_LEDGER_TABLE,
    Direction,
    MigrationBuilder,
    MigrationRecord,
)

__all__ = [
    # Records
    "MigrationRecord",
    "MigrationBuilder",
    "Direction",
    "DEFAULT_LEDGER_TABLE",
    # Set and chain
    "MigrationSet",
    "CURRENT_NAME",
    "ChainResolver",
    "MigrationPath",
    # Loading
    "MigrationSource",
    "StringSource",
    "FileSource",
    "PackageResourceSource",
    "load_migrations",
    "dump_migrations",
    # Ledger
    "Ledger",
    "MemoryLedger",
    "SqlLedger",
    # Orchestration
    "MigrationManager",
    "MigrationResult",
    "MigrationStep",
    "StepState",
    "create_migration_manager",
]
