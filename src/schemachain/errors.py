"""
Migration Engine Errors.

Chain and format errors are raised before any database mutation.
ExecutionError is the only error raised after a step has started.
"""


class MigrationError(Exception):
    """Base class for all migration engine errors."""

    pass


class DuplicateNameError(MigrationError):
    """Raised when a table, column or migration name already exists."""

    def __init__(self, kind: str, name: str, scope: str | None = None):
        where = f" in {scope}" if scope else ""
        super().__init__(f"Duplicate {kind} {name!r}{where}")
        self.kind = kind
        self.name = name
        self.scope = scope


class MalformedMigrationError(MigrationError):
    """Raised when serialized migration data is structurally invalid."""

    def __init__(self, message: str, migration: str | None = None):
        prefix = f"Migration {migration!r}: " if migration else ""
        super().__init__(prefix + message)
        self.migration = migration


class CycleError(MigrationError):
    """Raised when following `from` links does not terminate at a root."""

    def __init__(self, names: list[str]):
        super().__init__("Migration chain contains a cycle: " + " -> ".join(names))
        self.names = names


class NoSuchMigrationError(MigrationError):
    """Raised when a migration name is not part of the set."""

    def __init__(self, name: str):
        super().__init__(f"No such migration: {name!r}")
        self.name = name


class NoPathError(MigrationError):
    """Raised when two migrations are not on the same chain."""

    def __init__(self, source: str | None, target: str | None, message: str | None = None):
        super().__init__(
            message
            or f"No migration path from {source or '<empty>'} to {target or '<empty>'}"
        )
        self.source = source
        self.target = target


class UnsupportedBackendError(MigrationError):
    """Raised when a backend is unknown or a migration has no text for it."""

    def __init__(self, backend: str, migration: str | None = None):
        if migration:
            message = f"Migration {migration!r} has no DDL for backend {backend!r}"
        else:
            message = f"Unsupported backend {backend!r}"
        super().__init__(message)
        self.backend = backend
        self.migration = migration


class ExecutionError(MigrationError):
    """Raised when the backend executor fails to run a migration step."""

    def __init__(
        self,
        migration: str,
        direction: str,
        cause: BaseException,
        applied: list[str] | None = None,
    ):
        super().__init__(f"Migration {migration!r} failed ({direction}): {cause}")
        self.migration = migration
        self.direction = direction
        self.cause = cause
        self.applied = applied or []
