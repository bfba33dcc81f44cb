"""
Migration Manager.

Handles schema migrations with:
- Applied-state tracking in a ledger table
- Chain-ordered execution, one transaction per step
- Rollback support
- Dry-run mode
"""

import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from schemachain.config.settings import Settings, get_settings
from schemachain.errors import (
    ExecutionError,
    MigrationError,
    NoPathError,
)
from schemachain.executors.base import BackendExecutor
from schemachain.executors.dbapi import DbApiExecutor
from schemachain.executors.sqlite import SqliteExecutor
from schemachain.migrations.chain import MigrationPath
from schemachain.migrations.ledger import Ledger, SqlLedger
from schemachain.migrations.loader import FileSource, load_migrations
from schemachain.migrations.migration_set import MigrationSet
from schemachain.migrations.record import DEFAULT_LEDGER_TABLE, Direction, MigrationRecord
from schemachain.observability.logging import LogContext, get_migration_logger

logger = get_migration_logger()

LATEST = "latest"


class StepState(str, Enum):
    """State of one migration step."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    REVERTING = "reverting"
    ABSENT = "absent"


# An aborted transaction returns a step to where it started.
TRANSITIONS: dict[StepState, set[StepState]] = {
    StepState.PENDING: {StepState.APPLYING},
    StepState.APPLYING: {StepState.APPLIED, StepState.PENDING},
    StepState.APPLIED: {StepState.REVERTING},
    StepState.REVERTING: {StepState.ABSENT, StepState.APPLIED},
    StepState.ABSENT: set(),
}


@dataclass
class MigrationStep:
    """One record run in one direction."""

    name: str
    direction: Direction
    state: StepState
    sql: str | None = None
    history: list[StepState] = field(default_factory=list)
    duration_ms: float = 0.0
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state)

    def advance(self, state: StepState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise MigrationError(
                f"Migration {self.name!r} cannot move from {self.state.value} to {state.value}"
            )
        self.state = state
        self.history.append(state)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "direction": self.direction.value,
            "state": self.state.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class MigrationResult:
    """Result of migration operation."""

    success: bool
    operation: str  # "migrate", "rollback"
    dry_run: bool = False
    steps: list[MigrationStep] = field(default_factory=list)
    migrations_applied: list[str] = field(default_factory=list)
    migrations_rolled_back: list[str] = field(default_factory=list)
    current_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operation": self.operation,
            "dry_run": self.dry_run,
            "steps": [s.to_dict() for s in self.steps],
            "migrations_applied": self.migrations_applied,
            "migrations_rolled_back": self.migrations_rolled_back,
            "current_version": self.current_version,
        }


class MigrationManager:
    """
    Applies and reverts a migration set against one database.

    Usage:
        ```python
        manager = MigrationManager(migrations, SqliteExecutor(conn))

        # Apply everything up to latest
        result = manager.migrate()

        # Rollback last
        result = manager.rollback()

        # Check status
        status = manager.get_status()
        ```
    """

    def __init__(
        self,
        migrations: MigrationSet,
        executor: BackendExecutor,
        ledger: Ledger | None = None,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
        dry_run: bool = False,
    ) -> None:
        self._migrations = migrations
        self._executor = executor
        self._ledger = ledger or SqlLedger(executor, ledger_table)
        self._running = threading.Lock()
        self.dry_run = dry_run

    @property
    def backend(self) -> str:
        return self._executor.backend

    @property
    def migrations(self) -> MigrationSet:
        return self._migrations

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    # =========================================================================
    # Planning
    # =========================================================================

    def current_position(self) -> str | None:
        """
        Name of the newest applied migration, or None for an empty ledger.

        Raises:
            NoPathError: If the applied migrations do not lie on one chain
        """
        applied = self._ledger.applied()
        unknown = [n for n in applied if n not in self._migrations]
        if unknown:
            logger.warning("Ledger lists unknown migrations", names=unknown)
        known = [n for n in applied if n in self._migrations]
        return self._migrations.resolver.head_of(known)

    def plan(self, target: str | None = None) -> MigrationPath:
        """
        Records that migrate() would run, without running them.

        Args:
            target: Migration name, or None / "latest" for the latest migration
        """
        position = self.current_position()
        if target in (None, LATEST):
            if self._migrations.latest_name is None and len(self._migrations) == 0:
                return MigrationPath(Direction.UP, [])
            target = self._migrations.latest().name
        return self._migrations.path(position, target)

    # =========================================================================
    # Operations
    # =========================================================================

    def migrate(self, target: str | None = None, dry_run: bool | None = None) -> MigrationResult:
        """
        Bring the database to `target`, forwards or backwards.

        Args:
            target: Migration name, or None / "latest" for the latest migration
            dry_run: Plan without executing (defaults to the manager setting)

        Returns:
            MigrationResult with details

        Raises:
            CycleError, NoPathError, NoSuchMigrationError: Before anything runs
            UnsupportedBackendError: When a step has no text for this backend
            ExecutionError: When a step fails; earlier steps stay applied
        """
        dry_run = self.dry_run if dry_run is None else dry_run
        with self._exclusive(), LogContext(backend=self.backend, operation="migrate"):
            self._ledger.ensure()
            path = self.plan(target)
            return self._run(path, "migrate", dry_run)

    def rollback(
        self,
        steps: int = 1,
        target: str | None = None,
        dry_run: bool | None = None,
    ) -> MigrationResult:
        """
        Revert applied migrations.

        Args:
            steps: Number of migrations to revert when no target is given
            target: Revert down to (not including) this migration
            dry_run: Plan without executing (defaults to the manager setting)

        Returns:
            MigrationResult with details
        """
        dry_run = self.dry_run if dry_run is None else dry_run
        with self._exclusive(), LogContext(backend=self.backend, operation="rollback"):
            self._ledger.ensure()
            position = self.current_position()
            if position is None:
                logger.info("No migrations to rollback")
                return MigrationResult(success=True, operation="rollback", dry_run=dry_run)

            if target is None:
                chain = self._migrations.chain(position)
                keep = max(len(chain) - max(steps, 0), 0)
                target = chain[keep - 1].name if keep else None

            path = self._migrations.path(position, target)
            if path and path.direction != Direction.DOWN:
                raise NoPathError(
                    position, target, message=f"{target} is not an ancestor of {position}"
                )
            return self._run(path, "rollback", dry_run)

    def get_status(self) -> dict[str, Any]:
        """
        Get migration status.

        Returns:
            Status dictionary with applied and pending migrations
        """
        self._ledger.ensure()
        position = None
        pending = MigrationPath(Direction.UP)
        diverged = False
        try:
            position = self.current_position()
            if self._migrations.latest_name:
                pending = self.plan()
        except NoPathError as e:
            logger.warning("Ledger is not on the chain to latest", error=str(e))
            diverged = True

        return {
            "backend": self.backend,
            "current_version": position,
            "diverged": diverged,
            "latest": self._migrations.latest_name,
            "applied_count": len(self._ledger.applied()),
            "pending_count": len(pending) if pending.direction == Direction.UP else 0,
            "applied": self._ledger.applied(),
            "pending": pending.names if pending.direction == Direction.UP else [],
        }

    # =========================================================================
    # Execution
    # =========================================================================

    def _run(self, path: MigrationPath, operation: str, dry_run: bool) -> MigrationResult:
        result = MigrationResult(success=False, operation=operation, dry_run=dry_run)
        forward = path.direction == Direction.UP
        initial = StepState.PENDING if forward else StepState.APPLIED
        result.steps = [MigrationStep(r.name, path.direction, initial) for r in path]
        done = result.migrations_applied if forward else result.migrations_rolled_back

        if not path:
            logger.info("No pending migrations")
            result.success = True
            result.current_version = self.current_position()
            return result

        logger.info(
            f"Found {len(path)} migrations to run",
            direction=path.direction.value,
            migrations=path.names,
        )

        if dry_run:
            logger.info("Dry run - no changes will be made")
            for record, step in zip(path, result.steps):
                step.sql = record.sql(self.backend, path.direction)
                done.append(record.name)
            result.success = True
            result.current_version = self._position_after(path)
            return result

        for record, step in zip(path, result.steps):
            # Checked per step: a missing script stops here, earlier steps stay.
            step.sql = record.sql(self.backend, path.direction)
            self._run_step(record, step, list(done))
            done.append(record.name)

        result.success = True
        result.current_version = self._position_after(path)
        return result

    def _run_step(self, record: MigrationRecord, step: MigrationStep, done: list[str]) -> None:
        forward = step.direction == Direction.UP
        step.advance(StepState.APPLYING if forward else StepState.REVERTING)
        logger.info(
            "Applying migration" if forward else "Rolling back migration",
            name=record.name,
        )

        start_time = time.perf_counter()
        try:
            if self._executor.transactional_ddl:
                with self._executor.transaction():
                    self._executor.execute_script(step.sql)
                    self._update_ledger(record.name, forward)
            else:
                with self._executor.transaction():
                    self._executor.execute_script(step.sql)
                logger.warning(
                    "Updating ledger outside the migration transaction",
                    name=record.name,
                )
                with self._executor.transaction():
                    self._update_ledger(record.name, forward)
        except Exception as e:
            step.advance(StepState.PENDING if forward else StepState.APPLIED)
            step.error = str(e)
            logger.error(
                "Migration failed",
                name=record.name,
                direction=step.direction.value,
                error=str(e),
            )
            raise ExecutionError(record.name, step.direction.value, e, applied=done) from e

        step.duration_ms = (time.perf_counter() - start_time) * 1000
        step.advance(StepState.APPLIED if forward else StepState.ABSENT)
        logger.info(
            "Migration applied" if forward else "Migration rolled back",
            name=record.name,
            duration_ms=round(step.duration_ms, 2),
        )

    def _update_ledger(self, name: str, forward: bool) -> None:
        if forward:
            self._ledger.record(name)
        else:
            self._ledger.remove(name)

    @staticmethod
    def _position_after(path: MigrationPath) -> str | None:
        last = path.records[-1]
        return last.name if path.direction == Direction.UP else last.from_

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._running.acquire(blocking=False):
            raise MigrationError("A migration is already running for this database")
        try:
            with self._executor.lock():
                yield
        finally:
            self._running.release()


# Factory function
def create_migration_manager(
    migrations: MigrationSet | None = None,
    connection: Any = None,
    settings: Settings | None = None,
) -> MigrationManager:
    """
    Create a migration manager from settings.

    Args:
        migrations: Migration set (loaded from settings.migrations.migrations_file when omitted)
        connection: Open DB-API connection; required for "pg"
        settings: Settings (the cached application settings when omitted)
    """
    settings = settings or get_settings()
    config = settings.migrations

    if migrations is None:
        if config.migrations_file is None:
            raise ValueError("No migration set given and MIGRATIONS_MIGRATIONS_FILE is not set")
        migrations = load_migrations(FileSource(config.migrations_file))

    executor: BackendExecutor
    if config.backend == "sqlite":
        executor = SqliteExecutor(connection or sqlite3.connect(config.database))
    else:
        if connection is None:
            raise ValueError("A DB-API connection is required for the pg backend")
        executor = DbApiExecutor(
            connection,
            backend="pg",
            advisory_lock_key=config.advisory_lock_key,
        )

    return MigrationManager(
        migrations,
        executor,
        ledger_table=config.ledger_table,
        dry_run=config.dry_run,
    )
