"""
Applied-State Ledger.

Records which migrations have been applied to a target database. The
SQL ledger writes through the executor, so inside a step transaction the
ledger row commits or rolls back together with the migration's DDL.
"""

from abc import ABC, abstractmethod

import structlog

from schemachain.backends.base import quote_ident
from schemachain.executors.base import BackendExecutor
from schemachain.migrations.record import DEFAULT_LEDGER_TABLE

logger = structlog.get_logger(__name__)


class Ledger(ABC):
    """Abstract base class for applied-migration ledgers."""

    @abstractmethod
    def ensure(self) -> None:
        """Create the ledger storage if it does not exist yet."""

    @abstractmethod
    def applied(self) -> list[str]:
        """Names of applied migrations."""

    @abstractmethod
    def record(self, name: str) -> None:
        """Mark a migration as applied."""

    @abstractmethod
    def remove(self, name: str) -> None:
        """Mark a migration as no longer applied."""

    def __contains__(self, name: object) -> bool:
        return name in self.applied()


class MemoryLedger(Ledger):
    """In-process ledger keeping names in application order."""

    def __init__(self, names: list[str] | None = None) -> None:
        self._names: list[str] = list(names or [])

    def ensure(self) -> None:
        pass

    def applied(self) -> list[str]:
        return list(self._names)

    def record(self, name: str) -> None:
        if name not in self._names:
            self._names.append(name)

    def remove(self, name: str) -> None:
        if name in self._names:
            self._names.remove(name)


class SqlLedger(Ledger):
    """
    Ledger table in the target database.

    The table has a single `name` TEXT primary key column, one row per
    applied migration.
    """

    def __init__(self, executor: BackendExecutor, table: str = DEFAULT_LEDGER_TABLE) -> None:
        self._executor = executor
        self.table = table
        self._ensured = False

    def ensure(self) -> None:
        if self._ensured:
            return
        with self._executor.transaction():
            self._executor.execute(
                f"CREATE TABLE IF NOT EXISTS {quote_ident(self.table)} "
                f"({quote_ident('name')} TEXT NOT NULL PRIMARY KEY)"
            )
        self._ensured = True
        logger.debug("Ledger table ready", table=self.table)

    def applied(self) -> list[str]:
        self.ensure()
        rows = self._executor.query(
            f"SELECT {quote_ident('name')} FROM {quote_ident(self.table)}"
        )
        return [row[0] for row in rows]

    def record(self, name: str) -> None:
        self._executor.execute(
            f"INSERT INTO {quote_ident(self.table)} ({quote_ident('name')}) "
            f"VALUES ({self._executor.placeholder})",
            (name,),
        )

    def remove(self, name: str) -> None:
        self._executor.execute(
            f"DELETE FROM {quote_ident(self.table)} "
            f"WHERE {quote_ident('name')} = {self._executor.placeholder}",
            (name,),
        )
