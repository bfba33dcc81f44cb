"""
SQLite Executor.

Uses explicit BEGIN/COMMIT on an autocommit connection so a migration
script and its ledger write commit together. Scripts are split into
complete statements because executescript() commits on its own.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Sequence

import structlog

from schemachain.executors.base import BackendExecutor

logger = structlog.get_logger(__name__)


def split_statements(script: str) -> list[str]:
    """Split a script into complete SQL statements."""
    statements: list[str] = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


class SqliteExecutor(BackendExecutor):
    """Executor for a sqlite3 connection."""

    backend = "sqlite"
    transactional_ddl = True
    placeholder = "?"

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        # Transactions are managed explicitly below.
        self._conn.isolation_level = None

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def execute_script(self, sql: str) -> None:
        for statement in split_statements(sql):
            self._conn.execute(statement)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self._conn.execute(sql, tuple(params))

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        return [tuple(row) for row in self._conn.execute(sql, tuple(params)).fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self._conn.execute("BEGIN")
        try:
            yield
        except BaseException:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
            raise
        else:
            self._conn.execute("COMMIT")

    @contextmanager
    def lock(self) -> Iterator[None]:
        # SQLite serializes writers itself; each step takes the write lock
        # when it begins.
        yield
