"""
DB-API 2.0 Executor.

Generic executor for drivers such as psycopg whose connections open a
transaction implicitly and accept multi-statement scripts.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Sequence

import structlog

from schemachain.executors.base import BackendExecutor

logger = structlog.get_logger(__name__)


class DbApiExecutor(BackendExecutor):
    """
    Executor for any DB-API 2.0 connection.

    Args:
        connection: Open DB-API connection (autocommit off)
        backend: Key of the scripts to run
        transactional_ddl: Whether the database rolls back DDL
        placeholder: Parameter marker of the driver
        advisory_lock_key: PostgreSQL advisory lock id taken by lock()
    """

    def __init__(
        self,
        connection: Any,
        backend: str = "pg",
        transactional_ddl: bool = True,
        placeholder: str = "%s",
        advisory_lock_key: int | None = None,
    ) -> None:
        self._conn = connection
        self.backend = backend
        self.transactional_ddl = transactional_ddl
        self.placeholder = placeholder
        self.advisory_lock_key = advisory_lock_key

    @property
    def connection(self) -> Any:
        return self._conn

    def execute_script(self, sql: str) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql)
        finally:
            cursor.close()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(params))
        finally:
            cursor.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(params))
            return [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    @contextmanager
    def lock(self) -> Iterator[None]:
        if self.backend != "pg" or self.advisory_lock_key is None:
            yield
            return

        self.execute(f"SELECT pg_advisory_lock({self.placeholder})", (self.advisory_lock_key,))
        self._conn.commit()
        logger.debug("Advisory lock acquired", key=self.advisory_lock_key)
        try:
            yield
        finally:
            self.execute(
                f"SELECT pg_advisory_unlock({self.placeholder})", (self.advisory_lock_key,)
            )
            self._conn.commit()
            logger.debug("Advisory lock released", key=self.advisory_lock_key)
