"""
Backend Executor Interface.

Runs DDL/DML text against one target database. The migration manager
wraps each step in `transaction()` and the whole call in `lock()`.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Sequence


class BackendExecutor(ABC):
    """
    Abstract base class for database executors.

    Attributes:
        backend: Key of the scripts this executor runs ("sqlite", "pg", ...)
        transactional_ddl: Whether DDL and ledger writes can share a transaction
        placeholder: Parameter marker of the driver ("?" or "%s")
    """

    backend: str = ""
    transactional_ddl: bool = True
    placeholder: str = "?"

    @abstractmethod
    def execute_script(self, sql: str) -> None:
        """Run a script of one or more statements."""

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        """Run a single parameterized statement."""

    @abstractmethod
    def query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        """Run a single statement and return all rows."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Commit on normal exit, roll back if the block raises."""

    @abstractmethod
    def lock(self) -> AbstractContextManager[None]:
        """Hold exclusive migration access to the target database."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(backend={self.backend!r})"
