"""
Backend Executors.

Reference implementations of the executor that runs migration scripts
against a live database.
"""

from schemachain.executors.base import BackendExecutor
from schemachain.executors.dbapi import DbApiExecutor
from schemachain.executors.sqlite import SqliteExecutor, split_statements

__all__ = [
    "BackendExecutor",
    "DbApiExecutor",
    "SqliteExecutor",
    "split_statements",
]
