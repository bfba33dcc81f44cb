"""
SQL Backends.

DDL generation per dialect and the registry keyed by backend identifier.
"""

from schemachain.backends.base import Backend, quote_ident
from schemachain.backends.pg import PgBackend
from schemachain.backends.registry import BackendRegistry, get_backend, get_backend_registry
from schemachain.backends.sqlite import SqliteBackend

__all__ = [
    "Backend",
    "BackendRegistry",
    "PgBackend",
    "SqliteBackend",
    "get_backend",
    "get_backend_registry",
    "quote_ident",
]
