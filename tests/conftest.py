"""
Pytest Configuration and Shared Fixtures.

This module provides shared fixtures for testing the migration engine.
"""

import sqlite3
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from schemachain.config.settings import Settings, get_settings
from schemachain.executors.sqlite import SqliteExecutor
from schemachain.migrations.ledger import MemoryLedger, SqlLedger
from schemachain.migrations.migration_set import MigrationSet
from schemachain.migrations.record import MigrationRecord
from schemachain.schema.models import Column, DatabaseSnapshot, Table

FIXTURES = Path(__file__).parent / "fixtures"


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Generator[Settings, None, None]:
    """Provide test settings with mock values."""
    with patch.dict(
        "os.environ",
        {
            "MIGRATIONS_BACKEND": "SQLite",
            "MIGRATIONS_DATABASE": ":memory:",
            "MIGRATIONS_LEDGER_TABLE": "applied_migrations",
            "OBSERVABILITY_LOG_FORMAT": "console",
        },
    ):
        # Clear cache and get fresh settings
        get_settings.cache_clear()
        yield get_settings()
    get_settings.cache_clear()


# =============================================================================
# Schema Fixtures
# =============================================================================


def build_column(name: str, ty: str = "Text", **overrides: Any) -> Column:
    data: dict[str, Any] = {
        "name": name,
        "sqltype": {"KnownId": {"Ty": ty}},
        "nullable": False,
        "pk": False,
        "auto": False,
        "unique": False,
        "default": None,
    }
    data.update(overrides)
    return Column.model_validate(data)


def build_snapshot(**tables: list[Column]) -> DatabaseSnapshot:
    return DatabaseSnapshot(
        tables={name: Table(name=name, columns=tuple(cols)) for name, cols in tables.items()}
    )


def build_record(
    name: str,
    from_name: str | None,
    up: str,
    down: str,
    backends: tuple[str, ...] = ("sqlite", "pg"),
) -> MigrationRecord:
    return MigrationRecord(
        name=name,
        db=DatabaseSnapshot(),
        from_=from_name,
        up={b: up for b in backends},
        down={b: down for b in backends},
    )


@pytest.fixture
def make_column() -> Callable[..., Column]:
    """Factory for NOT NULL columns: make_column("id", "Int", pk=True)."""
    return build_column


@pytest.fixture
def make_snapshot() -> Callable[..., DatabaseSnapshot]:
    """Factory for snapshots: make_snapshot(Blog=[col, ...])."""
    return build_snapshot


@pytest.fixture
def make_record() -> Callable[..., MigrationRecord]:
    """Factory for records with the same script for every backend."""
    return build_record


@pytest.fixture
def blog_snapshot() -> DatabaseSnapshot:
    """Blog/Post schema with a deferred foreign key."""
    return build_snapshot(
        Blog=[
            build_column("id", "Int", pk=True, auto=True),
            build_column("name"),
        ],
        Post=[
            build_column("id", "Int", pk=True, auto=True),
            build_column("title"),
            build_column(
                "blog",
                sqltype={"Deferred": {"PK": "Blog"}},
                reference={"Deferred": {"PK": "Blog"}},
            ),
        ],
    )


# =============================================================================
# Migration Set Fixtures
# =============================================================================


@pytest.fixture
def fixture_path() -> Path:
    return FIXTURES / "blog_migrations.json"


@pytest.fixture
def fixture_text(fixture_path: Path) -> str:
    """Serialized blog migration set (init + tags)."""
    return fixture_path.read_text(encoding="utf-8")


@pytest.fixture
def blog_migrations(fixture_text: str) -> MigrationSet:
    """Loaded blog migration set."""
    return MigrationSet.load(fixture_text)


@pytest.fixture
def abc_migrations() -> MigrationSet:
    """Three-step chain A -> B -> C with single-statement scripts."""
    return MigrationSet(
        {
            "A": build_record("A", None, "CREATE TABLE a (x INTEGER);", "DROP TABLE a;"),
            "B": build_record("B", "A", "CREATE TABLE b (x INTEGER);", "DROP TABLE b;"),
            "C": build_record("C", "B", "CREATE TABLE c (x INTEGER);", "DROP TABLE c;"),
        },
        latest="C",
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def sqlite_conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite database."""
    conn = sqlite3.connect(":memory:")
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def sqlite_executor(sqlite_conn: sqlite3.Connection) -> SqliteExecutor:
    return SqliteExecutor(sqlite_conn)


@pytest.fixture
def sql_ledger(sqlite_executor: SqliteExecutor) -> SqlLedger:
    return SqlLedger(sqlite_executor)


@pytest.fixture
def memory_ledger() -> MemoryLedger:
    return MemoryLedger()
