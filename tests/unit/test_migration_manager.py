"""
Unit Tests for Migration Manager.

Tests migrate/rollback orchestration against in-memory SQLite databases:
the recorded blog fixture, partial failures and resumption, dry runs and
the DB-API executor.
"""

import sqlite3
from typing import Any
from unittest.mock import MagicMock

import pytest

from schemachain.errors import (
    ExecutionError,
    MigrationError,
    NoPathError,
    UnsupportedBackendError,
)
from schemachain.executors.dbapi import DbApiExecutor
from schemachain.executors.sqlite import split_statements
from schemachain.migrations.ledger import MemoryLedger
from schemachain.migrations.migration_manager import (
    MigrationManager,
    MigrationStep,
    StepState,
)
from schemachain.migrations.migration_set import MigrationSet
from schemachain.migrations.record import Direction

INIT = "20240401_095709389_init"
TAGS = "20240406_035726416_tags"

requires_strict_sqlite = pytest.mark.skipif(
    sqlite3.sqlite_version_info < (3, 37, 0),
    reason="SQLite 3.37+ required for STRICT tables",
)


def user_tables(conn: sqlite3.Connection, ledger: str = "butane_migrations") -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {r[0] for r in rows if r[0] != ledger and not r[0].startswith("sqlite_")}


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [row[1] for row in conn.execute(f'PRAGMA table_info("{table}")').fetchall()]


def schema_info(conn: sqlite3.Connection) -> dict[str, tuple[list[tuple], list[tuple]]]:
    """Column and foreign key definitions of every user table."""
    return {
        table: (
            conn.execute(f'PRAGMA table_info("{table}")').fetchall(),
            conn.execute(f'PRAGMA foreign_key_list("{table}")').fetchall(),
        )
        for table in sorted(user_tables(conn))
    }


@requires_strict_sqlite
class TestBlogFixture:
    """Test cases applying the recorded blog migrations to SQLite."""

    def test_migrate_to_latest(self, blog_migrations, sqlite_executor, sqlite_conn) -> None:
        """Test applying init and tags to an empty database."""
        manager = MigrationManager(blog_migrations, sqlite_executor)

        result = manager.migrate()

        assert result.success
        assert result.migrations_applied == [INIT, TAGS]
        assert result.current_version == TAGS
        assert user_tables(sqlite_conn) == {"Blog", "Post"}
        assert "tags" in table_columns(sqlite_conn, "Post")
        assert sorted(manager.ledger.applied()) == [INIT, TAGS]
        assert all(s.state == StepState.APPLIED for s in result.steps)

    def test_migrate_is_idempotent(self, blog_migrations, sqlite_executor) -> None:
        """Test that a second migrate has nothing to do."""
        manager = MigrationManager(blog_migrations, sqlite_executor)
        manager.migrate()

        result = manager.migrate()

        assert result.success
        assert result.migrations_applied == []
        assert result.steps == []
        assert result.current_version == TAGS

    def test_rollback_restores_previous_schema(
        self, blog_migrations, sqlite_executor, sqlite_conn
    ) -> None:
        """Test rolling back tags, then init."""
        manager = MigrationManager(blog_migrations, sqlite_executor)
        manager.migrate(INIT)
        init_schema = schema_info(sqlite_conn)
        manager.migrate()

        result = manager.rollback()

        assert result.migrations_rolled_back == [TAGS]
        assert result.current_version == INIT
        assert user_tables(sqlite_conn) == {"Blog", "Post", "Post_tags_Many", "Tag"}
        assert "tags" not in table_columns(sqlite_conn, "Post")
        assert schema_info(sqlite_conn) == init_schema
        assert manager.ledger.applied() == [INIT]

        result = manager.rollback()

        assert result.migrations_rolled_back == [INIT]
        assert result.current_version is None
        assert user_tables(sqlite_conn) == set()
        assert manager.ledger.applied() == []

    def test_migrate_to_named_target(self, blog_migrations, sqlite_executor, sqlite_conn) -> None:
        """Test migrating forwards to a specific migration, then back down to it."""
        manager = MigrationManager(blog_migrations, sqlite_executor)

        assert manager.migrate(INIT).migrations_applied == [INIT]
        assert "Tag" in user_tables(sqlite_conn)

        manager.migrate()
        result = manager.migrate(INIT)

        assert result.operation == "migrate"
        assert result.migrations_rolled_back == [TAGS]
        assert manager.current_position() == INIT

    def test_dry_run(self, blog_migrations, sqlite_executor, sqlite_conn) -> None:
        """Test that a dry run plans but does not execute."""
        manager = MigrationManager(blog_migrations, sqlite_executor)

        result = manager.migrate(dry_run=True)

        assert result.dry_run
        assert result.migrations_applied == [INIT, TAGS]
        assert result.steps[0].sql == blog_migrations.get(INIT).up_sql("sqlite")
        assert all(s.state == StepState.PENDING for s in result.steps)
        assert user_tables(sqlite_conn) == set()
        assert manager.ledger.applied() == []

    def test_status(self, blog_migrations, sqlite_executor) -> None:
        """Test the status report before and after migrating."""
        manager = MigrationManager(blog_migrations, sqlite_executor)

        before = manager.get_status()
        assert before["current_version"] is None
        assert before["pending"] == [INIT, TAGS]
        assert before["backend"] == "sqlite"

        manager.migrate(INIT)
        after = manager.get_status()
        assert after["current_version"] == INIT
        assert after["latest"] == TAGS
        assert after["pending_count"] == 1
        assert after["applied"] == [INIT]
        assert after["diverged"] is False


class TestMigrationManager:
    """Test cases for MigrationManager with hand-written scripts."""

    # =========================================================================
    # Forward and backward
    # =========================================================================

    def test_migrate_all(self, abc_migrations, sqlite_executor, sqlite_conn) -> None:
        """Test applying a three-step chain."""
        manager = MigrationManager(abc_migrations, sqlite_executor)

        result = manager.migrate()

        assert result.migrations_applied == ["A", "B", "C"]
        assert user_tables(sqlite_conn) == {"a", "b", "c"}
        assert manager.plan().names == []

    def test_rollback_steps(self, abc_migrations, sqlite_executor, sqlite_conn) -> None:
        """Test reverting several steps at once."""
        manager = MigrationManager(abc_migrations, sqlite_executor)
        manager.migrate()

        result = manager.rollback(steps=2)

        assert result.migrations_rolled_back == ["C", "B"]
        assert result.current_version == "A"
        assert user_tables(sqlite_conn) == {"a"}

    def test_rollback_more_steps_than_applied(self, abc_migrations, sqlite_executor) -> None:
        """Test that rolling back too far stops at the empty database."""
        manager = MigrationManager(abc_migrations, sqlite_executor)
        manager.migrate("B")

        result = manager.rollback(steps=10)

        assert result.migrations_rolled_back == ["B", "A"]
        assert manager.current_position() is None

    def test_rollback_to_target(self, abc_migrations, sqlite_executor) -> None:
        """Test reverting down to a named migration."""
        manager = MigrationManager(abc_migrations, sqlite_executor)
        manager.migrate()

        result = manager.rollback(target="A")

        assert result.migrations_rolled_back == ["C", "B"]
        assert manager.current_position() == "A"

    def test_rollback_target_must_be_ancestor(self, abc_migrations, sqlite_executor) -> None:
        """Test that rollback never moves forwards."""
        manager = MigrationManager(abc_migrations, sqlite_executor)
        manager.migrate("A")

        with pytest.raises(NoPathError):
            manager.rollback(target="C")

        assert manager.current_position() == "A"

    def test_rollback_empty_database(self, abc_migrations, sqlite_executor) -> None:
        """Test rolling back with nothing applied."""
        result = MigrationManager(abc_migrations, sqlite_executor).rollback()

        assert result.success
        assert result.migrations_rolled_back == []

    # =========================================================================
    # Failures
    # =========================================================================

    def test_failed_step_keeps_earlier_steps(
        self, abc_migrations, make_record, sqlite_executor, sqlite_conn
    ) -> None:
        """Test that a failing step rolls back alone and migrate resumes after a fix."""
        broken = MigrationSet(
            {
                "A": abc_migrations.get("A"),
                "B": make_record(
                    "B", "A", "CREATE TABLE b (x INTEGER);\nTHIS IS NOT SQL;", "DROP TABLE b;"
                ),
                "C": abc_migrations.get("C"),
            },
            latest="C",
        )
        manager = MigrationManager(broken, sqlite_executor)

        with pytest.raises(ExecutionError) as exc_info:
            manager.migrate()

        error = exc_info.value
        assert error.migration == "B"
        assert error.direction == "up"
        assert error.applied == ["A"]
        assert isinstance(error.cause, sqlite3.Error)
        assert user_tables(sqlite_conn) == {"a"}
        assert manager.ledger.applied() == ["A"]

        fixed = MigrationManager(abc_migrations, sqlite_executor)
        result = fixed.migrate()

        assert result.migrations_applied == ["B", "C"]
        assert user_tables(sqlite_conn) == {"a", "b", "c"}

    def test_missing_backend_text(self, abc_migrations, make_record, sqlite_executor) -> None:
        """Test a step without SQLite text; earlier steps stay applied."""
        migrations = MigrationSet(
            {
                "A": abc_migrations.get("A"),
                "B": make_record("B", "A", "SELECT 1;", "SELECT 1;", backends=("pg",)),
            },
            latest="B",
        )
        manager = MigrationManager(migrations, sqlite_executor)

        with pytest.raises(UnsupportedBackendError) as exc_info:
            manager.migrate()

        assert exc_info.value.migration == "B"
        assert manager.current_position() == "A"

    def test_diverged_ledger(self, make_record, sqlite_executor) -> None:
        """Test that a ledger with applied names from two branches is rejected."""
        migrations = MigrationSet(
            {
                "A": make_record("A", None, "SELECT 1;", "SELECT 1;"),
                "B1": make_record("B1", "A", "SELECT 1;", "SELECT 1;"),
                "B2": make_record("B2", "A", "SELECT 1;", "SELECT 1;"),
            },
            latest="B2",
        )
        ledger = MemoryLedger(["A", "B1", "B2"])
        manager = MigrationManager(migrations, sqlite_executor, ledger=ledger)

        with pytest.raises(NoPathError):
            manager.migrate()

    def test_status_on_other_branch(self, make_record, sqlite_executor) -> None:
        """Test that status reports a position that cannot reach latest."""
        migrations = MigrationSet(
            {
                "A": make_record("A", None, "SELECT 1;", "SELECT 1;"),
                "B1": make_record("B1", "A", "SELECT 1;", "SELECT 1;"),
                "B2": make_record("B2", "A", "SELECT 1;", "SELECT 1;"),
            },
            latest="B2",
        )
        manager = MigrationManager(migrations, sqlite_executor, ledger=MemoryLedger(["A", "B1"]))

        status = manager.get_status()

        assert status["diverged"] is True
        assert status["current_version"] == "B1"
        assert status["pending"] == []
        assert status["pending_count"] == 0
        assert status["applied"] == ["A", "B1"]

    def test_status_with_diverged_ledger(self, make_record, sqlite_executor) -> None:
        """Test that status does not fail when the ledger spans two branches."""
        migrations = MigrationSet(
            {
                "A": make_record("A", None, "SELECT 1;", "SELECT 1;"),
                "B1": make_record("B1", "A", "SELECT 1;", "SELECT 1;"),
                "B2": make_record("B2", "A", "SELECT 1;", "SELECT 1;"),
            },
            latest="B2",
        )
        ledger = MemoryLedger(["A", "B1", "B2"])
        manager = MigrationManager(migrations, sqlite_executor, ledger=ledger)

        status = manager.get_status()

        assert status["diverged"] is True
        assert status["current_version"] is None
        assert status["pending"] == []

    def test_unknown_ledger_names_ignored(self, abc_migrations, sqlite_executor) -> None:
        """Test that names outside the set do not affect the position."""
        ledger = MemoryLedger(["A", "from_another_app"])
        manager = MigrationManager(abc_migrations, sqlite_executor, ledger=ledger)

        assert manager.current_position() == "A"
        assert manager.plan().names == ["B", "C"]

    def test_concurrent_migrate_rejected(self, abc_migrations, sqlite_executor) -> None:
        """Test that only one operation runs per manager at a time."""
        manager = MigrationManager(abc_migrations, sqlite_executor)
        manager._running.acquire()
        try:
            with pytest.raises(MigrationError, match="already running"):
                manager.migrate()
        finally:
            manager._running.release()

    # =========================================================================
    # Ledger placement
    # =========================================================================

    def test_ledger_written_in_step_transaction(
        self, abc_migrations, sqlite_executor, sqlite_conn
    ) -> None:
        """Test that the ledger row rolls back with a failed step."""

        class FailingLedger(MemoryLedger):
            def record(self, name: str) -> None:
                if name == "B":
                    raise RuntimeError("ledger unavailable")
                super().record(name)

        manager = MigrationManager(abc_migrations, sqlite_executor, ledger=FailingLedger())

        with pytest.raises(ExecutionError):
            manager.migrate()

        # B's DDL was rolled back together with the failed ledger write
        assert user_tables(sqlite_conn) == {"a"}


class TestMigrationStep:
    """Test cases for step state transitions."""

    def test_forward_transitions(self) -> None:
        """Test the states of a successful forward step."""
        step = MigrationStep("A", Direction.UP, StepState.PENDING)
        step.advance(StepState.APPLYING)
        step.advance(StepState.APPLIED)

        assert step.history == [StepState.PENDING, StepState.APPLYING, StepState.APPLIED]

    def test_invalid_transition(self) -> None:
        """Test that a step cannot skip states."""
        step = MigrationStep("A", Direction.UP, StepState.PENDING)

        with pytest.raises(MigrationError):
            step.advance(StepState.APPLIED)

    def test_to_dict(self) -> None:
        """Test step serialization."""
        step = MigrationStep("A", Direction.DOWN, StepState.APPLIED)

        assert step.to_dict() == {
            "name": "A",
            "direction": "down",
            "state": "applied",
            "duration_ms": 0.0,
            "error": None,
        }


class TestExecutors:
    """Test cases for the backend executors."""

    def test_split_statements(self) -> None:
        """Test splitting scripts into complete statements."""
        script = "CREATE TABLE a (\nx TEXT DEFAULT ';'\n);\nDROP TABLE b;\n"

        assert split_statements(script) == [
            "CREATE TABLE a (\nx TEXT DEFAULT ';'\n);",
            "DROP TABLE b;",
        ]
        assert split_statements("") == []

    def test_sqlite_transaction_rollback(self, sqlite_executor, sqlite_conn) -> None:
        """Test that DDL inside a failed transaction is undone."""
        with pytest.raises(RuntimeError):
            with sqlite_executor.transaction():
                sqlite_executor.execute_script("CREATE TABLE t (x INTEGER);")
                raise RuntimeError("boom")

        assert user_tables(sqlite_conn) == set()
        assert not sqlite_conn.in_transaction

    def test_dbapi_executor_with_sqlite3(self, abc_migrations) -> None:
        """Test the generic executor against a sqlite3 connection."""
        conn = sqlite3.connect(":memory:")
        executor = DbApiExecutor(conn, backend="sqlite", transactional_ddl=False, placeholder="?")
        manager = MigrationManager(abc_migrations, executor)

        result = manager.migrate()
        manager.rollback()

        assert result.migrations_applied == ["A", "B", "C"]
        assert user_tables(conn) == {"a", "b"}
        assert sorted(manager.ledger.applied()) == ["A", "B"]
        conn.close()

    def test_pg_advisory_lock(self) -> None:
        """Test that the pg executor holds an advisory lock while migrating."""
        conn = MagicMock()
        cursor = conn.cursor.return_value
        executor = DbApiExecutor(conn, advisory_lock_key=42)

        with executor.lock():
            pass

        calls: list[Any] = [c.args for c in cursor.execute.call_args_list]
        assert calls == [
            ("SELECT pg_advisory_lock(%s)", (42,)),
            ("SELECT pg_advisory_unlock(%s)", (42,)),
        ]
        assert conn.commit.call_count == 2

    def test_no_lock_without_key(self) -> None:
        """Test that no lock is taken when no key is configured."""
        conn = MagicMock()
        executor = DbApiExecutor(conn)

        with executor.lock():
            pass

        conn.cursor.assert_not_called()
