"""
Migration Set.

All known migration records keyed by name, the `current` staging record
and the `latest` pointer used by "migrate to latest".

Serialized form:
    {
      "migrations": {<name>: MigrationRecord, ...},
      "current": MigrationRecord,
      "latest": <name> | null
    }
"""

import json
from collections.abc import Iterable, Iterator
from typing import Any

import structlog

from schemachain.backends.base import Backend
from schemachain.errors import (
    DuplicateNameError,
    MalformedMigrationError,
    NoSuchMigrationError,
)
from schemachain.migrations.chain import ChainResolver, MigrationPath
from schemachain.migrations.record import (
    DEFAULT_LEDGER_TABLE,
    MigrationBuilder,
    MigrationRecord,
)
from schemachain.schema.models import DatabaseSnapshot

logger = structlog.get_logger(__name__)

CURRENT_NAME = "current"


def empty_current() -> MigrationRecord:
    """The staging record of a set nobody has authored into yet."""
    return MigrationRecord(name=CURRENT_NAME, db=DatabaseSnapshot(), from_=None, up={}, down={})


class MigrationSet:
    """
    Migration records plus the staging record and the latest pointer.

    Usage:
        ```python
        migrations = MigrationSet.load(json_text)

        # Records to apply on a fresh database
        path = migrations.path(None, migrations.latest().name)

        # Author the next migration from the staged schema
        migrations.update_current(snapshot)
        record = migrations.create_migration("20240410_000000000_comments")
        ```
    """

    def __init__(
        self,
        migrations: dict[str, MigrationRecord] | None = None,
        current: MigrationRecord | None = None,
        latest: str | None = None,
    ) -> None:
        self._migrations: dict[str, MigrationRecord] = dict(migrations or {})
        self._current = current or empty_current()
        self._latest = latest
        self._resolver = ChainResolver(self._migrations)

        for key, record in self._migrations.items():
            if key != record.name:
                raise MalformedMigrationError(
                    f"stored under {key!r} but named {record.name!r}", migration=key
                )
        self._resolver.validate()

    # =========================================================================
    # Serialization
    # =========================================================================

    @classmethod
    def load(cls, serialized: str | bytes | dict[str, Any]) -> "MigrationSet":
        """
        Build a set from its serialized form.

        Args:
            serialized: JSON text or an already decoded mapping

        Raises:
            MalformedMigrationError: On invalid structure or dangling `from`
            CycleError: If the `from` links contain a cycle
        """
        if isinstance(serialized, (str, bytes)):
            try:
                data = json.loads(serialized)
            except ValueError as e:
                raise MalformedMigrationError(f"invalid JSON: {e}") from e
        else:
            data = serialized

        if not isinstance(data, dict):
            raise MalformedMigrationError("migration set must be a JSON object")
        for key in ("migrations", "current", "latest"):
            if key not in data:
                raise MalformedMigrationError(f"migration set is missing {key!r}")

        raw_migrations = data["migrations"]
        if not isinstance(raw_migrations, dict):
            raise MalformedMigrationError("'migrations' must be an object")
        latest = data["latest"]
        if latest is not None and not isinstance(latest, str):
            raise MalformedMigrationError("'latest' must be a string or null")

        migrations = {
            name: MigrationRecord.from_dict(raw) for name, raw in raw_migrations.items()
        }
        current = MigrationRecord.from_dict(data["current"])

        migration_set = cls(migrations, current=current, latest=latest)
        logger.debug(
            "Migration set loaded",
            migrations=len(migrations),
            latest=latest,
        )
        return migration_set

    def to_dict(self) -> dict[str, Any]:
        return {
            "migrations": {name: r.to_dict() for name, r in self._migrations.items()},
            "current": self._current.to_dict(),
            "latest": self._latest,
        }

    def serialize(self) -> str:
        """Serialize as JSON with two-space indentation."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    # =========================================================================
    # Lookup
    # =========================================================================

    @property
    def current(self) -> MigrationRecord:
        return self._current

    @property
    def latest_name(self) -> str | None:
        return self._latest

    @property
    def resolver(self) -> ChainResolver:
        return self._resolver

    def latest(self) -> MigrationRecord:
        """
        Record named by the latest pointer.

        Raises:
            NoSuchMigrationError: If there is no latest migration
        """
        if self._latest is None:
            raise NoSuchMigrationError("<latest>")
        return self.get(self._latest)

    def get(self, name: str) -> MigrationRecord:
        return self._resolver.get(name)

    def names(self) -> list[str]:
        return list(self._migrations)

    def chain(self, name: str | None = None) -> list[MigrationRecord]:
        """Records from the root to `name` (latest when omitted)."""
        if name is None:
            if self._latest is None:
                return []
            name = self._latest
        return self._resolver.ancestors(name)

    def path(self, source: str | None, target: str | None) -> MigrationPath:
        return self._resolver.path(source, target)

    def __contains__(self, name: object) -> bool:
        return name in self._migrations

    def __iter__(self) -> Iterator[MigrationRecord]:
        return iter(self._migrations.values())

    def __len__(self) -> int:
        return len(self._migrations)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MigrationSet):
            return NotImplemented
        return (
            self._migrations == other._migrations
            and self._current == other._current
            and self._latest == other._latest
        )

    def __repr__(self) -> str:
        return f"MigrationSet({len(self)} migrations, latest={self._latest!r})"

    # =========================================================================
    # Authoring
    # =========================================================================

    def add(self, record: MigrationRecord, make_latest: bool = True) -> None:
        """
        Insert a finalized record.

        Args:
            record: Record whose predecessor is already in the set
            make_latest: Move the latest pointer to this record

        Raises:
            DuplicateNameError: If the name is taken
            NoSuchMigrationError: If the predecessor is unknown
        """
        if record.name in self._migrations or record.name == CURRENT_NAME:
            raise DuplicateNameError("migration", record.name)
        if record.from_ is not None:
            self.get(record.from_)

        self._migrations[record.name] = record
        if make_latest:
            self._latest = record.name
        logger.info("Migration added", name=record.name, from_migration=record.from_)

    def update_current(self, snapshot: DatabaseSnapshot) -> None:
        """Replace the staging record with one holding `snapshot`."""
        self._current = MigrationRecord(
            name=CURRENT_NAME, db=snapshot, from_=None, up={}, down={}
        )

    def builder(self, name: str, ledger_table: str = DEFAULT_LEDGER_TABLE) -> MigrationBuilder:
        """Start a migration on top of the latest record."""
        if name in self._migrations:
            raise DuplicateNameError("migration", name)
        previous = self.latest() if self._latest is not None else None
        return MigrationBuilder(name, from_record=previous, ledger_table=ledger_table)

    def create_migration(
        self,
        name: str,
        snapshot: DatabaseSnapshot | None = None,
        backends: Iterable[Backend] | None = None,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
    ) -> MigrationRecord | None:
        """
        Record the difference between the latest migration and `snapshot`.

        Args:
            name: Name of the new migration
            snapshot: Target schema (the staging record's schema when omitted)
            backends: Backends to generate scripts for (all registered when omitted)
            ledger_table: Ledger table created by a root migration

        Returns:
            The new record, or None when nothing changed
        """
        builder = self.builder(name, ledger_table=ledger_table)
        builder.set_schema(snapshot if snapshot is not None else self._current.db)
        if not builder.has_changes():
            logger.info("No schema changes, migration not created", name=name)
            return None

        record = builder.finalize(backends)
        self.add(record)
        return record
