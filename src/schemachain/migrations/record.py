"""
Migration Record.

A named schema transition: the resulting snapshot, the name of its
predecessor and per-backend forward (up) and reverse (down) scripts.
Records are frozen; MigrationBuilder produces them.
"""

from enum import Enum
from typing import Any, Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from schemachain.backends.base import Backend
from schemachain.backends.registry import get_backend_registry
from schemachain.errors import MalformedMigrationError, UnsupportedBackendError
from schemachain.schema.diff import diff
from schemachain.schema.models import Column, DatabaseSnapshot, SnapshotBuilder, Table
from schemachain.schema.types import FrozenMap

logger = structlog.get_logger(__name__)

DEFAULT_LEDGER_TABLE = "butane_migrations"


class Direction(str, Enum):
    """Direction a migration step runs in."""

    UP = "up"
    DOWN = "down"


class MigrationRecord(BaseModel):
    """Migration record as stored in the serialized migration set."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: StrictStr = Field(..., min_length=1, description="Unique migration name")
    db: DatabaseSnapshot = Field(..., description="Schema after this migration")
    from_: StrictStr | None = Field(..., alias="from", description="Predecessor name")
    up: FrozenMap[StrictStr, StrictStr] = Field(..., description="Forward script per backend")
    down: FrozenMap[StrictStr, StrictStr] = Field(..., description="Reverse script per backend")

    @classmethod
    def from_dict(cls, data: Any) -> "MigrationRecord":
        """
        Build a record from its serialized form.

        Raises:
            MalformedMigrationError: If the data is structurally invalid
        """
        name = data.get("name") if isinstance(data, dict) else None
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedMigrationError(str(e), migration=name) from e

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @property
    def is_root(self) -> bool:
        return self.from_ is None

    @property
    def backends(self) -> list[str]:
        """Backends with both forward and reverse text."""
        return sorted(set(self.up) & set(self.down))

    def sql(self, backend: str, direction: Direction) -> str:
        """
        Script for one backend and direction.

        Raises:
            UnsupportedBackendError: If this record has no text for `backend`
        """
        scripts = self.up if direction == Direction.UP else self.down
        try:
            return scripts[backend]
        except KeyError:
            raise UnsupportedBackendError(backend, migration=self.name) from None

    def up_sql(self, backend: str) -> str:
        return self.sql(backend, Direction.UP)

    def down_sql(self, backend: str) -> str:
        return self.sql(backend, Direction.DOWN)

    def __repr__(self) -> str:
        return f"MigrationRecord({self.name!r}, from={self.from_!r})"


class MigrationBuilder:
    """
    Mutable staging form of a migration.

    Usage:
        ```python
        builder = MigrationBuilder("20240406_035726416_tags", from_record=init)
        builder.schema.remove_table("Tag")
        builder.add_column("Post", tags_column)
        record = builder.finalize()
        ```
    """

    def __init__(
        self,
        name: str,
        from_record: MigrationRecord | None = None,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
    ) -> None:
        self.name = name
        self.from_name = from_record.name if from_record else None
        self.previous = from_record.db if from_record else DatabaseSnapshot()
        self.ledger_table = ledger_table
        self.schema = SnapshotBuilder(self.previous)
        self._finalized = False

    def add_table(self, name: str, table: Table | None = None) -> None:
        self._check_open()
        self.schema.add_table(name, table)

    def add_column(self, table: str, column: Column) -> None:
        self._check_open()
        self.schema.add_column(table, column)

    def set_schema(self, snapshot: DatabaseSnapshot) -> None:
        """Replace the staged schema wholesale."""
        self._check_open()
        self.schema = SnapshotBuilder(snapshot)

    def has_changes(self) -> bool:
        return bool(diff(self.previous, self.schema.build()))

    def finalize(self, backends: Iterable[Backend] | None = None) -> MigrationRecord:
        """
        Freeze the staged schema into a record.

        Generates up/down scripts for every backend (all registered
        backends when omitted). The root migration's up script also
        creates the ledger table.

        Args:
            backends: Backends to generate scripts for

        Returns:
            Frozen MigrationRecord
        """
        self._check_open()
        snapshot = self.schema.build()
        operations = diff(self.previous, snapshot)
        reverse = diff(snapshot, self.previous)

        up: dict[str, str] = {}
        down: dict[str, str] = {}
        for backend in backends if backends is not None else get_backend_registry():
            script = backend.create_migration_sql(self.previous, snapshot, operations)
            if self.from_name is None:
                script += backend.ledger_table_sql(self.ledger_table)
            up[backend.name] = script
            down[backend.name] = backend.create_migration_sql(snapshot, self.previous, reverse)

        self._finalized = True
        record = MigrationRecord(
            name=self.name, db=snapshot, from_=self.from_name, up=up, down=down
        )
        logger.info(
            "Migration finalized",
            name=self.name,
            from_migration=self.from_name,
            operations=len(operations),
            backends=sorted(up),
        )
        return record

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError(f"Migration {self.name!r} is already finalized")
