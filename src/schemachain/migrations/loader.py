"""
Migration Set Loading.

The engine only needs the serialized bytes; where they come from is up
to a MigrationSource.
"""

from importlib import resources
from pathlib import Path
from typing import Protocol

import structlog

from schemachain.errors import MalformedMigrationError
from schemachain.migrations.migration_set import MigrationSet

logger = structlog.get_logger(__name__)


class MigrationSource(Protocol):
    """Anything that can produce a serialized migration set."""

    def read(self) -> str | bytes: ...


class StringSource:
    """Serialized set held in memory (e.g. embedded in a module)."""

    def __init__(self, text: str | bytes) -> None:
        self._text = text

    def read(self) -> str | bytes:
        return self._text


class FileSource:
    """Serialized set stored in a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> str | bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError as e:
            raise MalformedMigrationError(f"migration file not found: {self.path}") from e

    def __repr__(self) -> str:
        return f"FileSource({str(self.path)!r})"


class PackageResourceSource:
    """Serialized set shipped as package data."""

    def __init__(self, package: str, resource: str) -> None:
        self.package = package
        self.resource = resource

    def read(self) -> str | bytes:
        return resources.files(self.package).joinpath(self.resource).read_bytes()

    def __repr__(self) -> str:
        return f"PackageResourceSource({self.package!r}, {self.resource!r})"


def load_migrations(source: MigrationSource) -> MigrationSet:
    """
    Load and validate a migration set.

    Args:
        source: Provider of the serialized set

    Returns:
        Validated MigrationSet
    """
    migrations = MigrationSet.load(source.read())
    logger.info(
        "Migrations loaded",
        source=repr(source),
        count=len(migrations),
        latest=migrations.latest_name,
    )
    return migrations


def dump_migrations(migrations: MigrationSet, path: str | Path) -> None:
    """Write a migration set to a JSON file."""
    target = Path(path)
    target.write_text(migrations.serialize() + "\n", encoding="utf-8")
    logger.info("Migrations written", path=str(target), count=len(migrations))
