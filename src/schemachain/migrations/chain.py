"""
Chain Resolver.

Follows `from` links to order migrations. The chain is strictly linear:
two migrations that are not ancestor and descendant of each other have
no path between them.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import structlog

from schemachain.errors import (
    CycleError,
    MalformedMigrationError,
    NoPathError,
    NoSuchMigrationError,
)
from schemachain.migrations.record import Direction, MigrationRecord

logger = structlog.get_logger(__name__)


@dataclass
class MigrationPath:
    """Ordered records to run, all in one direction."""

    direction: Direction
    records: list[MigrationRecord] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [r.name for r in self.records]

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __bool__(self) -> bool:
        return bool(self.records)


class ChainResolver:
    """Computes orderings over a mapping of migration records."""

    def __init__(self, migrations: Mapping[str, MigrationRecord]) -> None:
        self._migrations = migrations

    def validate(self) -> None:
        """
        Check that every `from` link resolves and every chain ends at a root.

        Raises:
            MalformedMigrationError: On a dangling `from` reference
            CycleError: If following `from` links does not terminate
        """
        for record in self._migrations.values():
            if record.from_ is not None and record.from_ not in self._migrations:
                raise MalformedMigrationError(
                    f"'from' refers to unknown migration {record.from_!r}",
                    migration=record.name,
                )

        terminated: set[str] = set()
        for start in self._migrations:
            walk: list[str] = []
            on_walk: set[str] = set()
            name: str | None = start
            while name is not None and name not in terminated:
                if name in on_walk:
                    cycle = walk[walk.index(name):] + [name]
                    raise CycleError(cycle)
                walk.append(name)
                on_walk.add(name)
                name = self._migrations[name].from_
            terminated.update(walk)

    def get(self, name: str) -> MigrationRecord:
        try:
            return self._migrations[name]
        except KeyError:
            raise NoSuchMigrationError(name) from None

    def ancestors(self, name: str) -> list[MigrationRecord]:
        """
        Records from the root up to and including `name`.

        Raises:
            NoSuchMigrationError: If `name` is unknown
        """
        chain: list[MigrationRecord] = []
        current: str | None = name
        seen: set[str] = set()
        while current is not None:
            if current in seen:
                raise CycleError([r.name for r in reversed(chain)] + [current])
            seen.add(current)
            record = self.get(current)
            chain.append(record)
            current = record.from_
        chain.reverse()
        return chain

    def path(self, source: str | None, target: str | None) -> MigrationPath:
        """
        Records to run to move from `source` to `target`.

        A `source` of None is the empty database; a `target` of None
        reverts everything down to the empty database.

        Args:
            source: Name of the migration currently applied last, or None
            target: Name of the migration to end at, or None

        Returns:
            MigrationPath in forward order (oldest first) when `target`
            descends from `source`, reverse order (newest first) when it
            is an ancestor

        Raises:
            NoSuchMigrationError: If either name is unknown
            NoPathError: If the two are not on the same chain
        """
        if source is not None:
            self.get(source)
        if target is not None:
            self.get(target)

        if source == target:
            return MigrationPath(Direction.UP, [])

        if source is None:
            return MigrationPath(Direction.UP, self.ancestors(target))

        if target is None:
            return MigrationPath(Direction.DOWN, list(reversed(self.ancestors(source))))

        target_chain = self.ancestors(target)
        target_names = [r.name for r in target_chain]
        if source in target_names:
            index = target_names.index(source)
            return MigrationPath(Direction.UP, target_chain[index + 1:])

        source_chain = self.ancestors(source)
        source_names = [r.name for r in source_chain]
        if target in source_names:
            index = source_names.index(target)
            return MigrationPath(Direction.DOWN, list(reversed(source_chain[index + 1:])))

        raise NoPathError(source, target)

    def head_of(self, names: Iterable[str]) -> str | None:
        """
        The newest of `names`, provided all of them lie on its chain.

        Args:
            names: Known migration names (e.g. those in a ledger)

        Returns:
            Name of the head, or None when `names` is empty

        Raises:
            NoPathError: If the names do not lie on a single chain
        """
        applied = set(names)
        if not applied:
            return None

        chains = {name: [r.name for r in self.ancestors(name)] for name in applied}
        head = max(sorted(applied), key=lambda n: len(chains[n]))
        off_chain = sorted(applied - set(chains[head]))
        if off_chain:
            raise NoPathError(
                head,
                off_chain[0],
                message=(
                    f"Applied migrations diverge: {', '.join(off_chain)} "
                    f"not on the chain ending at {head}"
                ),
            )

        missing = [n for n in chains[head] if n not in applied]
        if missing:
            logger.warning(
                "Applied migrations have gaps",
                head=head,
                missing=missing,
            )
        return head
