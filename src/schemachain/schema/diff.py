"""
Schema Diff.

Computes the ordered structural changes between two snapshots:
created tables, added columns, changed columns, removed columns and
dropped tables, in that order, tables by name and columns in
declaration order. Identical inputs always give identical output.
"""

from dataclasses import dataclass
from typing import Union

from schemachain.schema.models import Column, DatabaseSnapshot, Table


@dataclass(frozen=True)
class AddTable:
    table: Table


@dataclass(frozen=True)
class AddColumn:
    table_name: str
    column: Column


@dataclass(frozen=True)
class ChangeColumn:
    table_name: str
    old: Column
    new: Column


@dataclass(frozen=True)
class RemoveColumn:
    table_name: str
    column: Column


@dataclass(frozen=True)
class RemoveTable:
    table: Table


Operation = Union[AddTable, AddColumn, ChangeColumn, RemoveColumn, RemoveTable]


def diff(old: DatabaseSnapshot, new: DatabaseSnapshot) -> list[Operation]:
    """
    Compute the operations that turn `old` into `new`.

    Both snapshots are resolved first, so a deferred type and the concrete
    type it stands for never show up as a change.

    Args:
        old: Schema before the migration
        new: Schema after the migration

    Returns:
        Ordered list of operations
    """
    old = old.resolved()
    new = new.resolved()

    created = [new.tables[n] for n in sorted(new.tables) if n not in old.tables]
    dropped = [old.tables[n] for n in sorted(old.tables) if n not in new.tables]
    kept = [n for n in sorted(new.tables) if n in old.tables]

    added: list[Operation] = []
    changed: list[Operation] = []
    removed: list[Operation] = []
    for name in kept:
        before = old.tables[name]
        after = new.tables[name]
        for column in after.columns:
            previous = before.column(column.name)
            if previous is None:
                added.append(AddColumn(name, column))
            elif previous != column:
                changed.append(ChangeColumn(name, previous, column))
        for column in before.columns:
            if after.column(column.name) is None:
                removed.append(RemoveColumn(name, column))

    return (
        [AddTable(t) for t in created]
        + added
        + changed
        + removed
        + [RemoveTable(t) for t in dropped]
    )
