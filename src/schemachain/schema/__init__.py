"""
Schema Model.

In-memory tables, columns, types and references for one point in time,
plus the structural diff between two snapshots.
"""

from schemachain.schema.diff import (
    AddColumn,
    AddTable,
    ChangeColumn,
    Operation,
    RemoveColumn,
    RemoveTable,
    diff,
)
from schemachain.schema.models import Column, DatabaseSnapshot, SnapshotBuilder, Table
from schemachain.schema.types import (
    DeferredType,
    KnownType,
    NamedType,
    Reference,
    SqlType,
    SqlValue,
    ValueKind,
)

__all__ = [
    # Types
    "SqlType",
    "KnownType",
    "NamedType",
    "DeferredType",
    "SqlValue",
    "ValueKind",
    "Reference",
    # Models
    "Column",
    "Table",
    "DatabaseSnapshot",
    "SnapshotBuilder",
    # Diff
    "AddTable",
    "AddColumn",
    "ChangeColumn",
    "RemoveColumn",
    "RemoveTable",
    "Operation",
    "diff",
]
