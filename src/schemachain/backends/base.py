"""
Backend DDL Generation Interface.

A backend turns a list of schema operations into one executable script
in its SQL dialect.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Union

from schemachain.schema.diff import Operation, diff
from schemachain.schema.models import Column, DatabaseSnapshot
from schemachain.schema.types import KnownType, NamedType, SqlType, SqlValue, ValueKind

_PLAIN_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Words that must be quoted when used as identifiers.
KEYWORDS = frozenset(
    """
    ALL ALTER AND ANY AS ASC AUTOINCREMENT BETWEEN BY CASE CAST CHECK COLLATE
    COLUMN CONSTRAINT CREATE CROSS CURRENT CURRENT_DATE CURRENT_TIME
    CURRENT_TIMESTAMP DATE DEFAULT DEFERRABLE DELETE DESC DISTINCT DO DROP
    ELSE END EXCEPT EXISTS FALSE FOR FOREIGN FROM FULL GRANT GROUP HAVING ID
    IN INDEX INNER INSERT INTERSECT INTO IS JOIN KEY LEFT LIKE LIMIT NAME
    NATURAL NOT NULL OF OFFSET ON OR ORDER OUTER OWNER PRIMARY REFERENCES
    RIGHT ROW SELECT SESSION_USER SET SOME TABLE TAG THEN TIME TIMESTAMP TO
    TRUE TYPE UNION UNIQUE UPDATE USER USING VALUE VALUES VIEW WHEN WHERE
    WINDOW WITH
    """.split()
)


def quote_ident(name: str) -> str:
    """Quote an identifier only when it is a keyword or not a plain name."""
    if _PLAIN_IDENT.fullmatch(name) and name.upper() not in KEYWORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_text(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class Backend(ABC):
    """
    Abstract base class for SQL dialects.

    Subclasses set `name` (the key used in a migration's up/down maps)
    and render operations as DDL.
    """

    name: str = ""

    @abstractmethod
    def column_type(self, sqltype: Union[KnownType, NamedType], column: Column) -> str:
        """Return the DDL type of a resolved column type."""

    @abstractmethod
    def create_migration_sql(
        self,
        old: DatabaseSnapshot,
        new: DatabaseSnapshot,
        operations: list[Operation] | None = None,
    ) -> str:
        """
        Render the script that turns `old` into `new`.

        Args:
            old: Schema before the migration
            new: Schema after the migration
            operations: Precomputed diff(old, new), computed when omitted

        Returns:
            Script with one statement per line group, each ending in ";"
        """

    def ledger_table_sql(self, table: str) -> str:
        """DDL creating the applied-migrations ledger table."""
        return (
            f"CREATE TABLE IF NOT EXISTS {quote_ident(table)} (\n"
            f"{quote_ident('name')} TEXT NOT NULL PRIMARY KEY\n);\n"
        )

    def literal(self, value: SqlValue) -> str:
        """Render a default value as a SQL literal."""
        kind = value.kind
        if kind == ValueKind.BOOL:
            return self.bool_literal(value.value)
        if kind in (ValueKind.INT, ValueKind.BIG_INT):
            return str(int(value.value))
        if kind == ValueKind.REAL:
            return repr(float(value.value))
        if kind == ValueKind.TEXT:
            return quote_text(value.value)
        if kind == ValueKind.BLOB:
            return self.blob_literal(bytes(value.value))
        if kind == ValueKind.JSON:
            return quote_text(json.dumps(value.value, separators=(",", ":")))
        return value.value

    def bool_literal(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    @abstractmethod
    def blob_literal(self, value: bytes) -> str:
        """Render binary data as a SQL literal."""

    def zero_default(self, sqltype: Union[KnownType, NamedType]) -> str:
        """
        Default used when a NOT NULL column without a default is added to
        an existing table.
        """
        if isinstance(sqltype, NamedType):
            return "NULL"
        ty = sqltype.ty
        if ty == SqlType.BOOL:
            return self.bool_literal(False)
        if ty in (SqlType.INT, SqlType.BIG_INT, SqlType.REAL):
            return "0"
        if ty == SqlType.DATE:
            return "'1970-01-01'"
        if ty == SqlType.TIMESTAMP:
            return "'1970-01-01 00:00:00'"
        if ty == SqlType.BLOB:
            return self.blob_literal(b"")
        if ty == SqlType.JSON:
            return "'null'"
        return "''"

    def _operations(
        self,
        old: DatabaseSnapshot,
        new: DatabaseSnapshot,
        operations: list[Operation] | None,
    ) -> tuple[DatabaseSnapshot, DatabaseSnapshot, list[Operation]]:
        old = old.resolved()
        new = new.resolved()
        if operations is None:
            operations = diff(old, new)
        return old, new, operations

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
