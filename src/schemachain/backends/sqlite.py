"""
SQLite Backend.

Tables are declared STRICT with foreign keys inline. Changes SQLite
cannot express with ALTER TABLE (changed columns, added or dropped key
columns) rebuild the table: create a copy, move the rows, drop the
original and rename the copy into place.
"""

from typing import Union

from schemachain.backends.base import Backend, quote_ident
from schemachain.schema.diff import (
    AddColumn,
    AddTable,
    ChangeColumn,
    Operation,
    RemoveColumn,
    RemoveTable,
)
from schemachain.schema.models import Column, DatabaseSnapshot, Table
from schemachain.schema.types import KnownType, NamedType, SqlType

REBUILD_SUFFIX = "__schemachain_tmp"


class SqliteBackend(Backend):
    """SQLite dialect (3.37+ for STRICT tables, 3.35+ for DROP COLUMN)."""

    name = "sqlite"

    TYPES = {
        SqlType.BOOL: "INTEGER",
        SqlType.INT: "INTEGER",
        SqlType.BIG_INT: "INTEGER",
        SqlType.REAL: "REAL",
        SqlType.TEXT: "TEXT",
        SqlType.DATE: "TEXT",
        SqlType.TIMESTAMP: "TEXT",
        SqlType.BLOB: "BLOB",
        SqlType.JSON: "TEXT",
    }

    def column_type(self, sqltype: Union[KnownType, NamedType], column: Column) -> str:
        if isinstance(sqltype, NamedType):
            return sqltype.name
        return self.TYPES[sqltype.ty]

    def bool_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def blob_literal(self, value: bytes) -> str:
        return f"X'{value.hex().upper()}'"

    def column_def(self, column: Column, with_zero_default: bool = False) -> str:
        parts = [quote_ident(column.name), self.column_type(column.sqltype, column)]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.default is not None:
            parts.append(f"DEFAULT {self.literal(column.default)}")
        elif with_zero_default and not column.nullable:
            parts.append(f"DEFAULT {self.zero_default(column.sqltype)}")
        if column.pk:
            parts.append("PRIMARY KEY")
            if column.auto:
                parts.append("AUTOINCREMENT")
        elif column.unique:
            parts.append("UNIQUE")
        return " ".join(parts)

    def create_table_sql(self, table: Table, name: str | None = None) -> str:
        lines = [self.column_def(c) for c in table.columns]
        for column in table.columns:
            ref = column.reference
            if ref is not None:
                lines.append(
                    f"FOREIGN KEY ({quote_ident(column.name)}) REFERENCES "
                    f"{quote_ident(ref.table_name)}({quote_ident(ref.column_name)})"
                )
        body = ",\n".join(lines)
        return f"CREATE TABLE {quote_ident(name or table.name)} (\n{body}\n) STRICT;\n"

    def create_migration_sql(
        self,
        old: DatabaseSnapshot,
        new: DatabaseSnapshot,
        operations: list[Operation] | None = None,
    ) -> str:
        old, new, operations = self._operations(old, new, operations)
        rebuild = sorted(
            {op.table_name for op in operations if self._needs_rebuild(op)}
        )

        statements: list[str] = []
        for op in operations:
            if isinstance(op, AddTable):
                statements.append(self.create_table_sql(op.table))
        for op in operations:
            if isinstance(op, AddColumn) and op.table_name not in rebuild:
                statements.append(self._add_column_sql(op.table_name, op.column))
        for name in rebuild:
            statements.append(self._rebuild_sql(old.tables[name], new.tables[name]))
        for op in operations:
            if isinstance(op, RemoveColumn) and op.table_name not in rebuild:
                statements.append(
                    f"ALTER TABLE {quote_ident(op.table_name)} "
                    f"DROP COLUMN {quote_ident(op.column.name)};\n"
                )
        for op in operations:
            if isinstance(op, RemoveTable):
                statements.append(f"DROP TABLE {quote_ident(op.table.name)};\n")
        return "".join(statements)

    @staticmethod
    def _needs_rebuild(op: Operation) -> bool:
        if isinstance(op, ChangeColumn):
            return True
        if isinstance(op, AddColumn):
            return op.column.pk or op.column.unique
        if isinstance(op, RemoveColumn):
            column = op.column
            return column.pk or column.unique or column.reference is not None
        return False

    def _add_column_sql(self, table: str, column: Column) -> str:
        sql = f"ALTER TABLE {quote_ident(table)} ADD COLUMN {self.column_def(column, True)}"
        ref = column.reference
        if ref is not None:
            sql += (
                f" REFERENCES {quote_ident(ref.table_name)}"
                f"({quote_ident(ref.column_name)})"
            )
        return sql + ";\n"

    def _rebuild_sql(self, old: Table, new: Table) -> str:
        tmp = new.name + REBUILD_SUFFIX
        targets: list[str] = []
        sources: list[str] = []
        for column in new.columns:
            previous = old.column(column.name)
            ident = quote_ident(column.name)
            if previous is not None:
                targets.append(ident)
                if self.column_type(previous.sqltype, previous) != self.column_type(
                    column.sqltype, column
                ):
                    sources.append(f"CAST({ident} AS {self.column_type(column.sqltype, column)})")
                else:
                    sources.append(ident)
            elif not column.nullable and column.default is None and not column.auto:
                targets.append(ident)
                sources.append(self.zero_default(column.sqltype))

        statements = [self.create_table_sql(new, name=tmp)]
        if targets:
            statements.append(
                f"INSERT INTO {quote_ident(tmp)} ({', '.join(targets)}) "
                f"SELECT {', '.join(sources)} FROM {quote_ident(new.name)};\n"
            )
        statements.append(f"DROP TABLE {quote_ident(new.name)};\n")
        statements.append(
            f"ALTER TABLE {quote_ident(tmp)} RENAME TO {quote_ident(new.name)};\n"
        )
        return "".join(statements)
