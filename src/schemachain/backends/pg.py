"""
PostgreSQL Backend.

Foreign keys are added after every table and column exists and dropped
before anything they point at is removed, so statement order never
depends on table order. Constraint names follow PostgreSQL's defaults
(<table>_<column>_fkey, <table>_<column>_key, <table>_pkey).
"""

from typing import Union

from schemachain.backends.base import Backend, quote_ident, quote_text
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


class PgBackend(Backend):
    """PostgreSQL dialect."""

    name = "pg"

    TYPES = {
        SqlType.BOOL: "BOOLEAN",
        SqlType.INT: "INTEGER",
        SqlType.BIG_INT: "BIGINT",
        SqlType.REAL: "DOUBLE PRECISION",
        SqlType.TEXT: "TEXT",
        SqlType.DATE: "DATE",
        SqlType.TIMESTAMP: "TIMESTAMP",
        SqlType.BLOB: "BYTEA",
        SqlType.JSON: "JSONB",
    }

    SERIAL_TYPES = {
        SqlType.INT: "SERIAL",
        SqlType.BIG_INT: "BIGSERIAL",
    }

    def column_type(self, sqltype: Union[KnownType, NamedType], column: Column) -> str:
        if isinstance(sqltype, NamedType):
            return sqltype.name
        if column.auto and sqltype.ty in self.SERIAL_TYPES:
            return self.SERIAL_TYPES[sqltype.ty]
        return self.TYPES[sqltype.ty]

    def plain_type(self, sqltype: Union[KnownType, NamedType]) -> str:
        if isinstance(sqltype, NamedType):
            return sqltype.name
        return self.TYPES[sqltype.ty]

    def blob_literal(self, value: bytes) -> str:
        return quote_text("\\x" + value.hex())

    def column_def(self, column: Column, with_zero_default: bool = False) -> str:
        parts = [quote_ident(column.name), self.column_type(column.sqltype, column)]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.default is not None:
            parts.append(f"DEFAULT {self.literal(column.default)}")
        elif with_zero_default and not column.nullable and not column.auto:
            parts.append(f"DEFAULT {self.zero_default(column.sqltype)}")
        if column.pk:
            parts.append("PRIMARY KEY")
        elif column.unique:
            parts.append("UNIQUE")
        return " ".join(parts)

    def create_table_sql(self, table: Table) -> str:
        body = ",\n".join(self.column_def(c) for c in table.columns)
        return f"CREATE TABLE {quote_ident(table.name)} (\n{body}\n);\n"

    @staticmethod
    def constraint_name(table: str, column: str | None, suffix: str) -> str:
        parts = [table] + ([column] if column else []) + [suffix]
        return quote_ident("_".join(parts))

    def add_foreign_key_sql(self, table: str, column: Column) -> str:
        ref = column.reference
        return (
            f"ALTER TABLE {quote_ident(table)} ADD CONSTRAINT "
            f"{self.constraint_name(table, column.name, 'fkey')} "
            f"FOREIGN KEY ({quote_ident(column.name)}) REFERENCES "
            f"{quote_ident(ref.table_name)}({quote_ident(ref.column_name)});\n"
        )

    def drop_foreign_key_sql(self, table: str, column: Column) -> str:
        return (
            f"ALTER TABLE {quote_ident(table)} DROP CONSTRAINT "
            f"{self.constraint_name(table, column.name, 'fkey')};\n"
        )

    def create_migration_sql(
        self,
        old: DatabaseSnapshot,
        new: DatabaseSnapshot,
        operations: list[Operation] | None = None,
    ) -> str:
        old, new, operations = self._operations(old, new, operations)

        drop_fks: list[str] = []
        creates: list[str] = []
        alters: list[str] = []
        drops: list[str] = []
        add_fks: list[str] = []

        for op in operations:
            if isinstance(op, AddTable):
                creates.append(self.create_table_sql(op.table))
                for column in op.table.columns:
                    if column.reference is not None:
                        add_fks.append(self.add_foreign_key_sql(op.table.name, column))

            elif isinstance(op, AddColumn):
                alters.append(
                    f"ALTER TABLE {quote_ident(op.table_name)} "
                    f"ADD COLUMN {self.column_def(op.column, True)};\n"
                )
                if op.column.reference is not None:
                    add_fks.append(self.add_foreign_key_sql(op.table_name, op.column))

            elif isinstance(op, ChangeColumn):
                if op.old.reference != op.new.reference:
                    if op.old.reference is not None:
                        drop_fks.append(self.drop_foreign_key_sql(op.table_name, op.old))
                    if op.new.reference is not None:
                        add_fks.append(self.add_foreign_key_sql(op.table_name, op.new))

            elif isinstance(op, RemoveColumn):
                if op.column.reference is not None:
                    drop_fks.append(self.drop_foreign_key_sql(op.table_name, op.column))
                drops.append(
                    f"ALTER TABLE {quote_ident(op.table_name)} "
                    f"DROP COLUMN {quote_ident(op.column.name)};\n"
                )

            elif isinstance(op, RemoveTable):
                for column in op.table.columns:
                    if column.reference is not None:
                        drop_fks.append(self.drop_foreign_key_sql(op.table.name, column))
                drops.append(f"DROP TABLE {quote_ident(op.table.name)};\n")

        changes = [op for op in operations if isinstance(op, ChangeColumn)]
        alters.extend(self._change_columns_sql(changes))

        return "".join(drop_fks + creates + alters + drops + add_fks)

    def _change_columns_sql(self, changes: list[ChangeColumn]) -> list[str]:
        """
        Render column changes.

        Key constraints are dropped for every changed column before any is
        added, so a primary key can move between columns of one table.
        """
        dropped: list[str] = []
        altered: list[str] = []
        added: list[str] = []

        for op in changes:
            table = op.table_name
            old, new = op.old, op.new
            prefix = f"ALTER TABLE {quote_ident(table)} ALTER COLUMN {quote_ident(new.name)}"

            if old.pk and not new.pk:
                dropped.append(
                    f"ALTER TABLE {quote_ident(table)} DROP CONSTRAINT "
                    f"{self.constraint_name(table, None, 'pkey')};\n"
                )
            if old.unique and not new.unique and not old.pk:
                dropped.append(
                    f"ALTER TABLE {quote_ident(table)} DROP CONSTRAINT "
                    f"{self.constraint_name(table, old.name, 'key')};\n"
                )

            new_type = self.plain_type(new.sqltype)
            if self.plain_type(old.sqltype) != new_type:
                altered.append(
                    f"{prefix} SET DATA TYPE {new_type} "
                    f"USING {quote_ident(new.name)}::{new_type};\n"
                )
            if old.nullable != new.nullable:
                altered.append(f"{prefix} {'DROP' if new.nullable else 'SET'} NOT NULL;\n")
            if new.auto and not old.auto:
                sequence = "_".join([table, new.name, "seq"])
                altered.append(
                    f"CREATE SEQUENCE IF NOT EXISTS {quote_ident(sequence)} "
                    f"OWNED BY {quote_ident(table)}.{quote_ident(new.name)};\n"
                )
                altered.append(f"{prefix} SET DEFAULT nextval({quote_text(sequence)});\n")
            elif old.default != new.default or (old.auto and not new.auto):
                if new.default is None:
                    altered.append(f"{prefix} DROP DEFAULT;\n")
                else:
                    altered.append(f"{prefix} SET DEFAULT {self.literal(new.default)};\n")

            if new.pk and not old.pk:
                added.append(
                    f"ALTER TABLE {quote_ident(table)} ADD PRIMARY KEY ({quote_ident(new.name)});\n"
                )
            if new.unique and not old.unique and not new.pk:
                added.append(
                    f"ALTER TABLE {quote_ident(table)} ADD CONSTRAINT "
                    f"{self.constraint_name(table, new.name, 'key')} "
                    f"UNIQUE ({quote_ident(new.name)});\n"
                )

        return dropped + altered + added
