"""
Schema Snapshot Models.

Defines columns, tables and the full database snapshot recorded by each
migration. Snapshots are frozen; SnapshotBuilder is the mutable form used
while authoring a migration.
"""

from typing import Any, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    ValidationError,
    model_serializer,
    model_validator,
)

from schemachain.errors import DuplicateNameError, MalformedMigrationError
from schemachain.schema.types import (
    DeferredType,
    FrozenMap,
    KnownType,
    NamedType,
    Reference,
    ReferenceRef,
    SqlTypeRef,
    SqlValueRef,
    parse_sql_type,
)

# Deferred types may point at other deferred types; anything deeper is a loop.
MAX_RESOLVE_DEPTH = 16


class Column(BaseModel):
    """Column schema."""

    model_config = ConfigDict(frozen=True)

    name: StrictStr = Field(..., min_length=1, description="Column name, unique within its table")
    sqltype: SqlTypeRef = Field(..., description="Tagged column type")
    nullable: StrictBool = Field(..., description="Whether NULL is allowed")
    pk: StrictBool = Field(..., description="Primary key flag")
    auto: StrictBool = Field(..., description="Auto-increment flag")
    unique: StrictBool = Field(..., description="Uniqueness flag")
    default: SqlValueRef = Field(default=None, description="Default value")
    reference: ReferenceRef = Field(default=None, description="Foreign key target")

    @model_serializer(mode="wrap")
    def _omit_missing_reference(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        if data.get("reference") is None:
            data.pop("reference", None)
        return data


class Table(BaseModel):
    """Table schema; column order is the DDL declaration order."""

    model_config = ConfigDict(frozen=True)

    name: StrictStr = Field(..., min_length=1)
    columns: tuple[Column, ...]

    @model_validator(mode="after")
    def _check_columns(self) -> "Table":
        if not self.columns:
            raise ValueError(f"table {self.name!r} has no columns")
        seen: set[str] = set()
        for column in self.columns:
            if column.name in seen:
                raise ValueError(f"table {self.name!r} declares column {column.name!r} twice")
            seen.add(column.name)
        if sum(1 for c in self.columns if c.pk) > 1:
            raise ValueError(f"table {self.name!r} declares more than one primary key column")
        return self

    def column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def primary_key(self) -> Column | None:
        for column in self.columns:
            if column.pk:
                return column
        return None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


class DatabaseSnapshot(BaseModel):
    """Full schema state after a migration has been applied."""

    model_config = ConfigDict(frozen=True)

    tables: FrozenMap[str, Table] = Field(default_factory=dict, validate_default=True)
    extra_types: FrozenMap[str, SqlTypeRef] = Field(default_factory=dict, validate_default=True)

    @model_validator(mode="after")
    def _check_integrity(self) -> "DatabaseSnapshot":
        for key, table in self.tables.items():
            if key != table.name:
                raise ValueError(f"table stored under {key!r} is named {table.name!r}")
        for table in self.tables.values():
            for column in table.columns:
                ref = column.reference
                if ref is None:
                    continue
                target = self.tables.get(ref.table_name)
                if target is None:
                    raise ValueError(
                        f"{table.name}.{column.name} references missing table {ref.table_name!r}"
                    )
                if ref.is_deferred:
                    if target.primary_key is None:
                        raise ValueError(
                            f"{table.name}.{column.name} references {ref.table_name!r}, "
                            "which has no primary key"
                        )
                elif target.column(ref.column_name) is None:
                    raise ValueError(
                        f"{table.name}.{column.name} references missing column "
                        f"{ref.table_name}.{ref.column_name}"
                    )
        # Deferred types must resolve within this snapshot
        try:
            for table in self.tables.values():
                for column in table.columns:
                    self.resolve_type(column.sqltype)
            for extra in self.extra_types.values():
                self.resolve_type(extra)
        except MalformedMigrationError as e:
            raise ValueError(str(e)) from e
        return self

    def table(self, name: str) -> Table | None:
        return self.tables.get(name)

    def resolve_type(
        self,
        sqltype: Union[KnownType, NamedType, DeferredType],
        _depth: int = 0,
    ) -> Union[KnownType, NamedType]:
        """
        Resolve a deferred column type against this snapshot.

        Raises:
            MalformedMigrationError: If the type cannot be resolved
        """
        if not isinstance(sqltype, DeferredType):
            return sqltype
        if _depth >= MAX_RESOLVE_DEPTH:
            raise MalformedMigrationError(f"deferred type {sqltype.target!r} does not resolve")

        if sqltype.key == "PK":
            table = self.tables.get(sqltype.target)
            pk = table.primary_key if table else None
            if pk is None:
                raise MalformedMigrationError(
                    f"cannot resolve primary key type of table {sqltype.target!r}"
                )
            return self.resolve_type(pk.sqltype, _depth + 1)

        extra = self.extra_types.get(sqltype.target)
        if extra is None:
            raise MalformedMigrationError(f"unknown custom type {sqltype.target!r}")
        return self.resolve_type(extra, _depth + 1)

    def resolved(self) -> "DatabaseSnapshot":
        """Return a copy where every column type and reference is concrete."""
        tables: dict[str, Table] = {}
        for name, table in self.tables.items():
            columns = []
            for column in table.columns:
                updates: dict[str, Any] = {}
                concrete = self.resolve_type(column.sqltype)
                if concrete != column.sqltype:
                    updates["sqltype"] = concrete
                ref = column.reference
                if ref is not None and ref.is_deferred:
                    pk = self.tables[ref.table_name].primary_key
                    updates["reference"] = Reference(
                        table_name=ref.table_name, column_name=pk.name
                    )
                columns.append(column.model_copy(update=updates) if updates else column)
            tables[name] = Table(name=table.name, columns=tuple(columns))
        return DatabaseSnapshot(tables=tables, extra_types=dict(self.extra_types))


class SnapshotBuilder:
    """
    Mutable schema used while authoring a migration.

    Usage:
        ```python
        builder = SnapshotBuilder()
        builder.add_table("Blog")
        builder.add_column("Blog", Column(name="id", ...))
        snapshot = builder.build()
        ```
    """

    def __init__(self, snapshot: DatabaseSnapshot | None = None) -> None:
        self._tables: dict[str, list[Column]] = {}
        self._extra_types: dict[str, Any] = {}
        if snapshot is not None:
            for name, table in snapshot.tables.items():
                self._tables[name] = list(table.columns)
            self._extra_types.update(snapshot.extra_types)

    @property
    def table_names(self) -> list[str]:
        return list(self._tables)

    def add_table(self, name: str, table: Table | None = None) -> None:
        """
        Stage a table, optionally with its columns.

        Raises:
            DuplicateNameError: If a table with this name is already staged
        """
        if name in self._tables:
            raise DuplicateNameError("table", name)
        self._tables[name] = []
        if table is not None:
            for column in table.columns:
                self.add_column(name, column)

    def add_column(self, table: str, column: Column) -> None:
        """
        Append a column to a staged table.

        Raises:
            DuplicateNameError: If the table already has a column with this name
        """
        columns = self._require(table)
        if any(c.name == column.name for c in columns):
            raise DuplicateNameError("column", column.name, scope=table)
        columns.append(column)

    def replace_column(self, table: str, column: Column) -> None:
        """Replace the column with the same name, keeping its position."""
        columns = self._require(table)
        for i, existing in enumerate(columns):
            if existing.name == column.name:
                columns[i] = column
                return
        raise ValueError(f"table {table!r} has no column {column.name!r}")

    def remove_column(self, table: str, name: str) -> None:
        columns = self._require(table)
        self._tables[table] = [c for c in columns if c.name != name]

    def remove_table(self, name: str) -> None:
        self._require(name)
        del self._tables[name]

    def add_extra_type(self, name: str, sqltype: Any) -> None:
        if name in self._extra_types:
            raise DuplicateNameError("type", name)
        self._extra_types[name] = parse_sql_type(sqltype)

    def build(self) -> DatabaseSnapshot:
        """
        Freeze the staged schema.

        Raises:
            MalformedMigrationError: If the staged schema is inconsistent
        """
        try:
            return DatabaseSnapshot(
                tables={
                    name: Table(name=name, columns=tuple(columns))
                    for name, columns in self._tables.items()
                },
                extra_types=dict(self._extra_types),
            )
        except ValidationError as e:
            raise MalformedMigrationError(str(e)) from e

    def _require(self, table: str) -> list[Column]:
        try:
            return self._tables[table]
        except KeyError:
            raise ValueError(f"table {table!r} is not staged") from None
