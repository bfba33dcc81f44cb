"""
Column Type and Value Models.

Tagged representations used by the serialized migration format:
- {"KnownId": {"Ty": "Text"}}       logical type
- {"KnownId": {"Name": "citext"}}   backend-specific custom type, emitted verbatim
- {"Deferred": {"PK": "Blog"}}      type of another table's primary key
- {"Deferred": {"CustomType": "X"}} resolved through the snapshot's extra_types
"""

from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal, TypeVar, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    PlainSerializer,
    SerializerFunctionWrapHandler,
    WrapSerializer,
)


class SqlType(str, Enum):
    """Logical column types known to every backend."""

    BOOL = "Bool"
    INT = "Int"
    BIG_INT = "BigInt"
    REAL = "Real"
    TEXT = "Text"
    DATE = "Date"
    TIMESTAMP = "Timestamp"
    BLOB = "Blob"
    JSON = "Json"


class KnownType(BaseModel):
    """A column type from the fixed SqlType enumeration."""

    model_config = ConfigDict(frozen=True)

    ty: SqlType


class NamedType(BaseModel):
    """A custom type, passed through to DDL by name."""

    model_config = ConfigDict(frozen=True)

    name: str


class DeferredType(BaseModel):
    """A type that is only known once the whole snapshot is available."""

    model_config = ConfigDict(frozen=True)

    key: Literal["PK", "CustomType"]
    target: str


def _single_entry(raw: Any, what: str) -> tuple[str, Any]:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise ValueError(f"{what} must be an object with exactly one tag, got {raw!r}")
    return next(iter(raw.items()))


def parse_sql_type(raw: Any) -> Any:
    """Parse the tagged sqltype form into a type model."""
    if isinstance(raw, (KnownType, NamedType, DeferredType)):
        return raw

    tag, body = _single_entry(raw, "sqltype")
    if tag == "KnownId":
        kind, value = _single_entry(body, "KnownId")
        if kind == "Ty":
            if value not in SqlType._value2member_map_:
                raise ValueError(f"unknown type tag {value!r}")
            return KnownType(ty=SqlType(value))
        if kind == "Name":
            if not isinstance(value, str) or not value:
                raise ValueError(f"custom type name must be a non-empty string, got {value!r}")
            return NamedType(name=value)
        raise ValueError(f"unknown KnownId tag {kind!r}")

    if tag == "Deferred":
        kind, value = _single_entry(body, "Deferred")
        if kind not in ("PK", "CustomType"):
            raise ValueError(f"unknown Deferred tag {kind!r}")
        if not isinstance(value, str) or not value:
            raise ValueError(f"deferred type target must be a non-empty string, got {value!r}")
        return DeferredType(key=kind, target=value)

    raise ValueError(f"unknown sqltype tag {tag!r}")


def dump_sql_type(value: Union[KnownType, NamedType, DeferredType]) -> dict[str, Any]:
    """Serialize a type model back into its tagged form."""
    if isinstance(value, KnownType):
        return {"KnownId": {"Ty": value.ty.value}}
    if isinstance(value, NamedType):
        return {"KnownId": {"Name": value.name}}
    return {"Deferred": {value.key: value.target}}


SqlTypeRef = Annotated[
    Union[KnownType, NamedType, DeferredType],
    BeforeValidator(parse_sql_type),
    PlainSerializer(dump_sql_type),
]


class ValueKind(str, Enum):
    """Tags of literal column default values."""

    BOOL = "Bool"
    INT = "Int"
    BIG_INT = "BigInt"
    REAL = "Real"
    TEXT = "Text"
    BLOB = "Blob"
    JSON = "Json"
    CUSTOM = "Custom"


class SqlValue(BaseModel):
    """A tagged literal, used for column defaults."""

    model_config = ConfigDict(frozen=True)

    kind: ValueKind
    value: Any


def _check_value(kind: ValueKind, value: Any) -> None:
    if kind == ValueKind.BOOL:
        ok = isinstance(value, bool)
    elif kind in (ValueKind.INT, ValueKind.BIG_INT):
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif kind == ValueKind.REAL:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif kind in (ValueKind.TEXT, ValueKind.CUSTOM):
        ok = isinstance(value, str)
    elif kind == ValueKind.BLOB:
        ok = isinstance(value, list) and all(
            isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in value
        )
    else:
        ok = True
    if not ok:
        raise ValueError(f"invalid {kind.value} default value {value!r}")


def parse_sql_value(raw: Any) -> Any:
    """Parse a tagged default value; null stays None."""
    if raw is None or isinstance(raw, SqlValue):
        return raw
    tag, value = _single_entry(raw, "default")
    if tag not in ValueKind._value2member_map_:
        raise ValueError(f"unknown default value tag {tag!r}")
    kind = ValueKind(tag)
    _check_value(kind, value)
    if kind == ValueKind.BLOB:
        value = tuple(value)
    return SqlValue(kind=kind, value=value)


def dump_sql_value(value: SqlValue | None) -> Any:
    if value is None:
        return None
    payload = list(value.value) if value.kind == ValueKind.BLOB else value.value
    return {value.kind.value: payload}


SqlValueRef = Annotated[
    Union[SqlValue, None],
    BeforeValidator(parse_sql_value),
    PlainSerializer(dump_sql_value),
]


class Reference(BaseModel):
    """
    Foreign key target.

    A reference without a column name is deferred: it points at the
    primary key of `table_name`, whatever that column turns out to be.
    """

    model_config = ConfigDict(frozen=True)

    table_name: str
    column_name: str | None = None

    @property
    def is_deferred(self) -> bool:
        return self.column_name is None


def parse_reference(raw: Any) -> Any:
    if raw is None or isinstance(raw, Reference):
        return raw
    tag, body = _single_entry(raw, "reference")
    if tag == "Literal":
        if not isinstance(body, dict):
            raise ValueError(f"Literal reference must be an object, got {body!r}")
        for key in ("table_name", "column_name"):
            if not isinstance(body.get(key), str):
                raise ValueError(f"Literal reference is missing {key!r}")
        return Reference(table_name=body["table_name"], column_name=body["column_name"])
    if tag == "Deferred":
        kind, table = _single_entry(body, "Deferred reference")
        if kind != "PK" or not isinstance(table, str):
            raise ValueError(f"unsupported deferred reference {body!r}")
        return Reference(table_name=table)
    raise ValueError(f"unknown reference tag {tag!r}")


def dump_reference(value: Reference | None) -> Any:
    if value is None:
        return None
    if value.is_deferred:
        return {"Deferred": {"PK": value.table_name}}
    return {"Literal": {"table_name": value.table_name, "column_name": value.column_name}}


ReferenceRef = Annotated[
    Union[Reference, None],
    BeforeValidator(parse_reference),
    PlainSerializer(dump_reference),
]


def freeze_mapping(value: dict[Any, Any]) -> Mapping[Any, Any]:
    return MappingProxyType(value)


def thaw_mapping(value: Mapping[Any, Any], handler: SerializerFunctionWrapHandler) -> Any:
    return handler(dict(value))


K = TypeVar("K")
V = TypeVar("V")

# dict on the wire, read-only view once validated
FrozenMap = Annotated[
    dict[K, V],
    AfterValidator(freeze_mapping),
    WrapSerializer(thaw_mapping),
]
