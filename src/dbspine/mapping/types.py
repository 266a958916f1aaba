"""
Storage categories and the converter table.

Every persistable field resolves to one ``SqlType``. Each ``SqlType`` has
exactly one registered ``Converter``: a pair of functions turning a field
value into a statement parameter (``to_db``) and a cursor value back into
a field value (``from_db``).

Derivation order matters: ``bool`` is checked before ``int`` and
``datetime`` before ``date`` because of subclassing.

==================  ==============================  ======================
Python type         SqlType                         Cursor value accepted
==================  ==============================  ======================
``Decimal``         DECIMAL                         number or text
``bool``            BOOLEAN                         0/1, bool, text
``int``             INTEGER                         number or text
``float``           DOUBLE                          number or text
``bytes``           BINARY                          bytes, memoryview
``datetime``        TIMESTAMP                       datetime, date, ISO text
``date``            DATE                            date, datetime, ISO text
``time``            TIME                            time, timedelta, ISO text
``Enum`` subclass   ENUM                            member name
anything else       STRING                          any (``str()``)
==================  ==============================  ======================

``BYTE``, ``CHAR``, ``BIGINT`` and ``FLOAT`` are only chosen through an
explicit ``column(sql_type=...)`` override.
"""

from __future__ import annotations

import types
import typing
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, NamedTuple

from dbspine.mapping.values import LocalizedString, ServerNow, properties_to_string


class SqlType(str, Enum):
    """Storage category of a column."""

    DECIMAL = "DECIMAL"
    BOOLEAN = "BOOLEAN"
    BYTE = "BYTE"
    CHAR = "CHAR"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    FLOAT = "FLOAT"
    DOUBLE = "DOUBLE"
    BINARY = "BINARY"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    ENUM = "ENUM"
    STRING = "STRING"


class Converter(NamedTuple):
    to_db: Callable[[Any], Any]
    """Field value (never ``None``) to statement parameter."""

    from_db: Callable[[Any, type], Any]
    """Cursor value (never ``None``) and declared field type to field value."""


# ── to_db ────────────────────────────────────────────────────────────────


def _passthrough(value: Any) -> Any:
    return value


def _char_to_db(value: Any) -> str:
    return str(value)[:1]


def _enum_to_db(value: Any) -> str:
    return value.name if isinstance(value, Enum) else str(value)


def _string_to_db(value: Any) -> str:
    if isinstance(value, LocalizedString):
        return value.to_string()
    if isinstance(value, dict):
        return properties_to_string(value)
    if isinstance(value, Enum):
        return value.name
    return str(value)


# ── from_db ──────────────────────────────────────────────────────────────


def _decimal_from_db(raw: Any, value_type: type) -> Decimal:
    return raw if isinstance(raw, Decimal) else Decimal(str(raw))


def _boolean_from_db(raw: Any, value_type: type) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "t", "y", "yes")
    return bool(raw)


def _integer_from_db(raw: Any, value_type: type) -> int:
    return int(raw)


def _float_from_db(raw: Any, value_type: type) -> float:
    return float(raw)


def _char_from_db(raw: Any, value_type: type) -> str | None:
    text = str(raw)
    return text[0] if text else None


def _binary_from_db(raw: Any, value_type: type) -> bytes:
    if isinstance(raw, str):
        return raw.encode("utf-8")
    return bytes(raw)


def _date_from_db(raw: Any, value_type: type) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return datetime.fromisoformat(str(raw)).date()


def _time_from_db(raw: Any, value_type: type) -> time:
    if isinstance(raw, datetime):
        return raw.time()
    if isinstance(raw, time):
        return raw
    if isinstance(raw, timedelta):
        return (datetime.min + raw).time()
    text = str(raw)
    try:
        return time.fromisoformat(text)
    except ValueError:
        # server-side now() on SQLite yields 'YYYY-MM-DD HH:MM:SS'
        return datetime.fromisoformat(text).time()


def _timestamp_from_db(raw: Any, value_type: type) -> datetime:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, date):
        return datetime.combine(raw, time.min)
    return datetime.fromisoformat(str(raw))


def _enum_from_db(raw: Any, value_type: type) -> Enum:
    if isinstance(raw, value_type):
        return raw
    return value_type[str(raw)]


def _string_from_db(raw: Any, value_type: type) -> str:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).decode("utf-8")
    return str(raw)


# ── Converter table ──────────────────────────────────────────────────────

_CONVERTERS: dict[SqlType, Converter] = {
    SqlType.DECIMAL: Converter(_passthrough, _decimal_from_db),
    SqlType.BOOLEAN: Converter(_passthrough, _boolean_from_db),
    SqlType.BYTE: Converter(_passthrough, _integer_from_db),
    SqlType.CHAR: Converter(_char_to_db, _char_from_db),
    SqlType.INTEGER: Converter(_passthrough, _integer_from_db),
    SqlType.BIGINT: Converter(_passthrough, _integer_from_db),
    SqlType.FLOAT: Converter(_passthrough, _float_from_db),
    SqlType.DOUBLE: Converter(_passthrough, _float_from_db),
    SqlType.BINARY: Converter(_passthrough, _binary_from_db),
    SqlType.DATE: Converter(_passthrough, _date_from_db),
    SqlType.TIME: Converter(_passthrough, _time_from_db),
    SqlType.TIMESTAMP: Converter(_passthrough, _timestamp_from_db),
    SqlType.ENUM: Converter(_enum_to_db, _enum_from_db),
    SqlType.STRING: Converter(_string_to_db, _string_from_db),
}


def get_converter(sql_type: SqlType) -> Converter:
    return _CONVERTERS[sql_type]


def register_converter(sql_type: SqlType, converter: Converter) -> Converter:
    """Replace the converter of ``sql_type``; returns the previous one."""
    previous = _CONVERTERS[sql_type]
    _CONVERTERS[sql_type] = converter
    return previous


def is_plain_class(value_type: Any) -> bool:
    """True for real classes, false for aliases such as ``list[str]``."""
    return isinstance(value_type, type) and typing.get_origin(value_type) is None


def sql_type_for(value_type: Any) -> SqlType:
    """Derive the storage category of a resolved Python type."""
    if not is_plain_class(value_type):
        return SqlType.STRING
    if issubclass(value_type, Decimal):
        return SqlType.DECIMAL
    if issubclass(value_type, bool):
        return SqlType.BOOLEAN
    if issubclass(value_type, int) and not issubclass(value_type, Enum):
        return SqlType.INTEGER
    if issubclass(value_type, float):
        return SqlType.DOUBLE
    if issubclass(value_type, (bytes, bytearray)):
        return SqlType.BINARY
    if issubclass(value_type, datetime):
        return SqlType.TIMESTAMP
    if issubclass(value_type, date):
        return SqlType.DATE
    if issubclass(value_type, time):
        return SqlType.TIME
    if issubclass(value_type, Enum):
        return SqlType.ENUM
    return SqlType.STRING


# ── Annotation resolution ────────────────────────────────────────────────


@dataclass(frozen=True)
class ResolvedType:
    """A field annotation reduced to the type that is actually stored."""

    value_type: Any
    nullable: bool = False
    final: bool = False
    allows_server_now: bool = False

    @property
    def origin(self) -> Any:
        return typing.get_origin(self.value_type)


def resolve_annotation(annotation: Any) -> ResolvedType:
    """
    Strip ``Final``, ``Annotated``, ``Optional`` and ``| ServerNow`` from an
    annotation.

    >>> resolve_annotation(datetime | ServerNow | None)
    ResolvedType(value_type=<class 'datetime.datetime'>, nullable=True, final=False, allows_server_now=True)
    """
    final = False
    origin = typing.get_origin(annotation)

    if annotation is typing.Final:
        return ResolvedType(Any, final=True)
    if origin is typing.Final:
        final = True
        annotation = typing.get_args(annotation)[0]
        origin = typing.get_origin(annotation)
    if origin is typing.Annotated:
        annotation = typing.get_args(annotation)[0]
        origin = typing.get_origin(annotation)

    nullable = False
    allows_server_now = False
    if origin is typing.Union or origin is types.UnionType:
        members = []
        for arg in typing.get_args(annotation):
            if arg is type(None):
                nullable = True
            elif arg is ServerNow:
                allows_server_now = True
            else:
                members.append(arg)
        if len(members) == 1:
            annotation = members[0]
        else:
            annotation = Any

    return ResolvedType(annotation, nullable=nullable, final=final, allows_server_now=allows_server_now)


__all__ = [
    "SqlType",
    "Converter",
    "get_converter",
    "register_converter",
    "is_plain_class",
    "sql_type_for",
    "ResolvedType",
    "resolve_annotation",
]
