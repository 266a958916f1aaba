"""
Class handlers: record type to table metadata.

A ``ClassHandler`` knows the table name, the create statement and the
ordered field handlers of one record type, plus which field (if any)
holds the record id. ``ReflectedClassHandler`` derives all of that by
reflecting over a dataclass or a plain annotated class.

Manifesto:
    - **Records stay plain:** no base class to inherit, no session state
    - **Metadata next to the class:** ``@table_record(...)`` or the
      ``TABLE_NAME`` / ``CREATE_STATEMENT`` constants
    - **Derived once:** handlers are immutable and cached per record type
      (see ``dbspine.mapping.registry``)

Architecture:
    ::

        @table_record(table_name="person", create_statement=DDL)
        @dataclass
        class Person: ...
              │
              ▼
        ReflectedClassHandler(Person)
        ├── table_name          "person"
        ├── create_statement    DDL
        ├── record_id_field     FieldHandler for "id"
        └── fields              [id, name, born, tags, ...]
                                  │
                                  └── ReflectedFieldHandler / StringCollectionFieldHandler

Persistable fields:
    Dataclass fields, or class-level annotations of a plain class, except:

    - ``ClassVar`` annotations
    - names starting with ``_``
    - fields marked ``column(transient=True)``

Examples:
    >>> @table_record(table_name="person")
    ... @dataclass
    ... class Person:
    ...     id: int = -1
    ...     name: str = ""
    >>> handler = ReflectedClassHandler(Person)
    >>> [f.column for f in handler.fields]
    ['id', 'name']
    >>> handler.get_record_id(Person())
    -1

Tags:
    mapping, reflection, record, table, dbspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import dataclasses
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from dbspine.core.errors import MappingError
from dbspine.mapping.fields import (
    COLUMN_METADATA_KEY,
    Column,
    FieldHandler,
    ReflectedFieldHandler,
    StringCollectionFieldHandler,
    is_string_collection,
)
from dbspine.mapping.types import resolve_annotation

T = TypeVar("T")

TABLE_RECORD_ATTRIBUTE = "__dbspine_table__"
DEFAULT_RECORD_ID = "id"


@dataclass(frozen=True)
class TableRecord:
    """Class-level options set by ``@table_record``."""

    table_name: str | None = None
    create_statement: str | None = None
    record_id: str = DEFAULT_RECORD_ID
    handler: type[ClassHandler[Any]] | None = None


def table_record(
    table_name: str | None = None,
    *,
    create_statement: str | None = None,
    record_id: str = DEFAULT_RECORD_ID,
    handler: type[ClassHandler[Any]] | None = None,
) -> Callable[[type[T]], type[T]]:
    """Class decorator declaring the table a record type is stored in."""

    def decorate(cls: type[T]) -> type[T]:
        setattr(
            cls,
            TABLE_RECORD_ATTRIBUTE,
            TableRecord(table_name, create_statement, record_id, handler),
        )
        return cls

    return decorate


def get_table_record(cls: type) -> TableRecord | None:
    return getattr(cls, TABLE_RECORD_ATTRIBUTE, None)


# ── ClassHandler ─────────────────────────────────────────────────────────


class ClassHandler(Generic[T]):
    """Table metadata and field handlers of one record type."""

    record_type: type[T]
    table_name: str
    fields: list[FieldHandler]
    record_id_field: FieldHandler | None

    @property
    def create_statement(self) -> str:
        raise NotImplementedError

    def get_field_handler(self, name: str) -> FieldHandler:
        """Field handler by field or column name, ignoring case."""
        handler = self.find_field_handler(name)
        if handler is None:
            raise MappingError(
                f"{self.record_type.__name__} has no field '{name}'",
                record_type=self.record_type,
                field_name=name,
            )
        return handler

    def find_field_handler(self, name: str) -> FieldHandler | None:
        raise NotImplementedError

    def has_record_id(self) -> bool:
        return self.record_id_field is not None

    @property
    def record_id_column(self) -> str:
        return self._require_record_id().column

    def get_record_id(self, obj: T) -> int:
        """Record id of ``obj``; ``-1`` when it has not been stored yet."""
        value = self._require_record_id().get_value(obj)
        return -1 if value is None else int(value)

    def set_record_id(self, obj: T, record_id: int) -> None:
        self._require_record_id().set_value(obj, record_id)

    def _require_record_id(self) -> FieldHandler:
        if self.record_id_field is None:
            raise MappingError(
                f"{self.record_type.__name__} class has no record ID",
                record_type=self.record_type,
            )
        return self.record_id_field

    def new_instance(self) -> T:
        return self.record_type()

    def __repr__(self) -> str:
        return f"{type(self).__name__}[{self.record_type.__name__} -> {self.table_name}]"


class ReflectedClassHandler(ClassHandler[T]):
    """Derives table metadata by reflecting over a record class."""

    def __init__(self, record_type: type[T]) -> None:
        self.record_type = record_type
        self._options = get_table_record(record_type) or TableRecord()
        self.table_name = self._resolve_table_name()
        self._create_statement = self._options.create_statement or getattr(
            record_type, "CREATE_STATEMENT", None
        )

        self.fields = self._create_field_handlers()
        self._by_name: dict[str, FieldHandler] = {}
        for handler in self.fields:
            self._by_name.setdefault(handler.name.lower(), handler)
            self._by_name.setdefault(handler.column.lower(), handler)

        self.record_id_field = next(
            (handler for handler in self.fields if handler.name == self._options.record_id),
            None,
        )

    def _resolve_table_name(self) -> str:
        if self._options.table_name:
            return self._options.table_name
        constant = getattr(self.record_type, "TABLE_NAME", None)
        if isinstance(constant, str) and constant:
            return constant
        return self.record_type.__name__

    @property
    def create_statement(self) -> str:
        if not self._create_statement:
            raise MappingError(
                f"No create statement for class '{self.record_type.__name__}'",
                record_type=self.record_type,
            )
        return self._create_statement

    def find_field_handler(self, name: str) -> FieldHandler | None:
        return self._by_name.get(name.lower())

    # ── Field discovery ──────────────────────────────────────────

    def _create_field_handlers(self) -> list[FieldHandler]:
        cls = self.record_type
        try:
            hints = typing.get_type_hints(cls, include_extras=True)
        except (NameError, TypeError) as e:
            raise MappingError(
                f"Cannot resolve annotations of {cls.__name__}: {e}",
                record_type=cls,
                cause=e,
            ) from e

        handlers: list[FieldHandler] = []
        for name, options in self._persistable_fields(hints):
            if options.transient:
                continue
            handler = self.create_field_handler(name, hints.get(name, Any), options)
            if handler is not None:
                handlers.append(handler)
        return handlers

    def _persistable_fields(self, hints: dict[str, Any]) -> list[tuple[str, Column]]:
        cls = self.record_type
        if dataclasses.is_dataclass(cls):
            return [
                (f.name, f.metadata.get(COLUMN_METADATA_KEY) or Column())
                for f in dataclasses.fields(cls)
                if not f.name.startswith("_")
            ]

        result = []
        for name, annotation in hints.items():
            if name.startswith("_") or typing.get_origin(annotation) is typing.ClassVar:
                continue
            attribute = cls.__dict__.get(name)
            if attribute is None:
                for base in cls.__mro__[1:]:
                    if name in base.__dict__:
                        attribute = base.__dict__[name]
                        break
            result.append((name, attribute if isinstance(attribute, Column) else Column()))
        return result

    def create_field_handler(self, name: str, annotation: Any, options: Column) -> FieldHandler | None:
        """Build the handler of one field; override to customize or skip fields."""
        if is_string_collection(resolve_annotation(annotation)):
            return StringCollectionFieldHandler(self.record_type, name, annotation, options)
        return ReflectedFieldHandler(self.record_type, name, annotation, options)


__all__ = [
    "TableRecord",
    "table_record",
    "get_table_record",
    "ClassHandler",
    "ReflectedClassHandler",
    "DEFAULT_RECORD_ID",
]
