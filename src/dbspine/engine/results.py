"""
Result processors: turning an executed cursor into a Python value.

A processor is any callable that takes the cursor of an executed SELECT
and returns something. ``DbServices.execute_query`` runs the statement,
hands the cursor to the processor and returns whatever it returns.

Manifesto:
    - **Plain callables:** a lambda over the cursor is a valid processor
    - **Records by label:** columns are matched to fields by their
      lower-cased result label, so ``SELECT *`` and hand-picked columns
      both work; unmatched columns are ignored
    - **Cardinality is explicit:** ``SingleObjectConverter`` records
      whether there were zero, one or several rows and lets the caller
      decide which of those is an error

Architecture:
    ::

        GET_STRING / GET_INTEGER / GET_NUMBER   first column of the first row
        GET_ROWS                                list of dicts

        ObjectConverter[T]                      row → new record, via ClassHandler
        ├── ObjectListConverter[T]              → list[T]
        ├── SingleObjectConverter[T]            → itself (first, multiple)
        └── RecordRefresher                     row → existing record, → row count

Examples:
    >>> converter = SingleObjectConverter(Person)
    >>> services.execute_query(converter, "SELECT * FROM person WHERE name=?", "Ada")
    SingleObjectConverter[Person](single)
    >>> converter.get_only().name
    'Ada'

Tags:
    results, cursor, converter, mapping, dbspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any, Generic, TypeVar

from dbspine.core.errors import MultipleResultsError, RecordNotFoundError
from dbspine.core.protocols import DBAPICursor
from dbspine.engine.tools import column_labels, first_value, iter_rows, rows_as_dicts
from dbspine.mapping.classes import ClassHandler
from dbspine.mapping.fields import FieldHandler
from dbspine.mapping.registry import get_class_handler

T = TypeVar("T")
R = TypeVar("R")

ResultProcessor = Callable[[DBAPICursor], R]


# ── Scalar processors ────────────────────────────────────────────────────


def GET_STRING(cursor: DBAPICursor) -> str | None:
    value = first_value(cursor)
    return None if value is None else str(value)


def GET_INTEGER(cursor: DBAPICursor) -> int | None:
    value = first_value(cursor)
    return None if value is None else int(value)


def GET_NUMBER(cursor: DBAPICursor) -> int | float | Decimal | None:
    """First value as returned by the driver; numeric text is parsed as ``Decimal``."""
    value = first_value(cursor)
    if isinstance(value, (str, bytes)):
        return Decimal(value.decode() if isinstance(value, bytes) else value)
    return value


def GET_ROWS(cursor: DBAPICursor) -> list[dict[str, Any]]:
    return rows_as_dicts(cursor)


# ── Record converters ────────────────────────────────────────────────────


class ObjectConverter(Generic[T]):
    """
    Base class of processors that turn rows into records.

    Subclasses implement ``handle`` (called once per converted record) and
    ``result`` (the processor's return value).

    Args:
        record_type: Record class whose handler maps the columns
        column_prefix: Only labels starting with this prefix are used, with
            the prefix removed (for joined selects such as ``p_name``)
        match_table_name: Labels must read ``<table>.<column>``
    """

    def __init__(
        self,
        record_type: type[T],
        column_prefix: str | None = None,
        match_table_name: bool = False,
    ) -> None:
        self.record_type = record_type
        self.column_prefix = column_prefix.lower() if column_prefix else None
        self.match_table_name = match_table_name

    @property
    def class_handler(self) -> ClassHandler[T]:
        return get_class_handler(self.record_type)

    def __call__(self, cursor: DBAPICursor) -> Any:
        handler = self.class_handler
        mapping = self.map_columns(handler, column_labels(cursor))
        for row in iter_rows(cursor):
            obj = handler.new_instance()
            self.populate(obj, mapping, row)
            self.handle(obj)
        return self.result()

    def map_columns(self, handler: ClassHandler[T], labels: Sequence[str]) -> list[tuple[int, FieldHandler]]:
        """Pair result column positions with the field handlers they fill."""
        table = handler.table_name.lower()
        mapping = []
        for index, label in enumerate(labels):
            if self.column_prefix is not None:
                if not label.startswith(self.column_prefix):
                    continue
                label = label[len(self.column_prefix):]
            if self.match_table_name:
                owner, _, label = label.rpartition(".")
                if owner != table:
                    continue
            field = handler.find_field_handler(label)
            if field is not None:
                mapping.append((index, field))
        return mapping

    @staticmethod
    def populate(obj: Any, mapping: list[tuple[int, FieldHandler]], row: Sequence[Any]) -> None:
        for index, field in mapping:
            field.set_column_data(obj, row[index])

    def handle(self, obj: T) -> None:
        raise NotImplementedError

    def result(self) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}[{self.record_type.__name__}]"


class ObjectListConverter(ObjectConverter[T]):
    """Collects every row as a new record."""

    def __init__(self, record_type: type[T], column_prefix: str | None = None, match_table_name: bool = False) -> None:
        super().__init__(record_type, column_prefix, match_table_name)
        self.objects: list[T] = []

    def handle(self, obj: T) -> None:
        self.objects.append(obj)

    def result(self) -> list[T]:
        return self.objects


class SingleObjectConverter(ObjectConverter[T]):
    """Keeps the first record and notes whether more rows followed."""

    def __init__(self, record_type: type[T], column_prefix: str | None = None, match_table_name: bool = False) -> None:
        super().__init__(record_type, column_prefix, match_table_name)
        self.first: T | None = None
        self.multiple = False

    def handle(self, obj: T) -> None:
        if self.first is None:
            self.first = obj
        else:
            self.multiple = True

    def result(self) -> SingleObjectConverter[T]:
        return self

    def get_one(self) -> T:
        """The first record; raises when there was none."""
        if self.first is None:
            raise RecordNotFoundError(f"No {self.record_type.__name__} found")
        return self.first

    def get_only(self) -> T:
        """The single record; raises when there were none or several."""
        obj = self.get_one()
        if self.multiple:
            raise MultipleResultsError(f"Multiple {self.record_type.__name__} records found")
        return obj

    @property
    def state(self) -> str:
        if self.first is None:
            return "empty"
        return "multiple" if self.multiple else "single"

    def __repr__(self) -> str:
        return f"{super().__repr__()}({self.state})"


class RecordRefresher(ObjectConverter[T]):
    """Copies the first row into an existing record; returns the row count."""

    def __init__(self, record: T) -> None:
        super().__init__(type(record))
        self.record = record

    def __call__(self, cursor: DBAPICursor) -> int:
        mapping = self.map_columns(self.class_handler, column_labels(cursor))
        count = 0
        for row in iter_rows(cursor):
            if count == 0:
                self.populate(self.record, mapping, row)
            count += 1
        return count


# ── Log descriptions ─────────────────────────────────────────────────────


def describe_query_result(record_type: type | None, result: Any) -> str:
    """
    Short description of a query result for the query log.

    ``n/a`` without type and result, ``(Person)null`` for ``None``,
    ``Person[3]`` for collections, ``Person(single)`` for a
    ``SingleObjectConverter``, else ``(Person)<result>``.
    """
    type_name = record_type.__name__ if record_type is not None else None
    if result is None:
        return "n/a" if type_name is None else f"({type_name})null"
    if isinstance(result, SingleObjectConverter):
        return f"{result.record_type.__name__}({result.state})"
    if isinstance(result, (list, tuple, set, frozenset)):
        return f"{type_name or ''}[{len(result)}]"
    return str(result) if type_name is None else f"({type_name}){result}"


__all__ = [
    "ResultProcessor",
    "GET_STRING",
    "GET_INTEGER",
    "GET_NUMBER",
    "GET_ROWS",
    "ObjectConverter",
    "ObjectListConverter",
    "SingleObjectConverter",
    "RecordRefresher",
    "describe_query_result",
]
