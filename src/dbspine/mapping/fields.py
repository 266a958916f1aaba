"""
Field handlers: one record attribute to one column and back.

``FieldHandler`` is the abstract contract used by the engine.
``ReflectedFieldHandler`` implements it for an attribute of a record
class, driven by the attribute's annotation and optional ``Column``
metadata. ``StringCollectionFieldHandler`` stores a list or set of
strings in a single separator-joined column.

Field options are declared with ``column(...)``, either through dataclass
field metadata or as a ``Column`` descriptor on a plain class::

    @dataclass
    class Person:
        id: int = -1
        name: str = column(default="", not_null=True)
        tags: list[str] = column(default_factory=list, null_if_empty=True)

    class Account:
        id: int = -1
        label: str | None = Column(column_name="account_label")
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Collection
from dataclasses import MISSING
from typing import Any

from dbspine.core.errors import MappingError
from dbspine.mapping.types import (
    ResolvedType,
    SqlType,
    get_converter,
    is_plain_class,
    resolve_annotation,
    sql_type_for,
)
from dbspine.mapping.values import LocalizedString, ServerNow, properties_from_string

COLUMN_METADATA_KEY = "dbspine"


# ── Column metadata ──────────────────────────────────────────────────────


class Column:
    """
    Per-field persistence options.

    Used as dataclass field metadata (see ``column``) or directly as a
    class attribute, where it also acts as a descriptor supplying the
    default value.
    """

    def __init__(
        self,
        *,
        default: Any = None,
        default_factory: Callable[[], Any] | None = None,
        not_null: bool = False,
        transient: bool = False,
        sql_type: SqlType | None = None,
        column_name: str | None = None,
        final: bool = False,
        separator: str = ",",
        null_if_empty: bool = False,
    ) -> None:
        self.default = default
        self.default_factory = default_factory
        self.not_null = not_null
        self.transient = transient
        self.sql_type = sql_type
        self.column_name = column_name
        self.final = final
        self.separator = separator
        self.null_if_empty = null_if_empty
        self.attribute: str | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.attribute = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        try:
            return instance.__dict__[self.attribute]
        except KeyError:
            value = self.default_factory() if self.default_factory is not None else self.default
            instance.__dict__[self.attribute] = value
            return value

    def __set__(self, instance: Any, value: Any) -> None:
        instance.__dict__[self.attribute] = value

    def __repr__(self) -> str:
        options = {k: v for k, v in vars(self).items() if k != "attribute" and v not in (None, False, ",")}
        return f"Column({options!r})"


def column(
    *,
    default: Any = MISSING,
    default_factory: Any = MISSING,
    not_null: bool = False,
    transient: bool = False,
    sql_type: SqlType | None = None,
    column_name: str | None = None,
    final: bool = False,
    separator: str = ",",
    null_if_empty: bool = False,
) -> Any:
    """A ``dataclasses.field`` carrying ``Column`` options in its metadata."""
    options = Column(
        not_null=not_null,
        transient=transient,
        sql_type=sql_type,
        column_name=column_name,
        final=final,
        separator=separator,
        null_if_empty=null_if_empty,
    )
    return dataclasses.field(
        default=default,
        default_factory=default_factory,
        metadata={COLUMN_METADATA_KEY: options},
    )


# ── FieldHandler ─────────────────────────────────────────────────────────


class FieldHandler:
    """Two-way converter between one record field and one column."""

    name: str
    column: str
    value_type: Any
    nullable: bool
    not_null: bool

    def get_sql_type(self) -> SqlType:
        raise NotImplementedError

    def get_value(self, obj: Any) -> Any:
        raise NotImplementedError

    def set_value(self, obj: Any, value: Any) -> None:
        raise NotImplementedError

    def get_column_data(self, obj: Any) -> Any:
        """Statement parameter for this field of ``obj``."""
        raise NotImplementedError

    def set_column_data(self, obj: Any, raw: Any) -> None:
        """Store a cursor value into this field of ``obj``."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}[{self.name}]"


class ReflectedFieldHandler(FieldHandler):
    """Handles an attribute of a record class using its annotation."""

    def __init__(
        self,
        record_type: type,
        name: str,
        annotation: Any = str,
        options: Column | None = None,
    ) -> None:
        options = options or Column()
        resolved = resolve_annotation(annotation)

        self.record_type = record_type
        self.name = name
        self.column = options.column_name or name
        self.resolved = resolved
        self.value_type = resolved.value_type
        self.nullable = resolved.nullable
        self.not_null = options.not_null
        self.final = options.final or resolved.final
        self._sql_type = options.sql_type or sql_type_for(resolved.value_type)

    def get_sql_type(self) -> SqlType:
        return self._sql_type

    @property
    def allows_server_now(self) -> bool:
        return self.resolved.allows_server_now or self._sql_type in (
            SqlType.DATE,
            SqlType.TIME,
            SqlType.TIMESTAMP,
        )

    def get_value(self, obj: Any) -> Any:
        return getattr(obj, self.name)

    def set_value(self, obj: Any, value: Any) -> None:
        setattr(obj, self.name, value)

    def get_column_data(self, obj: Any) -> Any:
        value = self.get_value(obj)
        if value is None:
            if self.not_null:
                raise self._null_violation()
            return None
        if isinstance(value, ServerNow):
            return value
        return get_converter(self._sql_type).to_db(value)

    def _null_violation(self) -> MappingError:
        return MappingError(
            f"{self.record_type.__name__}.{self.name} is declared not null but holds None",
            record_type=self.record_type,
            field_name=self.name,
        )

    def set_column_data(self, obj: Any, raw: Any) -> None:
        value_type = self.value_type
        if is_plain_class(value_type) and issubclass(value_type, LocalizedString):
            self._set_localized(obj, raw)
        elif self.resolved.origin is dict or (is_plain_class(value_type) and issubclass(value_type, dict)):
            self._set_properties(obj, raw)
        elif raw is None:
            self.set_value(obj, None)
        else:
            try:
                value = get_converter(self._sql_type).from_db(raw, value_type)
            except (ValueError, TypeError, KeyError, ArithmeticError) as e:
                raise MappingError(
                    f"Cannot convert {raw!r} for {self.record_type.__name__}.{self.name}",
                    record_type=self.record_type,
                    field_name=self.name,
                    cause=e,
                ) from e
            self.set_value(obj, value)

    def _set_localized(self, obj: Any, raw: Any) -> None:
        current = self.get_value(obj)
        if raw is not None:
            parsed = LocalizedString.parse(str(raw))
            if current is None:
                self.set_value(obj, parsed)
            else:
                current.update_from(parsed)
        elif current is not None:
            if self.final:
                current.clear()
            else:
                self.set_value(obj, None)

    def _set_properties(self, obj: Any, raw: Any) -> None:
        current = self.get_value(obj)
        if raw is not None:
            if current is None:
                current = {}
                self.set_value(obj, current)
            else:
                current.clear()
            properties_from_string(str(raw), current)
        elif current is not None:
            if self.final:
                current.clear()
            else:
                self.set_value(obj, None)


class StringCollectionFieldHandler(ReflectedFieldHandler):
    """
    Stores a collection of strings as one separator-joined column.

    Reading clears the collection held by the record and refills it in
    place. A new collection is created when the field holds ``None``, and
    a ``tuple`` or ``frozenset`` is replaced by one of the same type.
    """

    def __init__(
        self,
        record_type: type,
        name: str,
        annotation: Any = list[str],
        options: Column | None = None,
    ) -> None:
        options = options or Column()
        super().__init__(record_type, name, annotation, options)
        self.separator = options.separator
        self.null_if_empty = options.null_if_empty
        self._sql_type = options.sql_type or SqlType.STRING

    def get_column_data(self, obj: Any) -> str | None:
        strings: Collection[str] | None = self.get_value(obj)
        if strings is None or (self.null_if_empty and not strings):
            if self.not_null:
                raise self._null_violation()
            return None
        return self.separator.join(strings)

    def set_column_data(self, obj: Any, raw: Any) -> None:
        items = [token for token in str(raw).split(self.separator) if token] if raw else []
        strings = self.get_value(obj)
        if strings is None:
            factory = set if self.resolved.origin in (set, frozenset) else list
            self.set_value(obj, factory(items))
        elif isinstance(strings, list):
            strings[:] = items
        elif isinstance(strings, (tuple, frozenset)):
            self.set_value(obj, type(strings)(items))
        else:
            strings.clear()
            strings.update(items)


def is_string_collection(resolved: ResolvedType) -> bool:
    return resolved.origin in (list, set)


__all__ = [
    "COLUMN_METADATA_KEY",
    "Column",
    "column",
    "FieldHandler",
    "ReflectedFieldHandler",
    "StringCollectionFieldHandler",
    "is_string_collection",
]
