"""Tests for dbspine.mapping.fields and dbspine.mapping.types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Annotated, Final, Optional

import pytest

from dbspine.core.errors import MappingError
from dbspine.mapping import (
    NOW,
    Column,
    Converter,
    LocalizedString,
    ReflectedFieldHandler,
    ServerNow,
    SqlType,
    StringCollectionFieldHandler,
    register_converter,
    sql_type_for,
)
from dbspine.mapping.types import resolve_annotation
from tests._support.records import Person, Status


@dataclass
class Holder:
    value: object = None


def _handler(annotation, **options):
    return ReflectedFieldHandler(Holder, "value", annotation, Column(**options))


class TestSqlTypeDerivation:
    @pytest.mark.parametrize(
        "value_type, sql_type",
        [
            (Decimal, SqlType.DECIMAL),
            (bool, SqlType.BOOLEAN),
            (int, SqlType.INTEGER),
            (float, SqlType.DOUBLE),
            (bytes, SqlType.BINARY),
            (datetime, SqlType.TIMESTAMP),
            (date, SqlType.DATE),
            (time, SqlType.TIME),
            (Status, SqlType.ENUM),
            (str, SqlType.STRING),
            (LocalizedString, SqlType.STRING),
            (dict[str, str], SqlType.STRING),
        ],
    )
    def test_derivation(self, value_type, sql_type):
        assert sql_type_for(value_type) is sql_type


class TestResolveAnnotation:
    def test_optional(self):
        resolved = resolve_annotation(Optional[int])
        assert resolved.value_type is int
        assert resolved.nullable is True

    def test_server_now_union(self):
        resolved = resolve_annotation(datetime | ServerNow | None)
        assert resolved.value_type is datetime
        assert resolved.allows_server_now is True
        assert resolved.nullable is True

    def test_final_and_annotated(self):
        resolved = resolve_annotation(Final[Annotated[LocalizedString, "meta"]])
        assert resolved.value_type is LocalizedString
        assert resolved.final is True

    def test_collection_origin(self):
        assert resolve_annotation(list[str]).origin is list
        assert resolve_annotation(set[str] | None).origin is set


class TestReflectedFieldHandler:
    def test_column_name_override(self):
        handler = _handler(str, column_name="label")
        assert handler.name == "value"
        assert handler.column == "label"

    def test_sql_type_override(self):
        assert _handler(int, sql_type=SqlType.BIGINT).get_sql_type() is SqlType.BIGINT

    def test_not_null_violation(self):
        handler = _handler(str, not_null=True)
        with pytest.raises(MappingError, match="declared not null") as excinfo:
            handler.get_column_data(Holder(None))
        assert excinfo.value.field_name == "value"

    def test_none_passes_when_nullable(self):
        assert _handler(str).get_column_data(Holder(None)) is None

    def test_server_now_passes_through(self):
        assert _handler(datetime | ServerNow).get_column_data(Holder(NOW)) is NOW

    def test_allows_server_now(self):
        assert _handler(date).allows_server_now is True
        assert _handler(str).allows_server_now is False

    @pytest.mark.parametrize(
        "annotation, value, data",
        [
            (Status, Status.RETIRED, "RETIRED"),
            (bool, True, True),
            (Decimal, Decimal("1.25"), Decimal("1.25")),
            (str, 42, "42"),
            (dict[str, str], {"b": "2", "a": "1"}, "a=1,b=2"),
            (LocalizedString, LocalizedString("Hi", nl="Hoi"), "=Hi,nl=Hoi"),
        ],
    )
    def test_to_db(self, annotation, value, data):
        assert _handler(annotation).get_column_data(Holder(value)) == data

    def test_char_override_truncates(self):
        assert _handler(str, sql_type=SqlType.CHAR).get_column_data(Holder("yes")) == "y"

    @pytest.mark.parametrize(
        "annotation, raw, value",
        [
            (int, "12", 12),
            (float, 3, 3.0),
            (bool, 1, True),
            (bool, "false", False),
            (Decimal, 12.5, Decimal("12.5")),
            (date, "2024-02-29", date(2024, 2, 29)),
            (date, datetime(2024, 2, 29, 10, 0), date(2024, 2, 29)),
            (datetime, "2024-02-29 10:15:00", datetime(2024, 2, 29, 10, 15)),
            (datetime, date(2024, 2, 29), datetime(2024, 2, 29)),
            (time, timedelta(hours=7, minutes=30), time(7, 30)),
            (time, "07:30:00", time(7, 30)),
            (time, "2026-10-18 15:36:21", time(15, 36, 21)),
            (bytes, memoryview(b"ab"), b"ab"),
            (Status, "ACTIVE", Status.ACTIVE),
            (str, b"bytes", "bytes"),
        ],
    )
    def test_from_db(self, annotation, raw, value):
        holder = Holder()
        _handler(annotation).set_column_data(holder, raw)
        assert holder.value == value
        assert type(holder.value) is type(value)

    def test_null_sets_none(self):
        holder = Holder(5)
        _handler(int | None).set_column_data(holder, None)
        assert holder.value is None

    def test_conversion_failure_is_mapping_error(self):
        with pytest.raises(MappingError, match="Cannot convert") as excinfo:
            _handler(Status).set_column_data(Holder(), "UNKNOWN")
        assert isinstance(excinfo.value.__cause__, KeyError)

    def test_localized_string_updated_in_place(self):
        current = LocalizedString("old")
        holder = Holder(current)
        _handler(LocalizedString).set_column_data(holder, "=new,nl=nieuw")
        assert holder.value is current
        assert current.get("nl") == "nieuw"

    def test_localized_string_created_when_missing(self):
        holder = Holder(None)
        _handler(LocalizedString | None).set_column_data(holder, "Plain title")
        assert holder.value == LocalizedString("Plain title")

    def test_final_localized_string_cleared_on_null(self):
        current = LocalizedString("old")
        holder = Holder(current)
        _handler(LocalizedString, final=True).set_column_data(holder, None)
        assert holder.value is current
        assert not current

    def test_localized_string_set_to_none_on_null(self):
        holder = Holder(LocalizedString("old"))
        _handler(LocalizedString | None).set_column_data(holder, None)
        assert holder.value is None

    def test_properties_replaced_in_place(self):
        current = {"stale": "x"}
        holder = Holder(current)
        _handler(dict[str, str]).set_column_data(holder, "a=1,b=2")
        assert holder.value is current
        assert current == {"a": "1", "b": "2"}


class TestRegisterConverter:
    def test_replace_and_restore(self):
        upper = Converter(lambda value: str(value).upper(), lambda raw, value_type: str(raw).lower())
        previous = register_converter(SqlType.STRING, upper)
        try:
            holder = Holder("MiXeD")
            handler = _handler(str)
            assert handler.get_column_data(holder) == "MIXED"
            handler.set_column_data(holder, "LOUD")
            assert holder.value == "loud"
        finally:
            register_converter(SqlType.STRING, previous)


class TestStringCollectionFieldHandler:
    def _tags(self, **options):
        return StringCollectionFieldHandler(Person, "tags", list[str], Column(**options))

    def test_join(self):
        assert self._tags().get_column_data(Person(tags=["a", "b"])) == "a,b"

    def test_custom_separator(self):
        assert self._tags(separator="|").get_column_data(Person(tags=["a", "b"])) == "a|b"

    def test_empty_collection(self):
        assert self._tags().get_column_data(Person(tags=[])) == ""
        assert self._tags(null_if_empty=True).get_column_data(Person(tags=[])) is None

    def test_list_refilled_in_place(self):
        person = Person(tags=["old"])
        tags = person.tags
        self._tags().set_column_data(person, "x,,y")
        assert person.tags is tags
        assert tags == ["x", "y"]

    def test_null_empties_collection(self):
        person = Person(tags=["old"])
        self._tags().set_column_data(person, None)
        assert person.tags == []

    def test_set_created_when_missing(self):
        holder = Holder(None)
        handler = StringCollectionFieldHandler(Holder, "value", set[str] | None, Column())
        handler.set_column_data(holder, "b,a,b")
        assert holder.value == {"a", "b"}

    def test_set_updated_in_place(self):
        current = {"old"}
        holder = Holder(current)
        handler = StringCollectionFieldHandler(Holder, "value", set[str], Column())
        handler.set_column_data(holder, "n")
        assert holder.value is current
        assert current == {"n"}

    @pytest.mark.parametrize(
        "current, expected",
        [(("old",), ("x", "y")), (frozenset({"old"}), frozenset({"x", "y"}))],
    )
    def test_immutable_collection_replaced(self, current, expected):
        holder = Holder(current)
        handler = StringCollectionFieldHandler(Holder, "value", list[str], Column())
        handler.set_column_data(holder, "x,y")
        assert holder.value == expected
        assert type(holder.value) is type(expected)

    def test_not_null_violation(self):
        with pytest.raises(MappingError, match="Person.tags is declared not null"):
            self._tags(not_null=True).get_column_data(Person(tags=None))

    def test_not_null_with_null_if_empty(self):
        with pytest.raises(MappingError, match="declared not null"):
            self._tags(not_null=True, null_if_empty=True).get_column_data(Person(tags=[]))
        assert self._tags(not_null=True).get_column_data(Person(tags=[])) == ""
