"""Tests for dbspine.query.select - SELECT assembly."""

from __future__ import annotations

import pytest

from dbspine.core.errors import QueryBuildError
from dbspine.query import Ordering, SelectQuery
from tests._support.records import Person


class TestTable:
    def test_select_star(self):
        assert SelectQuery("person").get_query_string() == "SELECT * FROM person"

    def test_alias_star(self):
        assert SelectQuery("person", "p").get_query_string() == "SELECT p.* FROM person AS p"

    def test_table_from_record_class(self):
        query = SelectQuery(Person)
        assert query.table_class is Person
        assert query.get_query_string() == "SELECT * FROM person"

    def test_missing_table(self):
        with pytest.raises(QueryBuildError, match="Table name or class must be set"):
            SelectQuery().get_query_string()

    def test_table_extra(self):
        query = SelectQuery("person", "p", table_extra="INDEXED BY person_name")
        assert query.get_query_string() == "SELECT p.* FROM person AS p INDEXED BY person_name"


class TestSelectList:
    def test_columns_get_alias_prefix(self):
        query = SelectQuery("person", "p")
        query.select("name")
        query.select("age")
        assert query.select_clause == "p.name,p.age"

    def test_qualified_column_left_alone(self):
        query = SelectQuery("person", "p")
        query.select("a.street")
        assert query.select_clause == "a.street"

    def test_aliased_expression_not_prefixed(self):
        query = SelectQuery("person", "p")
        query.select("COUNT(*)", "total")
        query.select("city", "town")
        assert query.get_query_string() == "SELECT COUNT(*) AS total,city AS town FROM person AS p"

    def test_empty_column(self):
        with pytest.raises(QueryBuildError, match="Trying to add empty column"):
            SelectQuery("person").select("")

    def test_select_subquery_parameters_come_first(self):
        inner = SelectQuery("address", "a")
        inner.select("COUNT(*)", "n")
        inner.where("a.person_id=p.id AND a.street=?", "Main St")

        query = SelectQuery("person", "p")
        query.select("name")
        query.select_subquery(inner, "addresses")
        query.where("p.city=?", "Paris")

        assert query.get_query_string() == (
            "SELECT p.name,(SELECT COUNT(*) AS n FROM address AS a WHERE a.person_id=p.id AND a.street=?) "
            "AS addresses FROM person AS p WHERE p.city=?"
        )
        assert query.get_query_parameters() == ["Main St", "Paris"]


class TestGroupAndOrder:
    def test_group_by(self):
        query = SelectQuery("person", "p")
        query.select("city")
        query.select("COUNT(*)", "n")
        query.group_by("city")
        assert query.get_query_string() == "SELECT p.city,COUNT(*) AS n FROM person AS p GROUP BY p.city"

    def test_order_by_with_and_without_direction(self):
        query = SelectQuery("person")
        query.order_by("name")
        query.order_by("age", Ordering.DESC)
        assert query.get_query_string() == "SELECT * FROM person ORDER BY name,age DESC"

    def test_empty_group_and_order(self):
        query = SelectQuery("person")
        with pytest.raises(QueryBuildError, match="Trying to group by empty column"):
            query.group_by("")
        with pytest.raises(QueryBuildError, match="Trying to order by empty column"):
            query.order_by("")

    def test_suffix(self):
        query = SelectQuery("person")
        query.order_by("id")
        query.set_suffix("LIMIT 10")
        assert query.get_query_string() == "SELECT * FROM person ORDER BY id LIMIT 10"


class TestClauseOrder:
    def test_full_statement(self):
        query = SelectQuery("person", "p")
        query.select("name")
        query.join("p", "id", "address", "a", "person_id")
        query.and_where_equal("age", 30)
        query.group_by("name")
        query.order_by("name")
        query.set_suffix("LIMIT 5")
        assert query.get_query_string() == (
            "SELECT p.name FROM person AS p JOIN address AS a ON p.id=a.person_id "
            "WHERE p.age=30 GROUP BY p.name ORDER BY p.name LIMIT 5"
        )

    def test_separator(self):
        query = SelectQuery("person", separator="\n")
        query.where("age > 3")
        query.order_by("name")
        assert query.get_query_string() == "SELECT *\nFROM person\nWHERE age > 3\nORDER BY name"

    def test_parameters_in_text_order(self):
        query = SelectQuery("person", "p")
        query.join_raw("JOIN address AS a ON a.person_id=p.id AND a.street<>?", "Nowhere")
        query.and_where_equal("name", "Ada")
        assert query.get_query_parameters() == ["Nowhere", "Ada"]
        assert query.get_query_string().count("?") == 2

    def test_str_and_repr(self):
        query = SelectQuery("person")
        query.where_equal("name", "Ada")
        assert str(query) == "SELECT * FROM person WHERE name=?"
        assert repr(query) == (
            "SelectQuery[query_string='SELECT * FROM person WHERE name=?', query_parameters=['Ada']]"
        )


class TestEndToEndScenario:
    def test_parameterized_numbers(self):
        query = SelectQuery("person", "p", inline_simple_literals=False)
        query.and_where_equal("age", 30)
        query.and_where_in("city", ["NYC", "LA"])
        assert query.where_clause == "p.age=? AND p.city IN (?,?)"
        assert query.get_query_parameters() == [30, "NYC", "LA"]

    def test_default_inlines_numbers(self):
        query = SelectQuery("person", "p")
        query.and_where_equal("age", 30)
        query.and_where_in("city", ["NYC", "LA"])
        assert query.where_clause == "p.age=30 AND p.city IN (?,?)"
        assert query.get_query_parameters() == ["NYC", "LA"]
