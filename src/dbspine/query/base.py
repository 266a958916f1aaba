"""
Shared machinery of the SQL query builders.

``AbstractQuery`` holds everything SELECT, UPDATE and DELETE have in
common: the table reference, the WHERE clause with its parameters and
the JOIN clause with its parameters. Clauses are appended incrementally
and the final text is assembled on demand, so a builder can be passed
around and refined before it is executed.

Manifesto:
    - **Text and parameters stay in lockstep:** every ``?`` appended to a
      clause appends exactly one parameter to that clause's list
    - **Callers write SQL:** conditions are SQL fragments, not an AST
    - **Fail at build time:** malformed requests raise ``QueryBuildError``
      before anything reaches a connection

Architecture:
    ::

        AbstractQuery[T]
        ├── table (name or record class) / alias / table_extra
        ├── WHERE buffer ── where parameters
        ├── JOIN buffer  ── join parameters
        └── use_query_parameters / inline_simple_literals / separator
              │
              ├── SelectQuery   SELECT … FROM … [JOIN] [WHERE] [GROUP BY] [ORDER BY]
              ├── UpdateQuery   UPDATE … [JOIN] SET … [WHERE]
              └── DeleteQuery   DELETE … FROM … [JOIN] [WHERE]

Rules:
    ``and_*`` variants first inject ``AND`` into the WHERE clause, unless
    the clause is empty or its last non-blank character is ``(``.

    Values are embedded by ``_value``: ``None`` becomes ``NULL``;
    booleans, enum members and numbers become literal text; anything else
    becomes a ``?`` parameter (or a quoted literal when parameters are off).

Examples:
    >>> query = SelectQuery("person", "p")
    >>> query.and_where_equal("age", 30)
    >>> query.and_where_in("city", ["NYC", "LA"])
    >>> query.where_clause
    'p.age=30 AND p.city IN (?,?)'
    >>> query.get_query_parameters()
    ['NYC', 'LA']

Tags:
    query-builder, sql, parameters, dbspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from dbspine.core.errors import QueryBuildError
from dbspine.mapping.registry import get_class_handler
from dbspine.query.literals import create_like_pattern, is_simple_literal, render_literal

if TYPE_CHECKING:
    from dbspine.query.select import SelectQuery

T = TypeVar("T")

_NO_ALIAS_CHARS = re.compile(r"[.,()\s]")


class SearchMethod(Enum):
    """How the words of a search phrase combine."""

    ALL_WORDS = "ALL_WORDS"
    """Every word must match at least one column."""

    ANY_WORD = "ANY_WORD"
    """At least one word must match at least one column."""


@dataclass(frozen=True)
class ForeignColumn:
    """
    A column in another table that participates in a search match.

    The foreign table is related to the query's table by
    ``<table_name>.<foreign_key> = <local table>.<referenced_key>``.
    """

    table_name: str
    column_name: str
    foreign_key: str
    referenced_key: str

    @classmethod
    def of(cls, record_type: type, column_name: str, foreign_key: str, referenced_key: str) -> ForeignColumn:
        """Build a foreign column whose table is derived from a record class."""
        return cls(get_class_handler(record_type).table_name, column_name, foreign_key, referenced_key)


def _start_of_day(value: date) -> datetime:
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0)
    return datetime.combine(value, time.min)


class AbstractQuery(Generic[T]):
    """Base class for SQL query builders."""

    def __init__(
        self,
        table: str | type[T] | None = None,
        alias: str | None = None,
        *,
        table_extra: str | None = None,
        use_query_parameters: bool = True,
        inline_simple_literals: bool = True,
        separator: str = " ",
        like_escape: str = "",
    ) -> None:
        self.table_name: str | None = None
        self.table_class: type[T] | None = None
        if isinstance(table, str):
            self.table_name = table
        elif table is not None:
            self.table_class = table

        self.table_alias = alias
        self.table_extra = table_extra
        self.use_query_parameters = use_query_parameters
        self.inline_simple_literals = inline_simple_literals
        self.separator = separator
        self.like_escape = like_escape

        self._where = ""
        self._where_parameters: list[Any] = []
        self._join = ""
        self._join_parameters: list[Any] = []

    # ── Result ───────────────────────────────────────────────────

    def get_query_string(self) -> str:
        """Assemble the SQL text for the current builder state."""
        return self.build_query_string(self.get_concrete_table_name())

    def build_query_string(self, table_name: str) -> str:
        raise NotImplementedError

    def get_query_parameters(self) -> list[Any]:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.get_query_string()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}[query_string={self.get_query_string()!r}, "
            f"query_parameters={self.get_query_parameters()!r}]"
        )

    # ── Table ────────────────────────────────────────────────────

    def get_concrete_table_name(self) -> str:
        """Explicit table name, else the table name of the record class."""
        if self.table_name is not None:
            return self.table_name
        if self.table_class is None:
            raise QueryBuildError("Table name or class must be set")
        return get_class_handler(self.table_class).table_name

    # ── WHERE clause ─────────────────────────────────────────────

    @property
    def where_clause(self) -> str:
        return self._where

    @where_clause.setter
    def where_clause(self, text: str | None) -> None:
        self._where = text or ""

    @property
    def where_parameters(self) -> list[Any]:
        return list(self._where_parameters)

    def add_where_parameter(self, value: Any) -> None:
        self._where_parameters.append(value)

    def add_where_parameters(self, values: Iterable[Any]) -> None:
        self._where_parameters.extend(values)

    def where(self, text: str, *parameters: Any) -> None:
        """Append raw text (and its parameters) to the WHERE clause."""
        self._where += text
        self._where_parameters.extend(parameters)

    def and_where(self, text: str = "", *parameters: Any) -> None:
        """Like ``where``, but inject ``AND`` first when a condition precedes."""
        self._inject_and()
        self.where(text, *parameters)

    def _inject_and(self) -> None:
        stripped = self._where.rstrip()
        if stripped and not stripped.endswith("("):
            self._where += self.separator + "AND "

    def where_equal(self, column: str, value: Any) -> None:
        """``column=value``; ``column IS NULL`` for ``None``; ``column=(subquery)``."""
        if self._is_subquery(value):
            self._where_subquery(column, "=(", value)
        elif value is None:
            self.where_is_null(column)
        else:
            self._where += self._column(column) + "="
            self._where += self._value(self._where_parameters, value)

    def and_where_equal(self, column: str, value: Any) -> None:
        self._inject_and()
        self.where_equal(column, value)

    def where_not_equal(self, column: str, value: Any) -> None:
        """``column<>value``; ``column IS NOT NULL`` for ``None``."""
        if self._is_subquery(value):
            self._where_subquery(column, "<>(", value)
        elif value is None:
            self.where_is_not_null(column)
        else:
            self._where += self._column(column) + "<>"
            self._where += self._value(self._where_parameters, value)

    def and_where_not_equal(self, column: str, value: Any) -> None:
        self._inject_and()
        self.where_not_equal(column, value)

    def where_is_null(self, column: str) -> None:
        self._where += self._column(column) + " IS NULL"

    def and_where_is_null(self, column: str) -> None:
        self._inject_and()
        self.where_is_null(column)

    def where_is_not_null(self, column: str) -> None:
        self._where += self._column(column) + " IS NOT NULL"

    def and_where_is_not_null(self, column: str) -> None:
        self._inject_and()
        self.where_is_not_null(column)

    def where_in(self, column: str, values: Iterable[Any] | SelectQuery[Any]) -> None:
        """
        ``column IN (v1,v2,…)``.

        A single value degenerates to ``where_equal``. No values at all is
        an error. A ``SelectQuery`` produces ``column IN (<subquery>)``.
        """
        if self._is_subquery(values):
            self._where_subquery(column, " IN (", values)
            return

        items = self._as_list(values)
        if not items:
            raise QueryBuildError("values is empty")
        if len(items) == 1:
            self.where_equal(column, items[0])
        else:
            self._where += self._column(column) + " IN (" + self._value_list(items) + ")"

    def and_where_in(self, column: str, values: Iterable[Any] | SelectQuery[Any]) -> None:
        self._inject_and()
        self.where_in(column, values)

    def where_not_in(self, column: str, values: Iterable[Any] | SelectQuery[Any]) -> None:
        """
        ``column NOT IN (v1,v2,…)``.

        A single value degenerates to ``where_not_equal``; no values is a
        no-op.
        """
        if self._is_subquery(values):
            self._where_subquery(column, " NOT IN (", values)
            return

        items = self._as_list(values)
        if len(items) == 1:
            self.where_not_equal(column, items[0])
        elif items:
            self._where += self._column(column) + " NOT IN (" + self._value_list(items) + ")"

    def and_where_not_in(self, column: str, values: Iterable[Any] | SelectQuery[Any]) -> None:
        if not self._is_subquery(values):
            values = self._as_list(values)
            if not values:
                return
        self._inject_and()
        self.where_not_in(column, values)

    def where_between_dates(self, column: str, start: date | None, end: date | None) -> None:
        """
        Match dates from ``start`` through ``end`` inclusive, at day granularity.

        ``start`` is compared with ``>=`` at midnight; ``end`` with ``<`` at
        midnight of the following day. Either bound may be ``None``.
        """
        if start is None and end is None:
            return

        if start is not None:
            self._where += self._column(column) + " >= ?"
            self._where_parameters.append(_start_of_day(start))

        if start is not None and end is not None:
            self._where += " AND "

        if end is not None:
            self._where += self._column(column) + " < ?"
            self._where_parameters.append(_start_of_day(end) + timedelta(days=1))

    def and_where_between_dates(self, column: str, start: date | None, end: date | None) -> None:
        if start is not None or end is not None:
            self._inject_and()
            self.where_between_dates(column, start, end)

    def where_search_match(
        self,
        phrase: str | None,
        method: SearchMethod,
        columns: Iterable[str],
        foreign_columns: Iterable[ForeignColumn] = (),
    ) -> None:
        """
        Match every (or any) word of ``phrase`` against a set of columns.

        Each word becomes a ``LIKE`` pattern tested against all ``columns``
        and, through ``EXISTS`` subqueries, against ``foreign_columns``.
        Patterns escape ``%``, ``_`` and ``\\`` with a backslash; ``like_escape``
        is appended after each ``LIKE ?`` for backends that need it declared.
        """
        if not phrase or not phrase.strip():
            raise QueryBuildError("missing search text")

        columns = list(columns)
        foreign_columns = list(foreign_columns)
        if not columns and not foreign_columns:
            raise QueryBuildError("no columns specified")

        patterns = [create_like_pattern(word) for word in phrase.split()]
        table_name = self.get_concrete_table_name()
        word_joiner = " AND " if method is SearchMethod.ALL_WORDS else " OR "

        groups = []
        for pattern in patterns:
            conditions = []
            for column in columns:
                conditions.append(self._column(column) + " LIKE ?" + self.like_escape)
                self._where_parameters.append(pattern)
            for foreign in foreign_columns:
                conditions.append(
                    f"EXISTS (SELECT * FROM {foreign.table_name} WHERE {foreign.foreign_key}="
                    f"{table_name}.{foreign.referenced_key} AND {foreign.column_name} LIKE ?{self.like_escape})"
                )
                self._where_parameters.append(pattern)
            groups.append("(" + " OR ".join(conditions) + ")")

        self._where += "(" + word_joiner.join(groups) + ")"

    def and_where_search_match(
        self,
        phrase: str | None,
        method: SearchMethod,
        columns: Iterable[str],
        foreign_columns: Iterable[ForeignColumn] = (),
    ) -> None:
        self._inject_and()
        self.where_search_match(phrase, method, columns, foreign_columns)

    # ── JOIN clause ──────────────────────────────────────────────

    @property
    def join_clause(self) -> str:
        return self._join

    @property
    def join_parameters(self) -> list[Any]:
        return list(self._join_parameters)

    def add_join_parameters(self, values: Iterable[Any]) -> None:
        self._join_parameters.extend(values)

    def join_raw(self, text: str, *parameters: Any) -> None:
        """Append a free-form JOIN clause."""
        self._start_join()
        self._join += text
        self._join_parameters.extend(parameters)

    def join(
        self,
        table_alias: str | None,
        foreign_key: str,
        referenced: str | type,
        referenced_alias: str | None,
        referenced_key: str,
        join_type: str = "JOIN",
    ) -> None:
        """
        ``<join_type> <referenced> [AS alias] ON <left>.<foreign_key>=<right>.<referenced_key>``.

        ``referenced`` is a table name or a record class. The left side is
        ``table_alias`` or this query's table name.
        """
        if isinstance(referenced, str):
            referenced_table = referenced
        else:
            referenced_table = get_class_handler(referenced).table_name

        text = f"{join_type} {referenced_table}"
        if referenced_alias is not None:
            text += f" AS {referenced_alias}"
        left = table_alias if table_alias is not None else self.get_concrete_table_name()
        right = referenced_alias if referenced_alias is not None else referenced_table
        text += f" ON {left}.{foreign_key}={right}.{referenced_key}"

        self._start_join()
        self._join += text

    def _start_join(self) -> None:
        if self._join:
            self._join += self.separator

    # ── Embedding helpers ────────────────────────────────────────

    def is_alias_prepended(self, column: str) -> bool:
        """Whether ``column`` is a bare name that gets the table alias prefix."""
        return bool(column) and bool(self.table_alias) and not _NO_ALIAS_CHARS.search(column)

    def _column(self, column: str) -> str:
        if self.is_alias_prepended(column):
            return f"{self.table_alias}.{column}"
        return column

    def _value(self, parameters: list[Any] | None, value: Any) -> str:
        """Render ``value`` as ``NULL``, a literal, or a ``?`` bound into ``parameters``."""
        if value is None:
            return "NULL"
        bind = parameters is not None and self.use_query_parameters
        if bind and not (self.inline_simple_literals and is_simple_literal(value)):
            parameters.append(value)
            return "?"
        return render_literal(value)

    def _value_list(self, values: list[Any]) -> str:
        return ",".join(self._value(self._where_parameters, value) for value in values)

    def _where_subquery(self, column: str, operator: str, subquery: SelectQuery[Any]) -> None:
        self._where += self._column(column) + operator + subquery.get_query_string() + ")"
        self._where_parameters.extend(subquery.get_query_parameters())

    @staticmethod
    def _is_subquery(value: Any) -> bool:
        from dbspine.query.select import SelectQuery

        return isinstance(value, SelectQuery)

    @staticmethod
    def _as_list(values: Iterable[Any]) -> list[Any]:
        if isinstance(values, (str, bytes)):
            return [values]
        return list(values)


__all__ = ["AbstractQuery", "SearchMethod", "ForeignColumn"]
