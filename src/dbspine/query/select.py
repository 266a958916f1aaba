"""SELECT query builder."""

from __future__ import annotations

from enum import Enum
from typing import Any

from dbspine.core.errors import QueryBuildError
from dbspine.query.base import AbstractQuery, T


class Ordering(Enum):
    ASC = "ASC"
    DESC = "DESC"


class SelectQuery(AbstractQuery[T]):
    """
    Builds ``SELECT`` statements.

    Without explicit columns the query selects ``*`` (``alias.*`` when the
    table is aliased). Parameters are returned in text order: select-list
    parameters, then JOIN, then WHERE.

    Example:
        >>> query = SelectQuery("person", "p")
        >>> query.select("name")
        >>> query.and_where_equal("active", True)
        >>> query.order_by("name", Ordering.DESC)
        >>> str(query)
        'SELECT p.name FROM person AS p WHERE p.active=TRUE ORDER BY p.name DESC'
    """

    def __init__(self, table: str | type[T] | None = None, alias: str | None = None, **options: Any) -> None:
        super().__init__(table, alias, **options)
        self._select = ""
        self._select_parameters: list[Any] = []
        self._group_by = ""
        self._order_by = ""
        self.suffix: str | None = None

    # ── Select list ──────────────────────────────────────────────

    @property
    def select_clause(self) -> str:
        return self._select

    def select(self, column: str, alias: str | None = None) -> None:
        """
        Add a column to the select list.

        With ``alias`` the column is taken as an expression
        (``COUNT(*) AS total``) and is not alias-prefixed.
        """
        if not column:
            raise QueryBuildError("Trying to add empty column")
        self._start_select()
        if alias is None:
            self._select += self._column(column)
        else:
            self._select += f"{column} AS {alias}"

    def select_subquery(self, query: SelectQuery[Any], alias: str) -> None:
        """Add ``(<subquery>) AS alias`` to the select list."""
        self._start_select()
        self._select += f"({query.get_query_string()}) AS {alias}"
        self._select_parameters.extend(query.get_query_parameters())

    def _start_select(self) -> None:
        if self._select:
            self._select += ","

    # ── Grouping and ordering ────────────────────────────────────

    def group_by(self, column: str) -> None:
        if not column:
            raise QueryBuildError("Trying to group by empty column")
        if self._group_by:
            self._group_by += ","
        self._group_by += self._column(column)

    def order_by(self, column: str, ordering: Ordering | None = None) -> None:
        if not column:
            raise QueryBuildError("Trying to order by empty column")
        if self._order_by:
            self._order_by += ","
        self._order_by += self._column(column)
        if ordering is not None:
            self._order_by += " " + ordering.value

    def set_suffix(self, suffix: str | None) -> None:
        """Free text appended after ORDER BY, e.g. ``LIMIT 10`` or ``FOR UPDATE``."""
        self.suffix = suffix

    # ── Result ───────────────────────────────────────────────────

    def build_query_string(self, table_name: str) -> str:
        sep = self.separator
        parts = ["SELECT "]
        if self._select:
            parts.append(self._select)
        elif self.table_alias:
            parts.append(f"{self.table_alias}.*")
        else:
            parts.append("*")

        parts.append(f"{sep}FROM {table_name}")
        if self.table_alias:
            parts.append(f" AS {self.table_alias}")
        if self.table_extra:
            parts.append(sep + self.table_extra)
        if self._join:
            parts.append(sep + self._join)
        if self._where:
            parts.append(f"{sep}WHERE {self._where}")
        if self._group_by:
            parts.append(f"{sep}GROUP BY {self._group_by}")
        if self._order_by:
            parts.append(f"{sep}ORDER BY {self._order_by}")
        if self.suffix:
            parts.append(sep + self.suffix)
        return "".join(parts)

    def get_query_parameters(self) -> list[Any]:
        return self._select_parameters + self._join_parameters + self._where_parameters


__all__ = ["SelectQuery", "Ordering"]
