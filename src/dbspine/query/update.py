"""UPDATE query builder."""

from __future__ import annotations

from typing import Any

from dbspine.core.errors import QueryBuildError
from dbspine.query.base import AbstractQuery, T
from dbspine.query.select import SelectQuery


class UpdateQuery(AbstractQuery[T]):
    """
    Builds ``UPDATE <table> [AS alias] [JOIN …] SET … [WHERE …]``.

    SET columns are written as given (no alias prefix). Parameters are
    returned in text order: JOIN, SET, WHERE.
    """

    def __init__(self, table: str | type[T] | None = None, alias: str | None = None, **options: Any) -> None:
        super().__init__(table, alias, **options)
        self._set = ""
        self._set_parameters: list[Any] = []

    @property
    def set_clause(self) -> str:
        return self._set

    def set(self, column: str, value: Any) -> None:
        """``column=value`` with the same embedding rules as WHERE values."""
        self._start_set()
        self._set += column + "=" + self._value(self._set_parameters, value)

    def set_subquery(self, column: str, query: SelectQuery[Any]) -> None:
        """``column=(<subquery>)``."""
        self._start_set()
        self._set += f"{column}=({query.get_query_string()})"
        self._set_parameters.extend(query.get_query_parameters())

    def set_raw(self, text: str, *parameters: Any) -> None:
        """Append a raw assignment such as ``counter=counter+?``."""
        self._start_set()
        self._set += text
        self._set_parameters.extend(parameters)

    def _start_set(self) -> None:
        if self._set:
            self._set += ","

    def build_query_string(self, table_name: str) -> str:
        if not self._set:
            raise QueryBuildError("Must have SET")

        sep = self.separator
        parts = [f"UPDATE {table_name}"]
        if self.table_alias:
            parts.append(f" AS {self.table_alias}")
        if self._join:
            parts.append(sep + self._join)
        parts.append(f"{sep}SET {self._set}")
        if self._where:
            parts.append(f"{sep}WHERE {self._where}")
        return "".join(parts)

    def get_query_parameters(self) -> list[Any]:
        return self._join_parameters + self._set_parameters + self._where_parameters


__all__ = ["UpdateQuery"]
