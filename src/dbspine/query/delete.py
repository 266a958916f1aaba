"""DELETE query builder."""

from __future__ import annotations

from typing import Any

from dbspine.query.base import AbstractQuery, T


class DeleteQuery(AbstractQuery[T]):
    """
    Builds ``DELETE [<table>] FROM <table> [AS alias] [JOIN …] [WHERE …]``.

    The target table is named after ``DELETE`` only when joins are present,
    which is the multi-table form MySQL and SQL Server accept.
    """

    def build_query_string(self, table_name: str) -> str:
        sep = self.separator
        parts = ["DELETE"]
        if self._join:
            parts.append(f" {table_name}")
        parts.append(f"{sep}FROM {table_name}")
        if self.table_alias:
            parts.append(f" AS {self.table_alias}")
        if self._join:
            parts.append(sep + self._join)
        if self._where:
            parts.append(f"{sep}WHERE {self._where}")
        return "".join(parts)

    def get_query_parameters(self) -> list[Any]:
        return self._join_parameters + self._where_parameters


__all__ = ["DeleteQuery"]
