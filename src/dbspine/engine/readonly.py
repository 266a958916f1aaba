"""Read-only view of a ``DbServices`` instance.

``ReadOnlyDbServices`` shares the provider, dialect and settings of the
services it wraps. Queries and refreshes work as usual; every operation
that would change data raises ``ReadOnlyViolationError`` before touching
a connection, and transactions are opened read-only.
"""

from __future__ import annotations

from typing import Any, NoReturn

from dbspine.core.dialect import IsolationLevel
from dbspine.core.errors import ReadOnlyViolationError
from dbspine.engine.services import DbServices
from dbspine.engine.transaction import TransactionContext


class ReadOnlyDbServices(DbServices):
    """``DbServices`` that refuses writes."""

    def __init__(self, target: DbServices) -> None:
        super().__init__(target.provider, target.dialect, target.settings)
        self.target = target

    def _reject(self, operation: str) -> NoReturn:
        raise ReadOnlyViolationError(operation)

    # ── Writes ───────────────────────────────────────────────────

    def store_object(self, obj: Any) -> None:
        self._reject("store_object")

    def insert_object(self, obj: Any) -> None:
        self._reject("insert_object")

    def update_object(self, obj: Any, *field_names: str) -> None:
        self._reject("update_object")

    def delete_object(self, obj: Any) -> None:
        self._reject("delete_object")

    def execute_update_sql(self, sql: str, *parameters: Any) -> int:
        self._reject("execute_update")

    def create_table(self, record_type: type) -> None:
        self._reject("create_table")

    def drop_table(self, record_type: type) -> None:
        self._reject("drop_table")

    # ── Transactions ─────────────────────────────────────────────

    def start_transaction(
        self,
        isolation: IsolationLevel = IsolationLevel.SERIALIZABLE,
        read_only: bool = True,
    ) -> TransactionContext:
        return super().start_transaction(isolation, read_only=True)


__all__ = ["ReadOnlyDbServices"]
