"""
Structural protocols for the database boundary.

dbspine talks to databases through plain PEP 249 (DB-API 2.0) objects.
The engine only needs a handful of methods from them, so they are
defined here as protocols rather than base classes: ``sqlite3``,
psycopg, PyMySQL and SQLAlchemy's pooled ``raw_connection()`` proxies
all satisfy them as they are.

Architecture:
    ::

        ConnectionProvider.get_connection() ──► DBAPIConnection
                                                  ├── cursor() ──► DBAPICursor
                                                  ├── commit()
                                                  ├── rollback()
                                                  └── close()   (returns pooled connections)

Guardrails:
    ❌ DON'T: Hold a provider connection beyond a single engine call
    ✅ DO: Let ``DbServices`` acquire and release; transactions keep theirs

Tags:
    protocol, connection, dbapi, provider, dbspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class DBAPICursor(Protocol):
    """The subset of a PEP 249 cursor used by the engine."""

    @property
    def description(self) -> Sequence[Sequence[Any]] | None: ...

    @property
    def rowcount(self) -> int: ...

    def execute(self, operation: str, parameters: Sequence[Any] = ...) -> Any: ...

    def fetchone(self) -> Sequence[Any] | None: ...

    def fetchall(self) -> Sequence[Sequence[Any]]: ...

    def close(self) -> None: ...


@runtime_checkable
class DBAPIConnection(Protocol):
    """The subset of a PEP 249 connection used by the engine."""

    def cursor(self) -> DBAPICursor: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class ConnectionProvider(Protocol):
    """
    Supplies connections to the engine.

    Every call returns a connection the caller owns until it calls
    ``close()`` on it. Pooling providers return the connection to their
    pool on ``close()``.
    """

    def get_connection(self) -> DBAPIConnection: ...


__all__ = ["DBAPICursor", "DBAPIConnection", "ConnectionProvider"]
