"""Connection providers: where ``DbServices`` gets its connections.

The engine never opens connections itself. It asks a
``ConnectionProvider`` for one per call (or per transaction) and closes
it afterwards. Two providers ship with dbspine:

==========================  ================================================
Provider                    Backend
==========================  ================================================
``SqliteConnectionProvider``  one ``sqlite3`` connection per request
``EngineConnectionProvider``  pooled SQLAlchemy engine (``raw_connection()``)
==========================  ================================================

Supported URL schemes for ``create_provider``
---------------------------------------------
==================  ==========================================  ============
Scheme              Example                                     Provider
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/my.db``                             SQLite file
``postgresql``      ``postgresql://user:pw@host:port/db``        SQLAlchemy
``mysql``           ``mysql+pymysql://user:pw@host/db``          SQLAlchemy
``mssql``           ``mssql+pyodbc://…``                         SQLAlchemy
==================  ==========================================  ============

Usage
-----
::

    from dbspine.core.connection import create_provider

    provider = create_provider("sqlite:///app.db")
    conn = provider.get_connection()
    try:
        ...
    finally:
        conn.close()
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from dbspine.core.errors import DbConnectionError
from dbspine.core.logging import get_logger

logger = get_logger(__name__)

# sqlite3 has no native DECIMAL and its default date adapters are deprecated
sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime, lambda value: value.isoformat(" "))
sqlite3.register_adapter(date, lambda value: value.isoformat())
sqlite3.register_adapter(time, lambda value: value.isoformat())


# ── ConnectionInfo ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a connection provider."""

    backend: str
    """Backend identifier: ``"sqlite"``, ``"postgresql"``, etc."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path used to create the provider."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"


# ── Providers ────────────────────────────────────────────────────────────


class SqliteConnectionProvider:
    """Opens a new ``sqlite3`` connection for every request.

    ``":memory:"`` is mapped to a uniquely named shared-cache memory
    database so that all connections from one provider see the same data.
    An anchor connection keeps that database alive until ``close()``.
    """

    def __init__(self, path: str | Path = ":memory:", *, timeout: float = 30.0) -> None:
        self._timeout = timeout
        self._anchor: sqlite3.Connection | None = None
        if str(path) == ":memory:":
            self._target = f"file:dbspine-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self._anchor = self._connect()
            self.info = ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")
        else:
            resolved = Path(path).resolve()
            resolved.parent.mkdir(parents=True, exist_ok=True)
            self._target = str(resolved)
            self._uri = False
            self.info = ConnectionInfo(
                backend="sqlite", persistent=True, url=str(path), resolved_path=str(resolved)
            )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self._target,
            timeout=self._timeout,
            check_same_thread=False,
            uri=self._uri,
        )

    def get_connection(self) -> sqlite3.Connection:
        try:
            return self._connect()
        except sqlite3.Error as e:
            raise DbConnectionError(f"Cannot open SQLite database {self.info.url}", cause=e) from e

    def close(self) -> None:
        if self._anchor is not None:
            self._anchor.close()
            self._anchor = None

    def __repr__(self) -> str:
        return f"SqliteConnectionProvider({self.info.url!r})"


class EngineConnectionProvider:
    """Hands out pooled DB-API connections from a SQLAlchemy ``Engine``.

    ``close()`` on a connection returned here gives it back to the pool.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        backend = engine.dialect.name
        self.info = ConnectionInfo(
            backend=backend,
            persistent=engine.url.database not in (None, "", ":memory:"),
            url=engine.url.render_as_string(hide_password=True),
        )

    def get_connection(self) -> Any:
        try:
            return self.engine.raw_connection()
        except Exception as e:
            raise DbConnectionError(f"Cannot obtain connection from {self.info.url}", cause=e) from e

    def close(self) -> None:
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"EngineConnectionProvider({self.info.url!r})"


# ── URL parsing ──────────────────────────────────────────────────────────


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into (scheme, target).

    ``scheme`` is one of ``"memory"``, ``"sqlite"``, ``"file"`` or
    ``"engine"`` (anything SQLAlchemy understands).
    """
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if "://" in db:
        return "engine", db

    return "file", db


def create_provider(
    db: str | None = None,
    *,
    pooled: bool = False,
    **engine_kwargs: Any,
) -> SqliteConnectionProvider | EngineConnectionProvider:
    """Create a connection provider from a URL, path, or keyword.

    Args:
        db: ``None``/``"memory"``, a file path, ``sqlite:///…`` or any
            SQLAlchemy URL (``postgresql+psycopg://…``).
        pooled: Route SQLite URLs through a pooled SQLAlchemy engine too.
        **engine_kwargs: Forwarded to ``sqlalchemy.create_engine``.
    """
    scheme, target = _parse_url(db)

    if pooled and scheme in ("sqlite", "file"):
        scheme, target = "engine", f"sqlite:///{target}"

    if scheme == "memory":
        provider: SqliteConnectionProvider | EngineConnectionProvider = SqliteConnectionProvider()
    elif scheme in ("sqlite", "file"):
        provider = SqliteConnectionProvider(target)
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)
        provider = EngineConnectionProvider(create_engine(target, **engine_kwargs))

    logger.debug("connection_provider_created", provider=repr(provider))
    return provider


__all__ = [
    "ConnectionInfo",
    "SqliteConnectionProvider",
    "EngineConnectionProvider",
    "create_provider",
]
