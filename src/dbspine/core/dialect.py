"""
SQL dialect abstraction for the execution engine.

The query builder and the record mapper are dialect-independent: they
always emit ``?`` placeholders and never call database functions. A
``Dialect`` supplies the few things that genuinely differ between
backends:

* the current-timestamp expression substituted for ``ServerNow`` values
* the statement that returns the last generated identity
* the driver's parameter style (``?`` vs ``%s``)
* the statements that open a transaction at a given isolation level
* table introspection and serialization-conflict recognition

Architecture:
    ::

        Dialect (Protocol)
        ├── SQLiteDialect       sqlite3             qmark
        ├── PostgreSQLDialect   psycopg / psycopg2  format
        ├── MySQLDialect        PyMySQL / mysqlclient  format
        └── MSSQLDialect        pyodbc              qmark

        _DIALECTS registry ── get_dialect(name) / register_dialect(name, d)

Examples:
    >>> from dbspine.core.dialect import get_dialect, IsolationLevel
    >>> pg = get_dialect("postgresql")
    >>> pg.translate("SELECT * FROM person WHERE name=? AND note='why?'")
    "SELECT * FROM person WHERE name=%s AND note='why?'"
    >>> pg.begin_statements(IsolationLevel.SERIALIZABLE)
    ['SET TRANSACTION ISOLATION LEVEL SERIALIZABLE']

Tags:
    dialect, sql, portability, database, dbspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from dbspine.core.errors import InvalidConfigError


class IsolationLevel(str, Enum):
    """Transaction isolation levels, valued by their SQL spelling."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@runtime_checkable
class Dialect(Protocol):
    """Backend-specific SQL fragments used by ``DbServices``."""

    @property
    def name(self) -> str:
        """Short identifier, e.g. ``'sqlite'``, ``'postgresql'``."""
        ...

    @property
    def paramstyle(self) -> str:
        """DB-API paramstyle of the driver: ``'qmark'`` or ``'format'``."""
        ...

    def translate(self, sql: str) -> str:
        """Rewrite ``?`` placeholders into the driver's parameter style."""
        ...

    def now(self) -> str:
        """SQL expression for the server's current timestamp."""
        ...

    def last_identity_query(self) -> str:
        """Statement returning the identity generated by the last INSERT on this connection."""
        ...

    def begin_statements(self, isolation: IsolationLevel, read_only: bool = False) -> list[str]:
        """Statements that open a transaction with the requested isolation."""
        ...

    def table_exists_query(self) -> str:
        """Query with one ``?`` for the table name; returns rows if the table exists."""
        ...

    def is_serialization_conflict(self, error: BaseException) -> bool:
        """Whether a driver exception reports a serialization failure or deadlock."""
        ...

    def savepoint_statement(self, action: str, name: str) -> str | None:
        """SQL for savepoint ``action`` (``set``, ``rollback`` or ``release``); ``None`` if unsupported."""
        ...

    def like_escape(self) -> str:
        """Suffix after ``LIKE ?`` that makes backslash the escape character; empty if it already is."""
        ...


# =========================================================================
# Shared helpers
# =========================================================================


def _qmark_to_format(sql: str) -> str:
    """Replace ``?`` outside quoted literals with ``%s`` and double literal ``%``."""
    out: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch == "%":
            out.append("%%")
        elif quote is not None:
            out.append(ch)
            if ch == "\\" and i + 1 < len(sql):
                i += 1
                out.append("%%" if sql[i] == "%" else sql[i])
            elif ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append("%s")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


_SAVEPOINT_SQL = {
    "set": "SAVEPOINT {}",
    "rollback": "ROLLBACK TO SAVEPOINT {}",
    "release": "RELEASE SAVEPOINT {}",
}


def _standard_savepoint(action: str, name: str) -> str | None:
    return _SAVEPOINT_SQL[action].format(name)


def _sqlstate(error: BaseException) -> str | None:
    for attr in ("sqlstate", "pgcode"):
        value = getattr(error, attr, None)
        if isinstance(value, str):
            return value
    diag = getattr(error, "diag", None)
    value = getattr(diag, "sqlstate", None)
    return value if isinstance(value, str) else None


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders, ``datetime('now')``."""

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def paramstyle(self) -> str:
        return "qmark"

    def translate(self, sql: str) -> str:
        return sql

    def now(self) -> str:
        return "datetime('now')"

    def last_identity_query(self) -> str:
        return "SELECT last_insert_rowid()"

    def begin_statements(self, isolation: IsolationLevel, read_only: bool = False) -> list[str]:
        # SQLite is always serializable; IMMEDIATE takes the write lock up front
        if isolation is IsolationLevel.SERIALIZABLE and not read_only:
            return ["BEGIN IMMEDIATE"]
        return ["BEGIN"]

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type='table' AND name=?"

    def is_serialization_conflict(self, error: BaseException) -> bool:
        if type(error).__name__ != "OperationalError":
            return False
        message = str(error).lower()
        return "database is locked" in message or "database table is locked" in message

    def savepoint_statement(self, action: str, name: str) -> str | None:
        return _standard_savepoint(action, name)

    def like_escape(self) -> str:
        return " ESCAPE '\\'"


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg), ``NOW()``."""

    @property
    def name(self) -> str:
        return "postgresql"

    @property
    def paramstyle(self) -> str:
        return "format"

    def translate(self, sql: str) -> str:
        return _qmark_to_format(sql)

    def now(self) -> str:
        return "NOW()"

    def last_identity_query(self) -> str:
        return "SELECT LASTVAL()"

    def begin_statements(self, isolation: IsolationLevel, read_only: bool = False) -> list[str]:
        # psycopg opens the transaction implicitly before the first statement
        statement = f"SET TRANSACTION ISOLATION LEVEL {isolation.value}"
        if read_only:
            statement += " READ ONLY"
        return [statement]

    def table_exists_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = ?"
        )

    def is_serialization_conflict(self, error: BaseException) -> bool:
        return _sqlstate(error) in ("40001", "40P01")

    def savepoint_statement(self, action: str, name: str) -> str | None:
        return _standard_savepoint(action, name)

    def like_escape(self) -> str:
        # backslash is the default LIKE escape
        return ""


class MySQLDialect:
    """MySQL / MariaDB dialect: ``%s`` placeholders, ``NOW()``."""

    @property
    def name(self) -> str:
        return "mysql"

    @property
    def paramstyle(self) -> str:
        return "format"

    def translate(self, sql: str) -> str:
        return _qmark_to_format(sql)

    def now(self) -> str:
        return "NOW()"

    def last_identity_query(self) -> str:
        return "SELECT LAST_INSERT_ID()"

    def begin_statements(self, isolation: IsolationLevel, read_only: bool = False) -> list[str]:
        return [
            f"SET TRANSACTION ISOLATION LEVEL {isolation.value}",
            "START TRANSACTION READ ONLY" if read_only else "START TRANSACTION",
        ]

    def table_exists_query(self) -> str:
        return (
            "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ?"
        )

    def is_serialization_conflict(self, error: BaseException) -> bool:
        # 1213 = deadlock found, 1205 = lock wait timeout
        args = getattr(error, "args", ())
        return bool(args) and args[0] in (1213, 1205)

    def savepoint_statement(self, action: str, name: str) -> str | None:
        return _standard_savepoint(action, name)

    def like_escape(self) -> str:
        return ""


class MSSQLDialect:
    """SQL Server dialect (pyodbc): ``?`` placeholders, ``CURRENT_TIMESTAMP``."""

    @property
    def name(self) -> str:
        return "mssql"

    @property
    def paramstyle(self) -> str:
        return "qmark"

    def translate(self, sql: str) -> str:
        return sql

    def now(self) -> str:
        return "CURRENT_TIMESTAMP"

    def last_identity_query(self) -> str:
        return "SELECT @@IDENTITY"

    def begin_statements(self, isolation: IsolationLevel, read_only: bool = False) -> list[str]:
        return [f"SET TRANSACTION ISOLATION LEVEL {isolation.value}"]

    def table_exists_query(self) -> str:
        return "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_NAME = ?"

    def is_serialization_conflict(self, error: BaseException) -> bool:
        args = getattr(error, "args", ())
        if args and args[0] in ("40001",):
            return True
        # 1205 = chosen as deadlock victim
        return "(1205)" in str(error)

    def savepoint_statement(self, action: str, name: str) -> str | None:
        # SQL Server has no RELEASE; savepoints end with the transaction
        if action == "release":
            return None
        return {"set": "SAVE TRANSACTION {}", "rollback": "ROLLBACK TRANSACTION {}"}[action].format(name)

    def like_escape(self) -> str:
        return " ESCAPE '\\'"


# =========================================================================
# Registry / Factory
# =========================================================================

# Dialects are stateless
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "mysql": MySQLDialect(),
    "mariadb": MySQLDialect(),  # alias
    "mssql": MSSQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        InvalidConfigError: If ``db_type`` is not recognised.

    Example:
        >>> get_dialect("sqlite").now()
        "datetime('now')"
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise InvalidConfigError(
            "dialect",
            db_type,
            f"Unknown dialect '{db_type}'. Supported: {sorted(set(_DIALECTS) - {'postgres', 'mariadb'})}",
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (third-party drivers, test doubles)."""
    _DIALECTS[name.lower()] = dialect


def dialect_for_url(url: str) -> Dialect:
    """Pick the dialect matching a provider URL such as ``postgresql+psycopg://``."""
    scheme = url.split("://", 1)[0] if "://" in url else "sqlite"
    return get_dialect(scheme.split("+", 1)[0])


__all__ = [
    "IsolationLevel",
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "MSSQLDialect",
    "get_dialect",
    "register_dialect",
    "dialect_for_url",
]
