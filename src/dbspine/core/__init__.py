"""dbspine core -- errors, logging, settings, dialects and connection providers.

Architecture::

    errors.py       Structured error hierarchy (DbError and subclasses)
    logging.py      structlog configuration and get_logger
    settings.py     DbSettings (pydantic-settings, DBSPINE_ prefix)
    dialect.py      SQL dialects (sqlite, postgresql, mysql, mssql)
    protocols.py    DB-API connection and provider protocols
    connection.py   Connection providers (sqlite3, SQLAlchemy pool)
"""

from dbspine.core.dialect import Dialect, IsolationLevel, get_dialect, register_dialect
from dbspine.core.errors import (
    DbError,
    MappingError,
    MultipleResultsError,
    QueryBuildError,
    RecordNotFoundError,
    RetryExhaustedError,
    RowCountError,
    SerializationConflictError,
    TransactionError,
)
from dbspine.core.settings import DbSettings, get_settings

__all__ = [
    "Dialect",
    "IsolationLevel",
    "get_dialect",
    "register_dialect",
    "DbError",
    "MappingError",
    "MultipleResultsError",
    "QueryBuildError",
    "RecordNotFoundError",
    "RetryExhaustedError",
    "RowCountError",
    "SerializationConflictError",
    "TransactionError",
    "DbSettings",
    "get_settings",
]
