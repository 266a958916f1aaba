"""
dbspine - query builder, record mapper and transactional engine.

- dbspine.query: SQL text plus ordered ``?`` parameters
- dbspine.mapping: record classes to tables, rows to records
- dbspine.engine: execution, transactions, conflict retry, slow-query log
- dbspine.core: errors, logging, settings, dialects, connection providers
"""

__version__ = "0.4.0"

from dbspine.core.connection import create_provider
from dbspine.core.dialect import IsolationLevel
from dbspine.core.errors import DbError
from dbspine.core.settings import DbSettings, get_settings
from dbspine.engine import DbServices, ReadOnlyDbServices, SingleObjectConverter
from dbspine.mapping import NOW, LocalizedString, ServerNow, column, table_record
from dbspine.query import DeleteQuery, Ordering, SearchMethod, SelectQuery, UpdateQuery

__all__ = [
    "__version__",
    "create_provider",
    "IsolationLevel",
    "DbError",
    "DbSettings",
    "get_settings",
    "DbServices",
    "ReadOnlyDbServices",
    "SingleObjectConverter",
    "NOW",
    "LocalizedString",
    "ServerNow",
    "column",
    "table_record",
    "DeleteQuery",
    "Ordering",
    "SearchMethod",
    "SelectQuery",
    "UpdateQuery",
]
