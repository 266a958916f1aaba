"""dbspine engine -- executing queries and records against a database.

Architecture::

    services.py     DbServices: record operations, execution, transactions
    readonly.py     ReadOnlyDbServices: write-rejecting view of DbServices
    results.py      Result processors and record converters
    retry.py        Serialization-conflict detection and bounded retry
    transaction.py  TransactionContext, Savepoint
    timing.py       QueryTimer for the slow-query log
    tools.py        Cursor helpers
"""

from dbspine.engine.readonly import ReadOnlyDbServices
from dbspine.engine.results import (
    GET_INTEGER,
    GET_NUMBER,
    GET_ROWS,
    GET_STRING,
    ObjectConverter,
    ObjectListConverter,
    RecordRefresher,
    SingleObjectConverter,
    describe_query_result,
)
from dbspine.engine.retry import ConflictRetryPolicy, is_serialization_conflict, run_with_retry
from dbspine.engine.services import DbServices
from dbspine.engine.transaction import Savepoint, TransactionContext

__all__ = [
    "DbServices",
    "ReadOnlyDbServices",
    "GET_INTEGER",
    "GET_NUMBER",
    "GET_ROWS",
    "GET_STRING",
    "ObjectConverter",
    "ObjectListConverter",
    "RecordRefresher",
    "SingleObjectConverter",
    "describe_query_result",
    "ConflictRetryPolicy",
    "is_serialization_conflict",
    "run_with_retry",
    "Savepoint",
    "TransactionContext",
]
