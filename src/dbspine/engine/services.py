"""
DbServices - the transactional execution engine.

``DbServices`` executes query builders and raw SQL against connections
from a ``ConnectionProvider``, maps rows to records through their class
handlers, and manages per-thread transactions with bounded retry of
serialization conflicts.

Manifesto:
    - **Connections never leak:** every call releases what it acquired,
      on every exit path; a transaction keeps one connection until it
      commits or rolls back
    - **One transaction per thread:** the active ``TransactionContext``
      lives in a ``threading.local`` of the services instance
    - **Server time on request:** a ``NOW`` field value is written as the
      dialect's current-timestamp expression and read back after the write
    - **Every statement is timed:** slow statements are logged at WARNING
      with their parameters

Architecture:
    ::

        DbServices(provider, dialect, settings)
        │
        ├── select_query / update_query / delete_query   builders with settings applied
        │
        ├── store_object ─┬─ insert_object ── INSERT, identity, NOW read-back
        │                 └─ update_object ── UPDATE ... WHERE id=<id>, NOW read-back
        ├── delete_object / refresh
        │
        ├── execute_query(processor, query) ──► _execute ──► cursor ──► processor
        ├── execute_update / execute_delete ──► _execute ──► rowcount
        │                                          │
        │                                          └── timed_query → query / slow_query / query_failed
        │
        └── start_transaction / commit / rollback / savepoints
            transaction(body) / transaction_with_retry(body)

    Non-transactional calls run in ``connection()``: a fresh provider
    connection that is committed on success, rolled back on error and
    closed in every case.

Examples:
    >>> services = DbServices(create_provider("sqlite:///app.db"))
    >>> services.create_table(Person)
    >>> person = Person(name="Ada", created=NOW)
    >>> services.store_object(person)
    >>> person.id, type(person.created)
    (1, <class 'datetime.datetime'>)

    >>> def rename(tx):
    ...     person.name = "Ada L."
    ...     services.update_object(person, "name")
    >>> services.transaction_with_retry(rename)

Guardrails:
    ❌ DON'T: Share a ``TransactionContext`` between threads
    ✅ DO: Start the transaction on the thread that runs its statements

    ❌ DON'T: Retry non-idempotent side effects inside a retried body
    ✅ DO: Keep retried bodies to database work

Tags:
    engine, transaction, retry, slow-query, dbapi, dbspine

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

from dbspine.core.connection import ConnectionInfo
from dbspine.core.dialect import Dialect, IsolationLevel, dialect_for_url, get_dialect
from dbspine.core.errors import (
    MappingError,
    MultipleResultsError,
    QueryBuildError,
    RecordNotFoundError,
    RowCountError,
    TransactionError,
    is_transient,
)
from dbspine.core.logging import bind_context, get_logger, unbind_context
from dbspine.core.protocols import ConnectionProvider, DBAPIConnection
from dbspine.core.settings import DbSettings, get_settings
from dbspine.engine.results import (
    GET_INTEGER,
    GET_NUMBER,
    ObjectListConverter,
    RecordRefresher,
    SingleObjectConverter,
    describe_query_result,
)
from dbspine.engine.retry import ConflictRetryPolicy, run_with_retry
from dbspine.engine.timing import QueryTimer, timed_query
from dbspine.engine.transaction import Savepoint, TransactionContext
from dbspine.mapping.classes import ClassHandler
from dbspine.mapping.fields import FieldHandler
from dbspine.mapping.registry import get_class_handler
from dbspine.mapping.values import ServerNow
from dbspine.query.base import AbstractQuery
from dbspine.query.delete import DeleteQuery
from dbspine.query.select import SelectQuery
from dbspine.query.update import UpdateQuery

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _resolve_dialect(provider: ConnectionProvider, settings: DbSettings) -> Dialect:
    if settings.dialect:
        return get_dialect(settings.dialect)
    info = getattr(provider, "info", None)
    if isinstance(info, ConnectionInfo):
        return get_dialect(info.backend)
    return dialect_for_url(settings.database_url)


class DbServices:
    """Executes queries and record operations against a connection provider."""

    def __init__(
        self,
        provider: ConnectionProvider,
        dialect: Dialect | None = None,
        settings: DbSettings | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or get_settings()
        self.dialect = dialect or _resolve_dialect(provider, self.settings)
        self._local = threading.local()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider!r}, dialect={self.dialect.name!r})"

    # =====================================================================
    # Query factories
    # =====================================================================

    def _query_options(self) -> dict[str, Any]:
        return {
            "use_query_parameters": self.settings.use_query_parameters,
            "inline_simple_literals": self.settings.inline_simple_literals,
            "separator": self.settings.separator,
            "like_escape": self.dialect.like_escape(),
        }

    def select_query(self, table: str | type[T], alias: str | None = None) -> SelectQuery[T]:
        return SelectQuery(table, alias, **self._query_options())

    def update_query(self, table: str | type[T], alias: str | None = None) -> UpdateQuery[T]:
        return UpdateQuery(table, alias, **self._query_options())

    def delete_query(self, table: str | type[T], alias: str | None = None) -> DeleteQuery[T]:
        return DeleteQuery(table, alias, **self._query_options())

    # =====================================================================
    # Connection scope
    # =====================================================================

    def acquire_connection(self, read_only: bool = False) -> DBAPIConnection:
        """The active transaction's connection, else a new provider connection."""
        context = self.current_transaction()
        if context is not None:
            return context.connection
        return self.provider.get_connection()

    def release_connection(self, connection: DBAPIConnection) -> None:
        """Close ``connection`` unless it belongs to the active transaction."""
        context = self.current_transaction()
        if context is not None and connection is context.connection:
            return
        connection.close()

    @contextmanager
    def connection(self, read_only: bool = False) -> Iterator[DBAPIConnection]:
        """
        Connection for the duration of one engine call.

        Inside a transaction this is the transaction's connection and
        nothing is committed. Otherwise the work is committed on success
        (rolled back when ``read_only``), rolled back on error, and the
        connection is closed either way.
        """
        if self.is_transaction_active():
            yield self.acquire_connection(read_only)
            return

        connection = self.acquire_connection(read_only)
        try:
            yield connection
            if read_only:
                connection.rollback()
            else:
                connection.commit()
        except BaseException:
            self._rollback_quietly(connection)
            raise
        finally:
            self.release_connection(connection)

    @staticmethod
    def _rollback_quietly(connection: DBAPIConnection) -> None:
        try:
            connection.rollback()
        except Exception as e:
            logger.warning("rollback_failed", error=str(e), error_type=type(e).__name__)

    # =====================================================================
    # Statement execution
    # =====================================================================

    def _execute(
        self,
        connection: DBAPIConnection,
        sql: str,
        parameters: Sequence[Any] = (),
        processor: Callable[[Any], Any] | None = None,
        record_type: type | None = None,
    ) -> Any:
        """
        Run one statement and return the processor's result (or the rowcount).

        The statement is timed and logged; failures are logged and re-raised
        unchanged.
        """
        parameters = list(parameters)
        cursor = connection.cursor()
        try:
            with timed_query(sql, parameters) as timer:
                try:
                    cursor.execute(self.dialect.translate(sql), tuple(parameters))
                    result = processor(cursor) if processor is not None else cursor.rowcount
                except Exception as e:
                    self._log_failure(timer, e)
                    raise
            self._log_query(timer, describe_query_result(record_type, result))
            return result
        finally:
            cursor.close()

    def _log_query(self, timer: QueryTimer, description: str) -> None:
        if timer.is_slow(self.settings.slow_query_threshold):
            logger.warning("slow_query", result=description, **timer.to_log_dict())
        else:
            logger.debug("query", result=description, **timer.to_log_dict())

    @staticmethod
    def _log_failure(timer: QueryTimer, error: Exception) -> None:
        fields = timer.to_log_dict()
        fields.update(error=str(error), error_type=type(error).__name__)
        if is_transient(error):
            logger.debug("query_failed", **fields)
        else:
            logger.error("query_failed", **fields)

    @staticmethod
    def _statement(query: AbstractQuery[Any] | str, parameters: Sequence[Any]) -> tuple[str, list[Any]]:
        if isinstance(query, AbstractQuery):
            return query.get_query_string(), query.get_query_parameters()
        return query, list(parameters)

    def execute_query(
        self,
        processor: Callable[[Any], R],
        query: AbstractQuery[Any] | str,
        *parameters: Any,
    ) -> R:
        """Run a SELECT and return ``processor(cursor)``."""
        sql, params = self._statement(query, parameters)
        record_type = getattr(processor, "record_type", None)
        with self.connection(read_only=True) as connection:
            return self._execute(connection, sql, params, processor, record_type)

    def execute_update(self, query: UpdateQuery[Any]) -> int:
        """Run an UPDATE builder; returns the number of affected rows."""
        return self.execute_update_sql(query.get_query_string(), *query.get_query_parameters())

    def execute_update_sql(self, sql: str, *parameters: Any) -> int:
        """Run any data-changing statement; returns the number of affected rows."""
        with self.connection() as connection:
            return self._execute(connection, sql, parameters)

    def execute_delete(self, query: DeleteQuery[Any]) -> int:
        return self.execute_update_sql(query.get_query_string(), *query.get_query_parameters())

    # =====================================================================
    # Retrieval
    # =====================================================================

    @staticmethod
    def _record_type(query: AbstractQuery[T], record_type: type[T] | None) -> type[T]:
        record_type = record_type or query.table_class
        if record_type is None:
            raise QueryBuildError("Query has no record class to map rows to")
        return record_type

    def retrieve_list(self, query: SelectQuery[T], record_type: type[T] | None = None) -> list[T]:
        converter = ObjectListConverter(self._record_type(query, record_type))
        return self.execute_query(converter, query)

    def retrieve_list_sql(self, record_type: type[T], sql: str, *parameters: Any) -> list[T]:
        return self.execute_query(ObjectListConverter(record_type), sql, *parameters)

    def retrieve_object(self, query: SelectQuery[T], record_type: type[T] | None = None) -> T | None:
        """The only record the query returns, or ``None`` when it returns none."""
        converter = self.execute_query(SingleObjectConverter(self._record_type(query, record_type)), query)
        if converter.multiple:
            raise MultipleResultsError("Got multiple results on query").with_context(
                query=query.get_query_string()
            )
        return converter.first

    def select_number(self, query: SelectQuery[Any] | str, *parameters: Any) -> Any:
        return self.execute_query(GET_NUMBER, query, *parameters)

    def select_int(self, query: SelectQuery[Any] | str, default: int = 0, *parameters: Any) -> int:
        value = self.execute_query(GET_INTEGER, query, *parameters)
        return default if value is None else value

    # =====================================================================
    # Record operations
    # =====================================================================

    def store_object(self, obj: Any) -> None:
        """UPDATE a stored record, INSERT a new one (record id ``< 0``)."""
        handler = get_class_handler(type(obj))
        if handler.has_record_id() and handler.get_record_id(obj) >= 0:
            self.update_object(obj)
        else:
            self.insert_object(obj)

    def insert_object(self, obj: Any) -> None:
        """
        INSERT ``obj`` and set its generated record id.

        The id column is left out while the id is negative. Fields holding
        ``NOW`` are written as the server's current timestamp and read back.
        """
        handler = get_class_handler(type(obj))
        record_id = handler.get_record_id(obj) if handler.has_record_id() else -1

        columns: list[str] = []
        values: list[str] = []
        parameters: list[Any] = []
        now_fields: list[FieldHandler] = []
        for field in handler.fields:
            if field is handler.record_id_field and record_id < 0:
                continue
            data = field.get_column_data(obj)
            columns.append(field.column)
            if isinstance(data, ServerNow):
                values.append(self.dialect.now())
                now_fields.append(field)
            else:
                values.append("?")
                parameters.append(data)

        if columns:
            sql = f"INSERT INTO {handler.table_name} ({','.join(columns)}) VALUES ({','.join(values)})"
        else:
            sql = f"INSERT INTO {handler.table_name} DEFAULT VALUES"

        generated_id: int | None = None
        with self.connection() as connection:
            count = self._execute(connection, sql, parameters, record_type=handler.record_type)
            if count != 1:
                raise RowCountError(count, sql)
            if not handler.has_record_id():
                return
            if record_id < 0:
                generated_id = record_id = self._execute(
                    connection, self.dialect.last_identity_query(), (), GET_INTEGER
                )
            if now_fields:
                self._read_back(connection, handler, obj, now_fields, record_id)

        # only once the row is committed (or part of the open transaction)
        if generated_id is not None:
            handler.set_record_id(obj, generated_id)

    def update_object(self, obj: Any, *field_names: str) -> None:
        """
        UPDATE the given fields (all fields when none are named) of a stored record.

        Raises:
            MappingError: Unknown field name, or the record has no id yet
            QueryBuildError: Nothing left to update after removing the id
            RowCountError: The statement did not affect exactly one row
        """
        handler = get_class_handler(type(obj))
        if field_names:
            fields = [handler.get_field_handler(name) for name in field_names]
        else:
            fields = list(handler.fields)
        fields = [field for field in fields if field is not handler.record_id_field]
        if not fields:
            raise QueryBuildError("Nothing to update")

        record_id = handler.get_record_id(obj)
        if record_id < 0:
            raise MappingError(
                f"Cannot update {handler.record_type.__name__}: record has not been stored",
                record_type=handler.record_type,
            )

        query = self.update_query(handler.table_name)
        now_fields: list[FieldHandler] = []
        for field in fields:
            data = field.get_column_data(obj)
            if isinstance(data, ServerNow):
                query.set_raw(f"{field.column}={self.dialect.now()}")
                now_fields.append(field)
            else:
                query.set_raw(f"{field.column}=?", data)
        query.where_equal(handler.record_id_column, record_id)

        sql = query.get_query_string()
        with self.connection() as connection:
            count = self._execute(connection, sql, query.get_query_parameters(), record_type=handler.record_type)
            if count != 1:
                raise RowCountError(count, sql)
            if now_fields:
                self._read_back(connection, handler, obj, now_fields, record_id)

    def _read_back(
        self,
        connection: DBAPIConnection,
        handler: ClassHandler[Any],
        obj: Any,
        fields: list[FieldHandler],
        record_id: int,
    ) -> None:
        """Copy the stored values of ``fields`` back into ``obj``."""
        query = self.select_query(handler.table_name)
        for field in fields:
            query.select(field.column)
        query.where_equal(handler.record_id_column, record_id)
        self._execute(
            connection,
            query.get_query_string(),
            query.get_query_parameters(),
            RecordRefresher(obj),
            handler.record_type,
        )

    def delete_object(self, obj: Any) -> None:
        """DELETE a stored record by id and mark it as not stored (id ``-1``)."""
        handler = get_class_handler(type(obj))
        record_id = handler.get_record_id(obj)
        if record_id < 0:
            return
        query = self.delete_query(handler.table_name)
        query.where_equal(handler.record_id_column, record_id)
        self.execute_delete(query)
        handler.set_record_id(obj, -1)

    def refresh(self, obj: Any) -> None:
        """Overwrite ``obj`` with its stored row."""
        handler = get_class_handler(type(obj))
        record_id = handler.get_record_id(obj)
        query = self.select_query(handler.table_name)
        query.where_equal(handler.record_id_column, record_id)
        count = self.execute_query(RecordRefresher(obj), query)
        if count == 0:
            raise RecordNotFoundError("Object not found in database").with_context(
                table=handler.table_name, record_id=record_id
            )
        if count > 1:
            raise MultipleResultsError(
                f"Multiple rows in {handler.table_name} with {handler.record_id_column}={record_id}"
            ).with_context(table=handler.table_name, record_id=record_id)

    # =====================================================================
    # Table management
    # =====================================================================

    def create_table(self, record_type: type) -> None:
        self.execute_update_sql(get_class_handler(record_type).create_statement)

    def drop_table(self, record_type: type) -> None:
        self.execute_update_sql(f"DROP TABLE {get_class_handler(record_type).table_name}")

    def table_exists(self, record_type: type) -> bool:
        table_name = get_class_handler(record_type).table_name
        rows = self.execute_query(lambda cursor: cursor.fetchall(), self.dialect.table_exists_query(), table_name)
        return len(rows) > 0

    # =====================================================================
    # Transactions
    # =====================================================================

    def current_transaction(self) -> TransactionContext | None:
        return getattr(self._local, "context", None)

    def is_transaction_active(self) -> bool:
        return self.current_transaction() is not None

    def _require_transaction(self) -> TransactionContext:
        context = self.current_transaction()
        if context is None:
            raise TransactionError("No transaction in progress")
        return context

    def start_transaction(
        self,
        isolation: IsolationLevel = IsolationLevel.SERIALIZABLE,
        read_only: bool = False,
    ) -> TransactionContext:
        """Open a transaction on the calling thread."""
        if self.is_transaction_active():
            raise TransactionError("Another transaction is already active")

        connection = self.provider.get_connection()
        context = TransactionContext(connection, isolation, read_only)
        try:
            for statement in self.dialect.begin_statements(isolation, read_only):
                self._execute(connection, statement)
        except BaseException:
            connection.close()
            raise

        self._local.context = context
        bind_context(transaction_id=context.transaction_id)
        logger.debug("transaction_started", isolation=isolation.value, read_only=read_only)
        return context

    def commit(self) -> None:
        context = self._require_transaction()
        try:
            context.connection.commit()
        except BaseException:
            self._rollback_quietly(context.connection)
            raise
        finally:
            self._finish(context, "transaction_committed")

    def rollback(self) -> None:
        context = self._require_transaction()
        try:
            context.connection.rollback()
        finally:
            self._finish(context, "transaction_rolled_back")

    def _finish(self, context: TransactionContext, event: str) -> None:
        context.active = False
        self._local.context = None
        try:
            context.connection.close()
        finally:
            logger.debug(event, **context.to_log_dict())
            unbind_context("transaction_id")

    # ── Savepoints ───────────────────────────────────────────────

    def _savepoint_statement(self, action: str, name: str) -> str | None:
        return self.dialect.savepoint_statement(action, name)

    def set_savepoint(self, name: str | None = None) -> Savepoint:
        context = self._require_transaction()
        savepoint = Savepoint(name or context.next_savepoint_name(), context.transaction_id)
        statement = self._savepoint_statement("set", savepoint.name)
        if statement is None:
            raise TransactionError(f"Savepoints are not supported by {self.dialect.name}")
        self._execute(context.connection, statement)
        context.savepoints.append(savepoint)
        return savepoint

    def _check_savepoint(self, savepoint: Savepoint) -> TransactionContext:
        context = self._require_transaction()
        if not context.owns(savepoint):
            raise TransactionError(f"Savepoint {savepoint.name} is not part of the active transaction")
        return context

    def rollback_to_savepoint(self, savepoint: Savepoint) -> None:
        """Undo everything after ``savepoint``; the savepoint itself stays valid."""
        context = self._check_savepoint(savepoint)
        self._execute(context.connection, self._savepoint_statement("rollback", savepoint.name))
        del context.savepoints[context.savepoints.index(savepoint) + 1:]

    def release_savepoint(self, savepoint: Savepoint) -> None:
        """Forget ``savepoint`` and every savepoint set after it."""
        context = self._check_savepoint(savepoint)
        statement = self._savepoint_statement("release", savepoint.name)
        if statement is not None:
            self._execute(context.connection, statement)
        del context.savepoints[context.savepoints.index(savepoint):]

    # ── Transaction bodies ───────────────────────────────────────

    def transaction(
        self,
        body: Callable[[TransactionContext], R],
        isolation: IsolationLevel = IsolationLevel.SERIALIZABLE,
        read_only: bool = False,
    ) -> R:
        """
        Run ``body`` in a transaction and commit.

        On any error the transaction is rolled back (a failing rollback is
        only logged) and the original error is re-raised.
        """
        context = self.start_transaction(isolation, read_only)
        try:
            result = body(context)
            self.commit()
            return result
        except BaseException as e:
            if context.active:
                try:
                    self.rollback()
                except Exception as rollback_error:
                    logger.warning(
                        "transaction_rollback_failed",
                        transaction_id=context.transaction_id,
                        error=str(rollback_error),
                        original_error=str(e),
                    )
            raise

    def transaction_with_retry(
        self,
        body: Callable[[TransactionContext], R],
        isolation: IsolationLevel = IsolationLevel.SERIALIZABLE,
        *,
        policy: ConflictRetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> R:
        """
        Run ``transaction(body)``, repeating it while it fails on a
        serialization conflict.

        Raises:
            RetryExhaustedError: Still conflicting after
                ``settings.max_transaction_attempts`` attempts
        """
        policy = policy or ConflictRetryPolicy.from_settings(self.settings, self.dialect)
        return run_with_retry(lambda: self.transaction(body, isolation), policy, sleep=sleep)


__all__ = ["DbServices"]
