"""
Structured error types for dbspine.

Every failure raised by the query builder, the record mapper or the
execution engine is a ``DbError``. Errors carry the metadata needed to
decide what to do next: a category for routing, a retryable flag for the
retry loop, an ``ErrorContext`` with the table, statement and parameters
involved, and the underlying driver exception as ``cause``.

Manifesto:
    - **Fail before I/O:** Builder and mapping mistakes raise at call time
    - **Explicit retry semantics:** Only serialization conflicts are retried
    - **Distinct cardinality errors:** "not found" and "multiple" are different types
    - **Error chaining:** The driver exception is preserved as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                          DbError                                 │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  QueryBuildError      MappingError        CardinalityError       │
        │  (VALIDATION)         (MAPPING)           (CARDINALITY)          │
        │                                                 │                │
        │                                   RecordNotFoundError            │
        │                                   MultipleResultsError           │
        │                                                                  │
        │  DatabaseError        TransactionError    ConfigError            │
        │  (DATABASE)           (TRANSACTION)       (CONFIG)               │
        │       │                     │                   │                │
        │  RowCountError        SerializationConflictError                │
        │  DbConnectionError    RetryExhaustedError  InvalidConfigError    │
        │                                            ReadOnlyViolationError│
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = RowCountError(0, "UPDATE person SET name=? WHERE id=3")
    >>> error.context.query
    'UPDATE person SET name=? WHERE id=3'
    >>> error.retryable
    False

    >>> conflict = SerializationConflictError("could not serialize access")
    >>> is_retryable(conflict)
    True

Guardrails:
    ❌ DON'T: Raise bare ValueError for a malformed query
    ✅ DO: Raise QueryBuildError (it is a ValueError too)

    ❌ DON'T: Use one error type for zero rows and many rows
    ✅ DO: Raise RecordNotFoundError or MultipleResultsError

Tags:
    error-handling, exception-hierarchy, retry-logic, dbspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories for classification and routing."""

    DATABASE = "DATABASE"         # Driver, connection, row counts
    VALIDATION = "VALIDATION"     # Malformed query construction
    MAPPING = "MAPPING"           # Record class / field metadata
    CARDINALITY = "CARDINALITY"   # Expected exactly one row
    TRANSACTION = "TRANSACTION"   # Transaction state and conflicts
    CONFIG = "CONFIG"             # Settings, dialects, providers
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        table: Table the operation targeted
        record_type: Record class name
        query: SQL text that was executed or built
        parameters: Bound parameters for ``query``
        metadata: Additional key-value pairs
    """

    table: str | None = None
    record_type: str | None = None
    query: str | None = None
    parameters: list[Any] | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["table", "record_type", "query"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.parameters is not None:
            result["parameters"] = [repr(p) for p in self.parameters]
        if self.metadata:
            result.update(self.metadata)
        return result


class DbError(Exception):
    """
    Base exception for all dbspine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    can override both per instance.

    Examples:
        >>> error = DbError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = DbError("Refresh failed").with_context(table="person")
        >>> error.context.table
        'person'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DbError:
        """
        Add context to this error (fluent API).

        Usage:
            raise MappingError("Unknown field").with_context(
                table="person", record_type="Person"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# BUILD / MAPPING ERRORS (never retryable)
# =============================================================================


class QueryBuildError(DbError, ValueError):
    """
    A query could not be built as requested.

    Raised at builder-call time, before any I/O: empty IN list, missing
    table, empty SET, empty search phrase, missing search columns.
    """

    default_category = ErrorCategory.VALIDATION


class MappingError(DbError):
    """Record class metadata is missing or inconsistent with the request."""

    default_category = ErrorCategory.MAPPING

    def __init__(
        self,
        message: str,
        *,
        record_type: type | None = None,
        field_name: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.record_type = record_type
        self.field_name = field_name
        if record_type is not None:
            self.context.record_type = record_type.__name__

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field_name:
            result["field"] = self.field_name
        return result


# =============================================================================
# CARDINALITY ERRORS
# =============================================================================


class CardinalityError(DbError):
    """A query returned a different number of rows than required."""

    default_category = ErrorCategory.CARDINALITY


class RecordNotFoundError(CardinalityError, LookupError):
    """No row was found where one is required."""

    pass


class MultipleResultsError(CardinalityError):
    """More than one row was found where exactly one is required."""

    pass


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(DbError):
    """Error reported while talking to the database."""

    default_category = ErrorCategory.DATABASE


class RowCountError(DatabaseError):
    """INSERT or UPDATE affected an unexpected number of rows."""

    def __init__(self, count: int, query: str, *, expected: int = 1, **kwargs: Any):
        super().__init__(
            f"Expected {expected} updated row(s), but got {count} for query: {query}",
            **kwargs,
        )
        self.count = count
        self.expected = expected
        self.context.query = query


class DbConnectionError(DatabaseError):
    """The connection provider failed to supply a connection."""

    default_retryable = True


# =============================================================================
# TRANSACTION ERRORS
# =============================================================================


class TransactionError(DbError):
    """Invalid transaction state transition (nested start, no active transaction)."""

    default_category = ErrorCategory.TRANSACTION


class SerializationConflictError(TransactionError):
    """
    Transaction was rolled back because of concurrent transaction ordering.

    The only error class ``DbServices.transaction_with_retry`` retries.
    """

    default_retryable = True


class RetryExhaustedError(TransactionError):
    """A transaction kept conflicting until the attempt limit was reached."""

    def __init__(self, attempts: int, cause: BaseException | None = None, **kwargs: Any):
        super().__init__(f"Transaction failed after trying {attempts} times", cause=cause, **kwargs)
        self.attempts = attempts


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(DbError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


class ReadOnlyViolationError(ConfigError):
    """A write was attempted through read-only services."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} is not allowed in read-only mode")


# =============================================================================
# HELPERS
# =============================================================================


def error_chain(error: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = error
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def find_in_chain(error: BaseException, error_type: type[BaseException]) -> BaseException | None:
    """Return the first exception of ``error_type`` in the cause chain."""
    for item in error_chain(error):
        if isinstance(item, error_type):
            return item
    return None


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, DbError):
        return error.retryable
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """
    Categorize an arbitrary exception.

    DbError instances carry their own category; DB-API driver exceptions
    are recognized by class name so no driver import is needed.
    """
    if isinstance(error, DbError):
        return error.category

    for cls in type(error).__mro__:
        if cls.__name__ in ("OperationalError", "InterfaceError", "DatabaseError", "IntegrityError",
                            "ProgrammingError", "DataError", "NotSupportedError", "InternalError"):
            return ErrorCategory.DATABASE

    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION

    return ErrorCategory.UNKNOWN


def is_transient(error: BaseException) -> bool:
    """
    Whether a driver error is a transport-level failure.

    Transient failures are logged at low severity by the engine; they are
    still raised to the caller.
    """
    if isinstance(error, DbError):
        return error.retryable
    names = {cls.__name__ for cls in type(error).__mro__}
    return bool(names & {"OperationalError", "InterfaceError", "ConnectionError", "TimeoutError"})


__all__ = [
    "ErrorCategory",
    "error_chain",
    "ErrorContext",
    "DbError",
    "QueryBuildError",
    "MappingError",
    "CardinalityError",
    "RecordNotFoundError",
    "MultipleResultsError",
    "DatabaseError",
    "RowCountError",
    "DbConnectionError",
    "TransactionError",
    "SerializationConflictError",
    "RetryExhaustedError",
    "ConfigError",
    "InvalidConfigError",
    "ReadOnlyViolationError",
    "find_in_chain",
    "is_retryable",
    "is_transient",
    "categorize_error",
]
