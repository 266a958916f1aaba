"""Bounded retry of transactions that lose a serialization conflict.

Only serialization conflicts are retried: the database aborted the
transaction because of the order of concurrent transactions, so running
the same body again can succeed. Every other error propagates on the
first attempt.

Example:
    >>> from dbspine.core.errors import SerializationConflictError
    >>> from dbspine.engine.retry import ConflictRetryPolicy
    >>>
    >>> policy = ConflictRetryPolicy(max_attempts=3, min_delay=0.01, max_delay=0.1)
    >>> policy.should_retry(1, SerializationConflictError("conflict"))
    True
    >>> policy.should_retry(3, SerializationConflictError("conflict"))
    False
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from dbspine.core.errors import (
    RetryExhaustedError,
    SerializationConflictError,
    error_chain,
)
from dbspine.core.logging import get_logger

if TYPE_CHECKING:
    from dbspine.core.dialect import Dialect
    from dbspine.core.settings import DbSettings

logger = get_logger(__name__)

T = TypeVar("T")


def is_serialization_conflict(error: BaseException, dialect: Dialect | None = None) -> bool:
    """
    Whether ``error`` is, or wraps, a serialization conflict.

    The ``__cause__`` / ``__context__`` chain is searched for a
    ``SerializationConflictError`` or, given a dialect, for a driver error
    the dialect recognizes (SQLSTATE 40001, deadlock, locked database).
    """
    for item in error_chain(error):
        if isinstance(item, SerializationConflictError):
            return True
        if dialect is not None and dialect.is_serialization_conflict(item):
            return True
    return False


@dataclass
class ConflictRetryPolicy:
    """Attempt bound and random backoff window for conflict retries.

    Attributes:
        max_attempts: Total attempts, the first one included
        min_delay: Lower bound of the random pause between attempts (seconds)
        max_delay: Upper bound of the random pause between attempts (seconds)
        dialect: Used to recognize driver-specific conflict errors
    """

    max_attempts: int = 100
    min_delay: float = 0.010
    max_delay: float = 0.100
    dialect: Dialect | None = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, settings: DbSettings, dialect: Dialect | None = None) -> ConflictRetryPolicy:
        return cls(
            max_attempts=settings.max_transaction_attempts,
            min_delay=settings.retry_min_delay,
            max_delay=settings.retry_max_delay,
            dialect=dialect,
        )

    def next_delay(self, attempt: int) -> float:
        """Pause after failed attempt ``attempt`` (1-based)."""
        return random.uniform(self.min_delay, self.max_delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Another attempt follows failed attempt ``attempt`` (1-based)."""
        return attempt < self.max_attempts and is_serialization_conflict(error, self.dialect)


def run_with_retry(
    func: Callable[[], T],
    policy: ConflictRetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """
    Call ``func`` until it succeeds or the policy stops retrying.

    Raises:
        RetryExhaustedError: Every attempt ended in a conflict; ``cause`` is
            the last one.
        Exception: Any non-conflict error, unchanged, from the attempt that
            raised it.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except Exception as e:
            if not is_serialization_conflict(e, policy.dialect):
                raise
            if not policy.should_retry(attempt, e):
                raise RetryExhaustedError(attempt, cause=e) from e

            delay = policy.next_delay(attempt)
            logger.info(
                "transaction_retry",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_ms=round(delay * 1000, 1),
                error=str(e),
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            sleep(delay)


__all__ = ["is_serialization_conflict", "ConflictRetryPolicy", "run_with_retry"]
