"""
Tests for serialization-conflict retry.

Tests verify:
- Only conflicts are retried, up to the attempt bound
- Driver conflicts are recognized through the dialect and the cause chain
- transaction_with_retry rolls back each failed attempt
"""

from __future__ import annotations

import sqlite3

import pytest
from structlog.testing import capture_logs

from dbspine.core.dialect import PostgreSQLDialect, SQLiteDialect
from dbspine.core.errors import RetryExhaustedError, SerializationConflictError
from dbspine.engine import ConflictRetryPolicy, is_serialization_conflict, run_with_retry
from tests._support.records import Person


class FlakyCall:
    """Raises ``error`` for the first ``failures`` calls, then returns ``"done"``."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or SerializationConflictError("could not serialize access")
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


class PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


class TestIsSerializationConflict:
    def test_own_error(self):
        assert is_serialization_conflict(SerializationConflictError("x"))

    def test_plain_error(self):
        assert not is_serialization_conflict(ValueError("x"))

    def test_wrapped_in_cause_chain(self):
        try:
            try:
                raise SerializationConflictError("inner")
            except SerializationConflictError as inner:
                raise RuntimeError("outer") from inner
        except RuntimeError as outer:
            assert is_serialization_conflict(outer)

    def test_sqlite_locked_database(self):
        error = sqlite3.OperationalError("database is locked")
        assert not is_serialization_conflict(error)
        assert is_serialization_conflict(error, SQLiteDialect())

    def test_postgres_sqlstate(self):
        assert is_serialization_conflict(PgError("40001"), PostgreSQLDialect())
        assert is_serialization_conflict(PgError("40P01"), PostgreSQLDialect())
        assert not is_serialization_conflict(PgError("23505"), PostgreSQLDialect())


class TestConflictRetryPolicy:
    def test_defaults(self):
        policy = ConflictRetryPolicy()
        assert policy.max_attempts == 100
        assert (policy.min_delay, policy.max_delay) == (0.010, 0.100)

    def test_from_settings(self, settings):
        policy = ConflictRetryPolicy.from_settings(settings)
        assert policy.max_attempts == 5
        assert policy.max_delay == 0.0

    def test_delay_within_window(self):
        policy = ConflictRetryPolicy(min_delay=0.02, max_delay=0.05)
        for attempt in range(1, 20):
            assert 0.02 <= policy.next_delay(attempt) <= 0.05

    def test_should_retry(self):
        policy = ConflictRetryPolicy(max_attempts=3)
        conflict = SerializationConflictError("x")
        assert policy.should_retry(2, conflict)
        assert not policy.should_retry(3, conflict)
        assert not policy.should_retry(1, ValueError("x"))


class TestRunWithRetry:
    def test_succeeds_after_conflicts(self):
        call = FlakyCall(failures=2)
        delays = []
        policy = ConflictRetryPolicy(max_attempts=5, min_delay=0.01, max_delay=0.01)

        assert run_with_retry(call, policy, sleep=delays.append) == "done"
        assert call.calls == 3
        assert delays == [0.01, 0.01]

    def test_exhausted(self):
        call = FlakyCall(failures=10)
        policy = ConflictRetryPolicy(max_attempts=4, min_delay=0, max_delay=0)

        with pytest.raises(RetryExhaustedError, match="after trying 4 times") as excinfo:
            run_with_retry(call, policy, sleep=lambda _: None)
        assert call.calls == 4
        assert excinfo.value.attempts == 4
        assert isinstance(excinfo.value.__cause__, SerializationConflictError)

    def test_other_errors_raise_immediately(self):
        call = FlakyCall(failures=1, error=KeyError("missing"))
        with pytest.raises(KeyError):
            run_with_retry(call, ConflictRetryPolicy(), sleep=lambda _: None)
        assert call.calls == 1

    def test_on_retry_callback_and_log(self):
        seen = []
        policy = ConflictRetryPolicy(max_attempts=3, min_delay=0, max_delay=0)
        with capture_logs() as logs:
            run_with_retry(
                FlakyCall(failures=1),
                policy,
                sleep=lambda _: None,
                on_retry=lambda attempt, error, delay: seen.append(attempt),
            )
        assert seen == [1]
        retry_events = [entry for entry in logs if entry["event"] == "transaction_retry"]
        assert len(retry_events) == 1
        assert retry_events[0]["log_level"] == "info"
        assert retry_events[0]["attempt"] == 1


class TestTransactionWithRetry:
    def test_failed_attempts_are_rolled_back(self, services, person_table):
        attempts = []

        def body(tx):
            attempts.append(tx.transaction_id)
            services.store_object(Person(name=f"attempt {len(attempts)}"))
            if len(attempts) < 3:
                raise SerializationConflictError("conflict")
            return len(attempts)

        assert services.transaction_with_retry(body, sleep=lambda _: None) == 3
        assert len(set(attempts)) == 3
        names = [p.name for p in services.retrieve_list(services.select_query(Person))]
        assert names == ["attempt 3"]

    def test_bound_comes_from_settings(self, services, person_table):
        calls = []

        def body(tx):
            calls.append(1)
            raise SerializationConflictError("conflict")

        with pytest.raises(RetryExhaustedError) as excinfo:
            services.transaction_with_retry(body, sleep=lambda _: None)
        assert excinfo.value.attempts == 5
        assert len(calls) == 5
        assert not services.is_transaction_active()

    def test_explicit_policy(self, services, person_table):
        calls = []

        def body(tx):
            calls.append(1)
            raise SerializationConflictError("conflict")

        with pytest.raises(RetryExhaustedError):
            services.transaction_with_retry(
                body, policy=ConflictRetryPolicy(max_attempts=2, min_delay=0, max_delay=0), sleep=lambda _: None
            )
        assert len(calls) == 2

    def test_non_conflict_not_retried(self, services, person_table):
        calls = []

        def body(tx):
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            services.transaction_with_retry(body, sleep=lambda _: None)
        assert calls == [1]
