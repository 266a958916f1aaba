"""
Tests for DbServices transactions and savepoints.

Tests verify:
- start/commit/rollback state transitions and their errors
- transaction(body) commits on success and rolls back on error
- Savepoints roll back partial work inside one transaction
- The active transaction is per thread and bound into the log context
"""

from __future__ import annotations

import threading

import pytest
import structlog
from structlog.testing import capture_logs

from dbspine.core.dialect import IsolationLevel, SQLiteDialect
from dbspine.core.errors import TransactionError
from dbspine.engine import DbServices, Savepoint
from tests._support.records import Person


def _count(services: DbServices) -> int:
    return services.select_int("SELECT COUNT(*) FROM person")


class NoSavepointDialect(SQLiteDialect):
    def savepoint_statement(self, action, name):
        return None


class TestStartCommitRollback:
    def test_commit_persists(self, services, person_table):
        context = services.start_transaction()
        assert services.is_transaction_active()
        assert services.current_transaction() is context

        services.store_object(Person(name="Ada"))
        services.commit()

        assert not services.is_transaction_active()
        assert not context.active
        assert _count(services) == 1

    def test_rollback_discards(self, services, person_table):
        services.start_transaction()
        services.store_object(Person(name="Ada"))
        assert _count(services) == 1
        services.rollback()
        assert _count(services) == 0

    def test_statements_share_the_transaction_connection(self, services, person_table):
        context = services.start_transaction()
        try:
            with services.connection() as connection:
                assert connection is context.connection
        finally:
            services.rollback()

    def test_commit_without_transaction(self, services):
        with pytest.raises(TransactionError, match="No transaction in progress"):
            services.commit()

    def test_rollback_without_transaction(self, services):
        with pytest.raises(TransactionError, match="No transaction in progress"):
            services.rollback()

    def test_nested_start_rejected(self, services, person_table):
        services.start_transaction()
        try:
            with pytest.raises(TransactionError, match="Another transaction is already active"):
                services.start_transaction()
        finally:
            services.rollback()

    def test_read_committed_on_sqlite(self, services, person_table):
        context = services.start_transaction(IsolationLevel.READ_COMMITTED)
        assert context.isolation is IsolationLevel.READ_COMMITTED
        services.rollback()

    def test_transaction_id_bound_to_log_context(self, services, person_table):
        context = services.start_transaction()
        assert structlog.contextvars.get_contextvars()["transaction_id"] == context.transaction_id
        services.commit()
        assert "transaction_id" not in structlog.contextvars.get_contextvars()

    def test_lifecycle_events_logged(self, services, person_table):
        with capture_logs() as logs:
            services.start_transaction()
            services.commit()
        events = [entry["event"] for entry in logs]
        assert "transaction_started" in events
        committed = next(entry for entry in logs if entry["event"] == "transaction_committed")
        assert committed["isolation"] == "SERIALIZABLE"
        assert committed["read_only"] is False


class TestPerThreadTransactions:
    def test_other_thread_sees_no_transaction(self, services, person_table):
        services.start_transaction()
        seen = []
        try:
            thread = threading.Thread(target=lambda: seen.append(services.is_transaction_active()))
            thread.start()
            thread.join()
        finally:
            services.rollback()
        assert seen == [False]

    def test_transactions_on_two_threads_are_independent(self, services, person_table):
        contexts = []
        errors = []

        def run():
            try:
                contexts.append(services.start_transaction(IsolationLevel.READ_COMMITTED, read_only=True))
                services.rollback()
            except Exception as e:
                errors.append(e)

        services.start_transaction(IsolationLevel.READ_COMMITTED, read_only=True)
        try:
            thread = threading.Thread(target=run)
            thread.start()
            thread.join()
        finally:
            services.rollback()

        assert errors == []
        assert len(contexts) == 1


class TestTransactionBody:
    def test_commits_and_returns(self, services, person_table):
        def body(tx):
            person = Person(name="Ada")
            services.store_object(person)
            return person.id

        assert services.transaction(body) == 1
        assert _count(services) == 1
        assert not services.is_transaction_active()

    def test_body_receives_context(self, services, person_table):
        seen = []
        services.transaction(seen.append, IsolationLevel.REPEATABLE_READ)
        assert seen[0].isolation is IsolationLevel.REPEATABLE_READ
        assert not seen[0].active

    def test_error_rolls_back_and_propagates(self, services, person_table):
        def body(tx):
            services.store_object(Person(name="Ada"))
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            services.transaction(body)
        assert not services.is_transaction_active()
        assert _count(services) == 0

    def test_body_may_finish_the_transaction_itself(self, services, person_table):
        def body(tx):
            services.store_object(Person(name="Ada"))
            services.rollback()
            raise KeyError("after rollback")

        with pytest.raises(KeyError):
            services.transaction(body)
        assert _count(services) == 0


class TestSavepoints:
    def test_rollback_to_savepoint(self, services, person_table):
        context = services.start_transaction()
        services.store_object(Person(name="Ada"))
        savepoint = services.set_savepoint()
        services.store_object(Person(name="Grace"))

        services.rollback_to_savepoint(savepoint)
        assert context.savepoints == [savepoint]
        services.commit()

        assert [p.name for p in services.retrieve_list(services.select_query(Person))] == ["Ada"]

    def test_generated_names_are_unique(self, services, person_table):
        context = services.start_transaction()
        try:
            first = services.set_savepoint()
            second = services.set_savepoint()
            assert first.name != second.name
            assert first.name.startswith(f"sp_{context.transaction_id}_")
        finally:
            services.rollback()

    def test_rollback_drops_later_savepoints(self, services, person_table):
        context = services.start_transaction()
        try:
            first = services.set_savepoint("first")
            services.set_savepoint("second")
            services.rollback_to_savepoint(first)
            assert [sp.name for sp in context.savepoints] == ["first"]
        finally:
            services.rollback()

    def test_release(self, services, person_table):
        context = services.start_transaction()
        try:
            first = services.set_savepoint("first")
            services.set_savepoint("second")
            services.release_savepoint(first)
            assert context.savepoints == []
        finally:
            services.rollback()

    def test_foreign_savepoint_rejected(self, services, person_table):
        services.start_transaction()
        try:
            with pytest.raises(TransactionError, match="is not part of the active transaction"):
                services.rollback_to_savepoint(Savepoint("elsewhere", "deadbeef"))
        finally:
            services.rollback()

    def test_savepoint_needs_transaction(self, services):
        with pytest.raises(TransactionError, match="No transaction in progress"):
            services.set_savepoint()

    def test_unsupported_dialect(self, provider, settings, person_table):
        services = DbServices(provider, NoSavepointDialect(), settings)
        services.start_transaction()
        try:
            with pytest.raises(TransactionError, match="Savepoints are not supported"):
                services.set_savepoint()
        finally:
            services.rollback()
