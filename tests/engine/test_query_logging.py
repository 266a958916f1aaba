"""
Tests for statement timing and the query log.

Tests verify:
- QueryTimer measures, reports and renders parameters for logging
- Statements over the threshold are logged as slow_query at WARNING
- Failing statements are logged as query_failed and re-raised
"""

from __future__ import annotations

import sqlite3
import time
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from dbspine.core.settings import DbSettings
from dbspine.engine import DbServices
from dbspine.engine.timing import QueryTimer, timed_query
from tests._support.records import Person


class TestQueryTimer:
    def test_timed_block_stops_timer(self):
        with timed_query("SELECT 1") as timer:
            time.sleep(0.01)
        assert timer.ended_at is not None
        assert timer.duration_seconds >= 0.01
        assert timer.duration_ms == pytest.approx(timer.duration_seconds * 1000)

    def test_stopped_on_error(self):
        with pytest.raises(RuntimeError):
            with timed_query("SELECT 1") as timer:
                raise RuntimeError("boom")
        assert timer.ended_at is not None

    def test_is_slow(self):
        timer = QueryTimer("SELECT 1", started_at=10.0, ended_at=12.5)
        assert timer.is_slow(2.0)
        assert not timer.is_slow(2.5)

    def test_log_dict(self):
        timer = QueryTimer("SELECT * FROM person WHERE name=?", ["Ada", Decimal("1.5")], started_at=1.0, ended_at=1.0004)
        timer.add_metric("rows", 3)
        assert timer.to_log_dict() == {
            "time": 0.0,
            "query": "SELECT * FROM person WHERE name=?",
            "parameters": ["'Ada'", "Decimal('1.5')"],
            "rows": 3,
        }


class TestQueryLog:
    @pytest.fixture
    def slow_services(self, provider) -> DbServices:
        settings = DbSettings(_env_file=None, slow_query_threshold=0.0)
        services = DbServices(provider, settings=settings)
        services.create_table(Person)
        return services

    def test_fast_query_logged_at_debug(self, services, person_table):
        services.store_object(Person(name="Ada"))
        with capture_logs() as logs:
            services.retrieve_list(services.select_query(Person))
        (entry,) = [e for e in logs if e["event"] == "query"]
        assert entry["log_level"] == "debug"
        assert entry["query"] == "SELECT * FROM person"
        assert entry["result"] == "Person[1]"

    def test_slow_query_logged_at_warning(self, slow_services):
        with capture_logs() as logs:
            slow_services.select_int("SELECT COUNT(*) FROM person WHERE name=?", 0, "Ada")
        (entry,) = [e for e in logs if e["event"] == "slow_query"]
        assert entry["log_level"] == "warning"
        assert entry["parameters"] == ["'Ada'"]
        assert entry["result"] == "0"
        assert isinstance(entry["time"], float)

    def test_store_result_description(self, slow_services):
        with capture_logs() as logs:
            slow_services.store_object(Person(name="Ada"))
        insert = next(e for e in logs if e.get("query", "").startswith("INSERT"))
        assert insert["result"] == "(Person)1"

    def test_transient_failure_logged_at_debug(self, services):
        with capture_logs() as logs:
            with pytest.raises(sqlite3.OperationalError):
                services.execute_update_sql("UPDATE missing_table SET x=1")
        (entry,) = [e for e in logs if e["event"] == "query_failed"]
        assert entry["log_level"] == "debug"
        assert entry["error_type"] == "OperationalError"

    def test_integrity_failure_logged_at_error(self, services, person_table):
        services.execute_update_sql("INSERT INTO person (id, name) VALUES (1, 'Ada')")
        with capture_logs() as logs:
            with pytest.raises(sqlite3.IntegrityError):
                services.execute_update_sql("INSERT INTO person (id, name) VALUES (1, 'Ada')")
        (entry,) = [e for e in logs if e["event"] == "query_failed"]
        assert entry["log_level"] == "error"
        assert "UNIQUE" in entry["error"]

    def test_failed_statement_does_not_leave_transaction_open(self, services, person_table):
        with pytest.raises(sqlite3.IntegrityError):
            services.execute_update_sql("INSERT INTO person (id) VALUES (1)")
        assert not services.is_transaction_active()
        assert services.select_int("SELECT COUNT(*) FROM person") == 0
