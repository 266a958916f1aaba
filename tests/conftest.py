"""
Shared pytest fixtures and configuration for dbspine tests.

This module provides:
- Handler registry cleanup for test isolation
- Settings with retry delays switched off
- File-backed SQLite providers and services in ``tmp_path``

Usage:
    def test_store(services, person_table):
        services.store_object(Person(name="Ada"))
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from dbspine.core.connection import SqliteConnectionProvider
from dbspine.core.settings import DbSettings, reset_settings_cache
from dbspine.engine import DbServices
from dbspine.mapping import clear_class_handlers
from tests._support.records import Account, Address, AuditEntry, Person


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_registries(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Fresh handler registry, settings cache and logging context per test."""
    for key in ("DBSPINE_DATABASE_URL", "DBSPINE_DIALECT", "DBSPINE_SLOW_QUERY_THRESHOLD"):
        monkeypatch.delenv(key, raising=False)
    clear_class_handlers()
    reset_settings_cache()
    structlog.contextvars.clear_contextvars()
    yield
    clear_class_handlers()
    reset_settings_cache()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Settings and services
# =============================================================================


@pytest.fixture
def settings() -> DbSettings:
    return DbSettings(
        _env_file=None,
        retry_min_delay=0.0,
        retry_max_delay=0.0,
        max_transaction_attempts=5,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "dbspine-test.db"


@pytest.fixture
def provider(db_path: Path) -> Iterator[SqliteConnectionProvider]:
    provider = SqliteConnectionProvider(db_path, timeout=0.5)
    yield provider
    provider.close()


@pytest.fixture
def services(provider: SqliteConnectionProvider, settings: DbSettings) -> DbServices:
    return DbServices(provider, settings=settings)


@pytest.fixture
def person_table(services: DbServices) -> type[Person]:
    services.create_table(Person)
    return Person


@pytest.fixture
def schema(services: DbServices) -> DbServices:
    """Services with every test table created."""
    for record_type in (Person, Address, Account, AuditEntry):
        services.create_table(record_type)
    return services
