"""Tests for core.settings module.

Covers:
- DbSettings instantiation with defaults
- Environment variable override (DBSPINE_ prefix)
- Validation of numeric bounds and the retry window
- get_settings caching
"""

import pytest
from pydantic import ValidationError

from dbspine.core.settings import DbSettings, get_settings, reset_settings_cache


class TestDbSettingsDefaults:
    def test_default_database_url(self):
        s = DbSettings(_env_file=None)
        assert s.database_url == "sqlite:///:memory:"
        assert s.dialect is None

    def test_default_slow_query_threshold(self):
        assert DbSettings(_env_file=None).slow_query_threshold == 60.0

    def test_default_retry(self):
        s = DbSettings(_env_file=None)
        assert s.max_transaction_attempts == 100
        assert s.retry_min_delay == pytest.approx(0.010)
        assert s.retry_max_delay == pytest.approx(0.100)

    def test_default_query_building(self):
        s = DbSettings(_env_file=None)
        assert s.use_query_parameters is True
        assert s.inline_simple_literals is True
        assert s.separator == " "

    def test_default_logging(self):
        s = DbSettings(_env_file=None)
        assert s.log_level == "INFO"
        assert s.log_format == "console"


class TestDbSettingsEnvOverride:
    def test_threshold_from_env(self, monkeypatch):
        monkeypatch.setenv("DBSPINE_SLOW_QUERY_THRESHOLD", "2.5")
        assert DbSettings(_env_file=None).slow_query_threshold == 2.5

    def test_url_from_env(self, monkeypatch):
        monkeypatch.setenv("DBSPINE_DATABASE_URL", "postgresql://app@localhost/app")
        assert DbSettings(_env_file=None).database_url == "postgresql://app@localhost/app"

    def test_bool_from_env(self, monkeypatch):
        monkeypatch.setenv("DBSPINE_USE_QUERY_PARAMETERS", "false")
        assert DbSettings(_env_file=None).use_query_parameters is False

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("DBSPINE_MAX_TRANSACTION_ATTEMPTS=7\n")
        assert DbSettings(_env_file=env_file).max_transaction_attempts == 7


class TestDbSettingsValidation:
    def test_negative_threshold_rejected(self):
        with pytest.raises(ValidationError):
            DbSettings(_env_file=None, slow_query_threshold=-1)

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            DbSettings(_env_file=None, max_transaction_attempts=0)

    def test_inverted_retry_window_rejected(self):
        with pytest.raises(ValidationError, match="retry_max_delay"):
            DbSettings(_env_file=None, retry_min_delay=0.5, retry_max_delay=0.1)

    def test_unknown_log_format_rejected(self):
        with pytest.raises(ValidationError):
            DbSettings(_env_file=None, log_format="xml")


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_reset_rereads_environment(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("DBSPINE_SLOW_QUERY_THRESHOLD", "0.25")
        reset_settings_cache()
        second = get_settings()
        assert second is not first
        assert second.slow_query_threshold == 0.25
