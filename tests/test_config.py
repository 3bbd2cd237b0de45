"""Tests for settings loading and validation."""

import pytest

from leaguetable.config import AutomationSettings, load_settings
from leaguetable.errors import ConfigurationError


class TestLoadSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEAGUETABLE_QUEUE_CONCURRENCY", raising=False)
        settings = AutomationSettings(_env_file=None)
        assert settings.QUEUE_CONCURRENCY == 3
        assert settings.QUEUE_MAX_RETRIES == 3
        assert settings.TRIGGER_ENABLED is True
        assert settings.SNAPSHOT_COMPRESSION is True
        assert settings.QUEUE_COALESCE_PENDING is False

    def test_overrides(self):
        settings = load_settings(QUEUE_CONCURRENCY=8, LOG_LEVEL="debug")
        assert settings.QUEUE_CONCURRENCY == 8
        assert settings.LOG_LEVEL == "DEBUG"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("LEAGUETABLE_QUEUE_CONCURRENCY", "5")
        monkeypatch.setenv("LEAGUETABLE_TRIGGER_ENABLED", "false")
        settings = load_settings()
        assert settings.QUEUE_CONCURRENCY == 5
        assert settings.TRIGGER_ENABLED is False

    def test_invalid_concurrency(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(QUEUE_CONCURRENCY=0)
        fields = [v["field"] for v in exc_info.value.violations]
        assert fields == ["QUEUE_CONCURRENCY"]
        assert exc_info.value.to_dict()["kind"] == "configuration_error"

    def test_several_violations_reported(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(QUEUE_MAX_RETRIES=-1, HEALTH_ERROR_RATE_UNHEALTHY=150)
        fields = {v["field"] for v in exc_info.value.violations}
        assert fields == {"QUEUE_MAX_RETRIES", "HEALTH_ERROR_RATE_UNHEALTHY"}

    def test_backoff_max_below_base(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(QUEUE_BACKOFF_BASE_SECONDS=10, QUEUE_BACKOFF_MAX_SECONDS=1)
        assert exc_info.value.violations[0]["field"] == "QUEUE_BACKOFF_MAX_SECONDS"

    def test_unknown_log_level(self):
        with pytest.raises(ConfigurationError):
            load_settings(LOG_LEVEL="chatty")
