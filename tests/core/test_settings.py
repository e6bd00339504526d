"""Tests for MedallionSettings and load_settings."""

from __future__ import annotations

import pytest

from medallion.core.errors import ConfigError
from medallion.core.settings import (
    DEFAULT_ENTITY_SOURCE,
    DEFAULT_SOURCE,
    BackoffKind,
    MedallionSettings,
    StorageBackend,
    load_settings,
)


class TestDefaults:
    def test_defaults(self):
        settings = load_settings()
        assert settings.schedule_interval == 60.0
        assert settings.fetch_retries == 3
        assert settings.settle_delay_range == (20.0, 30.0)
        assert settings.fetch_backoff == BackoffKind.FIXED
        assert settings.storage_backend == StorageBackend.MEMORY

    def test_overrides(self):
        settings = load_settings(fetch_retries=5, fetch_backoff="exponential")
        assert settings.fetch_retries == 5
        assert settings.fetch_backoff == BackoffKind.EXPONENTIAL


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MEDALLION_SCHEDULE_INTERVAL", "15")
        monkeypatch.setenv("MEDALLION_STORAGE_BACKEND", "sqlite")
        settings = MedallionSettings()
        assert settings.schedule_interval == 15.0
        assert settings.storage_backend == StorageBackend.SQLITE

    def test_env_tuple_and_list(self, monkeypatch):
        monkeypatch.setenv("MEDALLION_SETTLE_DELAY_RANGE", "[1, 2]")
        monkeypatch.setenv("MEDALLION_ENTITIES", '["Paris", "Rome"]')
        settings = MedallionSettings()
        assert settings.settle_delay_range == (1.0, 2.0)
        assert settings.entities == ["Paris", "Rome"]


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"schedule_interval": 0},
            {"fetch_timeout": -1},
            {"fetch_retries": 0},
            {"materialize_retries": 0},
            {"fetch_retry_interval": -0.5},
            {"settle_delay_range": (30, 20)},
            {"settle_delay_range": (-1, 5)},
            {"log_format": "xml"},
        ],
    )
    def test_invalid_values_raise_config_error(self, overrides):
        with pytest.raises(ConfigError) as exc_info:
            load_settings(**overrides)
        assert exc_info.value.errors
        assert exc_info.value.retryable is False

    def test_error_lists_field(self):
        with pytest.raises(ConfigError) as exc_info:
            load_settings(fetch_retries=0)
        fields = [e["field"] for e in exc_info.value.errors]
        assert "fetch_retries" in fields

    def test_zero_retry_interval_allowed(self):
        assert load_settings(fetch_retry_interval=0).fetch_retry_interval == 0


class TestSourceRef:
    def test_default_source_without_entities(self):
        assert load_settings().source_ref == DEFAULT_SOURCE

    def test_default_source_switches_to_per_entity_form(self):
        assert load_settings(entities=["Paris"]).source_ref == DEFAULT_ENTITY_SOURCE

    def test_explicit_source_is_kept(self):
        settings = load_settings(source="my.feeds:fetch_city", entities=["Paris"])
        assert settings.source_ref == "my.feeds:fetch_city"
