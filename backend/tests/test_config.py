"""Tests for application configuration and settings.

This module contains unit tests for the Settings Pydantic model and the
get_settings cache in civilytix.core.config. It ensures that default
values, environment overrides and validation work as expected.
"""

from __future__ import annotations

import pydantic
import pytest

from civilytix.core import config


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that Settings has expected default values."""
    for name in ("STORAGE_BACKEND", "RESULT_POLICY", "RESULT_BASE_URL",
                 "IDENTITY_HEADER"):
        monkeypatch.delenv(name, raising=False)
    settings = config.Settings()
    assert settings.storage_backend == "memory"
    assert settings.result_policy == "promise"
    assert settings.result_base_url == "https://storage.cloud.com/results"
    assert settings.identity_header == "user-id"
    assert settings.allow_origins == ["*"]
    assert settings.enable_admin_routes is True


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that environment variables override defaults."""
    monkeypatch.setenv("STORAGE_BACKEND", "postgres")
    monkeypatch.setenv("RESULT_POLICY", "await")
    monkeypatch.setenv("DB_POOL_MAX_SIZE", "4")
    settings = config.Settings()
    assert settings.storage_backend == "postgres"
    assert settings.result_policy == "await"
    assert settings.db_pool_max_size == 4


def test_settings_strip_result_base_url_slash() -> None:
    """Test that a trailing slash on the result base URL is dropped."""
    settings = config.Settings(result_base_url="https://bucket.example/out/")
    assert settings.result_base_url == "https://bucket.example/out"


def test_settings_reject_unknown_policy() -> None:
    """Test that only the known result policies are accepted."""
    with pytest.raises(pydantic.ValidationError):
        config.Settings(result_policy="later")  # type: ignore[arg-type]


def test_get_settings_cached() -> None:
    """Test that get_settings returns cached instance."""
    config.get_settings.cache_clear()
    settings1 = config.get_settings()
    settings2 = config.get_settings()
    assert settings1 is settings2
    config.get_settings.cache_clear()
