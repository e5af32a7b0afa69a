"""Unit tests for app.config module."""

import os
from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError


def test_queue_defaults():
    """Test job queue config defaults."""
    from app.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()

    assert settings.queue_tick_interval_s == 5.0
    assert settings.queue_max_concurrent == 5
    assert settings.queue_job_retention_hours == 24.0
    assert settings.job_retention == timedelta(hours=24)
    assert settings.queue_autostart is True
    assert get_settings() is settings

    get_settings.cache_clear()


def test_gate_and_health_defaults():
    from app.config import Settings

    settings = Settings()
    assert settings.health_degraded_threshold == 1
    assert settings.health_recovery_trial_calls == 3
    assert settings.gate_failed_retry_after_s == 30.0
    assert settings.gate_recovering_retry_after_s == 60.0
    assert settings.gate_maintenance_retry_after_s == 300.0
    assert settings.integration_base_urls == {}
    assert settings.gate_fallback_integrations == []


def test_env_overrides():
    from app.config import Settings

    with patch.dict(
        os.environ,
        {
            "QUEUE_MAX_CONCURRENT": "10",
            "QUEUE_JOB_RETENTION_HOURS": "2",
            "INTEGRATION_BASE_URLS": '{"email": "https://mail.internal"}',
        },
    ):
        settings = Settings()

    assert settings.queue_max_concurrent == 10
    assert settings.job_retention == timedelta(hours=2)
    assert settings.integration_base_urls == {"email": "https://mail.internal"}


def test_unknown_integration_rejected():
    from app.config import Settings

    with patch.dict(
        os.environ,
        {"INTEGRATION_BASE_URLS": '{"fax": "https://fax.internal"}'},
    ):
        with pytest.raises(ValidationError, match="fax"):
            Settings()


def test_max_concurrent_must_be_positive():
    from app.config import Settings

    with patch.dict(os.environ, {"QUEUE_MAX_CONCURRENT": "0"}):
        with pytest.raises(ValidationError):
            Settings()


def test_gate_fallback_integrations():
    from app.config import Settings

    with patch.dict(os.environ, {"GATE_FALLBACK_INTEGRATIONS": '["ai", "pdf"]'}):
        assert Settings().gate_fallback_integrations == ["ai", "pdf"]

    with patch.dict(os.environ, {"GATE_FALLBACK_INTEGRATIONS": '["fax"]'}):
        with pytest.raises(ValidationError, match="fax"):
            Settings()
