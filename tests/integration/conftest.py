"""Shared fixtures for integration tests.

Builds the full application with its real lifespan; the scheduler is not
autostarted so tests drive ticks explicitly.
"""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Test admin token - shared across integration tests
TEST_ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def admin_headers():
    """Headers with admin token for protected endpoints."""
    return {"X-Admin-Token": TEST_ADMIN_TOKEN, "X-Operator": "integration-test"}


@pytest.fixture
def test_app():
    """The application, with settings re-read under test environment."""
    from app.config import get_settings

    with patch.dict(
        os.environ,
        {"ADMIN_TOKEN": TEST_ADMIN_TOKEN, "QUEUE_AUTOSTART": "false"},
    ):
        get_settings.cache_clear()
        from app.main import app

        yield app
    get_settings.cache_clear()


@pytest.fixture
def client(test_app):
    """Test client running the application lifespan."""
    with TestClient(test_app) as client:
        yield client
