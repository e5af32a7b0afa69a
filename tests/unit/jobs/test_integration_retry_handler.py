"""Tests for the integration_retry job handler."""

import json

import httpx
import pytest

from app.jobs.handlers import register_default_processors
from app.jobs.handlers.integration_retry import make_integration_retry_processor
from app.jobs.models import JobDefinition
from app.jobs.registry import ProcessorRegistry
from app.jobs.types import IntegrationType
from app.services.integrations.clients import (
    IntegrationClients,
    IntegrationNotConfiguredError,
)
from app.services.integrations.gate import INTEGRATION_RETRY_JOB_TYPE


def _replay_job(integration=IntegrationType.EMAIL) -> JobDefinition:
    return JobDefinition(
        id="integration_retry_email_abc",
        type=INTEGRATION_RETRY_JOB_TYPE,
        integration=integration,
        payload={
            "method": "POST",
            "path": "/messages",
            "body": {"to": "ops@example.com"},
            "query": {"dry_run": "false"},
            "headers": {"content-type": "application/json"},
            "integration": integration.value,
        },
    )


@pytest.mark.asyncio
async def test_replays_request():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202, json={"message_id": "m-1"})

    clients = IntegrationClients.from_base_urls(
        {"email": "https://mail.internal"}, transport=httpx.MockTransport(handler)
    )
    processor = make_integration_retry_processor(clients)

    result = await processor(_replay_job(), {"attempt": 1})

    assert result["status_code"] == 202
    assert result["data"] == {"message_id": "m-1"}
    assert result["duration_ms"] >= 0

    request = captured[0]
    assert request.method == "POST"
    assert request.url.path == "/messages"
    assert request.url.params["dry_run"] == "false"
    assert json.loads(request.content) == {"to": "ops@example.com"}
    await clients.aclose()


@pytest.mark.asyncio
async def test_unconfigured_integration_is_terminal():
    processor = make_integration_retry_processor(IntegrationClients())

    with pytest.raises(IntegrationNotConfiguredError) as exc_info:
        await processor(_replay_job(IntegrationType.PDF), {"attempt": 1})

    assert exc_info.value.retryable is False


def test_register_default_processors():
    registry = ProcessorRegistry()
    register_default_processors(registry, IntegrationClients())

    assert registry.job_types == [INTEGRATION_RETRY_JOB_TYPE]
