"""Tests for the request gate FastAPI dependency and failure handler."""

import pytest
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from app.deps.integration import (
    IntegrationGateError,
    check_integration_health,
    handle_integration_failure,
    integration_gate_exception_handler,
)
from app.jobs.queue import JobQueue
from app.jobs.types import IntegrationType, JobPriority
from app.services.integrations.gate import GateDecision, RequestGate
from app.services.integrations.health import IntegrationHealthTracker

EMAIL = IntegrationType.EMAIL
PAYMENT = IntegrationType.PAYMENT


@pytest.fixture
def tracker():
    return IntegrationHealthTracker()


@pytest.fixture
def queue():
    return JobQueue()


@pytest.fixture
def client(tracker, queue):
    app = FastAPI()
    app.state.request_gate = RequestGate(tracker, queue)
    app.add_exception_handler(IntegrationGateError, integration_gate_exception_handler)

    @app.post("/send/{kind}")
    async def send(
        kind: str,
        request: Request,
        decision: GateDecision = Depends(check_integration_health(EMAIL)),
    ):
        async with handle_integration_failure(request, decision):
            if kind == "transient":
                raise ConnectionError("smtp reset")
            if kind == "terminal":
                raise ValueError("invalid recipient")
            if kind == "missing":
                raise HTTPException(status_code=404, detail="template not found")
        return {"sent": True, "status": decision.status.value}

    @app.post("/charge")
    async def charge(decision: GateDecision = Depends(check_integration_health(PAYMENT))):
        return {"charged": True}

    @app.get("/{integration}/ping")
    async def ping(decision: GateDecision = Depends(check_integration_health())):
        return {"integration": decision.integration.value}

    return TestClient(app)


def _open_circuit(tracker, integration=EMAIL):
    for _ in range(tracker.get_policy(integration).failure_threshold):
        tracker.report_failure(integration, ConnectionError("upstream down"))


def test_healthy_request_records_success(client, tracker):
    tracker.report_failure(EMAIL, ConnectionError("blip"))

    response = client.post("/send/ok", json={"to": "a@example.com"})

    assert response.status_code == 200
    assert response.json() == {"sent": True, "status": "degraded"}
    assert tracker.get_status(EMAIL).consecutive_failures == 0


def test_failed_integration_queues_request(client, tracker, queue):
    _open_circuit(tracker)

    response = client.post("/send/ok", json={"to": "a@example.com"})

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued"
    job = queue.get_job(body["job_id"])
    assert job.definition.payload["body"] == {"to": "a@example.com"}
    assert job.definition.payload["path"] == "/send/ok"


def test_failed_payment_rejected_with_retry_after(client, tracker):
    _open_circuit(tracker, PAYMENT)

    response = client.post("/charge")

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "30"
    assert response.json()["recovery"]["retry_after_seconds"] == 30.0


def test_inline_transient_failure_queued_for_retry(client, tracker, queue):
    response = client.post("/send/transient")

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued_for_retry"
    assert queue.get_job(body["job_id"]).priority == JobPriority.HIGH
    assert tracker.get_status(EMAIL).consecutive_failures == 1


def test_inline_terminal_failure_propagates(client, tracker, queue):
    with pytest.raises(ValueError):
        client.post("/send/terminal")

    assert len(queue) == 0
    assert tracker.get_status(EMAIL).consecutive_failures == 1


def test_http_exceptions_pass_through(client, tracker):
    response = client.post("/send/missing")

    assert response.status_code == 404
    assert tracker.get_status(EMAIL).consecutive_failures == 0


def test_integration_from_path(client):
    assert client.get("/ai/ping").json() == {"integration": "ai"}
    assert client.get("/fax/ping").status_code == 404
