"""Service dependencies.

Services are built once in the application lifespan and stored on
app.state; handlers receive them through these dependencies, and tests
swap them with app.dependency_overrides.
"""

from fastapi import HTTPException, Request, status

from app.jobs.escalation import EscalationSink
from app.jobs.queue import JobQueue
from app.jobs.worker import QueueScheduler
from app.services.integrations.clients import IntegrationClients
from app.services.integrations.gate import RequestGate
from app.services.integrations.health import IntegrationHealthTracker


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service not initialized: {name}",
        )
    return service


def get_job_queue(request: Request) -> JobQueue:
    return _state(request, "job_queue")


def get_scheduler(request: Request) -> QueueScheduler:
    return _state(request, "scheduler")


def get_health_tracker(request: Request) -> IntegrationHealthTracker:
    return _state(request, "health_tracker")


def get_request_gate(request: Request) -> RequestGate:
    return _state(request, "request_gate")


def get_escalation_sink(request: Request) -> EscalationSink:
    return _state(request, "escalation_sink")


def get_integration_clients(request: Request) -> IntegrationClients:
    return _state(request, "integration_clients")
