"""FastAPI dependencies for services, admin auth and the request gate."""

from app.deps.integration import (
    IntegrationGateError,
    check_integration_health,
    handle_integration_failure,
    integration_gate_exception_handler,
)
from app.deps.security import require_admin_token
from app.deps.services import (
    get_escalation_sink,
    get_health_tracker,
    get_integration_clients,
    get_job_queue,
    get_request_gate,
    get_scheduler,
)

__all__ = [
    "IntegrationGateError",
    "check_integration_health",
    "handle_integration_failure",
    "integration_gate_exception_handler",
    "require_admin_token",
    "get_escalation_sink",
    "get_health_tracker",
    "get_integration_clients",
    "get_job_queue",
    "get_request_gate",
    "get_scheduler",
]
