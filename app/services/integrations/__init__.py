"""Integration health, clients and policies.

The request gate lives in app.services.integrations.gate; it depends on the
job queue and is imported from there directly.
"""

from app.services.integrations.clients import (
    HttpIntegrationClient,
    IntegrationClients,
    IntegrationNotConfiguredError,
)
from app.services.integrations.health import (
    IntegrationHealthTracker,
    IntegrationStatus,
    IntegrationStatusRecord,
    StatusUpdate,
)
from app.services.integrations.policies import (
    GatePolicy,
    HealthPolicy,
    default_gate_policy,
    default_health_policies,
)

__all__ = [
    "HttpIntegrationClient",
    "IntegrationClients",
    "IntegrationNotConfiguredError",
    "IntegrationHealthTracker",
    "IntegrationStatus",
    "IntegrationStatusRecord",
    "StatusUpdate",
    "GatePolicy",
    "HealthPolicy",
    "default_gate_policy",
    "default_health_policies",
]
