"""Pydantic models for request/response validation.

Imports like `from app.schemas import X` re-export every schema.
"""

from app.schemas.common import (
    ErrorResponse,
    HealthResponse,
    IntegrationHealth,
    SchedulerHealth,
)
from app.schemas.integrations import (
    IntegrationStatusResponse,
    MaintenanceRequest,
    ProxyResponse,
    StatusUpdateResponse,
)
from app.schemas.jobs import (
    CancelJobRequest,
    CleanupResponse,
    InterventionResponse,
    JobActionResponse,
    JobCreateRequest,
    JobErrorResponse,
    JobListResponse,
    JobResponse,
    ManualInterventionRequest,
    QueueStatsResponse,
    ResolveInterventionRequest,
)

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "IntegrationHealth",
    "SchedulerHealth",
    "IntegrationStatusResponse",
    "MaintenanceRequest",
    "ProxyResponse",
    "StatusUpdateResponse",
    "CancelJobRequest",
    "CleanupResponse",
    "InterventionResponse",
    "JobActionResponse",
    "JobCreateRequest",
    "JobErrorResponse",
    "JobListResponse",
    "JobResponse",
    "ManualInterventionRequest",
    "QueueStatsResponse",
    "ResolveInterventionRequest",
]
