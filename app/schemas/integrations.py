"""Integration health request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.jobs.types import IntegrationType
from app.services.integrations.health import (
    IntegrationStatus,
    IntegrationStatusRecord,
    StatusUpdate,
)


class IntegrationStatusResponse(BaseModel):
    integration: IntegrationType
    status: IntegrationStatus
    consecutive_failures: int
    last_error: Optional[str] = None
    last_transition_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    response_time_ms: Optional[float] = None
    opened_at: Optional[datetime] = None
    total_failures: int
    total_successes: int
    maintenance_reason: Optional[str] = None
    has_health_checker: bool = False

    @classmethod
    def from_record(
        cls, record: IntegrationStatusRecord, has_health_checker: bool = False
    ) -> "IntegrationStatusResponse":
        return cls(
            integration=record.integration,
            status=record.status,
            consecutive_failures=record.consecutive_failures,
            last_error=record.last_error,
            last_transition_at=record.last_transition_at,
            last_checked_at=record.last_checked_at,
            response_time_ms=record.response_time_ms,
            opened_at=record.opened_at,
            total_failures=record.total_failures,
            total_successes=record.total_successes,
            maintenance_reason=record.maintenance_reason,
            has_health_checker=has_health_checker,
        )


class StatusUpdateResponse(BaseModel):
    integration: IntegrationType
    previous_status: IntegrationStatus
    status: IntegrationStatus
    reason: str
    timestamp: datetime
    error: Optional[str] = None

    @classmethod
    def from_update(cls, update: StatusUpdate) -> "StatusUpdateResponse":
        return cls(
            integration=update.integration,
            previous_status=update.previous_status,
            status=update.status,
            reason=update.reason,
            timestamp=update.timestamp,
            error=update.error,
        )


class MaintenanceRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ProxyResponse(BaseModel):
    """Result of a gated call forwarded to an integration."""

    integration: IntegrationType
    status_code: int
    data: object = None
    fallback: bool = False
