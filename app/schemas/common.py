"""Common schemas: error responses, health checks."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    retryable: bool = Field(default=False, description="Whether error is retryable")


class IntegrationHealth(BaseModel):
    """Health summary for one integration."""

    status: str = Field(..., description="healthy/degraded/failed/recovering/maintenance")
    consecutive_failures: int = Field(..., description="Consecutive failure count")
    last_error: Optional[str] = Field(None, description="Most recent error message")
    last_transition_at: Optional[datetime] = Field(
        None, description="When the status last changed"
    )


class SchedulerHealth(BaseModel):
    """Queue scheduler state."""

    running: bool = Field(..., description="Whether the tick loop is running")
    active_jobs: int = Field(..., description="Jobs currently executing")
    max_concurrent: int = Field(..., description="Concurrency ceiling")
    pending_jobs: int = Field(..., description="Jobs waiting to run")
    manual_intervention_jobs: int = Field(
        ..., description="Jobs awaiting an operator decision"
    )


class HealthResponse(BaseModel):
    """Response for health endpoint."""

    status: str = Field(..., description="Overall service status (ok/degraded)")
    version: str = Field(..., description="Service version")
    git_sha: Optional[str] = Field(None, description="Deployed commit")
    scheduler: SchedulerHealth = Field(..., description="Queue scheduler state")
    integrations: dict[str, IntegrationHealth] = Field(
        ..., description="Health per integration"
    )
