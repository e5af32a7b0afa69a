"""Job queue request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.core.resilience import RetryConfig
from app.jobs.models import ManualIntervention, QueuedJob, QueueStats
from app.jobs.types import IntegrationType, InterventionAction, JobPriority, JobStatus


class JobCreateRequest(BaseModel):
    """Request to enqueue a job."""

    id: Optional[str] = Field(
        None, min_length=1, description="Job id (generated when omitted)"
    )
    type: str = Field(..., min_length=1, description="Processor job type")
    priority: JobPriority = Field(default=JobPriority.NORMAL)
    payload: dict[str, Any] = Field(default_factory=dict)
    integration: IntegrationType = Field(..., description="Target integration")
    retry_config: Optional[RetryConfig] = Field(
        None, description="Retry policy (integration default when omitted)"
    )
    scheduled_for: Optional[datetime] = Field(
        None, description="Earliest time the job may run"
    )
    timeout_seconds: Optional[float] = Field(
        None, gt=0, description="Per-attempt timeout"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobErrorResponse(BaseModel):
    message: str
    retryable: bool
    code: Optional[str] = None


class JobResponse(BaseModel):
    """A queued job and its execution state."""

    id: str
    type: str
    status: JobStatus
    priority: JobPriority
    integration: IntegrationType
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    created_at: datetime
    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    last_error: Optional[JobErrorResponse] = None
    result: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_job(cls, job: QueuedJob) -> "JobResponse":
        last_error = None
        if job.last_error is not None:
            last_error = JobErrorResponse(
                message=job.last_error.message,
                retryable=job.last_error.retryable,
                code=job.last_error.code,
            )
        return cls(
            id=job.id,
            type=job.type,
            status=job.status,
            priority=job.priority,
            integration=job.integration,
            payload=dict(job.definition.payload),
            attempts=job.attempts,
            max_attempts=job.definition.retry_config.max_attempts,
            created_at=job.created_at,
            scheduled_for=job.definition.scheduled_for,
            started_at=job.started_at,
            completed_at=job.completed_at,
            next_retry_at=job.next_retry_at,
            last_error=last_error,
            result=job.result,
            metadata=dict(job.metadata),
        )


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int


class CancelJobRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ManualInterventionRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class JobActionResponse(BaseModel):
    """Outcome of a job mutation."""

    job_id: str
    success: bool
    status: JobStatus


class QueueStatsResponse(BaseModel):
    total_jobs: int
    counts: dict[str, int]
    average_processing_seconds: float
    throughput_last_hour: int
    active_jobs: int
    max_concurrent: int

    @classmethod
    def from_stats(cls, stats: QueueStats) -> "QueueStatsResponse":
        return cls(
            total_jobs=stats.total_jobs,
            counts=dict(stats.counts),
            average_processing_seconds=round(stats.average_processing_seconds, 3),
            throughput_last_hour=stats.throughput_last_hour,
            active_jobs=stats.active_jobs,
            max_concurrent=stats.max_concurrent,
        )


class CleanupResponse(BaseModel):
    removed: int
    max_age_hours: float


class InterventionResponse(BaseModel):
    job_id: str
    reason: str
    requested_at: datetime
    requested_by: str
    action: Optional[InterventionAction] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    modified_payload: Optional[dict[str, Any]] = None
    notes: Optional[str] = None

    @classmethod
    def from_intervention(cls, item: ManualIntervention) -> "InterventionResponse":
        return cls(
            job_id=item.job_id,
            reason=item.reason,
            requested_at=item.requested_at,
            requested_by=item.requested_by,
            action=item.action,
            resolved_at=item.resolved_at,
            resolved_by=item.resolved_by,
            modified_payload=item.modified_payload,
            notes=item.notes,
        )


class ResolveInterventionRequest(BaseModel):
    """Operator decision for a job awaiting manual intervention."""

    action: InterventionAction
    modified_payload: Optional[dict[str, Any]] = None
    notes: Optional[str] = Field(None, max_length=2000)
