"""Job system data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.resilience import RetryConfig
from app.jobs.types import (
    IntegrationType,
    InterventionAction,
    JobPriority,
    JobStatus,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobDefinition(BaseModel):
    """Immutable description of a unit of deferred work."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    priority: JobPriority = JobPriority.NORMAL
    payload: dict[str, Any] = Field(default_factory=dict)
    integration: IntegrationType
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    scheduled_for: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("scheduled_for", "created_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are treated as UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


@dataclass
class JobError:
    """Last error recorded on a job."""

    message: str
    retryable: bool
    stack: Optional[str] = None
    code: Optional[str] = None


@dataclass
class QueuedJob:
    """A job owned by the queue: definition plus mutable execution state."""

    definition: JobDefinition
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[JobError] = None
    next_retry_at: Optional[datetime] = None
    result: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def type(self) -> str:
        return self.definition.type

    @property
    def priority(self) -> JobPriority:
        return self.definition.priority

    @property
    def integration(self) -> IntegrationType:
        return self.definition.integration

    @property
    def created_at(self) -> datetime:
        return self.definition.created_at

    @property
    def retries_exhausted(self) -> bool:
        """True once no automatic attempt remains for a failed job."""
        if self.attempts >= self.definition.retry_config.max_attempts:
            return True
        return self.last_error is not None and not self.last_error.retryable

    @property
    def processing_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def is_due(self, now: datetime) -> bool:
        scheduled_for = self.definition.scheduled_for
        return scheduled_for is None or scheduled_for <= now


@dataclass
class ManualIntervention:
    """A job awaiting (or having received) an operator decision."""

    job_id: str
    reason: str
    requested_at: datetime = field(default_factory=utc_now)
    requested_by: str = "system"
    action: Optional[InterventionAction] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    modified_payload: Optional[dict[str, Any]] = None
    notes: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.action is not None


@dataclass
class QueueStats:
    """Aggregate view over the in-memory job store."""

    total_jobs: int
    counts: dict[str, int]
    average_processing_seconds: float
    throughput_last_hour: int
    active_jobs: int
    max_concurrent: int

    @property
    def pending_jobs(self) -> int:
        return self.counts.get(JobStatus.PENDING.value, 0)

    @property
    def processing_jobs(self) -> int:
        return self.counts.get(JobStatus.PROCESSING.value, 0)

    @property
    def completed_jobs(self) -> int:
        return self.counts.get(JobStatus.COMPLETED.value, 0)

    @property
    def failed_jobs(self) -> int:
        return self.counts.get(JobStatus.FAILED.value, 0)

    @property
    def cancelled_jobs(self) -> int:
        return self.counts.get(JobStatus.CANCELLED.value, 0)

    @property
    def manual_intervention_jobs(self) -> int:
        return self.counts.get(JobStatus.MANUAL_INTERVENTION.value, 0)
