"""Job lifecycle events and the listener interface.

The queue notifies listeners synchronously after each state change.
Listeners are registered explicitly and removed with the callable returned
from JobQueue.add_listener().
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol

from app.jobs.models import QueuedJob, utc_now


class JobEventType(str, Enum):
    """Lifecycle notifications emitted by the job queue."""

    JOB_ADDED = "job_added"
    JOB_PROCESSING = "job_processing"
    JOB_ATTEMPT_FAILED = "job_attempt_failed"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"
    JOB_RETRY_SCHEDULED = "job_retry_scheduled"
    JOB_MANUAL_INTERVENTION = "job_manual_intervention"
    JOB_PAYLOAD_MODIFIED = "job_payload_modified"
    JOBS_CLEANED_UP = "jobs_cleaned_up"


@dataclass
class JobEvent:
    """A single queue notification."""

    type: JobEventType
    job_id: Optional[str] = None
    job: Optional[QueuedJob] = None
    data: dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=utc_now)


class JobEventListener(Protocol):
    """Anything that wants queue notifications."""

    def on_job_event(self, event: JobEvent) -> None:
        ...
