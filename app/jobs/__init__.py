"""Job system package.

The queue, scheduler and escalation sink are imported from their modules
(app.jobs.queue, app.jobs.worker, app.jobs.escalation).
"""

from app.jobs.types import IntegrationType, InterventionAction, JobPriority, JobStatus
from app.jobs.models import (
    JobDefinition,
    JobError,
    ManualIntervention,
    QueuedJob,
    QueueStats,
)
from app.jobs.events import JobEvent, JobEventListener, JobEventType
from app.jobs.registry import ProcessorRegistry

__all__ = [
    "IntegrationType",
    "InterventionAction",
    "JobPriority",
    "JobStatus",
    "JobDefinition",
    "JobError",
    "ManualIntervention",
    "QueuedJob",
    "QueueStats",
    "JobEvent",
    "JobEventListener",
    "JobEventType",
    "ProcessorRegistry",
]
