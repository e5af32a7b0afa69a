"""Job system type definitions."""

from enum import Enum


class JobPriority(str, Enum):
    """Job priority tiers, ordered low < normal < high < critical."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank used for scheduling order (higher drains first)."""
        return _PRIORITY_RANK[self]

    @property
    def escalates(self) -> bool:
        """Whether a failed job at this priority goes to manual intervention."""
        return self in (JobPriority.HIGH, JobPriority.CRITICAL)

    def elevated(self) -> "JobPriority":
        """One step up, capped at critical."""
        order = list(JobPriority)
        return order[min(order.index(self) + 1, len(order) - 1)]


_PRIORITY_RANK = {
    JobPriority.LOW: 1,
    JobPriority.NORMAL: 2,
    JobPriority.HIGH: 3,
    JobPriority.CRITICAL: 4,
}


class JobStatus(str, Enum):
    """Job lifecycle statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    MANUAL_INTERVENTION = "manual_intervention"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (job won't change)."""
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED)

    def can_transition_to(self, other: "JobStatus") -> bool:
        """Check the lifecycle transition table."""
        return other in _TRANSITIONS[self]


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.MANUAL_INTERVENTION}
    ),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
            JobStatus.MANUAL_INTERVENTION,
        }
    ),
    JobStatus.FAILED: frozenset(
        {JobStatus.PENDING, JobStatus.MANUAL_INTERVENTION, JobStatus.CANCELLED}
    ),
    JobStatus.MANUAL_INTERVENTION: frozenset(
        {JobStatus.PENDING, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class IntegrationType(str, Enum):
    """External systems that jobs and gated requests target."""

    DATABASE = "database"
    EMAIL = "email"
    PAYMENT = "payment"
    STORAGE = "storage"
    AI = "ai"
    PDF = "pdf"
    AIRTABLE = "airtable"
    WEBHOOK = "webhook"


class InterventionAction(str, Enum):
    """Operator resolutions for a job awaiting manual intervention."""

    RETRY = "retry"
    SKIP = "skip"
    CANCEL = "cancel"
    MODIFY = "modify"
