"""Job system exceptions."""

from typing import Optional


class JobValidationError(Exception):
    """Raised when a job definition fails validation. Never retried."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or []
        super().__init__(message)


class JobNotFoundError(Exception):
    """Raised when a job id is not in the queue."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class ProcessorNotFoundError(Exception):
    """Raised when no processor is registered for a job type. Terminal."""

    retryable = False

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No processor registered for job type: {job_type}")


class InvalidTransitionError(Exception):
    """Raised when a job status transition is not allowed."""

    def __init__(self, job_id: str, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Job {job_id} cannot transition from {from_status} to {to_status}"
        )


class InterventionNotFoundError(Exception):
    """Raised when no pending manual intervention exists for a job."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"No pending manual intervention for job {job_id}")


class InterventionError(Exception):
    """Raised when a manual intervention cannot be resolved as requested."""
