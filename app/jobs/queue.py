"""In-memory job queue with priority scheduling and bounded concurrency.

The queue owns every QueuedJob. A scheduling tick (process_queue) selects due
PENDING jobs by priority, then age, and dispatches as many as fit under the
concurrency ceiling. Each dispatched job runs through the RetryExecutor as an
independent asyncio task; its outcome is folded back into the job record and
reported to the integration health tracker.

All mutation happens on the event loop thread, so no locking is needed.
"""

import asyncio
import itertools
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from app.core.resilience import (
    CancellationToken,
    RetryExecutor,
    RetryOutcome,
    RetryResult,
)
from app.jobs.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    JobValidationError,
    ProcessorNotFoundError,
)
from app.jobs.events import JobEvent, JobEventListener, JobEventType
from app.jobs.models import JobDefinition, JobError, QueuedJob, QueueStats, utc_now
from app.jobs.registry import JobProcessor, ProcessorRegistry
from app.jobs.types import IntegrationType, JobStatus
from app.services.integrations.clients import IntegrationNotConfiguredError
from app.services.integrations.health import IntegrationHealthTracker

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONCURRENT = 5

ESCALATION_REASON_EXHAUSTED = "High priority job failed after all retries"
ESCALATION_REASON_TERMINAL = "High priority job failed with a non-retryable error"


class JobQueue:
    """Priority job queue driving execution through a RetryExecutor."""

    def __init__(
        self,
        executor: Optional[RetryExecutor] = None,
        registry: Optional[ProcessorRegistry] = None,
        health_tracker: Optional[IntegrationHealthTracker] = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._executor = executor or RetryExecutor()
        self._registry = registry or ProcessorRegistry()
        self._health = health_tracker
        self._max_concurrent = max_concurrent

        self._jobs: dict[str, QueuedJob] = {}
        self._sequence: dict[str, int] = {}
        self._counter = itertools.count()
        self._active: set[str] = set()
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[JobEventListener] = []
        self._ticking = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def registry(self) -> ProcessorRegistry:
        return self._registry

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: JobEventListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(
        self,
        event_type: JobEventType,
        job: Optional[QueuedJob] = None,
        **data: Any,
    ) -> None:
        event = JobEvent(
            type=event_type,
            job_id=job.id if job else None,
            job=job,
            data=data,
        )
        for listener in list(self._listeners):
            try:
                listener.on_job_event(event)
            except Exception as e:
                logger.exception(
                    "job_listener_failed",
                    event_type=event_type.value,
                    listener=type(listener).__name__,
                    error=str(e),
                )

    # =========================================================================
    # Enqueue & processors
    # =========================================================================

    def register_processor(self, job_type: str, processor: JobProcessor) -> None:
        """Register the processor that executes jobs of job_type."""
        self._registry.register(job_type, processor)

    def add_job(self, definition: Union[JobDefinition, Mapping[str, Any]]) -> QueuedJob:
        """Validate a job definition and store it as PENDING.

        Raises:
            JobValidationError: Malformed definition or duplicate id
        """
        if not isinstance(definition, JobDefinition):
            try:
                definition = JobDefinition.model_validate(dict(definition))
            except ValidationError as e:
                errors = [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ]
                logger.warning("job_validation_failed", errors=errors)
                raise JobValidationError("Invalid job definition", errors) from e

        if definition.id in self._jobs:
            logger.warning("job_duplicate_id", job_id=definition.id)
            raise JobValidationError(
                f"Job {definition.id} already exists", ["id: duplicate job id"]
            )

        job = QueuedJob(definition=definition, metadata=dict(definition.metadata))
        self._jobs[job.id] = job
        self._sequence[job.id] = next(self._counter)

        logger.info(
            "job_added",
            job_id=job.id,
            job_type=job.type,
            priority=job.priority.value,
            integration=job.integration.value,
        )
        self._emit(JobEventType.JOB_ADDED, job)
        return job

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[QueuedJob]:
        return self._jobs.get(job_id)

    def require_job(self, job_id: str) -> QueuedJob:
        """Like get_job, but raises JobNotFoundError for unknown ids."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_jobs_by_status(self, status: JobStatus) -> list[QueuedJob]:
        return [job for job in self._jobs.values() if job.status == status]

    def get_jobs_by_integration(self, integration: IntegrationType) -> list[QueuedJob]:
        return [job for job in self._jobs.values() if job.integration == integration]

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        integration: Optional[IntegrationType] = None,
        limit: Optional[int] = None,
    ) -> list[QueuedJob]:
        """List jobs newest first, optionally filtered."""
        jobs = [
            job
            for job in self._jobs.values()
            if (status is None or job.status == status)
            and (integration is None or job.integration == integration)
        ]
        jobs.sort(key=lambda j: (j.created_at, self._sequence[j.id]), reverse=True)
        return jobs[:limit] if limit is not None else jobs

    def __len__(self) -> int:
        return len(self._jobs)

    # =========================================================================
    # Mutations
    # =========================================================================

    def _transition(self, job: QueuedJob, new_status: JobStatus) -> JobStatus:
        old_status = job.status
        if not old_status.can_transition_to(new_status):
            raise InvalidTransitionError(job.id, old_status.value, new_status.value)
        job.status = new_status
        logger.debug(
            "job_status_updated",
            job_id=job.id,
            old_status=old_status.value,
            new_status=new_status.value,
        )
        return old_status

    def _release(self, job_id: str, reason: str) -> None:
        """Signal an in-flight execution to stop and free its slot."""
        token = self._tokens.pop(job_id, None)
        if token is not None:
            token.cancel(reason)
        self._active.discard(job_id)

    def cancel_job(self, job_id: str, reason: Optional[str] = None) -> bool:
        """Cancel a job. Returns False for unknown or already-terminal jobs."""
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return False

        if job.status == JobStatus.PROCESSING:
            self._release(job_id, reason or "cancelled")

        old_status = self._transition(job, JobStatus.CANCELLED)
        job.completed_at = utc_now()
        job.next_retry_at = None
        if reason:
            job.metadata["cancellation_reason"] = reason

        logger.info(
            "job_cancelled",
            job_id=job_id,
            previous_status=old_status.value,
            reason=reason,
        )
        self._emit(
            JobEventType.JOB_CANCELLED,
            job,
            reason=reason,
            previous_status=old_status.value,
        )
        return True

    def retry_job(self, job_id: str) -> bool:
        """Re-admit a FAILED or MANUAL_INTERVENTION job to the pending pool."""
        job = self._jobs.get(job_id)
        if job is None or job.status not in (
            JobStatus.FAILED,
            JobStatus.MANUAL_INTERVENTION,
        ):
            return False

        old_status = self._transition(job, JobStatus.PENDING)
        job.attempts = 0
        job.last_error = None
        job.next_retry_at = None
        job.result = None
        job.started_at = None
        job.completed_at = None

        logger.info(
            "job_retry_scheduled", job_id=job_id, previous_status=old_status.value
        )
        self._emit(
            JobEventType.JOB_RETRY_SCHEDULED, job, previous_status=old_status.value
        )
        return True

    def mark_for_manual_intervention(
        self,
        job_id: str,
        reason: str,
        requested_by: str = "system",
    ) -> bool:
        """Move a non-terminal job to MANUAL_INTERVENTION."""
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return False
        if job.status == JobStatus.MANUAL_INTERVENTION:
            return True

        if job.status == JobStatus.PROCESSING:
            self._release(job_id, "manual intervention requested")

        old_status = self._transition(job, JobStatus.MANUAL_INTERVENTION)
        job.next_retry_at = None
        job.metadata["manual_intervention_reason"] = reason
        job.metadata["manual_intervention_requested_at"] = utc_now().isoformat()
        job.metadata["manual_intervention_requested_by"] = requested_by

        logger.warning(
            "job_manual_intervention",
            job_id=job_id,
            reason=reason,
            previous_status=old_status.value,
            requested_by=requested_by,
        )
        self._emit(
            JobEventType.JOB_MANUAL_INTERVENTION,
            job,
            reason=reason,
            requested_by=requested_by,
            previous_status=old_status.value,
        )
        return True

    def modify_job_payload(self, job_id: str, payload: dict[str, Any]) -> bool:
        """Replace the payload of a FAILED or MANUAL_INTERVENTION job."""
        job = self._jobs.get(job_id)
        if job is None or job.status not in (
            JobStatus.FAILED,
            JobStatus.MANUAL_INTERVENTION,
        ):
            return False

        job.definition = job.definition.model_copy(update={"payload": dict(payload)})
        job.metadata["payload_modified_at"] = utc_now().isoformat()

        logger.info("job_payload_modified", job_id=job_id)
        self._emit(JobEventType.JOB_PAYLOAD_MODIFIED, job)
        return True

    # =========================================================================
    # Statistics & housekeeping
    # =========================================================================

    def get_queue_stats(self) -> QueueStats:
        """Counts per status, average processing time and hourly throughput."""
        jobs = list(self._jobs.values())
        counts = {status.value: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status.value] += 1

        completed = [job for job in jobs if job.status == JobStatus.COMPLETED]
        durations = [
            job.processing_seconds
            for job in completed
            if job.processing_seconds is not None
        ]
        average = sum(durations) / len(durations) if durations else 0.0

        hour_ago = utc_now() - timedelta(hours=1)
        throughput = sum(
            1 for job in completed if job.completed_at and job.completed_at > hour_ago
        )

        return QueueStats(
            total_jobs=len(jobs),
            counts=counts,
            average_processing_seconds=average,
            throughput_last_hour=throughput,
            active_jobs=len(self._active),
            max_concurrent=self._max_concurrent,
        )

    def cleanup_old_jobs(self, max_age: timedelta = timedelta(hours=24)) -> int:
        """Delete terminal jobs created more than max_age ago."""
        cutoff = utc_now() - max_age
        removable = [
            job.id
            for job in self._jobs.values()
            if job.created_at < cutoff
            and job.id not in self._active
            and (
                job.status.is_terminal
                or (job.status == JobStatus.FAILED and job.retries_exhausted)
            )
        ]
        for job_id in removable:
            del self._jobs[job_id]
            del self._sequence[job_id]

        if removable:
            logger.info(
                "jobs_cleaned_up",
                count=len(removable),
                max_age_seconds=max_age.total_seconds(),
            )
            self._emit(JobEventType.JOBS_CLEANED_UP, job_ids=removable)
        return len(removable)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _select_due(self, now: datetime) -> list[QueuedJob]:
        due = [
            job
            for job in self._jobs.values()
            if job.status == JobStatus.PENDING
            and job.id not in self._active
            and job.is_due(now)
        ]
        due.sort(
            key=lambda j: (-j.priority.rank, j.created_at, self._sequence[j.id])
        )
        return due

    def process_queue(self) -> list[str]:
        """Run one scheduling tick. Returns the ids dispatched.

        Must be called from a running event loop.
        """
        if self._ticking:
            return []
        self._ticking = True
        try:
            capacity = self._max_concurrent - len(self._active)
            if capacity <= 0:
                return []

            selected = self._select_due(utc_now())[:capacity]
            for job in selected:
                self._dispatch(job)
            return [job.id for job in selected]
        finally:
            self._ticking = False

    def _dispatch(self, job: QueuedJob) -> None:
        self._transition(job, JobStatus.PROCESSING)
        job.started_at = utc_now()
        job.completed_at = None
        token = CancellationToken()
        self._tokens[job.id] = token
        self._active.add(job.id)

        logger.info(
            "job_processing",
            job_id=job.id,
            job_type=job.type,
            priority=job.priority.value,
            integration=job.integration.value,
        )
        self._emit(JobEventType.JOB_PROCESSING, job)

        task = asyncio.create_task(self._run_job(job, token), name=f"job:{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_job(self, job: QueuedJob, token: CancellationToken) -> None:
        definition = job.definition

        async def unit_of_work() -> Any:
            processor = self._registry.get(definition.type)
            ctx = {
                "job_id": definition.id,
                "attempt": job.attempts + 1,
                "cancel_token": token,
                "metadata": dict(job.metadata),
            }
            return await processor(definition, ctx)

        def on_attempt_failed(
            attempt: int,
            error: BaseException,
            retryable: bool,
            next_delay: Optional[float],
        ) -> None:
            if job.status != JobStatus.PROCESSING or token.cancelled:
                return
            job.attempts = attempt
            job.last_error = JobError(message=str(error), retryable=retryable)
            job.next_retry_at = (
                utc_now() + timedelta(seconds=next_delay)
                if next_delay is not None
                else None
            )
            self._emit(
                JobEventType.JOB_ATTEMPT_FAILED,
                job,
                attempt=attempt,
                error=str(error),
                retryable=retryable,
                next_delay_seconds=next_delay,
            )

        try:
            try:
                result = await self._executor.execute_with_retry(
                    definition.id,
                    unit_of_work,
                    definition.retry_config,
                    context={
                        "job_type": definition.type,
                        "integration": definition.integration.value,
                        "priority": definition.priority.value,
                    },
                    cancel_token=token,
                    on_attempt_failed=on_attempt_failed,
                    attempt_timeout=definition.timeout_seconds,
                )
            except Exception as e:
                logger.exception("job_execution_error", job_id=job.id, error=str(e))
                result = RetryResult(
                    outcome=RetryOutcome.FAILED,
                    attempts=max(job.attempts, 1),
                    total_time_seconds=0.0,
                    error=e,
                )
            self._apply_outcome(job, token, result)
        finally:
            if self._tokens.get(job.id) is token:
                del self._tokens[job.id]
                self._active.discard(job.id)

    def _apply_outcome(
        self,
        job: QueuedJob,
        token: CancellationToken,
        result: RetryResult,
    ) -> None:
        # Cancelled or escalated while running: outcome no longer applies
        if (
            token.cancelled
            or result.cancelled
            or self._jobs.get(job.id) is not job
            or job.status != JobStatus.PROCESSING
        ):
            logger.info(
                "job_outcome_discarded",
                job_id=job.id,
                status=job.status.value,
                outcome=result.outcome.value,
            )
            return

        job.attempts = result.attempts
        job.next_retry_at = None
        job.completed_at = utc_now()

        if result.success:
            self._transition(job, JobStatus.COMPLETED)
            job.result = result.result
            job.last_error = None
            if self._health is not None:
                self._health.report_success(
                    job.integration, response_time_seconds=result.total_time_seconds
                )
            logger.info(
                "job_completed",
                job_id=job.id,
                attempts=result.attempts,
                total_time_seconds=round(result.total_time_seconds, 3),
            )
            self._emit(
                JobEventType.JOB_COMPLETED,
                job,
                attempts=result.attempts,
                total_time_seconds=result.total_time_seconds,
            )
            return

        error = result.error
        self._transition(job, JobStatus.FAILED)
        job.last_error = JobError(
            message=result.error_message or "Job failed",
            stack=result.error_stack,
            code=type(error).__name__ if error else None,
            retryable=result.retryable,
        )

        if self._health is not None and not isinstance(
            error, (ProcessorNotFoundError, IntegrationNotConfiguredError)
        ):
            self._health.report_failure(
                job.integration,
                error or RuntimeError(job.last_error.message),
                {"job_id": job.id, "job_type": job.type},
            )

        logger.error(
            "job_failed",
            job_id=job.id,
            attempts=result.attempts,
            error=job.last_error.message,
            retryable=result.retryable,
        )
        self._emit(
            JobEventType.JOB_FAILED,
            job,
            attempts=result.attempts,
            error=job.last_error.message,
        )

        if job.priority.escalates:
            reason = (
                ESCALATION_REASON_EXHAUSTED
                if result.retryable
                else ESCALATION_REASON_TERMINAL
            )
            self.mark_for_manual_intervention(job.id, reason)

    async def join(self) -> None:
        """Wait until every dispatched execution has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Signal every in-flight execution to stop and wait for them."""
        for token in list(self._tokens.values()):
            token.cancel("queue shutdown")
        await self.join()
        logger.info("job_queue_shutdown", jobs=len(self._jobs))
