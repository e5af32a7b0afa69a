"""Escalation sink for jobs awaiting manual intervention.

Listens to queue events and keeps one ManualIntervention record per job that
entered MANUAL_INTERVENTION. Records are resolved only by an operator call to
resolve(), or closed when the job is retried or cancelled through the queue.
"""

from typing import Any, Optional

import structlog

from app.jobs.errors import InterventionError, InterventionNotFoundError
from app.jobs.events import JobEvent, JobEventType
from app.jobs.models import ManualIntervention, utc_now
from app.jobs.queue import JobQueue
from app.jobs.types import InterventionAction, JobStatus

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 1000


class EscalationSink:
    """Registry of manual interventions, fed by queue events."""

    def __init__(self, queue: JobQueue, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self._queue = queue
        self._pending: dict[str, ManualIntervention] = {}
        self._history: list[ManualIntervention] = []
        self._history_limit = history_limit
        self._unsubscribe = queue.add_listener(self)

    def close(self) -> None:
        """Stop listening to the queue."""
        self._unsubscribe()

    # =========================================================================
    # Listener
    # =========================================================================

    def on_job_event(self, event: JobEvent) -> None:
        if event.job_id is None:
            return

        if event.type == JobEventType.JOB_MANUAL_INTERVENTION:
            if event.job_id in self._pending:
                return
            intervention = ManualIntervention(
                job_id=event.job_id,
                reason=event.data.get("reason", "Manual intervention requested"),
                requested_at=event.ts,
                requested_by=event.data.get("requested_by", "system"),
            )
            self._pending[event.job_id] = intervention
            logger.warning(
                "manual_intervention_opened",
                job_id=event.job_id,
                reason=intervention.reason,
                requested_by=intervention.requested_by,
            )

        elif event.type in (JobEventType.JOB_RETRY_SCHEDULED, JobEventType.JOB_CANCELLED):
            # Resolved outside the sink
            intervention = self._pending.get(event.job_id)
            if intervention is None:
                return
            action = (
                InterventionAction.RETRY
                if event.type == JobEventType.JOB_RETRY_SCHEDULED
                else InterventionAction.CANCEL
            )
            self._close(intervention, action, resolved_by="queue")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_pending(self) -> list[ManualIntervention]:
        """Pending interventions, oldest first."""
        return sorted(self._pending.values(), key=lambda i: i.requested_at)

    def get(self, job_id: str) -> Optional[ManualIntervention]:
        """Pending record for a job, else its most recent resolved record."""
        if job_id in self._pending:
            return self._pending[job_id]
        for intervention in reversed(self._history):
            if intervention.job_id == job_id:
                return intervention
        return None

    def get_history(self, limit: int = 100) -> list[ManualIntervention]:
        """Resolved interventions, most recent first."""
        return list(reversed(self._history))[:limit]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # =========================================================================
    # Resolution
    # =========================================================================

    def _close(
        self,
        intervention: ManualIntervention,
        action: InterventionAction,
        resolved_by: str,
        modified_payload: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> ManualIntervention:
        intervention.action = action
        intervention.resolved_at = utc_now()
        intervention.resolved_by = resolved_by
        intervention.modified_payload = modified_payload
        intervention.notes = notes

        self._pending.pop(intervention.job_id, None)
        self._history.append(intervention)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        logger.info(
            "manual_intervention_resolved",
            job_id=intervention.job_id,
            action=action.value,
            resolved_by=resolved_by,
        )
        return intervention

    def resolve(
        self,
        job_id: str,
        action: InterventionAction,
        modified_payload: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
        resolved_by: str = "operator",
    ) -> ManualIntervention:
        """Apply an operator decision to a pending intervention.

        Raises:
            InterventionNotFoundError: No pending intervention for job_id
            InterventionError: Job is not awaiting intervention, or modify
                was requested without a payload
        """
        intervention = self._pending.get(job_id)
        if intervention is None:
            raise InterventionNotFoundError(job_id)

        job = self._queue.get_job(job_id)
        if job is None or job.status != JobStatus.MANUAL_INTERVENTION:
            raise InterventionError(
                f"Job {job_id} is not awaiting manual intervention"
            )
        if action == InterventionAction.MODIFY and modified_payload is None:
            raise InterventionError("modify requires a modified payload")

        # Close first so the queue's own events don't close it as "queue"
        self._close(
            intervention,
            action,
            resolved_by=resolved_by,
            modified_payload=modified_payload,
            notes=notes,
        )

        if action == InterventionAction.RETRY:
            self._queue.retry_job(job_id)
        elif action == InterventionAction.SKIP:
            job.metadata["resolution"] = "skip"
            self._queue.cancel_job(job_id, reason=notes or "Skipped by operator")
        elif action == InterventionAction.CANCEL:
            self._queue.cancel_job(job_id, reason=notes or "Cancelled by operator")
        else:
            self._queue.modify_job_payload(job_id, modified_payload)
            self._queue.retry_job(job_id)

        return intervention
