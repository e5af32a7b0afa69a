"""Job queue endpoints."""

from datetime import timedelta
from typing import Optional
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.config import Settings, get_settings
from app.deps.security import require_admin_token
from app.deps.services import get_job_queue
from app.jobs.defaults import default_retry_config
from app.jobs.errors import JobNotFoundError, JobValidationError
from app.jobs.models import QueuedJob
from app.jobs.queue import JobQueue
from app.jobs.types import IntegrationType, JobStatus
from app.schemas import (
    CancelJobRequest,
    CleanupResponse,
    JobActionResponse,
    JobCreateRequest,
    JobListResponse,
    JobResponse,
    ManualInterventionRequest,
    QueueStatsResponse,
)

router = APIRouter(prefix="/jobs")
logger = structlog.get_logger(__name__)


def _get_or_404(queue: JobQueue, job_id: str) -> QueuedJob:
    try:
        return queue.require_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _conflict(job: QueuedJob, action: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Cannot {action} job {job.id} in status {job.status.value}",
    )


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Job queued"},
        422: {"description": "Invalid job definition"},
    },
)
async def create_job(
    request: JobCreateRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> JobResponse:
    """
    Enqueue a job.

    The retry policy defaults to the target integration's configuration.
    The job runs on a later scheduler tick, never inline.
    """
    definition = request.model_dump(exclude_none=True)
    definition.setdefault("id", f"{request.type}_{uuid4().hex[:12]}")
    if request.retry_config is None:
        definition["retry_config"] = default_retry_config(request.integration)
    else:
        definition["retry_config"] = request.retry_config

    try:
        job = queue.add_job(definition)
    except JobValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "errors": e.errors},
        )
    return JobResponse.from_job(job)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    integration: Optional[IntegrationType] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    queue: JobQueue = Depends(get_job_queue),
) -> JobListResponse:
    """List jobs, newest first."""
    jobs = queue.list_jobs(status=status_filter, integration=integration)
    return JobListResponse(
        jobs=[JobResponse.from_job(job) for job in jobs[:limit]],
        total=len(jobs),
    )


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(queue: JobQueue = Depends(get_job_queue)) -> QueueStatsResponse:
    return QueueStatsResponse.from_stats(queue.get_queue_stats())


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_jobs(
    max_age_hours: Optional[float] = Query(None, gt=0),
    queue: JobQueue = Depends(get_job_queue),
    settings: Settings = Depends(get_settings),
    operator: str = Depends(require_admin_token),
) -> CleanupResponse:
    """Remove terminal jobs older than the retention window (admin)."""
    hours = max_age_hours or settings.queue_job_retention_hours
    removed = queue.cleanup_old_jobs(timedelta(hours=hours))
    logger.info("jobs_cleanup_requested", removed=removed, operator=operator)
    return CleanupResponse(removed=removed, max_age_hours=hours)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    responses={404: {"description": "Job not found"}},
)
async def get_job(job_id: str, queue: JobQueue = Depends(get_job_queue)) -> JobResponse:
    return JobResponse.from_job(_get_or_404(queue, job_id))


@router.post("/{job_id}/cancel", response_model=JobActionResponse)
async def cancel_job(
    job_id: str,
    request: Optional[CancelJobRequest] = None,
    queue: JobQueue = Depends(get_job_queue),
) -> JobActionResponse:
    """Cancel a job. Cancelling an already-cancelled job is a no-op."""
    job = _get_or_404(queue, job_id)
    reason = request.reason if request else None
    if not queue.cancel_job(job_id, reason):
        if job.status != JobStatus.CANCELLED:
            raise _conflict(job, "cancel")
        return JobActionResponse(job_id=job_id, success=False, status=job.status)
    return JobActionResponse(job_id=job_id, success=True, status=job.status)


@router.post("/{job_id}/retry", response_model=JobActionResponse)
async def retry_job(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
) -> JobActionResponse:
    """Return a failed or escalated job to the pending pool."""
    job = _get_or_404(queue, job_id)
    if not queue.retry_job(job_id):
        raise _conflict(job, "retry")
    return JobActionResponse(job_id=job_id, success=True, status=job.status)


@router.post("/{job_id}/manual-intervention", response_model=JobActionResponse)
async def request_manual_intervention(
    job_id: str,
    request: ManualInterventionRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> JobActionResponse:
    """Park a job for an operator decision."""
    job = _get_or_404(queue, job_id)
    if not queue.mark_for_manual_intervention(job_id, request.reason, "api"):
        raise _conflict(job, "escalate")
    return JobActionResponse(job_id=job_id, success=True, status=job.status)
