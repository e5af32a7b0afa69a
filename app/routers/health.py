"""Health check endpoint."""

import structlog
from fastapi import APIRouter, Depends

from app import __version__
from app.config import Settings, get_settings
from app.deps.services import get_health_tracker, get_job_queue, get_scheduler
from app.jobs.queue import JobQueue
from app.jobs.worker import QueueScheduler
from app.schemas import HealthResponse, IntegrationHealth, SchedulerHealth
from app.services.integrations.health import (
    IntegrationHealthTracker,
    IntegrationStatus,
)

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
    queue: JobQueue = Depends(get_job_queue),
    scheduler: QueueScheduler = Depends(get_scheduler),
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
) -> HealthResponse:
    """
    Service health with the scheduler state and every integration's status.

    Overall status is "degraded" when any integration is not healthy.
    """
    integrations = {
        integration.value: IntegrationHealth(
            status=record.status.value,
            consecutive_failures=record.consecutive_failures,
            last_error=record.last_error,
            last_transition_at=record.last_transition_at,
        )
        for integration, record in tracker.get_all_statuses().items()
    }
    all_healthy = all(
        record.status == IntegrationStatus.HEALTHY
        for record in tracker.get_all_statuses().values()
    )

    stats = queue.get_queue_stats()
    return HealthResponse(
        status="ok" if all_healthy else "degraded",
        version=__version__,
        git_sha=settings.git_sha,
        scheduler=SchedulerHealth(
            running=scheduler.running,
            active_jobs=stats.active_jobs,
            max_concurrent=stats.max_concurrent,
            pending_jobs=stats.pending_jobs,
            manual_intervention_jobs=stats.manual_intervention_jobs,
        ),
        integrations=integrations,
    )
