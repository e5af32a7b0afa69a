"""Prometheus metrics endpoint for the integration job queue."""

from typing import Optional

from fastapi import APIRouter, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from app.jobs.events import JobEvent, JobEventType
from app.services.integrations.health import (
    IntegrationHealthTracker,
    IntegrationStatus,
)

router = APIRouter()

# Request metrics
REQUEST_COUNT = Counter(
    "job_queue_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "job_queue_request_latency_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Job metrics
JOB_EVENTS = Counter(
    "job_queue_job_events_total",
    "Job lifecycle events",
    ["event", "integration"],
)

JOB_DURATION = Histogram(
    "job_queue_job_duration_seconds",
    "Wall-clock time of completed or failed executions",
    ["integration", "outcome"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

JOBS_ACTIVE = Gauge(
    "job_queue_jobs_active",
    "Jobs currently executing",
)

# Integration metrics
INTEGRATION_STATUS = Gauge(
    "job_queue_integration_status",
    "Integration status (1 for the current status, 0 otherwise)",
    ["integration", "status"],
)

INTEGRATION_CONSECUTIVE_FAILURES = Gauge(
    "job_queue_integration_consecutive_failures",
    "Consecutive failures reported per integration",
    ["integration"],
)


def record_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics."""
    REQUEST_COUNT.labels(
        method=method, endpoint=endpoint, status_code=status_code
    ).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)


class JobEventMetrics:
    """Queue listener that mirrors job events into Prometheus."""

    def __init__(self, active_count=None):
        self._active_count = active_count

    def on_job_event(self, event: JobEvent) -> None:
        integration = event.job.integration.value if event.job else "none"
        JOB_EVENTS.labels(event=event.type.value, integration=integration).inc()

        if event.type in (JobEventType.JOB_COMPLETED, JobEventType.JOB_FAILED):
            duration = event.data.get("total_time_seconds")
            if duration is None and event.job is not None:
                duration = event.job.processing_seconds
            if duration is not None:
                outcome = (
                    "completed"
                    if event.type == JobEventType.JOB_COMPLETED
                    else "failed"
                )
                JOB_DURATION.labels(integration=integration, outcome=outcome).observe(
                    duration
                )

        if self._active_count is not None:
            JOBS_ACTIVE.set(self._active_count())


def set_integration_statuses(tracker: IntegrationHealthTracker) -> None:
    """Refresh the one-hot integration status gauges."""
    for integration, record in tracker.get_all_statuses().items():
        for status in IntegrationStatus:
            INTEGRATION_STATUS.labels(
                integration=integration.value, status=status.value
            ).set(1 if record.status == status else 0)
        INTEGRATION_CONSECUTIVE_FAILURES.labels(integration=integration.value).set(
            record.consecutive_failures
        )


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request):
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    This endpoint is excluded from OpenAPI docs.
    """
    tracker: Optional[IntegrationHealthTracker] = getattr(
        request.app.state, "health_tracker", None
    )
    if tracker is not None:
        set_integration_statuses(tracker)
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
