"""Application lifespan management - startup and shutdown logic."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from app import __version__
from app.config import Settings, get_settings
from app.core.resilience import RetryExecutor
from app.jobs.escalation import EscalationSink
from app.jobs.handlers import register_default_processors
from app.jobs.queue import JobQueue
from app.jobs.registry import ProcessorRegistry
from app.jobs.worker import QueueScheduler
from app.routers.metrics import JobEventMetrics
from app.services.integrations.clients import IntegrationClients
from app.services.integrations.gate import RequestGate
from app.services.integrations.health import IntegrationHealthTracker
from app.services.integrations.policies import default_health_policies, gate_policies

logger = structlog.get_logger(__name__)


def build_services(app: FastAPI, settings: Settings) -> None:
    """Construct the service graph and attach it to app.state."""
    clients = IntegrationClients.from_base_urls(
        settings.integration_base_urls,
        timeout=settings.integration_timeout_s,
        health_path=settings.integration_health_path,
    )

    tracker = IntegrationHealthTracker(
        policies=default_health_policies(
            degraded_threshold=settings.health_degraded_threshold,
            recovery_timeout_seconds=settings.health_recovery_timeout_s,
            recovery_trial_calls=settings.health_recovery_trial_calls,
        ),
        monitor_interval_seconds=settings.health_monitor_interval_s,
        probe_timeout_seconds=settings.integration_timeout_s,
    )
    for integration, client in clients.items():
        tracker.register_health_checker(integration, client.ping)

    registry = ProcessorRegistry()
    register_default_processors(registry, clients)

    queue = JobQueue(
        executor=RetryExecutor(),
        registry=registry,
        health_tracker=tracker,
        max_concurrent=settings.queue_max_concurrent,
    )
    queue.add_listener(JobEventMetrics(active_count=lambda: queue.active_count))

    app.state.integration_clients = clients
    app.state.health_tracker = tracker
    app.state.processor_registry = registry
    app.state.job_queue = queue
    app.state.escalation_sink = EscalationSink(queue)
    app.state.request_gate = RequestGate(
        tracker,
        queue,
        support_url=settings.support_url,
        failed_retry_after_seconds=settings.gate_failed_retry_after_s,
        recovering_retry_after_seconds=settings.gate_recovering_retry_after_s,
        maintenance_retry_after_seconds=settings.gate_maintenance_retry_after_s,
        policies=gate_policies(settings.gate_fallback_integrations),
    )
    app.state.scheduler = QueueScheduler(
        queue,
        tick_interval_seconds=settings.queue_tick_interval_s,
        cleanup_interval_seconds=settings.queue_cleanup_interval_s,
        retention=settings.job_retention,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "service_starting",
        version=__version__,
        git_sha=settings.git_sha or "unknown",
        host=settings.service_host,
        port=settings.service_port,
        max_concurrent=settings.queue_max_concurrent,
        tick_interval_s=settings.queue_tick_interval_s,
    )

    build_services(app, settings)

    if settings.queue_autostart:
        await app.state.scheduler.start()
    else:
        logger.info("scheduler_autostart_disabled")
    await app.state.health_tracker.start()

    yield

    logger.info("service_shutting_down")

    await app.state.scheduler.stop()
    await app.state.health_tracker.stop()
    await app.state.job_queue.shutdown()
    app.state.escalation_sink.close()
    await app.state.integration_clients.aclose()

    logger.info("service_stopped")
