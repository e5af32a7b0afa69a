"""integration_retry handler - replays a request parked by the request gate.

Job Payload:
    method: str - HTTP method of the original request
    path: str - Path on the integration
    body: Any - JSON body (optional)
    query: dict - Query parameters (optional)
    headers: dict - Sanitised headers (optional)
    integration: str - Target integration
"""

import time
from typing import Any

import structlog

from app.jobs.models import JobDefinition
from app.jobs.registry import JobProcessor
from app.services.integrations.clients import IntegrationClients

logger = structlog.get_logger(__name__)


def make_integration_retry_processor(clients: IntegrationClients) -> JobProcessor:
    """Build the processor bound to the configured integration clients."""

    async def handle_integration_retry(
        job: JobDefinition, ctx: dict[str, Any]
    ) -> dict[str, Any]:
        payload = job.payload
        client = clients.get(job.integration)

        log = logger.bind(
            job_id=job.id,
            integration=job.integration.value,
            attempt=ctx.get("attempt"),
        )
        log.info(
            "integration_retry_replaying",
            method=payload.get("method", "GET"),
            path=payload.get("path", "/"),
        )

        start = time.monotonic()
        response = await client.send(
            payload.get("method", "GET"),
            payload.get("path", "/"),
            body=payload.get("body"),
            query=payload.get("query") or None,
            headers=payload.get("headers") or None,
        )
        duration_ms = int((time.monotonic() - start) * 1000)

        log.info(
            "integration_retry_replayed",
            status_code=response["status_code"],
            duration_ms=duration_ms,
        )
        return {**response, "duration_ms": duration_ms}

    return handle_integration_retry
