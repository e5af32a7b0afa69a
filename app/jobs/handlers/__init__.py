"""Job handlers package.

Handlers are built against the application's integration clients and
registered on the queue's ProcessorRegistry during startup.

Handler contract:
    async def handle_<job_type>(job: JobDefinition, ctx: dict) -> Any:
        - job: The immutable JobDefinition (payload, integration, metadata)
        - ctx: Context dict with job_id, attempt, cancel_token, metadata
        - Returns: Result stored on the QueuedJob on success
"""

from app.jobs.handlers.integration_retry import make_integration_retry_processor
from app.jobs.registry import ProcessorRegistry
from app.services.integrations.clients import IntegrationClients
from app.services.integrations.gate import INTEGRATION_RETRY_JOB_TYPE


def register_default_processors(
    registry: ProcessorRegistry, clients: IntegrationClients
) -> None:
    """Register the built-in processors."""
    registry.register(
        INTEGRATION_RETRY_JOB_TYPE, make_integration_retry_processor(clients)
    )


__all__ = ["make_integration_retry_processor", "register_default_processors"]
