"""Job processor registry."""

from typing import Any, Callable, Coroutine

import structlog

from app.jobs.errors import ProcessorNotFoundError
from app.jobs.models import JobDefinition

logger = structlog.get_logger(__name__)

# Processor signature: async def processor(job: JobDefinition, ctx: dict) -> Any
JobProcessor = Callable[[JobDefinition, dict[str, Any]], Coroutine[Any, Any, Any]]


class ProcessorRegistry:
    """Registry mapping job types to their processors."""

    def __init__(self):
        self._processors: dict[str, JobProcessor] = {}

    def register(self, job_type: str, processor: JobProcessor) -> None:
        """Register a processor for a job type."""
        if job_type in self._processors:
            logger.warning("processor_replaced", job_type=job_type)
        self._processors[job_type] = processor
        logger.info("processor_registered", job_type=job_type)

    def get(self, job_type: str) -> JobProcessor:
        """Get the processor for a job type. Raises ProcessorNotFoundError."""
        if job_type not in self._processors:
            raise ProcessorNotFoundError(job_type)
        return self._processors[job_type]

    def processor(self, job_type: str) -> Callable[[JobProcessor], JobProcessor]:
        """Decorator to register a processor."""

        def decorator(fn: JobProcessor) -> JobProcessor:
            self.register(job_type, fn)
            return fn

        return decorator

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._processors

    @property
    def job_types(self) -> list[str]:
        return sorted(self._processors)
