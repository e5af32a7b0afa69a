"""Root conftest for test suite.

Shared factories for job definitions, plus auto-skipping of slow tests.
Run slow tests explicitly with: pytest -m slow
"""

import asyncio

import pytest

from app.core.resilience import RetryConfig
from app.jobs.models import JobDefinition
from app.jobs.types import IntegrationType, JobPriority


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested."""
    markexpr = config.getoption("-m", default="")
    explicit_slow = "slow" in markexpr

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )

    for item in items:
        if "slow" in item.keywords and not explicit_slow:
            item.add_marker(skip_slow)


def fast_retry(max_attempts: int = 3, base_delay_seconds: float = 0.01) -> RetryConfig:
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay_seconds=base_delay_seconds,
        max_delay_seconds=max(base_delay_seconds * 4, base_delay_seconds),
        jitter=False,
    )


@pytest.fixture
def make_definition():
    """Factory for job definitions with fast, deterministic retries."""

    def _make(
        job_id: str = "job-1",
        job_type: str = "send_email",
        priority: JobPriority = JobPriority.NORMAL,
        integration: IntegrationType = IntegrationType.EMAIL,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.01,
        **kwargs,
    ) -> JobDefinition:
        kwargs.setdefault(
            "retry_config", fast_retry(max_attempts, base_delay_seconds)
        )
        return JobDefinition(
            id=job_id,
            type=job_type,
            priority=priority,
            integration=integration,
            **kwargs,
        )

    return _make


@pytest.fixture
def eventually():
    """Poll a predicate until it holds (or fail after timeout seconds)."""

    async def _eventually(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _eventually
