"""Default retry configuration per integration."""

from app.core.resilience import BackoffStrategy, RetryConfig
from app.jobs.types import IntegrationType

DEFAULT_RETRY_CONFIGS: dict[IntegrationType, RetryConfig] = {
    IntegrationType.DATABASE: RetryConfig(
        max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=10.0
    ),
    IntegrationType.EMAIL: RetryConfig(
        max_attempts=5, base_delay_seconds=2.0, max_delay_seconds=30.0
    ),
    # Payment retries are deliberate and evenly spaced
    IntegrationType.PAYMENT: RetryConfig(
        max_attempts=3,
        strategy=BackoffStrategy.LINEAR,
        base_delay_seconds=5.0,
        max_delay_seconds=15.0,
        backoff_multiplier=1.0,
        jitter=False,
    ),
    IntegrationType.STORAGE: RetryConfig(
        max_attempts=4, base_delay_seconds=1.5, max_delay_seconds=20.0
    ),
    IntegrationType.AI: RetryConfig(
        max_attempts=3, base_delay_seconds=3.0, max_delay_seconds=30.0
    ),
    IntegrationType.PDF: RetryConfig(
        max_attempts=3, base_delay_seconds=2.0, max_delay_seconds=15.0
    ),
    IntegrationType.AIRTABLE: RetryConfig(
        max_attempts=4, base_delay_seconds=2.0, max_delay_seconds=25.0
    ),
    IntegrationType.WEBHOOK: RetryConfig(
        max_attempts=5, base_delay_seconds=1.0, max_delay_seconds=20.0
    ),
}

# Used for requests queued by the gate
QUEUED_REQUEST_RETRY_CONFIG = RetryConfig(
    max_attempts=3, base_delay_seconds=5.0, max_delay_seconds=30.0
)


def default_retry_config(integration: IntegrationType) -> RetryConfig:
    """Get the default retry config for an integration."""
    return DEFAULT_RETRY_CONFIGS.get(integration, RetryConfig())
