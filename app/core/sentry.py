"""Sentry initialization and configuration."""

import os
from typing import Any, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from app import __version__
from app.config import Settings
from app.deps.integration import IntegrationGateError

logger = structlog.get_logger(__name__)


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """
    Drop events for expected outcomes.

    - 4xx client errors (401, 403, 404, 409, 422, 429)
    - requests stopped at the integration gate (202 queued, 503 rejected);
      the integration failure itself is reported by the health tracker
    """
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        if isinstance(exc_value, IntegrationGateError):
            return None
        status_code = getattr(exc_value, "status_code", None)
        if isinstance(status_code, int) and 400 <= status_code < 500:
            return None

    # Check response context for status code
    if "contexts" in event:
        response = event.get("contexts", {}).get("response", {})
        status_code = response.get("status_code", 0)
        if 400 <= status_code < 500:
            return None

    return event


def _create_traces_sampler(settings: Settings) -> Any:
    """Create a route-aware sampling function for Sentry traces."""

    def traces_sampler(sampling_context: dict) -> float:
        """
        Route-aware sampling.

        - 100% for the gated integration proxy (every call touches an integration)
        - Inherits parent sampling decision if available
        - Default rate for everything else
        """
        tx_context = sampling_context.get("transaction_context", {})
        tx_name = tx_context.get("name", "")

        if "proxy_integration" in tx_name or "/proxy/" in tx_name:
            return 1.0

        # Check parent sampling decision
        parent = sampling_context.get("parent_sampled")
        if parent is not None:
            return float(parent)

        # Default sampling rate
        return settings.sentry_traces_sample_rate

    return traces_sampler


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    # Only send ERROR-level logs as Sentry events
    sentry_logging = LoggingIntegration(
        level=None,  # Keep normal log levels
        event_level="ERROR",  # Only ERROR+ become Sentry events
    )

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"integration-job-queue@{__version__}"),
        integrations=[
            sentry_logging,
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        enable_tracing=True,
        traces_sampler=_create_traces_sampler(settings),
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )

    sentry_sdk.set_tag("service", "integration-job-queue")
    sentry_sdk.set_tag("max_concurrent", settings.queue_max_concurrent)

    logger.info(
        "sentry_initialized",
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )

    return True
