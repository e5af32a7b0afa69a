"""Per-integration health and gating policies."""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Optional

from app.jobs.types import IntegrationType, JobPriority

# Consecutive failures before an integration is considered FAILED
FAILURE_THRESHOLDS: dict[IntegrationType, int] = {
    IntegrationType.DATABASE: 5,
    IntegrationType.EMAIL: 3,
    IntegrationType.PAYMENT: 2,
    IntegrationType.STORAGE: 4,
    IntegrationType.AI: 3,
    IntegrationType.PDF: 3,
    IntegrationType.AIRTABLE: 4,
    IntegrationType.WEBHOOK: 5,
}

HEALTH_CHECK_INTERVALS: dict[IntegrationType, float] = {
    IntegrationType.DATABASE: 30.0,
    IntegrationType.EMAIL: 60.0,
    IntegrationType.PAYMENT: 30.0,
    IntegrationType.STORAGE: 45.0,
    IntegrationType.AI: 60.0,
    IntegrationType.PDF: 60.0,
    IntegrationType.AIRTABLE: 120.0,
    IntegrationType.WEBHOOK: 90.0,
}

# Recovery for these must be started by an operator
MANUAL_RECOVERY = frozenset({IntegrationType.PAYMENT})


@dataclass(frozen=True)
class HealthPolicy:
    """Thresholds driving the health state machine for one integration."""

    degraded_threshold: int = 1
    failure_threshold: int = 3
    recovery_timeout_seconds: float = 30.0
    recovery_trial_calls: int = 3
    health_check_interval_seconds: float = 60.0
    auto_recovery: bool = True

    def __post_init__(self) -> None:
        if self.degraded_threshold < 1:
            raise ValueError("degraded_threshold must be at least 1")
        if self.failure_threshold < self.degraded_threshold:
            raise ValueError("failure_threshold must be >= degraded_threshold")
        if self.recovery_trial_calls < 1:
            raise ValueError("recovery_trial_calls must be at least 1")


@dataclass(frozen=True)
class GatePolicy:
    """How the request gate treats calls to an unhealthy integration."""

    fallback_enabled: bool = False
    queue_on_failure: bool = True
    priority: JobPriority = JobPriority.NORMAL


def default_health_policies(
    degraded_threshold: int = 1,
    recovery_timeout_seconds: float = 30.0,
    recovery_trial_calls: int = 3,
) -> dict[IntegrationType, HealthPolicy]:
    """Build the health policy table for every integration."""
    policies = {}
    for integration in IntegrationType:
        failure_threshold = FAILURE_THRESHOLDS[integration]
        policies[integration] = HealthPolicy(
            degraded_threshold=min(degraded_threshold, failure_threshold),
            failure_threshold=failure_threshold,
            recovery_timeout_seconds=recovery_timeout_seconds,
            recovery_trial_calls=recovery_trial_calls,
            health_check_interval_seconds=HEALTH_CHECK_INTERVALS[integration],
            auto_recovery=integration not in MANUAL_RECOVERY,
        )
    return policies


def default_gate_policy(
    integration: IntegrationType,
    overrides: Optional[GatePolicy] = None,
) -> GatePolicy:
    """Gate policy for an integration; payment requests are never queued."""
    if overrides is not None:
        return overrides
    if integration == IntegrationType.PAYMENT:
        return replace(GatePolicy(), queue_on_failure=False)
    return GatePolicy()


def gate_policies(
    fallback_integrations: Iterable[str] = (),
) -> dict[IntegrationType, GatePolicy]:
    """Gate policy overrides; fallback integrations answer instead of queueing."""
    policies = {}
    for name in fallback_integrations:
        integration = IntegrationType(name)
        policies[integration] = replace(
            default_gate_policy(integration), fallback_enabled=True
        )
    return policies
