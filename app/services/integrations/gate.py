"""Integration-aware admission control.

The gate is consulted before a request is allowed to call an integration. It
reads the tracker's current status and decides whether to proceed inline,
proceed through a fallback, park the request in the job queue, or reject it
with a suggested retry delay.

    HEALTHY      -> proceed
    DEGRADED     -> proceed (logged)
    FAILED       -> fallback | queue | reject (policy)
    RECOVERING   -> reject, short retry delay
    MAINTENANCE  -> reject, long retry delay
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

import structlog
from prometheus_client import Counter

from app.core.resilience import is_retryable_error
from app.jobs.defaults import QUEUED_REQUEST_RETRY_CONFIG
from app.jobs.models import JobDefinition, QueuedJob, utc_now
from app.jobs.queue import JobQueue
from app.jobs.types import IntegrationType, JobPriority
from app.services.integrations.health import (
    IntegrationHealthTracker,
    IntegrationStatus,
)
from app.services.integrations.policies import GatePolicy, default_gate_policy

logger = structlog.get_logger(__name__)

INTEGRATION_RETRY_JOB_TYPE = "integration_retry"

ALLOWED_HEADERS = frozenset(
    {"content-type", "accept", "user-agent", "accept-language", "accept-encoding"}
)

GATE_DECISIONS = Counter(
    "integration_gate_decisions_total",
    "Request gate decisions",
    ["integration", "action"],
)


def sanitize_headers(headers: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Keep only non-sensitive headers, with lower-cased names."""
    if not headers:
        return {}
    return {
        key.lower(): value
        for key, value in headers.items()
        if key.lower() in ALLOWED_HEADERS and isinstance(value, str)
    }


class GateAction(str, Enum):
    """What the caller should do with the request."""

    PROCEED = "proceed"
    PROCEED_WITH_FALLBACK = "proceed_with_fallback"
    QUEUED = "queued"
    REJECT = "reject"


@dataclass(frozen=True)
class SuggestedAction:
    action: str
    label: str
    url: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        data = {"action": self.action, "label": self.label}
        if self.url:
            data["url"] = self.url
        return data


@dataclass
class RequestContext:
    """The parts of an inbound request worth replaying later."""

    method: str = "GET"
    path: str = "/"
    body: Any = None
    query: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    user_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = sanitize_headers(self.headers)

    def to_payload(self, integration: IntegrationType) -> dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "body": self.body,
            "query": dict(self.query),
            "headers": dict(self.headers),
            "integration": integration.value,
        }


@dataclass
class GateDecision:
    """Outcome of a gate check."""

    action: GateAction
    integration: IntegrationType
    status: IntegrationStatus
    message: str
    retry_after_seconds: Optional[float] = None
    suggested_actions: list[SuggestedAction] = field(default_factory=list)
    job_id: Optional[str] = None
    last_error: Optional[str] = None
    response_status: Optional[str] = None

    @property
    def allowed(self) -> bool:
        """Whether the caller may go on to call the integration."""
        return self.action in (GateAction.PROCEED, GateAction.PROCEED_WITH_FALLBACK)

    @property
    def fallback(self) -> bool:
        return self.action == GateAction.PROCEED_WITH_FALLBACK

    @property
    def http_status(self) -> int:
        if self.action == GateAction.QUEUED:
            return 202
        if self.action == GateAction.REJECT:
            return 503
        return 200

    def to_response(self) -> dict[str, Any]:
        """JSON body for a request stopped at the gate."""
        if self.action == GateAction.QUEUED:
            return {
                "success": True,
                "message": self.message,
                "status": self.response_status or "queued",
                "job_id": self.job_id,
                "integration": self.integration.value,
            }
        if self.action == GateAction.REJECT:
            return {
                "success": False,
                "error": self.message,
                "status": self.status.value,
                "details": {
                    "integration": self.integration.value,
                    "status": self.status.value,
                    "last_error": self.last_error,
                },
                "recovery": {
                    "can_retry": True,
                    "retry_after_seconds": self.retry_after_seconds,
                    "suggested_actions": [
                        action.to_dict() for action in self.suggested_actions
                    ],
                },
            }
        return {
            "success": True,
            "status": self.status.value,
            "fallback": self.fallback,
            "integration": self.integration.value,
        }


class RequestGate:
    """Admission control in front of integration calls."""

    def __init__(
        self,
        tracker: IntegrationHealthTracker,
        queue: JobQueue,
        support_url: str = "/support",
        failed_retry_after_seconds: float = 30.0,
        recovering_retry_after_seconds: float = 60.0,
        maintenance_retry_after_seconds: float = 300.0,
        policies: Optional[dict[IntegrationType, GatePolicy]] = None,
    ):
        self._tracker = tracker
        self._queue = queue
        self._support_url = support_url
        self._failed_retry_after = failed_retry_after_seconds
        self._recovering_retry_after = recovering_retry_after_seconds
        self._maintenance_retry_after = maintenance_retry_after_seconds
        self._policies = dict(policies or {})

    def policy_for(self, integration: IntegrationType) -> GatePolicy:
        return default_gate_policy(integration, self._policies.get(integration))

    def check(
        self,
        integration: IntegrationType,
        policy: Optional[GatePolicy] = None,
        request: Optional[RequestContext] = None,
    ) -> GateDecision:
        """Decide what to do with a request targeting integration."""
        record = self._tracker.get_status(integration)
        status = record.status
        policy = policy or self.policy_for(integration)
        request = request or RequestContext()

        if status == IntegrationStatus.HEALTHY:
            decision = GateDecision(
                action=GateAction.PROCEED,
                integration=integration,
                status=status,
                message="Integration healthy",
            )
        elif status == IntegrationStatus.DEGRADED:
            logger.warning(
                "integration_degraded_proceeding",
                integration=integration.value,
                path=request.path,
                consecutive_failures=record.consecutive_failures,
            )
            decision = GateDecision(
                action=GateAction.PROCEED,
                integration=integration,
                status=status,
                message="Integration degraded, proceeding with caution",
                last_error=record.last_error,
            )
        elif status == IntegrationStatus.FAILED:
            decision = self._on_failed(integration, record.last_error, policy, request)
        elif status == IntegrationStatus.RECOVERING:
            decision = GateDecision(
                action=GateAction.REJECT,
                integration=integration,
                status=status,
                message="Integration is currently recovering",
                retry_after_seconds=self._recovering_retry_after,
                suggested_actions=[
                    SuggestedAction("wait_retry", "Wait and try again"),
                ],
                last_error=record.last_error,
            )
        else:
            decision = GateDecision(
                action=GateAction.REJECT,
                integration=integration,
                status=status,
                message="Integration is under maintenance",
                retry_after_seconds=self._maintenance_retry_after,
                suggested_actions=[
                    SuggestedAction("try_again_later", "Try again later"),
                ],
                last_error=record.maintenance_reason,
            )

        GATE_DECISIONS.labels(
            integration=integration.value, action=decision.action.value
        ).inc()
        return decision

    def _on_failed(
        self,
        integration: IntegrationType,
        last_error: Optional[str],
        policy: GatePolicy,
        request: RequestContext,
    ) -> GateDecision:
        status = IntegrationStatus.FAILED

        if policy.fallback_enabled:
            logger.info(
                "integration_fallback", integration=integration.value, path=request.path
            )
            return GateDecision(
                action=GateAction.PROCEED_WITH_FALLBACK,
                integration=integration,
                status=status,
                message="Using fallback for failed integration",
                last_error=last_error,
            )

        if policy.queue_on_failure:
            priority = (
                policy.priority
                if policy.priority == JobPriority.LOW
                else policy.priority.elevated()
            )
            job = self._queue_request(integration, request, priority)
            return GateDecision(
                action=GateAction.QUEUED,
                integration=integration,
                status=status,
                message="Request queued for processing when integration recovers",
                job_id=job.id,
                last_error=last_error,
                response_status="queued",
            )

        return GateDecision(
            action=GateAction.REJECT,
            integration=integration,
            status=status,
            message="Integration temporarily unavailable",
            retry_after_seconds=self._failed_retry_after,
            suggested_actions=[
                SuggestedAction("try_again_later", "Try again in a few minutes"),
                SuggestedAction("contact_support", "Contact support", self._support_url),
            ],
            last_error=last_error,
        )

    def handle_failure(
        self,
        integration: IntegrationType,
        error: BaseException,
        policy: Optional[GatePolicy] = None,
        request: Optional[RequestContext] = None,
    ) -> Optional[GateDecision]:
        """Report an inline failure; queue it for retry when eligible.

        Returns a queued decision, or None when the caller should surface
        the error.
        """
        policy = policy or self.policy_for(integration)
        request = request or RequestContext()

        status = self._tracker.report_failure(
            integration,
            error,
            {"method": request.method, "path": request.path, "user_id": request.user_id},
        )
        logger.error(
            "integration_failure_reported",
            integration=integration.value,
            path=request.path,
            error=str(error),
        )

        if not (policy.queue_on_failure and is_retryable_error(error)):
            return None

        job = self._queue_request(integration, request, JobPriority.HIGH)
        GATE_DECISIONS.labels(
            integration=integration.value, action=GateAction.QUEUED.value
        ).inc()
        return GateDecision(
            action=GateAction.QUEUED,
            integration=integration,
            status=status,
            message="Request failed but has been queued for retry",
            job_id=job.id,
            last_error=str(error),
            response_status="queued_for_retry",
        )

    def record_success(
        self,
        integration: IntegrationType,
        response_time_seconds: Optional[float] = None,
    ) -> None:
        self._tracker.report_success(integration, response_time_seconds)

    def _queue_request(
        self,
        integration: IntegrationType,
        request: RequestContext,
        priority: JobPriority,
    ) -> QueuedJob:
        now = utc_now()
        definition = JobDefinition(
            id=f"{INTEGRATION_RETRY_JOB_TYPE}_{integration.value}_{uuid4().hex[:12]}",
            type=INTEGRATION_RETRY_JOB_TYPE,
            priority=priority,
            payload=request.to_payload(integration),
            integration=integration,
            retry_config=QUEUED_REQUEST_RETRY_CONFIG,
            created_at=now,
            metadata={
                "original_request_time": now.isoformat(),
                "user_id": request.user_id,
                "queue_reason": "integration_failure",
            },
        )
        job = self._queue.add_job(definition)
        logger.info(
            "request_queued_for_integration",
            job_id=job.id,
            integration=integration.value,
            path=request.path,
            priority=priority.value,
        )
        return job
