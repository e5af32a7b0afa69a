"""Per-integration health tracking.

Each integration is modelled as an independent circuit breaker:

    HEALTHY (closed) -> DEGRADED -> FAILED (open) -> RECOVERING (half-open)

Outcomes reported by the job queue and the request gate drive the state
machine. MAINTENANCE is an operator override that freezes the status until it
is cleared. A background monitor probes integrations that have a registered
health checker and starts recovery for FAILED integrations once their
recovery timeout has elapsed.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from app.jobs.types import IntegrationType
from app.services.integrations.policies import HealthPolicy, default_health_policies

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 1000

# async def checker() -> bool
HealthChecker = Callable[[], Awaitable[bool]]


class IntegrationStatus(str, Enum):
    """Circuit state of an integration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    RECOVERING = "recovering"
    MAINTENANCE = "maintenance"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IntegrationStatusRecord:
    """Current health of one integration."""

    integration: IntegrationType
    status: IntegrationStatus = IntegrationStatus.HEALTHY
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_transition_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    response_time_ms: Optional[float] = None
    opened_at: Optional[datetime] = None
    total_failures: int = 0
    total_successes: int = 0
    maintenance_reason: Optional[str] = None
    escalated: bool = False

    @property
    def is_available(self) -> bool:
        return self.status in (IntegrationStatus.HEALTHY, IntegrationStatus.DEGRADED)


@dataclass
class StatusUpdate:
    """One entry of the status transition history."""

    integration: IntegrationType
    previous_status: IntegrationStatus
    status: IntegrationStatus
    reason: str
    timestamp: datetime
    error: Optional[str] = None


class IntegrationHealthTracker:
    """Circuit-breaker style health state for every integration."""

    def __init__(
        self,
        policies: Optional[dict[IntegrationType, HealthPolicy]] = None,
        monitor_interval_seconds: float = 10.0,
        probe_timeout_seconds: float = 10.0,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self._policies = default_health_policies()
        if policies:
            self._policies.update(policies)
        self._records = {
            integration: IntegrationStatusRecord(integration=integration)
            for integration in IntegrationType
        }
        self._checkers: dict[IntegrationType, HealthChecker] = {}
        self._history: deque[StatusUpdate] = deque(maxlen=history_limit)
        self._recovering: set[IntegrationType] = set()

        self._monitor_interval = monitor_interval_seconds
        self._probe_timeout = probe_timeout_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._running = False

    # =========================================================================
    # Queries
    # =========================================================================

    def get_policy(self, integration: IntegrationType) -> HealthPolicy:
        return self._policies[integration]

    def get_status(self, integration: IntegrationType) -> IntegrationStatusRecord:
        return self._records[integration]

    def get_all_statuses(self) -> dict[IntegrationType, IntegrationStatusRecord]:
        return dict(self._records)

    def get_status_history(
        self,
        integration: Optional[IntegrationType] = None,
        limit: int = 100,
    ) -> list[StatusUpdate]:
        """Most recent transitions first."""
        updates = [
            update
            for update in reversed(self._history)
            if integration is None or update.integration == integration
        ]
        return updates[:limit]

    @property
    def running(self) -> bool:
        return self._running

    # =========================================================================
    # Outcome reporting
    # =========================================================================

    def _update_status(
        self,
        record: IntegrationStatusRecord,
        new_status: IntegrationStatus,
        reason: str,
        error: Optional[str] = None,
    ) -> None:
        previous = record.status
        if previous == new_status:
            return

        now = _now()
        record.status = new_status
        record.last_transition_at = now
        if new_status == IntegrationStatus.FAILED:
            record.opened_at = now
        elif new_status == IntegrationStatus.HEALTHY:
            record.opened_at = None
            record.escalated = False

        self._history.append(
            StatusUpdate(
                integration=record.integration,
                previous_status=previous,
                status=new_status,
                reason=reason,
                timestamp=now,
                error=error,
            )
        )

        log = logger.warning if new_status == IntegrationStatus.FAILED else logger.info
        log(
            "integration_status_changed",
            integration=record.integration.value,
            previous_status=previous.value,
            status=new_status.value,
            reason=reason,
            consecutive_failures=record.consecutive_failures,
        )

    def report_failure(
        self,
        integration: IntegrationType,
        error: BaseException,
        context: Optional[dict[str, Any]] = None,
    ) -> IntegrationStatus:
        """Record a failed call. Returns the resulting status."""
        record = self._records[integration]
        policy = self._policies[integration]
        message = str(error) or type(error).__name__

        record.consecutive_failures += 1
        record.total_failures += 1
        record.last_error = message
        record.last_checked_at = _now()

        logger.debug(
            "integration_failure_reported",
            integration=integration.value,
            consecutive_failures=record.consecutive_failures,
            error=message,
            **(context or {}),
        )

        if record.status == IntegrationStatus.MAINTENANCE:
            return record.status

        if record.status == IntegrationStatus.RECOVERING:
            self._update_status(
                record, IntegrationStatus.FAILED, "Failure during recovery", message
            )
        elif record.consecutive_failures >= policy.failure_threshold:
            self._update_status(
                record,
                IntegrationStatus.FAILED,
                f"{record.consecutive_failures} consecutive failures",
                message,
            )
        elif (
            record.consecutive_failures >= policy.degraded_threshold
            and record.status == IntegrationStatus.HEALTHY
        ):
            self._update_status(
                record, IntegrationStatus.DEGRADED, "Failures reported", message
            )

        if (
            record.consecutive_failures >= policy.failure_threshold
            and not record.escalated
        ):
            record.escalated = True
            logger.warning(
                "integration_escalation",
                integration=integration.value,
                consecutive_failures=record.consecutive_failures,
                threshold=policy.failure_threshold,
                error=message,
            )

        return record.status

    def report_success(
        self,
        integration: IntegrationType,
        response_time_seconds: Optional[float] = None,
    ) -> IntegrationStatus:
        """Record a successful call. Returns the resulting status."""
        record = self._records[integration]
        record.consecutive_failures = 0
        record.total_successes += 1
        record.last_checked_at = _now()
        if response_time_seconds is not None:
            record.response_time_ms = round(response_time_seconds * 1000, 2)

        if record.status in (
            IntegrationStatus.DEGRADED,
            IntegrationStatus.FAILED,
            IntegrationStatus.RECOVERING,
        ):
            self._update_status(
                record, IntegrationStatus.HEALTHY, "Successful call reported"
            )
        return record.status

    # =========================================================================
    # Maintenance
    # =========================================================================

    def set_maintenance(
        self,
        integration: IntegrationType,
        reason: str,
        requested_by: str = "operator",
    ) -> IntegrationStatusRecord:
        record = self._records[integration]
        record.maintenance_reason = reason
        self._update_status(
            record,
            IntegrationStatus.MAINTENANCE,
            f"Maintenance set by {requested_by}: {reason}",
        )
        return record

    def clear_maintenance(self, integration: IntegrationType) -> bool:
        """Return an integration from maintenance to HEALTHY."""
        record = self._records[integration]
        if record.status != IntegrationStatus.MAINTENANCE:
            return False
        record.maintenance_reason = None
        record.consecutive_failures = 0
        self._update_status(record, IntegrationStatus.HEALTHY, "Maintenance cleared")
        return True

    # =========================================================================
    # Probing & recovery
    # =========================================================================

    def register_health_checker(
        self, integration: IntegrationType, checker: HealthChecker
    ) -> None:
        self._checkers[integration] = checker
        logger.info("health_checker_registered", integration=integration.value)

    def has_health_checker(self, integration: IntegrationType) -> bool:
        return integration in self._checkers

    async def _probe(
        self, integration: IntegrationType, checker: HealthChecker
    ) -> tuple[bool, float, Optional[str]]:
        start = time.monotonic()
        try:
            healthy = bool(
                await asyncio.wait_for(checker(), timeout=self._probe_timeout)
            )
            error = None if healthy else "Health check returned unhealthy"
        except Exception as e:
            healthy = False
            error = str(e) or type(e).__name__
            logger.warning(
                "health_check_error", integration=integration.value, error=error
            )
        return healthy, time.monotonic() - start, error

    async def check_health(self, integration: IntegrationType) -> bool:
        """Probe an integration and report the outcome.

        Returns True if healthy. Without a registered checker, returns
        whether the integration is currently available.
        """
        checker = self._checkers.get(integration)
        if checker is None:
            return self._records[integration].is_available

        healthy, elapsed, error = await self._probe(integration, checker)
        if healthy:
            self.report_success(integration, response_time_seconds=elapsed)
        else:
            self.report_failure(
                integration, RuntimeError(error), {"source": "health_check"}
            )
        return healthy

    async def start_recovery(self, integration: IntegrationType) -> IntegrationStatus:
        """Half-open the circuit and probe with a bounded number of trial calls."""
        record = self._records[integration]
        policy = self._policies[integration]

        if record.status == IntegrationStatus.MAINTENANCE:
            logger.info("recovery_skipped_maintenance", integration=integration.value)
            return record.status
        if integration in self._recovering:
            return record.status

        checker = self._checkers.get(integration)
        if checker is None:
            # Let live traffic act as the probe
            self._update_status(
                record,
                IntegrationStatus.DEGRADED,
                "Recovery without health checker",
            )
            return record.status

        self._recovering.add(integration)
        try:
            self._update_status(
                record, IntegrationStatus.RECOVERING, "Recovery started"
            )
            last_error = None
            for trial in range(1, policy.recovery_trial_calls + 1):
                healthy, elapsed, last_error = await self._probe(integration, checker)
                if record.status != IntegrationStatus.RECOVERING:
                    # Maintenance or live traffic decided meanwhile
                    return record.status
                if healthy:
                    record.consecutive_failures = 0
                    record.total_successes += 1
                    record.response_time_ms = round(elapsed * 1000, 2)
                    record.last_checked_at = _now()
                    self._update_status(
                        record,
                        IntegrationStatus.HEALTHY,
                        f"Recovery probe {trial} succeeded",
                    )
                    return record.status
                logger.info(
                    "recovery_probe_failed",
                    integration=integration.value,
                    trial=trial,
                    error=last_error,
                )

            record.last_checked_at = _now()
            record.last_error = last_error
            self._update_status(
                record,
                IntegrationStatus.FAILED,
                f"Recovery failed after {policy.recovery_trial_calls} probes",
                last_error,
            )
            return record.status
        finally:
            self._recovering.discard(integration)

    async def run_monitor_cycle(self) -> list[IntegrationType]:
        """One monitor pass. Returns the integrations probed or recovered."""
        now = _now()
        acted = []
        for integration, record in self._records.items():
            policy = self._policies[integration]
            if record.status in (
                IntegrationStatus.MAINTENANCE,
                IntegrationStatus.RECOVERING,
            ):
                continue

            if record.status == IntegrationStatus.FAILED:
                if (
                    policy.auto_recovery
                    and record.opened_at is not None
                    and (now - record.opened_at).total_seconds()
                    >= policy.recovery_timeout_seconds
                ):
                    await self.start_recovery(integration)
                    acted.append(integration)
                continue

            if integration not in self._checkers:
                continue
            if (
                record.last_checked_at is None
                or (now - record.last_checked_at).total_seconds()
                >= policy.health_check_interval_seconds
            ):
                await self.check_health(integration)
                acted.append(integration)
        return acted

    # =========================================================================
    # Background monitor
    # =========================================================================

    async def start(self) -> None:
        """Start the background monitor task."""
        if self._running:
            logger.warning("health_monitor_already_running")
            return
        logger.info("health_monitor_starting", interval_seconds=self._monitor_interval)
        self._stop_event.clear()
        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())

    async def stop(self, timeout: float = 10.0) -> None:
        if not self._running:
            return
        self._stop_event.set()
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("health_monitor_stop_timeout")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._running = False
        logger.info("health_monitor_stopped")

    async def _monitor_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_monitor_cycle()
            except Exception as e:
                logger.exception("health_monitor_cycle_failed", error=str(e))

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._monitor_interval
                )
                break
            except asyncio.TimeoutError:
                pass
