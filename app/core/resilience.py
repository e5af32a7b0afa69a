"""Retry execution with backoff, jitter and cooperative cancellation.

Runs a single unit of work against an unreliable integration, retrying
transient failures with exponential (or linear/fixed) backoff. Failures are
returned as a structured result rather than raised.

Usage:
    from app.core.resilience import RetryConfig, RetryExecutor

    executor = RetryExecutor()
    result = await executor.execute_with_retry(
        "job-123",
        lambda: client.send("POST", "/messages", body),
        RetryConfig(max_attempts=3, base_delay_seconds=0.5),
    )
    if result.success:
        ...
"""

import asyncio
import random
import time
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_RETRYABLE_MESSAGE_HINTS = ("connection", "timeout", "rate limit", "too many requests")


class BackoffStrategy(str, Enum):
    """Delay growth between retry attempts."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryConfig(BaseModel):
    """Configuration for retry behavior."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=10)
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=10.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=5.0)
    jitter: bool = True

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "RetryConfig":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                "max_delay_seconds must be greater than or equal to base_delay_seconds"
            )
        return self


class RetryOutcome(str, Enum):
    """Terminal outcome of an execute_with_retry invocation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RetryResult:
    """Result of a retried execution."""

    outcome: RetryOutcome
    attempts: int
    total_time_seconds: float
    result: Any = None
    error: Optional[BaseException] = None
    retryable: bool = False

    @property
    def success(self) -> bool:
        return self.outcome == RetryOutcome.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.outcome == RetryOutcome.CANCELLED

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    @property
    def error_stack(self) -> Optional[str]:
        if self.error is None or self.error.__traceback__ is None:
            return None
        return "".join(
            traceback.format_exception(
                type(self.error), self.error, self.error.__traceback__
            )
        )


class _AttemptCancelled(Exception):
    """Raised inside the executor when the token fires mid-attempt."""


class AttemptInterruptedError(Exception):
    """An attempt ended in CancelledError that nobody requested. Retryable."""

    retryable = True


# on_attempt_failed(attempt, error, retryable, next_delay_seconds)
AttemptFailedHook = Callable[[int, BaseException, bool, Optional[float]], None]


class CancellationToken:
    """Cooperative cancellation signal threaded through every wait."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait up to `timeout` seconds. Returns True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


def calculate_backoff(
    attempt: int,
    config: RetryConfig,
    jitter: Optional[bool] = None,
) -> float:
    """Calculate the delay after a failed attempt.

    Args:
        attempt: Attempt number that just failed (1-indexed)
        config: Retry configuration
        jitter: Override config.jitter (tests pass False for exact values)

    Returns:
        Delay in seconds before the next attempt, never above max_delay_seconds
    """
    if config.strategy == BackoffStrategy.EXPONENTIAL:
        delay = config.base_delay_seconds * (config.backoff_multiplier ** (attempt - 1))
    elif config.strategy == BackoffStrategy.LINEAR:
        delay = config.base_delay_seconds * attempt
    else:
        delay = config.base_delay_seconds

    delay = min(delay, config.max_delay_seconds)

    use_jitter = config.jitter if jitter is None else jitter
    if use_jitter:
        # Scale into [50%, 100%] so jitter never pushes past the cap
        delay *= 0.5 + random.random() * 0.5

    return delay


def _status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (worth retrying) or terminal.

    Returns True for connection resets, timeouts, HTTP 429/5xx responses and
    connection/timeout/rate-limit flavored messages. Everything else,
    including business-rule rejections, is terminal.
    """
    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    if isinstance(
        error,
        (
            ConnectionError,  # reset, refused, aborted, broken pipe
            TimeoutError,
            asyncio.TimeoutError,
            httpx.TimeoutException,
            httpx.NetworkError,
            httpx.RemoteProtocolError,
        ),
    ):
        return True

    status_code = _status_code_of(error)
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES

    message = str(error).lower()
    return any(hint in message for hint in _RETRYABLE_MESSAGE_HINTS)


class RetryExecutor:
    """Runs units of work with bounded retries.

    Each invocation is tied to a CancellationToken, registered under its id
    while it runs, so callers can cancel by id or by holding the token.
    """

    def __init__(self) -> None:
        self._active: dict[str, CancellationToken] = {}

    @property
    def active_ids(self) -> list[str]:
        return list(self._active)

    def cancel(self, id: str, reason: Optional[str] = None) -> bool:
        """Cancel an active execution. Returns False if none is running."""
        token = self._active.get(id)
        if token is None:
            return False
        token.cancel(reason)
        logger.info("retry_cancelled", id=id, reason=reason)
        return True

    def cancel_all(self, reason: Optional[str] = None) -> int:
        """Cancel every active execution. Returns how many were signalled."""
        tokens = list(self._active.values())
        for token in tokens:
            token.cancel(reason)
        if tokens:
            logger.info("retry_cancel_all", count=len(tokens), reason=reason)
        return len(tokens)

    async def execute_with_retry(
        self,
        id: str,
        unit_of_work: Callable[[], Awaitable[Any]],
        config: RetryConfig,
        context: Optional[dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_attempt_failed: Optional[AttemptFailedHook] = None,
        attempt_timeout: Optional[float] = None,
    ) -> RetryResult:
        """Execute unit_of_work, retrying transient failures.

        Args:
            id: Identifier for logging and cancel(id)
            unit_of_work: Zero-arg coroutine factory, called once per attempt
            config: Retry configuration
            context: Extra fields for log records
            cancel_token: Token that aborts the current attempt or backoff wait
            on_attempt_failed: Called after each failed attempt
            attempt_timeout: Per-attempt timeout in seconds (timeouts are retryable)

        Returns:
            RetryResult; never raises for failures of the unit of work
        """
        token = cancel_token or CancellationToken()
        self._active[id] = token
        log = logger.bind(id=id, **(context or {}))
        start = time.monotonic()
        attempts = 0
        last_error: Optional[BaseException] = None
        last_retryable = False

        def _result(outcome: RetryOutcome, **kwargs: Any) -> RetryResult:
            return RetryResult(
                outcome=outcome,
                attempts=attempts,
                total_time_seconds=time.monotonic() - start,
                **kwargs,
            )

        log.info(
            "retry_execution_started",
            max_attempts=config.max_attempts,
            strategy=config.strategy.value,
        )

        try:
            while attempts < config.max_attempts:
                if token.cancelled:
                    log.info("retry_execution_cancelled", attempts=attempts)
                    return _result(RetryOutcome.CANCELLED, error=last_error)

                attempts += 1
                log.debug("retry_attempt", attempt=attempts)

                try:
                    value = await self._run_attempt(
                        unit_of_work, token, attempt_timeout
                    )
                except _AttemptCancelled:
                    log.info("retry_execution_cancelled", attempts=attempts)
                    return _result(RetryOutcome.CANCELLED, error=last_error)
                except Exception as e:
                    last_error = e
                    last_retryable = is_retryable_error(e)
                    has_more = attempts < config.max_attempts
                    delay = (
                        calculate_backoff(attempts, config)
                        if last_retryable and has_more
                        else None
                    )

                    log.warning(
                        "retry_attempt_failed",
                        attempt=attempts,
                        max_attempts=config.max_attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                        retryable=last_retryable,
                        delay_seconds=round(delay, 3) if delay is not None else None,
                    )
                    if on_attempt_failed is not None:
                        on_attempt_failed(attempts, e, last_retryable, delay)

                    if not last_retryable:
                        log.error("retry_non_retryable_error", error=str(e))
                        return _result(
                            RetryOutcome.FAILED, error=e, retryable=False
                        )

                    if delay is not None and await token.wait(delay):
                        log.info("retry_execution_cancelled", attempts=attempts)
                        return _result(RetryOutcome.CANCELLED, error=last_error)
                    continue

                log.info(
                    "retry_execution_succeeded",
                    attempts=attempts,
                    total_time_seconds=round(time.monotonic() - start, 3),
                )
                return _result(RetryOutcome.SUCCEEDED, result=value)

            log.error(
                "retry_attempts_exhausted",
                attempts=attempts,
                error=str(last_error) if last_error else None,
            )
            return _result(
                RetryOutcome.FAILED,
                error=last_error or RuntimeError("All retry attempts exhausted"),
                retryable=last_retryable,
            )
        finally:
            if self._active.get(id) is token:
                del self._active[id]

    @staticmethod
    async def _run_attempt(
        unit_of_work: Callable[[], Awaitable[Any]],
        token: CancellationToken,
        attempt_timeout: Optional[float],
    ) -> Any:
        """Run one attempt raced against the cancellation token."""
        work = asyncio.ensure_future(unit_of_work())
        cancel_wait = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, cancel_wait},
                timeout=attempt_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work in done:
                if work.cancelled():
                    if token.cancelled:
                        raise _AttemptCancelled()
                    raise AttemptInterruptedError(
                        "Attempt was cancelled without a cancellation request"
                    )
                return work.result()
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            if cancel_wait in done:
                raise _AttemptCancelled()
            raise TimeoutError(f"Attempt timed out after {attempt_timeout}s")
        finally:
            if not work.done():
                work.cancel()
            if not cancel_wait.done():
                cancel_wait.cancel()
