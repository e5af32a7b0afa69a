"""Tests for the in-memory job queue."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.resilience import RetryConfig
from app.jobs.errors import JobNotFoundError, JobValidationError
from app.jobs.events import JobEventType
from app.jobs.models import utc_now
from app.jobs.queue import ESCALATION_REASON_EXHAUSTED, ESCALATION_REASON_TERMINAL, JobQueue
from app.jobs.types import IntegrationType, JobPriority, JobStatus
from app.services.integrations.health import IntegrationHealthTracker, IntegrationStatus


class RecordingListener:
    def __init__(self):
        self.events = []

    def on_job_event(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [event.type for event in self.events]


@pytest.fixture
def tracker():
    return IntegrationHealthTracker()


@pytest.fixture
def queue(tracker):
    return JobQueue(health_tracker=tracker, max_concurrent=5)


@pytest.fixture
def listener(queue):
    recorder = RecordingListener()
    queue.add_listener(recorder)
    return recorder


async def _succeed(job, ctx):
    return {"delivered": True, "attempt": ctx["attempt"]}


async def _always_transient(job, ctx):
    raise ConnectionError("smtp connection reset")


async def _always_terminal(job, ctx):
    raise ValueError("invalid recipient")


# =============================================================================
# Enqueue
# =============================================================================


class TestAddJob:
    def test_add_definition(self, queue, listener, make_definition):
        job = queue.add_job(make_definition())

        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert queue.get_job("job-1") is job
        assert len(queue) == 1
        assert listener.types == [JobEventType.JOB_ADDED]

    def test_add_from_mapping(self, queue):
        job = queue.add_job(
            {
                "id": "job-2",
                "type": "render_pdf",
                "integration": "pdf",
                "priority": "high",
                "metadata": {"source": "api"},
            }
        )

        assert job.integration == IntegrationType.PDF
        assert job.priority == JobPriority.HIGH
        assert job.metadata == {"source": "api"}

    def test_invalid_mapping_lists_errors(self, queue):
        with pytest.raises(JobValidationError) as exc_info:
            queue.add_job({"id": "job-3", "type": "render_pdf", "integration": "fax"})

        assert any(error.startswith("integration") for error in exc_info.value.errors)
        assert len(queue) == 0

    def test_duplicate_id_rejected(self, queue, make_definition):
        queue.add_job(make_definition())

        with pytest.raises(JobValidationError, match="already exists"):
            queue.add_job(make_definition())

    def test_max_concurrent_must_be_positive(self):
        with pytest.raises(ValueError):
            JobQueue(max_concurrent=0)


class TestListeners:
    def test_unsubscribe(self, queue, make_definition):
        recorder = RecordingListener()
        remove = queue.add_listener(recorder)
        queue.add_job(make_definition(job_id="a"))

        remove()
        queue.add_job(make_definition(job_id="b"))

        assert [event.job_id for event in recorder.events] == ["a"]

    def test_failing_listener_does_not_break_queue(self, queue, make_definition):
        class Broken:
            def on_job_event(self, event):
                raise RuntimeError("listener bug")

        recorder = RecordingListener()
        queue.add_listener(Broken())
        queue.add_listener(recorder)

        job = queue.add_job(make_definition())

        assert job.status == JobStatus.PENDING
        assert recorder.types == [JobEventType.JOB_ADDED]


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_filters(self, queue, make_definition):
        queue.add_job(make_definition(job_id="email-1"))
        queue.add_job(make_definition(job_id="pdf-1", integration=IntegrationType.PDF))
        queue.cancel_job("email-1")

        assert [j.id for j in queue.get_jobs_by_status(JobStatus.CANCELLED)] == ["email-1"]
        assert [j.id for j in queue.get_jobs_by_integration(IntegrationType.PDF)] == ["pdf-1"]

    def test_list_jobs_newest_first(self, queue, make_definition):
        now = utc_now()
        queue.add_job(make_definition(job_id="old", created_at=now - timedelta(minutes=2)))
        queue.add_job(make_definition(job_id="new", created_at=now))
        queue.add_job(make_definition(job_id="mid", created_at=now - timedelta(minutes=1)))

        assert [j.id for j in queue.list_jobs()] == ["new", "mid", "old"]
        assert [j.id for j in queue.list_jobs(limit=1)] == ["new"]
        assert queue.list_jobs(integration=IntegrationType.AI) == []

    def test_require_job(self, queue, make_definition):
        queue.add_job(make_definition())

        assert queue.require_job("job-1").id == "job-1"
        with pytest.raises(JobNotFoundError) as exc_info:
            queue.require_job("missing")
        assert exc_info.value.job_id == "missing"


# =============================================================================
# Scheduling
# =============================================================================


class TestScheduling:
    @pytest.mark.asyncio
    async def test_priority_then_age_ordering(self, queue, make_definition):
        queue.register_processor("send_email", _succeed)
        now = utc_now()
        queue.add_job(make_definition(job_id="low", priority=JobPriority.LOW, created_at=now - timedelta(minutes=5)))
        queue.add_job(make_definition(job_id="normal-new", created_at=now))
        queue.add_job(make_definition(job_id="normal-old", created_at=now - timedelta(minutes=1)))
        queue.add_job(make_definition(job_id="critical", priority=JobPriority.CRITICAL, created_at=now))
        queue.add_job(make_definition(job_id="high", priority=JobPriority.HIGH, created_at=now))

        dispatched = queue.process_queue()
        await queue.join()

        assert dispatched == ["critical", "high", "normal-old", "normal-new", "low"]

    @pytest.mark.asyncio
    async def test_insertion_order_breaks_ties(self, queue, make_definition):
        queue.register_processor("send_email", _succeed)
        now = utc_now()
        for job_id in ("first", "second", "third"):
            queue.add_job(make_definition(job_id=job_id, created_at=now))

        dispatched = queue.process_queue()
        await queue.join()

        assert dispatched == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_future_jobs_wait(self, queue, make_definition):
        queue.register_processor("send_email", _succeed)
        queue.add_job(
            make_definition(scheduled_for=utc_now() + timedelta(hours=1))
        )

        assert queue.process_queue() == []
        assert queue.get_job("job-1").status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, make_definition):
        queue = JobQueue(max_concurrent=2)
        release = asyncio.Event()

        async def blocked(job, ctx):
            await release.wait()
            return "done"

        queue.register_processor("send_email", blocked)
        for i in range(3):
            queue.add_job(make_definition(job_id=f"job-{i}"))

        assert len(queue.process_queue()) == 2
        assert queue.active_count == 2
        assert queue.process_queue() == []
        assert queue.get_queue_stats().processing_jobs == 2

        release.set()
        await queue.join()
        assert queue.active_count == 0

        assert queue.process_queue() == ["job-2"]
        await queue.join()
        assert queue.get_queue_stats().completed_jobs == 3

    @pytest.mark.asyncio
    async def test_processor_receives_context(self, queue, make_definition):
        seen = {}

        async def capture(job, ctx):
            seen.update(ctx)
            return None

        queue.register_processor("send_email", capture)
        queue.add_job(make_definition(metadata={"tenant": "acme"}))
        queue.process_queue()
        await queue.join()

        assert seen["job_id"] == "job-1"
        assert seen["attempt"] == 1
        assert seen["metadata"] == {"tenant": "acme"}
        assert seen["cancel_token"] is not None


# =============================================================================
# Outcomes
# =============================================================================


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_success(self, queue, tracker, listener, make_definition):
        queue.register_processor("send_email", _succeed)
        queue.add_job(make_definition())

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"delivered": True, "attempt": 1}
        assert job.attempts == 1
        assert job.started_at is not None and job.completed_at is not None
        assert tracker.get_status(IntegrationType.EMAIL).total_successes == 1
        assert listener.types == [
            JobEventType.JOB_ADDED,
            JobEventType.JOB_PROCESSING,
            JobEventType.JOB_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, queue, listener, make_definition):
        calls = 0

        async def flaky(job, ctx):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("reset")
            return "sent"

        queue.register_processor("send_email", flaky)
        queue.add_job(make_definition())
        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 2
        assert job.last_error is None
        assert listener.types.count(JobEventType.JOB_ATTEMPT_FAILED) == 1

    @pytest.mark.asyncio
    async def test_exhausted_normal_priority_fails(self, queue, tracker, make_definition):
        queue.register_processor("send_email", _always_transient)
        queue.add_job(make_definition(max_attempts=3))

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.last_error.retryable is True
        assert job.last_error.code == "ConnectionError"
        assert job.retries_exhausted
        assert tracker.get_status(IntegrationType.EMAIL).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_exhausted_high_priority_escalates(self, queue, listener, make_definition):
        queue.register_processor("send_email", _always_transient)
        queue.add_job(make_definition(priority=JobPriority.HIGH, max_attempts=2))

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.MANUAL_INTERVENTION
        assert job.metadata["manual_intervention_reason"] == ESCALATION_REASON_EXHAUSTED
        assert job.metadata["manual_intervention_requested_by"] == "system"
        assert listener.types[-2:] == [
            JobEventType.JOB_FAILED,
            JobEventType.JOB_MANUAL_INTERVENTION,
        ]

    @pytest.mark.asyncio
    async def test_terminal_error_single_attempt(self, queue, make_definition):
        queue.register_processor("send_email", _always_terminal)
        queue.add_job(make_definition(priority=JobPriority.CRITICAL, max_attempts=5))

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.attempts == 1
        assert job.last_error.retryable is False
        assert job.last_error.code == "ValueError"
        assert job.status == JobStatus.MANUAL_INTERVENTION
        assert job.metadata["manual_intervention_reason"] == ESCALATION_REASON_TERMINAL

    @pytest.mark.asyncio
    async def test_missing_processor_not_reported_to_tracker(self, queue, tracker, make_definition):
        queue.add_job(make_definition(job_type="unregistered"))

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert job.last_error.code == "ProcessorNotFoundError"
        assert tracker.get_status(IntegrationType.EMAIL).status == IntegrationStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_attempt_timeout(self, queue, make_definition):
        async def slow(job, ctx):
            await asyncio.sleep(1)

        queue.register_processor("send_email", slow)
        queue.add_job(make_definition(max_attempts=1, timeout_seconds=0.01))

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.FAILED
        assert job.last_error.code == "TimeoutError"

    @pytest.mark.asyncio
    async def test_stray_cancelled_error_is_retried(self, queue, make_definition):
        calls = 0

        async def interrupted_once(job, ctx):
            nonlocal calls
            calls += 1
            if calls == 1:
                inner = asyncio.ensure_future(asyncio.sleep(10))
                inner.cancel()
                await inner
            return "sent"

        queue.register_processor("send_email", interrupted_once)
        queue.add_job(make_definition())

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 2
        assert queue.active_count == 0

    @pytest.mark.asyncio
    async def test_stray_cancelled_error_escalates_high_priority(self, queue, make_definition):
        async def always_interrupted(job, ctx):
            raise asyncio.CancelledError()

        queue.register_processor("send_email", always_interrupted)
        queue.add_job(make_definition(priority=JobPriority.HIGH, max_attempts=2))

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.MANUAL_INTERVENTION
        assert job.last_error.code == "AttemptInterruptedError"
        assert job.metadata["manual_intervention_reason"] == ESCALATION_REASON_EXHAUSTED

    @pytest.mark.asyncio
    async def test_executor_error_fails_job(self, tracker, make_definition):
        executor = MagicMock()
        executor.execute_with_retry = AsyncMock(side_effect=RuntimeError("executor bug"))
        queue = JobQueue(executor=executor, health_tracker=tracker)
        queue.register_processor("send_email", _succeed)
        queue.add_job(make_definition())

        queue.process_queue()
        await queue.join()

        job = queue.get_job("job-1")
        assert job.status == JobStatus.FAILED
        assert job.last_error.message == "executor bug"
        assert queue.active_count == 0


# =============================================================================
# Mutations
# =============================================================================


class TestCancel:
    def test_cancel_pending(self, queue, listener, make_definition):
        queue.add_job(make_definition())

        assert queue.cancel_job("job-1", reason="customer unsubscribed") is True

        job = queue.get_job("job-1")
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at is not None
        assert job.metadata["cancellation_reason"] == "customer unsubscribed"
        assert listener.types[-1] == JobEventType.JOB_CANCELLED

    def test_cancel_terminal_or_unknown(self, queue, make_definition):
        queue.add_job(make_definition())
        queue.cancel_job("job-1")

        assert queue.cancel_job("job-1") is False
        assert queue.cancel_job("missing") is False

    @pytest.mark.asyncio
    async def test_cancel_mid_backoff(self, queue, listener, make_definition, eventually):
        queue.register_processor("send_email", _always_transient)
        queue.add_job(
            make_definition(
                retry_config=RetryConfig(
                    max_attempts=3,
                    base_delay_seconds=10.0,
                    max_delay_seconds=10.0,
                    jitter=False,
                )
            )
        )

        queue.process_queue()
        await eventually(lambda: JobEventType.JOB_ATTEMPT_FAILED in listener.types)

        job = queue.get_job("job-1")
        assert job.next_retry_at is not None
        assert queue.cancel_job("job-1") is True
        assert queue.active_count == 0

        await asyncio.wait_for(queue.join(), timeout=1.0)

        assert job.status == JobStatus.CANCELLED
        assert job.attempts == 1
        assert job.next_retry_at is None
        assert JobEventType.JOB_FAILED not in listener.types


class TestRetryAndIntervention:
    @pytest.mark.asyncio
    async def test_retry_failed_job(self, queue, make_definition):
        queue.register_processor("send_email", _always_terminal)
        queue.add_job(make_definition())
        queue.process_queue()
        await queue.join()

        assert queue.retry_job("job-1") is True

        job = queue.get_job("job-1")
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.last_error is None
        assert job.completed_at is None

    def test_retry_requires_failed_or_intervention(self, queue, make_definition):
        queue.add_job(make_definition())

        assert queue.retry_job("job-1") is False
        assert queue.retry_job("missing") is False

    @pytest.mark.asyncio
    async def test_retry_refused_for_completed_or_cancelled(self, queue, make_definition):
        queue.register_processor("send_email", _succeed)
        queue.add_job(make_definition(job_id="done"))
        queue.process_queue()
        await queue.join()
        queue.add_job(make_definition(job_id="dropped"))
        queue.cancel_job("dropped", reason="duplicate")

        for job_id in ("done", "dropped"):
            job = queue.get_job(job_id)
            before = (job.status, job.attempts, job.result, job.completed_at, job.last_error)

            assert queue.retry_job(job_id) is False
            assert (
                job.status, job.attempts, job.result, job.completed_at, job.last_error
            ) == before

        assert queue.get_job("done").status == JobStatus.COMPLETED
        assert queue.get_job("dropped").status == JobStatus.CANCELLED

    def test_mark_for_manual_intervention(self, queue, listener, make_definition):
        queue.add_job(make_definition())

        assert queue.mark_for_manual_intervention("job-1", "Needs review", "ops") is True

        job = queue.get_job("job-1")
        assert job.status == JobStatus.MANUAL_INTERVENTION
        assert job.metadata["manual_intervention_reason"] == "Needs review"
        assert job.metadata["manual_intervention_requested_by"] == "ops"
        assert listener.events[-1].data["previous_status"] == "pending"

        # Idempotent while awaiting a decision
        assert queue.mark_for_manual_intervention("job-1", "again") is True
        assert listener.types.count(JobEventType.JOB_MANUAL_INTERVENTION) == 1

    def test_mark_terminal_job_refused(self, queue, make_definition):
        queue.add_job(make_definition())
        queue.cancel_job("job-1")

        assert queue.mark_for_manual_intervention("job-1", "too late") is False

    def test_modify_payload(self, queue, make_definition):
        queue.add_job(make_definition(payload={"to": "old@example.com"}))

        assert queue.modify_job_payload("job-1", {"to": "new@example.com"}) is False

        queue.mark_for_manual_intervention("job-1", "bad address")
        assert queue.modify_job_payload("job-1", {"to": "new@example.com"}) is True

        job = queue.get_job("job-1")
        assert job.definition.payload == {"to": "new@example.com"}
        assert "payload_modified_at" in job.metadata


# =============================================================================
# Statistics & housekeeping
# =============================================================================


class TestStatsAndCleanup:
    @pytest.mark.asyncio
    async def test_stats(self, queue, make_definition):
        queue.register_processor("send_email", _succeed)
        queue.add_job(make_definition(job_id="done"))
        queue.process_queue()
        await queue.join()
        queue.add_job(make_definition(job_id="waiting"))
        queue.add_job(make_definition(job_id="stopped"))
        queue.cancel_job("stopped")

        stats = queue.get_queue_stats()

        assert stats.total_jobs == 3
        assert stats.completed_jobs == 1
        assert stats.pending_jobs == 1
        assert stats.cancelled_jobs == 1
        assert stats.throughput_last_hour == 1
        assert stats.average_processing_seconds >= 0
        assert stats.max_concurrent == 5

    def test_cleanup_removes_old_terminal_jobs(self, queue, listener, make_definition):
        old = utc_now() - timedelta(days=2)
        queue.add_job(make_definition(job_id="old-cancelled", created_at=old))
        queue.add_job(make_definition(job_id="old-pending", created_at=old))
        queue.add_job(make_definition(job_id="new-cancelled"))
        queue.cancel_job("old-cancelled")
        queue.cancel_job("new-cancelled")

        removed = queue.cleanup_old_jobs(timedelta(hours=24))

        assert removed == 1
        assert queue.get_job("old-cancelled") is None
        assert queue.get_job("old-pending") is not None
        assert queue.get_job("new-cancelled") is not None
        assert listener.events[-1].type == JobEventType.JOBS_CLEANED_UP
        assert listener.events[-1].data["job_ids"] == ["old-cancelled"]

    def test_cleanup_keeps_jobs_awaiting_intervention(self, queue, make_definition):
        old = utc_now() - timedelta(days=2)
        queue.add_job(make_definition(created_at=old))
        queue.mark_for_manual_intervention("job-1", "review")

        assert queue.cleanup_old_jobs(timedelta(hours=1)) == 0


@pytest.mark.asyncio
async def test_shutdown_stops_in_flight_jobs(make_definition):
    queue = JobQueue()
    started = asyncio.Event()

    async def hang(job, ctx):
        started.set()
        await asyncio.sleep(10)

    queue.register_processor("send_email", hang)
    queue.add_job(make_definition())
    queue.process_queue()
    await asyncio.wait_for(started.wait(), timeout=1.0)

    await asyncio.wait_for(queue.shutdown(), timeout=1.0)

    assert queue.active_count == 0
