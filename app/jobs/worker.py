"""Queue scheduler - drives JobQueue ticks and retention cleanup."""

import asyncio
import traceback
from datetime import timedelta
from typing import Optional

import structlog

from app import __version__
from app.jobs.queue import JobQueue

logger = structlog.get_logger(__name__)


class QueueScheduler:
    """Background loop that ticks the queue on a fixed interval."""

    def __init__(
        self,
        queue: JobQueue,
        tick_interval_seconds: float = 5.0,
        cleanup_interval_seconds: float = 3600.0,
        retention: timedelta = timedelta(hours=24),
    ):
        self._queue = queue
        self._tick_interval = tick_interval_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._retention = retention

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._running = False
        self._tick_lock = asyncio.Lock()
        self._last_cleanup: Optional[float] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduling loop."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        logger.info(
            "scheduler_started",
            version=__version__,
            tick_interval_seconds=self._tick_interval,
            max_concurrent=self._queue.max_concurrent,
        )
        self._stop_event.clear()
        self._running = True
        self._last_cleanup = asyncio.get_running_loop().time()
        self._task = asyncio.create_task(self._loop())

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop the loop. In-flight jobs are left to the queue's shutdown."""
        if not self._running:
            return

        self._stop_event.set()
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("scheduler_stop_timeout")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._running = False
        logger.info("scheduler_stopped", ticks=self.ticks)

    async def run_once(self) -> list[str]:
        """Run a single tick (manual trigger). Returns dispatched job ids."""
        if self._tick_lock.locked():
            return []
        async with self._tick_lock:
            dispatched = self._queue.process_queue()
            self.ticks += 1
            if dispatched:
                logger.debug("scheduler_tick", dispatched=dispatched)
            return dispatched

    def run_cleanup(self) -> int:
        return self._queue.cleanup_old_jobs(self._retention)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stop_event.is_set():
            try:
                await self.run_once()

                now = loop.time()
                if (
                    self._last_cleanup is None
                    or now - self._last_cleanup >= self._cleanup_interval
                ):
                    self.run_cleanup()
                    self._last_cleanup = now
            except Exception as e:
                logger.error(
                    "scheduler_tick_error",
                    error=str(e),
                    traceback=traceback.format_exc(),
                )

            # Wait for next tick (interruptible)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._tick_interval
                )
                break
            except asyncio.TimeoutError:
                pass
