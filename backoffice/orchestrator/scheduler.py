"""Single cooperative loop draining the job queue."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime

from backoffice.jobs.models import JobRecord, JobStatus
from backoffice.jobs.queue import PriorityQueue
from backoffice.logging import get_logger
from backoffice.orchestrator import events as orchestrator_events
from backoffice.orchestrator.processor import JobProcessor
from backoffice.utils.time import ensure_aware, now_utc


def _is_ready(job: JobRecord, now: datetime) -> bool:
    # An expired job is settled right away, even if its start lies ahead.
    return job.is_expired(now) or job.is_due(now)


class QueueScheduler:
    """Drain the queue one job at a time.

    At most one drain task exists per scheduler. The ``_active`` flag is only
    flipped while holding the queue lock, so an enqueue racing with the loop
    going idle either lands in the queue before the final pop or restarts the
    loop through :meth:`kick`.

    A head that is not due yet goes back through the regular stable insert
    and the first due job behind it runs instead. The loop only sleeps when
    nothing in the queue is due.
    """

    def __init__(
        self,
        queue: PriorityQueue,
        processor: JobProcessor,
        *,
        poll_interval_s: float = 60.0,
        now_factory: Callable[[], datetime] = now_utc,
    ) -> None:
        self._queue = queue
        self._processor = processor
        self._poll_interval = max(0.0, float(poll_interval_s))
        self._now = now_factory
        self._logger = get_logger(__name__)
        self._active = False
        self._stopped = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._wake: asyncio.Event | None = None
        self._stop_signal: asyncio.Event | None = None
        self.runs = 0

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def is_active(self) -> bool:
        with self._queue.lock:
            return self._active

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def kick(self) -> None:
        """Start the drain loop if it is idle, otherwise wake it up."""

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or self._loop.is_closed()):
            self._loop = running
        if self._loop is None:
            # Nothing to run on yet; the engine kicks again from start().
            self._logger.debug("Scheduler kick ignored; no event loop bound")
            return
        if running is self._loop:
            self._start_or_wake()
        else:
            self._loop.call_soon_threadsafe(self._start_or_wake)

    def _start_or_wake(self) -> None:
        with self._queue.lock:
            if self._stopped:
                return
            start = not self._active
            if start:
                self._active = True
        if not start:
            if self._wake is not None:
                self._wake.set()
            return
        self._wake = asyncio.Event()
        if self._stop_signal is None:
            self._stop_signal = asyncio.Event()
        self.runs += 1
        self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        exited_idle = False
        assert self._wake is not None and self._stop_signal is not None
        try:
            while not self._stop_signal.is_set():
                self._wake.clear()
                with self._queue.lock:
                    job = self._queue.remove_next()
                    if job is None:
                        self._active = False
                        exited_idle = True
                        return

                now = self._now()
                if not _is_ready(job, now):
                    with self._queue.lock:
                        if job.status is not JobStatus.QUEUED:
                            continue
                        self._queue.insert(job)
                        ready = self._queue.remove_first(lambda item: _is_ready(item, now))
                        upcoming = None if ready is not None else self._next_scheduled()
                    if ready is None:
                        await self._wait_for(upcoming or job, now)
                        continue
                    job = ready

                if job.is_expired(now):
                    await self._processor.expire(job)
                    continue

                await self._processor.process(job)
        finally:
            if not exited_idle:
                with self._queue.lock:
                    self._active = False

    def _next_scheduled(self) -> JobRecord | None:
        waiting = [item for item in self._queue.snapshot() if item.scheduled_for is not None]
        if not waiting:
            return None
        return min(waiting, key=lambda item: ensure_aware(item.scheduled_for))

    async def _wait_for(self, job: JobRecord, now: datetime) -> None:
        assert job.scheduled_for is not None
        until_due = (ensure_aware(job.scheduled_for) - now).total_seconds()
        wait_s = max(0.0, min(self._poll_interval, until_due))
        orchestrator_events.emit_schedule_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            status="deferred",
            attempts=job.attempts,
            priority=job.priority,
            available_at=orchestrator_events.format_datetime(job.scheduled_for),
            wait_s=wait_s,
        )
        await self._sleep(wait_s)

    async def _sleep(self, timeout: float) -> None:
        if timeout <= 0:
            await asyncio.sleep(0)
            return

        assert self._wake is not None and self._stop_signal is not None
        waiters = [
            asyncio.create_task(self._wake.wait()),
            asyncio.create_task(self._stop_signal.wait()),
        ]
        done, pending = await asyncio.wait(
            waiters,
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in done:
            with contextlib.suppress(asyncio.CancelledError):
                task.result()
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def join(self) -> None:
        """Wait until the queue is drained and the loop went idle."""

        while True:
            task = self._task
            if task is None or task.done():
                with self._queue.lock:
                    if not self._active:
                        return
            if task is not None and not task.done():
                await asyncio.shield(task)
            else:
                await asyncio.sleep(0)

    async def stop(self) -> None:
        """Stop the loop after the current job and refuse further kicks."""

        with self._queue.lock:
            self._stopped = True
        if self._stop_signal is not None:
            self._stop_signal.set()
        task = self._task
        if task is not None and not task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await task


__all__ = ["QueueScheduler"]
