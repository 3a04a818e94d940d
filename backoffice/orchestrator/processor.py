"""Run one job through its handler and commit the resulting state."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from backoffice.errors import JobSetupError
from backoffice.jobs.models import JobKind, JobRecord, JobStatus
from backoffice.logging import get_logger
from backoffice.orchestrator import events as orchestrator_events
from backoffice.orchestrator.handlers import HandlerOutcome, JobDeadlineExceeded, JobHandler
from backoffice.orchestrator.retry import RetryPolicyProvider, describe_error
from backoffice.services.sinks import Notifier
from backoffice.utils.time import now_utc

TIMEOUT_MESSAGE = "Job timed out"
INTERRUPTED_MESSAGE = "Job interrupted while running"

RetryScheduler = Callable[[JobRecord, float], None]


class JobProcessor:
    """Execute a single job at a time and apply its outcome to the record.

    The active set and every status change are guarded by the queue lock
    passed in as ``lock`` so the engine's ``cancel`` and ``status`` calls see
    consistent records. Retries are handed to ``schedule_retry`` once the job
    has left the active set.
    """

    def __init__(
        self,
        handlers: Mapping[JobKind, JobHandler],
        *,
        lock: threading.RLock,
        retry_provider: RetryPolicyProvider,
        notifier: Notifier,
        schedule_retry: RetryScheduler,
        now_factory: Callable[[], datetime] = now_utc,
    ) -> None:
        self._handlers = dict(handlers)
        self._lock = lock
        self._retry_provider = retry_provider
        self._notifier = notifier
        self._schedule_retry = schedule_retry
        self._now = now_factory
        self._active: dict[str, JobRecord] = {}
        self._logger = get_logger(__name__)

    @property
    def active(self) -> Mapping[str, JobRecord]:
        with self._lock:
            return dict(self._active)

    def get_active(self, job_id: str) -> JobRecord | None:
        with self._lock:
            return self._active.get(job_id)

    async def process(self, job: JobRecord) -> None:
        handler = self._handlers.get(job.kind)
        start = time.perf_counter()
        with self._lock:
            if job.status is not JobStatus.QUEUED:
                return
            job.transition(JobStatus.PROCESSING, at=self._now())
            job.attempts += 1
            job.retry_at = None
            self._active[job.id] = job
        orchestrator_events.emit_dispatch_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            status="started",
            attempts=job.attempts,
        )

        retry_delay: float | None = None
        try:
            if handler is None:
                raise JobSetupError(f"No handler registered for {job.kind.value} jobs")
            outcome = await handler(job)
        except JobDeadlineExceeded:
            await self._handle_deadline(job, start)
        except asyncio.CancelledError:
            with self._lock:
                if job.status is JobStatus.PROCESSING:
                    job.cancellation_reason = INTERRUPTED_MESSAGE
                    job.last_error = INTERRUPTED_MESSAGE
                    job.transition(JobStatus.CANCELLING, at=self._now())
                if job.status is JobStatus.CANCELLING:
                    job.transition(JobStatus.CANCELLED, at=self._now())
            orchestrator_events.emit_cancel_event(
                self._logger,
                job_id=job.id,
                job_type=job.kind.value,
                status=job.status.value,
                reason=job.cancellation_reason,
            )
            raise
        except Exception as exc:
            retry_delay = await self._handle_failure(job, exc, start)
        else:
            await self._handle_success(job, outcome, start)
        finally:
            with self._lock:
                self._active.pop(job.id, None)

        if retry_delay is not None:
            self._schedule_retry(job, retry_delay)

    async def expire(self, job: JobRecord) -> None:
        """Mark a job that passed its deadline while waiting in the queue."""

        with self._lock:
            if job.status is not JobStatus.QUEUED:
                return
            job.transition(JobStatus.TIMEOUT, at=self._now())
            job.last_error = TIMEOUT_MESSAGE
        orchestrator_events.emit_timeout_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            attempts=job.attempts,
            timeout_at=orchestrator_events.format_datetime(job.timeout_at),
        )
        await self._notifier.failed(job.id, TIMEOUT_MESSAGE, False)

    async def _handle_success(self, job: JobRecord, outcome: HandlerOutcome, start: float) -> None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        with self._lock:
            cancelled = job.status is JobStatus.CANCELLING
            if cancelled:
                job.transition(JobStatus.CANCELLED, at=self._now())
            else:
                job.transition(outcome.status, at=self._now())

        if cancelled:
            orchestrator_events.emit_cancel_event(
                self._logger,
                job_id=job.id,
                job_type=job.kind.value,
                status=JobStatus.CANCELLED.value,
                reason=job.cancellation_reason,
            )
            return

        orchestrator_events.emit_commit_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            status=job.status.value,
            attempts=job.attempts,
            duration_ms=duration_ms,
            success_rate=job.success_rate,
        )
        await self._notifier.completed(job.id, outcome.summary)

    async def _handle_deadline(self, job: JobRecord, start: float) -> None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        with self._lock:
            cancelled = job.status is JobStatus.CANCELLING
            if cancelled:
                job.transition(JobStatus.CANCELLED, at=self._now())
            else:
                job.transition(JobStatus.TIMEOUT, at=self._now())
                job.last_error = TIMEOUT_MESSAGE

        if cancelled:
            orchestrator_events.emit_cancel_event(
                self._logger,
                job_id=job.id,
                job_type=job.kind.value,
                status=JobStatus.CANCELLED.value,
                reason=job.cancellation_reason,
            )
            return

        orchestrator_events.emit_timeout_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            attempts=job.attempts,
            timeout_at=orchestrator_events.format_datetime(job.timeout_at),
        )
        orchestrator_events.emit_commit_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            status=JobStatus.TIMEOUT.value,
            attempts=job.attempts,
            duration_ms=duration_ms,
        )
        await self._notifier.failed(job.id, TIMEOUT_MESSAGE, False)

    async def _handle_failure(self, job: JobRecord, exc: Exception, start: float) -> float | None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        now = self._now()
        with self._lock:
            if job.status is JobStatus.CANCELLING:
                job.last_error = describe_error(exc)
                job.transition(JobStatus.CANCELLED, at=now)
                decision = None
            else:
                decision = self._retry_provider.decide(job.kind, job.attempts, exc)
                job.last_error = decision.reason
                if decision.retry:
                    job.transition(JobStatus.RETRYING, at=now)
                    job.retry_at = now + timedelta(seconds=decision.delay_s)
                else:
                    job.transition(JobStatus.FAILED, at=now)

        if decision is None:
            orchestrator_events.emit_cancel_event(
                self._logger,
                job_id=job.id,
                job_type=job.kind.value,
                status=JobStatus.CANCELLED.value,
                reason=job.cancellation_reason,
            )
            return None

        if decision.retry:
            orchestrator_events.emit_retry_event(
                self._logger,
                job_id=job.id,
                job_type=job.kind.value,
                attempts=job.attempts,
                retry_in=decision.delay_s,
                retry_at=orchestrator_events.format_datetime(job.retry_at),
                error=decision.reason,
            )
            return decision.delay_s

        orchestrator_events.emit_commit_event(
            self._logger,
            job_id=job.id,
            job_type=job.kind.value,
            status=JobStatus.FAILED.value,
            attempts=job.attempts,
            duration_ms=duration_ms,
            error=decision.reason,
        )
        await self._notifier.failed(job.id, decision.reason, decision.retryable)
        return None


__all__ = ["INTERRUPTED_MESSAGE", "JobProcessor", "TIMEOUT_MESSAGE"]
