"""Public facade of the job engine: enqueue, cancel and inspect jobs."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from backoffice.config import EngineConfig
from backoffice.errors import JobValidationError
from backoffice.integrations.registry import PlatformRegistry
from backoffice.jobs.models import JobKind, JobRecord, JobSnapshot, JobStatus
from backoffice.jobs.payloads import (
    DistributionPayload,
    IngestionPayload,
    SourceType,
    parse_kind,
    parse_payload,
)
from backoffice.jobs.queue import PriorityQueue
from backoffice.logging import get_logger
from backoffice.logging_events import log_event
from backoffice.orchestrator import events as orchestrator_events
from backoffice.orchestrator.handlers import JobHandler
from backoffice.orchestrator.processor import JobProcessor
from backoffice.orchestrator.retry import RetryPolicyProvider
from backoffice.orchestrator.scheduler import QueueScheduler
from backoffice.services.sinks import Notifier
from backoffice.utils.priority import resolve_priority
from backoffice.utils.time import ensure_aware, now_utc

logger = get_logger(__name__)

CANCEL_CANCELLED = "cancelled"
CANCEL_CANCELLING = "cancelling"
CANCEL_NOT_FOUND = "not_found"


@dataclass(slots=True, frozen=True)
class EnqueueReceipt:
    job_id: str
    status: JobStatus
    queue_position: int
    estimated_start: datetime


@dataclass(slots=True, frozen=True)
class CancelOutcome:
    status: str
    message: str


class JobEngine:
    """Own the queue, the scheduler loop and every job record.

    Records are kept after they reach a terminal state so :meth:`status` and
    :meth:`jobs_for_release` keep answering for finished jobs. They are
    dropped once they have been finished for longer than
    ``config.record_retention_s``; every enqueue prunes them.
    """

    def __init__(
        self,
        *,
        config: EngineConfig,
        registry: PlatformRegistry,
        handlers: Mapping[JobKind, JobHandler],
        notifier: Notifier | None = None,
        now_factory: Callable[[], datetime] = now_utc,
    ) -> None:
        self._config = config
        self._registry = registry
        self._now = now_factory
        self._queue = PriorityQueue()
        self._jobs: dict[str, JobRecord] = {}
        self._pending_retries: dict[str, asyncio.Task[None]] = {}
        self._processor = JobProcessor(
            handlers,
            lock=self._queue.lock,
            retry_provider=RetryPolicyProvider(config),
            notifier=notifier or Notifier(),
            schedule_retry=self._schedule_retry,
            now_factory=now_factory,
        )
        self._scheduler = QueueScheduler(
            self._queue,
            self._processor,
            poll_interval_s=config.poll_interval_s,
            now_factory=now_factory,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def registry(self) -> PlatformRegistry:
        return self._registry

    @property
    def queue(self) -> PriorityQueue:
        return self._queue

    @property
    def scheduler(self) -> QueueScheduler:
        return self._scheduler

    @property
    def processor(self) -> JobProcessor:
        return self._processor

    async def start(self) -> None:
        """Bind the engine to the running loop so other threads may enqueue."""

        self._scheduler.bind(asyncio.get_running_loop())
        if len(self._queue):
            self._scheduler.kick()

    def enqueue(
        self,
        kind: JobKind | str,
        payload: BaseModel | Mapping[str, Any],
        priority: str | int | None = "normal",
    ) -> EnqueueReceipt:
        """Validate ``payload`` and queue a new job.

        Raises :class:`JobValidationError` for unknown kinds, invalid payloads
        or platforms without the required adapter capability.
        """

        job_kind = parse_kind(kind)
        model = parse_payload(job_kind, payload)
        self._check_capabilities(job_kind, model)

        now = self._now()
        kind_config = self._config.for_kind(job_kind.value)
        scheduled_for = getattr(model, "scheduled_for", None)
        deadline_base = now
        if scheduled_for is not None and ensure_aware(scheduled_for) > now:
            deadline_base = ensure_aware(scheduled_for)
        job = JobRecord(
            id=self._new_job_id(job_kind, now),
            kind=job_kind,
            priority=resolve_priority(priority, self._config.priority_levels),
            payload=model,
            max_attempts=kind_config.max_attempts,
            created_at=now,
            timeout_at=deadline_base + timedelta(seconds=kind_config.timeout_s),
            scheduled_for=scheduled_for,
        )
        with self._queue.lock:
            self.prune_finished(now)
            self._jobs[job.id] = job
            position = self._queue.insert(job)
            estimated_start = self._estimate_start(job, position, now)

        orchestrator_events.emit_enqueue_event(
            logger,
            job_id=job.id,
            job_type=job_kind.value,
            priority=job.priority,
            queue_position=position,
            scheduled_for=orchestrator_events.format_datetime(scheduled_for),
        )
        self._scheduler.kick()
        return EnqueueReceipt(
            job_id=job.id,
            status=JobStatus.QUEUED,
            queue_position=position,
            estimated_start=estimated_start,
        )

    def enqueue_distribution(
        self,
        release_id: str,
        platforms: Iterable[str],
        *,
        settings: Mapping[str, Any] | None = None,
        priority: str | int | None = "normal",
        scheduled_for: datetime | None = None,
    ) -> EnqueueReceipt:
        payload: dict[str, Any] = {
            "release_id": release_id,
            "platforms": list(platforms),
            "scheduled_for": scheduled_for,
        }
        if settings is not None:
            payload["settings"] = dict(settings)
        return self.enqueue(JobKind.DISTRIBUTION, payload, priority)

    def schedule_distribution(
        self,
        release_id: str,
        platforms: Iterable[str],
        scheduled_for: datetime,
        settings: Mapping[str, Any] | None = None,
        *,
        priority: str | int | None = "normal",
    ) -> EnqueueReceipt:
        return self.enqueue_distribution(
            release_id,
            platforms,
            settings=settings,
            priority=priority,
            scheduled_for=scheduled_for,
        )

    def enqueue_ingestion(
        self,
        platform: str,
        source_type: SourceType | str,
        *,
        priority: str | int | None = "normal",
        **options: Any,
    ) -> EnqueueReceipt:
        payload = {"platform": platform, "source_type": source_type, **options}
        return self.enqueue(JobKind.INGESTION, payload, priority)

    def cancel(self, job_id: str, reason: str = "User cancelled") -> CancelOutcome:
        """Cancel a queued, retrying or running job.

        Queued and retrying jobs are cancelled at once. A running job is
        flagged ``cancelling`` and stops before its next sub-target.
        """

        now = self._now()
        timer: asyncio.Task[None] | None = None
        with self._queue.lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                outcome = CancelOutcome(CANCEL_NOT_FOUND, "Job not found or already finished")
                job_type = job.kind.value if job is not None else None
            else:
                job_type = job.kind.value
                if job.status is JobStatus.RETRYING:
                    timer = self._pending_retries.pop(job_id, None)
                    job.retry_at = None
                    job.transition(JobStatus.QUEUED, at=now)
                if job.status is JobStatus.QUEUED:
                    self._queue.remove(job_id)
                    job.cancellation_reason = reason
                    job.transition(JobStatus.CANCELLED, at=now)
                    outcome = CancelOutcome(CANCEL_CANCELLED, "Job cancelled")
                elif job.status is JobStatus.PROCESSING:
                    job.cancellation_reason = reason
                    job.transition(JobStatus.CANCELLING, at=now)
                    outcome = CancelOutcome(
                        CANCEL_CANCELLING,
                        "Job is being cancelled after the current step",
                    )
                else:
                    outcome = CancelOutcome(CANCEL_CANCELLING, "Job is already being cancelled")

        if timer is not None:
            self._cancel_timer(timer)
        orchestrator_events.emit_cancel_event(
            logger,
            job_id=job_id,
            job_type=job_type,
            status=outcome.status,
            reason=reason if outcome.status != CANCEL_NOT_FOUND else None,
        )
        return outcome

    def status(self, job_id: str) -> JobSnapshot | None:
        now = self._now()
        with self._queue.lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.status is JobStatus.QUEUED:
                position = self._queue.position_of(job.id)
                return job.snapshot(
                    queue_position=position,
                    estimated_start=self._estimate_start(job, position, now),
                )
            if job.status in (JobStatus.PROCESSING, JobStatus.CANCELLING):
                return job.snapshot(estimated_completion=self._estimate_completion(job, now))
            if job.status is JobStatus.RETRYING:
                return job.snapshot(estimated_start=job.retry_at)
            return job.snapshot()

    def jobs_for_release(self, release_id: str) -> list[JobSnapshot]:
        """Return snapshots of every job for ``release_id``, newest first."""

        with self._queue.lock:
            ids = [
                job.id
                for job in sorted(self._jobs.values(), key=lambda item: item.created_at, reverse=True)
                if job.release_id == release_id
            ]
            return [snapshot for snapshot in map(self.status, ids) if snapshot is not None]

    def prune_finished(self, now: datetime | None = None) -> int:
        """Forget terminal records older than the retention window."""

        cutoff = (now or self._now()) - timedelta(seconds=self._config.record_retention_s)
        with self._queue.lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.finished_at is not None and ensure_aware(job.finished_at) <= cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            log_event(logger, "engine.records_pruned", level=logging.DEBUG, count=len(expired))
        return len(expired)

    async def join(self) -> None:
        """Wait until the queue is drained and no retry is pending."""

        while True:
            await self._scheduler.join()
            with self._queue.lock:
                timers = list(self._pending_retries.values())
            if not timers:
                if not self._scheduler.is_active:
                    return
                continue
            await asyncio.gather(*timers, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel pending retry timers and stop the scheduler loop."""

        with self._queue.lock:
            timers = list(self._pending_retries.values())
            self._pending_retries.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        await self._scheduler.stop()

    def _check_capabilities(self, kind: JobKind, payload: BaseModel) -> None:
        if isinstance(payload, DistributionPayload):
            missing = [name for name in payload.platforms if self._registry.distributor(name) is None]
            if missing:
                raise JobValidationError(
                    f"Unsupported platform(s): {', '.join(missing)}",
                    meta={"kind": kind.value, "platforms": missing},
                )
            return
        if isinstance(payload, IngestionPayload):
            if self._registry.parser(payload.platform) is None:
                raise JobValidationError(
                    f"Unsupported platform: {payload.platform}",
                    meta={"kind": kind.value, "platform": payload.platform},
                )
            if (
                payload.source_type is SourceType.API_FETCH
                and self._registry.fetcher(payload.platform) is None
            ):
                raise JobValidationError(
                    f"Platform {payload.platform} does not support report fetching",
                    meta={"kind": kind.value, "platform": payload.platform},
                )

    @staticmethod
    def _new_job_id(kind: JobKind, now: datetime) -> str:
        return f"{kind.id_prefix}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"

    def _estimate_start(self, job: JobRecord, position: int, now: datetime) -> datetime:
        avg_job_s = self._config.for_kind(job.kind.value).avg_job_s
        estimate = now + timedelta(seconds=max(0, position) * avg_job_s)
        if job.scheduled_for is not None:
            estimate = max(estimate, ensure_aware(job.scheduled_for))
        return estimate

    def _estimate_completion(self, job: JobRecord, now: datetime) -> datetime:
        kind_config = self._config.for_kind(job.kind.value)
        if job.kind is JobKind.DISTRIBUTION:
            remaining = max(0, job.total_subtargets - len(job.progress))
            return now + timedelta(seconds=remaining * kind_config.avg_subtarget_s)
        started = job.started_at or now
        return started + timedelta(seconds=kind_config.avg_job_s)

    def _schedule_retry(self, job: JobRecord, delay_s: float) -> None:
        task = asyncio.get_running_loop().create_task(self._retry_after(job, delay_s))
        with self._queue.lock:
            self._pending_retries[job.id] = task
        task.add_done_callback(lambda done, job_id=job.id: self._discard_retry(job_id, done))

    async def _retry_after(self, job: JobRecord, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        with self._queue.lock:
            if job.status is not JobStatus.RETRYING:
                return
            job.retry_at = None
            job.transition(JobStatus.QUEUED, at=self._now())
            self._queue.insert(job)
        orchestrator_events.emit_schedule_event(
            logger,
            job_id=job.id,
            job_type=job.kind.value,
            status="requeued",
            attempts=job.attempts,
            priority=job.priority,
        )
        self._scheduler.kick()

    def _discard_retry(self, job_id: str, task: asyncio.Task[None]) -> None:
        with self._queue.lock:
            if self._pending_retries.get(job_id) is task:
                del self._pending_retries[job_id]

    def _cancel_timer(self, timer: asyncio.Task[None]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        loop = timer.get_loop()
        if running is loop:
            timer.cancel()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(timer.cancel)


__all__ = [
    "CancelOutcome",
    "EnqueueReceipt",
    "JobEngine",
]
