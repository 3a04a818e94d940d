"""Job records and the lifecycle state machine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from backoffice.errors import InvalidTransitionError
from backoffice.utils.numbers import rounded_percent
from backoffice.utils.time import ensure_aware, now_utc


class JobKind(str, Enum):
    DISTRIBUTION = "distribution"
    INGESTION = "ingestion"

    @property
    def id_prefix(self) -> str:
        return _ID_PREFIXES[self]


_ID_PREFIXES = {
    JobKind.DISTRIBUTION: "dist",
    JobKind.INGESTION: "royalty",
}


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CANCELLING = "cancelling"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        JobStatus.COMPLETED,
        JobStatus.PARTIALLY_COMPLETED,
        JobStatus.FAILED,
        JobStatus.TIMEOUT,
        JobStatus.CANCELLED,
    }
)

ALLOWED_TRANSITIONS: Mapping[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset(
        {JobStatus.PROCESSING, JobStatus.TIMEOUT, JobStatus.CANCELLED}
    ),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.COMPLETED,
            JobStatus.PARTIALLY_COMPLETED,
            JobStatus.RETRYING,
            JobStatus.FAILED,
            JobStatus.TIMEOUT,
            JobStatus.CANCELLING,
        }
    ),
    JobStatus.RETRYING: frozenset({JobStatus.QUEUED, JobStatus.FAILED}),
    JobStatus.CANCELLING: frozenset({JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.PARTIALLY_COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.TIMEOUT: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class SubtargetStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class SubtargetProgress:
    status: SubtargetStatus
    updated_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "updated_at": self.updated_at.isoformat()}


@dataclass(slots=True)
class JobRecord:
    """Mutable record owned by the engine for the lifetime of one job.

    Status changes go through :meth:`transition`, which rejects edges outside
    :data:`ALLOWED_TRANSITIONS` and stamps the matching instant.
    """

    id: str
    kind: JobKind
    priority: int
    payload: Any
    max_attempts: int
    created_at: datetime
    timeout_at: datetime
    scheduled_for: datetime | None = None
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    retry_at: datetime | None = None
    progress: dict[str, SubtargetProgress] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    total_subtargets: int = 0
    success_rate: int | None = None
    last_error: str | None = None
    cancellation_reason: str | None = None
    history: list[JobStatus] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def finished_at(self) -> datetime | None:
        if not self.is_terminal:
            return None
        return self.completed_at or self.failed_at or self.cancelled_at

    @property
    def release_id(self) -> str | None:
        return getattr(self.payload, "release_id", None)

    @property
    def progress_percentage(self) -> int:
        return rounded_percent(len(self.progress), self.total_subtargets)

    def can_transition(self, target: JobStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: JobStatus, *, at: datetime | None = None) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(self.id, self.status.value, target.value)
        moment = at or now_utc()
        self.status = target
        self.history.append(target)
        if target is JobStatus.PROCESSING:
            self.started_at = moment
        elif target in (JobStatus.COMPLETED, JobStatus.PARTIALLY_COMPLETED):
            self.completed_at = moment
        elif target in (JobStatus.FAILED, JobStatus.TIMEOUT):
            self.failed_at = moment
        elif target is JobStatus.CANCELLED:
            self.cancelled_at = moment

    def is_due(self, now: datetime) -> bool:
        if self.scheduled_for is None:
            return True
        return ensure_aware(self.scheduled_for) <= now

    def is_expired(self, now: datetime) -> bool:
        return now > self.timeout_at

    def record_progress(
        self,
        subtarget: str,
        status: SubtargetStatus,
        *,
        at: datetime | None = None,
    ) -> None:
        self.progress[subtarget] = SubtargetProgress(status=status, updated_at=at or now_utc())

    def reset_progress(self, total: int) -> None:
        self.progress.clear()
        self.results.clear()
        self.total_subtargets = max(0, total)
        self.success_rate = None

    def snapshot(
        self,
        *,
        queue_position: int | None = None,
        estimated_start: datetime | None = None,
        estimated_completion: datetime | None = None,
    ) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            kind=self.kind,
            priority=self.priority,
            payload=self.payload,
            status=self.status,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            created_at=self.created_at,
            scheduled_for=self.scheduled_for,
            started_at=self.started_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            cancelled_at=self.cancelled_at,
            retry_at=self.retry_at,
            timeout_at=self.timeout_at,
            progress={name: entry.as_dict() for name, entry in self.progress.items()},
            progress_percentage=self.progress_percentage,
            results=dict(self.results),
            success_rate=self.success_rate,
            last_error=self.last_error,
            cancellation_reason=self.cancellation_reason,
            history=tuple(status.value for status in self.history),
            queue_position=queue_position,
            estimated_start=estimated_start,
            estimated_completion=estimated_completion,
        )


@dataclass(slots=True, frozen=True)
class JobSnapshot:
    """Read-only view of a job returned to callers."""

    id: str
    kind: JobKind
    priority: int
    payload: Any
    status: JobStatus
    attempts: int
    max_attempts: int
    created_at: datetime
    scheduled_for: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    cancelled_at: datetime | None
    retry_at: datetime | None
    timeout_at: datetime
    progress: Mapping[str, Mapping[str, Any]]
    progress_percentage: int
    results: Mapping[str, Any]
    success_rate: int | None
    last_error: str | None
    cancellation_reason: str | None
    history: tuple[str, ...]
    queue_position: int | None = None
    estimated_start: datetime | None = None
    estimated_completion: datetime | None = None


__all__ = [
    "ALLOWED_TRANSITIONS",
    "JobKind",
    "JobRecord",
    "JobSnapshot",
    "JobStatus",
    "SubtargetProgress",
    "SubtargetStatus",
    "TERMINAL_STATUSES",
]
