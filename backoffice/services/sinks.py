"""Outbound collaborators receiving job outcomes."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import inspect
import logging
from typing import Any, Awaitable, Protocol

from backoffice.logging import get_logger
from backoffice.logging_events import log_event

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class ChannelStatusUpdate:
    """Delivery status of one release on one platform."""

    status: str
    external_id: str | None = None
    external_url: str | None = None
    error: str | None = None
    retryable: bool | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    updated_by: str = "system"


@dataclass(slots=True, frozen=True)
class EarningsRecord:
    track_id: str
    release_id: str
    holder_id: str
    platform: str
    territory: str
    revenue_type: str
    units: int
    amount: Decimal
    currency: str
    converted_amount: Decimal
    reporting_currency: str
    period_start: date | None
    period_end: date | None
    report_date: date | None
    source_job_id: str
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RoyaltyStatement:
    holder_id: str
    period_start: date | None
    period_end: date | None
    currency: str
    total_streams: int
    gross: Decimal
    deductions: Decimal
    net: Decimal
    payable: Decimal
    platforms: tuple[str, ...]
    territories: tuple[str, ...]
    revenue_by_platform: Mapping[str, Decimal]
    revenue_by_territory: Mapping[str, Decimal]
    processing_status: str
    generated_at: datetime
    source_job_id: str


class ChannelStatusSink(Protocol):
    def update(
        self, platform: str, release_id: str, update: ChannelStatusUpdate
    ) -> None | Awaitable[None]:
        """Record the delivery status of ``release_id`` on ``platform``."""


class RoyaltySink(Protocol):
    def create_earnings(self, record: EarningsRecord) -> Any:
        """Persist one earnings line."""

    def create_statement(self, statement: RoyaltyStatement) -> Any:
        """Persist one royalty statement."""


class NotificationSink(Protocol):
    def progress(
        self, job_id: str, percent: int, per_platform: Mapping[str, Any]
    ) -> None | Awaitable[None]:
        ...

    def completed(self, job_id: str, summary: Any) -> None | Awaitable[None]:
        ...

    def failed(self, job_id: str, error: str, retryable: bool) -> None | Awaitable[None]:
        ...


async def call_maybe_async(func: Any, *args: Any, **kwargs: Any) -> Any:
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


class Notifier:
    """Deliver notifications without letting sink failures affect jobs."""

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink

    async def progress(self, job_id: str, percent: int, per_platform: Mapping[str, Any]) -> None:
        await self._deliver("progress", job_id, percent, dict(per_platform))

    async def completed(self, job_id: str, summary: Any) -> None:
        await self._deliver("completed", job_id, summary)

    async def failed(self, job_id: str, error: str, retryable: bool) -> None:
        await self._deliver("failed", job_id, error, retryable)

    async def _deliver(self, kind: str, job_id: str, *args: Any) -> None:
        if self._sink is None:
            return
        handler = getattr(self._sink, kind, None)
        if handler is None:
            return
        try:
            await call_maybe_async(handler, job_id, *args)
        except Exception as exc:
            log_event(
                logger,
                "notification.failed",
                level=logging.WARNING,
                entity_id=job_id,
                notification=kind,
                error=str(exc),
            )


class InMemoryChannelStatusSink:
    def __init__(self) -> None:
        self.updates: list[tuple[str, str, ChannelStatusUpdate]] = []

    def update(self, platform: str, release_id: str, update: ChannelStatusUpdate) -> None:
        self.updates.append((platform, release_id, update))

    def latest(self, platform: str, release_id: str) -> ChannelStatusUpdate | None:
        for entry_platform, entry_release, update in reversed(self.updates):
            if entry_platform == platform and entry_release == release_id:
                return update
        return None


class InMemoryRoyaltySink:
    def __init__(self) -> None:
        self.earnings: list[EarningsRecord] = []
        self.statements: list[RoyaltyStatement] = []

    def create_earnings(self, record: EarningsRecord) -> EarningsRecord:
        self.earnings.append(record)
        return record

    def create_statement(self, statement: RoyaltyStatement) -> RoyaltyStatement:
        self.statements.append(statement)
        return statement


class RecordingNotificationSink:
    """Keep every notification in memory, in delivery order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, tuple[Any, ...]]] = []

    def progress(self, job_id: str, percent: int, per_platform: Mapping[str, Any]) -> None:
        self.events.append(("progress", job_id, (percent, dict(per_platform))))

    def completed(self, job_id: str, summary: Any) -> None:
        self.events.append(("completed", job_id, (summary,)))

    def failed(self, job_id: str, error: str, retryable: bool) -> None:
        self.events.append(("failed", job_id, (error, retryable)))

    def of_kind(self, kind: str) -> Sequence[tuple[str, str, tuple[Any, ...]]]:
        return [event for event in self.events if event[0] == kind]


__all__ = [
    "ChannelStatusSink",
    "ChannelStatusUpdate",
    "EarningsRecord",
    "InMemoryChannelStatusSink",
    "InMemoryRoyaltySink",
    "NotificationSink",
    "Notifier",
    "RecordingNotificationSink",
    "RoyaltySink",
    "RoyaltyStatement",
    "call_maybe_async",
]
