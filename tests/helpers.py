"""Fakes shared by the job engine tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from backoffice.bootstrap import EngineRuntime, bootstrap_engine
from backoffice.config import EngineConfig, JobKindConfig
from backoffice.integrations.contracts import (
    PlatformAdapter,
    SubmissionRequest,
    SubmissionResult,
)
from backoffice.services.catalog import InMemoryCatalog, Release, ReleaseTrack
from backoffice.services.sinks import (
    InMemoryChannelStatusSink,
    InMemoryRoyaltySink,
    RecordingNotificationSink,
)

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedDistributor:
    """Distribution adapter returning or raising scripted outcomes per call."""

    def __init__(
        self,
        platform: str,
        outcomes: Iterable[Any] = (),
        *,
        on_submit: Callable[[SubmissionRequest], None] | None = None,
    ) -> None:
        self.platform = platform
        self._outcomes = list(outcomes)
        self.on_submit = on_submit
        self.requests: list[SubmissionRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        self.requests.append(request)
        if self.on_submit is not None:
            self.on_submit(request)
        outcome = self._outcomes.pop(0) if self._outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, SubmissionResult):
            return outcome
        return SubmissionResult(
            external_id=f"{self.platform}-{request.release.release_id}",
            external_url=f"https://{self.platform}.example/{request.release.release_id}",
            reference=f"ref-{self.calls}",
        )


def make_release(release_id: str = "rel-1", *, holder_id: str = "holder-1") -> Release:
    return Release(
        release_id=release_id,
        title="Night Drive",
        primary_artist="The Example",
        tracks=(
            ReleaseTrack(track_id=f"{release_id}-t1", title="Night Drive", isrc="USRC17607839"),
            ReleaseTrack(track_id=f"{release_id}-t2", title="Morning After", isrc="USRC17607840"),
        ),
        upc="012345678905",
        holder_id=holder_id,
    )


def fast_config(
    *,
    max_attempts: int = 3,
    retry_delay_s: float = 0.0,
    timeout_s: float = 600.0,
    poll_interval_s: float = 0.01,
    platform_order: tuple[str, ...] | None = None,
) -> EngineConfig:
    kind = JobKindConfig(
        max_attempts=max_attempts,
        retry_delay_s=retry_delay_s,
        timeout_s=timeout_s,
        avg_job_s=600.0,
        avg_subtarget_s=300.0,
    )
    options: dict[str, Any] = {
        "poll_interval_s": poll_interval_s,
        "call_timeout_s": 5.0,
        "distribution": kind,
        "ingestion": kind,
    }
    if platform_order is not None:
        options["platform_order"] = platform_order
    return EngineConfig(**options)


class Harness:
    """Engine runtime plus the in-memory collaborators it writes to."""

    def __init__(
        self,
        *,
        distributors: Mapping[str, ScriptedDistributor] | None = None,
        adapters: Iterable[PlatformAdapter] = (),
        releases: Iterable[Release] = (),
        config: EngineConfig | None = None,
        now_factory: Callable[[], datetime] | None = None,
        catalog: Any = None,
        transport: Any = None,
    ) -> None:
        self.distributors = dict(distributors or {})
        self.catalog = catalog if catalog is not None else InMemoryCatalog(releases)
        self.channel_sink = InMemoryChannelStatusSink()
        self.royalty_sink = InMemoryRoyaltySink()
        self.notifications = RecordingNotificationSink()
        all_adapters = [
            PlatformAdapter(name=name, distributor=distributor)
            for name, distributor in self.distributors.items()
        ]
        all_adapters.extend(adapters)
        options: dict[str, Any] = {}
        if now_factory is not None:
            options["now_factory"] = now_factory
        self.runtime: EngineRuntime = bootstrap_engine(
            config=config or fast_config(),
            adapters=all_adapters,
            catalog=self.catalog,
            channel_sink=self.channel_sink,
            royalty_sink=self.royalty_sink,
            notification_sink=self.notifications,
            transport=transport,
            **options,
        )
        self.engine = self.runtime.engine


__all__ = [
    "FakeClock",
    "Harness",
    "START",
    "ScriptedDistributor",
    "fast_config",
    "make_release",
]
