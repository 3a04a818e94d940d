"""Job handlers executing the sub-targets of each job kind."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from backoffice.errors import JobSetupError, ReportFormatError, ReportValidationError
from backoffice.integrations.contracts import (
    NormalizedRecord,
    PlatformNotFoundError,
    PlatformTimeoutError,
    ReportContext,
    SubmissionRequest,
    SubmissionResult,
)
from backoffice.integrations.registry import PlatformRegistry
from backoffice.integrations.report_source import ReportSource
from backoffice.jobs.models import JobKind, JobRecord, JobStatus, SubtargetStatus
from backoffice.jobs.payloads import DistributionPayload, DistributionSettings, IngestionPayload
from backoffice.logging import get_logger
from backoffice.logging_events import log_event
from backoffice.orchestrator import events as orchestrator_events
from backoffice.orchestrator.retry import describe_error, is_retryable_error
from backoffice.services.aggregation import (
    DistributionSummary,
    IngestionAggregator,
    IngestionSummary,
    summarize_distribution,
)
from backoffice.services.catalog import CatalogResolver, Release, validate_release_for_distribution
from backoffice.services.sinks import (
    ChannelStatusSink,
    ChannelStatusUpdate,
    Notifier,
    call_maybe_async,
)
from backoffice.utils.time import now_utc

logger = get_logger(__name__)


class JobDeadlineExceeded(Exception):
    """Raised between sub-targets once a job passed its ``timeout_at``."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} exceeded its deadline")
        self.job_id = job_id


@dataclass(slots=True, frozen=True)
class HandlerOutcome:
    status: JobStatus
    summary: DistributionSummary | IngestionSummary
    cancelled: bool = False


JobHandler = Callable[[JobRecord], Awaitable[HandlerOutcome]]


def order_platforms(requested: Sequence[str], preferred: Sequence[str]) -> list[str]:
    """Return ``requested`` sorted by ``preferred``; unknown names keep request order."""

    wanted = set(requested)
    ordered = [name for name in preferred if name in wanted]
    ordered.extend(name for name in requested if name not in preferred)
    return ordered


def build_submission_request(
    job_id: str,
    release: Release,
    platform: str,
    settings: DistributionSettings,
) -> SubmissionRequest:
    release_info = {
        "title": release.title,
        "artist": release.primary_artist,
        "release_date": release.release_date.isoformat() if release.release_date else None,
        "genre": release.genre,
        "label": release.label,
        "catalog_number": release.catalog_number,
        "upc": release.upc,
        "isrc_codes": [track.isrc for track in release.tracks],
    }
    tracks = tuple(
        {
            "title": track.title,
            "artist": track.artist or release.primary_artist,
            "duration": track.duration_s,
            "isrc": track.isrc,
            "explicit": bool(track.explicit),
            "file_url": track.audio_file_url,
        }
        for track in release.tracks
    )
    return SubmissionRequest(
        job_id=job_id,
        platform=platform,
        release=release,
        release_info=release_info,
        tracks=tracks,
        settings=settings,
    )


@dataclass(slots=True)
class DistributionHandlerDeps:
    """Dependencies required by the distribution handler."""

    registry: PlatformRegistry
    catalog: CatalogResolver
    channel_sink: ChannelStatusSink
    notifier: Notifier
    platform_order: Sequence[str]
    call_timeout_s: float
    now_factory: Callable[[], datetime] = now_utc


async def _push_channel_status(
    deps: DistributionHandlerDeps,
    job: JobRecord,
    platform: str,
    release_id: str,
    update: ChannelStatusUpdate,
) -> None:
    try:
        await call_maybe_async(deps.channel_sink.update, platform, release_id, update)
    except Exception as exc:
        log_event(
            logger,
            "channel.status_failed",
            level=logging.WARNING,
            entity_id=job.id,
            platform=platform,
            error=str(exc),
        )


async def _distribute_to_platform(
    job: JobRecord,
    release: Release,
    platform: str,
    settings: DistributionSettings,
    deps: DistributionHandlerDeps,
) -> dict[str, Any]:
    start = time.perf_counter()
    error: BaseException | None = None
    result: SubmissionResult | None = None
    adapter = deps.registry.distributor(platform)
    try:
        if adapter is None:
            raise PlatformNotFoundError(
                platform, f"No distribution adapter registered for {platform}"
            )
        request = build_submission_request(job.id, release, platform, settings)
        result = await asyncio.wait_for(
            call_maybe_async(adapter.submit, request),
            timeout=deps.call_timeout_s,
        )
    except asyncio.TimeoutError as exc:
        error = PlatformTimeoutError(platform, int(deps.call_timeout_s * 1000), cause=exc)
    except Exception as exc:
        error = exc

    duration_ms = int((time.perf_counter() - start) * 1000)
    if error is None and not isinstance(result, SubmissionResult):
        error = JobSetupError(f"{platform} adapter returned an unexpected result")

    if error is not None:
        message = describe_error(error)
        retryable = is_retryable_error(error)
        await _push_channel_status(
            deps,
            job,
            platform,
            release.release_id,
            ChannelStatusUpdate(status="failed", error=message, retryable=retryable),
        )
        orchestrator_events.emit_subtarget_event(
            logger,
            job_id=job.id,
            job_type=job.kind.value,
            subtarget=platform,
            status="failed",
            duration_ms=duration_ms,
            retryable=retryable,
            error=message,
        )
        return {"status": "failed", "error": message, "retry_possible": retryable}

    assert result is not None
    await _push_channel_status(
        deps,
        job,
        platform,
        release.release_id,
        ChannelStatusUpdate(
            status="submitted",
            external_id=result.external_id,
            external_url=result.external_url,
            metadata=dict(result.metadata),
        ),
    )
    orchestrator_events.emit_subtarget_event(
        logger,
        job_id=job.id,
        job_type=job.kind.value,
        subtarget=platform,
        status="completed",
        duration_ms=duration_ms,
    )
    return {"status": "success", **result.as_dict()}


async def handle_distribution(job: JobRecord, deps: DistributionHandlerDeps) -> HandlerOutcome:
    """Push one release to every requested platform, one platform at a time."""

    payload: DistributionPayload = job.payload
    release = await call_maybe_async(deps.catalog.get_release, payload.release_id)
    if release is None:
        raise JobSetupError(
            f"Release not found: {payload.release_id}",
            meta={"release_id": payload.release_id},
        )
    problems = validate_release_for_distribution(release)
    if problems:
        raise JobSetupError(
            f"Release validation failed: {', '.join(problems)}",
            meta={"release_id": payload.release_id},
        )

    platforms = order_platforms(payload.platforms, deps.platform_order)
    job.reset_progress(len(platforms))
    results: dict[str, dict[str, Any]] = {}
    cancelled = False
    for platform in platforms:
        if job.status is JobStatus.CANCELLING:
            cancelled = True
            break
        if job.is_expired(deps.now_factory()):
            raise JobDeadlineExceeded(job.id)
        outcome = await _distribute_to_platform(job, release, platform, payload.settings, deps)
        results[platform] = outcome
        job.results[platform] = outcome
        job.record_progress(
            platform,
            SubtargetStatus.COMPLETED if outcome["status"] == "success" else SubtargetStatus.FAILED,
            at=deps.now_factory(),
        )
        await deps.notifier.progress(
            job.id,
            job.progress_percentage,
            {name: entry.as_dict() for name, entry in job.progress.items()},
        )

    if job.status is JobStatus.CANCELLING:
        cancelled = True
    summary = summarize_distribution(results)
    job.success_rate = summary.success_rate
    return HandlerOutcome(status=summary.status, summary=summary, cancelled=cancelled)


def build_distribution_handler(deps: DistributionHandlerDeps) -> JobHandler:
    async def _handler(job: JobRecord) -> HandlerOutcome:
        return await handle_distribution(job, deps)

    return _handler


@dataclass(slots=True)
class IngestionHandlerDeps:
    """Dependencies required by the royalty ingestion handler."""

    registry: PlatformRegistry
    report_source: ReportSource
    aggregator: IngestionAggregator
    now_factory: Callable[[], datetime] = now_utc


def is_valid_record(record: NormalizedRecord) -> bool:
    if not record.platform or not record.has_track_identity:
        return False
    if record.units is None or record.units < 0:
        return False
    if record.amount is None or record.amount < 0:
        return False
    return True


def partition_records(
    records: Sequence[NormalizedRecord],
) -> tuple[list[NormalizedRecord], int]:
    valid = [record for record in records if is_valid_record(record)]
    return valid, len(records) - len(valid)


async def _parse_report(
    deps: IngestionHandlerDeps,
    raw: Any,
    context: ReportContext,
) -> list[NormalizedRecord]:
    parser = deps.registry.parser(context.platform)
    if parser is None:
        raise JobSetupError(
            f"No processor available for platform: {context.platform}",
            meta={"platform": context.platform},
        )
    try:
        parsed = await call_maybe_async(parser.parse, raw, context)
    except (JobSetupError, ReportFormatError):
        raise
    except (ValueError, TypeError, KeyError) as exc:
        raise ReportFormatError(
            f"{context.platform} report parsing failed: {exc}",
            meta={"platform": context.platform},
        ) from exc
    return list(parsed or ())


async def handle_ingestion(job: JobRecord, deps: IngestionHandlerDeps) -> HandlerOutcome:
    """Acquire, parse and validate one report, then fold it into earnings."""

    payload: IngestionPayload = job.payload
    platform = payload.platform
    context = ReportContext(
        job_id=job.id,
        platform=platform,
        expected_format=payload.expected_format,
        report_type=payload.report_type,
        report_date=payload.report_date,
        period_start=payload.period_start,
        period_end=payload.period_end,
        file_path=payload.file_path,
        file_url=payload.file_url,
    )
    job.reset_progress(1)

    raw = await deps.report_source.acquire(payload, context)
    if job.is_expired(deps.now_factory()):
        raise JobDeadlineExceeded(job.id)

    records = await _parse_report(deps, raw, context)
    if not records:
        raise ReportValidationError(
            "No valid records found in report", meta={"platform": platform}
        )
    valid, invalid = partition_records(records)
    log_event(
        logger,
        "ingestion.validated",
        entity_id=job.id,
        platform=platform,
        total=len(records),
        valid=len(valid),
        invalid=invalid,
    )
    if not valid:
        raise ReportValidationError(
            "No valid records found after validation",
            meta={"platform": platform, "invalid_records": invalid},
        )

    summary = deps.aggregator.new_summary(platform, payload.period_start, payload.period_end)
    summary.parsed_records = len(records)
    summary.valid_records = len(valid)
    summary.invalid_records = invalid
    if invalid:
        summary.warnings.append(f"{invalid} invalid records will be skipped")

    if job.status is JobStatus.CANCELLING:
        return HandlerOutcome(status=JobStatus.CANCELLED, summary=summary, cancelled=True)
    if job.is_expired(deps.now_factory()):
        raise JobDeadlineExceeded(job.id)

    await deps.aggregator.aggregate(
        job_id=job.id,
        platform=platform,
        records=valid,
        period_start=payload.period_start,
        period_end=payload.period_end,
        report_date=payload.report_date,
        summary=summary,
    )
    job.results.update(summary.as_dict())
    job.record_progress(platform, SubtargetStatus.COMPLETED, at=deps.now_factory())
    return HandlerOutcome(
        status=JobStatus.COMPLETED,
        summary=summary,
        cancelled=job.status is JobStatus.CANCELLING,
    )


def build_ingestion_handler(deps: IngestionHandlerDeps) -> JobHandler:
    async def _handler(job: JobRecord) -> HandlerOutcome:
        return await handle_ingestion(job, deps)

    return _handler


def default_handlers(
    distribution_deps: DistributionHandlerDeps,
    ingestion_deps: IngestionHandlerDeps | None = None,
) -> dict[JobKind, JobHandler]:
    """Return the default handler mapping keyed by job kind."""

    handlers: dict[JobKind, JobHandler] = {
        JobKind.DISTRIBUTION: build_distribution_handler(distribution_deps),
    }
    if ingestion_deps is not None:
        handlers[JobKind.INGESTION] = build_ingestion_handler(ingestion_deps)
    return handlers


__all__ = [
    "DistributionHandlerDeps",
    "HandlerOutcome",
    "IngestionHandlerDeps",
    "JobDeadlineExceeded",
    "JobHandler",
    "build_distribution_handler",
    "build_ingestion_handler",
    "default_handlers",
    "handle_distribution",
    "handle_ingestion",
    "order_platforms",
    "partition_records",
]
