"""Acquisition of raw royalty reports and declared-format checks."""

from __future__ import annotations

import asyncio
import csv
import io
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from backoffice.errors import JobSetupError, ReportFormatError
from backoffice.integrations.contracts import (
    PlatformConnectionError,
    PlatformNotFoundError,
    PlatformRateLimitedError,
    PlatformRejectedError,
    PlatformServerError,
    PlatformTimeoutError,
    RawReport,
    ReportContext,
)
from backoffice.integrations.registry import PlatformRegistry
from backoffice.jobs.payloads import IngestionPayload, ReportFormat, SourceType
from backoffice.logging import get_logger
from backoffice.services.sinks import call_maybe_async
from backoffice.utils.jsonx import try_parse_json_or_none

logger = get_logger(__name__)


def _parse_retry_after_ms(headers: Mapping[str, Any]) -> int | None:
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        numeric = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return max(0, numeric * 1000)


@dataclass(slots=True)
class ReportSource:
    """Resolve an ingestion payload to the bytes of its report."""

    registry: PlatformRegistry
    timeout_s: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    async def acquire(self, payload: IngestionPayload, context: ReportContext) -> RawReport:
        if payload.source_type is SourceType.FILE_UPLOAD:
            raw = await self._read_file(payload, context)
        elif payload.source_type is SourceType.URL_DOWNLOAD:
            raw = await self._download(payload, context)
        elif payload.source_type is SourceType.API_FETCH:
            raw = await self._fetch_from_platform(context)
        else:  # pragma: no cover - guarded by payload validation
            raise JobSetupError(f"Unsupported source type: {payload.source_type}")
        logger.info(
            "Report acquired",
            extra={
                "event": "report.acquired",
                "entity_id": context.job_id,
                "platform": context.platform,
                "source": payload.source_type.value,
                "bytes": len(raw.content),
            },
        )
        validate_report_format(raw, payload.expected_format)
        return raw

    async def _read_file(self, payload: IngestionPayload, context: ReportContext) -> RawReport:
        path = Path(payload.file_path or "")
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise JobSetupError(
                f"Report file not found: {path}", meta={"file_path": str(path)}
            ) from exc
        except OSError as exc:
            raise JobSetupError(
                f"Report file could not be read: {exc}", meta={"file_path": str(path)}
            ) from exc
        return RawReport(
            platform=context.platform,
            content=content,
            format=payload.expected_format,
            source=str(path),
        )

    async def _download(self, payload: IngestionPayload, context: ReportContext) -> RawReport:
        url = payload.file_url or ""
        platform = context.platform
        timeout = httpx.Timeout(self.timeout_s, connect=min(self.timeout_s, 5.0))
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise PlatformTimeoutError(
                platform, int(self.timeout_s * 1000), cause=exc
            ) from exc
        except httpx.HTTPError as exc:
            raise PlatformConnectionError(
                platform, f"Report download failed: {exc}", cause=exc
            ) from exc

        status_code = response.status_code
        if status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise PlatformRateLimitedError(
                platform,
                "Report download rate limited",
                retry_after_ms=_parse_retry_after_ms(response.headers),
                status_code=status_code,
            )
        if 500 <= status_code < 600:
            raise PlatformServerError(
                platform,
                f"Report download failed with server error {status_code}",
                status_code=status_code,
            )
        if status_code == httpx.codes.NOT_FOUND:
            raise PlatformNotFoundError(
                platform, f"Report not found at {url}", status_code=status_code
            )
        if status_code >= 400:
            raise PlatformRejectedError(
                platform,
                f"Report download rejected with status {status_code}",
                status_code=status_code,
            )
        return RawReport(
            platform=platform,
            content=response.content,
            format=payload.expected_format,
            source=url,
            content_type=response.headers.get("Content-Type"),
        )

    async def _fetch_from_platform(self, context: ReportContext) -> RawReport:
        fetcher = self.registry.fetcher(context.platform)
        if fetcher is None:
            raise JobSetupError(
                f"No report fetcher registered for platform: {context.platform}",
                meta={"platform": context.platform},
            )
        raw = await call_maybe_async(fetcher.fetch_report, context)
        if not isinstance(raw, RawReport):
            raise ReportFormatError(
                f"Report fetcher for {context.platform} returned an unexpected value"
            )
        return raw


def validate_report_format(raw: RawReport, expected: ReportFormat) -> None:
    """Check that ``raw`` looks like a report of the ``expected`` format."""

    text = raw.text().strip()
    if not text:
        raise ReportFormatError("Report is empty", meta={"source": raw.source})

    if expected is ReportFormat.JSON:
        parsed = try_parse_json_or_none(text)
        if not isinstance(parsed, (list, dict)):
            raise ReportFormatError(
                "Report is not valid JSON", meta={"source": raw.source}
            )
        return

    delimiter = "\t" if expected is ReportFormat.TSV else ","
    header = next(csv.reader(io.StringIO(text), delimiter=delimiter), [])
    columns = [column for column in header if column.strip()]
    if len(columns) < 2:
        raise ReportFormatError(
            f"Report header is not {expected.value.upper()}",
            meta={"source": raw.source, "expected_format": expected.value},
        )


__all__ = ["ReportSource", "validate_report_format"]
