from __future__ import annotations

import httpx
import pytest

from backoffice.errors import JobSetupError, ReportFormatError
from backoffice.integrations.contracts import (
    PlatformAdapter,
    PlatformNotFoundError,
    PlatformRateLimitedError,
    PlatformRejectedError,
    PlatformServerError,
    PlatformTimeoutError,
    RawReport,
    ReportContext,
)
from backoffice.integrations.normalizers import builtin_report_adapters
from backoffice.integrations.registry import PlatformRegistry
from backoffice.integrations.report_source import ReportSource, validate_report_format
from backoffice.jobs.payloads import IngestionPayload, ReportFormat, SourceType

CSV_BODY = "Track Name,Artist Name,Royalty\nNight Drive,The Example,1.00\n"
URL = "https://reports.example/monthly.csv"


def _download_payload(expected_format: ReportFormat = ReportFormat.CSV) -> IngestionPayload:
    return IngestionPayload(
        platform="spotify",
        source_type=SourceType.URL_DOWNLOAD,
        file_url=URL,
        expected_format=expected_format,
    )


def _context(payload: IngestionPayload) -> ReportContext:
    return ReportContext(
        job_id="royalty_1",
        platform=payload.platform,
        expected_format=payload.expected_format,
        file_path=payload.file_path,
        file_url=payload.file_url,
    )


def _source(handler) -> ReportSource:
    return ReportSource(
        registry=PlatformRegistry(builtin_report_adapters()),
        timeout_s=2.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_download_returns_raw_report() -> None:
    source = _source(
        lambda request: httpx.Response(200, text=CSV_BODY, headers={"Content-Type": "text/csv"})
    )
    payload = _download_payload()

    raw = await source.acquire(payload, _context(payload))

    assert raw.source == URL
    assert raw.content_type == "text/csv"
    assert raw.text() == CSV_BODY


@pytest.mark.parametrize(
    ("status", "headers", "expected"),
    [
        (429, {"Retry-After": "3"}, PlatformRateLimitedError),
        (502, {}, PlatformServerError),
        (404, {}, PlatformNotFoundError),
        (403, {}, PlatformRejectedError),
    ],
)
@pytest.mark.asyncio
async def test_download_maps_http_status_to_platform_errors(status, headers, expected) -> None:
    source = _source(lambda request: httpx.Response(status, headers=headers))
    payload = _download_payload()

    with pytest.raises(expected) as excinfo:
        await source.acquire(payload, _context(payload))

    assert excinfo.value.status_code == status
    if expected is PlatformRateLimitedError:
        assert excinfo.value.retry_after_ms == 3000
        assert excinfo.value.retryable is True
    if expected in (PlatformNotFoundError, PlatformRejectedError):
        assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_download_timeout_becomes_platform_timeout() -> None:
    def _raise(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    source = _source(_raise)
    payload = _download_payload()

    with pytest.raises(PlatformTimeoutError) as excinfo:
        await source.acquire(payload, _context(payload))

    assert excinfo.value.timeout_ms == 2000
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_file_upload_reads_local_file(tmp_path) -> None:
    path = tmp_path / "statement.csv"
    path.write_text(CSV_BODY, encoding="utf-8")
    payload = IngestionPayload(platform="spotify", source_type="file_upload", file_path=str(path))
    source = _source(lambda request: httpx.Response(500))

    raw = await source.acquire(payload, _context(payload))

    assert raw.content == CSV_BODY.encode("utf-8")
    assert raw.format is ReportFormat.CSV


@pytest.mark.asyncio
async def test_file_upload_missing_file_is_setup_error(tmp_path) -> None:
    payload = IngestionPayload(
        platform="spotify", source_type="file_upload", file_path=str(tmp_path / "nope.csv")
    )
    source = _source(lambda request: httpx.Response(500))

    with pytest.raises(JobSetupError) as excinfo:
        await source.acquire(payload, _context(payload))

    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_api_fetch_requires_registered_fetcher() -> None:
    payload = IngestionPayload(platform="spotify", source_type="api_fetch")
    source = _source(lambda request: httpx.Response(500))

    with pytest.raises(JobSetupError):
        await source.acquire(payload, _context(payload))


@pytest.mark.asyncio
async def test_api_fetch_rejects_unexpected_fetcher_result() -> None:
    class _BadFetcher:
        def fetch_report(self, context):
            return "not a report"

    registry = PlatformRegistry([PlatformAdapter(name="tidal", fetcher=_BadFetcher())])
    source = ReportSource(registry=registry)
    payload = IngestionPayload(platform="tidal", source_type="api_fetch")

    with pytest.raises(ReportFormatError):
        await source.acquire(payload, _context(payload))


def _raw(text: str, fmt: ReportFormat) -> RawReport:
    return RawReport(platform="spotify", content=text.encode("utf-8"), format=fmt, source="t")


def test_validate_report_format() -> None:
    validate_report_format(_raw(CSV_BODY, ReportFormat.CSV), ReportFormat.CSV)
    validate_report_format(_raw("a\tb\n1\t2\n", ReportFormat.TSV), ReportFormat.TSV)
    validate_report_format(_raw('{"rows": []}', ReportFormat.JSON), ReportFormat.JSON)

    with pytest.raises(ReportFormatError):
        validate_report_format(_raw("   ", ReportFormat.CSV), ReportFormat.CSV)
    with pytest.raises(ReportFormatError):
        validate_report_format(_raw(CSV_BODY, ReportFormat.TSV), ReportFormat.TSV)
    with pytest.raises(ReportFormatError):
        validate_report_format(_raw("plain text", ReportFormat.JSON), ReportFormat.JSON)
