"""Contracts shared by platform adapters and the job processor."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Protocol, runtime_checkable

from backoffice.jobs.payloads import DistributionSettings, ReportFormat
from backoffice.services.catalog import Release


class ErrorCategory(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


TRANSIENT_CATEGORIES = frozenset(
    {
        ErrorCategory.TIMEOUT,
        ErrorCategory.CONNECTION,
        ErrorCategory.UNAVAILABLE,
        ErrorCategory.RATE_LIMITED,
        ErrorCategory.SERVER_ERROR,
    }
)


class PlatformError(RuntimeError):
    """Base exception raised when a platform call fails."""

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        platform: str,
        message: str,
        *,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.category in TRANSIENT_CATEGORIES


class PlatformTimeoutError(PlatformError):
    """Raised when the platform did not respond within the configured timeout."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, platform: str, timeout_ms: int, *, cause: Exception | None = None) -> None:
        super().__init__(platform, f"{platform} timed out after {timeout_ms}ms", cause=cause)
        self.timeout_ms = timeout_ms


class PlatformConnectionError(PlatformError):
    category = ErrorCategory.CONNECTION


class PlatformUnavailableError(PlatformError):
    category = ErrorCategory.UNAVAILABLE


class PlatformRateLimitedError(PlatformError):
    """Raised when a platform applied rate limits to the request."""

    category = ErrorCategory.RATE_LIMITED

    def __init__(
        self,
        platform: str,
        message: str,
        *,
        retry_after_ms: int | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(platform, message, status_code=status_code, cause=cause)
        self.retry_after_ms = retry_after_ms


class PlatformServerError(PlatformError):
    category = ErrorCategory.SERVER_ERROR


class PlatformRejectedError(PlatformError):
    """Raised when a platform refuses the submission as invalid."""

    category = ErrorCategory.REJECTED


class PlatformNotFoundError(PlatformError):
    category = ErrorCategory.NOT_FOUND


@dataclass(slots=True, frozen=True)
class SubmissionRequest:
    """Everything a platform needs to ingest one release."""

    job_id: str
    platform: str
    release: Release
    release_info: Mapping[str, Any]
    tracks: tuple[Mapping[str, Any], ...]
    settings: DistributionSettings


@dataclass(slots=True, frozen=True)
class SubmissionResult:
    external_id: str | None = None
    external_url: str | None = None
    estimated_live_date: date | None = None
    reference: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "external_url": self.external_url,
            "estimated_live_date": (
                self.estimated_live_date.isoformat() if self.estimated_live_date else None
            ),
            "submission_reference": self.reference,
        }


@dataclass(slots=True, frozen=True)
class ReportContext:
    """Ingestion parameters handed to fetchers and parsers."""

    job_id: str
    platform: str
    expected_format: ReportFormat
    report_type: str | None = None
    report_date: date | None = None
    period_start: date | None = None
    period_end: date | None = None
    file_path: str | None = None
    file_url: str | None = None


@dataclass(slots=True, frozen=True)
class RawReport:
    platform: str
    content: bytes
    format: ReportFormat
    source: str
    content_type: str | None = None

    def text(self) -> str:
        return self.content.decode("utf-8-sig", errors="replace")


@dataclass(slots=True, frozen=True)
class NormalizedRecord:
    """One royalty line item in the shared shape every parser produces."""

    platform: str
    track_title: str | None
    artist_name: str | None
    units: int | None
    amount: Decimal | None
    currency: str
    isrc: str | None = None
    upc: str | None = None
    album_name: str | None = None
    territory: str | None = None
    revenue_type: str = "stream"
    period_start: date | None = None
    period_end: date | None = None
    report_date: date | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_track_identity(self) -> bool:
        if self.isrc:
            return True
        return bool(self.track_title and self.artist_name)


@runtime_checkable
class DistributionAdapter(Protocol):
    def submit(
        self, request: SubmissionRequest
    ) -> SubmissionResult | Awaitable[SubmissionResult]:
        """Submit a release to the platform, raising :class:`PlatformError`."""


@runtime_checkable
class ReportParser(Protocol):
    def parse(
        self, raw: RawReport, context: ReportContext
    ) -> Sequence[NormalizedRecord] | Awaitable[Sequence[NormalizedRecord]]:
        """Translate a raw report into normalised line items."""


@runtime_checkable
class ReportFetcher(Protocol):
    def fetch_report(self, context: ReportContext) -> RawReport | Awaitable[RawReport]:
        """Retrieve the report for ``context`` from the platform API."""


@dataclass(slots=True, frozen=True)
class PlatformAdapter:
    """Capabilities registered for one platform name."""

    name: str
    distributor: DistributionAdapter | None = None
    parser: ReportParser | None = None
    fetcher: ReportFetcher | None = None


__all__ = [
    "DistributionAdapter",
    "ErrorCategory",
    "NormalizedRecord",
    "PlatformAdapter",
    "PlatformConnectionError",
    "PlatformError",
    "PlatformNotFoundError",
    "PlatformRateLimitedError",
    "PlatformRejectedError",
    "PlatformServerError",
    "PlatformTimeoutError",
    "PlatformUnavailableError",
    "RawReport",
    "ReportContext",
    "ReportFetcher",
    "ReportParser",
    "SubmissionRequest",
    "SubmissionResult",
    "TRANSIENT_CATEGORIES",
]
