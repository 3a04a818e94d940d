"""Validated enqueue payloads for each job kind."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from backoffice.errors import JobValidationError
from backoffice.jobs.models import JobKind
from backoffice.utils.time import ensure_aware


class SourceType(str, Enum):
    FILE_UPLOAD = "file_upload"
    API_FETCH = "api_fetch"
    URL_DOWNLOAD = "url_download"


class ReportFormat(str, Enum):
    CSV = "csv"
    TSV = "tsv"
    JSON = "json"


def _normalise_scheduled_for(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_aware(value)


class DistributionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    territories: tuple[str, ...] = ("worldwide",)
    stores: tuple[str, ...] = ()
    pricing: dict[str, Any] = Field(default_factory=dict)
    release_strategy: str = "standard"

    @field_validator("territories")
    @classmethod
    def _ensure_territories(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(item.strip() for item in value if item and item.strip())
        return cleaned or ("worldwide",)


class DistributionPayload(BaseModel):
    """Input for pushing one release to a set of platforms."""

    model_config = ConfigDict(frozen=True)

    release_id: str
    platforms: tuple[str, ...]
    settings: DistributionSettings = Field(default_factory=DistributionSettings)
    scheduled_for: datetime | None = None

    @field_validator("release_id")
    @classmethod
    def _ensure_release_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("release_id must not be empty")
        return stripped

    @field_validator("platforms", mode="before")
    @classmethod
    def _normalise_platforms(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("platforms must be a list of platform names")
        ordered: dict[str, None] = {}
        for item in value:
            name = str(item).strip().lower()
            if name:
                ordered.setdefault(name, None)
        if not ordered:
            raise ValueError("platforms must contain at least one platform")
        return tuple(ordered)

    @field_validator("scheduled_for")
    @classmethod
    def _aware_schedule(cls, value: datetime | None) -> datetime | None:
        return _normalise_scheduled_for(value)


class IngestionPayload(BaseModel):
    """Input for acquiring and processing one royalty report."""

    model_config = ConfigDict(frozen=True)

    platform: str
    source_type: SourceType
    file_path: str | None = None
    file_url: str | None = None
    expected_format: ReportFormat = ReportFormat.CSV
    report_type: str | None = None
    report_date: date | None = None
    period_start: date | None = None
    period_end: date | None = None
    scheduled_for: datetime | None = None

    @field_validator("platform")
    @classmethod
    def _normalise_platform(cls, value: str) -> str:
        stripped = value.strip().lower()
        if not stripped:
            raise ValueError("platform must not be empty")
        return stripped

    @field_validator("expected_format", mode="before")
    @classmethod
    def _lower_format(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("scheduled_for")
    @classmethod
    def _aware_schedule(cls, value: datetime | None) -> datetime | None:
        return _normalise_scheduled_for(value)

    @model_validator(mode="after")
    def _check_source(self) -> IngestionPayload:
        if self.source_type is SourceType.FILE_UPLOAD and not self.file_path:
            raise ValueError("file_path is required for file_upload")
        if self.source_type is SourceType.URL_DOWNLOAD and not self.file_url:
            raise ValueError("file_url is required for url_download")
        if (
            self.period_start is not None
            and self.period_end is not None
            and self.period_end < self.period_start
        ):
            raise ValueError("period_end must not precede period_start")
        return self


PAYLOAD_MODELS: Mapping[JobKind, type[BaseModel]] = {
    JobKind.DISTRIBUTION: DistributionPayload,
    JobKind.INGESTION: IngestionPayload,
}


def parse_kind(kind: JobKind | str) -> JobKind:
    if isinstance(kind, JobKind):
        return kind
    try:
        return JobKind(str(kind).strip().lower())
    except ValueError as exc:
        raise JobValidationError(
            f"Unsupported job kind: {kind!r}", meta={"kind": str(kind)}
        ) from exc


def parse_payload(kind: JobKind, payload: BaseModel | Mapping[str, Any]) -> BaseModel:
    """Return the validated payload model for ``kind``.

    Raises :class:`JobValidationError` with the pydantic error list in
    ``meta`` when validation fails.
    """

    model = PAYLOAD_MODELS[kind]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        raise JobValidationError(
            f"{kind.value} payload must be a mapping", meta={"kind": kind.value}
        )
    try:
        return model.model_validate(dict(payload))
    except ValidationError as exc:
        errors = [
            {
                "loc": ".".join(str(part) for part in error.get("loc", ())),
                "msg": str(error.get("msg", "")),
            }
            for error in exc.errors()
        ]
        raise JobValidationError(
            f"Invalid {kind.value} payload",
            meta={"kind": kind.value, "errors": errors},
        ) from exc


__all__ = [
    "DistributionPayload",
    "DistributionSettings",
    "IngestionPayload",
    "PAYLOAD_MODELS",
    "ReportFormat",
    "SourceType",
    "parse_kind",
    "parse_payload",
]
