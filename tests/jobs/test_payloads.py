from __future__ import annotations

from datetime import datetime

import pytest

from backoffice.errors import ErrorCode, JobValidationError
from backoffice.jobs.models import JobKind
from backoffice.jobs.payloads import (
    DistributionPayload,
    IngestionPayload,
    ReportFormat,
    SourceType,
    parse_kind,
    parse_payload,
)


def test_distribution_payload_normalises_platforms() -> None:
    payload = parse_payload(
        JobKind.DISTRIBUTION,
        {"release_id": " rel-1 ", "platforms": ["Spotify", "tidal", "spotify", " "]},
    )

    assert isinstance(payload, DistributionPayload)
    assert payload.release_id == "rel-1"
    assert payload.platforms == ("spotify", "tidal")
    assert payload.settings.territories == ("worldwide",)
    assert payload.settings.release_strategy == "standard"


def test_naive_schedule_is_made_aware() -> None:
    payload = parse_payload(
        JobKind.DISTRIBUTION,
        {"release_id": "rel-1", "platforms": ["spotify"], "scheduled_for": datetime(2024, 5, 1, 9)},
    )

    assert payload.scheduled_for is not None
    assert payload.scheduled_for.tzinfo is not None


@pytest.mark.parametrize(
    "raw",
    [
        {"release_id": "", "platforms": ["spotify"]},
        {"release_id": "rel-1", "platforms": []},
        {"release_id": "rel-1", "platforms": "spotify"},
        {"platforms": ["spotify"]},
    ],
)
def test_invalid_distribution_payloads_raise_validation_error(raw) -> None:
    with pytest.raises(JobValidationError) as excinfo:
        parse_payload(JobKind.DISTRIBUTION, raw)

    assert excinfo.value.code is ErrorCode.VALIDATION_ERROR
    assert excinfo.value.meta["kind"] == "distribution"
    assert excinfo.value.meta["errors"]


def test_ingestion_payload_requires_source_location() -> None:
    with pytest.raises(JobValidationError):
        parse_payload(JobKind.INGESTION, {"platform": "spotify", "source_type": "file_upload"})
    with pytest.raises(JobValidationError):
        parse_payload(JobKind.INGESTION, {"platform": "spotify", "source_type": "url_download"})


def test_ingestion_payload_rejects_inverted_period() -> None:
    with pytest.raises(JobValidationError):
        parse_payload(
            JobKind.INGESTION,
            {
                "platform": "spotify",
                "source_type": "api_fetch",
                "period_start": "2024-02-01",
                "period_end": "2024-01-01",
            },
        )


def test_ingestion_payload_defaults() -> None:
    payload = parse_payload(
        JobKind.INGESTION,
        {"platform": "Deezer", "source_type": "api_fetch", "expected_format": "TSV"},
    )

    assert isinstance(payload, IngestionPayload)
    assert payload.platform == "deezer"
    assert payload.source_type is SourceType.API_FETCH
    assert payload.expected_format is ReportFormat.TSV


def test_parse_kind_rejects_unknown_kind() -> None:
    assert parse_kind("Distribution") is JobKind.DISTRIBUTION
    with pytest.raises(JobValidationError):
        parse_kind("mastering")
