from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import pytest

from backoffice.errors import ReportFormatError
from backoffice.integrations.contracts import RawReport, ReportContext
from backoffice.integrations.normalizers import builtin_parsers
from backoffice.jobs.payloads import ReportFormat


def _context(platform: str, fmt: ReportFormat = ReportFormat.CSV, **kwargs) -> ReportContext:
    return ReportContext(job_id="royalty_1", platform=platform, expected_format=fmt, **kwargs)


def _raw(platform: str, text: str, fmt: ReportFormat = ReportFormat.CSV) -> RawReport:
    return RawReport(platform=platform, content=text.encode("utf-8"), format=fmt, source="test")


def test_spotify_rows_are_normalised() -> None:
    parser = builtin_parsers()["spotify"]
    text = (
        "Track Name,Artist Name,ISRC,Territory,Quantity,Royalty,Currency,Sales Date\n"
        "Night Drive,The Example,USRC17607839,SE,\"1,204\",3.75,eur,2024-01-15\n"
    )

    records = parser.parse(_raw("spotify", text), _context("spotify"))

    assert len(records) == 1
    record = records[0]
    assert record.platform == "spotify"
    assert record.track_title == "Night Drive"
    assert record.isrc == "USRC17607839"
    assert record.units == 1204
    assert record.amount == Decimal("3.75")
    assert record.currency == "EUR"
    assert record.period_start == date(2024, 1, 15)
    assert record.revenue_type == "stream"


def test_apple_music_reports_are_tab_separated() -> None:
    parser = builtin_parsers()["apple_music"]
    text = (
        "Song/Album\tArtist/Show\tISRC\tCountry Code\tUnits\tArtist Royalties\tCurrency\tBegin Date\tEnd Date\n"
        "Night Drive\tThe Example\tUSRC17607839\tGB\t80\t0.64\tGBP\t01/01/2024\t01/31/2024\n"
    )

    records = parser.parse(_raw("apple_music", text), _context("apple_music"))

    assert records[0].territory == "GB"
    assert records[0].currency == "GBP"
    assert records[0].period_start == date(2024, 1, 1)
    assert records[0].period_end == date(2024, 1, 31)


def test_youtube_json_report_uses_fixed_currency_and_extras() -> None:
    parser = builtin_parsers()["youtube_music"]
    payload = {
        "rows": [
            {
                "Video Title": "Night Drive",
                "Channel": "The Example",
                "Asset ID": "USRC17607839",
                "Country": "US",
                "Views": 5000,
                "Your estimated revenue (USD)": "12.34",
                "Watch time (hours)": "41.5",
            },
            "not-a-row",
        ]
    }

    records = parser.parse(
        _raw("youtube_music", json.dumps(payload), ReportFormat.JSON),
        _context("youtube_music", ReportFormat.JSON, period_start=date(2024, 1, 1)),
    )

    assert len(records) == 1
    assert records[0].isrc == "USRC17607839"
    assert records[0].currency == "USD"
    assert records[0].units == 5000
    assert records[0].extra == {"watch_time": "41.5"}
    assert records[0].period_start == date(2024, 1, 1)


def test_json_is_rejected_for_tabular_only_layouts() -> None:
    parser = builtin_parsers()["tidal"]

    with pytest.raises(ReportFormatError):
        parser.parse(_raw("tidal", "[]", ReportFormat.JSON), _context("tidal", ReportFormat.JSON))


def test_unparseable_numbers_become_none_and_short_rows_are_dropped() -> None:
    parser = builtin_parsers()["deezer"]
    text = (
        "Title,Artist,Territory,Streams,Revenue\n"
        "Night Drive,The Example,FR,many,n/a\n"
        "Broken,Row\n"
        ",,,,\n"
    )

    records = parser.parse(_raw("deezer", text), _context("deezer"))

    assert len(records) == 1
    assert records[0].units is None
    assert records[0].amount is None
    assert records[0].currency == "EUR"


def test_blank_amount_and_units_default_to_zero() -> None:
    parser = builtin_parsers()["amazon_music"]
    text = "Track Title,Artist Name,Territory,Streams,Net Revenue\nNight Drive,The Example,JP,,\n"

    records = parser.parse(_raw("amazon_music", text), _context("amazon_music"))

    assert records[0].units == 0
    assert records[0].amount == Decimal("0")
    assert records[0].currency == "USD"
