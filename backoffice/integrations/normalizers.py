"""Built-in royalty report parsers for the supported platforms.

Each platform exports a tabular (or, for YouTube, optionally JSON) report
with its own column names. :class:`ReportLayout` declares the aliases per
normalised field and :class:`TabularReportParser` turns rows into
:class:`~backoffice.integrations.contracts.NormalizedRecord` objects.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from backoffice.errors import ReportFormatError
from backoffice.integrations.contracts import (
    NormalizedRecord,
    PlatformAdapter,
    RawReport,
    ReportContext,
)
from backoffice.jobs.payloads import ReportFormat
from backoffice.services.currency import to_decimal
from backoffice.utils.jsonx import try_parse_json_or_none

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y", "%Y%m%d")


def _coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_units(value: Any) -> int | None:
    text = _coerce_str(value)
    if text is None:
        return 0
    cleaned = text.replace(",", "")
    if cleaned.lstrip("-+").isdigit():
        return int(cleaned)
    parsed = to_decimal(cleaned)
    if parsed is None:
        return None
    return int(parsed)


def _coerce_amount(value: Any) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal("0")
    return to_decimal(value)


def _coerce_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _coerce_str(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


@dataclass(slots=True, frozen=True)
class ReportLayout:
    """Column aliases of one platform report, first match wins."""

    platform: str
    delimiter: str = ","
    track_title: tuple[str, ...] = ()
    artist_name: tuple[str, ...] = ()
    album_name: tuple[str, ...] = ()
    isrc: tuple[str, ...] = ("ISRC",)
    upc: tuple[str, ...] = ("UPC",)
    territory: tuple[str, ...] = ()
    units: tuple[str, ...] = ()
    amount: tuple[str, ...] = ()
    currency: tuple[str, ...] = ("Currency",)
    revenue_type: tuple[str, ...] = ()
    period_start: tuple[str, ...] = ("Period Start",)
    period_end: tuple[str, ...] = ("Period End",)
    default_currency: str = "USD"
    fixed_currency: str | None = None
    extras: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    accepts_json: bool = False


def _first(row: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    for alias in aliases:
        value = row.get(alias)
        if value is not None and (not isinstance(value, str) or value.strip()):
            return value
    return None


class TabularReportParser:
    """Parse delimited (or JSON array) reports according to a layout."""

    def __init__(self, layout: ReportLayout) -> None:
        self.layout = layout

    @property
    def platform(self) -> str:
        return self.layout.platform

    def parse(self, raw: RawReport, context: ReportContext) -> list[NormalizedRecord]:
        rows = self._rows(raw)
        return [self._normalise(row, context) for row in rows]

    def _rows(self, raw: RawReport) -> Sequence[Mapping[str, Any]]:
        if raw.format is ReportFormat.JSON:
            if not self.layout.accepts_json:
                raise ReportFormatError(
                    f"{self.platform} reports are not delivered as JSON",
                    meta={"platform": self.platform},
                )
            return self._json_rows(raw)
        delimiter = "\t" if raw.format is ReportFormat.TSV else self.layout.delimiter
        return self._delimited_rows(raw.text(), delimiter)

    def _json_rows(self, raw: RawReport) -> list[Mapping[str, Any]]:
        parsed = try_parse_json_or_none(raw.content)
        if isinstance(parsed, Mapping):
            for key in ("rows", "items", "data", "records"):
                candidate = parsed.get(key)
                if isinstance(candidate, list):
                    parsed = candidate
                    break
        if not isinstance(parsed, list):
            raise ReportFormatError(
                f"{self.platform} report parsing failed: expected a list of rows",
                meta={"platform": self.platform},
            )
        return [row for row in parsed if isinstance(row, Mapping)]

    @staticmethod
    def _delimited_rows(text: str, delimiter: str) -> list[Mapping[str, Any]]:
        reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
        if reader.fieldnames is not None:
            reader.fieldnames = [name.strip() for name in reader.fieldnames]
        rows: list[Mapping[str, Any]] = []
        for row in reader:
            # Rows whose column count differs from the header are skipped.
            if None in row or any(value is None for value in row.values()):
                continue
            if not any(str(value).strip() for value in row.values()):
                continue
            rows.append(row)
        return rows

    def _normalise(self, row: Mapping[str, Any], context: ReportContext) -> NormalizedRecord:
        layout = self.layout
        if layout.fixed_currency is not None:
            currency = layout.fixed_currency
        else:
            currency = (_coerce_str(_first(row, layout.currency)) or layout.default_currency).upper()
        period_start = _coerce_date(_first(row, layout.period_start)) or context.period_start
        period_end = _coerce_date(_first(row, layout.period_end)) or context.period_end
        extra = {
            name: _coerce_str(_first(row, aliases))
            for name, aliases in layout.extras.items()
        }
        return NormalizedRecord(
            platform=layout.platform,
            track_title=_coerce_str(_first(row, layout.track_title)),
            artist_name=_coerce_str(_first(row, layout.artist_name)),
            album_name=_coerce_str(_first(row, layout.album_name)),
            isrc=_coerce_str(_first(row, layout.isrc)),
            upc=_coerce_str(_first(row, layout.upc)),
            territory=_coerce_str(_first(row, layout.territory)),
            units=_coerce_units(_first(row, layout.units)),
            amount=_coerce_amount(_first(row, layout.amount)),
            currency=currency,
            revenue_type=_coerce_str(_first(row, layout.revenue_type)) or "stream",
            period_start=period_start,
            period_end=period_end,
            report_date=context.report_date,
            extra={key: value for key, value in extra.items() if value is not None},
        )


SPOTIFY_LAYOUT = ReportLayout(
    platform="spotify",
    track_title=("Track Name", "Song"),
    artist_name=("Artist Name", "Artist"),
    album_name=("Album Name", "Album"),
    territory=("Territory", "Country"),
    units=("Quantity", "Streams"),
    amount=("Royalty", "Revenue"),
    revenue_type=("Product Type",),
    period_start=("Sales Date", "Period Start"),
    period_end=("Sales Date", "Period End"),
)

APPLE_MUSIC_LAYOUT = ReportLayout(
    platform="apple_music",
    delimiter="\t",
    track_title=("Song/Album", "Title"),
    artist_name=("Artist/Show", "Artist"),
    album_name=("Album/Season", "Album"),
    territory=("Country Code", "Territory"),
    units=("Units", "Plays"),
    amount=("Artist Royalties", "Royalty"),
    revenue_type=("Product Type Identity",),
    period_start=("Begin Date",),
    period_end=("End Date",),
)

YOUTUBE_MUSIC_LAYOUT = ReportLayout(
    platform="youtube_music",
    track_title=("Video Title", "Content Title"),
    artist_name=("Channel", "Artist"),
    album_name=("Album",),
    isrc=("ISRC", "Asset ID"),
    upc=(),
    territory=("Country", "Territory"),
    units=("Views", "Plays"),
    amount=("Your estimated revenue (USD)", "Revenue"),
    period_start=("Date",),
    period_end=("Date",),
    fixed_currency="USD",
    extras={"watch_time": ("Watch time (hours)",), "cpm": ("CPM",)},
    accepts_json=True,
)

AMAZON_MUSIC_LAYOUT = ReportLayout(
    platform="amazon_music",
    track_title=("Track Title", "Song"),
    artist_name=("Artist Name", "Artist"),
    album_name=("Album Title", "Album"),
    territory=("Territory", "Country"),
    units=("Streams", "Quantity"),
    amount=("Net Revenue", "Royalty"),
    revenue_type=("Product Type",),
)

TIDAL_LAYOUT = ReportLayout(
    platform="tidal",
    track_title=("Track",),
    artist_name=("Artist",),
    album_name=("Album",),
    upc=(),
    territory=("Country",),
    units=("Quantity",),
    amount=("Net Revenue",),
    extras={"tier": ("Subscription Tier",)},
)

DEEZER_LAYOUT = ReportLayout(
    platform="deezer",
    track_title=("Title", "Track"),
    artist_name=("Artist",),
    album_name=("Album",),
    upc=(),
    territory=("Territory",),
    units=("Streams",),
    amount=("Revenue",),
    default_currency="EUR",
)

BUILTIN_LAYOUTS: tuple[ReportLayout, ...] = (
    SPOTIFY_LAYOUT,
    APPLE_MUSIC_LAYOUT,
    YOUTUBE_MUSIC_LAYOUT,
    AMAZON_MUSIC_LAYOUT,
    TIDAL_LAYOUT,
    DEEZER_LAYOUT,
)


def builtin_parsers() -> dict[str, TabularReportParser]:
    return {layout.platform: TabularReportParser(layout) for layout in BUILTIN_LAYOUTS}


def builtin_report_adapters() -> list[PlatformAdapter]:
    """Adapters exposing only the parsing capability of each built-in layout."""

    return [
        PlatformAdapter(name=platform, parser=parser)
        for platform, parser in builtin_parsers().items()
    ]


__all__ = [
    "BUILTIN_LAYOUTS",
    "ReportLayout",
    "TabularReportParser",
    "builtin_parsers",
    "builtin_report_adapters",
]
