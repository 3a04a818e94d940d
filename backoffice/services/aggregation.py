"""Fold job outcomes into summaries, earnings and royalty statements."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Callable

from backoffice.integrations.contracts import NormalizedRecord
from backoffice.jobs.models import JobStatus
from backoffice.logging import get_logger
from backoffice.logging_events import log_event
from backoffice.services.catalog import CatalogResolver, TrackRef
from backoffice.services.currency import (
    CurrencyConversionError,
    CurrencyConverter,
    quantize_money,
)
from backoffice.services.sinks import (
    EarningsRecord,
    RoyaltySink,
    RoyaltyStatement,
    call_maybe_async,
)
from backoffice.utils.numbers import rounded_percent
from backoffice.utils.time import now_utc

logger = get_logger(__name__)

UNKNOWN_TERRITORY = "unknown"


@dataclass(slots=True, frozen=True)
class DistributionSummary:
    status: JobStatus
    success_rate: int
    results: Mapping[str, Mapping[str, Any]]
    succeeded: tuple[str, ...]
    failed: tuple[str, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "success_rate": self.success_rate,
            "results": {name: dict(outcome) for name, outcome in self.results.items()},
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
        }


def summarize_distribution(results: Mapping[str, Mapping[str, Any]]) -> DistributionSummary:
    """Derive the terminal status and success rate from per-platform results.

    Only a run where every platform succeeded is ``completed``. Anything
    else, including a run where no platform succeeded, is
    ``partially_completed`` and the success rate tells them apart. Platform
    failures are isolated, so they never fail the job itself.
    """

    succeeded = tuple(name for name, outcome in results.items() if outcome.get("status") == "success")
    failed = tuple(name for name in results if name not in succeeded)
    total = len(results)
    if total and len(succeeded) == total:
        status = JobStatus.COMPLETED
    else:
        status = JobStatus.PARTIALLY_COMPLETED
    return DistributionSummary(
        status=status,
        success_rate=rounded_percent(len(succeeded), total),
        results=results,
        succeeded=succeeded,
        failed=failed,
    )


@dataclass(slots=True)
class _HolderTotals:
    streams: int = 0
    revenue: Decimal = Decimal("0")
    territories: dict[str, Decimal] = field(default_factory=dict)


@dataclass(slots=True)
class IngestionSummary:
    """Totals for one ingestion run; amounts are in the reporting currency
    unless stated otherwise."""

    platform: str
    reporting_currency: str
    period_start: date | None
    period_end: date | None
    processing_date: datetime
    parsed_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    processed_earnings: int = 0
    unmatched_records: int = 0
    failed_records: int = 0
    generated_statements: int = 0
    failed_statements: int = 0
    total_revenue: Decimal = Decimal("0")
    currency_totals: dict[str, Decimal] = field(default_factory=dict)
    territory_totals: dict[str, dict[str, Any]] = field(default_factory=dict)
    track_totals: dict[str, dict[str, Any]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "reporting_currency": self.reporting_currency,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "processing_date": self.processing_date.isoformat(),
            "parsed_records": self.parsed_records,
            "valid_records": self.valid_records,
            "invalid_records": self.invalid_records,
            "processed_earnings": self.processed_earnings,
            "unmatched_records": self.unmatched_records,
            "failed_records": self.failed_records,
            "generated_statements": self.generated_statements,
            "failed_statements": self.failed_statements,
            "total_revenue": str(quantize_money(self.total_revenue)),
            "currency_totals": {
                code: str(quantize_money(amount, code))
                for code, amount in self.currency_totals.items()
            },
            "territory_totals": {
                name: {"streams": entry["streams"], "revenue": str(quantize_money(entry["revenue"]))}
                for name, entry in self.territory_totals.items()
            },
            "track_totals": {
                name: {"streams": entry["streams"], "revenue": str(quantize_money(entry["revenue"]))}
                for name, entry in self.track_totals.items()
            },
            "warnings": list(self.warnings),
        }


class IngestionAggregator:
    """Turn validated report lines into earnings and per-holder statements."""

    def __init__(
        self,
        *,
        catalog: CatalogResolver,
        converter: CurrencyConverter,
        royalty_sink: RoyaltySink,
        reporting_currency: str = "USD",
        now_factory: Callable[[], datetime] = now_utc,
    ) -> None:
        self._catalog = catalog
        self._converter = converter
        self._sink = royalty_sink
        self._currency = reporting_currency.upper()
        self._now = now_factory

    async def aggregate(
        self,
        *,
        job_id: str,
        platform: str,
        records: Sequence[NormalizedRecord],
        period_start: date | None,
        period_end: date | None,
        report_date: date | None,
        summary: IngestionSummary | None = None,
    ) -> IngestionSummary:
        result = summary or self.new_summary(platform, period_start, period_end)
        holders: dict[str, _HolderTotals] = {}

        for record in records:
            ref = await self._resolve_track(record)
            if ref is None:
                result.unmatched_records += 1
                log_event(
                    logger,
                    "ingestion.track_unmatched",
                    level=logging.WARNING,
                    entity_id=job_id,
                    platform=platform,
                    title=record.track_title,
                    artist=record.artist_name,
                    isrc=record.isrc,
                )
                continue

            amount = record.amount or Decimal("0")
            units = record.units or 0
            currency = (record.currency or self._currency).upper()
            try:
                converted = self._converter.convert(amount, currency, self._currency)
            except CurrencyConversionError as exc:
                result.failed_records += 1
                log_event(
                    logger,
                    "ingestion.record_failed",
                    level=logging.ERROR,
                    entity_id=job_id,
                    title=record.track_title,
                    error=str(exc),
                )
                continue

            territory = record.territory or UNKNOWN_TERRITORY
            earnings = EarningsRecord(
                track_id=ref.track_id,
                release_id=ref.release_id,
                holder_id=ref.holder_id,
                platform=record.platform,
                territory=territory,
                revenue_type=record.revenue_type,
                units=units,
                amount=amount,
                currency=currency,
                converted_amount=converted,
                reporting_currency=self._currency,
                period_start=record.period_start or period_start,
                period_end=record.period_end or period_end,
                report_date=report_date,
                source_job_id=job_id,
                raw=dict(record.extra),
            )
            try:
                await call_maybe_async(self._sink.create_earnings, earnings)
            except Exception as exc:
                result.failed_records += 1
                log_event(
                    logger,
                    "ingestion.record_failed",
                    level=logging.ERROR,
                    entity_id=job_id,
                    title=record.track_title,
                    error=str(exc),
                )
                continue

            result.processed_earnings += 1
            result.total_revenue += converted
            result.currency_totals[currency] = result.currency_totals.get(currency, Decimal("0")) + amount

            territory_entry = result.territory_totals.setdefault(
                territory, {"streams": 0, "revenue": Decimal("0")}
            )
            territory_entry["streams"] += units
            territory_entry["revenue"] += converted

            track_entry = result.track_totals.setdefault(
                ref.track_id, {"streams": 0, "revenue": Decimal("0")}
            )
            track_entry["streams"] += units
            track_entry["revenue"] += converted

            holder = holders.setdefault(ref.holder_id, _HolderTotals())
            holder.streams += units
            holder.revenue += converted
            holder.territories[territory] = holder.territories.get(territory, Decimal("0")) + converted

        await self._create_statements(job_id, platform, holders, result)
        log_event(
            logger,
            "ingestion.aggregated",
            entity_id=job_id,
            platform=platform,
            processed=result.processed_earnings,
            unmatched=result.unmatched_records,
            statements=result.generated_statements,
            total_revenue=str(quantize_money(result.total_revenue)),
        )
        return result

    def new_summary(
        self,
        platform: str,
        period_start: date | None,
        period_end: date | None,
    ) -> IngestionSummary:
        return IngestionSummary(
            platform=platform,
            reporting_currency=self._currency,
            period_start=period_start,
            period_end=period_end,
            processing_date=self._now(),
        )

    async def _resolve_track(self, record: NormalizedRecord) -> TrackRef | None:
        return await call_maybe_async(
            self._catalog.find_track,
            isrc=record.isrc,
            title=record.track_title,
            artist=record.artist_name,
        )

    async def _create_statements(
        self,
        job_id: str,
        platform: str,
        holders: Mapping[str, _HolderTotals],
        result: IngestionSummary,
    ) -> None:
        for holder_id, totals in holders.items():
            gross = quantize_money(totals.revenue, self._currency)
            deductions = Decimal("0.00")
            net = gross - deductions
            statement = RoyaltyStatement(
                holder_id=holder_id,
                period_start=result.period_start,
                period_end=result.period_end,
                currency=self._currency,
                total_streams=totals.streams,
                gross=gross,
                deductions=deductions,
                net=net,
                payable=net,
                platforms=(platform,),
                territories=tuple(sorted(totals.territories)),
                revenue_by_platform={platform: gross},
                revenue_by_territory={
                    name: quantize_money(amount, self._currency)
                    for name, amount in sorted(totals.territories.items())
                },
                processing_status="completed",
                generated_at=self._now(),
                source_job_id=job_id,
            )
            try:
                await call_maybe_async(self._sink.create_statement, statement)
            except Exception as exc:
                result.failed_statements += 1
                log_event(
                    logger,
                    "ingestion.statement_failed",
                    level=logging.ERROR,
                    entity_id=job_id,
                    holder_id=holder_id,
                    error=str(exc),
                )
                continue
            result.generated_statements += 1


__all__ = [
    "DistributionSummary",
    "IngestionAggregator",
    "IngestionSummary",
    "summarize_distribution",
]
