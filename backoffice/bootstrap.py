"""Bootstrap helpers wiring the job engine with its collaborators."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime

import httpx

from backoffice.config import DEFAULT_PLATFORM_ORDER, EngineConfig, load_config
from backoffice.engine import JobEngine
from backoffice.errors import ConfigurationError
from backoffice.integrations.contracts import PlatformAdapter
from backoffice.integrations.normalizers import builtin_parsers
from backoffice.integrations.registry import PlatformRegistry
from backoffice.integrations.report_source import ReportSource
from backoffice.jobs.models import JobKind
from backoffice.logging import configure_logging, get_logger
from backoffice.logging_events import log_event
from backoffice.orchestrator.handlers import (
    DistributionHandlerDeps,
    IngestionHandlerDeps,
    JobHandler,
    default_handlers,
)
from backoffice.services.aggregation import IngestionAggregator
from backoffice.services.catalog import CatalogResolver, InMemoryCatalog
from backoffice.services.currency import CurrencyConverter, StaticRateConverter
from backoffice.services.sinks import (
    ChannelStatusSink,
    InMemoryChannelStatusSink,
    InMemoryRoyaltySink,
    NotificationSink,
    Notifier,
    RoyaltySink,
)
from backoffice.utils.time import now_utc

logger = get_logger(__name__)


@dataclass(slots=True)
class EngineRuntime:
    """Container bundling the engine and the collaborators it was built with."""

    engine: JobEngine
    config: EngineConfig
    registry: PlatformRegistry
    handlers: Mapping[JobKind, JobHandler]
    notifier: Notifier
    report_source: ReportSource
    aggregator: IngestionAggregator


def merge_builtin_parsers(adapters: Iterable[PlatformAdapter]) -> list[PlatformAdapter]:
    """Give every platform with a built-in report layout a parser.

    Adapters shipping their own parser keep it; platforms without any adapter
    get a parse-only entry.
    """

    builtin = builtin_parsers()
    merged: list[PlatformAdapter] = []
    seen: set[str] = set()
    for adapter in adapters:
        name = str(adapter.name or "").strip().lower()
        seen.add(name)
        if adapter.parser is None and name in builtin:
            adapter = replace(adapter, parser=builtin[name])
        merged.append(adapter)
    for name, parser in builtin.items():
        if name not in seen:
            merged.append(PlatformAdapter(name=name, parser=parser))
    return merged


def validate_platform_order(config: EngineConfig, registry: PlatformRegistry) -> None:
    # The built-in order names every platform the business knows about;
    # only an explicitly configured order has to match registered adapters.
    if tuple(config.platform_order) == DEFAULT_PLATFORM_ORDER:
        return
    registry.ensure_known(config.platform_order)


def _validate_reporting_currency(config: EngineConfig, converter: CurrencyConverter) -> None:
    supported = getattr(converter, "supported", None)
    if supported is not None and config.reporting_currency not in supported:
        raise ConfigurationError(
            f"Unsupported reporting currency: {config.reporting_currency}",
            meta={"currency": config.reporting_currency},
        )


def bootstrap_engine(
    *,
    config: EngineConfig | None = None,
    adapters: Iterable[PlatformAdapter] = (),
    catalog: CatalogResolver | None = None,
    channel_sink: ChannelStatusSink | None = None,
    royalty_sink: RoyaltySink | None = None,
    notification_sink: NotificationSink | None = None,
    converter: CurrencyConverter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    include_builtin_parsers: bool = True,
    setup_logging: bool = False,
    now_factory: Callable[[], datetime] = now_utc,
) -> EngineRuntime:
    """Build a :class:`JobEngine` with its registry, handlers and sinks.

    With ``setup_logging`` the root logger is configured from
    ``LOG_LEVEL`` and ``LOG_FILE`` first. Raises :class:`ConfigurationError`
    when the adapters or the configuration are inconsistent.
    """

    resolved_config = config or load_config()
    if setup_logging:
        configure_logging(resolved_config.log_level, resolved_config.log_file)
    adapter_list = list(adapters)
    if include_builtin_parsers:
        adapter_list = merge_builtin_parsers(adapter_list)
    registry = PlatformRegistry(adapter_list)
    validate_platform_order(resolved_config, registry)

    resolved_converter = converter or StaticRateConverter()
    _validate_reporting_currency(resolved_config, resolved_converter)

    resolved_catalog = catalog if catalog is not None else InMemoryCatalog()
    notifier = Notifier(notification_sink)
    report_source = ReportSource(
        registry=registry,
        timeout_s=resolved_config.http_timeout_s,
        transport=transport,
    )
    aggregator = IngestionAggregator(
        catalog=resolved_catalog,
        converter=resolved_converter,
        royalty_sink=royalty_sink if royalty_sink is not None else InMemoryRoyaltySink(),
        reporting_currency=resolved_config.reporting_currency,
        now_factory=now_factory,
    )
    distribution_deps = DistributionHandlerDeps(
        registry=registry,
        catalog=resolved_catalog,
        channel_sink=channel_sink if channel_sink is not None else InMemoryChannelStatusSink(),
        notifier=notifier,
        platform_order=resolved_config.platform_order,
        call_timeout_s=resolved_config.call_timeout_s,
        now_factory=now_factory,
    )
    ingestion_deps = IngestionHandlerDeps(
        registry=registry,
        report_source=report_source,
        aggregator=aggregator,
        now_factory=now_factory,
    )
    handlers = default_handlers(distribution_deps, ingestion_deps)
    engine = JobEngine(
        config=resolved_config,
        registry=registry,
        handlers=handlers,
        notifier=notifier,
        now_factory=now_factory,
    )
    log_event(
        logger,
        "engine.bootstrapped",
        platforms=",".join(registry.names),
        reporting_currency=resolved_config.reporting_currency,
        poll_interval_s=resolved_config.poll_interval_s,
    )
    return EngineRuntime(
        engine=engine,
        config=resolved_config,
        registry=registry,
        handlers=handlers,
        notifier=notifier,
        report_source=report_source,
        aggregator=aggregator,
    )


__all__ = [
    "EngineRuntime",
    "bootstrap_engine",
    "merge_builtin_parsers",
    "validate_platform_order",
]
