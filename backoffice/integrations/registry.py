"""Registry of platform adapters keyed by platform name."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from backoffice.errors import ConfigurationError
from backoffice.integrations.contracts import (
    DistributionAdapter,
    PlatformAdapter,
    ReportFetcher,
    ReportParser,
)
from backoffice.logging import get_logger

logger = get_logger(__name__)


def _normalise_name(name: str) -> str:
    normalized = str(name or "").strip().lower()
    if not normalized:
        raise ConfigurationError("Platform adapter name must not be empty")
    return normalized


class PlatformRegistry:
    """Read-only lookup of adapter capabilities built once at startup."""

    def __init__(self, adapters: Iterable[PlatformAdapter] = ()) -> None:
        entries: dict[str, PlatformAdapter] = {}
        for adapter in adapters:
            name = _normalise_name(adapter.name)
            if name in entries:
                raise ConfigurationError(
                    f"Platform adapter registered twice: {name}", meta={"platform": name}
                )
            self._check_capabilities(name, adapter)
            entries[name] = adapter
        self._adapters: Mapping[str, PlatformAdapter] = MappingProxyType(entries)
        logger.info(
            "Platform registry initialised",
            extra={"event": "registry.initialised", "platforms": ",".join(entries)},
        )

    @staticmethod
    def _check_capabilities(name: str, adapter: PlatformAdapter) -> None:
        if adapter.distributor is None and adapter.parser is None and adapter.fetcher is None:
            raise ConfigurationError(
                f"Platform adapter {name} provides no capability", meta={"platform": name}
            )
        if adapter.distributor is not None and not isinstance(adapter.distributor, DistributionAdapter):
            raise ConfigurationError(
                f"Distribution adapter for {name} does not implement submit()",
                meta={"platform": name},
            )
        if adapter.parser is not None and not isinstance(adapter.parser, ReportParser):
            raise ConfigurationError(
                f"Report parser for {name} does not implement parse()",
                meta={"platform": name},
            )
        if adapter.fetcher is not None and not isinstance(adapter.fetcher, ReportFetcher):
            raise ConfigurationError(
                f"Report fetcher for {name} does not implement fetch_report()",
                meta={"platform": name},
            )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def get(self, name: str) -> PlatformAdapter | None:
        return self._adapters.get(str(name or "").strip().lower())

    def distributor(self, name: str) -> DistributionAdapter | None:
        adapter = self.get(name)
        return adapter.distributor if adapter is not None else None

    def parser(self, name: str) -> ReportParser | None:
        adapter = self.get(name)
        return adapter.parser if adapter is not None else None

    def fetcher(self, name: str) -> ReportFetcher | None:
        adapter = self.get(name)
        return adapter.fetcher if adapter is not None else None

    def ensure_known(self, names: Iterable[str]) -> None:
        unknown = [name for name in names if self.get(name) is None]
        if unknown:
            raise ConfigurationError(
                f"Unknown platforms in configuration: {', '.join(unknown)}",
                meta={"platforms": unknown},
            )

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self._adapters)


__all__ = ["PlatformRegistry"]
