"""Application configuration utilities for the back office job engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

from backoffice.logging import get_logger
from backoffice.utils.priority import DEFAULT_PRIORITY_LEVELS, parse_priority_map

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_S = 60.0
DEFAULT_CALL_TIMEOUT_S = 30 * 60.0
DEFAULT_HTTP_TIMEOUT_S = 30.0
DEFAULT_RECORD_RETENTION_S = 24 * 60 * 60.0
DEFAULT_REPORTING_CURRENCY = "USD"
DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_PLATFORM_ORDER: tuple[str, ...] = (
    "spotify",
    "apple_music",
    "youtube_music",
    "amazon_music",
    "tidal",
    "deezer",
)

DEFAULT_DISTRIBUTION_RETRY_DELAY_S = 5 * 60.0
DEFAULT_DISTRIBUTION_TIMEOUT_S = 30 * 60.0
DEFAULT_DISTRIBUTION_AVG_JOB_S = 10 * 60.0
DEFAULT_INGESTION_RETRY_DELAY_S = 10 * 60.0
DEFAULT_INGESTION_TIMEOUT_S = 60 * 60.0
DEFAULT_INGESTION_AVG_JOB_S = 20 * 60.0
DEFAULT_AVG_SUBTARGET_S = 5 * 60.0


_RUNTIME_ENV_CACHE: dict[str, str] | None = None


def _load_env_file(path: Path) -> dict[str, str]:
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    env_values: dict[str, str] = {}
    for line in contents.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        env_values[key.strip()] = value.strip().strip('"').strip("'")
    return env_values


def load_runtime_env(
    *,
    env_file: str | os.PathLike[str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Load runtime environment values applying .env before explicit environment."""

    env: dict[str, str] = {}
    source = dict(base_env or os.environ)

    path = Path(env_file) if env_file is not None else Path(".env")
    if path.exists() and path.is_file():
        env.update(_load_env_file(path))

    env.update({key: str(value) for key, value in source.items() if value is not None})
    return env


def get_runtime_env() -> Mapping[str, str]:
    """Return the cached runtime environment mapping."""

    global _RUNTIME_ENV_CACHE
    if _RUNTIME_ENV_CACHE is None:
        _RUNTIME_ENV_CACHE = load_runtime_env()
    return _RUNTIME_ENV_CACHE


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Override the cached runtime environment (primarily for testing)."""

    global _RUNTIME_ENV_CACHE
    if runtime_env is None:
        _RUNTIME_ENV_CACHE = None
    else:
        _RUNTIME_ENV_CACHE = dict(runtime_env)


def get_env(name: str, default: str | None = None) -> str | None:
    """Return an environment variable honoring ENV > .env > defaults."""

    env = get_runtime_env()
    return env.get(name, default)


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bounded_int(
    value: Any,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    resolved = _coerce_int(value, default=default)
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _bounded_float(
    value: Any,
    *,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    try:
        resolved = float(value)
    except (TypeError, ValueError):
        resolved = default
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _parse_list(value: str | None) -> list[str]:
    if value is None:
        return []
    candidates = value.replace("\n", ",").split(",")
    return [item.strip() for item in candidates if item.strip()]


def _parse_platform_order(value: str | None) -> tuple[str, ...]:
    items = _parse_list(value)
    if not items:
        return DEFAULT_PLATFORM_ORDER
    ordered: dict[str, None] = {}
    for item in items:
        ordered.setdefault(item.lower(), None)
    return tuple(ordered)


@dataclass(slots=True, frozen=True)
class JobKindConfig:
    """Retry, deadline and estimate settings for one job kind."""

    max_attempts: int
    retry_delay_s: float
    timeout_s: float
    avg_job_s: float
    avg_subtarget_s: float = DEFAULT_AVG_SUBTARGET_S

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, Any],
        prefix: str,
        *,
        retry_delay_s: float,
        timeout_s: float,
        avg_job_s: float,
    ) -> JobKindConfig:
        upper = prefix.upper()
        shared_attempts = _bounded_int(
            env.get("RETRY_MAX_ATTEMPTS"),
            default=DEFAULT_RETRY_MAX_ATTEMPTS,
            minimum=1,
        )
        max_attempts = _bounded_int(
            env.get(f"RETRY_{upper}_MAX_ATTEMPTS"),
            default=shared_attempts,
            minimum=1,
        )
        delay = _bounded_float(
            env.get(f"RETRY_{upper}_DELAY_S"),
            default=retry_delay_s,
            minimum=0.0,
        )
        timeout = _bounded_float(
            env.get(f"{upper}_TIMEOUT_S"),
            default=timeout_s,
            minimum=1.0,
        )
        avg_job = _bounded_float(
            env.get(f"{upper}_AVG_JOB_S"),
            default=avg_job_s,
            minimum=0.0,
        )
        avg_subtarget = _bounded_float(
            env.get(f"{upper}_AVG_SUBTARGET_S"),
            default=DEFAULT_AVG_SUBTARGET_S,
            minimum=0.0,
        )
        return cls(
            max_attempts=max_attempts,
            retry_delay_s=delay,
            timeout_s=timeout,
            avg_job_s=avg_job,
            avg_subtarget_s=avg_subtarget,
        )


@dataclass(slots=True, frozen=True)
class EngineConfig:
    """Settings governing the scheduler loop and job processing."""

    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    call_timeout_s: float = DEFAULT_CALL_TIMEOUT_S
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    record_retention_s: float = DEFAULT_RECORD_RETENTION_S
    reporting_currency: str = DEFAULT_REPORTING_CURRENCY
    platform_order: tuple[str, ...] = DEFAULT_PLATFORM_ORDER
    priority_levels: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_LEVELS)
    )
    distribution: JobKindConfig = field(
        default_factory=lambda: JobKindConfig(
            max_attempts=DEFAULT_RETRY_MAX_ATTEMPTS,
            retry_delay_s=DEFAULT_DISTRIBUTION_RETRY_DELAY_S,
            timeout_s=DEFAULT_DISTRIBUTION_TIMEOUT_S,
            avg_job_s=DEFAULT_DISTRIBUTION_AVG_JOB_S,
        )
    )
    ingestion: JobKindConfig = field(
        default_factory=lambda: JobKindConfig(
            max_attempts=DEFAULT_RETRY_MAX_ATTEMPTS,
            retry_delay_s=DEFAULT_INGESTION_RETRY_DELAY_S,
            timeout_s=DEFAULT_INGESTION_TIMEOUT_S,
            avg_job_s=DEFAULT_INGESTION_AVG_JOB_S,
        )
    )
    log_level: str = "INFO"
    log_file: str | None = None

    def for_kind(self, kind: str) -> JobKindConfig:
        normalized = str(kind).strip().lower()
        if normalized == "distribution":
            return self.distribution
        if normalized == "ingestion":
            return self.ingestion
        raise KeyError(f"No configuration for job kind {kind!r}")

    @classmethod
    def from_env(cls, env: Mapping[str, Any] | None = None) -> EngineConfig:
        source = env if env is not None else get_runtime_env()
        poll_interval = _bounded_float(
            source.get("ENGINE_POLL_INTERVAL_S"),
            default=DEFAULT_POLL_INTERVAL_S,
            minimum=0.0,
        )
        call_timeout = _bounded_float(
            source.get("ENGINE_CALL_TIMEOUT_S"),
            default=DEFAULT_CALL_TIMEOUT_S,
            minimum=0.1,
        )
        http_timeout = _bounded_float(
            source.get("ENGINE_HTTP_TIMEOUT_S"),
            default=DEFAULT_HTTP_TIMEOUT_S,
            minimum=0.1,
        )
        retention = _bounded_float(
            source.get("ENGINE_RECORD_RETENTION_S"),
            default=DEFAULT_RECORD_RETENTION_S,
            minimum=0.0,
        )
        currency = str(
            source.get("ENGINE_REPORTING_CURRENCY") or DEFAULT_REPORTING_CURRENCY
        ).strip().upper()
        platform_order = _parse_platform_order(source.get("ENGINE_PLATFORM_ORDER"))
        priority_levels = parse_priority_map(
            source.get("ENGINE_PRIORITY_LEVELS"), DEFAULT_PRIORITY_LEVELS
        )
        distribution = JobKindConfig.from_env(
            source,
            "distribution",
            retry_delay_s=DEFAULT_DISTRIBUTION_RETRY_DELAY_S,
            timeout_s=DEFAULT_DISTRIBUTION_TIMEOUT_S,
            avg_job_s=DEFAULT_DISTRIBUTION_AVG_JOB_S,
        )
        ingestion = JobKindConfig.from_env(
            source,
            "ingestion",
            retry_delay_s=DEFAULT_INGESTION_RETRY_DELAY_S,
            timeout_s=DEFAULT_INGESTION_TIMEOUT_S,
            avg_job_s=DEFAULT_INGESTION_AVG_JOB_S,
        )
        log_level = str(source.get("LOG_LEVEL") or "INFO").strip().upper()
        log_file = str(source.get("LOG_FILE") or "").strip() or None
        return cls(
            poll_interval_s=poll_interval,
            call_timeout_s=call_timeout,
            http_timeout_s=http_timeout,
            record_retention_s=retention,
            reporting_currency=currency or DEFAULT_REPORTING_CURRENCY,
            platform_order=platform_order,
            priority_levels=priority_levels,
            distribution=distribution,
            ingestion=ingestion,
            log_level=log_level,
            log_file=log_file,
        )


def load_config(env: Mapping[str, Any] | None = None) -> EngineConfig:
    """Return the engine configuration resolved from the runtime environment."""

    config = EngineConfig.from_env(env)
    logger.debug(
        "Engine configuration loaded",
        extra={
            "event": "config.loaded",
            "poll_interval_s": config.poll_interval_s,
            "platforms": ",".join(config.platform_order),
        },
    )
    return config


__all__ = [
    "DEFAULT_PLATFORM_ORDER",
    "DEFAULT_RETRY_MAX_ATTEMPTS",
    "EngineConfig",
    "JobKindConfig",
    "get_env",
    "get_runtime_env",
    "load_config",
    "load_runtime_env",
    "override_runtime_env",
]
