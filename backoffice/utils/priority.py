"""Priority parsing helpers for engine configuration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .jsonx import try_parse_json_or_none

__all__ = [
    "DEFAULT_PRIORITY_LEVELS",
    "MAX_PRIORITY",
    "MIN_PRIORITY",
    "parse_priority_map",
    "resolve_priority",
]

MIN_PRIORITY = 1
MAX_PRIORITY = 5

DEFAULT_PRIORITY_LEVELS: Mapping[str, int] = {
    "urgent": 1,
    "high": 2,
    "normal": 3,
    "low": 4,
    "batch": 5,
}


def _coerce_int(value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, parsed)


def _parse_csv(value: str) -> dict[str, int]:
    mapping: dict[str, int] = {}
    if not value:
        return mapping
    for item in value.split(","):
        key, sep, raw = item.partition(":")
        if not sep:
            # Entries without an explicit value are ignored; the caller falls
            # back to the defaults when nothing valid remains.
            continue
        name = key.strip().lower()
        if not name:
            continue
        mapping[name] = _coerce_int(raw.strip())
    return mapping


def parse_priority_map(env_val: str | None, default: Mapping[str, int]) -> dict[str, int]:
    """Parse named priority levels from JSON or CSV."""

    default_map = dict(default)
    if not env_val:
        return default_map
    raw = env_val.strip()
    if not raw:
        return default_map
    parsed = try_parse_json_or_none(raw)
    if isinstance(parsed, Mapping):
        mapping: dict[str, int] = {}
        for key, value in parsed.items():
            name = str(key).strip().lower()
            if not name:
                continue
            mapping[name] = _coerce_int(value)
        if mapping:
            return mapping
    csv_mapping = _parse_csv(raw)
    if csv_mapping:
        return csv_mapping
    return default_map


def resolve_priority(
    value: str | int | None,
    levels: Mapping[str, int] = DEFAULT_PRIORITY_LEVELS,
) -> int:
    """Return the numeric priority for a level name or an explicit integer.

    Unknown names resolve to ``normal``; integers are clamped to the
    supported range so a caller cannot jump ahead of ``urgent``.
    """

    fallback = int(levels.get("normal", DEFAULT_PRIORITY_LEVELS["normal"]))
    if value is None:
        return fallback
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return max(MIN_PRIORITY, min(MAX_PRIORITY, value))
    name = str(value).strip().lower()
    if name.isdigit():
        return max(MIN_PRIORITY, min(MAX_PRIORITY, int(name)))
    resolved = levels.get(name)
    if resolved is None:
        return fallback
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(resolved)))
