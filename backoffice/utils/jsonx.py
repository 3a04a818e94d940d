"""Strict JSON parsing helpers."""

from __future__ import annotations

from decimal import Decimal
import json
from typing import Any

_BUFFER_TYPES = (bytes, bytearray, memoryview)

__all__ = ["safe_loads", "try_parse_json_or_none"]


def safe_loads(data: str | bytes | bytearray | memoryview) -> Any:
    """Parse JSON data strictly, rejecting blank inputs.

    Floating point numbers are decoded as :class:`~decimal.Decimal` so that
    monetary amounts taken from platform reports keep their exact value.
    """

    if isinstance(data, _BUFFER_TYPES):
        buffer: bytes
        if isinstance(data, bytes):
            buffer = data
        else:
            buffer = bytes(data)
        if not buffer.strip():
            raise ValueError("data must not be empty")
        return json.loads(buffer, parse_float=Decimal)
    if isinstance(data, str):
        stripped = data.strip()
        if not stripped:
            raise ValueError("data must not be empty")
        return json.loads(stripped, parse_float=Decimal)
    raise TypeError("data must be str or bytes")


def try_parse_json_or_none(
    data: str | bytes | bytearray | memoryview | None,
) -> Any | None:
    """Return parsed JSON or ``None`` for invalid/blank input."""

    if data is None:
        return None
    try:
        return safe_loads(data)
    except (TypeError, ValueError, json.JSONDecodeError):
        return None
