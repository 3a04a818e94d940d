"""Numeric helpers for progress and rate reporting."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

__all__ = ["rounded_percent"]


def rounded_percent(part: int, total: int) -> int:
    """Return ``part / total`` as a whole percentage rounded half-up."""

    if total <= 0:
        return 0
    ratio = Decimal(part) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
