"""Currency conversion used when folding royalty totals."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Protocol

from backoffice.errors import AppError

# Units of each currency per one US dollar.
DEFAULT_USD_RATES: Mapping[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.85"),
    "GBP": Decimal("0.73"),
    "JPY": Decimal("110.0"),
    "CAD": Decimal("1.25"),
    "AUD": Decimal("1.35"),
    "SEK": Decimal("8.5"),
    "NOK": Decimal("8.8"),
    "DKK": Decimal("6.3"),
    "CHF": Decimal("0.92"),
    "BRL": Decimal("5.2"),
    "MXN": Decimal("20.0"),
    "INR": Decimal("74.0"),
    "KRW": Decimal("1180.0"),
    "CNY": Decimal("6.4"),
    "PLN": Decimal("3.8"),
    "RUB": Decimal("74.0"),
    "TRY": Decimal("8.5"),
    "ZAR": Decimal("14.5"),
    "NZD": Decimal("1.42"),
}

ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW"})

CENT = Decimal("0.01")


class CurrencyConversionError(AppError):
    """Raised when an amount cannot be converted between two currencies."""


class CurrencyConverter(Protocol):
    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """Return ``amount`` expressed in ``to_currency``."""


def quantize_money(amount: Decimal, currency: str | None = None) -> Decimal:
    """Round half-up to the precision of ``currency`` (two places by default)."""

    exponent = Decimal("1") if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else CENT
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def to_decimal(value: object, *, default: Decimal | None = None) -> Decimal | None:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return default
    text = str(value).strip().replace(",", "")
    if not text:
        return default
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return default
    if not parsed.is_finite():
        return default
    return parsed


class StaticRateConverter:
    """Convert through US dollars using a fixed rate table."""

    def __init__(self, rates: Mapping[str, Decimal] | None = None) -> None:
        source = rates if rates is not None else DEFAULT_USD_RATES
        self._rates = {code.upper(): Decimal(rate) for code, rate in source.items()}

    @property
    def supported(self) -> frozenset[str]:
        return frozenset(self._rates)

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        source = (from_currency or "").strip().upper()
        target = (to_currency or "").strip().upper()
        if not amount:
            return Decimal("0")
        if source == target:
            return amount
        from_rate = self._rates.get(source)
        to_rate = self._rates.get(target)
        if not from_rate or not to_rate:
            raise CurrencyConversionError(
                f"Unsupported currency conversion: {source} to {target}",
                meta={"from": source, "to": target},
            )
        return quantize_money(amount / from_rate * to_rate, target)


__all__ = [
    "CENT",
    "CurrencyConversionError",
    "CurrencyConverter",
    "DEFAULT_USD_RATES",
    "StaticRateConverter",
    "quantize_money",
    "to_decimal",
]
