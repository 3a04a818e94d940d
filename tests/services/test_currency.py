from __future__ import annotations

from decimal import Decimal

import pytest

from backoffice.services.currency import (
    CurrencyConversionError,
    StaticRateConverter,
    quantize_money,
    to_decimal,
)


def test_converts_through_usd_rates() -> None:
    converter = StaticRateConverter()

    assert converter.convert(Decimal("5.00"), "EUR", "USD") == Decimal("5.88")
    assert converter.convert(Decimal("10"), "usd", "GBP") == Decimal("7.30")
    assert converter.convert(Decimal("1.00"), "USD", "JPY") == Decimal("110")


def test_same_currency_and_zero_amounts_pass_through() -> None:
    converter = StaticRateConverter()

    assert converter.convert(Decimal("3.14159"), "EUR", "eur") == Decimal("3.14159")
    assert converter.convert(Decimal("0"), "XXX", "USD") == Decimal("0")


def test_unknown_currency_raises() -> None:
    converter = StaticRateConverter({"USD": Decimal("1"), "EUR": Decimal("0.9")})

    with pytest.raises(CurrencyConversionError) as excinfo:
        converter.convert(Decimal("1"), "GBP", "USD")

    assert excinfo.value.meta == {"from": "GBP", "to": "USD"}
    assert converter.supported == frozenset({"USD", "EUR"})


def test_quantize_money_rounds_half_up() -> None:
    assert quantize_money(Decimal("2.345")) == Decimal("2.35")
    assert quantize_money(Decimal("2.344"), "EUR") == Decimal("2.34")
    assert quantize_money(Decimal("1234.5"), "JPY") == Decimal("1235")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1,234.50", Decimal("1234.50")),
        (7, Decimal("7")),
        (Decimal("0.1"), Decimal("0.1")),
        ("", None),
        ("abc", None),
        ("NaN", None),
        (True, None),
        (None, None),
    ],
)
def test_to_decimal(value, expected) -> None:
    assert to_decimal(value) == expected
