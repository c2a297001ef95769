"""
services/money.py — Currency minor units, rounding and the zero tolerance.

All amounts are Decimal. Rounding is ROUND_HALF_UP to the currency's minor
unit. A balance is treated as zero when its magnitude is at most half of the
minor unit (0.005 for two-decimal currencies); the same tolerance governs
dust transactions and split-sum checks.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

# Minor-unit exponents; unknown codes fall back to 2.
CURRENCY_DECIMALS: dict[str, int] = {
    "ILS": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "JPY": 0,
    "CHF": 2,
    "CAD": 2,
    "AUD": 2,
    "HKD": 2,
    "SGD": 2,
    "THB": 2,
    "KRW": 0,
    "INR": 2,
    "CNY": 2,
    "NZD": 2,
    "MXN": 2,
}

DEFAULT_DECIMALS = 2


def decimals_for(currency: str) -> int:
    return CURRENCY_DECIMALS.get(currency, DEFAULT_DECIMALS)


def minor_unit(currency: str) -> Decimal:
    """Smallest representable amount, e.g. Decimal("0.01") for USD, Decimal("1") for JPY."""
    return Decimal(1).scaleb(-decimals_for(currency))


def zero_epsilon(currency: str) -> Decimal:
    return minor_unit(currency) / 2


def is_zero(amount: Decimal, currency: str) -> bool:
    return abs(amount) <= zero_epsilon(currency)


def quantize(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def round_preserving_sum(values: dict, currency: str, target: Decimal | None = None) -> dict:
    """
    Rounds every value to the currency's minor unit so that the rounded
    values add up to `target`, or to the rounded exact total when no target
    is given. `target` must lie within one minor unit per value of the
    exact total.

    Largest-remainder method: floor everything, then hand the leftover minor
    units to the values with the largest discarded fractions. Ties go to the
    smaller key so the result is deterministic.

    >>> round_preserving_sum({1: Decimal("3.335"), 2: Decimal("-3.335")}, "USD")
    {1: Decimal('3.34'), 2: Decimal('-3.34')}
    """
    if not values:
        return {}

    unit = minor_unit(currency)
    if target is None:
        target = quantize(sum(values.values(), Decimal("0")), currency)

    floored = {k: v.quantize(unit, rounding=ROUND_FLOOR) for k, v in values.items()}
    leftover_units = int((target - sum(floored.values(), Decimal("0"))) / unit)

    by_remainder = sorted(
        values,
        key=lambda k: (-(values[k] - floored[k]), k),
    )
    result = dict(floored)
    for key in by_remainder[:leftover_units]:
        result[key] += unit
    return {k: result[k] for k in values}
