"""
tests/unit/test_money.py — Minor units, rounding and the zero tolerance.
"""

from __future__ import annotations

from decimal import Decimal

from fairshare.app.services.money import (
    decimals_for,
    is_zero,
    minor_unit,
    quantize,
    round_preserving_sum,
    zero_epsilon,
)


def test_minor_units():
    assert minor_unit("USD") == Decimal("0.01")
    assert minor_unit("JPY") == Decimal("1")
    assert decimals_for("KRW") == 0


def test_unknown_currency_defaults_to_two_decimals():
    assert decimals_for("XYZ") == 2
    assert minor_unit("XYZ") == Decimal("0.01")


def test_zero_epsilon_is_half_the_minor_unit():
    assert zero_epsilon("EUR") == Decimal("0.005")
    assert zero_epsilon("JPY") == Decimal("0.5")


def test_is_zero_boundary():
    assert is_zero(Decimal("0.005"), "USD")
    assert is_zero(Decimal("-0.005"), "USD")
    assert not is_zero(Decimal("0.0051"), "USD")


def test_quantize_rounds_half_up():
    assert quantize(Decimal("2.345"), "USD") == Decimal("2.35")
    assert quantize(Decimal("-2.345"), "USD") == Decimal("-2.35")
    assert quantize(Decimal("1234.5"), "JPY") == Decimal("1235")


def test_round_preserving_sum_keeps_zero_sum():
    """
    Independent half-up rounding would give 0.01 + 0.01 - 0.01 = 0.01.
    The largest-remainder method hands the only spare cent to user 1.
    """
    values = {
        1: Decimal("0.005"),
        2: Decimal("0.005"),
        3: Decimal("-0.01"),
    }

    rounded = round_preserving_sum(values, "USD")

    assert rounded == {1: Decimal("0.01"), 2: Decimal("0.00"), 3: Decimal("-0.01")}
    assert sum(rounded.values()) == Decimal("0")


def test_round_preserving_sum_symmetric_values():
    rounded = round_preserving_sum({1: Decimal("3.335"), 2: Decimal("-3.335")}, "USD")
    assert rounded == {1: Decimal("3.34"), 2: Decimal("-3.34")}


def test_round_preserving_sum_preserves_key_order():
    values = {3: Decimal("1.111"), 1: Decimal("-2.222"), 2: Decimal("1.111")}
    assert list(round_preserving_sum(values, "USD")) == [3, 1, 2]


def test_round_preserving_sum_already_rounded_values_unchanged():
    values = {1: Decimal("40.00"), 2: Decimal("20.00"), 3: Decimal("-60.00")}
    assert round_preserving_sum(values, "USD") == values


def test_round_preserving_sum_explicit_target():
    """A half-cent residue rounds up to 0.01 by default; a zero target absorbs it."""
    values = {1: Decimal("5.00"), 2: Decimal("-4.995")}

    assert round_preserving_sum(values, "USD") == {1: Decimal("5.00"), 2: Decimal("-4.99")}
    assert round_preserving_sum(values, "USD", target=Decimal("0")) == {
        1: Decimal("5.00"), 2: Decimal("-5.00"),
    }


def test_round_preserving_sum_empty():
    assert round_preserving_sum({}, "USD") == {}
