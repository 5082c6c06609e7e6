"""Decimal string <-> integer unit conversion."""

from decimal import Decimal

import pytest

from src.settlement.errors import InvalidAmount
from src.settlement.money import format_units, from_units, to_units


def test_to_units_scales_by_18_decimals():
    assert to_units("1") == 10**18
    assert to_units("0.2") == 2 * 10**17
    assert to_units(Decimal("9.751")) == 9_751 * 10**15
    assert to_units(3) == 3 * 10**18


def test_to_units_smallest_unit():
    assert to_units("0.000000000000000001") == 1


@pytest.mark.parametrize("bad", ["0.0000000000000000001", "abc", "NaN", "Infinity", 0.1, True])
def test_to_units_rejects(bad):
    with pytest.raises(InvalidAmount):
        to_units(bad)


def test_format_units_strips_trailing_zeros():
    assert format_units(to_units("0.249")) == "0.249"
    assert format_units(to_units("10")) == "10"
    assert format_units(0) == "0"
    assert format_units(1) == "0.000000000000000001"


def test_from_units_is_exact():
    assert from_units(9_751 * 10**15) == Decimal("9.751")


def test_custom_decimals():
    assert to_units("1.5", decimals=6) == 1_500_000
    assert format_units(1_500_000, decimals=6) == "1.5"
