# src/settlement/money.py
"""
Token amount conversions.

Settlement math runs on integers scaled by 10**decimals (the token's smallest
unit). Decimal strings only appear at the edges: API payloads, reports, logs.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from src.settlement.errors import InvalidAmount

DEFAULT_DECIMALS = 18

AmountLike = Union[int, str, Decimal]


def to_units(value: AmountLike, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Parse a human token amount ("9.8", Decimal("0.2")) into integer units.

    Ints are taken as whole tokens. Floats are refused: they cannot carry
    18 decimals exactly.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Unsupported amount type: {type(value).__name__}")

    try:
        d = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation as e:
        raise InvalidAmount(f"Not a number: {value!r}") from e

    if not d.is_finite():
        raise InvalidAmount(f"Not a finite amount: {value!r}")

    scaled = d.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(f"More than {decimals} decimal places: {value!r}")
    return int(scaled)


def from_units(units: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    return Decimal(int(units)).scaleb(-decimals)


def format_units(units: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Render integer units as a plain decimal string without trailing zeros."""
    d = from_units(units, decimals)
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
