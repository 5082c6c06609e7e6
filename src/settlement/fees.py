# src/settlement/fees.py
"""
Basis-point fee math.

fee = floor(gross * bps / 10000), net = gross - fee.

Truncation always favours the escrow, so fee + net == gross exactly and a
payout can never exceed what is held.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from src.settlement.config import BPS_DENOMINATOR, SettlementConfig
from src.settlement.errors import InvalidAmount


@dataclass(frozen=True)
class FeeBreakdown:
    gross_amount: int
    fee_amount: int
    net_amount: int
    fee_bps: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_fee(gross_amount: int, fee_bps: int) -> FeeBreakdown:
    if isinstance(gross_amount, bool) or not isinstance(gross_amount, int):
        raise InvalidAmount(f"Amount must be integer units, got {type(gross_amount).__name__}")
    if gross_amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {gross_amount}")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError(f"fee_bps must be within [0, {BPS_DENOMINATOR}], got {fee_bps}")

    fee = gross_amount * fee_bps // BPS_DENOMINATOR
    return FeeBreakdown(
        gross_amount=gross_amount,
        fee_amount=fee,
        net_amount=gross_amount - fee,
        fee_bps=fee_bps,
    )


def purchase_fee(gross_amount: int, cfg: Optional[SettlementConfig] = None) -> FeeBreakdown:
    cfg = cfg or SettlementConfig()
    return compute_fee(gross_amount, cfg.purchase_fee_bps)


def withdraw_fee(gross_amount: int, cfg: Optional[SettlementConfig] = None) -> FeeBreakdown:
    cfg = cfg or SettlementConfig()
    return compute_fee(gross_amount, cfg.withdraw_fee_bps)
