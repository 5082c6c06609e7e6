# src/settlement/config.py
"""
Settlement configuration.

Fee schedule and claim cap, in basis points (1 bp = 0.01%):
- purchase_fee_bps: taken from the gross premium at purchase (2.00%)
- withdraw_fee_bps: taken from every escrow withdrawal, claim payouts included (0.50%)
- claim_cap_bps: ceiling on base + time bonus percentage (120%)

Amounts are integers scaled by 10**token_decimals.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

BPS_DENOMINATOR = 10_000
MAX_CLAIM_CAP_BPS = 12_000


@dataclass(frozen=True)
class SettlementConfig:
    token_symbol: str = "SHM"
    token_decimals: int = 18

    purchase_fee_bps: int = 200
    withdraw_fee_bps: int = 50

    claim_cap_bps: int = MAX_CLAIM_CAP_BPS

    def __post_init__(self) -> None:
        for name in ("purchase_fee_bps", "withdraw_fee_bps"):
            v = getattr(self, name)
            if not 0 <= v <= BPS_DENOMINATOR:
                raise ValueError(f"{name} must be within [0, {BPS_DENOMINATOR}], got {v}")
        # Payouts never exceed 1.2x the premium.
        if not 0 < self.claim_cap_bps <= MAX_CLAIM_CAP_BPS:
            raise ValueError(f"claim_cap_bps must be within (0, {MAX_CLAIM_CAP_BPS}], got {self.claim_cap_bps}")


def _env_int(key: str, default: int) -> int:
    v: Optional[str] = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    return int(v)


def get_settlement_config() -> SettlementConfig:
    """
    Build SettlementConfig from environment variables.

    Env:
      TOKEN_SYMBOL      (default: SHM)
      PURCHASE_FEE_BPS  (default: 200)
      WITHDRAW_FEE_BPS  (default: 50)
      CLAIM_CAP_BPS     (default: 12000)
    """
    base = SettlementConfig()
    return SettlementConfig(
        token_symbol=os.getenv("TOKEN_SYMBOL") or base.token_symbol,
        token_decimals=base.token_decimals,
        purchase_fee_bps=_env_int("PURCHASE_FEE_BPS", base.purchase_fee_bps),
        withdraw_fee_bps=_env_int("WITHDRAW_FEE_BPS", base.withdraw_fee_bps),
        claim_cap_bps=_env_int("CLAIM_CAP_BPS", base.claim_cap_bps),
    )
