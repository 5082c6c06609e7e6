# src/settlement/claims.py
"""
Time-based claim curve.

Provides:
- days_held: whole days elapsed between purchase and evaluation
- claim_percentage: piecewise schedule -> (base, bonus, total) in basis points
- claim_amount / build_claim_quote: premium -> payout

Schedule (first match wins):
- <= 1 day     : 0.5%
- 2..7 days    : 5% + 0.5% per day
- 8..30 days   : 10% + 1% per full week
- 31..90 days  : 25% + 2% per full month (30 days)
- 91..180 days : 50% + 3% per full month beyond the third
- 181..365 days: 75% + 2% per full month beyond the sixth
- > 365 days   : 100% + 5% bonus per full year

The total is capped (120% by default), so a policy never pays back more than
1.2x its premium. Non-decreasing in days held.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from src.settlement.config import BPS_DENOMINATOR, SettlementConfig
from src.settlement.errors import InvalidAmount, InvalidTimestamp

SECONDS_PER_DAY = 86_400

# Percentages are expressed in basis points: 100% == 10_000.
PCT = 100


@dataclass(frozen=True)
class ClaimQuote:
    policy_id: Optional[int]
    premium_paid: int
    days_held: int
    claim_percentage_bps: int
    time_bonus_bps: int
    total_percentage_bps: int
    gross_claim_amount: int
    as_of: Optional[datetime] = None

    @property
    def claim_percentage(self) -> float:
        return self.claim_percentage_bps / PCT

    @property
    def time_bonus_percentage(self) -> float:
        return self.time_bonus_bps / PCT

    @property
    def total_percentage(self) -> float:
        return self.total_percentage_bps / PCT

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["as_of"] = self.as_of.isoformat() if self.as_of else None
        return out


def days_held(purchased_at: datetime, as_of: datetime) -> int:
    """
    Whole days elapsed (floor). Raises InvalidTimestamp when as_of precedes
    the purchase, e.g. a purchase timestamp in the future.
    """
    elapsed = (as_of - purchased_at).total_seconds()
    if elapsed < 0:
        raise InvalidTimestamp(
            f"Evaluation time {as_of.isoformat()} precedes purchase {purchased_at.isoformat()}"
        )
    return int(elapsed // SECONDS_PER_DAY)


def _schedule(days: int) -> Tuple[int, int]:
    months = days // 30

    if days <= 1:
        return 50, 0
    if days <= 7:
        return 5 * PCT + 50 * days, 0
    if days <= 30:
        return 10 * PCT + PCT * (days // 7), 0
    if days <= 90:
        return 25 * PCT + 2 * PCT * months, 0
    if days <= 180:
        return 50 * PCT + 3 * PCT * (months - 3), 0
    if days <= 365:
        return 75 * PCT + 2 * PCT * (months - 6), 0
    return 100 * PCT, 5 * PCT * (days // 365)


def claim_percentage(days: int, cfg: Optional[SettlementConfig] = None) -> Tuple[int, int, int]:
    """
    Returns (base_bps, bonus_bps, total_bps) for a holding period.

    total_bps = min(base + bonus, claim_cap_bps)
    """
    cfg = cfg or SettlementConfig()
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidTimestamp(f"days_held must be an integer, got {type(days).__name__}")
    if days < 0:
        raise InvalidTimestamp(f"days_held must be non-negative, got {days}")

    base, bonus = _schedule(days)
    total = min(base + bonus, cfg.claim_cap_bps)
    return base, bonus, total


def claim_amount(premium_paid: int, days: int, cfg: Optional[SettlementConfig] = None) -> int:
    return build_claim_quote(premium_paid, days, cfg=cfg).gross_claim_amount


def build_claim_quote(
    premium_paid: int,
    days: int,
    *,
    policy_id: Optional[int] = None,
    as_of: Optional[datetime] = None,
    cfg: Optional[SettlementConfig] = None,
) -> ClaimQuote:
    if isinstance(premium_paid, bool) or not isinstance(premium_paid, int):
        raise InvalidAmount(f"Premium must be integer units, got {type(premium_paid).__name__}")
    if premium_paid <= 0:
        raise InvalidAmount(f"Premium must be positive, got {premium_paid}")

    base, bonus, total = claim_percentage(days, cfg=cfg)

    return ClaimQuote(
        policy_id=policy_id,
        premium_paid=premium_paid,
        days_held=days,
        claim_percentage_bps=base,
        time_bonus_bps=bonus,
        total_percentage_bps=total,
        gross_claim_amount=premium_paid * total // BPS_DENOMINATOR,
        as_of=as_of,
    )
