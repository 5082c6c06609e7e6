# src/analytics/report.py
"""
Analytics over stored settlement records.

Provides:
- portfolio summary per wallet (invested, live claim value, claimed, P/L)
- purchase / claim record frames
- global totals (policies by status, revenue, average policy value, top types)
- revenue (fees) by day and policy-type breakdown
- claim curve table for a premium over a range of holding periods

All money columns stay in integer token units; *_tokens columns are float
approximations for display only.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from src.records.schemas import POLICY_ACTIVE, POLICY_CLAIMED, POLICY_EXPIRED
from src.records.store import RecordStore
from src.settlement.claims import build_claim_quote, days_held
from src.settlement.config import SettlementConfig

PURCHASE_COLUMNS = ["policy_id", "holder", "gross_amount", "fee", "net", "timestamp", "transaction_ref"]
CLAIM_COLUMNS = [
    "policy_id",
    "holder",
    "claim_amount",
    "claim_percentage",
    "days_held",
    "time_bonus",
    "total_percentage",
    "timestamp",
    "transaction_ref",
    "payout_fee",
    "payout_net",
]


@dataclass(frozen=True)
class PortfolioSummary:
    holder: str
    total_invested: int
    current_claim_value: int
    active_policies: int
    total_claimed: int
    profit_loss: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def portfolio_summary(
    store: RecordStore,
    holder: str,
    as_of: datetime,
    cfg: Optional[SettlementConfig] = None,
) -> PortfolioSummary:
    """
    profit_loss = total_claimed + current_claim_value - total_invested

    current_claim_value is what every active policy would pay if claimed at as_of.
    A naive as_of is taken as UTC.
    """
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    policies = store.list_policies(holder)
    claims = store.list_claims(holder)

    active = [p for p in policies if p.is_active]
    current = sum(
        build_claim_quote(p.premium_paid, days_held(p.purchase_timestamp, as_of), cfg=cfg).gross_claim_amount
        for p in active
    )
    invested = sum(p.premium_paid for p in policies)
    claimed = sum(c.claim_amount for c in claims)

    return PortfolioSummary(
        holder=holder.lower(),
        total_invested=invested,
        current_claim_value=current,
        active_policies=len(active),
        total_claimed=claimed,
        profit_loss=claimed + current - invested,
    )


@dataclass(frozen=True)
class GlobalSummary:
    total_policies: int
    active_policies: int
    claimed_policies: int
    expired_policies: int
    total_revenue: int
    total_fees: int
    total_claimed: int
    average_policy_value: int
    top_policy_types: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def global_summary(store: RecordStore, top_n: int = 10) -> GlobalSummary:
    """
    Platform-wide totals. total_revenue is gross premium taken in;
    average_policy_value is floored to whole units.
    """
    policies = store.list_policies()
    purchases = store.list_purchases()
    by_status = Counter(p.status for p in policies)
    revenue = sum(p.gross_amount for p in purchases)

    types = policy_type_breakdown(store).head(top_n)
    top = [
        {"policy_type": r.policy_type, "policies": int(r.policies), "premium": int(r.premium)}
        for r in types.itertuples(index=False)
    ]

    return GlobalSummary(
        total_policies=len(policies),
        active_policies=by_status.get(POLICY_ACTIVE, 0),
        claimed_policies=by_status.get(POLICY_CLAIMED, 0),
        expired_policies=by_status.get(POLICY_EXPIRED, 0),
        total_revenue=revenue,
        total_fees=sum(p.fee for p in purchases),
        total_claimed=sum(c.claim_amount for c in store.list_claims()),
        average_policy_value=revenue // len(purchases) if purchases else 0,
        top_policy_types=top,
    )


def _frame(records: Iterable[Any], columns: list[str], numeric: Iterable[str] = ()) -> pd.DataFrame:
    # object dtype: 18-decimal amounts overflow int64.
    df = pd.DataFrame([asdict(r) for r in records], columns=columns, dtype=object)
    if not df.empty:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        for c in numeric:
            df[c] = pd.to_numeric(df[c])
    return df


def purchases_frame(store: RecordStore, holder: Optional[str] = None) -> pd.DataFrame:
    return _frame(store.list_purchases(holder), PURCHASE_COLUMNS)


def claims_frame(store: RecordStore, holder: Optional[str] = None) -> pd.DataFrame:
    numeric = ("claim_percentage", "days_held", "time_bonus", "total_percentage")
    return _frame(store.list_claims(holder), CLAIM_COLUMNS, numeric=numeric)


def revenue_by_day(
    store: RecordStore,
    cfg: Optional[SettlementConfig] = None,
    since: Optional[datetime] = None,
) -> pd.DataFrame:
    """
    Daily purchase volume and purchase-fee revenue, optionally from `since` on.

    Columns: date, purchases, gross_amount, fee, net, fee_tokens
    """
    cfg = cfg or SettlementConfig()
    df = purchases_frame(store)
    cols = ["date", "purchases", "gross_amount", "fee", "net", "fee_tokens"]
    if since is not None and not df.empty:
        cutoff = pd.Timestamp(since)
        if cutoff.tzinfo is None:
            cutoff = cutoff.tz_localize("UTC")
        df = df[df["timestamp"] >= cutoff].copy()
    if df.empty:
        return pd.DataFrame(columns=cols)

    df["date"] = df["timestamp"].dt.date
    out = (
        df.groupby("date")
        .agg(
            purchases=("policy_id", "count"),
            gross_amount=("gross_amount", lambda s: sum(int(v) for v in s)),
            fee=("fee", lambda s: sum(int(v) for v in s)),
            net=("net", lambda s: sum(int(v) for v in s)),
        )
        .reset_index()
    )
    out["fee_tokens"] = [f / 10 ** cfg.token_decimals for f in out["fee"]]
    return out[cols]


def policy_type_breakdown(store: RecordStore) -> pd.DataFrame:
    """Columns: policy_type, policies, active, claimed, expired, premium"""
    cols = ["policy_type", "policies", "active", "claimed", "expired", "premium"]
    policies = store.list_policies()
    if not policies:
        return pd.DataFrame(columns=cols)

    df = pd.DataFrame(
        [{"policy_type": p.policy_type, "status": p.status, "premium": p.premium_paid} for p in policies],
        dtype=object,
    )
    counts = pd.crosstab(df["policy_type"], df["status"])
    for status in ("active", "claimed", "expired"):
        if status not in counts.columns:
            counts[status] = 0

    premium = df.groupby("policy_type")["premium"].agg(lambda s: sum(int(v) for v in s))
    out = counts[["active", "claimed", "expired"]].copy()
    out["policies"] = out.sum(axis=1)
    out["premium"] = premium
    out = out.reset_index().sort_values("policies", ascending=False, kind="stable")
    return out[cols].reset_index(drop=True)


def claim_curve_table(
    premium_paid: int,
    days: Optional[Iterable[int]] = None,
    cfg: Optional[SettlementConfig] = None,
) -> pd.DataFrame:
    """
    Tabulate the claim curve. Default grid: every day for two years.

    Columns: days_held, claim_pct, bonus_pct, total_pct, claim_amount
    """
    grid = np.arange(0, 731) if days is None else np.asarray(list(days), dtype=np.int64)
    rows = []
    for d in grid:
        q = build_claim_quote(premium_paid, int(d), cfg=cfg)
        rows.append(
            {
                "days_held": q.days_held,
                "claim_pct": q.claim_percentage,
                "bonus_pct": q.time_bonus_percentage,
                "total_pct": q.total_percentage,
                "claim_amount": q.gross_claim_amount,
            }
        )
    return pd.DataFrame(rows, columns=["days_held", "claim_pct", "bonus_pct", "total_pct", "claim_amount"])
