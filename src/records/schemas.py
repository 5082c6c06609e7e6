# src/records/schemas.py
"""
Record shapes written to the settlement store.

Amounts are integer token units. Timestamps are timezone-aware UTC datetimes
in memory and ISO-8601 strings on disk.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional

POLICY_ACTIVE = "active"
POLICY_CLAIMED = "claimed"
POLICY_EXPIRED = "expired"
POLICY_STATUSES = (POLICY_ACTIVE, POLICY_CLAIMED, POLICY_EXPIRED)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


def _parse_ts(v: Any) -> Optional[datetime]:
    if v is None or isinstance(v, datetime):
        return v
    return datetime.fromisoformat(str(v))


class _Record:
    _timestamp_fields = ()

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)  # type: ignore[call-overload]
        for k in self._timestamp_fields:
            out[k] = _iso(out[k])
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]):
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        kwargs = {k: v for k, v in d.items() if k in known}
        for k in cls._timestamp_fields:
            if k in kwargs:
                kwargs[k] = _parse_ts(kwargs[k])
        return cls(**kwargs)


@dataclass(frozen=True)
class Policy(_Record):
    id: int
    holder: str
    premium_paid: int
    purchase_timestamp: datetime
    status: str = POLICY_ACTIVE
    policy_type: str = "standard"
    duration_days: Optional[int] = None
    fee: int = 0
    net: int = 0
    transaction_ref: Optional[str] = None
    claim_amount: Optional[int] = None
    closed_at: Optional[datetime] = None

    _timestamp_fields = ("purchase_timestamp", "closed_at")

    @property
    def is_active(self) -> bool:
        return self.status == POLICY_ACTIVE

    def with_status(self, status: str, *, at: datetime, claim_amount: Optional[int] = None) -> "Policy":
        return replace(self, status=status, closed_at=at, claim_amount=claim_amount)


@dataclass(frozen=True)
class PurchaseRecord(_Record):
    policy_id: int
    holder: str
    gross_amount: int
    fee: int
    net: int
    timestamp: datetime
    transaction_ref: str

    _timestamp_fields = ("timestamp",)


@dataclass(frozen=True)
class ClaimRecord(_Record):
    policy_id: int
    holder: str
    claim_amount: int
    claim_percentage: float
    days_held: int
    time_bonus: float
    total_percentage: float
    timestamp: datetime
    transaction_ref: str
    payout_fee: int = 0
    payout_net: int = 0

    _timestamp_fields = ("timestamp",)


@dataclass(frozen=True)
class ActivityRecord(_Record):
    id: str
    holder: str
    action: str
    description: str
    timestamp: datetime
    amount: Optional[int] = None
    policy_id: Optional[int] = None
    transaction_ref: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    _timestamp_fields = ("timestamp",)
