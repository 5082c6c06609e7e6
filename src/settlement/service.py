# src/settlement/service.py
"""
Settlement service: the caller-facing orchestration layer.

Single source of truth for money movement:
- premium -> purchase fee -> escrow custody -> policy + purchase record
- policy + clock -> claim quote (read-only)
- claim quote -> escrow payout -> claim record, policy marked claimed

Every mutating call runs the ledger operation and the record writes in one
unit: ledger.atomic() wraps store.transaction(), so a failure on either side
(including persistence) restores balances, totals and records together. The
escrow state is checkpointed into the store in the same transaction.

Claims always settle at the service clock; only quotes accept an as_of.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Union

from src.escrow.ledger import EscrowLedger, Withdrawn
from src.escrow.token import InMemoryToken, normalize_address
from src.records.schemas import (
    POLICY_CLAIMED,
    POLICY_EXPIRED,
    ActivityRecord,
    ClaimRecord,
    Policy,
    PurchaseRecord,
)
from src.records.store import RecordStore
from src.settlement.claims import ClaimQuote, build_claim_quote, days_held
from src.settlement.config import SettlementConfig
from src.settlement.errors import InvalidAmount, NotOwner, PolicyNotActive, PolicyNotExpired, SettlementError
from src.settlement.fees import FeeBreakdown, purchase_fee, withdraw_fee
from src.settlement.money import format_units

_log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as UTC."""
    if ts is None or ts.tzinfo is not None:
        return ts
    return ts.replace(tzinfo=timezone.utc)


class SettlementService:
    def __init__(
        self,
        ledger: EscrowLedger,
        store: RecordStore,
        *,
        cfg: Optional[SettlementConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.cfg = cfg or ledger.cfg
        self.clock = clock
        self._lock = threading.RLock()

    def resume(self) -> bool:
        """Restore escrow state saved in the store, if any. Returns True when restored."""
        state = self.store.load_escrow_state()
        if state is None:
            return False
        self.ledger.load_state(state)
        return True

    # -----------------------------
    # Quotes (side-effect free)
    # -----------------------------
    def quote_purchase(self, gross_amount: int) -> FeeBreakdown:
        return purchase_fee(gross_amount, self.cfg)

    def quote_withdraw(self, gross_amount: int) -> FeeBreakdown:
        return withdraw_fee(gross_amount, self.cfg)

    def quote_claim(self, policy: Union[Policy, int], as_of: Optional[datetime] = None) -> ClaimQuote:
        if not isinstance(policy, Policy):
            policy = self.store.get_policy(policy)
        as_of = as_utc(as_of) or self.clock()
        return build_claim_quote(
            policy.premium_paid,
            days_held(policy.purchase_timestamp, as_of),
            policy_id=policy.id,
            as_of=as_of,
            cfg=self.cfg,
        )

    # -----------------------------
    # Demo token
    # -----------------------------
    def mint(self, address: str, amount: int) -> int:
        token = self.ledger.token
        if not isinstance(token, InMemoryToken):
            raise SettlementError("Minting is only available for the in-memory token")
        with self._commit():
            token.mint(address, amount)
        return token.balance_of(address)

    def approve_escrow(self, owner: str, amount: int) -> int:
        with self._commit():
            self.ledger.token.approve(owner, self.ledger.address, amount)
        return self.ledger.token.allowance(owner, self.ledger.address)

    # -----------------------------
    # Purchase
    # -----------------------------
    def purchase_policy(
        self,
        holder: str,
        premium: int,
        *,
        policy_type: str = "standard",
        duration_days: Optional[int] = None,
        data: Union[bytes, str, None] = b"",
    ) -> Policy:
        holder = normalize_address(holder)
        if duration_days is not None and duration_days <= 0:
            raise InvalidAmount(f"duration_days must be positive, got {duration_days}")
        with self._commit():
            policy_id = self.store.next_policy_id()
            event = self.ledger.purchase(holder, policy_id, premium, data)
            now = self.clock()

            policy = self.store.create_policy(
                Policy(
                    id=policy_id,
                    holder=holder,
                    premium_paid=premium,
                    purchase_timestamp=now,
                    policy_type=policy_type,
                    duration_days=duration_days,
                    fee=event.fee,
                    net=event.net,
                    transaction_ref=event.transaction_ref,
                )
            )
            self.store.add_purchase(
                PurchaseRecord(
                    policy_id=policy_id,
                    holder=holder,
                    gross_amount=premium,
                    fee=event.fee,
                    net=event.net,
                    timestamp=now,
                    transaction_ref=event.transaction_ref,
                )
            )
            self._activity(
                holder,
                "policy_purchase",
                f"Purchased {policy_type} policy for {self._fmt(premium)} {self.cfg.token_symbol}",
                amount=premium,
                policy_id=policy_id,
                transaction_ref=event.transaction_ref,
                at=now,
            )
        return policy

    # -----------------------------
    # Claim
    # -----------------------------
    def claim(self, policy_id: int) -> ClaimRecord:
        """
        Pay out the claim as of now from escrow to the policy holder.

        Raises PolicyNotActive for claimed/expired policies and
        InsufficientBalance when the escrow cannot cover the payout.
        """
        with self._commit():
            policy = self.store.get_policy(policy_id)
            if not policy.is_active:
                raise PolicyNotActive(f"Policy {policy_id} is {policy.status}")

            quote = self.quote_claim(policy)
            if quote.gross_claim_amount <= 0:
                raise InvalidAmount(f"Policy {policy_id} has nothing to claim")

            payout: Withdrawn = self.ledger.withdraw(self.ledger.owner, quote.gross_claim_amount, policy.holder)
            now = quote.as_of

            self.store.update_policy(policy.with_status(POLICY_CLAIMED, at=now, claim_amount=quote.gross_claim_amount))
            record = self.store.add_claim(
                ClaimRecord(
                    policy_id=policy.id,
                    holder=policy.holder,
                    claim_amount=quote.gross_claim_amount,
                    claim_percentage=quote.claim_percentage,
                    days_held=quote.days_held,
                    time_bonus=quote.time_bonus_percentage,
                    total_percentage=quote.total_percentage,
                    timestamp=now,
                    transaction_ref=payout.transaction_ref,
                    payout_fee=payout.fee,
                    payout_net=payout.net,
                )
            )
            self._activity(
                policy.holder,
                "claim_processed",
                f"Claimed {self._fmt(quote.gross_claim_amount)} {self.cfg.token_symbol} "
                f"({quote.claim_percentage:g}% + {quote.time_bonus_percentage:g}% time bonus, "
                f"{quote.total_percentage:g}% paid)",
                amount=quote.gross_claim_amount,
                policy_id=policy.id,
                transaction_ref=payout.transaction_ref,
                at=now,
            )

        _log.info("Policy %s claimed after %s days: %s", policy_id, quote.days_held, quote.gross_claim_amount)
        return record

    # -----------------------------
    # Expiry
    # -----------------------------
    def expire_policy(self, caller: str, policy_id: int) -> Policy:
        """
        Owner-only. A policy with a duration can only be expired once that
        duration has elapsed; open-ended policies expire at the owner's call.
        """
        if not caller or normalize_address(caller) != self.ledger.owner:
            raise NotOwner(f"{caller} is not the escrow owner")
        now = self.clock()
        with self._commit():
            policy = self.store.get_policy(policy_id)
            if not policy.is_active:
                raise PolicyNotActive(f"Policy {policy_id} is {policy.status}")
            ends = self._ends_at(policy)
            if ends is not None and now < ends:
                raise PolicyNotExpired(f"Policy {policy_id} runs until {ends.isoformat()}")
            return self._expire(policy, now)

    def expire_due(self, as_of: Optional[datetime] = None) -> List[Policy]:
        """Expire every active policy whose duration has elapsed."""
        now = as_utc(as_of) or self.clock()
        expired: List[Policy] = []
        with self._commit():
            for policy in self.store.list_policies():
                ends = self._ends_at(policy)
                if policy.is_active and ends is not None and now >= ends:
                    expired.append(self._expire(policy, now))
        if expired:
            _log.info("Expired %d policies", len(expired))
        return expired

    def _expire(self, policy: Policy, now: datetime) -> Policy:
        expired = self.store.update_policy(policy.with_status(POLICY_EXPIRED, at=now))
        self._activity(
            policy.holder,
            "policy_expired",
            f"Policy {policy.id} expired",
            policy_id=policy.id,
            at=now,
        )
        return expired

    @staticmethod
    def _ends_at(policy: Policy) -> Optional[datetime]:
        if policy.duration_days is None:
            return None
        return policy.purchase_timestamp + timedelta(days=policy.duration_days)

    # -----------------------------
    # Escrow withdrawal
    # -----------------------------
    def withdraw(self, caller: str, amount: int, recipient: str) -> Withdrawn:
        with self._commit():
            event = self.ledger.withdraw(caller, amount, recipient)
            self._activity(
                event.recipient,
                "escrow_withdrawal",
                f"Withdrew {self._fmt(event.amount)} {self.cfg.token_symbol} from escrow",
                amount=event.amount,
                transaction_ref=event.transaction_ref,
                at=self.clock(),
            )
        return event

    # -----------------------------
    # Helpers
    # -----------------------------
    @contextmanager
    def _commit(self) -> Iterator[None]:
        """Ledger and store commit together; the escrow checkpoint rides along."""
        with self._lock, self.ledger.atomic(), self.store.transaction():
            yield
            self.store.save_escrow_state(self.ledger.export_state())

    def _fmt(self, units: int) -> str:
        return format_units(units, self.cfg.token_decimals)

    def _activity(
        self,
        holder: str,
        action: str,
        description: str,
        *,
        at: datetime,
        amount: Optional[int] = None,
        policy_id: Optional[int] = None,
        transaction_ref: Optional[str] = None,
    ) -> ActivityRecord:
        return self.store.log_activity(
            ActivityRecord(
                id=RecordStore.new_activity_id(),
                holder=holder,
                action=action,
                description=description,
                timestamp=at,
                amount=amount,
                policy_id=policy_id,
                transaction_ref=transaction_ref,
            )
        )
