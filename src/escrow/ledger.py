# src/escrow/ledger.py
"""
Escrow ledger: holds net premiums and pays out withdrawals for the policy manager.

State:
- owner, company_wallet, token (configuration, owner-gated)
- held balance = token.balance_of(address)

Operations:
- purchase: pull fee -> company wallet and net -> escrow from the buyer
- withdraw: owner pays net -> recipient and fee -> company wallet out of escrow

Every mutating call runs inside EscrowLedger.atomic(): the ledger lock plus
the token snapshot. Balances, running totals and the event log either all
commit or are all restored.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, List, Optional, Union

from src.escrow.token import Token, is_zero_address, normalize_address
from src.settlement.config import SettlementConfig
from src.settlement.errors import EscrowNotEmpty, InsufficientBalance, InvalidAddress, InvalidAmount, NotOwner
from src.settlement.fees import FeeBreakdown, purchase_fee, withdraw_fee

_log = logging.getLogger(__name__)

DEFAULT_ESCROW_ADDRESS = "0x" + "e5c0" * 10


@dataclass(frozen=True)
class PolicyPurchased:
    seq: int
    buyer: str
    policy_id: int
    gross_amount: int
    fee: int
    net: int
    data: str
    transaction_ref: str

    def to_dict(self) -> Dict[str, Any]:
        return {"event": "PolicyPurchased", **asdict(self)}


@dataclass(frozen=True)
class Withdrawn:
    seq: int
    recipient: str
    amount: int
    net: int
    fee: int
    transaction_ref: str

    def to_dict(self) -> Dict[str, Any]:
        return {"event": "Withdrawn", **asdict(self)}


LedgerEvent = Union[PolicyPurchased, Withdrawn]


def _tx_ref(seq: int, kind: str, payload: Dict[str, Any]) -> str:
    blob = json.dumps({"seq": seq, "kind": kind, **payload}, sort_keys=True, default=str)
    return "0x" + hashlib.sha256(blob.encode("utf-8")).hexdigest()


def _data_hex(data: Union[bytes, bytearray, str, None]) -> str:
    if data is None:
        return "0x"
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    if not isinstance(data, str):
        raise TypeError(f"Purchase data must be bytes or str, got {type(data).__name__}")
    return data if data.startswith("0x") else "0x" + data.encode("utf-8").hex()


class EscrowLedger:
    def __init__(
        self,
        token: Token,
        owner: str,
        company_wallet: Optional[str] = None,
        *,
        address: str = DEFAULT_ESCROW_ADDRESS,
        cfg: Optional[SettlementConfig] = None,
    ) -> None:
        if is_zero_address(owner):
            raise InvalidAddress("Owner cannot be the zero address")
        self.cfg = cfg or SettlementConfig()
        self.address = normalize_address(address)
        self.owner = normalize_address(owner)
        self.company_wallet = normalize_address(company_wallet or owner)
        self.token = token

        self.total_net_in = 0
        self.total_withdrawn = 0

        self._events: List[LedgerEvent] = []
        self._seq = 0
        self._lock = threading.RLock()

    # -----------------------------
    # Views
    # -----------------------------
    def held_balance(self) -> int:
        return self.token.balance_of(self.address)

    @property
    def events(self) -> List[LedgerEvent]:
        return list(self._events)

    def reconcile(self) -> bool:
        """held balance == sum(net purchased) - sum(amount withdrawn)"""
        with self._lock:
            expected = self.total_net_in - self.total_withdrawn
            actual = self.held_balance()
        if actual != expected:
            _log.warning("Escrow out of balance: held=%s expected=%s", actual, expected)
        return actual == expected

    # -----------------------------
    # Transactions
    # -----------------------------
    @contextmanager
    def atomic(self) -> Iterator["EscrowLedger"]:
        """
        Token transfers, running totals and the event log commit together.
        Callers may nest their own writes (e.g. record store) inside.
        """
        with self._lock:
            totals = (self.total_net_in, self.total_withdrawn, self._seq, len(self._events))
            with self.token.atomic():
                try:
                    yield self
                except Exception:
                    self.total_net_in, self.total_withdrawn, self._seq, n_events = totals
                    del self._events[n_events:]
                    raise

    # -----------------------------
    # Policy flows
    # -----------------------------
    def purchase(
        self,
        buyer: str,
        policy_id: int,
        gross_amount: int,
        data: Union[bytes, str, None] = b"",
    ) -> PolicyPurchased:
        buyer = normalize_address(buyer)
        breakdown = purchase_fee(gross_amount, self.cfg)
        data_hex = _data_hex(data)

        with self.atomic():
            self.token.transfer_from(self.address, buyer, self.company_wallet, breakdown.fee_amount)
            self.token.transfer_from(self.address, buyer, self.address, breakdown.net_amount)

            self.total_net_in += breakdown.net_amount
            seq = self._next_seq()
            payload = {
                "buyer": buyer,
                "policy_id": policy_id,
                "gross_amount": gross_amount,
                "fee": breakdown.fee_amount,
                "net": breakdown.net_amount,
                "data": data_hex,
            }
            event = PolicyPurchased(seq=seq, transaction_ref=_tx_ref(seq, "purchase", payload), **payload)
            self._emit(event)

        _log.info(
            "Policy %s purchased by %s: gross=%s fee=%s net=%s",
            policy_id, buyer, gross_amount, breakdown.fee_amount, breakdown.net_amount,
        )
        return event

    def withdraw(self, caller: str, amount: int, recipient: str) -> Withdrawn:
        with self._lock:
            self._only_owner(caller)
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidAmount(f"Withdrawal amount must be positive, got {amount!r}")
            held = self.held_balance()
            if amount > held:
                raise InsufficientBalance(f"Requested {amount} exceeds held balance {held}")

            breakdown: FeeBreakdown = withdraw_fee(amount, self.cfg)
            recipient = normalize_address(recipient)

            with self.atomic():
                if breakdown.fee_amount > 0:
                    self.token.transfer(self.address, self.company_wallet, breakdown.fee_amount)
                self.token.transfer(self.address, recipient, breakdown.net_amount)

                self.total_withdrawn += amount
                seq = self._next_seq()
                payload = {
                    "recipient": recipient,
                    "amount": amount,
                    "net": breakdown.net_amount,
                    "fee": breakdown.fee_amount,
                }
                event = Withdrawn(seq=seq, transaction_ref=_tx_ref(seq, "withdraw", payload), **payload)
                self._emit(event)

        _log.info(
            "Withdrew %s to %s: net=%s fee=%s", amount, recipient, breakdown.net_amount, breakdown.fee_amount
        )
        return event

    # -----------------------------
    # Owner configuration
    # -----------------------------
    def set_token(self, caller: str, token: Token) -> None:
        """Swap the escrowed asset. Refused while the current token balance is non-zero."""
        with self._lock:
            self._only_owner(caller)
            held = self.held_balance()
            if held:
                raise EscrowNotEmpty(f"Escrow still holds {held} of the current token")
            self.token = token
            self.total_net_in = 0
            self.total_withdrawn = 0
        _log.info("Escrow token set to %s", getattr(token, "symbol", token))

    def set_company_wallet(self, caller: str, wallet: str) -> None:
        with self._lock:
            self._only_owner(caller)
            self.company_wallet = normalize_address(wallet)
        _log.info("Company wallet set to %s", self.company_wallet)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._lock:
            self._only_owner(caller)
            if new_owner is None or is_zero_address(new_owner):
                raise InvalidAddress("New owner cannot be the zero address")
            previous, self.owner = self.owner, normalize_address(new_owner)
        _log.info("Escrow ownership transferred %s -> %s", previous, self.owner)

    # -----------------------------
    # Persistence
    # -----------------------------
    def export_state(self) -> Dict[str, Any]:
        """Snapshot of everything needed to resume the escrow after a restart."""
        with self._lock:
            return {
                "address": self.address,
                "owner": self.owner,
                "company_wallet": self.company_wallet,
                "total_net_in": self.total_net_in,
                "total_withdrawn": self.total_withdrawn,
                "seq": self._seq,
                "token": self.token.export_state(),
            }

    def load_state(self, doc: Dict[str, Any]) -> None:
        with self._lock:
            if normalize_address(doc["address"]) != self.address:
                raise InvalidAddress(f"Saved escrow {doc['address']} does not match {self.address}")
            self.owner = normalize_address(doc["owner"])
            self.company_wallet = normalize_address(doc["company_wallet"])
            self.total_net_in = int(doc["total_net_in"])
            self.total_withdrawn = int(doc["total_withdrawn"])
            self._seq = int(doc.get("seq", 0))
            self.token.load_state(doc["token"])
        _log.info("Escrow %s restored: held=%s", self.address, self.held_balance())

    # -----------------------------
    # Internals
    # -----------------------------
    def _only_owner(self, caller: str) -> None:
        if not caller or normalize_address(caller) != self.owner:
            raise NotOwner(f"{caller} is not the escrow owner")

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _emit(self, event: LedgerEvent) -> None:
        self._events.append(event)
