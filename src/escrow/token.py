# src/escrow/token.py
"""
Token transfer interface consumed by the escrow, plus an in-memory ERC-20.

Any asset offering transfer / transfer_from / balance_of satisfies the escrow.
Callers pass the acting address explicitly (there is no msg.sender).

InMemoryToken.atomic() gives the all-or-nothing scope a chain provides for
free: balances and allowances are snapshotted on entry and restored if the
block raises.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Tuple

from src.settlement.errors import InsufficientAllowance, InvalidAddress, InvalidAmount, TransferFailed

_log = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddress(f"Address must be a non-empty string, got {address!r}")
    return address.strip().lower()


def is_zero_address(address: str) -> bool:
    return not address or address.strip().lower() in {ZERO_ADDRESS, "0x0", "0x"}


class Token(ABC):
    """Capability set the escrow depends on."""

    symbol: str
    decimals: int

    @abstractmethod
    def balance_of(self, address: str) -> int: ...

    @abstractmethod
    def allowance(self, owner: str, spender: str) -> int: ...

    @abstractmethod
    def approve(self, owner: str, spender: str, amount: int) -> bool: ...

    @abstractmethod
    def transfer(self, sender: str, to: str, amount: int) -> bool: ...

    @abstractmethod
    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool: ...

    @abstractmethod
    def atomic(self): ...

    @abstractmethod
    def export_state(self) -> Dict[str, Any]: ...

    @abstractmethod
    def load_state(self, doc: Dict[str, Any]) -> None: ...


class InMemoryToken(Token):
    """ERC20Mock equivalent: mintable, with allowances."""

    def __init__(self, symbol: str = "SHM", decimals: int = 18) -> None:
        self.symbol = symbol
        self.decimals = decimals
        self.total_supply = 0
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()

    # -----------------------------
    # Views
    # -----------------------------
    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((normalize_address(owner), normalize_address(spender)), 0)

    # -----------------------------
    # Mutators
    # -----------------------------
    def mint(self, to: str, amount: int) -> None:
        _check_amount(amount)
        if is_zero_address(to):
            raise InvalidAddress("Cannot mint to the zero address")
        with self._lock:
            key = normalize_address(to)
            self._balances[key] = self._balances.get(key, 0) + amount
            self.total_supply += amount

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        _check_amount(amount)
        with self._lock:
            self._allowances[(normalize_address(owner), normalize_address(spender))] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        with self._lock:
            self._move(normalize_address(sender), to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        with self._lock:
            key = (normalize_address(owner), normalize_address(spender))
            allowed = self._allowances.get(key, 0)
            if allowed < amount:
                raise InsufficientAllowance(
                    f"Allowance {allowed} of {owner} for {spender} is below {amount}"
                )
            self._move(key[0], to, amount)
            self._allowances[key] = allowed - amount
        return True

    def _move(self, sender: str, to: str, amount: int) -> None:
        _check_amount(amount)
        if is_zero_address(to):
            raise TransferFailed("Transfer to the zero address")
        available = self._balances.get(sender, 0)
        if available < amount:
            raise TransferFailed(f"Balance {available} of {sender} is below {amount}")
        recipient = normalize_address(to)
        self._balances[sender] = available - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount

    # -----------------------------
    # Transactions
    # -----------------------------
    @contextmanager
    def atomic(self) -> Iterator["InMemoryToken"]:
        with self._lock:
            balances = copy.copy(self._balances)
            allowances = copy.copy(self._allowances)
            supply = self.total_supply
            try:
                yield self
            except Exception:
                self._balances = balances
                self._allowances = allowances
                self.total_supply = supply
                _log.debug("Token state rolled back")
                raise

    # -----------------------------
    # Persistence
    # -----------------------------
    def export_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "symbol": self.symbol,
                "decimals": self.decimals,
                "total_supply": self.total_supply,
                "balances": dict(self._balances),
                "allowances": [
                    {"owner": o, "spender": s, "amount": a} for (o, s), a in sorted(self._allowances.items())
                ],
            }

    def load_state(self, doc: Dict[str, Any]) -> None:
        with self._lock:
            self.total_supply = int(doc.get("total_supply", 0))
            self._balances = {k: int(v) for k, v in doc.get("balances", {}).items()}
            self._allowances = {(a["owner"], a["spender"]): int(a["amount"]) for a in doc.get("allowances", [])}


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmount(f"Token amount must be a non-negative integer, got {amount!r}")
