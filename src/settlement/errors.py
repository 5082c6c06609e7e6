# src/settlement/errors.py
"""
Settlement error taxonomy.

Every error carries a stable `code` so callers (API layer, report CLI) can map
it without string matching. All of them are terminal: the core never retries.
"""

from __future__ import annotations


class SettlementError(Exception):
    code = "settlement_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidAmount(SettlementError):
    code = "invalid_amount"


class InvalidTimestamp(SettlementError):
    code = "invalid_timestamp"


class InsufficientAllowance(SettlementError):
    code = "insufficient_allowance"


class TransferFailed(SettlementError):
    code = "transfer_failed"


class InsufficientBalance(SettlementError):
    code = "insufficient_balance"


class NotOwner(SettlementError):
    code = "not_owner"


class InvalidAddress(SettlementError):
    code = "invalid_address"


class PolicyNotFound(SettlementError):
    code = "policy_not_found"


class PolicyNotActive(SettlementError):
    code = "policy_not_active"


class PolicyNotExpired(SettlementError):
    code = "policy_not_expired"


class EscrowNotEmpty(SettlementError):
    code = "escrow_not_empty"
