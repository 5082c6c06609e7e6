"""In-memory ERC-20: allowances, failures and the atomic scope."""

import pytest

from src.escrow.token import ZERO_ADDRESS, InMemoryToken
from src.settlement.errors import InsufficientAllowance, InvalidAddress, TransferFailed

from conftest import BUYER, ESCROW, OWNER, RECIPIENT, tokens


def test_mint_and_balance_are_case_insensitive():
    t = InMemoryToken()
    t.mint(BUYER.upper().replace("0X", "0x"), 100)
    assert t.balance_of(BUYER) == 100
    assert t.total_supply == 100


def test_transfer_moves_balance(token):
    token.transfer(BUYER, RECIPIENT, tokens("1"))
    assert token.balance_of(RECIPIENT) == tokens("1")
    assert token.balance_of(BUYER) == tokens("999")


def test_transfer_overdraw_fails(token):
    with pytest.raises(TransferFailed):
        token.transfer(RECIPIENT, BUYER, 1)


def test_transfer_to_zero_address_fails(token):
    with pytest.raises(TransferFailed):
        token.transfer(BUYER, ZERO_ADDRESS, 1)


def test_transfer_from_consumes_allowance(token):
    token.approve(BUYER, ESCROW, 10)
    token.transfer_from(ESCROW, BUYER, OWNER, 4)
    assert token.allowance(BUYER, ESCROW) == 6
    assert token.balance_of(OWNER) == 4


def test_transfer_from_without_allowance_fails(token):
    with pytest.raises(InsufficientAllowance):
        token.transfer_from(ESCROW, BUYER, OWNER, 1)


def test_atomic_rolls_back_on_error(token):
    token.approve(BUYER, ESCROW, 10)
    with pytest.raises(TransferFailed):
        with token.atomic():
            token.transfer_from(ESCROW, BUYER, OWNER, 5)
            token.transfer(RECIPIENT, OWNER, 1)
    assert token.balance_of(OWNER) == 0
    assert token.allowance(BUYER, ESCROW) == 10
    assert token.balance_of(BUYER) == tokens("1000")


def test_mint_to_zero_address_rejected():
    with pytest.raises(InvalidAddress):
        InMemoryToken().mint(ZERO_ADDRESS, 1)
