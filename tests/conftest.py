"""Shared fixtures: token, escrow, record store and a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from src.escrow.ledger import EscrowLedger
from src.escrow.token import InMemoryToken
from src.records.store import InMemoryRecordStore
from src.settlement.money import to_units
from src.settlement.service import SettlementService

OWNER = "0x" + "0a" * 20
BUYER = "0x" + "b0" * 20
RECIPIENT = "0x" + "c0" * 20
ESCROW = "0x" + "e5" * 20

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def tokens(value):
    return to_units(value)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, days=0, seconds=0):
        self.now = self.now + timedelta(days=days, seconds=seconds)


@pytest.fixture
def token():
    t = InMemoryToken()
    t.mint(BUYER, tokens("1000"))
    return t


@pytest.fixture
def ledger(token):
    # Owner doubles as company wallet.
    return EscrowLedger(token, OWNER, OWNER, address=ESCROW)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(ledger, store, clock):
    return SettlementService(ledger, store, clock=clock)
