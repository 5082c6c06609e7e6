# src/api/app.py
"""
FastAPI service for the policy settlement engine (thin API wrapper).

Endpoints:
- GET  /health
- POST /fees/purchase, /fees/withdraw     -> fee breakdown for a gross amount
- POST /token/faucet, /token/approve      -> demo token funding / escrow allowance
- POST /policies                          -> purchase a policy
- GET  /policies/{id}, /policies/user/{address}
- GET  /policies/{id}/quote               -> claim preview (no side effects)
- POST /policies/{id}/claim              -> settles at the server clock
- POST /policies/{id}/expire             -> owner-only, once the duration has elapsed
- GET  /escrow, POST /escrow/withdraw
- GET  /activities, /activities/{address}
- GET  /portfolio/{address}
- GET  /analytics/global, /analytics/revenue, /analytics/policy-types

The API layer stays thin:
- validates input, converts decimal strings <-> integer units
- calls src.settlement.service
Amounts are exchanged as exact decimal strings ("9.8").
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.analytics.report import global_summary, policy_type_breakdown, portfolio_summary, revenue_by_day
from src.escrow.ledger import EscrowLedger
from src.escrow.token import InMemoryToken
from src.records.schemas import ActivityRecord, ClaimRecord, Policy
from src.records.store import InMemoryRecordStore, JsonFileRecordStore, RecordStore
from src.settlement.claims import ClaimQuote
from src.settlement.config import get_settlement_config
from src.settlement.errors import SettlementError
from src.settlement.fees import FeeBreakdown
from src.settlement.money import format_units, to_units
from src.settlement.service import Clock, SettlementService, as_utc, utc_now
from src.utils.config import get_escrow_config, get_log_level

logging.basicConfig(level=get_log_level(), stream=sys.stderr)
_log = logging.getLogger(__name__)

app = FastAPI(title="Policy Settlement Engine", version="0.1.0")


# In-process cache (FastAPI startup + AWS Lambda warm invocations)
_SERVICE: Optional[SettlementService] = None


def build_service(store: Optional[RecordStore] = None, clock: Clock = utc_now) -> SettlementService:
    cfg = get_settlement_config()
    esc = get_escrow_config()
    if store is None:
        store = JsonFileRecordStore(esc.record_store_path) if esc.persistent else InMemoryRecordStore()
    token = InMemoryToken(symbol=cfg.token_symbol, decimals=cfg.token_decimals)
    ledger = EscrowLedger(token, esc.owner, esc.company_wallet, address=esc.escrow_address, cfg=cfg)
    svc = SettlementService(ledger, store, cfg=cfg, clock=clock)
    if svc.resume():
        _log.info("Resumed escrow %s from saved state", ledger.address)
    return svc


def get_service(force_reload: bool = False) -> SettlementService:
    global _SERVICE
    if force_reload or _SERVICE is None:
        _SERVICE = build_service()
    return _SERVICE


@app.on_event("startup")
def _startup() -> None:
    svc = get_service()
    _log.info("Escrow %s ready (owner %s)", svc.ledger.address, svc.ledger.owner)


_STATUS_BY_CODE = {
    "not_owner": 403,
    "policy_not_found": 404,
    "policy_not_active": 409,
    "insufficient_balance": 409,
    "policy_not_expired": 409,
    "escrow_not_empty": 409,
}


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    status = _STATUS_BY_CODE.get(exc.code, 400)
    _log.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.code, "detail": exc.message})


# -----------------------------
# Schemas
# -----------------------------
class AmountRequest(BaseModel):
    amount: str


class FeeResponse(BaseModel):
    gross_amount: str
    fee_amount: str
    net_amount: str
    fee_bps: int


class FaucetRequest(BaseModel):
    address: str
    amount: str


class ApproveRequest(BaseModel):
    owner: str
    amount: str


class PurchaseRequest(BaseModel):
    holder: str
    premium: str
    policy_type: str = "standard"
    duration_days: Optional[int] = Field(default=None, gt=0)
    data: str = "0x"


class PolicyResponse(BaseModel):
    id: int
    holder: str
    premium_paid: str
    fee: str
    net: str
    policy_type: str
    duration_days: Optional[int] = None
    status: str
    purchase_timestamp: datetime
    transaction_ref: Optional[str] = None
    claim_amount: Optional[str] = None
    closed_at: Optional[datetime] = None


class QuoteResponse(BaseModel):
    policy_id: Optional[int] = None
    premium_paid: str
    days_held: int
    claim_percentage: float
    time_bonus_percentage: float
    total_percentage: float
    gross_claim_amount: str
    as_of: Optional[datetime] = None


class ExpireRequest(BaseModel):
    caller: str


class ClaimResponse(BaseModel):
    policy_id: int
    holder: str
    claim_amount: str
    claim_percentage: float
    days_held: int
    time_bonus: float
    total_percentage: float
    payout_fee: str
    payout_net: str
    timestamp: datetime
    transaction_ref: str


class WithdrawRequest(BaseModel):
    caller: str
    amount: str
    recipient: str


class WithdrawResponse(BaseModel):
    recipient: str
    amount: str
    net: str
    fee: str
    transaction_ref: str


class EscrowResponse(BaseModel):
    address: str
    owner: str
    company_wallet: str
    token: str
    held_balance: str
    total_net_in: str
    total_withdrawn: str
    reconciled: bool


class ActivityResponse(BaseModel):
    id: str
    holder: str
    action: str
    description: str
    timestamp: datetime
    amount: Optional[str] = None
    policy_id: Optional[int] = None
    transaction_ref: Optional[str] = None


class PortfolioResponse(BaseModel):
    holder: str
    total_invested: str
    current_claim_value: str
    active_policies: int
    total_claimed: str
    profit_loss: str


class PolicyTypeRow(BaseModel):
    policy_type: str
    policies: int
    active: int = 0
    claimed: int = 0
    expired: int = 0
    premium: str


class GlobalAnalyticsResponse(BaseModel):
    total_policies: int
    active_policies: int
    claimed_policies: int
    expired_policies: int
    total_revenue: str
    total_fees: str
    total_claimed: str
    average_policy_value: str
    top_policy_types: List[PolicyTypeRow]


class RevenueRow(BaseModel):
    date: str
    purchases: int
    gross_amount: str
    fee: str
    net: str


# -----------------------------
# Converters
# -----------------------------
def _units(svc: SettlementService, value: str) -> int:
    return to_units(value, svc.cfg.token_decimals)


def _fmt(svc: SettlementService, units: Optional[int]) -> Optional[str]:
    if units is None:
        return None
    sign = "-" if units < 0 else ""
    return sign + format_units(abs(units), svc.cfg.token_decimals)


def _fee_out(svc: SettlementService, b: FeeBreakdown) -> FeeResponse:
    return FeeResponse(
        gross_amount=_fmt(svc, b.gross_amount),
        fee_amount=_fmt(svc, b.fee_amount),
        net_amount=_fmt(svc, b.net_amount),
        fee_bps=b.fee_bps,
    )


def _policy_out(svc: SettlementService, p: Policy) -> PolicyResponse:
    return PolicyResponse(
        id=p.id,
        holder=p.holder,
        premium_paid=_fmt(svc, p.premium_paid),
        fee=_fmt(svc, p.fee),
        net=_fmt(svc, p.net),
        policy_type=p.policy_type,
        duration_days=p.duration_days,
        status=p.status,
        purchase_timestamp=p.purchase_timestamp,
        transaction_ref=p.transaction_ref,
        claim_amount=_fmt(svc, p.claim_amount),
        closed_at=p.closed_at,
    )


def _quote_out(svc: SettlementService, q: ClaimQuote) -> QuoteResponse:
    return QuoteResponse(
        policy_id=q.policy_id,
        premium_paid=_fmt(svc, q.premium_paid),
        days_held=q.days_held,
        claim_percentage=q.claim_percentage,
        time_bonus_percentage=q.time_bonus_percentage,
        total_percentage=q.total_percentage,
        gross_claim_amount=_fmt(svc, q.gross_claim_amount),
        as_of=q.as_of,
    )


def _claim_out(svc: SettlementService, c: ClaimRecord) -> ClaimResponse:
    return ClaimResponse(
        policy_id=c.policy_id,
        holder=c.holder,
        claim_amount=_fmt(svc, c.claim_amount),
        claim_percentage=c.claim_percentage,
        days_held=c.days_held,
        time_bonus=c.time_bonus,
        total_percentage=c.total_percentage,
        payout_fee=_fmt(svc, c.payout_fee),
        payout_net=_fmt(svc, c.payout_net),
        timestamp=c.timestamp,
        transaction_ref=c.transaction_ref,
    )


def _activity_out(svc: SettlementService, a: ActivityRecord) -> ActivityResponse:
    return ActivityResponse(
        id=a.id,
        holder=a.holder,
        action=a.action,
        description=a.description,
        timestamp=a.timestamp,
        amount=_fmt(svc, a.amount),
        policy_id=a.policy_id,
        transaction_ref=a.transaction_ref,
    )


# -----------------------------
# Routes
# -----------------------------
@app.get("/health")
def health() -> Dict[str, Any]:
    svc = get_service()
    return {"status": "ok", "escrow": svc.ledger.address, "token": svc.cfg.token_symbol}


@app.post("/fees/purchase", response_model=FeeResponse)
def fees_purchase(req: AmountRequest) -> FeeResponse:
    svc = get_service()
    return _fee_out(svc, svc.quote_purchase(_units(svc, req.amount)))


@app.post("/fees/withdraw", response_model=FeeResponse)
def fees_withdraw(req: AmountRequest) -> FeeResponse:
    svc = get_service()
    return _fee_out(svc, svc.quote_withdraw(_units(svc, req.amount)))


@app.post("/token/faucet")
def token_faucet(req: FaucetRequest) -> Dict[str, str]:
    svc = get_service()
    balance = svc.mint(req.address, _units(svc, req.amount))
    return {"address": req.address.lower(), "balance": _fmt(svc, balance)}


@app.post("/token/approve")
def token_approve(req: ApproveRequest) -> Dict[str, str]:
    svc = get_service()
    allowance = svc.approve_escrow(req.owner, _units(svc, req.amount))
    return {"owner": req.owner.lower(), "spender": svc.ledger.address, "allowance": _fmt(svc, allowance)}


@app.post("/policies", response_model=PolicyResponse)
def purchase_policy(req: PurchaseRequest) -> PolicyResponse:
    svc = get_service()
    policy = svc.purchase_policy(
        req.holder,
        _units(svc, req.premium),
        policy_type=req.policy_type,
        duration_days=req.duration_days,
        data=req.data,
    )
    return _policy_out(svc, policy)


@app.get("/policies/user/{address}", response_model=List[PolicyResponse])
def user_policies(address: str) -> List[PolicyResponse]:
    svc = get_service()
    return [_policy_out(svc, p) for p in svc.store.list_policies(address)]


@app.get("/policies/{policy_id}", response_model=PolicyResponse)
def get_policy(policy_id: int) -> PolicyResponse:
    svc = get_service()
    return _policy_out(svc, svc.store.get_policy(policy_id))


@app.get("/policies/{policy_id}/quote", response_model=QuoteResponse)
def quote_claim(policy_id: int, as_of: Optional[datetime] = None) -> QuoteResponse:
    svc = get_service()
    return _quote_out(svc, svc.quote_claim(policy_id, as_of=as_of))


@app.post("/policies/{policy_id}/claim", response_model=ClaimResponse)
def claim_policy(policy_id: int) -> ClaimResponse:
    svc = get_service()
    return _claim_out(svc, svc.claim(policy_id))


@app.post("/policies/{policy_id}/expire", response_model=PolicyResponse)
def expire_policy(policy_id: int, req: ExpireRequest) -> PolicyResponse:
    svc = get_service()
    return _policy_out(svc, svc.expire_policy(req.caller, policy_id))


@app.get("/escrow", response_model=EscrowResponse)
def escrow_state() -> EscrowResponse:
    svc = get_service()
    ledger = svc.ledger
    return EscrowResponse(
        address=ledger.address,
        owner=ledger.owner,
        company_wallet=ledger.company_wallet,
        token=ledger.token.symbol,
        held_balance=_fmt(svc, ledger.held_balance()),
        total_net_in=_fmt(svc, ledger.total_net_in),
        total_withdrawn=_fmt(svc, ledger.total_withdrawn),
        reconciled=ledger.reconcile(),
    )


@app.post("/escrow/withdraw", response_model=WithdrawResponse)
def escrow_withdraw(req: WithdrawRequest) -> WithdrawResponse:
    svc = get_service()
    event = svc.withdraw(req.caller, _units(svc, req.amount), req.recipient)
    return WithdrawResponse(
        recipient=event.recipient,
        amount=_fmt(svc, event.amount),
        net=_fmt(svc, event.net),
        fee=_fmt(svc, event.fee),
        transaction_ref=event.transaction_ref,
    )


@app.get("/activities", response_model=List[ActivityResponse])
def global_activities(limit: int = 100) -> List[ActivityResponse]:
    svc = get_service()
    return [_activity_out(svc, a) for a in svc.store.list_activities(limit=limit)]


@app.get("/activities/{address}", response_model=List[ActivityResponse])
def user_activities(address: str, limit: int = 50) -> List[ActivityResponse]:
    svc = get_service()
    return [_activity_out(svc, a) for a in svc.store.list_activities(address, limit=limit)]


@app.get("/portfolio/{address}", response_model=PortfolioResponse)
def portfolio(address: str, as_of: Optional[datetime] = None) -> PortfolioResponse:
    svc = get_service()
    s = portfolio_summary(svc.store, address, as_utc(as_of) or svc.clock(), cfg=svc.cfg)
    return PortfolioResponse(
        holder=s.holder,
        total_invested=_fmt(svc, s.total_invested),
        current_claim_value=_fmt(svc, s.current_claim_value),
        active_policies=s.active_policies,
        total_claimed=_fmt(svc, s.total_claimed),
        profit_loss=_fmt(svc, s.profit_loss),
    )


# -----------------------------
# Analytics
# -----------------------------
_TIMEFRAMES = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}


@app.get("/analytics/global", response_model=GlobalAnalyticsResponse)
def analytics_global() -> GlobalAnalyticsResponse:
    svc = get_service()
    g = global_summary(svc.store)
    return GlobalAnalyticsResponse(
        total_policies=g.total_policies,
        active_policies=g.active_policies,
        claimed_policies=g.claimed_policies,
        expired_policies=g.expired_policies,
        total_revenue=_fmt(svc, g.total_revenue),
        total_fees=_fmt(svc, g.total_fees),
        total_claimed=_fmt(svc, g.total_claimed),
        average_policy_value=_fmt(svc, g.average_policy_value),
        top_policy_types=[
            PolicyTypeRow(policy_type=t["policy_type"], policies=t["policies"], premium=_fmt(svc, t["premium"]))
            for t in g.top_policy_types
        ],
    )


@app.get("/analytics/revenue", response_model=List[RevenueRow])
def analytics_revenue(
    timeframe: str = Query("month", pattern="^(day|week|month|year|all)$"),
) -> List[RevenueRow]:
    svc = get_service()
    window = _TIMEFRAMES[timeframe]
    since = svc.clock() - window if window is not None else None
    df = revenue_by_day(svc.store, cfg=svc.cfg, since=since)
    return [
        RevenueRow(
            date=r.date.isoformat(),
            purchases=int(r.purchases),
            gross_amount=_fmt(svc, int(r.gross_amount)),
            fee=_fmt(svc, int(r.fee)),
            net=_fmt(svc, int(r.net)),
        )
        for r in df.itertuples(index=False)
    ]


@app.get("/analytics/policy-types", response_model=List[PolicyTypeRow])
def analytics_policy_types() -> List[PolicyTypeRow]:
    svc = get_service()
    df = policy_type_breakdown(svc.store)
    return [
        PolicyTypeRow(
            policy_type=r.policy_type,
            policies=int(r.policies),
            active=int(r.active),
            claimed=int(r.claimed),
            expired=int(r.expired),
            premium=_fmt(svc, int(r.premium)),
        )
        for r in df.itertuples(index=False)
    ]
