"""HTTP surface over the settlement service."""

import pytest
from fastapi.testclient import TestClient

import src.api.app as api
from src.records.store import InMemoryRecordStore

from conftest import BUYER, OWNER, RECIPIENT


@pytest.fixture
def client(monkeypatch, clock):
    monkeypatch.setenv("ESCROW_OWNER", OWNER)
    monkeypatch.delenv("COMPANY_WALLET", raising=False)
    monkeypatch.delenv("RECORD_STORE_PATH", raising=False)
    monkeypatch.setattr(api, "_SERVICE", api.build_service(InMemoryRecordStore(), clock=clock))
    return TestClient(api.app)


def _fund_and_buy(client, premium="10", **extra):
    client.post("/token/faucet", json={"address": BUYER, "amount": "100"})
    client.post("/token/approve", json={"owner": BUYER, "amount": "100"})
    r = client.post("/policies", json={"holder": BUYER, "premium": premium, **extra})
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_fee_quotes(client):
    assert client.post("/fees/purchase", json={"amount": "10"}).json() == {
        "gross_amount": "10",
        "fee_amount": "0.2",
        "net_amount": "9.8",
        "fee_bps": 200,
    }
    assert client.post("/fees/withdraw", json={"amount": "9.8"}).json()["fee_amount"] == "0.049"


@pytest.mark.parametrize("amount", ["0", "-1", "abc"])
def test_fee_quote_rejects_bad_amount(client, amount):
    r = client.post("/fees/purchase", json={"amount": amount})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_amount"


def test_purchase_quote_claim_flow(client, clock):
    policy = _fund_and_buy(client, policy_type="travel")
    assert policy["fee"] == "0.2"
    assert policy["net"] == "9.8"

    assert client.get("/escrow").json()["held_balance"] == "9.8"

    clock.advance(days=7)
    quote = client.get(f"/policies/{policy['id']}/quote").json()
    assert quote["days_held"] == 7
    assert quote["gross_claim_amount"] == "0.85"

    claim = client.post(f"/policies/{policy['id']}/claim")
    assert claim.status_code == 200, claim.text
    assert claim.json()["payout_net"] == "0.84575"

    again = client.post(f"/policies/{policy['id']}/claim")
    assert again.status_code == 409
    assert again.json()["error"] == "policy_not_active"

    mine = client.get(f"/policies/user/{BUYER}").json()
    assert [p["status"] for p in mine] == ["claimed"]

    feed = client.get(f"/activities/{BUYER}").json()
    assert [a["action"] for a in feed] == ["claim_processed", "policy_purchase"]


def test_purchase_without_allowance(client):
    client.post("/token/faucet", json={"address": BUYER, "amount": "100"})
    r = client.post("/policies", json={"holder": BUYER, "premium": "10"})
    assert r.status_code == 400
    assert r.json()["error"] == "insufficient_allowance"


def test_unknown_policy_is_404(client):
    r = client.get("/policies/999")
    assert r.status_code == 404
    assert r.json()["error"] == "policy_not_found"


def test_escrow_withdraw(client):
    _fund_and_buy(client)
    r = client.post("/escrow/withdraw", json={"caller": OWNER, "amount": "9.8", "recipient": RECIPIENT})
    assert r.status_code == 200
    assert r.json()["net"] == "9.751"
    escrow = client.get("/escrow").json()
    assert escrow["held_balance"] == "0"
    assert escrow["reconciled"] is True


def test_escrow_withdraw_guards(client):
    _fund_and_buy(client)
    too_much = client.post("/escrow/withdraw", json={"caller": OWNER, "amount": "10", "recipient": RECIPIENT})
    assert too_much.status_code == 409
    assert too_much.json()["error"] == "insufficient_balance"
    stranger = client.post("/escrow/withdraw", json={"caller": BUYER, "amount": "1", "recipient": BUYER})
    assert stranger.status_code == 403


def test_expire_and_portfolio(client, clock):
    policy = _fund_and_buy(client)
    clock.advance(days=2)
    r = client.get(f"/portfolio/{BUYER}").json()
    assert r["total_invested"] == "10"
    assert r["current_claim_value"] == "0.6"
    assert r["profit_loss"] == "-9.4"

    expired = client.post(f"/policies/{policy['id']}/expire", json={"caller": OWNER}).json()
    assert expired["status"] == "expired"
    assert client.get(f"/portfolio/{BUYER}").json()["active_policies"] == 0


def test_claim_settles_at_server_clock(client):
    policy = _fund_and_buy(client)
    # Claims ignore any client-supplied date.
    r = client.post(f"/policies/{policy['id']}/claim", json={"as_of": "2038-01-01T00:00:00+00:00"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["days_held"] == 0
    assert body["claim_percentage"] == 0.5
    assert body["total_percentage"] == 0.5
    assert body["claim_amount"] == "0.05"


def test_portfolio_accepts_naive_as_of(client):
    _fund_and_buy(client)
    r = client.get(f"/portfolio/{BUYER}", params={"as_of": "2025-01-05T00:00:00"})
    assert r.status_code == 200, r.text
    # Bought 2025-01-01 12:00 UTC -> 3 whole days -> 6.5%.
    assert r.json()["current_claim_value"] == "0.65"


def test_expire_guards(client, clock):
    policy = _fund_and_buy(client, duration_days=30)
    url = f"/policies/{policy['id']}/expire"

    stranger = client.post(url, json={"caller": BUYER})
    assert stranger.status_code == 403
    assert stranger.json()["error"] == "not_owner"

    early = client.post(url, json={"caller": OWNER})
    assert early.status_code == 409
    assert early.json()["error"] == "policy_not_expired"
    assert client.get(f"/policies/{policy['id']}").json()["status"] == "active"

    clock.advance(days=30)
    assert client.post(url, json={"caller": OWNER}).json()["status"] == "expired"


def test_analytics_endpoints(client, clock):
    _fund_and_buy(client, premium="10", policy_type="travel")
    client.post("/policies", json={"holder": BUYER, "premium": "20", "policy_type": "travel"})
    clock.advance(days=40)
    client.post("/policies", json={"holder": BUYER, "premium": "5", "policy_type": "device"})
    client.post("/policies/1/claim")

    g = client.get("/analytics/global").json()
    assert g["total_policies"] == 3
    assert (g["active_policies"], g["claimed_policies"], g["expired_policies"]) == (2, 1, 0)
    assert g["total_revenue"] == "35"
    assert g["total_fees"] == "0.7"
    assert g["average_policy_value"] == "11.666666666666666666"
    assert [t["policy_type"] for t in g["top_policy_types"]] == ["travel", "device"]
    assert g["top_policy_types"][0]["premium"] == "30"

    month = client.get("/analytics/revenue").json()
    assert [(r["purchases"], r["gross_amount"]) for r in month] == [(1, "5")]
    everything = client.get("/analytics/revenue", params={"timeframe": "all"}).json()
    assert [r["purchases"] for r in everything] == [2, 1]
    assert everything[0]["fee"] == "0.6"
    assert client.get("/analytics/revenue", params={"timeframe": "decade"}).status_code == 422

    types = client.get("/analytics/policy-types").json()
    assert types[0] == {
        "policy_type": "travel",
        "policies": 2,
        "active": 1,
        "claimed": 1,
        "expired": 0,
        "premium": "30",
    }


def test_persistent_mode_survives_restart(monkeypatch, clock, tmp_path):
    monkeypatch.setenv("ESCROW_OWNER", OWNER)
    monkeypatch.delenv("COMPANY_WALLET", raising=False)
    monkeypatch.setenv("RECORD_STORE_PATH", str(tmp_path / "records.json"))

    monkeypatch.setattr(api, "_SERVICE", api.build_service(clock=clock))
    client = TestClient(api.app)
    policy = _fund_and_buy(client)

    # Fresh process: token, ledger and store rebuilt from disk.
    monkeypatch.setattr(api, "_SERVICE", api.build_service(clock=clock))
    escrow = client.get("/escrow").json()
    assert escrow["held_balance"] == "9.8"
    assert escrow["total_net_in"] == "9.8"
    assert escrow["reconciled"] is True

    clock.advance(days=7)
    claim = client.post(f"/policies/{policy['id']}/claim")
    assert claim.status_code == 200, claim.text
    assert claim.json()["claim_amount"] == "0.85"
