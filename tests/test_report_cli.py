"""Report CLI over a JSON record store."""

import json

import pytest

from src.escrow.ledger import EscrowLedger
from src.escrow.token import InMemoryToken
from src.records.store import JsonFileRecordStore
from src.scripts import report
from src.settlement.service import SettlementService

from conftest import BUYER, ESCROW, OWNER, FakeClock, tokens


@pytest.fixture
def store_path(tmp_path):
    path = tmp_path / "records.json"
    token = InMemoryToken()
    token.mint(BUYER, tokens("100"))
    token.approve(BUYER, ESCROW, tokens("100"))
    clock = FakeClock()
    svc = SettlementService(EscrowLedger(token, OWNER, address=ESCROW), JsonFileRecordStore(path), clock=clock)
    p = svc.purchase_policy(BUYER, tokens("10"), policy_type="travel")
    clock.advance(days=5)
    svc.claim(p.id)
    svc.purchase_policy(BUYER, tokens("4"), policy_type="device")
    return path


def test_report_writes_outputs(store_path, tmp_path):
    out_dir = tmp_path / "reports"
    report.main(["--store", str(store_path), "--out_dir", str(out_dir), "--as_of", "2025-01-10T00:00:00+00:00"])

    for name in ("revenue_by_day.csv", "policy_types.csv", "claims.csv", "claim_curve.csv", "summary.json"):
        assert (out_dir / name).exists()

    summary = json.loads((out_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["policies"] == 2
    assert summary["gross_premium"] == tokens("14")
    assert summary["purchase_fees"] == tokens("0.28")
    # 5 days held -> 7.5% of 10
    assert summary["claims_paid"] == tokens("0.75")
    assert summary["portfolios"][0]["holder"] == BUYER


def test_report_missing_store(tmp_path):
    with pytest.raises(FileNotFoundError):
        report.main(["--store", str(tmp_path / "nope.json")])


def test_upload_requires_bucket(monkeypatch, tmp_path):
    monkeypatch.delenv("S3_BUCKET", raising=False)
    with pytest.raises(ValueError):
        report.upload_reports([tmp_path / "x.csv"])


def test_upload_calls_s3(monkeypatch, tmp_path):
    monkeypatch.setenv("S3_BUCKET", "bucket")
    monkeypatch.setenv("S3_PREFIX", "settlement")
    calls = []
    monkeypatch.setattr(report, "s3_upload_file", lambda path, bucket, key, region=None: calls.append((bucket, key)))
    f = tmp_path / "claims.csv"
    f.write_text("x\n", encoding="utf-8")
    assert report.upload_reports([f]) == 1
    assert calls == [("bucket", "settlement/reports/claims.csv")]
