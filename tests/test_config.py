"""Settlement configuration bounds and environment overrides."""

import pytest

from src.settlement.config import MAX_CLAIM_CAP_BPS, SettlementConfig, get_settlement_config


def test_defaults():
    cfg = SettlementConfig()
    assert (cfg.purchase_fee_bps, cfg.withdraw_fee_bps, cfg.claim_cap_bps) == (200, 50, MAX_CLAIM_CAP_BPS)


@pytest.mark.parametrize("cap", [0, -1, MAX_CLAIM_CAP_BPS + 1, 50_000])
def test_claim_cap_out_of_range_rejected(cap):
    with pytest.raises(ValueError):
        SettlementConfig(claim_cap_bps=cap)


@pytest.mark.parametrize("field", ["purchase_fee_bps", "withdraw_fee_bps"])
@pytest.mark.parametrize("bps", [-1, 10_001])
def test_fee_bps_out_of_range_rejected(field, bps):
    with pytest.raises(ValueError):
        SettlementConfig(**{field: bps})


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PURCHASE_FEE_BPS", "500")
    monkeypatch.setenv("WITHDRAW_FEE_BPS", "20")
    monkeypatch.setenv("CLAIM_CAP_BPS", "10000")
    cfg = get_settlement_config()
    assert (cfg.purchase_fee_bps, cfg.withdraw_fee_bps, cfg.claim_cap_bps) == (500, 20, 10_000)


def test_env_cap_above_ceiling_rejected(monkeypatch):
    monkeypatch.setenv("CLAIM_CAP_BPS", "15000")
    with pytest.raises(ValueError):
        get_settlement_config()
