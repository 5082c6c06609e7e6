# src/scripts/report.py
"""
Build settlement reports from a JSON record store.

Outputs (under --out_dir, default reports/):
1) revenue_by_day.csv     : purchase volume and fee revenue per day
2) policy_types.csv       : policy counts by type and status, premium totals
3) claims.csv             : every processed claim
4) claim_curve.csv        : claim curve for a 1-token premium (0..730 days)
5) summary.json           : escrow-side totals and per-wallet portfolio summaries

Usage:
  python -m src.scripts.report --store data/records.json
  python -m src.scripts.report --store data/records.json --upload

With --upload, outputs are pushed to s3://$S3_BUCKET/$S3_PREFIX/reports/.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.analytics.report import (
    claim_curve_table,
    claims_frame,
    policy_type_breakdown,
    portfolio_summary,
    revenue_by_day,
)
from src.records.store import JsonFileRecordStore, RecordStore
from src.settlement.config import SettlementConfig, get_settlement_config
from src.settlement.money import to_units
from src.utils.config import get_aws_config, get_log_level, get_paths
from src.utils.io import ensure_dir, s3_upload_file, write_df, write_json

_log = logging.getLogger(__name__)


def build_summary(store: RecordStore, as_of: datetime, cfg: SettlementConfig) -> Dict[str, Any]:
    purchases = store.list_purchases()
    claims = store.list_claims()
    holders = sorted({p.holder for p in store.list_policies()})

    return {
        "as_of": as_of.isoformat(),
        "token": cfg.token_symbol,
        "policies": len(store.list_policies()),
        "gross_premium": sum(p.gross_amount for p in purchases),
        "purchase_fees": sum(p.fee for p in purchases),
        "net_premium": sum(p.net for p in purchases),
        "claims_paid": sum(c.claim_amount for c in claims),
        "claim_fees": sum(c.payout_fee for c in claims),
        "portfolios": [portfolio_summary(store, h, as_of, cfg=cfg).to_dict() for h in holders],
    }


def write_reports(store: RecordStore, out_dir: Path, as_of: datetime, cfg: SettlementConfig) -> List[Path]:
    ensure_dir(out_dir)
    outputs = {
        "revenue_by_day.csv": revenue_by_day(store, cfg=cfg),
        "policy_types.csv": policy_type_breakdown(store),
        "claims.csv": claims_frame(store),
        "claim_curve.csv": claim_curve_table(to_units("1", cfg.token_decimals), cfg=cfg),
    }

    written: List[Path] = []
    for name, df in outputs.items():
        path = out_dir / name
        write_df(df, path)
        written.append(path)

    summary_path = out_dir / "summary.json"
    write_json(build_summary(store, as_of, cfg), summary_path)
    written.append(summary_path)
    return written


def upload_reports(paths: List[Path]) -> int:
    aws = get_aws_config()
    if not aws.enabled:
        raise ValueError("S3_BUCKET is not set; cannot upload reports.")
    for path in paths:
        key = f"{aws.s3_prefix.rstrip('/')}/reports/{path.name}"
        s3_upload_file(path, aws.s3_bucket, key, region=aws.region)  # type: ignore[arg-type]
        _log.info("Uploaded %s -> s3://%s/%s", path, aws.s3_bucket, key)
    return len(paths)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Build settlement reports from a JSON record store.")
    p.add_argument("--store", type=str, required=True, help="Path to the JSON record store.")
    p.add_argument(
        "--out_dir",
        type=str,
        default=None,
        help="Output directory (default: <root>/reports).",
    )
    p.add_argument(
        "--as_of",
        type=str,
        default=None,
        help="ISO-8601 evaluation time for live claim values (default: now, UTC).",
    )
    p.add_argument("--upload", action="store_true", help="Upload outputs to S3 (needs S3_BUCKET).")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=get_log_level(), stream=sys.stderr)
    args = parse_args(argv)
    cfg = get_settlement_config()

    store_path = Path(args.store)
    if not store_path.exists():
        raise FileNotFoundError(f"Record store not found: {store_path}")
    store = JsonFileRecordStore(store_path)

    out_dir = Path(args.out_dir) if args.out_dir else get_paths().reports_dir
    as_of = datetime.fromisoformat(args.as_of) if args.as_of else datetime.now(timezone.utc)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    written = write_reports(store, out_dir, as_of, cfg)
    for path in written:
        print(f"[OK] {path}")

    if args.upload:
        n = upload_reports(written)
        print(f"[OK] Uploaded {n} files to S3")


if __name__ == "__main__":
    main()
