# src/utils/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if v is not None and v != "" else default


@dataclass(frozen=True)
class ProjectPaths:
    root: Path
    data_dir: Path
    reports_dir: Path


def get_project_root() -> Path:
    """
    Resolve repo root robustly.
    Assumes this file lives at: <root>/src/utils/config.py
    """
    return Path(__file__).resolve().parents[2]


def get_paths() -> ProjectPaths:
    root = get_project_root()
    return ProjectPaths(
        root=root,
        data_dir=root / "data",
        reports_dir=root / "reports",
    )


@dataclass(frozen=True)
class EscrowConfig:
    owner: str
    company_wallet: str
    escrow_address: str
    record_store_path: Optional[str]

    @property
    def persistent(self) -> bool:
        return self.record_store_path is not None


def get_escrow_config() -> EscrowConfig:
    """
    Escrow wiring for the API process.

    Env:
      ESCROW_OWNER       (default: a fixed demo owner address)
      COMPANY_WALLET     (default: ESCROW_OWNER)
      ESCROW_ADDRESS     (default: a fixed demo escrow address)
      RECORD_STORE_PATH  (optional; JSON file store when set, in-memory otherwise)
    """
    owner = _env("ESCROW_OWNER", "0x" + "a11ce" * 8) or ""
    return EscrowConfig(
        owner=owner,
        company_wallet=_env("COMPANY_WALLET", owner) or owner,
        escrow_address=_env("ESCROW_ADDRESS", "0x" + "e5c0" * 10) or "",
        record_store_path=_env("RECORD_STORE_PATH", None),
    )


@dataclass(frozen=True)
class AwsConfig:
    region: str
    s3_bucket: Optional[str]
    s3_prefix: str

    @property
    def enabled(self) -> bool:
        return self.s3_bucket is not None


def get_aws_config() -> AwsConfig:
    """
    Configure S3 usage via environment variables.
    Keep it optional so local runs are frictionless.

    Env:
      AWS_REGION (default: eu-west-2)
      S3_BUCKET  (optional)
      S3_PREFIX  (default: policy-settlement)
    """
    return AwsConfig(
        region=_env("AWS_REGION", "eu-west-2") or "eu-west-2",
        s3_bucket=_env("S3_BUCKET", None),
        s3_prefix=_env("S3_PREFIX", "policy-settlement") or "policy-settlement",
    )


def get_log_level() -> str:
    return (_env("LOG_LEVEL", "INFO") or "INFO").upper()
