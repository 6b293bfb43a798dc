# backend/lpgledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lpgledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///lpgledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Buyback policy rates (decimal strings, parsed by the ledger service)
    BUYBACK_RATE_PARTIAL = os.environ.get("BUYBACK_RATE_PARTIAL", "0.60")
    BUYBACK_RATE_FULL = os.environ.get("BUYBACK_RATE_FULL", "1.00")

    # Move tracked cylinders when transactions are posted
    TRACK_CYLINDER_INVENTORY = _env_flag("TRACK_CYLINDER_INVENTORY", True)

    BILL_PREFIX_B2B = os.environ.get("BILL_PREFIX_B2B", "BILL")
    BILL_PREFIX_B2C = os.environ.get("BILL_PREFIX_B2C", "B2C")
