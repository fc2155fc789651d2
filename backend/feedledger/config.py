# backend/feedledger/config.py
from __future__ import annotations
import os


class Config:
    # SQLite DB stored in backend/instance/feedledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///feedledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Whole-operation retry on lock contention / stale version writes
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF_SECONDS = float(os.environ.get("LEDGER_RETRY_BACKOFF_SECONDS", "0.1"))

    # Shown in transaction notes only; amounts are always stored in cents
    LEDGER_CURRENCY_LABEL = os.environ.get("LEDGER_CURRENCY_LABEL", "TK")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
