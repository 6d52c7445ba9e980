# backend/stockledger/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Balances at or below this many currency units count as settled
    CREDIT_PAID_EPSILON = Decimal(os.environ.get("CREDIT_PAID_EPSILON", "0.01"))

    # Daily rate used for credit sales that do not send their own rate
    DEFAULT_CREDIT_INTEREST_RATE = Decimal(os.environ.get("DEFAULT_CREDIT_INTEREST_RATE", "0.01"))
