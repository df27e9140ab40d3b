# backend/kasir/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kasir.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kasir.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business day used for the invoice date prefix (INV-YYYYMMDD-NNN)
    BUSINESS_TIMEZONE = os.environ.get("KASIR_TIMEZONE", "UTC")

    # Checkout re-reads the daily sequence this many times on a number collision
    INVOICE_NUMBER_MAX_ATTEMPTS = int(os.environ.get("KASIR_INVOICE_NUMBER_ATTEMPTS", "5"))

    # Retries for transient DB conflicts (locked database, stale rows)
    DB_RETRY_ATTEMPTS = int(os.environ.get("KASIR_DB_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("KASIR_LOG_LEVEL", "INFO")
