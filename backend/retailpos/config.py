# backend/retailpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateway: "bakong" or "none" (QR checkout disabled)
    PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "bakong")
    BAKONG_API_BASE_URL = os.environ.get("BAKONG_API_BASE_URL", "https://api-bakong.nbc.gov.kh")
    BAKONG_API_TOKEN = os.environ.get("BAKONG_API_TOKEN", "")
    BAKONG_ACCOUNT_ID = os.environ.get("BAKONG_ACCOUNT_ID", "retailpos@aclb")
    MERCHANT_NAME = os.environ.get("MERCHANT_NAME", "RetailPOS Shop")
    MERCHANT_CITY = os.environ.get("MERCHANT_CITY", "Phnom Penh")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "USD")
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "10"))

    # Shared secret for gateway callbacks; empty disables signature checks
    PAYMENT_CALLBACK_SECRET = os.environ.get("PAYMENT_CALLBACK_SECRET", "")

    REPORT_CACHE_TTL = int(os.environ.get("REPORT_CACHE_TTL", "300"))
