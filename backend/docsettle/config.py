# backend/docsettle/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/docsettle.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///docsettle.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # DEBUG, INFO, WARNING, ERROR
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Unit-of-work retry on lock contention / optimistic version conflicts
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

    # Prefixes handed to the numbering collaborator, keyed by document type
    DOCUMENT_PREFIXES = {
        "QUOTATION": "QT",
        "SALES_ORDER": "SO",
        "DELIVERY_ORDER": "DO",
        "INVOICE": "INV",
        "CREDIT_NOTE": "CN",
        "DEBIT_NOTE": "DN",
        "PURCHASE_ORDER": "PO",
        "GOODS_RECEIPT": "GR",
        "PURCHASE_INVOICE": "PI",
        "PURCHASE_CREDIT_NOTE": "PCN",
        "PURCHASE_DEBIT_NOTE": "PDN",
        "PAYMENT": "PAY",
        "REVERSAL": "REV",
    }
    DOCUMENT_NUMBER_PAD = 6


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RETRY_BACKOFF_BASE = 0.01
