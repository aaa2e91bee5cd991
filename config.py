"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
logging and the lifecycle-engine switches. It uses environment variables for sensitive information and defaults for
development. In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'salvage_finance.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for mutating requests (JSON clients send X-CSRFToken)
    WTF_CSRF_ENABLED = True

    APP_NAME = "Salvage Finance"

    # Logging
    LOG_DIR = os.environ.get("LOG_DIR", str(BASE_DIR / ".logs"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_FILE = True

    # Tax percent applied when a document form omits it
    DEFAULT_TAX_RATE = 5.0

    # Journal entry shape: "auto" inspects income_records/expenses once at startup,
    # "full" always sends bank_account_id + reference_id, "legacy" never does.
    JOURNAL_SCHEMA = os.environ.get("JOURNAL_SCHEMA", "auto")

    # True: every transition is one database transaction (savepoint per step).
    # False: commit after each step; failures report what was already applied.
    ATOMIC_TRANSITIONS = True

    # "restricted": invoices deletable from draft only, quotations from draft/rejected/expired.
    # "permissive": any status; invoice deletion reverses journal and stock effects.
    DELETE_POLICY = os.environ.get("DELETE_POLICY", "restricted")

    NUMBER_ALLOCATION_RETRIES = 3


class TestingConfig(Config):
    """Configuration used by the pytest suite."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    JOURNAL_SCHEMA = "full"
    LOG_TO_FILE = False
