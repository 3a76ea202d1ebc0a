"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
document defaults (currency, VAT, payment terms) and the quotation conversion policy. It uses environment variables
for sensitive information and defaults for development. In production, make sure to set the appropriate environment
variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'bizdocs.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for mutating requests (clients fetch /api/auth/csrf-token)
    WTF_CSRF_ENABLED = True

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Document defaults
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "NGN")
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "7.5")  # Nigerian VAT, percent
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))
    QUOTATION_VALIDITY_DAYS = int(os.environ.get("QUOTATION_VALIDITY_DAYS", "30"))

    # False: a quotation converts to at most one invoice (second attempt is a 409).
    ALLOW_REPEATED_CONVERSION = _env_bool("ALLOW_REPEATED_CONVERSION", False)

    APP_NAME = "Business Documents"


class TestConfig(Config):
    """Configuration used by the test-suite."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    LOGIN_DISABLED = True
    LOG_LEVEL = "WARNING"
    ALLOW_REPEATED_CONVERSION = False
