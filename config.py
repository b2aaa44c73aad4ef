"""
Application configuration.

This module defines the configuration settings for the Flask application: database connection, secret key,
business defaults (tax rate, payment terms, change order expiry) and logging. It uses environment variables for
sensitive information and defaults for development. In production, make sure to set the appropriate environment
variables and secure the secret key.
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
        f"sqlite:///{BASE_DIR / 'buildbooks.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (API clients send X-CSRFToken, see /auth/csrf-token)
    WTF_CSRF_ENABLED = True

    # Business defaults
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "6.625")  # percent (New Jersey)
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))
    CHANGE_ORDER_EXPIRY_DAYS = int(os.environ.get("CHANGE_ORDER_EXPIRY_DAYS", "7"))

    # Used to build the client approval link for change orders
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    APP_NAME = "BuildBooks"


class TestConfig(Config):
    """Configuration for the pytest suite."""

    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    APP_BASE_URL = "http://testserver"
    LOG_LEVEL = "WARNING"
