"""Purchases blueprint package."""

from .routes import purchases_bp  # noqa: F401
