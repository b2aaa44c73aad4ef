"""Estimates blueprint package."""

from .routes import estimates_bp  # noqa: F401
