"""Clients blueprint package."""

from .routes import clients_bp  # noqa: F401
