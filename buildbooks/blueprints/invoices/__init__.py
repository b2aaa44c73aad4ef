"""Invoices blueprint package."""

from .routes import invoices_bp  # noqa: F401
