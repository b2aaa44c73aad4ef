"""Change orders blueprint package."""

from .routes import change_orders_bp  # noqa: F401
