"""
Auth blueprint package.

Exposes the Blueprint object imported by buildbooks.create_app.
The routes live in routes.py.
"""

from .routes import auth_bp  # noqa: F401
