"""
buildbooks/security.py

Access control helpers.

Key rules:
- Every business record belongs to exactly one owner (User).
- Only the owner can read or mutate it; another owner's record answers 404,
  exactly like a missing one, so record ids do not leak.
- The only anonymous mutation is the token-gated change order response.
- Administration (user list, system stats, account removal) is admin-only.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import jsonify
from flask_login import current_user

from . import store


def unauthorized_response():
    """JSON 401 for anonymous access to login-protected routes."""
    return jsonify({"error": "UNAUTHORIZED", "message": "Login required."}), 401


def is_admin() -> bool:
    return bool(current_user.is_authenticated and current_user.is_admin)


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only. Use below @login_required."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return jsonify({"error": "FORBIDDEN", "message": "Administrator access required."}), 403
        return view_func(*args, **kwargs)

    return wrapper


def owner_required(model, id_kwarg: str) -> Callable[..., Any]:
    """
    Decorator factory: load ``model`` by the ``id_kwarg`` URL value, scoped to
    the current user, and pass the instance to the view instead of the id.

    Usage:
        @bp.route("/<int:estimate_id>")
        @login_required
        @owner_required(Estimate, "estimate_id")
        def get_estimate(estimate): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            record_id = kwargs.pop(id_kwarg)
            kwargs[id_kwarg.removesuffix("_id")] = store.get_owned(model, record_id)
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
