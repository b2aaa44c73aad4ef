"""
buildbooks/blueprints/admin/routes.py

Administration routes (admin role only).

Includes:
- User directory with per-user project/invoice counts and paid revenue
- System-wide statistics
- Role / activation changes
- Account removal together with every record the account owns

NOTES:
- An admin cannot demote, deactivate or delete their own account.
- Revenue is the sum of totals of invoices stored as "paid".
"""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from ... import store
from ...engine.errors import NotFound, ValidationError
from ...engine.money import ZERO, as_float, money, to_decimal
from ...extensions import db
from ...models import Invoice, Project, User
from ...security import admin_required
from ...utils import json_body, require_choice

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _counts_by_owner(model) -> dict:
    rows = db.session.query(model.owner_id, db.func.count(model.id)).group_by(model.owner_id).all()
    return dict(rows)


def _revenue_by_owner() -> dict:
    revenue = {}
    for owner_id, total in Invoice.query.with_entities(Invoice.owner_id, Invoice.total).filter(Invoice.status == "paid"):
        revenue[owner_id] = revenue.get(owner_id, ZERO) + to_decimal(total)
    return revenue


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


def _refuse_self(user: User, action: str) -> None:
    if user.id == current_user.id:
        raise ValidationError(f"You cannot {action} your own account.")


@admin_bp.route("/users", methods=["GET"])
@login_required
@admin_required
def list_users():
    projects = _counts_by_owner(Project)
    invoices = _counts_by_owner(Invoice)
    revenue = _revenue_by_owner()

    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify(
        [
            {
                **user.to_dict(),
                "total_projects": projects.get(user.id, 0),
                "total_invoices": invoices.get(user.id, 0),
                "total_revenue": as_float(money(revenue.get(user.id, ZERO))),
            }
            for user in users
        ]
    )


@admin_bp.route("/stats", methods=["GET"])
@login_required
@admin_required
def system_stats():
    users = User.query.all()
    revenue = sum(_revenue_by_owner().values(), ZERO)
    return jsonify(
        {
            "total_users": len(users),
            "active_users": sum(1 for u in users if u.is_active),
            "admin_users": sum(1 for u in users if u.is_admin),
            "total_projects": Project.query.count(),
            "total_invoices": Invoice.query.count(),
            "total_revenue": as_float(money(revenue)),
        }
    )


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@login_required
@admin_required
def update_user(user_id: int):
    """Body: {"role": "admin"|"contractor", "is_active": bool}"""
    user = _get_user(user_id)
    data = json_body()
    before = store.snapshot(user)

    if "role" in data:
        role = require_choice(data.get("role"), "role", User.ROLES)
        if role != user.role:
            _refuse_self(user, "change the role of")
        user.role = role

    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("'is_active' must be true or false.", field="is_active")
        if not data["is_active"]:
            _refuse_self(user, "deactivate")
        user.is_active = data["is_active"]

    store.update(user, before)
    return jsonify(user.to_dict())


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_user(user_id: int):
    user = _get_user(user_id)
    _refuse_self(user, "delete")

    removed = store.purge_owner(user.id)
    store.delete(user)
    return jsonify({"deleted": user_id, "removed": removed})
