"""
Purchase routes.

Purchases are the contractor's own spend (materials, rentals, subcontractors)
booked against a project; a project's actual_cost is their sum.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ... import store
from ...engine import lifecycle
from ...engine.money import money
from ...models import Project, Purchase
from ...security import owner_required
from ...utils import (
    clean_text,
    json_body,
    parse_datetime,
    parse_decimal,
    parse_optional_int,
    require_choice,
    require_text,
    utcnow,
)

purchases_bp = Blueprint("purchases", __name__, url_prefix="/purchases")


def _apply_fields(purchase: Purchase, data: dict) -> None:
    if "vendor" in data or purchase.vendor is None:
        purchase.vendor = require_text(data, "vendor")
    if "description" in data or purchase.description is None:
        purchase.description = require_text(data, "description")

    if "amount" in data or purchase.amount is None:
        purchase.amount = money(parse_decimal(data.get("amount"), "amount", required=True, minimum=0))

    if "project_id" in data:
        project_id = parse_optional_int(data.get("project_id"), "project_id")
        purchase.project = store.get_optional_owned(Project, project_id)

    if "billable" in data:
        purchase.billable = bool(data.get("billable"))
    if "invoice_number" in data:
        purchase.invoice_number = clean_text(data.get("invoice_number"))

    if "purchase_date" in data:
        purchase.purchase_date = parse_datetime(data.get("purchase_date"), "purchase_date") or utcnow()
    if "due_date" in data:
        purchase.due_date = parse_datetime(data.get("due_date"), "due_date")


@purchases_bp.route("/", methods=["GET"])
@login_required
def list_purchases():
    filters = {}
    status = clean_text(request.args.get("status"))
    if status:
        filters["status"] = require_choice(status, "status", Purchase.STATUSES)
    project_id = parse_optional_int(request.args.get("project_id"), "project_id")
    if project_id is not None:
        filters["project_id"] = project_id
    return jsonify([p.to_dict() for p in store.list_by_owner(Purchase, **filters)])


@purchases_bp.route("/", methods=["POST"])
@login_required
def create_purchase():
    purchase = Purchase(
        owner_id=current_user.id,
        status=lifecycle.INITIAL_STATUS[lifecycle.PURCHASE],
        billable=False,
        purchase_date=utcnow(),
    )
    _apply_fields(purchase, json_body())
    store.create(purchase)
    return jsonify(purchase.to_dict()), 201


@purchases_bp.route("/<int:purchase_id>", methods=["GET"])
@login_required
@owner_required(Purchase, "purchase_id")
def get_purchase(purchase):
    return jsonify(purchase.to_dict())


@purchases_bp.route("/<int:purchase_id>", methods=["PUT", "PATCH"])
@login_required
@owner_required(Purchase, "purchase_id")
def update_purchase(purchase):
    before = store.snapshot(purchase)
    _apply_fields(purchase, json_body())
    store.update(purchase, before)
    return jsonify(purchase.to_dict())


@purchases_bp.route("/<int:purchase_id>", methods=["DELETE"])
@login_required
@owner_required(Purchase, "purchase_id")
def delete_purchase(purchase):
    store.delete(purchase)
    return "", 204


@purchases_bp.route("/<int:purchase_id>/mark-paid", methods=["POST"])
@login_required
@owner_required(Purchase, "purchase_id")
def mark_purchase_paid(purchase):
    before = store.snapshot(purchase)
    purchase.status = lifecycle.transition(lifecycle.PURCHASE, purchase.status, "paid")
    purchase.paid_date = utcnow()
    store.update(purchase, before, action="MARK_PAID")
    return jsonify(purchase.to_dict())
