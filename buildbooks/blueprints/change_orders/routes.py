"""
buildbooks/blueprints/change_orders/routes.py

Change order routes.

Includes:
- CRUD (owner, logged in)
- send: notify the client with the approval URL
- approve: approval recorded by the owner (e.g. signed on paper)
- respond/<token>: the anonymous, token-gated client response

IMPORTANT:
- "expired" is derived from expires_at at read time and never stored.
- The client response is captured at most once. An approved change order
  grows the project budget by its (signed) change amount.
- The token endpoints are the only anonymous mutation in the API and are
  exempt from CSRF; the unguessable token is the credential.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ... import store
from ...engine import lifecycle
from ...engine.errors import InvalidTransition, NotFound, ValidationError
from ...engine.numbering import approval_token, change_order_number
from ...extensions import csrf
from ...models import ChangeOrder, ChangeOrderItem, Project
from ...notifications import approval_url, send_change_order_approval
from ...security import owner_required
from ...utils import (
    clean_text,
    json_body,
    parse_decimal,
    parse_item,
    parse_list,
    parse_optional_int,
    require_choice,
    require_text,
    utcnow,
)

logger = logging.getLogger(__name__)

change_orders_bp = Blueprint("change_orders", __name__, url_prefix="/change-orders")

TEXT_FIELDS = ("description", "reason", "impact_on_schedule")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _build_items(raw_items: list) -> list[ChangeOrderItem]:
    items = []
    for i, raw in enumerate(raw_items):
        field = f"items[{i}]"
        values = parse_item(raw, field, ChangeOrderItem.CATEGORIES, default_category="other")
        values.pop("total_override")
        item = ChangeOrderItem(**values)
        item.type = require_choice(raw.get("type"), f"{field}.type", ChangeOrderItem.TYPES, default="addition")
        items.append(item)
    return items


def _apply_fields(change_order: ChangeOrder, data: dict) -> None:
    if "title" in data or change_order.title is None:
        change_order.title = require_text(data, "title")

    for field in TEXT_FIELDS:
        if field in data:
            setattr(change_order, field, clean_text(data.get(field)))

    if "original_amount" in data:
        change_order.original_amount = parse_decimal(
            data.get("original_amount"), "original_amount", minimum=0, default=change_order.original_amount
        )

    if "items" in data:
        change_order.items = _build_items(parse_list(data, "items"))

    if not change_order.items and "change_amount" in data:
        change_order.change_amount = parse_decimal(data.get("change_amount"), "change_amount", required=True)


def _require_open(change_order: ChangeOrder, now, requested: str) -> None:
    """Only pending, unanswered, unexpired change orders can be edited or sent."""
    current = change_order.effective_status(now)
    if current != "pending" or change_order.client_response:
        raise InvalidTransition(lifecycle.CHANGE_ORDER, current, requested)


def _record_response(change_order: ChangeOrder, response: str, notes, now) -> None:
    change_order.status = lifecycle.respond_to_change_order(change_order.state(), response, now)
    change_order.client_response = response
    change_order.client_response_date = now
    change_order.client_response_notes = clean_text(notes)

    if change_order.status == "approved" and change_order.project is not None:
        change_order.project.add_to_budget(change_order.change_amount)


def _get_by_token(token: str) -> ChangeOrder:
    change_order = ChangeOrder.query.filter_by(approval_token=token).first()
    if change_order is None:
        raise NotFound("ChangeOrder")
    return change_order


# ---------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------
@change_orders_bp.route("/", methods=["GET"])
@login_required
def list_change_orders():
    """List change orders; ?status= filters on the derived status."""
    now = utcnow()
    filters = {}
    project_id = parse_optional_int(request.args.get("project_id"), "project_id")
    if project_id is not None:
        filters["project_id"] = project_id

    change_orders = store.list_by_owner(ChangeOrder, **filters)

    status = clean_text(request.args.get("status"))
    if status:
        status = require_choice(status, "status", lifecycle.CHANGE_ORDER_STATUSES)
        change_orders = [co for co in change_orders if co.effective_status(now) == status]

    return jsonify([co.to_dict(now) for co in change_orders])


@change_orders_bp.route("/", methods=["POST"])
@login_required
def create_change_order():
    data = json_body()
    now = utcnow()

    project_id = parse_optional_int(data.get("project_id"), "project_id")
    if project_id is None:
        raise ValidationError("'project_id' is required.", field="project_id")
    project = store.get_owned(Project, project_id)
    client = project.client

    change_order = ChangeOrder(
        owner_id=current_user.id,
        project=project,
        client=client,
        change_order_number=change_order_number(now),
        status=lifecycle.INITIAL_STATUS[lifecycle.CHANGE_ORDER],
        approval_token=approval_token(),
        expires_at=now + timedelta(days=current_app.config["CHANGE_ORDER_EXPIRY_DAYS"]),
        original_amount=project.estimated_cost,
        change_amount=0,
        project_name=project.name,
        client_name=client.name if client else None,
        client_email=client.email if client else None,
    )
    _apply_fields(change_order, data)
    change_order.recalc_totals()

    store.create(change_order)
    return jsonify(change_order.to_dict(now)), 201


@change_orders_bp.route("/<int:change_order_id>", methods=["GET"])
@login_required
@owner_required(ChangeOrder, "change_order_id")
def get_change_order(change_order):
    return jsonify(change_order.to_dict(utcnow()))


@change_orders_bp.route("/<int:change_order_id>", methods=["PUT", "PATCH"])
@login_required
@owner_required(ChangeOrder, "change_order_id")
def update_change_order(change_order):
    now = utcnow()
    _require_open(change_order, now, "pending")
    before = store.snapshot(change_order)
    _apply_fields(change_order, json_body())
    change_order.recalc_totals()
    store.update(change_order, before)
    return jsonify(change_order.to_dict(now))


@change_orders_bp.route("/<int:change_order_id>", methods=["DELETE"])
@login_required
@owner_required(ChangeOrder, "change_order_id")
def delete_change_order(change_order):
    store.delete(change_order)
    return "", 204


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------
@change_orders_bp.route("/<int:change_order_id>/send", methods=["POST"])
@login_required
@owner_required(ChangeOrder, "change_order_id")
def send_change_order(change_order):
    """Email the approval link. A failed delivery is reported, not raised."""
    now = utcnow()
    _require_open(change_order, now, "sent")

    before = store.snapshot(change_order)
    change_order.sent_at = now
    store.update(change_order, before, action="SEND")

    url = approval_url(change_order.approval_token)
    delivered = send_change_order_approval(change_order, url)
    return jsonify(
        {
            "change_order": change_order.to_dict(now),
            "approval_url": url,
            "notification_sent": delivered,
        }
    )


@change_orders_bp.route("/<int:change_order_id>/approve", methods=["POST"])
@login_required
@owner_required(ChangeOrder, "change_order_id")
def approve_change_order(change_order):
    data = json_body()
    now = utcnow()
    before = store.snapshot(change_order)
    _record_response(change_order, "approved", data.get("notes"), now)
    store.update(change_order, before, action="APPROVE")
    return jsonify(change_order.to_dict(now))


# ---------------------------------------------------------------------
# Public client response (token-gated)
# ---------------------------------------------------------------------
@change_orders_bp.route("/respond/<token>", methods=["GET"])
def view_for_client(token: str):
    change_order = _get_by_token(token)
    return jsonify(change_order.to_dict(utcnow(), include_token=False))


@change_orders_bp.route("/respond/<token>", methods=["POST"])
@csrf.exempt
def respond(token: str):
    """Body: {"response": "approved"|"declined", "notes": "..."}"""
    data = json_body()
    now = utcnow()
    change_order = _get_by_token(token)

    before = store.snapshot(change_order)
    _record_response(change_order, clean_text(data.get("response")) or "", data.get("notes"), now)
    store.update(change_order, before, action="CLIENT_RESPONSE")

    logger.info(
        "change order %s %s by client",
        change_order.change_order_number,
        change_order.status,
        extra={"change_order_id": change_order.id},
    )
    return jsonify(change_order.to_dict(now, include_token=False))
