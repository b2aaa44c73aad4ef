"""
buildbooks/blueprints/estimates/routes.py

Estimate routes.

Includes:
- CRUD with nested sections and items
- Lifecycle actions: send, approve, reject
- Conversion to an invoice (progress or final billing)

IMPORTANT:
- Section subtotals and document totals are always recomputed server-side.
- Client, project and contractor snapshots are captured once, at creation.
- Approving an estimate grows the project budget by the estimate total.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ... import store
from ...engine import lifecycle
from ...engine.conversion import convert_estimate_to_invoice
from ...engine.errors import ValidationError
from ...engine.money import to_decimal
from ...engine.numbering import ESTIMATE_PREFIX, document_number
from ...models import Client, Estimate, EstimateItem, EstimateSection, Invoice, Project
from ...security import owner_required
from ...utils import (
    clean_text,
    json_body,
    parse_datetime,
    parse_decimal,
    parse_item,
    parse_list,
    parse_optional_int,
    require_choice,
    require_text,
    utcnow,
)

estimates_bp = Blueprint("estimates", __name__, url_prefix="/estimates")

TEXT_FIELDS = ("description", "terms", "notes", "cancellation_rights", "warranty_info")
ITEM_DETAIL_FIELDS = ("notes", "brand", "model", "supplier")


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _build_item(data, field: str) -> EstimateItem:
    values = parse_item(data, field, EstimateItem.CATEGORIES, default_category="materials")
    item = EstimateItem(**values)
    item.margin = parse_decimal(data.get("margin"), f"{field}.margin", minimum=0, default=0)
    item.waste_factor = parse_decimal(data.get("waste_factor"), f"{field}.waste_factor", minimum=0, default=0)
    for name in ITEM_DETAIL_FIELDS:
        setattr(item, name, clean_text(data.get(name)))
    item.lead_time_days = parse_optional_int(data.get("lead_time_days"), f"{field}.lead_time_days")
    return item


def _build_sections(raw_sections: list) -> list[EstimateSection]:
    sections = []
    for index, raw in enumerate(raw_sections):
        field = f"sections[{index}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"'{field}' must be an object.", field=field)
        order = parse_optional_int(raw.get("order"), f"{field}.order")
        section = EstimateSection(
            name=clean_text(raw.get("name")) or f"Section {index + 1}",
            description=clean_text(raw.get("description")),
            order_index=index if order is None else order,
        )
        section.items = [
            _build_item(item, f"{field}.items[{i}]") for i, item in enumerate(parse_list(raw, "items"))
        ]
        sections.append(section)
    return sections


def _resolve_links(data: dict) -> tuple[Project | None, Client | None]:
    project_id = parse_optional_int(data.get("project_id"), "project_id")
    client_id = parse_optional_int(data.get("client_id"), "client_id")

    project = store.get_optional_owned(Project, project_id)
    client = store.get_optional_owned(Client, client_id)
    if client is None and project is not None:
        client = project.client
    return project, client


def _capture_snapshots(estimate: Estimate, project: Project | None, client: Client | None) -> None:
    if client is not None:
        estimate.apply_snapshot(client.client_snapshot())
    estimate.apply_snapshot(current_user.contractor_snapshot())
    if project is not None:
        estimate.project_name = project.name
        estimate.project_address = project.full_address()


def _apply_fields(estimate: Estimate, data: dict) -> None:
    if "name" in data or estimate.name is None:
        estimate.name = require_text(data, "name")

    for field in TEXT_FIELDS:
        if field in data:
            setattr(estimate, field, clean_text(data.get(field)))

    if "valid_until" in data:
        estimate.valid_until = parse_datetime(data.get("valid_until"), "valid_until")

    if "tax_rate" in data:
        estimate.tax_rate = parse_decimal(
            data.get("tax_rate"), "tax_rate", minimum=0, default=current_app.config["DEFAULT_TAX_RATE"]
        )

    if "sections" in data:
        estimate.sections = _build_sections(parse_list(data, "sections"))


def _listing_filters() -> dict:
    filters = {}
    status = clean_text(request.args.get("status"))
    if status:
        filters["status"] = require_choice(status, "status", lifecycle.ESTIMATE_STATUSES)
    project_id = parse_optional_int(request.args.get("project_id"), "project_id")
    if project_id is not None:
        filters["project_id"] = project_id
    return filters


# ---------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------
@estimates_bp.route("/", methods=["GET"])
@login_required
def list_estimates():
    estimates = store.list_by_owner(Estimate, **_listing_filters())
    return jsonify([e.to_dict(include_sections=False) for e in estimates])


@estimates_bp.route("/", methods=["POST"])
@login_required
def create_estimate():
    data = json_body()

    estimate = Estimate(
        owner_id=current_user.id,
        estimate_number=document_number(ESTIMATE_PREFIX, utcnow()),
        status=lifecycle.INITIAL_STATUS[lifecycle.ESTIMATE],
        tax_rate=current_app.config["DEFAULT_TAX_RATE"],
    )
    project, client = _resolve_links(data)
    estimate.project_id = project.id if project else None
    estimate.client_id = client.id if client else None

    _apply_fields(estimate, data)
    _capture_snapshots(estimate, project, client)
    estimate.recalc_totals()

    store.create(estimate)
    return jsonify(estimate.to_dict()), 201


@estimates_bp.route("/<int:estimate_id>", methods=["GET"])
@login_required
@owner_required(Estimate, "estimate_id")
def get_estimate(estimate):
    return jsonify(estimate.to_dict())


@estimates_bp.route("/<int:estimate_id>", methods=["PUT", "PATCH"])
@login_required
@owner_required(Estimate, "estimate_id")
def update_estimate(estimate):
    """Edit fields and/or replace sections. Status is never changed here."""
    before = store.snapshot(estimate)
    _apply_fields(estimate, json_body())
    estimate.recalc_totals()
    store.update(estimate, before)
    return jsonify(estimate.to_dict())


@estimates_bp.route("/<int:estimate_id>", methods=["DELETE"])
@login_required
@owner_required(Estimate, "estimate_id")
def delete_estimate(estimate):
    store.delete(estimate)
    return "", 204


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------
@estimates_bp.route("/<int:estimate_id>/send", methods=["POST"])
@login_required
@owner_required(Estimate, "estimate_id")
def send_estimate(estimate):
    before = store.snapshot(estimate)
    estimate.status = lifecycle.transition(lifecycle.ESTIMATE, estimate.status, "sent")
    estimate.sent_at = utcnow()
    store.update(estimate, before, action="SEND")
    return jsonify(estimate.to_dict())


@estimates_bp.route("/<int:estimate_id>/approve", methods=["POST"])
@login_required
@owner_required(Estimate, "estimate_id")
def approve_estimate(estimate):
    before = store.snapshot(estimate)
    estimate.status = lifecycle.transition(lifecycle.ESTIMATE, estimate.status, "approved")
    estimate.responded_at = utcnow()
    if estimate.project is not None:
        estimate.project.add_to_budget(estimate.verified_total())
    store.update(estimate, before, action="APPROVE")
    return jsonify(estimate.to_dict())


@estimates_bp.route("/<int:estimate_id>/reject", methods=["POST"])
@login_required
@owner_required(Estimate, "estimate_id")
def reject_estimate(estimate):
    before = store.snapshot(estimate)
    estimate.status = lifecycle.transition(lifecycle.ESTIMATE, estimate.status, "rejected")
    estimate.responded_at = utcnow()
    store.update(estimate, before, action="REJECT")
    return jsonify(estimate.to_dict())


# ---------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------
def _require_same_conversion(existing: Invoice, billing_type: str, percentage) -> None:
    """A reused Idempotency-Key must describe the conversion it first created."""
    same = existing.type == billing_type
    if same and billing_type == "progress":
        same = (
            percentage not in (None, "")
            and existing.progress_percentage is not None
            and to_decimal(percentage, "progress_percentage") == to_decimal(existing.progress_percentage)
        )
    if not same:
        raise ValidationError(
            "This Idempotency-Key was already used for a different conversion.", field="Idempotency-Key"
        )


@estimates_bp.route("/<int:estimate_id>/invoices", methods=["POST"])
@login_required
@owner_required(Estimate, "estimate_id")
def convert_to_invoice(estimate):
    """
    Create an invoice from the estimate.

    Body: {"billing_type": "progress"|"final", "progress_percentage": 50}
    A repeated request carrying the same Idempotency-Key header returns the
    invoice created by the first one.
    """
    data = json_body()
    now = utcnow()
    key = clean_text(request.headers.get("Idempotency-Key"))
    billing_type = clean_text(data.get("billing_type")) or "final"
    percentage = data.get("progress_percentage")

    if key:
        existing = Invoice.query.filter_by(
            owner_id=current_user.id, estimate_id=estimate.id, idempotency_key=key
        ).first()
        if existing is not None:
            _require_same_conversion(existing, billing_type, percentage)
            return jsonify(existing.to_dict(now)), 200

    draft = convert_estimate_to_invoice(
        estimate.to_conversion_source(),
        billing_type,
        percentage,
        now=now,
        due_in_days=current_app.config["INVOICE_DUE_DAYS"],
    )
    invoice = Invoice.from_draft(draft, owner_id=current_user.id, idempotency_key=key)
    store.create(invoice, action="CONVERT")
    return jsonify(invoice.to_dict(now)), 201
