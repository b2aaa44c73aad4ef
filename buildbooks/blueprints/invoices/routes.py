"""
buildbooks/blueprints/invoices/routes.py

Invoice routes.

Includes:
- CRUD for manual invoices (converted invoices come from /estimates/<id>/invoices)
- Lifecycle actions: send, cancel, mark-paid
- Append-only payments
- Portfolio stats

IMPORTANT:
- "overdue" is derived at read time from the stored status; every response
  built by one request uses the same ``now``.
- amount_paid is always the sum of recorded payments. "Mark as paid" records
  a settling payment instead of overwriting amounts.
"""

from __future__ import annotations

from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ... import store
from ...engine import lifecycle
from ...engine.errors import ValidationError
from ...engine.numbering import INVOICE_PREFIX, document_number
from ...engine.summary import summarize_invoices
from ...models import Client, Invoice, InvoiceItem, Payment, Project
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
    utcnow,
)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")

TEXT_FIELDS = ("notes", "terms", "payment_terms")
EDITABLE_STATUSES = ("draft", "sent")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _build_items(raw_items: list) -> list[InvoiceItem]:
    return [
        InvoiceItem(**parse_item(raw, f"items[{i}]", InvoiceItem.CATEGORIES, default_category="other"))
        for i, raw in enumerate(raw_items)
    ]


def _apply_fields(invoice: Invoice, data: dict) -> None:
    for field in TEXT_FIELDS:
        if field in data:
            setattr(invoice, field, clean_text(data.get(field)))

    if "type" in data:
        invoice.type = require_choice(data.get("type"), "type", lifecycle.INVOICE_TYPES)

    if "due_date" in data:
        invoice.due_date = parse_datetime(data.get("due_date"), "due_date", required=True)

    if "tax_rate" in data:
        invoice.tax_rate = parse_decimal(
            data.get("tax_rate"), "tax_rate", minimum=0, default=current_app.config["DEFAULT_TAX_RATE"]
        )

    if "late_fee_rate" in data:
        invoice.late_fee_rate = parse_decimal(data.get("late_fee_rate"), "late_fee_rate", minimum=0)

    if "items" in data:
        invoice.items = _build_items(parse_list(data, "items"))


PRICED_FIELDS = frozenset({"items", "tax_rate"})


def _require_editable(invoice: Invoice) -> None:
    if invoice.status not in EDITABLE_STATUSES:
        raise ValidationError(f"A {invoice.status} invoice cannot be edited.", field="status")


def _apply_outcome(invoice: Invoice, outcome: lifecycle.PaymentOutcome) -> None:
    invoice.status = outcome.status
    invoice.amount_paid = outcome.amount_paid
    if outcome.paid_date is not None:
        invoice.paid_date = outcome.paid_date
    invoice.recalc_totals()


# ---------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------
@invoices_bp.route("/", methods=["GET"])
@login_required
def list_invoices():
    """List invoices; ?status= filters on the derived status."""
    now = utcnow()
    filters = {}
    project_id = parse_optional_int(request.args.get("project_id"), "project_id")
    if project_id is not None:
        filters["project_id"] = project_id

    invoices = store.list_by_owner(Invoice, **filters)

    status = clean_text(request.args.get("status"))
    if status:
        status = require_choice(status, "status", lifecycle.INVOICE_STATUSES)
        invoices = [inv for inv in invoices if inv.effective_status(now) == status]

    return jsonify([inv.to_dict(now, include_children=False) for inv in invoices])


@invoices_bp.route("/stats", methods=["GET"])
@login_required
def invoice_stats():
    now = utcnow()
    figures = (inv.figures() for inv in store.list_by_owner(Invoice))
    return jsonify(summarize_invoices(figures, now))


@invoices_bp.route("/", methods=["POST"])
@login_required
def create_invoice():
    data = json_body()
    now = utcnow()

    project = store.get_optional_owned(Project, parse_optional_int(data.get("project_id"), "project_id"))
    client = store.get_optional_owned(Client, parse_optional_int(data.get("client_id"), "client_id"))
    if client is None and project is not None:
        client = project.client

    invoice = Invoice(
        owner_id=current_user.id,
        project_id=project.id if project else None,
        client_id=client.id if client else None,
        invoice_number=document_number(INVOICE_PREFIX, now),
        status=lifecycle.INITIAL_STATUS[lifecycle.INVOICE],
        type="final",
        issue_date=now,
        due_date=now + timedelta(days=current_app.config["INVOICE_DUE_DAYS"]),
        payment_terms=f"Net {current_app.config['INVOICE_DUE_DAYS']} days",
        tax_rate=current_app.config["DEFAULT_TAX_RATE"],
    )
    _apply_fields(invoice, data)

    if client is not None:
        invoice.apply_snapshot(client.client_snapshot())
    invoice.apply_snapshot(current_user.contractor_snapshot())

    invoice.recalc_totals()
    store.create(invoice)
    return jsonify(invoice.to_dict(now)), 201


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@login_required
@owner_required(Invoice, "invoice_id")
def get_invoice(invoice):
    return jsonify(invoice.to_dict(utcnow()))


@invoices_bp.route("/<int:invoice_id>", methods=["PUT", "PATCH"])
@login_required
@owner_required(Invoice, "invoice_id")
def update_invoice(invoice):
    _require_editable(invoice)
    data = json_body()
    if invoice.payments and PRICED_FIELDS.intersection(data):
        # the total is what payments were recorded against
        raise ValidationError(
            "Items and tax rate cannot change once payments are recorded.", field="items"
        )
    before = store.snapshot(invoice)
    _apply_fields(invoice, data)
    invoice.recalc_totals()
    store.update(invoice, before)
    return jsonify(invoice.to_dict(utcnow()))


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
@login_required
@owner_required(Invoice, "invoice_id")
def delete_invoice(invoice):
    if invoice.payments:
        raise ValidationError("An invoice with recorded payments cannot be deleted; cancel it instead.")
    store.delete(invoice)
    return "", 204


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------
@invoices_bp.route("/<int:invoice_id>/send", methods=["POST"])
@login_required
@owner_required(Invoice, "invoice_id")
def send_invoice(invoice):
    now = utcnow()
    before = store.snapshot(invoice)
    invoice.status = lifecycle.transition(lifecycle.INVOICE, invoice.status, "sent")
    invoice.sent_at = now
    store.update(invoice, before, action="SEND")
    return jsonify(invoice.to_dict(now))


@invoices_bp.route("/<int:invoice_id>/cancel", methods=["POST"])
@login_required
@owner_required(Invoice, "invoice_id")
def cancel_invoice(invoice):
    before = store.snapshot(invoice)
    invoice.status = lifecycle.transition(lifecycle.INVOICE, invoice.status, "cancelled")
    store.update(invoice, before, action="CANCEL")
    return jsonify(invoice.to_dict(utcnow()))


@invoices_bp.route("/<int:invoice_id>/mark-paid", methods=["POST"])
@login_required
@owner_required(Invoice, "invoice_id")
def mark_invoice_paid(invoice):
    """Settle the outstanding balance with one payment and mark the invoice paid."""
    data = json_body()
    now = utcnow()
    before = store.snapshot(invoice)

    outcome = lifecycle.settle(invoice.state(), now)
    if outcome.amount > 0:
        invoice.payments.append(
            Payment(
                owner_id=current_user.id,
                amount=outcome.amount,
                payment_date=now,
                payment_method=require_choice(
                    data.get("payment_method"), "payment_method", Payment.METHODS, default="other"
                ),
                reference=clean_text(data.get("reference")),
                notes=clean_text(data.get("notes")) or "Marked as paid",
            )
        )
    _apply_outcome(invoice, outcome)
    store.update(invoice, before, action="MARK_PAID")
    return jsonify(invoice.to_dict(now))


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
@invoices_bp.route("/<int:invoice_id>/payments", methods=["GET"])
@login_required
@owner_required(Invoice, "invoice_id")
def list_payments(invoice):
    return jsonify([p.to_dict() for p in invoice.payments])


@invoices_bp.route("/<int:invoice_id>/payments", methods=["POST"])
@login_required
@owner_required(Invoice, "invoice_id")
def record_payment(invoice):
    """Record a payment; the invoice flips to paid once the balance reaches 0."""
    data = json_body()
    now = utcnow()
    before = store.snapshot(invoice)

    amount = parse_decimal(data.get("amount"), "amount", required=True)
    outcome = lifecycle.apply_payment(invoice.state(), amount, now)

    payment = Payment(
        owner_id=current_user.id,
        amount=outcome.amount,
        payment_date=parse_datetime(data.get("payment_date"), "payment_date") or now,
        payment_method=require_choice(data.get("payment_method"), "payment_method", Payment.METHODS, default="other"),
        reference=clean_text(data.get("reference")),
        notes=clean_text(data.get("notes")),
    )
    invoice.payments.append(payment)
    _apply_outcome(invoice, outcome)

    store.update(invoice, before, action="PAYMENT")
    return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict(now)}), 201
