"""
buildbooks/engine/conversion.py

Estimate -> invoice conversion (progress or final billing).

The billed base is the estimate's pre-tax subtotal (all of it for final
billing, ``progress_percentage`` of it for progress billing). Tax and total
are recomputed on that base with the estimate's tax rate; the estimate's own
tax figure is never reused.

Pure: no I/O. The caller persists the returned InvoiceDraft and assigns its
identifier. Marking the source estimate and creating the invoice in one
transaction is the caller's responsibility.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Sequence

from .aggregator import LineItemInput, document_subtotal
from .errors import NotFound, ValidationError
from .money import HUNDRED, ZERO, money, to_decimal
from .numbering import INVOICE_PREFIX, document_number
from .totals import Totals, reconcile, totals_from_subtotal

BILLING_TYPES = ("progress", "final")

CLIENT_SNAPSHOT_FIELDS = ("client_name", "client_address", "client_email", "client_phone")
CONTRACTOR_SNAPSHOT_FIELDS = (
    "contractor_name",
    "contractor_address",
    "contractor_phone",
    "contractor_email",
    "contractor_license",
)
SNAPSHOT_FIELDS = CLIENT_SNAPSHOT_FIELDS + CONTRACTOR_SNAPSHOT_FIELDS

DEFAULT_DUE_DAYS = 30


@dataclass(frozen=True)
class SourceItem:
    description: str
    quantity: Decimal
    unit: str | None
    unit_price: Decimal
    total: Decimal
    category: str | None
    line: LineItemInput


@dataclass(frozen=True)
class EstimateSource:
    """What the conversion needs to know about an estimate."""

    id: int
    estimate_number: str | None
    project_id: int | None
    client_id: int | None
    tax_rate: Decimal
    sections: Sequence[Sequence[SourceItem]]
    snapshot: dict = field(default_factory=dict)
    stored_subtotal: Decimal | None = None
    terms: str | None = None


@dataclass
class InvoiceItemDraft:
    description: str
    quantity: Decimal
    unit: str | None
    unit_price: Decimal
    total: Decimal
    category: str | None


@dataclass
class InvoiceDraft:
    invoice_number: str
    estimate_id: int
    project_id: int | None
    client_id: int | None
    type: str
    status: str
    issue_date: datetime
    due_date: datetime
    payment_terms: str
    items: list[InvoiceItemDraft]
    totals: Totals
    amount_paid: Decimal
    balance: Decimal
    progress_billing: dict | None
    snapshot: dict
    notes: str | None
    terms: str | None


def _billing_percentage(billing_type: str, progress_percentage) -> Decimal:
    if billing_type not in BILLING_TYPES:
        raise ValidationError("Billing type must be 'progress' or 'final'.", field="billing_type")

    if billing_type == "final":
        return HUNDRED

    if progress_percentage is None or progress_percentage == "":
        raise ValidationError("Progress billing requires a percentage.", field="progress_percentage")
    pct = to_decimal(progress_percentage, "progress_percentage")
    if pct <= 0 or pct > HUNDRED:
        raise ValidationError("Progress percentage must be in (0, 100].", field="progress_percentage")
    return pct


def billed_base(subtotal, percentage) -> Decimal:
    return money(to_decimal(subtotal) * to_decimal(percentage) / HUNDRED)


def convert_estimate_to_invoice(
    estimate: EstimateSource | None,
    billing_type: str,
    progress_percentage=None,
    *,
    now: datetime,
    due_in_days: int = DEFAULT_DUE_DAYS,
    rng=None,
) -> InvoiceDraft:
    if estimate is None:
        raise NotFound("Estimate")

    pct = _billing_percentage(billing_type, progress_percentage)

    subtotal = document_subtotal([item.line for item in section] for section in estimate.sections)
    subtotal = reconcile(f"estimate {estimate.id} subtotal", estimate.stored_subtotal, subtotal)

    base = billed_base(subtotal, pct)
    totals = totals_from_subtotal(base, estimate.tax_rate)

    items = [
        InvoiceItemDraft(
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            total=item.total,
            category=item.category,
        )
        for section in estimate.sections
        for item in section
    ]

    progress_billing = None
    if billing_type == "progress":
        progress_billing = {
            "phase": f"Phase {pct.normalize():f}%",
            "percentage": pct,
            "amount": base,
        }

    notes = None
    if estimate.estimate_number:
        notes = f"Invoice generated from estimate {estimate.estimate_number}"

    return InvoiceDraft(
        invoice_number=document_number(INVOICE_PREFIX, now, rng),
        estimate_id=estimate.id,
        project_id=estimate.project_id,
        client_id=estimate.client_id,
        type=billing_type,
        status="draft",
        issue_date=now,
        due_date=now + timedelta(days=due_in_days),
        payment_terms=f"Net {due_in_days} days",
        items=items,
        totals=totals,
        amount_paid=ZERO,
        balance=totals.total,
        progress_billing=progress_billing,
        snapshot={name: estimate.snapshot.get(name) for name in SNAPSHOT_FIELDS},
        notes=notes,
        terms=estimate.terms,
    )
