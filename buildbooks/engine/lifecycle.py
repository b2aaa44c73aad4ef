"""
buildbooks/engine/lifecycle.py

Document lifecycle manager: legal status transitions per document kind,
read-time derived statuses, payment application and change-order responses.

Stored vs derived status:
- Invoice "overdue" and change-order "expired" are NEVER persisted. They are
  computed on every read from the stored status, the due/expiry date and a
  caller-supplied ``now``. Callers rendering several documents together must
  pass the same ``now`` to all of them.
- Transitions are validated against the stored status. An overdue invoice
  is stored as "sent", so it still accepts payments and can be cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from .aggregator import LineItemInput, effective_total
from .errors import InvalidTransition, ValidationError
from .money import ZERO, money, to_decimal

ESTIMATE = "estimate"
INVOICE = "invoice"
CHANGE_ORDER = "change_order"
PURCHASE = "purchase"

ESTIMATE_STATUSES = ("draft", "sent", "approved", "rejected")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")
INVOICE_TYPES = ("progress", "final", "change_order", "retainer")
CHANGE_ORDER_STATUSES = ("pending", "approved", "declined", "expired")
CLIENT_RESPONSES = ("approved", "declined")
PAYMENT_METHODS = ("cash", "check", "credit_card", "bank_transfer", "other")

# Stored-status transition tables. Derived statuses never appear as keys.
TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    ESTIMATE: {
        "draft": frozenset({"sent"}),
        "sent": frozenset({"approved", "rejected"}),
        "approved": frozenset(),
        "rejected": frozenset(),
    },
    INVOICE: {
        "draft": frozenset({"sent", "cancelled"}),
        "sent": frozenset({"paid", "cancelled"}),
        "paid": frozenset(),
        "cancelled": frozenset(),
    },
    CHANGE_ORDER: {
        "pending": frozenset({"approved", "declined"}),
        "approved": frozenset(),
        "declined": frozenset(),
    },
    PURCHASE: {
        "pending": frozenset({"paid"}),
        "paid": frozenset(),
    },
}

INITIAL_STATUS = {ESTIMATE: "draft", INVOICE: "draft", CHANGE_ORDER: "pending", PURCHASE: "pending"}


def can_transition(kind: str, current: str | None, requested: str) -> bool:
    return requested in TRANSITIONS[kind].get(current or "", frozenset())


def transition(kind: str, current: str | None, requested: str) -> str:
    """Validate a stored-status change and return the new status."""
    if not can_transition(kind, current, requested):
        raise InvalidTransition(kind, current, requested)
    return requested


# ---------------------------------------------------------------------
# Derived statuses
# ---------------------------------------------------------------------
def invoice_status(stored: str, due_date: datetime | None, balance, now: datetime) -> str:
    if stored == "sent" and due_date is not None and due_date < now and to_decimal(balance) > 0:
        return "overdue"
    return stored


def days_overdue(due_date: datetime | None, now: datetime) -> int:
    if due_date is None or due_date >= now:
        return 0
    delta = now - due_date
    # partial days count as a full day
    return delta.days + (1 if delta.seconds or delta.microseconds else 0)


def change_order_status(
    stored: str,
    expires_at: datetime | None,
    client_response: str | None,
    now: datetime,
) -> str:
    if client_response:
        return stored
    if stored == "pending" and expires_at is not None and expires_at < now:
        return "expired"
    return stored


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class InvoiceState:
    status: str
    total: Decimal
    amount_paid: Decimal


@dataclass(frozen=True)
class PaymentOutcome:
    amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str
    paid_date: datetime | None


def apply_payment(state: InvoiceState, amount, now: datetime) -> PaymentOutcome:
    """
    Apply a payment to an invoice.

    Only invoices stored as "sent" (including derived "overdue") accept
    payments. Overpayment is accepted: balance goes negative (a credit)
    and the invoice is marked paid.
    """
    value = money(to_decimal(amount, "amount"))
    if value <= 0:
        raise ValidationError("Payment amount must be greater than 0.", field="amount")

    if state.status != "sent":
        raise InvalidTransition(INVOICE, state.status, "paid")

    amount_paid = money(to_decimal(state.amount_paid) + value)
    balance = money(to_decimal(state.total) - amount_paid)

    if balance <= 0:
        return PaymentOutcome(value, amount_paid, balance, transition(INVOICE, state.status, "paid"), now)
    return PaymentOutcome(value, amount_paid, balance, state.status, None)


def settle(state: InvoiceState, now: datetime) -> PaymentOutcome:
    """Owner "mark as paid": a settling payment for the whole outstanding balance."""
    outstanding = money(to_decimal(state.total) - to_decimal(state.amount_paid))
    if outstanding <= ZERO:
        # Already covered by payments; only the status needs to catch up.
        status = transition(INVOICE, state.status, "paid")
        return PaymentOutcome(ZERO, money(state.amount_paid), outstanding, status, now)
    return apply_payment(state, outstanding, now)


# ---------------------------------------------------------------------
# Change orders
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ChangeOrderState:
    status: str
    expires_at: datetime | None
    client_response: str | None


def respond_to_change_order(state: ChangeOrderState, response: str, now: datetime) -> str:
    """
    Validate a client response and return the resulting stored status.

    The response is captured at most once and only before expiry.
    """
    if response not in CLIENT_RESPONSES:
        raise ValidationError("Response must be 'approved' or 'declined'.", field="response")

    if state.client_response:
        raise InvalidTransition(CHANGE_ORDER, state.client_response, response)

    current = change_order_status(state.status, state.expires_at, state.client_response, now)
    return transition(CHANGE_ORDER, current, response)


CHANGE_ITEM_TYPES = ("addition", "deletion", "modification")


def signed_change_amount(items: Iterable[tuple[str, LineItemInput]]) -> Decimal:
    """Sum of change order lines; deletion lines count against the contract."""
    amount = ZERO
    for item_type, line in items:
        if item_type == "deletion":
            amount -= effective_total(line)
        else:
            amount += effective_total(line)
    return money(amount)


def new_total_amount(original_amount, change_amount) -> Decimal:
    """Change amount is signed: deletions reduce the contract value."""
    return money(to_decimal(original_amount, "original_amount") + to_decimal(change_amount, "change_amount"))
