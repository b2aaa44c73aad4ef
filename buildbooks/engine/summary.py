"""Invoice portfolio figures for the dashboard, evaluated at a single ``now``."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from .lifecycle import invoice_status
from .money import ZERO, as_float, money


@dataclass(frozen=True)
class InvoiceFigures:
    status: str
    total: Decimal
    balance: Decimal
    due_date: datetime | None
    paid_date: datetime | None


def summarize_invoices(invoices: Iterable[InvoiceFigures], now: datetime) -> dict:
    total_amount = pending_amount = overdue_amount = paid_this_month = ZERO
    count = pending_count = overdue_count = 0

    for inv in invoices:
        count += 1
        total_amount += inv.total
        status = invoice_status(inv.status, inv.due_date, inv.balance, now)

        if status == "sent":
            pending_count += 1
            pending_amount += inv.balance
        elif status == "overdue":
            overdue_count += 1
            overdue_amount += inv.balance
        elif status == "paid" and inv.paid_date is not None:
            if (inv.paid_date.year, inv.paid_date.month) == (now.year, now.month):
                paid_this_month += inv.total

    return {
        "total_invoices": count,
        "total_amount": as_float(money(total_amount)),
        "pending_amount": as_float(money(pending_amount)),
        "pending_count": pending_count,
        "overdue_amount": as_float(money(overdue_amount)),
        "overdue_count": overdue_count,
        "paid_this_month": as_float(money(paid_this_month)),
    }
