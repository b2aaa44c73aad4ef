"""
buildbooks/engine/totals.py

Tax & totals calculator.

Rounding order is part of the contract (it can differ by one cent on
boundary values otherwise):
  1) subtotal is rounded to the cent (ROUND_HALF_UP)
  2) tax = round(rounded_subtotal * rate / 100)
  3) total = rounded_subtotal + rounded_tax
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .aggregator import LineItemInput, section_subtotal
from .errors import ArithmeticInconsistency, ValidationError
from .money import CENT, as_float, money, percent_of, to_decimal

logger = logging.getLogger(__name__)

# New Jersey sales tax
DEFAULT_TAX_RATE = Decimal("6.625")


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": as_float(self.subtotal),
            "tax": as_float(self.tax),
            "total": as_float(self.total),
            "tax_rate": float(self.tax_rate),
        }


def normalize_tax_rate(tax_rate) -> Decimal:
    if tax_rate is None or tax_rate == "":
        return DEFAULT_TAX_RATE
    rate = to_decimal(tax_rate, "tax_rate")
    if rate < 0:
        raise ValidationError("Tax rate must be >= 0.", field="tax_rate")
    return rate


def totals_from_subtotal(subtotal, tax_rate=None) -> Totals:
    rate = normalize_tax_rate(tax_rate)
    rounded_subtotal = money(subtotal)
    tax = money(percent_of(rounded_subtotal, rate))
    return Totals(
        subtotal=rounded_subtotal,
        tax=tax,
        total=money(rounded_subtotal + tax),
        tax_rate=rate,
    )


def compute_totals(lines: Iterable[LineItemInput], tax_rate=None) -> Totals:
    return totals_from_subtotal(section_subtotal(lines), tax_rate)


def reconcile(label: str, stored, recomputed: Decimal) -> Decimal:
    """
    Compare a stored derived amount against its recomputed value.

    A mismatch is logged and the recomputed value is returned; the
    aggregator/calculator are the source of truth for derived fields.
    """
    if stored is None:
        return recomputed
    if abs(to_decimal(stored) - recomputed) >= CENT:
        err = ArithmeticInconsistency(label, stored, recomputed)
        logger.warning(err.message, extra={"code": err.code, "label": label})
    return recomputed
