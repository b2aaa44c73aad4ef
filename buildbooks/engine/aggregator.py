"""
buildbooks/engine/aggregator.py

Line-item aggregation.

A line reaches the aggregator in one of two shapes:
- RawLine: only quantity and unit price are known, total = q * p.
- PrecomputedLine: the caller already priced the line (explicit override, or
  margin / waste-factor applied upstream). Its total is authoritative.

IMPORTANT:
- Zero or missing quantity/price gives a 0 total, never an error.
- Negative quantities/prices are NOT rejected here. The API layer validates
  input before building lines.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Union

from .errors import ValidationError
from .money import ZERO, money, to_decimal

LINE_CATEGORIES = ("materials", "equipment", "labor", "subcontractor", "other")


@dataclass(frozen=True)
class RawLine:
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class PrecomputedLine:
    total: Decimal

    def __post_init__(self):
        if self.total < 0:
            raise ValidationError("Line total override must be >= 0.", field="total")


LineItemInput = Union[RawLine, PrecomputedLine]


def effective_total(line: LineItemInput) -> Decimal:
    """Total of a single line, rounded to the cent."""
    if isinstance(line, PrecomputedLine):
        return money(line.total)
    if not line.quantity or not line.unit_price:
        return ZERO
    return money(line.quantity * line.unit_price)


def adjusted_total(quantity, unit_price, margin=None, waste_factor=None) -> Decimal:
    """
    Price a line with waste factor and margin (both percents).

    Waste inflates the quantity, margin marks up the price:
        q * (1 + waste/100) * p * (1 + margin/100)
    """
    q = to_decimal(quantity, "quantity")
    p = to_decimal(unit_price, "unit_price")
    waste = to_decimal(waste_factor, "waste_factor")
    margin_pct = to_decimal(margin, "margin")
    return money(q * (1 + waste / 100) * p * (1 + margin_pct / 100))


def line_input(quantity=None, unit_price=None, total=None, margin=None, waste_factor=None) -> LineItemInput:
    """
    Build the tagged line from loosely typed values (form/JSON/ORM).

    Precedence: explicit total > margin/waste adjustment > raw q * p.
    """
    if total is not None and total != "":
        return PrecomputedLine(total=to_decimal(total, "total"))

    if to_decimal(margin, "margin") or to_decimal(waste_factor, "waste_factor"):
        return PrecomputedLine(total=adjusted_total(quantity, unit_price, margin, waste_factor))

    return RawLine(
        quantity=to_decimal(quantity, "quantity"),
        unit_price=to_decimal(unit_price, "unit_price"),
    )


def section_subtotal(lines: Iterable[LineItemInput]) -> Decimal:
    total = ZERO
    for line in lines:
        total += effective_total(line)
    return money(total)


def document_subtotal(sections: Iterable[Iterable[LineItemInput]]) -> Decimal:
    """Roll sections up into the document subtotal."""
    return money(sum((section_subtotal(lines) for lines in sections), ZERO))
