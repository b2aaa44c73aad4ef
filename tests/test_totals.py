"""
Unit tests for the tax & totals calculator.

Verifies:
- Default New Jersey rate
- Rounding order: subtotal, then tax on the rounded subtotal, then the sum
- Idempotence of recomputation
- Reconciliation of stored vs recomputed amounts
"""

import logging
from decimal import Decimal

import pytest

from buildbooks.engine.aggregator import PrecomputedLine, RawLine
from buildbooks.engine.errors import ValidationError
from buildbooks.engine.totals import DEFAULT_TAX_RATE, compute_totals, reconcile, totals_from_subtotal


class TestTotalsFromSubtotal:
    """Tests for totals_from_subtotal."""

    def test_reference_example(self):
        """750.00 at 6.625% is 49.69 tax, 799.69 total."""
        totals = totals_from_subtotal(Decimal("750.00"))
        assert totals.subtotal == Decimal("750.00")
        assert totals.tax == Decimal("49.69")
        assert totals.total == Decimal("799.69")
        assert totals.tax_rate == DEFAULT_TAX_RATE

    def test_default_rate_applies_to_none(self):
        assert totals_from_subtotal(Decimal("100"), None).tax_rate == Decimal("6.625")

    def test_zero_rate(self):
        totals = totals_from_subtotal(Decimal("100"), 0)
        assert totals.tax == Decimal("0.00")
        assert totals.total == Decimal("100.00")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            totals_from_subtotal(Decimal("100"), "-1")

    def test_subtotal_rounded_before_tax(self):
        """0.005 rounds to 0.01 first; at 100% tax that gives 0.02, not 0.01."""
        totals = totals_from_subtotal(Decimal("0.005"), 100)
        assert totals.subtotal == Decimal("0.01")
        assert totals.tax == Decimal("0.01")
        assert totals.total == Decimal("0.02")

    def test_total_is_sum_of_rounded_parts(self):
        totals = totals_from_subtotal(Decimal("375.00"))
        assert totals.tax == Decimal("24.84")
        assert totals.total == totals.subtotal + totals.tax

    def test_recomputation_is_idempotent(self):
        """Feeding the result back in changes nothing."""
        first = totals_from_subtotal(Decimal("1234.567"), "8.875")
        assert totals_from_subtotal(first.subtotal, first.tax_rate) == first

    def test_to_dict_uses_floats(self):
        data = totals_from_subtotal(Decimal("750")).to_dict()
        assert data == {"subtotal": 750.0, "tax": 49.69, "total": 799.69, "tax_rate": 6.625}


class TestComputeTotals:
    def test_from_lines(self):
        lines = [RawLine(Decimal("2"), Decimal("250.00")), PrecomputedLine(Decimal("250.00"))]
        assert compute_totals(lines).total == Decimal("799.69")

    def test_no_lines(self):
        totals = compute_totals([])
        assert (totals.subtotal, totals.tax, totals.total) == (Decimal("0.00"),) * 3


class TestReconcile:
    """Tests for stored vs recomputed reconciliation."""

    def test_mismatch_is_logged_and_recomputed_wins(self, caplog):
        with caplog.at_level(logging.WARNING, logger="buildbooks.engine.totals"):
            result = reconcile("estimate 1 total", Decimal("10.00"), Decimal("10.50"))
        assert result == Decimal("10.50")
        assert any("estimate 1 total" in r.getMessage() for r in caplog.records)

    def test_match_is_silent(self, caplog):
        with caplog.at_level(logging.WARNING, logger="buildbooks.engine.totals"):
            result = reconcile("estimate 1 total", Decimal("10.00"), Decimal("10.00"))
        assert result == Decimal("10.00")
        assert not caplog.records

    def test_missing_stored_value(self):
        assert reconcile("x", None, Decimal("1.00")) == Decimal("1.00")
