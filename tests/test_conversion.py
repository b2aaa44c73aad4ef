"""
Unit tests for estimate -> invoice conversion, numbering and invoice summaries.
"""

import random
import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from buildbooks.engine.aggregator import PrecomputedLine, RawLine
from buildbooks.engine.conversion import EstimateSource, SourceItem, convert_estimate_to_invoice
from buildbooks.engine.errors import NotFound, ValidationError
from buildbooks.engine.numbering import approval_token, change_order_number, document_number
from buildbooks.engine.summary import InvoiceFigures, summarize_invoices

NOW = datetime(2026, 10, 17, 9, 30)


def _item(description, line, total, category="materials"):
    quantity = line.quantity if isinstance(line, RawLine) else Decimal("1")
    unit_price = line.unit_price if isinstance(line, RawLine) else total
    return SourceItem(
        description=description,
        quantity=quantity,
        unit="ea",
        unit_price=unit_price,
        total=total,
        category=category,
        line=line,
    )


def _estimate(sections=None, stored_subtotal=None, **snapshot):
    if sections is None:
        sections = [
            [_item("Cabinet", RawLine(Decimal("2"), Decimal("250.00")), Decimal("500.00"))],
            [_item("Install", PrecomputedLine(Decimal("250.00")), Decimal("250.00"), "labor")],
        ]
    return EstimateSource(
        id=7,
        estimate_number="EST-202610-123",
        project_id=3,
        client_id=4,
        tax_rate=Decimal("6.625"),
        sections=sections,
        snapshot=snapshot,
        stored_subtotal=stored_subtotal,
        terms="Net 30",
    )


class TestFinalBilling:
    """Final billing invoices the whole estimate subtotal."""

    def test_totals(self):
        draft = convert_estimate_to_invoice(_estimate(), "final", now=NOW)
        assert draft.totals.subtotal == Decimal("750.00")
        assert draft.totals.tax == Decimal("49.69")
        assert draft.totals.total == Decimal("799.69")
        assert draft.balance == Decimal("799.69")
        assert draft.amount_paid == Decimal("0.00")

    def test_defaults(self):
        draft = convert_estimate_to_invoice(_estimate(), "final", now=NOW)
        assert draft.status == "draft"
        assert draft.type == "final"
        assert draft.issue_date == NOW
        assert draft.due_date == NOW + timedelta(days=30)
        assert draft.payment_terms == "Net 30 days"
        assert draft.progress_billing is None
        assert "EST-202610-123" in draft.notes
        assert draft.estimate_id == 7
        assert (draft.project_id, draft.client_id) == (3, 4)

    def test_items_are_flattened_in_order(self):
        draft = convert_estimate_to_invoice(_estimate(), "final", now=NOW)
        assert [i.description for i in draft.items] == ["Cabinet", "Install"]
        assert [i.total for i in draft.items] == [Decimal("500.00"), Decimal("250.00")]
        assert draft.items[1].category == "labor"

    def test_snapshot_copied_verbatim(self):
        draft = convert_estimate_to_invoice(
            _estimate(client_name="Jane", contractor_license="LIC-9"), "final", now=NOW
        )
        assert draft.snapshot["client_name"] == "Jane"
        assert draft.snapshot["contractor_license"] == "LIC-9"
        assert draft.snapshot["client_email"] is None

    def test_invoice_number_format(self):
        draft = convert_estimate_to_invoice(_estimate(), "final", now=NOW, rng=random.Random(3))
        assert re.fullmatch(r"INV-202610-\d{3}", draft.invoice_number)

    def test_custom_due_days(self):
        draft = convert_estimate_to_invoice(_estimate(), "final", now=NOW, due_in_days=15)
        assert draft.due_date == NOW + timedelta(days=15)
        assert draft.payment_terms == "Net 15 days"

    def test_stale_stored_subtotal_is_ignored(self):
        """The subtotal is recomputed from the lines, not read from storage."""
        draft = convert_estimate_to_invoice(_estimate(stored_subtotal=Decimal("700.00")), "final", now=NOW)
        assert draft.totals.subtotal == Decimal("750.00")


class TestProgressBilling:
    """Progress billing invoices a percentage of the subtotal."""

    def test_half(self):
        """50% of 750.00 is 375.00 + 24.84 tax = 399.84."""
        draft = convert_estimate_to_invoice(_estimate(), "progress", 50, now=NOW)
        assert draft.totals.subtotal == Decimal("375.00")
        assert draft.totals.tax == Decimal("24.84")
        assert draft.totals.total == Decimal("399.84")
        assert draft.type == "progress"

    def test_progress_record(self):
        draft = convert_estimate_to_invoice(_estimate(), "progress", "50", now=NOW)
        assert draft.progress_billing == {
            "phase": "Phase 50%",
            "percentage": Decimal("50"),
            "amount": Decimal("375.00"),
        }

    def test_thirty_percent_of_a_thousand(self):
        sections = [[_item("Job", RawLine(Decimal("1"), Decimal("1000.00")), Decimal("1000.00"))]]
        draft = convert_estimate_to_invoice(_estimate(sections), "progress", "30", now=NOW)
        assert draft.totals.subtotal == Decimal("300.00")

    def test_hundred_percent_allowed(self):
        draft = convert_estimate_to_invoice(_estimate(), "progress", 100, now=NOW)
        assert draft.totals.total == Decimal("799.69")

    @pytest.mark.parametrize("pct", [None, "", 0, -10, "100.01", 150])
    def test_percentage_out_of_range(self, pct):
        with pytest.raises(ValidationError):
            convert_estimate_to_invoice(_estimate(), "progress", pct, now=NOW)


class TestConversionErrors:
    def test_unknown_billing_type(self):
        with pytest.raises(ValidationError):
            convert_estimate_to_invoice(_estimate(), "retainer", now=NOW)

    def test_missing_estimate(self):
        with pytest.raises(NotFound):
            convert_estimate_to_invoice(None, "final", now=NOW)


class TestNumbering:
    def test_document_number(self):
        assert re.fullmatch(r"EST-202610-\d{3}", document_number("EST", NOW, random.Random(0)))

    def test_change_order_number_has_day(self):
        assert re.fullmatch(r"CO-20261017-\d{3}", change_order_number(NOW, random.Random(0)))

    def test_deterministic_with_seeded_rng(self):
        assert document_number("INV", NOW, random.Random(5)) == document_number("INV", NOW, random.Random(5))

    def test_approval_tokens_are_unique_and_url_safe(self):
        tokens = {approval_token() for _ in range(20)}
        assert len(tokens) == 20
        assert all(re.fullmatch(r"[A-Za-z0-9_\-]{32}", t) for t in tokens)


class TestSummarizeInvoices:
    """Portfolio figures evaluated at one instant."""

    def _inv(self, status, total, balance, due_days, paid_date=None):
        return InvoiceFigures(
            status=status,
            total=Decimal(total),
            balance=Decimal(balance),
            due_date=NOW + timedelta(days=due_days),
            paid_date=paid_date,
        )

    def test_buckets(self):
        invoices = [
            self._inv("sent", "100", "100", 5),
            self._inv("sent", "200", "150", -5),
            self._inv("paid", "300", "0", -20, paid_date=NOW - timedelta(days=1)),
            self._inv("paid", "400", "0", -60, paid_date=datetime(2026, 8, 1)),
            self._inv("draft", "50", "50", -5),
        ]
        stats = summarize_invoices(invoices, NOW)
        assert stats == {
            "total_invoices": 5,
            "total_amount": 1050.0,
            "pending_amount": 100.0,
            "pending_count": 1,
            "overdue_amount": 150.0,
            "overdue_count": 1,
            "paid_this_month": 300.0,
        }

    def test_empty(self):
        assert summarize_invoices([], NOW)["total_invoices"] == 0
