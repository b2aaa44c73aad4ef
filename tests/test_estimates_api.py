"""
API tests for estimates: totals, snapshots, lifecycle and conversion to invoices.
"""

import pytest


class TestEstimateTotals:
    """Server-side recomputation of sections and totals."""

    def test_created_totals(self, estimate):
        assert estimate["estimate_number"].startswith("EST-")
        assert estimate["status"] == "draft"
        assert estimate["subtotal"] == 750.0
        assert estimate["tax_rate"] == 6.625
        assert estimate["tax"] == 49.69
        assert estimate["total"] == 799.69

    def test_section_and_item_totals(self, estimate):
        section = estimate["sections"][0]
        assert section["subtotal"] == 750.0
        assert [i["total"] for i in section["items"]] == [500.0, 250.0]

    def test_margin_and_waste_priced(self, owner):
        response = owner.post(
            "/estimates/",
            json={
                "name": "Deck",
                "sections": [
                    {"name": "Boards", "items": [
                        {"description": "Board", "quantity": 10, "unit_price": "5", "margin": 20, "waste_factor": 10}
                    ]}
                ],
            },
        )
        assert response.get_json()["subtotal"] == 66.0

    def test_edit_recomputes(self, owner, estimate):
        response = owner.patch(
            f"/estimates/{estimate['id']}",
            json={"sections": [{"name": "Only", "items": [{"description": "X", "quantity": 1, "unit_price": "100"}]}]},
        )
        data = response.get_json()
        assert data["subtotal"] == 100.0
        assert data["tax"] == 6.63
        assert data["total"] == 106.63

    def test_custom_tax_rate(self, owner, estimate):
        data = owner.patch(f"/estimates/{estimate['id']}", json={"tax_rate": "0"}).get_json()
        assert data["tax"] == 0.0
        assert data["total"] == 750.0

    @pytest.mark.parametrize("field,value", [("quantity", -1), ("unit_price", "-0.01"), ("total", "-5")])
    def test_negative_inputs_rejected(self, owner, field, value):
        item = {"description": "Bad", "quantity": 1, "unit_price": "1", field: value}
        response = owner.post("/estimates/", json={"name": "E", "sections": [{"items": [item]}]})
        assert response.status_code == 400
        assert response.get_json()["field"] == f"sections[0].items[0].{field}"

    def test_explicit_section_order_zero_kept(self, owner):
        response = owner.post(
            "/estimates/",
            json={
                "name": "Addition",
                "sections": [
                    {"name": "Framing", "order": 1, "items": []},
                    {"name": "Demo", "order": 0, "items": []},
                ],
            },
        )
        assert response.status_code == 201
        sections = owner.get(f"/estimates/{response.get_json()['id']}").get_json()["sections"]
        assert [(s["name"], s["order"]) for s in sections] == [("Demo", 0), ("Framing", 1)]

    def test_section_order_defaults_to_position(self, owner):
        response = owner.post("/estimates/", json={"name": "E", "sections": [{"name": "A"}, {"name": "B"}]})
        assert [s["order"] for s in response.get_json()["sections"]] == [0, 1]

    def test_name_required(self, owner):
        assert owner.post("/estimates/", json={}).status_code == 400


class TestEstimateSnapshots:
    def test_snapshots_captured(self, estimate):
        assert estimate["client_name"] == "Jane Client"
        assert estimate["client_email"] == "jane@example.com"
        assert estimate["contractor_name"] == "Owner Builders"
        assert estimate["contractor_license"] == "LIC-1"
        assert estimate["project_name"] == "Kitchen Remodel"

    def test_snapshot_survives_client_edit(self, owner, estimate):
        owner.patch(f"/clients/{estimate['client_id']}", json={"name": "Renamed"})
        assert owner.get(f"/estimates/{estimate['id']}").get_json()["client_name"] == "Jane Client"


class TestEstimateLifecycle:
    """draft -> sent -> approved | rejected."""

    def test_cannot_approve_draft(self, owner, estimate):
        response = owner.post(f"/estimates/{estimate['id']}/approve")
        assert response.status_code == 409
        body = response.get_json()
        assert (body["current"], body["requested"]) == ("draft", "approved")

    def test_send_then_approve_grows_budget(self, owner, estimate, project):
        sent = owner.post(f"/estimates/{estimate['id']}/send").get_json()
        assert sent["status"] == "sent"
        assert sent["sent_at"]

        approved = owner.post(f"/estimates/{estimate['id']}/approve").get_json()
        assert approved["status"] == "approved"
        assert owner.get(f"/projects/{project['id']}").get_json()["estimated_cost"] == 1799.69

    def test_send_twice_rejected(self, owner, estimate):
        owner.post(f"/estimates/{estimate['id']}/send")
        assert owner.post(f"/estimates/{estimate['id']}/send").status_code == 409

    def test_reject(self, owner, estimate, project):
        owner.post(f"/estimates/{estimate['id']}/send")
        rejected = owner.post(f"/estimates/{estimate['id']}/reject").get_json()
        assert rejected["status"] == "rejected"
        assert owner.post(f"/estimates/{estimate['id']}/approve").status_code == 409
        assert owner.get(f"/projects/{project['id']}").get_json()["estimated_cost"] == 1000.0

    def test_edit_keeps_status(self, owner, estimate):
        owner.post(f"/estimates/{estimate['id']}/send")
        data = owner.patch(f"/estimates/{estimate['id']}", json={"notes": "updated"}).get_json()
        assert data["status"] == "sent"

    def test_other_owner_cannot_act(self, intruder, estimate):
        assert intruder.post(f"/estimates/{estimate['id']}/send").status_code == 404


class TestConversion:
    """POST /estimates/<id>/invoices."""

    def test_final_invoice(self, owner, estimate):
        response = owner.post(f"/estimates/{estimate['id']}/invoices", json={"billing_type": "final"})
        assert response.status_code == 201
        invoice = response.get_json()
        assert invoice["invoice_number"].startswith("INV-")
        assert invoice["estimate_id"] == estimate["id"]
        assert invoice["status"] == "draft"
        assert invoice["type"] == "final"
        assert (invoice["subtotal"], invoice["tax"], invoice["total"]) == (750.0, 49.69, 799.69)
        assert invoice["balance"] == 799.69
        assert invoice["amount_paid"] == 0.0
        assert invoice["payment_terms"] == "Net 30 days"
        assert invoice["client_name"] == "Jane Client"
        assert invoice["contractor_license"] == "LIC-1"
        assert [i["total"] for i in invoice["items"]] == [500.0, 250.0]
        assert estimate["estimate_number"] in invoice["notes"]

    def test_progress_invoice(self, owner, estimate):
        invoice = owner.post(
            f"/estimates/{estimate['id']}/invoices",
            json={"billing_type": "progress", "progress_percentage": 50},
        ).get_json()
        assert (invoice["subtotal"], invoice["tax"], invoice["total"]) == (375.0, 24.84, 399.84)
        assert invoice["progress_billing"] == {"phase": "Phase 50%", "percentage": 50.0, "amount": 375.0}

    def test_invalid_percentage_creates_nothing(self, owner, estimate):
        response = owner.post(
            f"/estimates/{estimate['id']}/invoices",
            json={"billing_type": "progress", "progress_percentage": 0},
        )
        assert response.status_code == 400
        assert owner.get("/invoices/").get_json() == []

    def test_unknown_estimate(self, owner):
        assert owner.post("/estimates/999/invoices", json={"billing_type": "final"}).status_code == 404

    def test_other_owner_cannot_convert(self, intruder, estimate):
        response = intruder.post(f"/estimates/{estimate['id']}/invoices", json={"billing_type": "final"})
        assert response.status_code == 404

    def test_idempotency_key_replays_invoice(self, owner, estimate):
        """A retried conversion with the same key returns the first invoice."""
        url = f"/estimates/{estimate['id']}/invoices"
        headers = {"Idempotency-Key": "retry-1"}
        first = owner.post(url, json={"billing_type": "final"}, headers=headers)
        second = owner.post(url, json={"billing_type": "final"}, headers=headers)
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["id"] == first.get_json()["id"]

        third = owner.post(url, json={"billing_type": "final"}, headers={"Idempotency-Key": "retry-2"})
        assert third.status_code == 201
        assert len(owner.get("/invoices/").get_json()) == 2

    def test_without_key_each_call_creates(self, owner, estimate):
        url = f"/estimates/{estimate['id']}/invoices"
        owner.post(url, json={"billing_type": "progress", "progress_percentage": 30})
        owner.post(url, json={"billing_type": "progress", "progress_percentage": 30})
        assert len(owner.get("/invoices/").get_json()) == 2

    def test_reused_key_with_other_billing_type(self, owner, estimate):
        url = f"/estimates/{estimate['id']}/invoices"
        headers = {"Idempotency-Key": "retry-1"}
        owner.post(url, json={"billing_type": "final"}, headers=headers)

        response = owner.post(url, json={"billing_type": "progress", "progress_percentage": 50}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["field"] == "Idempotency-Key"
        assert len(owner.get("/invoices/").get_json()) == 1

    def test_reused_key_with_other_percentage(self, owner, estimate):
        url = f"/estimates/{estimate['id']}/invoices"
        headers = {"Idempotency-Key": "phase-1"}
        first = owner.post(url, json={"billing_type": "progress", "progress_percentage": 30}, headers=headers)

        same = owner.post(url, json={"billing_type": "progress", "progress_percentage": "30.00"}, headers=headers)
        assert same.status_code == 200
        assert same.get_json()["id"] == first.get_json()["id"]

        other = owner.post(url, json={"billing_type": "progress", "progress_percentage": 60}, headers=headers)
        assert other.status_code == 400
        assert len(owner.get("/invoices/").get_json()) == 1
