"""Administration API: admin-only access, user directory, system stats and account removal."""

from __future__ import annotations

import pytest

from buildbooks.extensions import db
from buildbooks.models import AuditLog, Client, Project


@pytest.fixture()
def admin(app, signup):
    """A logged-in contractor promoted through the grant-admin command."""
    client = app.test_client()
    signup(client, "admin@example.com", name="Site Admin")
    result = app.test_cli_runner().invoke(args=["grant-admin", "admin@example.com"])
    assert result.exit_code == 0, result.output
    return client


@pytest.fixture()
def paid_invoice(owner, estimate):
    invoice = owner.post(f"/estimates/{estimate['id']}/invoices", json={"billing_type": "final"}).get_json()
    owner.post(f"/invoices/{invoice['id']}/send")
    paid = owner.post(f"/invoices/{invoice['id']}/mark-paid")
    assert paid.status_code == 200
    return paid.get_json()


def _user_id(client):
    return client.get("/auth/me").get_json()["id"]


class TestAdminAccess:
    def test_anonymous_gets_401(self, client):
        assert client.get("/admin/users").status_code == 401

    @pytest.mark.parametrize(
        "method,url", [("get", "/admin/users"), ("get", "/admin/stats"), ("delete", "/admin/users/1")]
    )
    def test_contractor_gets_403(self, owner, method, url):
        response = getattr(owner, method)(url)
        assert response.status_code == 403
        assert response.get_json()["error"] == "FORBIDDEN"

    def test_grant_admin_unknown_email(self, app):
        result = app.test_cli_runner().invoke(args=["grant-admin", "nobody@example.com"])
        assert result.exit_code != 0
        assert "No user with email" in result.output

    def test_index_shows_admin_section_to_admins_only(self, admin, owner):
        assert "admin" in [s["key"] for s in admin.get("/").get_json()["sections"]]
        assert "admin" not in [s["key"] for s in owner.get("/").get_json()["sections"]]


class TestUserDirectory:
    def test_list_users_with_totals(self, admin, owner, paid_invoice):
        users = {u["email"]: u for u in admin.get("/admin/users").get_json()}
        assert set(users) == {"admin@example.com", "owner@example.com"}

        contractor = users["owner@example.com"]
        assert contractor["role"] == "contractor"
        assert (contractor["total_projects"], contractor["total_invoices"]) == (1, 1)
        assert contractor["total_revenue"] == 799.69
        assert "password_hash" not in contractor

        assert users["admin@example.com"]["role"] == "admin"
        assert users["admin@example.com"]["total_revenue"] == 0.0

    def test_system_stats(self, admin, owner, intruder, paid_invoice):
        intruder.post("/invoices/", json={"items": [{"description": "Unpaid", "quantity": 1, "unit_price": "10"}]})
        stats = admin.get("/admin/stats").get_json()
        assert stats == {
            "total_users": 3,
            "active_users": 3,
            "admin_users": 1,
            "total_projects": 1,
            "total_invoices": 2,
            "total_revenue": 799.69,
        }


class TestUpdateUser:
    def test_promote(self, admin, owner):
        response = admin.patch(f"/admin/users/{_user_id(owner)}", json={"role": "admin"})
        assert response.status_code == 200
        assert response.get_json()["role"] == "admin"
        assert owner.get("/admin/stats").status_code == 200

    def test_unknown_role(self, admin, owner):
        response = admin.patch(f"/admin/users/{_user_id(owner)}", json={"role": "owner"})
        assert response.status_code == 400
        assert response.get_json()["field"] == "role"

    def test_deactivated_user_is_logged_out(self, admin, owner):
        response = admin.patch(f"/admin/users/{_user_id(owner)}", json={"is_active": False})
        assert response.get_json()["is_active"] is False
        assert owner.get("/projects/").status_code == 401
        assert admin.get("/admin/stats").get_json()["active_users"] == 1

    def test_cannot_demote_self(self, admin):
        response = admin.patch(f"/admin/users/{_user_id(admin)}", json={"role": "contractor"})
        assert response.status_code == 400
        assert admin.get("/admin/stats").status_code == 200

    def test_unknown_user(self, admin):
        assert admin.patch("/admin/users/999", json={"role": "admin"}).status_code == 404


class TestDeleteUser:
    def test_removes_owned_records(self, app, admin, owner, project, paid_invoice):
        owner_id = _user_id(owner)
        response = admin.delete(f"/admin/users/{owner_id}")
        assert response.status_code == 200
        removed = response.get_json()["removed"]
        assert (removed["Project"], removed["Client"], removed["Estimate"], removed["Invoice"]) == (1, 1, 1, 1)

        assert owner.get("/projects/").status_code == 401
        emails = [u["email"] for u in admin.get("/admin/users").get_json()]
        assert emails == ["admin@example.com"]

        stats = admin.get("/admin/stats").get_json()
        assert (stats["total_projects"], stats["total_invoices"], stats["total_revenue"]) == (0, 0, 0.0)

        with app.app_context():
            assert db.session.query(Project).count() == 0
            assert db.session.query(Client).count() == 0
            history = db.session.query(AuditLog).filter_by(email_snapshot="owner@example.com").all()
            assert history
            assert all(entry.user_id is None for entry in history)

    def test_other_accounts_untouched(self, admin, owner, intruder):
        theirs = intruder.post("/clients/", json={"name": "Kept Client"}).get_json()
        admin.delete(f"/admin/users/{_user_id(owner)}")
        assert intruder.get(f"/clients/{theirs['id']}").status_code == 200

    def test_cannot_delete_self(self, admin):
        response = admin.delete(f"/admin/users/{_user_id(admin)}")
        assert response.status_code == 400
        assert admin.get("/admin/stats").get_json()["total_users"] == 1

    def test_unknown_user(self, admin):
        assert admin.delete("/admin/users/999").status_code == 404
