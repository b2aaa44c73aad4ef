"""
API tests for auth, clients, projects, purchases and the dashboard.
"""

from buildbooks.extensions import db
from buildbooks.models import AuditLog


class TestAuth:
    """Session auth and the contractor profile."""

    def test_anonymous_gets_json_401(self, client):
        response = client.get("/clients/")
        assert response.status_code == 401
        assert response.get_json()["error"] == "UNAUTHORIZED"

    def test_signup_logs_in(self, client, signup):
        signup(client, "new@example.com")
        assert client.get("/auth/me").get_json()["email"] == "new@example.com"

    def test_duplicate_email_rejected(self, client, signup):
        signup(client, "dup@example.com")
        response = client.post(
            "/auth/signup", json={"email": "DUP@example.com", "name": "x", "password": "another-pass"}
        )
        assert response.status_code == 400
        assert response.get_json()["field"] == "email"

    def test_short_password_rejected(self, client):
        response = client.post("/auth/signup", json={"email": "a@example.com", "name": "A", "password": "short"})
        assert response.status_code == 400

    def test_login_and_logout(self, app, signup):
        signup(app.test_client(), "login@example.com")
        client = app.test_client()

        bad = client.post("/auth/login", json={"email": "login@example.com", "password": "wrong-pass"})
        assert bad.status_code == 401

        good = client.post("/auth/login", json={"email": "login@example.com", "password": "s3cret-pass"})
        assert good.status_code == 200
        assert client.get("/auth/me").status_code == 200

        assert client.post("/auth/logout").status_code == 200
        assert client.get("/auth/me").status_code == 401

    def test_profile_update(self, owner):
        response = owner.patch("/auth/me", json={"company": "New Co", "phone": "555-0000"})
        assert response.status_code == 200
        assert response.get_json()["company"] == "New Co"

    def test_password_hash_not_exposed(self, owner):
        assert "password_hash" not in owner.get("/auth/me").get_json()

    def test_csrf_token_endpoint(self, client):
        assert client.get("/auth/csrf-token").get_json()["csrf_token"]

    def test_index_lists_sections_when_logged_in(self, owner, client):
        assert client.get("/").get_json()["sections"] == []
        keys = [s["key"] for s in owner.get("/").get_json()["sections"]]
        assert "estimates" in keys and "change_orders" in keys


class TestClients:
    def test_crud(self, owner):
        created = owner.post("/clients/", json={"name": "Bob", "email": "bob@example.com"})
        assert created.status_code == 201
        client_id = created.get_json()["id"]

        updated = owner.patch(f"/clients/{client_id}", json={"phone": "555-1234"})
        assert updated.get_json()["phone"] == "555-1234"
        assert updated.get_json()["name"] == "Bob"

        assert [c["id"] for c in owner.get("/clients/").get_json()] == [client_id]

        assert owner.delete(f"/clients/{client_id}").status_code == 204
        assert owner.get(f"/clients/{client_id}").status_code == 404

    def test_name_required(self, owner):
        response = owner.post("/clients/", json={"email": "x@example.com"})
        assert response.status_code == 400
        assert response.get_json()["field"] == "name"

    def test_other_owner_sees_404(self, owner, intruder):
        """Another contractor's record is indistinguishable from a missing one."""
        client_id = owner.post("/clients/", json={"name": "Private"}).get_json()["id"]
        assert intruder.get(f"/clients/{client_id}").status_code == 404
        assert intruder.delete(f"/clients/{client_id}").status_code == 404
        assert intruder.get("/clients/").get_json() == []

    def test_mutations_are_audited(self, app, owner):
        client_id = owner.post("/clients/", json={"name": "Audited"}).get_json()["id"]
        owner.patch(f"/clients/{client_id}", json={"name": "Audited 2"})
        with app.app_context():
            actions = [
                a.action
                for a in db.session.query(AuditLog).filter_by(entity_type="Client", entity_id=client_id)
                .order_by(AuditLog.id)
                .all()
            ]
        assert actions == ["CREATE", "UPDATE"]


class TestProjects:
    def test_create_numbers_project(self, project):
        assert project["project_number"].startswith("PROJ-")
        assert project["estimated_cost"] == 1000.0
        assert project["actual_cost"] == 0.0

    def test_unknown_client_is_404(self, owner):
        response = owner.post("/projects/", json={"name": "P", "client_id": 9999})
        assert response.status_code == 404

    def test_another_owners_client_is_404(self, owner, intruder):
        client_id = owner.post("/clients/", json={"name": "Mine"}).get_json()["id"]
        response = intruder.post("/projects/", json={"name": "P", "client_id": client_id})
        assert response.status_code == 404

    def test_invalid_status(self, owner):
        response = owner.post("/projects/", json={"name": "P", "status": "paused"})
        assert response.status_code == 400

    def test_status_filter(self, owner, project):
        assert len(owner.get("/projects/?status=active").get_json()) == 1
        assert owner.get("/projects/?status=completed").get_json() == []


class TestPurchases:
    def test_actual_cost_is_sum_of_purchases(self, owner, project):
        for amount in ("120.50", "79.50"):
            response = owner.post(
                "/purchases/",
                json={"vendor": "Lumber Yard", "description": "2x4s", "amount": amount, "project_id": project["id"]},
            )
            assert response.status_code == 201
        assert owner.get(f"/projects/{project['id']}").get_json()["actual_cost"] == 200.0

    def test_mark_paid_once(self, owner):
        purchase = owner.post("/purchases/", json={"vendor": "V", "description": "D", "amount": "10"}).get_json()
        assert purchase["status"] == "pending"

        paid = owner.post(f"/purchases/{purchase['id']}/mark-paid")
        assert paid.status_code == 200
        assert paid.get_json()["status"] == "paid"
        assert paid.get_json()["paid_date"]

        again = owner.post(f"/purchases/{purchase['id']}/mark-paid")
        assert again.status_code == 409
        assert again.get_json()["current"] == "paid"

    def test_negative_amount_rejected(self, owner):
        response = owner.post("/purchases/", json={"vendor": "V", "description": "D", "amount": "-1"})
        assert response.status_code == 400


class TestDashboard:
    def test_stats(self, owner, project, estimate):
        stats = owner.get("/dashboard/stats").get_json()
        assert stats["total_projects"] == 1
        assert stats["active_projects"] == 1
        assert stats["total_revenue"] == 0.0
        assert stats["invoices"]["total_invoices"] == 0
        assert stats["recent_estimates"][0]["id"] == estimate["id"]
