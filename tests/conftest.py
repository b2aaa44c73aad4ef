"""Shared fixtures: an app on TestConfig with a fresh in-memory database."""

from __future__ import annotations

import pytest

from buildbooks import create_app
from buildbooks.extensions import db
from config import TestConfig


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def _signup(client, email: str, name: str = "Test Contractor", **profile):
    payload = {"email": email, "name": name, "password": "s3cret-pass", **profile}
    response = client.post("/auth/signup", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


@pytest.fixture()
def signup():
    """Sign a test client up (and in) as a new contractor."""
    return _signup


@pytest.fixture()
def owner(app):
    """A logged-in contractor."""
    client = app.test_client()
    _signup(client, "owner@example.com", company="Owner Builders", license_number="LIC-1")
    return client


@pytest.fixture()
def intruder(app):
    """A second, unrelated logged-in contractor."""
    client = app.test_client()
    _signup(client, "other@example.com", name="Other Contractor")
    return client


@pytest.fixture()
def project(owner):
    client_resp = owner.post("/clients/", json={"name": "Jane Client", "email": "jane@example.com", "city": "Newark"})
    client_id = client_resp.get_json()["id"]
    resp = owner.post(
        "/projects/",
        json={"name": "Kitchen Remodel", "client_id": client_id, "estimated_cost": "1000.00", "status": "active"},
    )
    assert resp.status_code == 201
    return resp.get_json()


@pytest.fixture()
def estimate(owner, project):
    """A draft estimate with a 750.00 subtotal at the default tax rate."""
    resp = owner.post(
        "/estimates/",
        json={
            "name": "Kitchen estimate",
            "project_id": project["id"],
            "sections": [
                {
                    "name": "Cabinets",
                    "items": [
                        {"description": "Cabinet", "quantity": 2, "unit": "ea", "unit_price": "250.00"},
                        {"description": "Install", "quantity": 1, "unit_price": "0", "total": "250.00",
                         "category": "labor"},
                    ],
                }
            ],
        },
    )
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()
