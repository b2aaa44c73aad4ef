"""
Client routes.

Clients belong to the logged-in contractor. Editing a client does not touch
the client snapshot already captured on estimates and invoices.
"""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from ... import store
from ...models import Client
from ...security import owner_required
from ...utils import clean_text, json_body, require_text

clients_bp = Blueprint("clients", __name__, url_prefix="/clients")

EDITABLE_FIELDS = ("email", "phone", "address", "city", "state", "zip_code", "notes")


def _apply_fields(client: Client, data: dict) -> None:
    if "name" in data or client.name is None:
        client.name = require_text(data, "name")
    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(client, field, clean_text(data.get(field)))


@clients_bp.route("/", methods=["GET"])
@login_required
def list_clients():
    return jsonify([c.to_dict() for c in store.list_by_owner(Client)])


@clients_bp.route("/", methods=["POST"])
@login_required
def create_client():
    client = Client(owner_id=current_user.id)
    _apply_fields(client, json_body())
    store.create(client)
    return jsonify(client.to_dict()), 201


@clients_bp.route("/<int:client_id>", methods=["GET"])
@login_required
@owner_required(Client, "client_id")
def get_client(client):
    return jsonify(client.to_dict())


@clients_bp.route("/<int:client_id>", methods=["PUT", "PATCH"])
@login_required
@owner_required(Client, "client_id")
def update_client(client):
    before = store.snapshot(client)
    _apply_fields(client, json_body())
    store.update(client, before)
    return jsonify(client.to_dict())


@clients_bp.route("/<int:client_id>", methods=["DELETE"])
@login_required
@owner_required(Client, "client_id")
def delete_client(client):
    store.delete(client)
    return "", 204
