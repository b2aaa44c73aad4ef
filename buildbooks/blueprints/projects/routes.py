"""
Project routes.

A project's estimated_cost is its budget. It is set on creation and then
grows through approved estimates and approved change orders; actual_cost is
always the sum of purchases booked against the project.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ... import store
from ...engine.money import money
from ...engine.numbering import PROJECT_PREFIX, document_number
from ...models import Client, Project
from ...security import owner_required
from ...utils import (
    clean_text,
    json_body,
    parse_datetime,
    parse_decimal,
    parse_optional_int,
    require_choice,
    require_text,
    utcnow,
)

projects_bp = Blueprint("projects", __name__, url_prefix="/projects")

TEXT_FIELDS = ("description", "address", "city", "state", "zip_code")


def _apply_fields(project: Project, data: dict) -> None:
    if "name" in data or project.name is None:
        project.name = require_text(data, "name")

    for field in TEXT_FIELDS:
        if field in data:
            setattr(project, field, clean_text(data.get(field)))

    if "client_id" in data:
        client_id = parse_optional_int(data.get("client_id"), "client_id")
        project.client_id = store.get_optional_owned(Client, client_id).id if client_id else None

    if "status" in data or project.status is None:
        project.status = require_choice(data.get("status"), "status", Project.STATUSES, default="planning")

    if "start_date" in data:
        project.start_date = parse_datetime(data.get("start_date"), "start_date")
    if "end_date" in data:
        project.end_date = parse_datetime(data.get("end_date"), "end_date")

    if "estimated_cost" in data:
        project.estimated_cost = money(
            parse_decimal(data.get("estimated_cost"), "estimated_cost", minimum=0, default=0)
        )


@projects_bp.route("/", methods=["GET"])
@login_required
def list_projects():
    filters = {}
    status = clean_text(request.args.get("status"))
    if status:
        filters["status"] = require_choice(status, "status", Project.STATUSES)
    return jsonify([p.to_dict() for p in store.list_by_owner(Project, **filters)])


@projects_bp.route("/", methods=["POST"])
@login_required
def create_project():
    project = Project(
        owner_id=current_user.id,
        project_number=document_number(PROJECT_PREFIX, utcnow()),
        status=None,
    )
    _apply_fields(project, json_body())
    store.create(project)
    return jsonify(project.to_dict()), 201


@projects_bp.route("/<int:project_id>", methods=["GET"])
@login_required
@owner_required(Project, "project_id")
def get_project(project):
    return jsonify(project.to_dict())


@projects_bp.route("/<int:project_id>", methods=["PUT", "PATCH"])
@login_required
@owner_required(Project, "project_id")
def update_project(project):
    before = store.snapshot(project)
    _apply_fields(project, json_body())
    store.update(project, before)
    return jsonify(project.to_dict())


@projects_bp.route("/<int:project_id>", methods=["DELETE"])
@login_required
@owner_required(Project, "project_id")
def delete_project(project):
    store.delete(project)
    return "", 204
