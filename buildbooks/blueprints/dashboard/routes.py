"""
Dashboard routes.

One read-only endpoint aggregating the contractor's business at a single
instant: project counts, revenue, pending invoices and the invoice summary.
"""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from ... import store
from ...engine.money import ZERO, as_float, to_decimal
from ...engine.summary import summarize_invoices
from ...models import ChangeOrder, Estimate, Invoice, Project
from ...utils import utcnow

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")

RECENT_LIMIT = 3


@dashboard_bp.route("/stats", methods=["GET"])
@login_required
def stats():
    now = utcnow()

    projects = store.list_by_owner(Project)
    invoices = store.list_by_owner(Invoice)
    estimates = store.list_by_owner(Estimate)
    change_orders = store.list_by_owner(ChangeOrder)

    revenue = sum((to_decimal(inv.total) for inv in invoices if inv.status == "paid"), ZERO)
    summary = summarize_invoices((inv.figures() for inv in invoices), now)

    return jsonify(
        {
            "total_projects": len(projects),
            "active_projects": sum(1 for p in projects if p.status == "active"),
            "total_revenue": as_float(revenue),
            "pending_invoices": sum(1 for inv in invoices if inv.status == "sent"),
            "pending_change_orders": sum(1 for co in change_orders if co.effective_status(now) == "pending"),
            "invoices": summary,
            "recent_projects": [p.to_dict() for p in projects[:RECENT_LIMIT]],
            "recent_invoices": [inv.to_dict(now, include_children=False) for inv in invoices[:RECENT_LIMIT]],
            "recent_estimates": [e.to_dict(include_sections=False) for e in estimates[:RECENT_LIMIT]],
        }
    )
