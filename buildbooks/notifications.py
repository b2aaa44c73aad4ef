"""
buildbooks/notifications.py

Outbound client notifications for change orders.

Delivery is fire-and-forget from the lifecycle's point of view: a failed
notification is logged and reported as False, it never rolls back the
change order itself.

The default delivery writes the message to the application log. Deployments
wire a real transport by setting ``app.extensions["change_order_delivery"]``
to a callable ``(recipient, subject, body) -> None``.
"""

from __future__ import annotations

import logging

from flask import current_app

from .engine.money import as_float

logger = logging.getLogger(__name__)


def approval_url(token: str) -> str:
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return f"{base}/change-orders/respond/{token}"


def _log_delivery(recipient: str, subject: str, body: str) -> None:
    logger.info("change order notification", extra={"recipient": recipient, "subject": subject, "body": body})


def render_change_order_message(change_order, url: str) -> tuple[str, str]:
    subject = f"Change order {change_order.change_order_number} requires your approval"
    lines = [
        f"Dear {change_order.client_name or 'client'},",
        "",
        f"A change order was created for your project \"{change_order.project_name or ''}\".",
        "",
        f"Title: {change_order.title}",
        f"Description: {change_order.description or '-'}",
        f"Reason: {change_order.reason or '-'}",
        f"Original amount: ${as_float(change_order.original_amount):,.2f}",
        f"Change amount: ${as_float(change_order.change_amount):,.2f}",
        f"New total: ${as_float(change_order.new_total_amount):,.2f}",
        f"Schedule impact: {change_order.impact_on_schedule or '-'}",
        "",
        f"Review and respond: {url}",
        f"This link expires on {change_order.expires_at:%Y-%m-%d}.",
    ]
    return subject, "\n".join(lines)


def send_change_order_approval(change_order, url: str) -> bool:
    """Send the approval request. Returns True on success, False otherwise."""
    if not change_order.client_email:
        logger.warning("change order %s has no client email", change_order.id)
        return False

    subject, body = render_change_order_message(change_order, url)
    deliver = current_app.extensions.get("change_order_delivery", _log_delivery)
    try:
        deliver(change_order.client_email, subject, body)
    except Exception:
        logger.exception("change order %s notification failed", change_order.id)
        return False
    return True
