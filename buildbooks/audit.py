"""
buildbooks/audit.py

Audit trail for every mutation made through buildbooks.store.

Each entry records the acting user (id + email snapshot), the record touched,
the action and JSON before/after images of its scalar columns, plus the
request IP.

IMPORTANT:
- Entries are only ADDED to the session here; buildbooks.store owns the
  commit/rollback.
- The token-gated change order response is anonymous and is recorded
  without a user.
- Credentials (password hashes, approval tokens) never enter an image.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog

REDACTED_COLUMNS = frozenset({"password_hash", "approval_token"})


def _jsonable(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """Image of an instance's table columns as strings (relationships excluded)."""
    return {
        column.name: _jsonable(getattr(instance, column.name))
        for column in instance.__table__.columns
        if column.name not in REDACTED_COLUMNS
    }


def _request_actor() -> tuple[Optional[int], Optional[str], Optional[str]]:
    if not has_request_context():
        return None, None, None
    if current_user.is_authenticated:
        return current_user.id, current_user.email, request.remote_addr
    return None, None, request.remote_addr


def _dump(image: Optional[Dict[str, Any]]) -> Optional[str]:
    return json.dumps(image, ensure_ascii=False, sort_keys=True) if image else None


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Stage an AuditLog row for ``entity``.

    ``entity`` must already have an id, so callers flush before logging.
    ``action`` is CREATE / UPDATE / DELETE or a lifecycle verb such as SEND,
    PAYMENT, CONVERT or CLIENT_RESPONSE.

    The IP is request.remote_addr; behind a reverse proxy wrap the app in
    ProxyFix so it is the client's address.
    """
    if getattr(entity, "id", None) is None:
        raise ValueError(f"cannot audit an unsaved {entity.__class__.__name__}; flush first")

    user_id, email, ip_address = _request_actor()
    entry = AuditLog(
        user_id=user_id,
        email_snapshot=email,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity.id),
        action=action.upper(),
        before_data=_dump(before),
        after_data=_dump(after),
        ip_address=ip_address,
    )
    db.session.add(entry)
    return entry
