"""
buildbooks/store.py

Owner-scoped persistence over Flask-SQLAlchemy.

Contract used by the blueprints:
- create(instance)              -> instance (id assigned)
- get_owned(model, id)          -> instance, NotFound if absent or another owner's
- list_by_owner(model, owner)   -> list, newest first
- update(instance, before)      -> instance
- delete(instance)

Every mutation flushes, writes an AuditLog entry and commits in one
transaction. Any exception rolls the session back so no partial write is
left behind.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional, Type

from flask_login import current_user

from .audit import log_action, serialize_model
from .engine.errors import NotFound
from .extensions import db
from .models import AuditLog, ChangeOrder, Client, Estimate, Invoice, Project, Purchase

logger = logging.getLogger(__name__)


@contextmanager
def transaction():
    """Commit on success, roll back on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def get_owned(model: Type[db.Model], record_id: int, owner_id: Optional[int] = None):
    owner_id = owner_id if owner_id is not None else current_user.id
    instance = db.session.get(model, record_id)
    if instance is None or instance.owner_id != owner_id:
        # another owner's record is indistinguishable from a missing one
        raise NotFound(model.__name__, record_id)
    return instance


def get_optional_owned(model: Type[db.Model], record_id: Optional[int], owner_id: Optional[int] = None):
    if record_id is None:
        return None
    return get_owned(model, record_id, owner_id)


def list_by_owner(model: Type[db.Model], owner_id: Optional[int] = None, **filters):
    owner_id = owner_id if owner_id is not None else current_user.id
    return (
        model.query.filter_by(owner_id=owner_id, **filters)
        .order_by(model.created_at.desc(), model.id.desc())
        .all()
    )


def create(instance: db.Model, action: str = "CREATE"):
    with transaction():
        db.session.add(instance)
        db.session.flush()
        log_action(instance, action, before=None, after=serialize_model(instance))
    logger.info("%s %s created", instance.__class__.__name__, instance.id)
    return instance


def update(instance: db.Model, before: Dict[str, Any], action: str = "UPDATE"):
    with transaction():
        db.session.flush()
        log_action(instance, action, before=before, after=serialize_model(instance))
    logger.info("%s %s %s", instance.__class__.__name__, instance.id, action.lower())
    return instance


def delete(instance: db.Model) -> None:
    before = serialize_model(instance)
    with transaction():
        db.session.delete(instance)
        db.session.flush()
        log_action(instance, "DELETE", before=before, after=None)
    logger.info("%s %s deleted", instance.__class__.__name__, before.get("id"))


def snapshot(instance: db.Model) -> Dict[str, Any]:
    """Before-image for update()."""
    return serialize_model(instance)


# Dependents first; items, sections and payments go with their parents
OWNED_MODELS_DELETE_ORDER = (ChangeOrder, Invoice, Estimate, Purchase, Project, Client)


def purge_owner(owner_id: int) -> Dict[str, int]:
    """
    Delete every business record owned by ``owner_id``.

    Runs inside the caller's transaction and returns the number of records
    removed per model. Audit rows are kept with their user link cleared; the
    email snapshot still names the actor.
    """
    removed: Dict[str, int] = {}
    for model in OWNED_MODELS_DELETE_ORDER:
        records = model.query.filter_by(owner_id=owner_id).all()
        for record in records:
            db.session.delete(record)
        db.session.flush()
        removed[model.__name__] = len(records)

    AuditLog.query.filter_by(user_id=owner_id).update({"user_id": None}, synchronize_session=False)
    return removed
