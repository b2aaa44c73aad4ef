"""Business-facing document numbers and approval tokens."""

from __future__ import annotations

import random
import secrets
from datetime import datetime

ESTIMATE_PREFIX = "EST"
INVOICE_PREFIX = "INV"
PROJECT_PREFIX = "PROJ"
CHANGE_ORDER_PREFIX = "CO"


def _suffix(rng: random.Random | None) -> str:
    return f"{(rng or random).randrange(1000):03d}"


def document_number(prefix: str, now: datetime, rng: random.Random | None = None) -> str:
    """PREFIX-YYYYMM-NNN. Expected unique in practice, not guaranteed."""
    return f"{prefix}-{now:%Y%m}-{_suffix(rng)}"


def change_order_number(now: datetime, rng: random.Random | None = None) -> str:
    """CO-YYYYMMDD-NNN."""
    return f"{CHANGE_ORDER_PREFIX}-{now:%Y%m%d}-{_suffix(rng)}"


def approval_token() -> str:
    return secrets.token_urlsafe(24)
