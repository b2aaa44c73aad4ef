"""
Utility functions shared across the app. This includes:
- utcnow: the single wall-clock source (naive UTC, matches stored timestamps).
- Request parsing helpers (JSON body, decimals, ints, dates, required text, line items).
- iso: ISO-8601 rendering for JSON responses.

IMPORTANT:
- UI is never trusted. Parsers raise ValidationError instead of guessing.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from flask import request

from .engine.errors import ValidationError
from .engine.money import to_decimal


def utcnow() -> datetime:
    """Naive UTC now (SQLite stores naive datetimes)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def json_body() -> dict:
    """Return the request JSON object (or form data as a dict)."""
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def parse_decimal(
    value,
    field: str,
    *,
    required: bool = False,
    minimum: Decimal | int | None = None,
    default: Decimal | None = None,
) -> Decimal | None:
    """Parse a decimal (accepts comma or dot); empty -> default/None."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        if required:
            raise ValidationError(f"'{field}' is required.", field=field)
        return default
    result = to_decimal(value, field)
    if minimum is not None and result < minimum:
        raise ValidationError(f"'{field}' must be >= {minimum}.", field=field)
    return result


def parse_optional_int(value, field: str) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"'{field}' must be an integer.", field=field) from None


def parse_datetime(value, field: str, *, required: bool = False) -> datetime | None:
    """Parse an ISO-8601 date or datetime. Aware values are converted to naive UTC."""
    if value is None or str(value).strip() == "":
        if required:
            raise ValidationError(f"'{field}' is required.", field=field)
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"'{field}' must be an ISO-8601 date.", field=field) from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def clean_text(value) -> str | None:
    """Strip a text input; empty becomes None."""
    if value is None:
        return None
    return str(value).strip() or None


def require_text(data: dict, field: str) -> str:
    value = clean_text(data.get(field))
    if not value:
        raise ValidationError(f"'{field}' is required.", field=field)
    return value


def require_choice(value, field: str, choices, default: str | None = None) -> str:
    value = clean_text(value) or default
    if value not in choices:
        raise ValidationError(f"'{field}' must be one of: {', '.join(choices)}.", field=field)
    return value


def parse_item(data, field: str, categories, default_category: str) -> dict:
    """
    Validate one line item from a request body.

    Quantity and unit price must be >= 0; an explicit ``total`` (override)
    must be >= 0 as well. Returns model column values.
    """
    if not isinstance(data, dict):
        raise ValidationError(f"'{field}' must be an object.", field=field)

    description = clean_text(data.get("description"))
    if not description:
        raise ValidationError(f"'{field}.description' is required.", field=f"{field}.description")

    return {
        "description": description,
        "quantity": parse_decimal(data.get("quantity"), f"{field}.quantity", minimum=0, default=Decimal("0")),
        "unit": clean_text(data.get("unit")),
        "unit_price": parse_decimal(data.get("unit_price"), f"{field}.unit_price", minimum=0, default=Decimal("0")),
        "total_override": parse_decimal(data.get("total"), f"{field}.total", minimum=0),
        "category": require_choice(data.get("category"), f"{field}.category", categories, default=default_category),
    }


def parse_list(data: dict, field: str) -> list:
    value = data.get(field)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"'{field}' must be a list.", field=field)
    return value
