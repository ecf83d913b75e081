from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from flask import request
from werkzeug.routing import IntegerConverter

from app.community.errors import ValidationError

# Signed 64-bit, the widest integer column any supported database stores.
INT_MIN = -(2**63)
INT_MAX = 2**63 - 1


class BoundedIntConverter(IntegerConverter):
    """`<int:...>` URL segment capped at the column range; larger ids do not match the route (404)."""

    def __init__(self, map, *args, **kwargs):
        kwargs.setdefault("max", INT_MAX)
        super().__init__(map, *args, **kwargs)


def get_payload() -> dict[str, Any]:
    """JSON body for application/json requests, form fields otherwise."""
    if request.is_json:
        data = request.get_json(silent=True)
        if data is None:
            raise ValidationError("Request body must be valid JSON.")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object.")
        return data
    return request.form.to_dict()


def parse_int(value: Any, field: str, *, required: bool = True) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required.")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.") from None
    if not INT_MIN <= number <= INT_MAX:
        raise ValidationError(f"{field} is out of range.")
    return number


def parse_scope_id(value: Any) -> int | None:
    """Scope reference from query/body. Missing, "", "public", "global" and "null" mean the global square."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "public", "global", "null"):
        return None
    return parse_int(value, "scope_id")


def parse_datetime(value: Any, field: str, *, required: bool = True) -> datetime | None:
    """Parse an ISO-8601 timestamp; timezone offsets are converted to naive UTC."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required.")
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime.") from None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def clean_str(value: Any) -> str | None:
    """Strip a string value; empty becomes None."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None
