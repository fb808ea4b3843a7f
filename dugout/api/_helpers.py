"""Small helper utilities for API modules.

Keep lightweight helpers here so route modules can import useful helpers
without pulling in heavy app state (avoid circular imports).
"""
from datetime import datetime, timezone

from flask import request
from flask_login import current_user

from dugout.models import Permission


def json_body() -> dict:
    """Request JSON object; raises ValueError for anything else."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def principal_id() -> str:
    return current_user.id


def principal_name() -> str:
    return current_user.display_name


def parse_permission(data: dict | None, base: Permission | None = None) -> Permission | None:
    """Permission from a JSON object, or None when absent."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError("permission must be an object")
    return Permission.from_dict(data, base=base)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into naive UTC; None passes through."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid timestamp {value!r}") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def int_arg(name: str, default: int | None = None, minimum: int = 1, maximum: int | None = None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    if maximum is not None:
        value = min(value, maximum)
    return value
