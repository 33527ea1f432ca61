# Overview: Request payload helpers shared by the API routes.

from __future__ import annotations

from datetime import datetime
from typing import Any

from .errors import BadRequestError
from .time_utils import parse_iso_datetime


def get_json_body(request) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequestError("Request body must be a JSON object")
    return data


def require_fields(data: dict, *names: str) -> None:
    missing = [name for name in names if data.get(name) in (None, "")]
    if missing:
        raise BadRequestError(f"Missing required field(s): {', '.join(missing)}")


def parse_datetime_field(data: dict, key: str) -> datetime | None:
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise BadRequestError(f"{key} must be an ISO-8601 datetime")


def parse_int(value: Any, name: str, *, default: int | None = None, minimum: int | None = None) -> int | None:
    """Strict integer parsing for query args (rejects floats and blanks)."""
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        raise BadRequestError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    else:
        stripped = str(value).strip()
        if not stripped.lstrip("-").isdigit():
            raise BadRequestError(f"{name} must be an integer")
        result = int(stripped)
    if minimum is not None and result < minimum:
        raise BadRequestError(f"{name} must be >= {minimum}")
    return result


def parse_float(value: Any, name: str, *, default: float | None = None) -> float | None:
    if value in (None, ""):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"{name} must be a number")
    if result <= 0:
        raise BadRequestError(f"{name} must be positive")
    return result
