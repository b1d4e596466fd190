from __future__ import annotations

from datetime import date, datetime
from typing import Any

from flask import request

from .errors import ValidationError
from .time_utils import parse_iso_date, parse_iso_datetime

MAX_PAGE_SIZE = 200


def json_body() -> dict:
    """Request JSON as a dict; an empty body is an empty dict."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_int(value: Any, field: str, *, required: bool = True) -> int | None:
    """
    Strict integer coercion for ids coming from JSON or query strings.

    Rejects floats, booleans, decimals and scientific notation ("1e3").
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", details={"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    raise ValidationError(f"{field} must be an integer", details={"field": field})


def parse_text(value: Any, field: str) -> str:
    """Optional text field: missing is "", anything but a string is rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})
    return value.strip()

def parse_date_field(value: Any, field: str, *, required: bool = True) -> date | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date", details={"field": field})
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date", details={"field": field})


def parse_datetime_field(value: Any, field: str, *, required: bool = True) -> datetime | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})


def parse_pagination(args) -> tuple[int, int]:
    page = parse_int(args.get("page"), "page", required=False) or 1
    limit = parse_int(args.get("limit"), "limit", required=False) or 50
    if page < 1:
        raise ValidationError("page must be >= 1", details={"field": "page"})
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", details={"field": "limit"})
    return page, limit
