"""
UTC helpers.

Every timestamp column (shift open/close, delivery completion, price
effective date) holds naive UTC. Client input may carry an offset; it is
converted on the way in and rendered with a trailing 'Z' on the way out.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are already UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    "2024-05-01T06:00", "2024-05-01T06:00:00Z" or "...+01:00" -> naive UTC.

    Blank input is None. Raises ValueError on anything else fromisoformat rejects.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_naive_utc(datetime.fromisoformat(text))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Operating day "YYYY-MM-DD"; a full timestamp is reduced to its UTC date."""
    text = (value or "").strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso_datetime(text).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing 'Z' (naive input is taken as UTC)."""
    if dt is None:
        return None
    stamp = as_naive_utc(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"
