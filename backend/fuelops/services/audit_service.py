# Overview: Append-only audit trail writes.

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from ..extensions import db
from ..models import AuditLog
from ..decimal_utils import to_decimal_str
"""
Audit invariants:

- Append-only: no updates or deletes of existing rows.
- Written inside the same DB transaction as the change it records (flush, never commit).
- No business logic here; callers decide what is worth recording.
"""


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return to_decimal_str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def record_event(
    *,
    org_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    station_id: int | None = None,
    payload: Optional[dict] = None,
) -> AuditLog:
    entry = AuditLog(
        org_id=org_id,
        station_id=station_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=_jsonable(payload) if payload else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def get_entity_events(entity_type: str, entity_id: int) -> list[AuditLog]:
    return db.session.query(AuditLog).filter_by(
        entity_type=entity_type,
        entity_id=entity_id,
    ).order_by(AuditLog.id).all()
