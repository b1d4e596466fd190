"""
Replenishment Request Service

Station-side request to refill one tank, reviewed before a truck is ordered:

    DRAFT -> SUBMITTED -> VALIDATED -> ORDERED -> COMPLETED

COMPLETED is never set here; completing the linked delivery sets it.

ULLAGE RULE: requested_volume must fit the tank's ullage (capacity - level).
It is checked at creation, on every edit and again at submission, since the
tank may have been filled in between. A request can never reach SUBMITTED
with a volume the tank cannot take.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from ..extensions import db
from ..decimal_utils import parse_decimal, to_decimal_str
from ..errors import InvalidStateTransition, NotFoundError, UllageExceeded, ValidationError
from ..models import ReplenishmentRequest, Station, Tank, User
from ..models.supply import REQUEST_DRAFT, REQUEST_SUBMITTED, REQUEST_VALIDATED, REQUEST_ORDERED
from .audit_service import record_event
from .concurrency import atomic, lock_for_update
from .tenant_service import get_accessible_station_ids, require_station_access


def _requested_volume(value: Any) -> Decimal:
    try:
        volume = parse_decimal(value, "requested_volume")
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "requested_volume"}) from exc
    if volume <= 0:
        raise ValidationError("requested_volume must be positive", details={"field": "requested_volume"})
    return volume


def check_ullage(tank: Tank, requested_volume: Decimal) -> None:
    """Raise UllageExceeded when the tank cannot take requested_volume."""
    ullage = Decimal(tank.capacity) - Decimal(tank.current_level)
    if requested_volume > ullage:
        raise UllageExceeded(
            f"Requested {to_decimal_str(requested_volume)} exceeds tank ullage {to_decimal_str(ullage)}",
            details={
                "tank_id": tank.id,
                "requested_volume": to_decimal_str(requested_volume),
                "ullage": to_decimal_str(ullage),
            },
        )


def create_request(*, station_id: int, tank_id: int, requested_volume: Any, user: User) -> ReplenishmentRequest:
    station = require_station_access(station_id, user)
    volume = _requested_volume(requested_volume)

    tank = db.session.get(Tank, tank_id) if tank_id is not None else None
    if not tank or tank.station_id != station.id:
        raise NotFoundError("Tank not found at this station", code="BIZ_TANK_NOT_FOUND")
    check_ullage(tank, volume)

    request = ReplenishmentRequest(
        station_id=station.id,
        tank_id=tank.id,
        fuel_type=tank.fuel_type,
        requested_volume=volume,
        status=REQUEST_DRAFT,
        requested_by_user_id=user.id,
    )
    db.session.add(request)
    db.session.flush()

    record_event(
        org_id=station.org_id,
        station_id=station.id,
        action="REPLENISHMENT_CREATED",
        entity_type="replenishment_request",
        entity_id=request.id,
        actor_user_id=user.id,
        payload={"tank_id": tank.id, "requested_volume": volume},
    )
    db.session.commit()
    return request


def get_request(request_id: int, user: User) -> ReplenishmentRequest:
    request = db.session.get(ReplenishmentRequest, request_id)
    if not request or request.station.org_id != user.org_id:
        raise NotFoundError("Replenishment request not found", code="BIZ_REQUEST_NOT_FOUND")
    require_station_access(request.station_id, user)
    return request


def _transition(
    request_id: int,
    user: User,
    *,
    expected: str,
    target: str,
    action: str,
    comment: str | None = None,
) -> ReplenishmentRequest:
    with atomic():
        get_request(request_id, user)
        request = lock_for_update(
            db.session.query(ReplenishmentRequest).filter_by(id=request_id)
        ).populate_existing().one()

        if request.status != expected:
            raise InvalidStateTransition(
                f"Request is {request.status}, expected {expected}",
                details={"replenishment_request_id": request.id, "status": request.status},
            )

        if target == REQUEST_SUBMITTED:
            check_ullage(request.tank, Decimal(request.requested_volume))
        if target == REQUEST_VALIDATED:
            request.validated_by_user_id = user.id
            request.validation_comment = (comment or "").strip() or None

        request.status = target
        record_event(
            org_id=user.org_id,
            station_id=request.station_id,
            action=action,
            entity_type="replenishment_request",
            entity_id=request.id,
            actor_user_id=user.id,
            payload={"comment": request.validation_comment} if target == REQUEST_VALIDATED else None,
        )
    return request


def submit_request(request_id: int, user: User) -> ReplenishmentRequest:
    return _transition(
        request_id, user,
        expected=REQUEST_DRAFT, target=REQUEST_SUBMITTED, action="REPLENISHMENT_SUBMITTED",
    )


def validate_request(request_id: int, user: User, comment: str | None = None) -> ReplenishmentRequest:
    return _transition(
        request_id, user,
        expected=REQUEST_SUBMITTED, target=REQUEST_VALIDATED, action="REPLENISHMENT_VALIDATED",
        comment=comment,
    )


def order_request(request_id: int, user: User) -> ReplenishmentRequest:
    return _transition(
        request_id, user,
        expected=REQUEST_VALIDATED, target=REQUEST_ORDERED, action="REPLENISHMENT_ORDERED",
    )


# =============================================================================
# DRAFT EDITING
# =============================================================================

def _get_draft(request_id: int, user: User) -> ReplenishmentRequest:
    request = get_request(request_id, user)
    if request.status != REQUEST_DRAFT:
        raise InvalidStateTransition(
            f"Only DRAFT requests can be changed (request is {request.status})",
            details={"replenishment_request_id": request.id, "status": request.status},
        )
    return request


def update_request_volume(request_id: int, user: User, requested_volume: Any) -> ReplenishmentRequest:
    request = _get_draft(request_id, user)
    volume = _requested_volume(requested_volume)
    check_ullage(request.tank, volume)
    request.requested_volume = volume
    db.session.commit()
    return request


def delete_request(request_id: int, user: User) -> None:
    request = _get_draft(request_id, user)
    db.session.delete(request)
    db.session.commit()


def list_requests(
    user: User,
    *,
    station_id: int | None = None,
    status: str | None = None,
) -> list[ReplenishmentRequest]:
    query = db.session.query(ReplenishmentRequest).join(
        Station, ReplenishmentRequest.station_id == Station.id
    ).filter(Station.org_id == user.org_id)

    if station_id is not None:
        require_station_access(station_id, user)
        query = query.filter(ReplenishmentRequest.station_id == station_id)
    else:
        accessible = get_accessible_station_ids(user)
        if accessible is not None:
            query = query.filter(ReplenishmentRequest.station_id.in_(accessible))
    if status:
        query = query.filter(ReplenishmentRequest.status == status)
    return query.order_by(ReplenishmentRequest.created_at.desc(), ReplenishmentRequest.id.desc()).all()
