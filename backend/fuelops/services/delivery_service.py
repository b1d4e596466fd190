"""
Fuel Delivery Service

WHY: Fuel arrives by truck against a bill of lading (BL). What the BL says was
loaded and what the tank dips say was received rarely agree to the litre;
the difference is tracked per compartment so disputes with the carrier have
evidence behind them.

LIFECYCLE:
    PENDING      compartments added/removed freely
    IN_PROGRESS  opening dips snapshotted, compartments frozen
    COMPLETED    closing dips recorded, tank levels written, request closed

DESIGN PRINCIPLES:
- bl_number uniqueness is the database constraint; IntegrityError is the answer
- Compartments draw the fuel type from their tank, never from client input
- A disputed compartment flags the delivery; it never blocks completion
- Tank levels are written through the optimistic-lock updater only
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..decimal_utils import ZERO, parse_decimal, quantize, to_decimal_str
from ..errors import (
    BusinessRuleError,
    DuplicateBLNumber,
    IncompleteSubmission,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from ..models import DeliveryCompartment, FuelDelivery, ReplenishmentRequest, Station, Tank, User
from ..models.supply import (
    COMPARTMENT_DISPUTED,
    COMPARTMENT_VALIDATED,
    DELIVERY_COMPLETED,
    DELIVERY_IN_PROGRESS,
    DELIVERY_PENDING,
    REQUEST_COMPLETED,
    REQUEST_ORDERED,
)
from ..time_utils import utcnow
from .audit_service import record_event
from .concurrency import atomic, lock_for_update
from .reconciliation import compute_delivery_receipt
from .tank_service import update_tank_level
from .tenant_service import get_accessible_station_ids, require_station_access

# Allowed gap between the BL total and the sum of its compartments
BL_TOTAL_TOLERANCE = Decimal("0.01")


def _decimal(value: Any, field: str) -> Decimal:
    try:
        return parse_decimal(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": field}) from exc


def _required_text(value: Any, field: str, max_length: int) -> str:
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{field} is required", details={"field": field})
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", details={"field": field})
    return text


# =============================================================================
# CREATE / COMPARTMENTS
# =============================================================================

def create_delivery(
    *,
    station_id: int,
    bl_number: str,
    truck_plate: str,
    driver_name: str,
    user: User,
    bl_total_volume: Any = None,
    replenishment_request_id: int | None = None,
) -> FuelDelivery:
    """
    Register a truck arrival in PENDING status.

    Raises:
        DuplicateBLNumber: bl_number already used by any delivery
        InvalidStateTransition: linked request is not ORDERED
    """
    station = require_station_access(station_id, user)
    bl_number = _required_text(bl_number, "bl_number", 64)
    truck_plate = _required_text(truck_plate, "truck_plate", 32)
    driver_name = _required_text(driver_name, "driver_name", 128)
    total = _decimal(bl_total_volume, "bl_total_volume") if bl_total_volume is not None else None

    if replenishment_request_id is not None:
        request = db.session.get(ReplenishmentRequest, replenishment_request_id)
        if not request or request.station_id != station.id:
            raise NotFoundError("Replenishment request not found", code="BIZ_REQUEST_NOT_FOUND")
        if request.status != REQUEST_ORDERED:
            raise InvalidStateTransition(
                f"Replenishment request is {request.status}, deliveries need an ORDERED request",
                details={"replenishment_request_id": request.id, "status": request.status},
            )

    delivery = FuelDelivery(
        station_id=station.id,
        replenishment_request_id=replenishment_request_id,
        bl_number=bl_number,
        bl_total_volume=total,
        truck_plate=truck_plate,
        driver_name=driver_name,
        status=DELIVERY_PENDING,
        is_disputed=False,
        created_by_user_id=user.id,
    )
    db.session.add(delivery)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateBLNumber(
            f"A delivery with BL number {bl_number} already exists",
            details={"bl_number": bl_number},
        )

    record_event(
        org_id=station.org_id,
        station_id=station.id,
        action="DELIVERY_CREATED",
        entity_type="fuel_delivery",
        entity_id=delivery.id,
        actor_user_id=user.id,
        payload={"bl_number": bl_number, "bl_total_volume": total},
    )
    db.session.commit()
    return delivery


def get_delivery(delivery_id: int, user: User) -> FuelDelivery:
    delivery = db.session.get(FuelDelivery, delivery_id)
    if not delivery or delivery.station.org_id != user.org_id:
        raise NotFoundError("Delivery not found", code="BIZ_DELIVERY_NOT_FOUND")
    require_station_access(delivery.station_id, user)
    return delivery


def _lock_delivery(delivery_id: int, user: User) -> FuelDelivery:
    get_delivery(delivery_id, user)
    return lock_for_update(
        db.session.query(FuelDelivery).filter_by(id=delivery_id)
    ).populate_existing().one()


def _require_status(delivery: FuelDelivery, status: str, action: str) -> None:
    if delivery.status != status:
        raise InvalidStateTransition(
            f"Cannot {action} a {delivery.status} delivery",
            details={"delivery_id": delivery.id, "status": delivery.status},
        )


def add_compartment(delivery_id: int, *, tank_id: int, bl_volume: Any, user: User) -> DeliveryCompartment:
    with atomic():
        delivery = _lock_delivery(delivery_id, user)
        _require_status(delivery, DELIVERY_PENDING, "add compartments to")

        tank = db.session.get(Tank, tank_id) if tank_id is not None else None
        if not tank or tank.station_id != delivery.station_id:
            raise ValidationError(
                "Tank does not belong to the delivery's station",
                details={"tank_id": tank_id},
            )

        compartment = DeliveryCompartment(
            delivery_id=delivery.id,
            tank_id=tank.id,
            fuel_type=tank.fuel_type,
            bl_volume=_positive(bl_volume, "bl_volume"),
        )
        db.session.add(compartment)
    return compartment


def remove_compartment(delivery_id: int, compartment_id: int, user: User) -> None:
    with atomic():
        delivery = _lock_delivery(delivery_id, user)
        _require_status(delivery, DELIVERY_PENDING, "remove compartments from")

        compartment = db.session.get(DeliveryCompartment, compartment_id)
        if not compartment or compartment.delivery_id != delivery.id:
            raise NotFoundError("Compartment not found", code="BIZ_COMPARTMENT_NOT_FOUND")
        delivery.compartments.remove(compartment)


def _positive(value: Any, field: str) -> Decimal:
    amount = _decimal(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be positive", details={"field": field})
    return amount


# =============================================================================
# START / COMPLETE
# =============================================================================

def _dips_by_compartment(dips: Any, compartments: list[DeliveryCompartment], field: str) -> dict[int, Decimal]:
    """Parse {compartment_id: value} (JSON keys arrive as strings)."""
    if dips is None:
        return {}
    if not isinstance(dips, dict):
        raise ValidationError(f"{field} must be an object keyed by compartment id", details={"field": field})

    known = {c.id for c in compartments}
    parsed = {}
    for raw_id, value in dips.items():
        try:
            compartment_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid compartment id in {field}: {raw_id!r}", details={"field": field})
        if compartment_id not in known:
            raise ValidationError(
                f"Compartment {compartment_id} is not part of this delivery",
                details={"compartment_id": compartment_id},
            )
        parsed[compartment_id] = _decimal(value, f"{field}.{compartment_id}")
    return parsed


def _check_within_capacity(level: Decimal, tank: Tank, compartment_id: int) -> None:
    if level > tank.capacity:
        raise ValidationError(
            f"Dip {level} exceeds tank capacity {tank.capacity}",
            details={"compartment_id": compartment_id, "tank_id": tank.id},
        )


def start_delivery(delivery_id: int, user: User, opening_dips: Any = None) -> FuelDelivery:
    """
    Snapshot opening dips and freeze compartments.

    Compartments without an explicit opening dip take the tank's current level.
    """
    with atomic():
        delivery = _lock_delivery(delivery_id, user)
        _require_status(delivery, DELIVERY_PENDING, "start")

        compartments = list(delivery.compartments)
        if not compartments:
            raise BusinessRuleError("A delivery needs at least one compartment", code="BIZ_NO_COMPARTMENTS")

        if delivery.bl_total_volume is not None:
            compartment_total = sum((Decimal(c.bl_volume) for c in compartments), ZERO)
            if abs(compartment_total - Decimal(delivery.bl_total_volume)) > BL_TOTAL_TOLERANCE:
                raise BusinessRuleError(
                    "Compartment volumes do not add up to the BL total",
                    code="BIZ_BL_TOTAL_MISMATCH",
                    details={
                        "bl_total_volume": to_decimal_str(delivery.bl_total_volume),
                        "compartment_total": to_decimal_str(compartment_total),
                    },
                )

        explicit = _dips_by_compartment(opening_dips, compartments, "opening_dips")
        for compartment in compartments:
            tank = compartment.tank
            dip = explicit.get(compartment.id, Decimal(tank.current_level))
            _check_within_capacity(dip, tank, compartment.id)
            compartment.opening_dip = quantize(dip)

        delivery.status = DELIVERY_IN_PROGRESS
        delivery.started_at = utcnow()

        record_event(
            org_id=delivery.station.org_id,
            station_id=delivery.station_id,
            action="DELIVERY_STARTED",
            entity_type="fuel_delivery",
            entity_id=delivery.id,
            actor_user_id=user.id,
            payload={"opening_dips": {str(c.id): c.opening_dip for c in compartments}},
        )
    return delivery


def complete_delivery(
    delivery_id: int,
    user: User,
    closing_dips: Any,
    *,
    now: datetime | None = None,
) -> FuelDelivery:
    """
    Record closing dips, compute received volumes and write tank levels.

    Each tank is set to the highest closing dip of its compartments (several
    compartments can discharge into one tank, one after the other).

    Raises:
        IncompleteSubmission: a compartment has no closing dip
        InvalidDipReading: closing dip below opening dip
        ConcurrentModification: a tank changed since the delivery was loaded
    """
    tolerance = Decimal(current_app.config.get("DELIVERY_VARIANCE_TOLERANCE", Decimal("0.005")))

    with atomic():
        delivery = _lock_delivery(delivery_id, user)
        _require_status(delivery, DELIVERY_IN_PROGRESS, "complete")

        compartments = list(delivery.compartments)
        tank_ids = sorted({c.tank_id for c in compartments})
        tank_versions = dict(
            db.session.execute(select(Tank.id, Tank.version).where(Tank.id.in_(tank_ids))).all()
        )

        dips = _dips_by_compartment(closing_dips, compartments, "closing_dips")
        missing = sorted(c.id for c in compartments if c.id not in dips)
        if missing:
            raise IncompleteSubmission(
                "Every compartment needs a closing dip",
                details={"missing_compartment_ids": missing},
            )

        level_by_tank: dict[int, Decimal] = defaultdict(lambda: ZERO)
        global_variance = ZERO
        disputed = False
        for compartment in compartments:
            closing = dips[compartment.id]
            _check_within_capacity(closing, compartment.tank, compartment.id)
            receipt = compute_delivery_receipt(
                compartment.opening_dip,
                closing,
                compartment.bl_volume,
                tolerance,
                compartment_id=compartment.id,
            )
            compartment.closing_dip = closing
            compartment.received_volume = receipt.received_volume
            compartment.variance = receipt.variance
            compartment.variance_percent = receipt.variance_percent
            compartment.status = COMPARTMENT_DISPUTED if receipt.disputed else COMPARTMENT_VALIDATED

            global_variance += receipt.variance
            disputed = disputed or receipt.disputed
            level_by_tank[compartment.tank_id] = max(level_by_tank[compartment.tank_id], closing)

        delivery.global_variance = quantize(global_variance)
        delivery.is_disputed = disputed
        delivery.status = DELIVERY_COMPLETED
        delivery.completed_at = now or utcnow()

        if delivery.replenishment_request_id is not None:
            request = delivery.replenishment_request
            request.status = REQUEST_COMPLETED

        db.session.flush()

        for tank_id in tank_ids:
            update_tank_level(tank_id, level_by_tank[tank_id], expected_version=tank_versions[tank_id])

        record_event(
            org_id=delivery.station.org_id,
            station_id=delivery.station_id,
            action="DELIVERY_COMPLETED",
            entity_type="fuel_delivery",
            entity_id=delivery.id,
            actor_user_id=user.id,
            payload={"global_variance": delivery.global_variance, "is_disputed": disputed},
        )

    if delivery.is_disputed:
        current_app.logger.warning(
            "Delivery %s (BL %s) completed with disputed compartments, global variance %s",
            delivery.id, delivery.bl_number, to_decimal_str(delivery.global_variance),
        )
    current_app.logger.info("Delivery %s completed", delivery.id)
    return delivery


# =============================================================================
# QUERIES
# =============================================================================

def list_deliveries(
    user: User,
    *,
    station_id: int | None = None,
    status: str | None = None,
) -> list[FuelDelivery]:
    query = db.session.query(FuelDelivery).join(Station, FuelDelivery.station_id == Station.id).filter(
        Station.org_id == user.org_id,
    )
    if station_id is not None:
        require_station_access(station_id, user)
        query = query.filter(FuelDelivery.station_id == station_id)
    else:
        accessible = get_accessible_station_ids(user)
        if accessible is not None:
            query = query.filter(FuelDelivery.station_id.in_(accessible))
    if status:
        query = query.filter(FuelDelivery.status == status)
    return query.order_by(FuelDelivery.created_at.desc(), FuelDelivery.id.desc()).all()
