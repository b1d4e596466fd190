"""
Shift Management Service (open / close / lock)

WHY: A shift is the unit of accountability of a station. Closing it is the
moment meters, dips and the cash box must all agree, so every close runs as
ONE transaction: either the whole reconciliation lands or nothing does.

STATE MACHINE:
    OPEN --close--> CLOSED --lock--> LOCKED
No transition goes backwards and nothing else mutates a CLOSED shift.

DESIGN PRINCIPLES:
- At most one OPEN shift per station (station row lock + partial unique index)
- Prices are frozen on the shift at open; later price changes never reprice it
- Opening indices/levels are carried from the nozzle meters and tank levels
- Close never guesses: bad meters, missing lines and unexplained cash variance
  all reject the request and leave the shift OPEN for a corrected resubmission
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..decimal_utils import parse_decimal, quantize, to_decimal_str
from ..errors import (
    DuplicateShift,
    IncompleteSubmission,
    InvalidStateTransition,
    PreviousShiftOpen,
    ShiftNotFound,
    ShiftNotOpen,
    ValidationError,
)
from ..models import (
    DeliveryCompartment,
    FuelDelivery,
    Shift,
    ShiftSale,
    ShiftTankDip,
    Station,
    Tank,
    User,
)
from ..models.shifts import SHIFT_OPEN, SHIFT_CLOSED, SHIFT_LOCKED, SHIFT_TYPE_ORDER
from ..models.supply import DELIVERY_COMPLETED
from ..time_utils import utcnow
from ..validation import parse_int
from .audit_service import record_event
from .concurrency import atomic, lock_for_update, run_with_retry
from .pricing_service import get_active_prices
from .reconciliation import (
    aggregate_stock_variance,
    check_justification,
    compute_cash_reconciliation,
    compute_sale,
    compute_stock_variance,
    exceeds_tolerance,
    total_revenue,
)
from .station_service import get_station_nozzles, get_station_tanks, nozzle_fuel_type
from .tank_service import update_tank_level
from .tenant_service import get_accessible_station_ids, require_station_access

DELIVERY_WINDOW_SHIFT = "shift"
DELIVERY_WINDOW_NONE = "none"


def _decimal(value: Any, field: str, *, allow_negative: bool = False) -> Decimal:
    try:
        return parse_decimal(value, field, allow_negative=allow_negative)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": field}) from exc


# =============================================================================
# OPEN
# =============================================================================

def open_shift(
    station_id: int,
    shift_date: date,
    shift_type: str,
    user: User,
    *,
    now: datetime | None = None,
) -> Shift:
    """
    Open a shift and freeze the station's active prices on it.

    Args:
        station_id: Station to open the shift for
        shift_date: Operating day
        shift_type: MORNING or EVENING
        user: Acting user (must reach the station)
        now: Open instant; also the price resolution instant

    Raises:
        DuplicateShift: (station, date, type) already exists in any status
        PreviousShiftOpen: another shift of the station is still OPEN
        NoPriceConfigured: a sold fuel type has no approved price at `now`
    """
    if shift_type not in SHIFT_TYPE_ORDER:
        raise ValidationError(
            f"shift_type must be one of {', '.join(sorted(SHIFT_TYPE_ORDER))}",
            details={"field": "shift_type"},
        )
    if not isinstance(shift_date, date):
        raise ValidationError("shift_date is required", details={"field": "shift_date"})

    station = require_station_access(station_id, user)
    station_id = station.id
    user_id = user.id
    opened_at = now or utcnow()

    shift = run_with_retry(
        lambda: _open_shift_txn(station_id, shift_date, shift_type, user_id, opened_at)
    )
    current_app.logger.info(
        "Shift %s opened for station %s (%s %s)",
        shift.id, station_id, shift_date.isoformat(), shift_type,
    )
    return shift


def _open_shift_txn(
    station_id: int,
    shift_date: date,
    shift_type: str,
    user_id: int,
    opened_at: datetime,
) -> Shift:
    with atomic():
        # Serializes concurrent opens of the same station
        station = lock_for_update(
            db.session.query(Station).filter_by(id=station_id)
        ).populate_existing().one()

        _check_open_guards(station_id, shift_date, shift_type)

        prices = get_active_prices(station, at_time=opened_at)
        snapshot = {fuel_type: to_decimal_str(price) for fuel_type, price in sorted(prices.items())}

        shift = Shift(
            station_id=station_id,
            shift_date=shift_date,
            shift_type=shift_type,
            status=SHIFT_OPEN,
            applied_price_snapshot=snapshot,
            opened_by_user_id=user_id,
            opened_at=opened_at,
        )
        db.session.add(shift)

        for nozzle in get_station_nozzles(station_id):
            db.session.add(ShiftSale(
                shift=shift,
                nozzle_id=nozzle.id,
                opening_index=nozzle.meter_index,
                unit_price=prices[nozzle_fuel_type(nozzle)],
            ))

        for tank in get_station_tanks(station_id):
            db.session.add(ShiftTankDip(
                shift=shift,
                tank_id=tank.id,
                opening_level=tank.current_level,
                deliveries=Decimal("0"),
            ))

        try:
            db.session.flush()
        except IntegrityError:
            # Lost a race the row lock did not cover (e.g. SQLite); let the
            # constraints tell us which rule was broken.
            db.session.rollback()
            _check_open_guards(station_id, shift_date, shift_type)
            raise

        record_event(
            org_id=station.org_id,
            station_id=station_id,
            action="SHIFT_OPENED",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=user_id,
            payload={
                "shift_date": shift_date.isoformat(),
                "shift_type": shift_type,
                "applied_price_snapshot": snapshot,
            },
        )
    return shift


def _check_open_guards(station_id: int, shift_date: date, shift_type: str) -> None:
    existing = db.session.query(Shift).filter_by(
        station_id=station_id,
        shift_date=shift_date,
        shift_type=shift_type,
    ).first()
    if existing:
        raise DuplicateShift(
            f"A {shift_type} shift already exists for {shift_date.isoformat()}",
            details={"shift_id": existing.id, "status": existing.status},
        )

    open_shift = db.session.query(Shift).filter_by(
        station_id=station_id,
        status=SHIFT_OPEN,
    ).first()
    if open_shift:
        raise PreviousShiftOpen(
            "The previous shift must be closed before opening a new one",
            details={
                "shift_id": open_shift.id,
                "shift_date": open_shift.shift_date.isoformat(),
                "shift_type": open_shift.shift_type,
            },
        )


# =============================================================================
# CLOSE
# =============================================================================

def close_shift(
    shift_id: int,
    sales: Iterable[dict],
    tank_dips: Iterable[dict],
    cash: dict,
    justification: str | None = None,
    *,
    closed_by_user_id: int,
    commit: bool = True,
    now: datetime | None = None,
) -> Shift:
    """
    Reconcile and close an OPEN shift.

    Args:
        shift_id: Shift to close
        sales: [{nozzle_id, closing_index}] covering every nozzle of the shift
        tank_dips: [{tank_id, closing_level}] covering every tank of the shift
        cash: {counted, card, expenses}
        justification: Required when cash variance is nonzero
        closed_by_user_id: Acting user
        commit: False leaves the work flushed for an outer transaction owner
            (the idempotency guard stores its response in the same commit)
        now: Close instant; upper bound of the delivery window

    Raises:
        ShiftNotFound, ShiftNotOpen, IncompleteSubmission, ValidationError,
        InvalidMeterReading, JustificationRequired, ConcurrentModification
    """
    closed_at = now or utcnow()
    config = current_app.config

    with atomic(commit=commit):
        shift = lock_for_update(
            db.session.query(Shift).filter_by(id=shift_id)
        ).populate_existing().first()
        if not shift:
            raise ShiftNotFound("Shift not found")
        if shift.status != SHIFT_OPEN:
            raise ShiftNotOpen(
                f"Shift is {shift.status}, only OPEN shifts can be closed",
                details={"shift_id": shift.id, "status": shift.status},
            )

        # Versions the tank writes below are allowed to overwrite
        tank_ids = [dip.tank_id for dip in shift.tank_dips]
        tank_versions = dict(
            db.session.execute(select(Tank.id, Tank.version).where(Tank.id.in_(tank_ids))).all()
        ) if tank_ids else {}

        closing_indices = _index_lines(
            sales, "nozzle_id", "closing_index", {s.nozzle_id for s in shift.sales}, "nozzle",
        )
        closing_levels = _index_lines(
            tank_dips, "tank_id", "closing_level", set(tank_ids), "tank",
        )

        cash = cash or {}
        if not isinstance(cash, dict):
            raise ValidationError("cash must be an object", details={"field": "cash"})
        counted = _decimal(cash.get("counted"), "cash.counted")
        card = _decimal(cash.get("card", 0), "cash.card")
        expenses = _decimal(cash.get("expenses", 0), "cash.expenses")

        # 1. Meter sales
        snapshot = shift.applied_price_snapshot or {}
        sale_results = {}
        sold_by_tank = defaultdict(list)
        for sale in shift.sales:
            nozzle = sale.nozzle
            result = compute_sale(
                sale.opening_index,
                closing_indices[sale.nozzle_id],
                nozzle_fuel_type(nozzle),
                snapshot,
                sale.unit_price,
                nozzle_id=sale.nozzle_id,
            )
            sale_results[sale.nozzle_id] = result
            sold_by_tank[nozzle.pump.tank_id].append(result.volume)
        revenue = total_revenue(sale_results.values())

        # 2. Tank dips
        received_by_tank = _deliveries_in_window(shift, closed_at)
        stock_results = {}
        for dip in shift.tank_dips:
            stock_results[dip.tank_id] = compute_stock_variance(
                dip.opening_level,
                closing_levels[dip.tank_id],
                sold_by_tank.get(dip.tank_id, ()),
                received_by_tank.get(dip.tank_id, ()),
            )
        stock_variance = aggregate_stock_variance(s.stock_variance for s in stock_results.values())

        # 3. Cash and the justification gate
        cash_result = compute_cash_reconciliation(revenue, counted, card, expenses)
        justification = check_justification(
            cash_result.cash_variance,
            justification,
            stock_variance=stock_variance,
            require_for_stock=config.get("REQUIRE_JUSTIFICATION_FOR_STOCK_VARIANCE", False),
        )

        # 4. Persist
        for sale in shift.sales:
            result = sale_results[sale.nozzle_id]
            sale.closing_index = closing_indices[sale.nozzle_id]
            sale.volume_sold = result.volume
            sale.unit_price = result.unit_price
            sale.revenue = quantize(result.revenue)
            sale.nozzle.meter_index = sale.closing_index

        for dip in shift.tank_dips:
            result = stock_results[dip.tank_id]
            dip.closing_level = closing_levels[dip.tank_id]
            dip.deliveries = quantize(sum(received_by_tank.get(dip.tank_id, ()), Decimal("0")))
            dip.theoretical_stock = result.theoretical_stock
            dip.stock_variance = result.stock_variance

        station = shift.station
        cash_tolerance = _tolerance(station.cash_variance_tolerance, config["DEFAULT_CASH_VARIANCE_TOLERANCE"])
        stock_tolerance = _tolerance(station.stock_variance_tolerance, config["DEFAULT_STOCK_VARIANCE_TOLERANCE"])
        tolerance_exceeded = exceeds_tolerance(
            cash_result.cash_variance, stock_variance, cash_tolerance, stock_tolerance,
        )

        shift.total_revenue = cash_result.total_revenue
        shift.cash_counted = counted
        shift.card_amount = card
        shift.expenses_amount = expenses
        shift.theoretical_cash = cash_result.theoretical_cash
        shift.cash_variance = cash_result.cash_variance
        shift.stock_variance = stock_variance
        shift.tolerance_exceeded = tolerance_exceeded
        shift.justification = justification
        shift.status = SHIFT_CLOSED
        shift.closed_by_user_id = closed_by_user_id
        shift.closed_at = closed_at
        db.session.flush()

        for tank_id in tank_ids:
            update_tank_level(tank_id, closing_levels[tank_id], expected_version=tank_versions[tank_id])

        record_event(
            org_id=station.org_id,
            station_id=station.id,
            action="SHIFT_CLOSED",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=closed_by_user_id,
            payload={
                "total_revenue": shift.total_revenue,
                "cash_variance": shift.cash_variance,
                "stock_variance": shift.stock_variance,
                "tolerance_exceeded": tolerance_exceeded,
            },
        )

    if tolerance_exceeded:
        current_app.logger.warning(
            "Shift %s closed outside tolerance (cash variance %s, stock variance %s)",
            shift.id, to_decimal_str(shift.cash_variance), to_decimal_str(shift.stock_variance),
        )
    current_app.logger.info("Shift %s closed, revenue %s", shift.id, to_decimal_str(shift.total_revenue))
    return shift


def _index_lines(
    lines: Iterable[dict] | None,
    id_field: str,
    value_field: str,
    expected_ids: set[int],
    label: str,
) -> dict[int, Decimal]:
    """Map submitted lines by id; every expected id exactly once, nothing else."""
    if lines is None:
        lines = []
    if not isinstance(lines, (list, tuple)):
        raise ValidationError(f"{label} lines must be a list")

    values: dict[int, Decimal] = {}
    for line in lines:
        if not isinstance(line, dict):
            raise ValidationError(f"Each {label} line must be an object")
        ident = parse_int(line.get(id_field), id_field)
        if ident not in expected_ids:
            raise ValidationError(
                f"{label.capitalize()} {ident} is not part of this shift",
                details={id_field: ident},
            )
        if ident in values:
            raise ValidationError(
                f"{label.capitalize()} {ident} was submitted more than once",
                details={id_field: ident},
            )
        values[ident] = _decimal(line.get(value_field), value_field)

    missing = sorted(expected_ids - values.keys())
    if missing:
        raise IncompleteSubmission(
            f"Missing {label} readings for this shift",
            details={f"missing_{label}_ids": missing},
        )
    return values


def _deliveries_in_window(shift: Shift, until: datetime) -> dict[int, list[Decimal]]:
    """Received volume per tank from deliveries completed during the shift."""
    window = current_app.config.get("SHIFT_DELIVERY_WINDOW", DELIVERY_WINDOW_SHIFT)
    if window == DELIVERY_WINDOW_NONE:
        return {}
    if window != DELIVERY_WINDOW_SHIFT:
        raise ValueError(f"Unknown SHIFT_DELIVERY_WINDOW: {window!r}")

    rows = (
        db.session.query(DeliveryCompartment.tank_id, DeliveryCompartment.received_volume)
        .join(FuelDelivery, DeliveryCompartment.delivery_id == FuelDelivery.id)
        .filter(
            FuelDelivery.station_id == shift.station_id,
            FuelDelivery.status == DELIVERY_COMPLETED,
            FuelDelivery.completed_at >= shift.opened_at,
            FuelDelivery.completed_at <= until,
            DeliveryCompartment.received_volume.isnot(None),
        )
        .all()
    )
    received = defaultdict(list)
    for tank_id, volume in rows:
        received[tank_id].append(Decimal(volume))
    return received


def _tolerance(station_value: Decimal | None, default: Decimal) -> Decimal:
    return Decimal(station_value) if station_value is not None else Decimal(default)


# =============================================================================
# LOCK
# =============================================================================

def lock_shift(shift_id: int, user: User) -> Shift:
    """
    Seal a CLOSED shift after review.

    Raises:
        ShiftNotFound, InvalidStateTransition
    """
    with atomic():
        shift = lock_for_update(
            db.session.query(Shift).filter_by(id=shift_id)
        ).populate_existing().first()
        if not shift or shift.station.org_id != user.org_id:
            raise ShiftNotFound("Shift not found")
        require_station_access(shift.station_id, user)

        if shift.status != SHIFT_CLOSED:
            raise InvalidStateTransition(
                f"Cannot lock a {shift.status} shift",
                details={"shift_id": shift.id, "status": shift.status},
            )

        shift.status = SHIFT_LOCKED
        shift.locked_by_user_id = user.id
        shift.locked_at = utcnow()

        record_event(
            org_id=user.org_id,
            station_id=shift.station_id,
            action="SHIFT_LOCKED",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=user.id,
        )
    return shift


# =============================================================================
# QUERIES
# =============================================================================

def get_shift(shift_id: int, user: User) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if not shift or shift.station.org_id != user.org_id:
        raise ShiftNotFound("Shift not found")
    require_station_access(shift.station_id, user)
    return shift


def get_current_shift(station_id: int) -> Shift | None:
    """The station's OPEN shift, if any."""
    return db.session.query(Shift).filter_by(
        station_id=station_id,
        status=SHIFT_OPEN,
    ).first()


def list_shifts(
    user: User,
    *,
    station_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Shift], int]:
    """Shifts visible to the user, newest first. Returns (page_items, total)."""
    query = db.session.query(Shift).join(Station, Shift.station_id == Station.id).filter(
        Station.org_id == user.org_id,
    )

    if station_id is not None:
        require_station_access(station_id, user)
        query = query.filter(Shift.station_id == station_id)
    else:
        accessible = get_accessible_station_ids(user)
        if accessible is not None:
            query = query.filter(Shift.station_id.in_(accessible))

    if status:
        query = query.filter(Shift.status == status)
    if start_date:
        query = query.filter(Shift.shift_date >= start_date)
    if end_date:
        query = query.filter(Shift.shift_date <= end_date)

    total = query.count()
    items = (
        query.order_by(Shift.shift_date.desc(), Shift.shift_type.desc(), Shift.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
