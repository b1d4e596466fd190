# Overview: Station asset setup and lookups (tanks, pumps, nozzles).

"""
Station Asset Service

Stations own tanks; pumps draw from one tank; nozzles hang off pumps.
The shift engine only needs read access to this topology, plus the setup
helpers used by the CLI seed command and tests.
"""

from decimal import Decimal

from ..extensions import db
from ..errors import ValidationError, NotFoundError
from ..models import Station, Tank, Pump, Nozzle
from ..models.assets import VALID_FUEL_TYPES


def create_station(org_id: int, code: str, name: str, *,
                   cash_variance_tolerance: Decimal | None = None,
                   stock_variance_tolerance: Decimal | None = None) -> Station:
    existing = db.session.query(Station).filter_by(org_id=org_id, code=code).first()
    if existing:
        raise ValidationError(f"Station '{code}' already exists in this organization")

    station = Station(
        org_id=org_id,
        code=code,
        name=name,
        is_active=True,
        cash_variance_tolerance=cash_variance_tolerance,
        stock_variance_tolerance=stock_variance_tolerance,
    )
    db.session.add(station)
    db.session.commit()
    return station


def add_tank(station_id: int, fuel_type: str, capacity: Decimal, current_level: Decimal = Decimal("0")) -> Tank:
    if fuel_type not in VALID_FUEL_TYPES:
        raise ValidationError(f"Invalid fuel type: {fuel_type}")
    if capacity <= 0:
        raise ValidationError("capacity must be positive")
    if current_level < 0 or current_level > capacity:
        raise ValidationError("current_level must be between 0 and capacity")

    tank = Tank(
        station_id=station_id,
        fuel_type=fuel_type,
        capacity=capacity,
        current_level=current_level,
        version=1,
    )
    db.session.add(tank)
    db.session.commit()
    return tank


def add_pump(station_id: int, tank_id: int, code: str) -> Pump:
    tank = db.session.get(Tank, tank_id)
    if not tank or tank.station_id != station_id:
        raise NotFoundError("Tank not found at this station")

    pump = Pump(station_id=station_id, tank_id=tank_id, code=code)
    db.session.add(pump)
    db.session.commit()
    return pump


def add_nozzle(pump_id: int, side: str, meter_index: Decimal = Decimal("0")) -> Nozzle:
    if side not in ("A", "B"):
        raise ValidationError("side must be A or B")

    nozzle = Nozzle(pump_id=pump_id, side=side, meter_index=meter_index)
    db.session.add(nozzle)
    db.session.commit()
    return nozzle


def get_station_tanks(station_id: int) -> list[Tank]:
    return db.session.query(Tank).filter_by(station_id=station_id).order_by(Tank.id).all()


def get_station_nozzles(station_id: int) -> list[Nozzle]:
    return (
        db.session.query(Nozzle)
        .join(Pump, Nozzle.pump_id == Pump.id)
        .filter(Pump.station_id == station_id)
        .order_by(Nozzle.id)
        .all()
    )


def nozzle_fuel_type(nozzle: Nozzle) -> str:
    """Fuel type a nozzle dispenses: nozzle -> pump -> tank -> fuel_type."""
    return nozzle.pump.tank.fuel_type


def get_sold_fuel_types(station_id: int) -> set[str]:
    """Fuel types of the tanks that feed at least one pump of the station."""
    rows = (
        db.session.query(Tank.fuel_type)
        .join(Pump, Pump.tank_id == Tank.id)
        .filter(Pump.station_id == station_id)
        .distinct()
        .all()
    )
    return {row[0] for row in rows}
