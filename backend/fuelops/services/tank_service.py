# Overview: Optimistic-lock tank level updates and ullage lookups.

"""
Tank Level Service

Every write to Tank.current_level in the system goes through
update_tank_level. The write is an explicit compare-and-swap:

    UPDATE tanks SET current_level = :level, version = :v + 1
    WHERE id = :id AND version = :v

rowcount 0 means someone else bumped the version first. With an
expected_version from the caller that is final (ConcurrentModification);
without one the current version is re-read and the swap retried a bounded
number of times. Either way a write is never applied over a version it did
not observe, so a delivery completing during a shift close cannot silently
erase the other writer's update.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..decimal_utils import quantize, to_decimal_str
from ..errors import ConcurrentModification, NotFoundError, ValidationError
from ..models import Tank, User
from ..time_utils import utcnow
from .audit_service import record_event
from .tenant_service import require_station_access


def update_tank_level(
    tank_id: int,
    new_level: Decimal,
    expected_version: int | None = None,
    *,
    max_attempts: int | None = None,
) -> Tank:
    """
    Set a tank's level and bump its version by one. Does not commit.

    Args:
        tank_id: Tank to write
        new_level: Level after the write (0 <= level <= capacity)
        expected_version: Version the caller based its decision on; a
            mismatch fails immediately with no write
        max_attempts: CAS attempts when expected_version is None

    Raises:
        NotFoundError, ValidationError, ConcurrentModification
    """
    new_level = quantize(Decimal(new_level))
    if expected_version is not None:
        attempts = 1
    else:
        attempts = max_attempts or current_app.config.get("TANK_UPDATE_MAX_ATTEMPTS", 3)

    observed_version = None
    for _ in range(attempts):
        row = db.session.execute(
            select(Tank.version, Tank.capacity).where(Tank.id == tank_id)
        ).first()
        if row is None:
            raise NotFoundError("Tank not found")

        if new_level < 0 or new_level > row.capacity:
            raise ValidationError(
                f"Tank level {new_level} is outside 0..{row.capacity}",
                details={"tank_id": tank_id},
            )

        observed_version = row.version
        version = expected_version if expected_version is not None else row.version
        result = db.session.execute(
            update(Tank)
            .where(Tank.id == tank_id, Tank.version == version)
            .values(current_level=new_level, version=version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return db.session.get(Tank, tank_id, populate_existing=True)

    raise ConcurrentModification(
        f"Tank {tank_id} was modified by another process. Please retry.",
        details={
            "tank_id": tank_id,
            "expected_version": expected_version,
            "current_version": observed_version,
        },
    )


def adjust_tank_level(
    tank_id: int,
    new_level: Decimal,
    *,
    actor_user_id: int,
    expected_version: int | None = None,
) -> Tank:
    """Manual level correction (gauge recalibration, physical dip outside a shift)."""
    tank = db.session.get(Tank, tank_id)
    if not tank:
        raise NotFoundError("Tank not found")
    previous_level = tank.current_level

    try:
        tank = update_tank_level(tank_id, new_level, expected_version)
        record_event(
            org_id=tank.station.org_id,
            station_id=tank.station_id,
            action="TANK_LEVEL_ADJUSTED",
            entity_type="tank",
            entity_id=tank.id,
            actor_user_id=actor_user_id,
            payload={"previous_level": previous_level, "new_level": tank.current_level, "version": tank.version},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return tank


def get_ullage_report(station_id: int) -> list[dict]:
    """Capacity, level, ullage and fill percentage of every tank of the station."""
    tanks = db.session.query(Tank).filter_by(station_id=station_id).order_by(Tank.id).all()
    report = []
    for tank in tanks:
        capacity = Decimal(tank.capacity)
        percent_full = quantize(Decimal(tank.current_level) / capacity * 100) if capacity else Decimal("0")
        report.append({
            "tank_id": tank.id,
            "fuel_type": tank.fuel_type,
            "capacity": to_decimal_str(tank.capacity),
            "current_level": to_decimal_str(tank.current_level),
            "ullage": to_decimal_str(tank.ullage),
            "percent_full": to_decimal_str(percent_full),
            "version": tank.version,
        })
    return report


def get_tank(tank_id: int, user: User) -> Tank:
    tank = db.session.get(Tank, tank_id)
    if not tank or tank.station.org_id != user.org_id:
        raise NotFoundError("Tank not found", code="BIZ_TANK_NOT_FOUND")
    require_station_access(tank.station_id, user)
    return tank
