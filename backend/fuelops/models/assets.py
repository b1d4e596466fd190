from __future__ import annotations

from ..extensions import db
from ..decimal_utils import to_decimal_str
from ..time_utils import to_utc_z

FUEL_ESSENCE = "ESSENCE"
FUEL_GASOIL = "GASOIL"
FUEL_PETROLE = "PETROLE"

VALID_FUEL_TYPES = {FUEL_ESSENCE, FUEL_GASOIL, FUEL_PETROLE}


class Tank(db.Model):
    """
    Underground storage tank.

    CONCURRENCY: `version` is an explicit optimistic-lock counter. It is NOT
    registered as the mapper's version_id_col: level writes go through
    tank_service.update_tank_level, which issues its own compare-and-swap
    UPDATE ... WHERE version = :expected and bumps it by exactly one.
    """
    __tablename__ = "tanks"
    __table_args__ = (
        db.CheckConstraint("current_level >= 0", name="ck_tanks_level_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    fuel_type = db.Column(db.String(16), nullable=False, index=True)
    capacity = db.Column(db.Numeric(19, 4), nullable=False)
    current_level = db.Column(db.Numeric(19, 4), nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    station = db.relationship("Station", backref=db.backref("tanks", lazy=True))

    @property
    def ullage(self):
        return self.capacity - self.current_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "fuel_type": self.fuel_type,
            "capacity": to_decimal_str(self.capacity),
            "current_level": to_decimal_str(self.current_level),
            "ullage": to_decimal_str(self.ullage),
            "version": self.version,
            "updated_at": to_utc_z(self.updated_at),
        }


class Pump(db.Model):
    """Dispenser; every nozzle of a pump draws from the pump's tank."""
    __tablename__ = "pumps"
    __table_args__ = (
        db.UniqueConstraint("station_id", "code", name="uq_pumps_station_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    station = db.relationship("Station", backref=db.backref("pumps", lazy=True))
    tank = db.relationship("Tank", backref=db.backref("pumps", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "tank_id": self.tank_id,
            "code": self.code,
        }


class Nozzle(db.Model):
    """
    Pump nozzle with a cumulative mechanical/electronic meter.

    meter_index is carried into the next shift's opening index and is moved
    forward to the closing index when a shift closes.
    """
    __tablename__ = "nozzles"
    __table_args__ = (
        db.UniqueConstraint("pump_id", "side", name="uq_nozzles_pump_side"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pump_id = db.Column(db.Integer, db.ForeignKey("pumps.id"), nullable=False, index=True)
    side = db.Column(db.String(1), nullable=False)  # A, B
    meter_index = db.Column(db.Numeric(19, 4), nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    pump = db.relationship("Pump", backref=db.backref("nozzles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pump_id": self.pump_id,
            "side": self.side,
            "meter_index": to_decimal_str(self.meter_index),
        }
