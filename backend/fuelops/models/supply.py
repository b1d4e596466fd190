from __future__ import annotations

from ..extensions import db
from ..decimal_utils import to_decimal_str
from ..time_utils import to_utc_z

REQUEST_DRAFT = "DRAFT"
REQUEST_SUBMITTED = "SUBMITTED"
REQUEST_VALIDATED = "VALIDATED"
REQUEST_ORDERED = "ORDERED"
REQUEST_COMPLETED = "COMPLETED"

DELIVERY_PENDING = "PENDING"
DELIVERY_IN_PROGRESS = "IN_PROGRESS"
DELIVERY_COMPLETED = "COMPLETED"

COMPARTMENT_VALIDATED = "VALIDATED"
COMPARTMENT_DISPUTED = "DISPUTED"


class ReplenishmentRequest(db.Model):
    """
    Station request to refill one tank.

    LIFECYCLE: DRAFT -> SUBMITTED -> VALIDATED -> ORDERED -> COMPLETED
    (COMPLETED is set by the linked delivery's completion).
    requested_volume must fit the tank ullage at creation and at submission.
    """
    __tablename__ = "replenishment_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=False, index=True)
    fuel_type = db.Column(db.String(16), nullable=False)
    requested_volume = db.Column(db.Numeric(19, 4), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=REQUEST_DRAFT, index=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    validation_comment = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    station = db.relationship("Station", backref=db.backref("replenishment_requests", lazy=True))
    tank = db.relationship("Tank")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "tank_id": self.tank_id,
            "fuel_type": self.fuel_type,
            "requested_volume": to_decimal_str(self.requested_volume),
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "validated_by_user_id": self.validated_by_user_id,
            "validation_comment": self.validation_comment,
            "created_at": to_utc_z(self.created_at),
        }


class FuelDelivery(db.Model):
    """
    Truck delivery against a bill of lading.

    LIFECYCLE: PENDING (compartments editable) -> IN_PROGRESS (opening dips
    snapshotted) -> COMPLETED (closing dips, received volumes, tank levels).
    bl_number is globally unique; the constraint, not a pre-check, is authoritative.
    """
    __tablename__ = "fuel_deliveries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    replenishment_request_id = db.Column(
        db.Integer, db.ForeignKey("replenishment_requests.id"), nullable=True, index=True
    )

    bl_number = db.Column(db.String(64), nullable=False, unique=True)
    bl_total_volume = db.Column(db.Numeric(19, 4), nullable=True)
    truck_plate = db.Column(db.String(32), nullable=False)
    driver_name = db.Column(db.String(128), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=DELIVERY_PENDING, index=True)
    is_disputed = db.Column(db.Boolean, nullable=False, default=False)
    global_variance = db.Column(db.Numeric(19, 4), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    station = db.relationship("Station", backref=db.backref("deliveries", lazy=True))
    replenishment_request = db.relationship("ReplenishmentRequest")
    compartments = db.relationship(
        "DeliveryCompartment",
        back_populates="delivery",
        lazy=True,
        order_by="DeliveryCompartment.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_compartments: bool = True) -> dict:
        data = {
            "id": self.id,
            "station_id": self.station_id,
            "replenishment_request_id": self.replenishment_request_id,
            "bl_number": self.bl_number,
            "bl_total_volume": to_decimal_str(self.bl_total_volume),
            "truck_plate": self.truck_plate,
            "driver_name": self.driver_name,
            "status": self.status,
            "is_disputed": self.is_disputed,
            "global_variance": to_decimal_str(self.global_variance),
            "created_by_user_id": self.created_by_user_id,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_compartments:
            data["compartments"] = [c.to_dict() for c in self.compartments]
        return data


class DeliveryCompartment(db.Model):
    """One truck compartment discharged into one tank."""
    __tablename__ = "delivery_compartments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("fuel_deliveries.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=False, index=True)
    fuel_type = db.Column(db.String(16), nullable=False)

    bl_volume = db.Column(db.Numeric(19, 4), nullable=False)
    opening_dip = db.Column(db.Numeric(19, 4), nullable=True)
    closing_dip = db.Column(db.Numeric(19, 4), nullable=True)
    received_volume = db.Column(db.Numeric(19, 4), nullable=True)
    variance = db.Column(db.Numeric(19, 4), nullable=True)
    variance_percent = db.Column(db.Numeric(19, 4), nullable=True)
    status = db.Column(db.String(16), nullable=True)  # VALIDATED, DISPUTED once completed

    delivery = db.relationship("FuelDelivery", back_populates="compartments")
    tank = db.relationship("Tank")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "tank_id": self.tank_id,
            "fuel_type": self.fuel_type,
            "bl_volume": to_decimal_str(self.bl_volume),
            "opening_dip": to_decimal_str(self.opening_dip),
            "closing_dip": to_decimal_str(self.closing_dip),
            "received_volume": to_decimal_str(self.received_volume),
            "variance": to_decimal_str(self.variance),
            "variance_percent": to_decimal_str(self.variance_percent),
            "status": self.status,
        }
