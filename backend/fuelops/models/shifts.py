from __future__ import annotations

from ..extensions import db
from ..decimal_utils import to_decimal_str
from ..time_utils import to_utc_z

SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"
SHIFT_LOCKED = "LOCKED"

SHIFT_MORNING = "MORNING"
SHIFT_EVENING = "EVENING"

# Position of a shift type within its day; (shift_date, order) sorts shifts
SHIFT_TYPE_ORDER = {SHIFT_MORNING: 0, SHIFT_EVENING: 1}


class Shift(db.Model):
    """
    One operating period of a station (shift report).

    LIFECYCLE:
    - OPEN: created with frozen price snapshot and opening indices/dips
    - CLOSED: reconciliation computed and persisted (terminal for normal flow)
    - LOCKED: administratively sealed after review; no further mutation

    INVARIANTS (enforced by the database, not only by the service):
    - (station_id, shift_date, shift_type) is unique
    - at most one OPEN shift per station (partial unique index)
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("station_id", "shift_date", "shift_type", name="uq_shifts_station_date_type"),
        db.Index(
            "uq_shifts_station_open",
            "station_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_shifts_station_date", "station_id", "shift_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    shift_date = db.Column(db.Date, nullable=False)
    shift_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SHIFT_OPEN, index=True)

    # Fuel type -> unit price (decimal string), frozen at open
    applied_price_snapshot = db.Column(db.JSON, nullable=False, default=dict)

    # Reconciliation results (set at close)
    total_revenue = db.Column(db.Numeric(19, 4), nullable=True)
    cash_counted = db.Column(db.Numeric(19, 4), nullable=True)
    card_amount = db.Column(db.Numeric(19, 4), nullable=True)
    expenses_amount = db.Column(db.Numeric(19, 4), nullable=True)
    theoretical_cash = db.Column(db.Numeric(19, 4), nullable=True)
    cash_variance = db.Column(db.Numeric(19, 4), nullable=True)
    stock_variance = db.Column(db.Numeric(19, 4), nullable=True)  # sum of |per-tank variance|
    tolerance_exceeded = db.Column(db.Boolean, nullable=False, default=False)
    justification = db.Column(db.Text, nullable=True)

    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    locked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    station = db.relationship("Station", backref=db.backref("shifts", lazy=True))
    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    sales = db.relationship("ShiftSale", back_populates="shift", lazy=True, order_by="ShiftSale.nozzle_id")
    tank_dips = db.relationship("ShiftTankDip", back_populates="shift", lazy=True, order_by="ShiftTankDip.tank_id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "station_id": self.station_id,
            "shift_date": self.shift_date.isoformat() if self.shift_date else None,
            "shift_type": self.shift_type,
            "status": self.status,
            "applied_price_snapshot": dict(self.applied_price_snapshot or {}),
            "total_revenue": to_decimal_str(self.total_revenue),
            "cash_counted": to_decimal_str(self.cash_counted),
            "card_amount": to_decimal_str(self.card_amount),
            "expenses_amount": to_decimal_str(self.expenses_amount),
            "theoretical_cash": to_decimal_str(self.theoretical_cash),
            "cash_variance": to_decimal_str(self.cash_variance),
            "stock_variance": to_decimal_str(self.stock_variance),
            "tolerance_exceeded": self.tolerance_exceeded,
            "justification": self.justification,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "locked_by_user_id": self.locked_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "locked_at": to_utc_z(self.locked_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["sales"] = [s.to_dict() for s in self.sales]
            data["tank_dips"] = [d.to_dict() for d in self.tank_dips]
        return data


class ShiftSale(db.Model):
    """Per-nozzle meter sale of a shift. unit_price is the snapshot price at open."""
    __tablename__ = "shift_sales"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "nozzle_id", name="uq_shift_sales_shift_nozzle"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    nozzle_id = db.Column(db.Integer, db.ForeignKey("nozzles.id"), nullable=False, index=True)

    opening_index = db.Column(db.Numeric(19, 4), nullable=False)
    closing_index = db.Column(db.Numeric(19, 4), nullable=True)
    volume_sold = db.Column(db.Numeric(19, 4), nullable=True)
    unit_price = db.Column(db.Numeric(19, 4), nullable=False)
    revenue = db.Column(db.Numeric(19, 4), nullable=True)

    shift = db.relationship("Shift", back_populates="sales")
    nozzle = db.relationship("Nozzle")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "nozzle_id": self.nozzle_id,
            "opening_index": to_decimal_str(self.opening_index),
            "closing_index": to_decimal_str(self.closing_index),
            "volume_sold": to_decimal_str(self.volume_sold),
            "unit_price": to_decimal_str(self.unit_price),
            "revenue": to_decimal_str(self.revenue),
        }


class ShiftTankDip(db.Model):
    """
    Per-tank dip reconciliation of a shift.

    theoretical_stock = opening_level - sold + deliveries
    stock_variance = closing_level - theoretical_stock (negative = shortage)
    """
    __tablename__ = "shift_tank_dips"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "tank_id", name="uq_shift_tank_dips_shift_tank"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=False, index=True)

    opening_level = db.Column(db.Numeric(19, 4), nullable=False)
    closing_level = db.Column(db.Numeric(19, 4), nullable=True)
    deliveries = db.Column(db.Numeric(19, 4), nullable=False, default=0)
    theoretical_stock = db.Column(db.Numeric(19, 4), nullable=True)
    stock_variance = db.Column(db.Numeric(19, 4), nullable=True)

    shift = db.relationship("Shift", back_populates="tank_dips")
    tank = db.relationship("Tank")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "tank_id": self.tank_id,
            "opening_level": to_decimal_str(self.opening_level),
            "closing_level": to_decimal_str(self.closing_level),
            "deliveries": to_decimal_str(self.deliveries),
            "theoretical_stock": to_decimal_str(self.theoretical_stock),
            "stock_variance": to_decimal_str(self.stock_variance),
        }
