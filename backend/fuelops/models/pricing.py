from __future__ import annotations

from ..extensions import db
from ..decimal_utils import to_decimal_str
from ..time_utils import to_utc_z

PRICE_PENDING = "PENDING"
PRICE_APPROVED = "APPROVED"
PRICE_REJECTED = "REJECTED"


class FuelPrice(db.Model):
    """
    Organization-wide pump price for one fuel type from effective_date on.

    LIFECYCLE: PENDING -> APPROVED | REJECTED. Only APPROVED rows are
    candidates for the price snapshot; the latest effective_date <= now wins.
    """
    __tablename__ = "fuel_prices"
    __table_args__ = (
        db.Index("ix_fuel_prices_org_type_effective", "org_id", "fuel_type", "effective_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    fuel_type = db.Column(db.String(16), nullable=False)
    price = db.Column(db.Numeric(19, 4), nullable=False)
    effective_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PRICE_PENDING, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "fuel_type": self.fuel_type,
            "price": to_decimal_str(self.price),
            "effective_date": to_utc_z(self.effective_date),
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_reason": self.rejected_reason,
        }
