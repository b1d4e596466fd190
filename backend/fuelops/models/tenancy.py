from __future__ import annotations

from ..extensions import db
from ..decimal_utils import to_decimal_str
from ..time_utils import to_utc_z


class Organization(db.Model):
    """
    Multi-tenant root: every tenant is an Organization (an operating company).

    Stations, users and fuel prices belong to exactly one organization.
    No data may cross organization boundaries.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Station(db.Model):
    """
    Fuel station within an organization.

    Station codes are unique within an organization, not globally.
    Variance tolerances drive the tolerance_exceeded flag on closed shifts;
    NULL means "use the application default".
    """
    __tablename__ = "stations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_stations_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(120), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    cash_variance_tolerance = db.Column(db.Numeric(19, 4), nullable=True)
    stock_variance_tolerance = db.Column(db.Numeric(19, 4), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("stations", lazy=True))

    def __repr__(self) -> str:
        return f"<Station id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "cash_variance_tolerance": to_decimal_str(self.cash_variance_tolerance),
            "stock_variance_tolerance": to_decimal_str(self.stock_variance_tolerance),
            "created_at": to_utc_z(self.created_at),
        }
