from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_CEO = "CEO"
ROLE_CFO = "CFO"
ROLE_DCO = "DCO"
ROLE_LOGISTICS = "LOGISTICS"
ROLE_STATION_MANAGER = "STATION_MANAGER"
ROLE_CHEF_PISTE = "CHEF_PISTE"

VALID_ROLES = {
    ROLE_SUPER_ADMIN,
    ROLE_CEO,
    ROLE_CFO,
    ROLE_DCO,
    ROLE_LOGISTICS,
    ROLE_STATION_MANAGER,
    ROLE_CHEF_PISTE,
}

# Roles that see every station of their organization
ORG_WIDE_ROLES = {ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_CFO, ROLE_DCO, ROLE_LOGISTICS}


class User(db.Model):
    """
    Operator account.

    Credentials and sessions live outside this service; a User row is what an
    upstream identity layer resolves to. Station-scoped roles carry station_id.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=True, index=True)

    username = db.Column(db.String(64), nullable=False)
    full_name = db.Column(db.String(128), nullable=True)
    role = db.Column(db.String(32), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True))
    station = db.relationship("Station", backref=db.backref("assigned_users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "station_id": self.station_id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
