from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

IDEMPOTENCY_IN_PROGRESS = "IN_PROGRESS"
IDEMPOTENCY_COMPLETED = "COMPLETED"


class IdempotencyRecord(db.Model):
    """
    Claim + stored result for a client-supplied idempotency key.

    The unique (operation, idempotency_key) constraint is the claim: whoever
    inserts the row first executes the operation, everyone else replays.
    """
    __tablename__ = "idempotency_records"
    __table_args__ = (
        db.UniqueConstraint("operation", "idempotency_key", name="uq_idempotency_operation_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operation = db.Column(db.String(64), nullable=False)
    idempotency_key = db.Column(db.String(255), nullable=False)
    resource_id = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=IDEMPOTENCY_IN_PROGRESS)
    response_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "idempotency_key": self.idempotency_key,
            "resource_id": self.resource_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }


class AuditLog(db.Model):
    """
    Append-only audit trail of domain events.

    Rows are written inside the same transaction as the change they record,
    so a rolled-back operation leaves no audit entry behind.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=True, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "station_id": self.station_id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
