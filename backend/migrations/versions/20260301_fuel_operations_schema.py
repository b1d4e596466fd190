"""Fuel operations schema: stations, tanks, shifts, supply, idempotency

Revision ID: 20260301_fuelops_initial
Revises:
Create Date: 2026-03-01
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_fuelops_initial"
down_revision = None
branch_labels = None
depends_on = None


def _money(name, nullable=True, **kwargs):
    return sa.Column(name, sa.Numeric(precision=19, scale=4), nullable=nullable, **kwargs)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    # --- tenancy --------------------------------------------------------------
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("organizations", schema=None) as batch_op:
        batch_op.create_index("ix_organizations_code", ["code"], unique=True)
        batch_op.create_index("ix_organizations_is_active", ["is_active"], unique=False)

    op.create_table(
        "stations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _money("cash_variance_tolerance"),
        _money("stock_variance_tolerance"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "code", name="uq_stations_org_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stations", schema=None) as batch_op:
        batch_op.create_index("ix_stations_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_stations_is_active", ["is_active"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=128), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_users_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_users_role", ["role"], unique=False)

    # --- assets ---------------------------------------------------------------
    op.create_table(
        "tanks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("fuel_type", sa.String(length=16), nullable=False),
        _money("capacity", nullable=False),
        _money("current_level", nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("current_level >= 0", name="ck_tanks_level_non_negative"),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tanks", schema=None) as batch_op:
        batch_op.create_index("ix_tanks_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_tanks_fuel_type", ["fuel_type"], unique=False)

    op.create_table(
        "pumps",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("tank_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.ForeignKeyConstraint(["tank_id"], ["tanks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("station_id", "code", name="uq_pumps_station_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pumps", schema=None) as batch_op:
        batch_op.create_index("ix_pumps_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_pumps_tank_id", ["tank_id"], unique=False)

    op.create_table(
        "nozzles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pump_id", sa.Integer(), nullable=False),
        sa.Column("side", sa.String(length=1), nullable=False),
        _money("meter_index", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["pump_id"], ["pumps.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pump_id", "side", name="uq_nozzles_pump_side"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("nozzles", schema=None) as batch_op:
        batch_op.create_index("ix_nozzles_pump_id", ["pump_id"], unique=False)

    # --- pricing --------------------------------------------------------------
    op.create_table(
        "fuel_prices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("fuel_type", sa.String(length=16), nullable=False),
        _money("price", nullable=False),
        sa.Column("effective_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("fuel_prices", schema=None) as batch_op:
        batch_op.create_index("ix_fuel_prices_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_fuel_prices_status", ["status"], unique=False)
        batch_op.create_index("ix_fuel_prices_org_type_effective", ["org_id", "fuel_type", "effective_date"], unique=False)

    # --- shifts ---------------------------------------------------------------
    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("shift_date", sa.Date(), nullable=False),
        sa.Column("shift_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("applied_price_snapshot", sa.JSON(), nullable=False),
        _money("total_revenue"),
        _money("cash_counted"),
        _money("card_amount"),
        _money("expenses_amount"),
        _money("theoretical_cash"),
        _money("cash_variance"),
        _money("stock_variance"),
        sa.Column("tolerance_exceeded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("opened_by_user_id", sa.Integer(), nullable=False),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("locked_by_user_id", sa.Integer(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.ForeignKeyConstraint(["opened_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["closed_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["locked_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("station_id", "shift_date", "shift_type", name="uq_shifts_station_date_type"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shifts", schema=None) as batch_op:
        batch_op.create_index("ix_shifts_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_shifts_status", ["status"], unique=False)
        batch_op.create_index("ix_shifts_station_date", ["station_id", "shift_date"], unique=False)
    # At most one OPEN shift per station
    op.create_index(
        "uq_shifts_station_open",
        "shifts",
        ["station_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "shift_sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("nozzle_id", sa.Integer(), nullable=False),
        _money("opening_index", nullable=False),
        _money("closing_index"),
        _money("volume_sold"),
        _money("unit_price", nullable=False),
        _money("revenue"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"]),
        sa.ForeignKeyConstraint(["nozzle_id"], ["nozzles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shift_id", "nozzle_id", name="uq_shift_sales_shift_nozzle"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shift_sales", schema=None) as batch_op:
        batch_op.create_index("ix_shift_sales_shift_id", ["shift_id"], unique=False)
        batch_op.create_index("ix_shift_sales_nozzle_id", ["nozzle_id"], unique=False)

    op.create_table(
        "shift_tank_dips",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("tank_id", sa.Integer(), nullable=False),
        _money("opening_level", nullable=False),
        _money("closing_level"),
        _money("deliveries", nullable=False, server_default="0"),
        _money("theoretical_stock"),
        _money("stock_variance"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"]),
        sa.ForeignKeyConstraint(["tank_id"], ["tanks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shift_id", "tank_id", name="uq_shift_tank_dips_shift_tank"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shift_tank_dips", schema=None) as batch_op:
        batch_op.create_index("ix_shift_tank_dips_shift_id", ["shift_id"], unique=False)
        batch_op.create_index("ix_shift_tank_dips_tank_id", ["tank_id"], unique=False)

    # --- supply ---------------------------------------------------------------
    op.create_table(
        "replenishment_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("tank_id", sa.Integer(), nullable=False),
        sa.Column("fuel_type", sa.String(length=16), nullable=False),
        _money("requested_volume", nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("requested_by_user_id", sa.Integer(), nullable=False),
        sa.Column("validated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("validation_comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.ForeignKeyConstraint(["tank_id"], ["tanks.id"]),
        sa.ForeignKeyConstraint(["requested_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["validated_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("replenishment_requests", schema=None) as batch_op:
        batch_op.create_index("ix_replenishment_requests_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_replenishment_requests_tank_id", ["tank_id"], unique=False)
        batch_op.create_index("ix_replenishment_requests_status", ["status"], unique=False)

    op.create_table(
        "fuel_deliveries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("replenishment_request_id", sa.Integer(), nullable=True),
        sa.Column("bl_number", sa.String(length=64), nullable=False),
        _money("bl_total_volume"),
        sa.Column("truck_plate", sa.String(length=32), nullable=False),
        sa.Column("driver_name", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("is_disputed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _money("global_variance"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.ForeignKeyConstraint(["replenishment_request_id"], ["replenishment_requests.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bl_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("fuel_deliveries", schema=None) as batch_op:
        batch_op.create_index("ix_fuel_deliveries_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_fuel_deliveries_replenishment_request_id", ["replenishment_request_id"], unique=False)
        batch_op.create_index("ix_fuel_deliveries_status", ["status"], unique=False)
        batch_op.create_index("ix_fuel_deliveries_completed_at", ["completed_at"], unique=False)

    op.create_table(
        "delivery_compartments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("delivery_id", sa.Integer(), nullable=False),
        sa.Column("tank_id", sa.Integer(), nullable=False),
        sa.Column("fuel_type", sa.String(length=16), nullable=False),
        _money("bl_volume", nullable=False),
        _money("opening_dip"),
        _money("closing_dip"),
        _money("received_volume"),
        _money("variance"),
        _money("variance_percent"),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.ForeignKeyConstraint(["delivery_id"], ["fuel_deliveries.id"]),
        sa.ForeignKeyConstraint(["tank_id"], ["tanks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("delivery_compartments", schema=None) as batch_op:
        batch_op.create_index("ix_delivery_compartments_delivery_id", ["delivery_id"], unique=False)
        batch_op.create_index("ix_delivery_compartments_tank_id", ["tank_id"], unique=False)

    # --- system ---------------------------------------------------------------
    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(length=64), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("response_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("operation", "idempotency_key", name="uq_idempotency_operation_key"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index("ix_audit_logs_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_audit_logs_station_id", ["station_id"], unique=False)
        batch_op.create_index("ix_audit_logs_action", ["action"], unique=False)
        batch_op.create_index("ix_audit_logs_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_audit_logs_entity", ["entity_type", "entity_id"], unique=False)


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("idempotency_records")
    op.drop_table("delivery_compartments")
    op.drop_table("fuel_deliveries")
    op.drop_table("replenishment_requests")
    op.drop_table("shift_tank_dips")
    op.drop_table("shift_sales")
    op.drop_index("uq_shifts_station_open", table_name="shifts")
    op.drop_table("shifts")
    op.drop_table("fuel_prices")
    op.drop_table("nozzles")
    op.drop_table("pumps")
    op.drop_table("tanks")
    op.drop_table("users")
    op.drop_table("stations")
    op.drop_table("organizations")
