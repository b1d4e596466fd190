# Overview: Flask CLI command groups for bootstrap, seeding, inspection, and maintenance.

# backend/fuelops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask seed demo
#   Organization, one station with tanks/pumps/nozzles, users and approved prices.
#
# Shift inspection:
# - python -m flask shifts list [--station-id 1] [--status OPEN] [--limit 20]
# - python -m flask shifts lock --shift-id 4 --user-id 1
#
# Tank inspection:
# - python -m flask tanks list [--station-id 1]
#
# Maintenance:
# - python -m flask maintenance purge-idempotency --older-than-minutes 60
#   Delete IN_PROGRESS idempotency claims left behind by crashed workers.

import click
from datetime import timedelta
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .models import Organization, Tank, User, FuelPrice, Shift
from .models.assets import FUEL_ESSENCE, FUEL_GASOIL
from .models.auth import ROLE_SUPER_ADMIN, ROLE_CFO, ROLE_DCO, ROLE_LOGISTICS, ROLE_STATION_MANAGER, ROLE_CHEF_PISTE
from .models.pricing import PRICE_APPROVED
from .decimal_utils import to_decimal_str
from .services import idempotency_service, shift_service, station_service
from .time_utils import utcnow, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask seed demo' to load demo data.")


# =============================================================================
# SEED
# =============================================================================

@click.group('seed')
def seed_group():
    """Demo data."""


DEMO_USERS = (
    ("admin", "Demo Admin", ROLE_SUPER_ADMIN, False),
    ("cfo", "Demo CFO", ROLE_CFO, False),
    ("dco", "Demo DCO", ROLE_DCO, False),
    ("logistics", "Demo Logistics", ROLE_LOGISTICS, False),
    ("manager", "Demo Station Manager", ROLE_STATION_MANAGER, True),
    ("chef", "Demo Chef de Piste", ROLE_CHEF_PISTE, True),
)

DEMO_PRICES = {FUEL_ESSENCE: Decimal("695"), FUEL_GASOIL: Decimal("720")}


@seed_group.command('demo')
@click.option('--org-code', default='DEMO', show_default=True, help='Organization code')
@with_appcontext
def seed_demo(org_code):
    """
    Load a ready-to-use demo station.

    Creates (idempotent, skipped if the organization exists):
    - Organization and station ST-001
    - ESSENCE tank (30 000 L) and GASOIL tank (40 000 L)
    - Two pumps with nozzles A and B each
    - One user per role (station roles scoped to ST-001)
    - Approved prices effective since yesterday
    """
    org = db.session.query(Organization).filter_by(code=org_code).first()
    if org:
        click.echo(f"PASS Organization {org_code} already exists (ID: {org.id}), nothing to do.")
        return

    org = Organization(name="Demo Fuel Company", code=org_code, is_active=True)
    db.session.add(org)
    db.session.commit()
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id})")

    station = station_service.create_station(
        org.id, "ST-001", "Demo Station",
        cash_variance_tolerance=Decimal("5000"),
        stock_variance_tolerance=Decimal("50"),
    )
    click.echo(f"PASS Created station: {station.code} (ID: {station.id})")

    essence = station_service.add_tank(station.id, FUEL_ESSENCE, Decimal("30000"), Decimal("20000"))
    gasoil = station_service.add_tank(station.id, FUEL_GASOIL, Decimal("40000"), Decimal("25000"))
    for code, tank in (("P1", essence), ("P2", gasoil)):
        pump = station_service.add_pump(station.id, tank.id, code)
        station_service.add_nozzle(pump.id, "A", Decimal("100000"))
        station_service.add_nozzle(pump.id, "B", Decimal("50000"))
    click.echo("PASS Created 2 tanks, 2 pumps, 4 nozzles")

    users = {}
    for username, full_name, role, station_scoped in DEMO_USERS:
        user = User(
            org_id=org.id,
            station_id=station.id if station_scoped else None,
            username=username,
            full_name=full_name,
            role=role,
            is_active=True,
        )
        db.session.add(user)
        users[username] = user
    db.session.commit()

    effective = utcnow() - timedelta(days=1)
    for fuel_type, price in DEMO_PRICES.items():
        db.session.add(FuelPrice(
            org_id=org.id,
            fuel_type=fuel_type,
            price=price,
            effective_date=effective,
            status=PRICE_APPROVED,
            created_by_user_id=users["cfo"].id,
            approved_by_user_id=users["admin"].id,
            approved_at=effective,
        ))
    db.session.commit()

    click.echo("\nUsers (send the ID as X-User-Id):")
    for username, user in users.items():
        click.echo(f"  {user.id:<4} {username:<10} {user.role}")
    click.echo("\nPASS Demo data loaded.")


# =============================================================================
# SHIFTS
# =============================================================================

@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--station-id', type=int, help='Filter by station ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED', 'LOCKED']), help='Filter by status')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_shifts_cli(station_id, status, limit):
    """List recent shifts."""
    query = db.session.query(Shift)
    if station_id:
        query = query.filter_by(station_id=station_id)
    if status:
        query = query.filter_by(status=status)
    shifts = query.order_by(Shift.shift_date.desc(), Shift.id.desc()).limit(limit).all()

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Station':<8} {'Date':<12} {'Type':<8} {'Status':<8} {'Revenue':>16} {'Cash var.':>14} {'Flag'}")
    click.echo("="*100)
    for s in shifts:
        flag = "TOLERANCE" if s.tolerance_exceeded else ""
        click.echo(
            f"{s.id:<6} {s.station_id:<8} {s.shift_date.isoformat():<12} {s.shift_type:<8} {s.status:<8} "
            f"{to_decimal_str(s.total_revenue) or '-':>16} {to_decimal_str(s.cash_variance) or '-':>14} {flag}"
        )
    click.echo("="*100 + "\n")


@shifts_group.command('lock')
@click.option('--shift-id', type=int, required=True, help='Shift to lock')
@click.option('--user-id', type=int, required=True, help='Acting user (review role)')
@with_appcontext
def lock_shift_cli(shift_id, user_id):
    """Lock a CLOSED shift."""
    user = db.session.get(User, user_id)
    if not user:
        raise click.ClickException(f"User {user_id} not found")
    try:
        shift = shift_service.lock_shift(shift_id, user)
    except ServiceError as e:
        raise click.ClickException(f"{e.code}: {e.message}")
    click.echo(f"PASS Shift {shift.id} locked at {to_utc_z(shift.locked_at)}")


# =============================================================================
# TANKS
# =============================================================================

@click.group('tanks')
def tanks_group():
    """Tank inspection commands."""


@tanks_group.command('list')
@click.option('--station-id', type=int, help='Filter by station ID')
@with_appcontext
def list_tanks_cli(station_id):
    """List tanks with level, ullage and lock version."""
    query = db.session.query(Tank)
    if station_id:
        query = query.filter_by(station_id=station_id)
    tanks = query.order_by(Tank.station_id, Tank.id).all()

    if not tanks:
        click.echo("No tanks found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Station':<8} {'Fuel':<9} {'Capacity':>14} {'Level':>14} {'Ullage':>14} {'Ver':>5}")
    click.echo("="*80)
    for t in tanks:
        click.echo(
            f"{t.id:<6} {t.station_id:<8} {t.fuel_type:<9} {to_decimal_str(t.capacity):>14} "
            f"{to_decimal_str(t.current_level):>14} {to_decimal_str(t.ullage):>14} {t.version:>5}"
        )
    click.echo("="*80 + "\n")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-idempotency')
@click.option('--older-than-minutes', type=int, default=60, show_default=True)
@with_appcontext
def purge_idempotency_cli(older_than_minutes):
    """Delete abandoned IN_PROGRESS idempotency claims."""
    deleted = idempotency_service.purge_stale_claims(timedelta(minutes=older_than_minutes))
    click.echo(f"Deleted {deleted} idempotency claims older than {older_than_minutes} minutes.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(tanks_group)
    app.cli.add_command(maintenance_group)
