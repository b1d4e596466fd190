"""
Pytest fixtures for fuelops backend tests.

Provides an in-memory database, a test client, and a ready-to-use station:
two tanks (ESSENCE, GASOIL), two pumps, three nozzles, approved prices and
one user per role. Tenant isolation fixtures add a second organization.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from fuelops import create_app
from fuelops.extensions import db
from fuelops.models import Organization, User, FuelPrice
from fuelops.models.assets import FUEL_ESSENCE, FUEL_GASOIL
from fuelops.models.auth import (
    ROLE_SUPER_ADMIN,
    ROLE_CFO,
    ROLE_CEO,
    ROLE_DCO,
    ROLE_LOGISTICS,
    ROLE_STATION_MANAGER,
    ROLE_CHEF_PISTE,
)
from fuelops.models.pricing import PRICE_APPROVED
from fuelops.services import shift_service, station_service
from fuelops.time_utils import utcnow

ESSENCE_PRICE = Decimal("700")
GASOIL_PRICE = Decimal("650")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'IDEMPOTENCY_WAIT_SECONDS': 0.2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def restore_config(app):
    """Tests may tweak app.config; put it back afterwards."""
    saved = dict(app.config)
    yield
    app.config.clear()
    app.config.update(saved)


# =============================================================================
# TENANCY
# =============================================================================

@pytest.fixture(scope='function')
def org(db_session):
    org = Organization(name="Fuel Co", code="FUEL", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def station(db_session, org):
    return station_service.create_station(org.id, "ST-001", "Station One")


def _make_user(db_session, org_id, username, role, station_id=None):
    user = User(
        org_id=org_id,
        station_id=station_id,
        username=username,
        full_name=username.title(),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session, org):
    return _make_user(db_session, org.id, "admin", ROLE_SUPER_ADMIN)


@pytest.fixture(scope='function')
def cfo(db_session, org):
    return _make_user(db_session, org.id, "cfo", ROLE_CFO)


@pytest.fixture(scope='function')
def ceo(db_session, org):
    return _make_user(db_session, org.id, "ceo", ROLE_CEO)


@pytest.fixture(scope='function')
def dco(db_session, org):
    return _make_user(db_session, org.id, "dco", ROLE_DCO)


@pytest.fixture(scope='function')
def logistics(db_session, org):
    return _make_user(db_session, org.id, "logistics", ROLE_LOGISTICS)


@pytest.fixture(scope='function')
def manager(db_session, org, station):
    return _make_user(db_session, org.id, "manager", ROLE_STATION_MANAGER, station.id)


@pytest.fixture(scope='function')
def chef(db_session, org, station):
    return _make_user(db_session, org.id, "chef", ROLE_CHEF_PISTE, station.id)


@pytest.fixture(scope='function')
def other_org(db_session):
    org = Organization(name="Other Co", code="OTHER", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_station(db_session, other_org):
    return station_service.create_station(other_org.id, "ST-900", "Foreign Station")


@pytest.fixture(scope='function')
def other_admin(db_session, other_org):
    return _make_user(db_session, other_org.id, "other_admin", ROLE_SUPER_ADMIN)


# =============================================================================
# EQUIPMENT AND PRICES
# =============================================================================

@pytest.fixture(scope='function')
def equipment(db_session, station):
    """
    ESSENCE tank 30 000 L at 10 000 L feeding pump P1 (nozzles A at 1000, B at 500).
    GASOIL tank 40 000 L at 20 000 L feeding pump P2 (nozzle A at 2000).
    """
    essence = station_service.add_tank(station.id, FUEL_ESSENCE, Decimal("30000"), Decimal("10000"))
    gasoil = station_service.add_tank(station.id, FUEL_GASOIL, Decimal("40000"), Decimal("20000"))

    p1 = station_service.add_pump(station.id, essence.id, "P1")
    p2 = station_service.add_pump(station.id, gasoil.id, "P2")

    return {
        "essence_tank": essence,
        "gasoil_tank": gasoil,
        "nozzle_e_a": station_service.add_nozzle(p1.id, "A", Decimal("1000")),
        "nozzle_e_b": station_service.add_nozzle(p1.id, "B", Decimal("500")),
        "nozzle_g_a": station_service.add_nozzle(p2.id, "A", Decimal("2000")),
    }


@pytest.fixture(scope='function')
def prices(db_session, org, cfo, admin):
    """Approved prices effective two days ago."""
    effective = utcnow() - timedelta(days=2)
    rows = []
    for fuel_type, price in ((FUEL_ESSENCE, ESSENCE_PRICE), (FUEL_GASOIL, GASOIL_PRICE)):
        row = FuelPrice(
            org_id=org.id,
            fuel_type=fuel_type,
            price=price,
            effective_date=effective,
            status=PRICE_APPROVED,
            created_by_user_id=cfo.id,
            approved_by_user_id=admin.id,
            approved_at=effective,
        )
        db_session.add(row)
        rows.append(row)
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def shift_date():
    return date(2024, 5, 1)


@pytest.fixture(scope='function')
def open_shift(db_session, station, equipment, prices, manager, shift_date):
    return shift_service.open_shift(station.id, shift_date, "MORNING", manager)


@pytest.fixture(scope='function')
def auth():
    """Request headers identifying the acting user."""
    def _headers(user, extra=None):
        headers = {"X-User-Id": str(user.id)}
        headers.update(extra or {})
        return headers
    return _headers


@pytest.fixture(scope='function')
def close_payload(equipment):
    """
    Close payload with exact meters/dips/cash.

    ESSENCE: A sells 100 L, B sells 50 L -> 150 L x 700 = 105 000
    GASOIL:  A sells 200 L               -> 200 L x 650 = 130 000
    Revenue 235 000; dips match theoretical stock exactly.
    """
    def _payload(counted="200000"):
        return {
            "sales": [
                {"nozzle_id": equipment["nozzle_e_a"].id, "closing_index": "1100"},
                {"nozzle_id": equipment["nozzle_e_b"].id, "closing_index": "550"},
                {"nozzle_id": equipment["nozzle_g_a"].id, "closing_index": "2200"},
            ],
            "tank_dips": [
                {"tank_id": equipment["essence_tank"].id, "closing_level": "9850"},
                {"tank_id": equipment["gasoil_tank"].id, "closing_level": "19800"},
            ],
            "cash": {"counted": counted, "card": "35000", "expenses": "0"},
        }
    return _payload
