"""
Price resolver and approval workflow tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from fuelops.errors import (
    BusinessRuleError,
    ConflictError,
    InvalidStateTransition,
    NoPriceConfigured,
    NotFoundError,
    ValidationError,
)
from fuelops.models import FuelPrice
from fuelops.models.pricing import PRICE_APPROVED, PRICE_PENDING, PRICE_REJECTED
from fuelops.services import pricing_service
from fuelops.time_utils import utcnow

T0 = datetime(2024, 5, 1, 6, 0, 0)


def candidate(fuel_type, price, effective_date):
    return SimpleNamespace(fuel_type=fuel_type, price=Decimal(price), effective_date=effective_date)


class TestResolveActivePrices:
    """Pure resolver: latest effective_date <= at_time, per fuel type."""

    def test_latest_effective_price_wins(self):
        candidates = [
            candidate("ESSENCE", "680", T0 - timedelta(days=10)),
            candidate("ESSENCE", "695", T0 - timedelta(days=1)),
            candidate("GASOIL", "720", T0 - timedelta(days=3)),
        ]

        prices = pricing_service.resolve_active_prices({"ESSENCE", "GASOIL"}, candidates, T0)

        assert prices == {"ESSENCE": Decimal("695"), "GASOIL": Decimal("720")}

    def test_future_prices_ignored(self):
        candidates = [
            candidate("ESSENCE", "695", T0 - timedelta(days=1)),
            candidate("ESSENCE", "999", T0 + timedelta(seconds=1)),
        ]

        prices = pricing_service.resolve_active_prices({"ESSENCE"}, candidates, T0)

        assert prices["ESSENCE"] == Decimal("695")

    def test_effective_exactly_at_time_is_active(self):
        prices = pricing_service.resolve_active_prices({"ESSENCE"}, [candidate("ESSENCE", "700", T0)], T0)

        assert prices["ESSENCE"] == Decimal("700")

    def test_aware_candidates_compared_in_utc(self):
        """Timestamptz columns load aware; the open instant is naive UTC."""
        plus_two = timezone(timedelta(hours=2))
        candidates = [
            candidate("ESSENCE", "695", datetime(2024, 5, 1, 7, 0, tzinfo=plus_two)),
            candidate("ESSENCE", "999", datetime(2024, 5, 1, 8, 30, tzinfo=plus_two)),
            candidate("GASOIL", "720", datetime(2024, 4, 1, tzinfo=timezone.utc)),
        ]

        prices = pricing_service.resolve_active_prices({"ESSENCE", "GASOIL"}, candidates, T0)

        # 07:00+02:00 is 05:00Z (active); 08:30+02:00 is 06:30Z (future)
        assert prices == {"ESSENCE": Decimal("695"), "GASOIL": Decimal("720")}

    def test_missing_fuel_type_raises(self):
        candidates = [candidate("ESSENCE", "695", T0 - timedelta(days=1))]

        with pytest.raises(NoPriceConfigured) as exc:
            pricing_service.resolve_active_prices({"ESSENCE", "GASOIL", "PETROLE"}, candidates, T0)

        assert exc.value.details["fuel_types"] == ["GASOIL", "PETROLE"]
        assert exc.value.code == "BIZ_NO_ACTIVE_PRICE"

    def test_unrequested_fuel_types_not_returned(self):
        candidates = [
            candidate("ESSENCE", "695", T0 - timedelta(days=1)),
            candidate("GASOIL", "720", T0 - timedelta(days=1)),
        ]

        prices = pricing_service.resolve_active_prices({"ESSENCE"}, candidates, T0)

        assert set(prices) == {"ESSENCE"}

    def test_nothing_requested_nothing_needed(self):
        assert pricing_service.resolve_active_prices(set(), [], T0) == {}


class TestActivePricesForStation:

    def test_station_prices(self, station, equipment, prices):
        active = pricing_service.get_active_prices(station)

        assert active == {"ESSENCE": Decimal("700"), "GASOIL": Decimal("650")}

    def test_pending_prices_ignored(self, db_session, org, station, equipment, prices, cfo):
        db_session.add(FuelPrice(
            org_id=org.id,
            fuel_type="ESSENCE",
            price=Decimal("999"),
            effective_date=utcnow() - timedelta(hours=1),
            status=PRICE_PENDING,
            created_by_user_id=cfo.id,
        ))
        db_session.commit()

        assert pricing_service.get_active_prices(station)["ESSENCE"] == Decimal("700")

    def test_other_org_prices_ignored(self, db_session, station, equipment, other_org, other_admin):
        db_session.add(FuelPrice(
            org_id=other_org.id,
            fuel_type="ESSENCE",
            price=Decimal("500"),
            effective_date=utcnow() - timedelta(days=1),
            status=PRICE_APPROVED,
            created_by_user_id=other_admin.id,
        ))
        db_session.commit()

        with pytest.raises(NoPriceConfigured):
            pricing_service.get_active_prices(station)


class TestPriceWorkflow:
    """PENDING -> APPROVED | REJECTED with four-eyes approval."""

    def _propose(self, org, user, price="710", days=1):
        return pricing_service.create_price(
            org_id=org.id,
            fuel_type="ESSENCE",
            price=Decimal(price),
            effective_date=utcnow() + timedelta(days=days),
            created_by_user_id=user.id,
        )

    def test_create_pending(self, org, cfo):
        row = self._propose(org, cfo)

        assert row.status == PRICE_PENDING
        assert row.approved_by_user_id is None

    def test_past_effective_date_rejected(self, org, cfo):
        with pytest.raises(BusinessRuleError) as exc:
            self._propose(org, cfo, days=-1)

        assert exc.value.code == "BIZ_INVALID_DATE"

    def test_non_positive_price_rejected(self, org, cfo):
        with pytest.raises(ValidationError):
            self._propose(org, cfo, price="0")

    def test_duplicate_pending_rejected(self, org, cfo):
        effective = utcnow() + timedelta(days=2)
        kwargs = dict(org_id=org.id, fuel_type="ESSENCE", price=Decimal("710"),
                      effective_date=effective, created_by_user_id=cfo.id)
        pricing_service.create_price(**kwargs)

        with pytest.raises(ConflictError):
            pricing_service.create_price(**kwargs)

    def test_self_approval_forbidden(self, org, cfo):
        row = self._propose(org, cfo)

        with pytest.raises(BusinessRuleError) as exc:
            pricing_service.approve_price(row.id, org_id=org.id, approver_user_id=cfo.id)

        assert exc.value.code == "BIZ_SELF_APPROVAL"

    def test_approve(self, org, cfo, ceo):
        row = self._propose(org, cfo)

        approved = pricing_service.approve_price(row.id, org_id=org.id, approver_user_id=ceo.id)

        assert approved.status == PRICE_APPROVED
        assert approved.approved_by_user_id == ceo.id
        assert approved.approved_at is not None

    def test_reject_needs_reason(self, org, cfo, ceo):
        row = self._propose(org, cfo)

        with pytest.raises(ValidationError):
            pricing_service.reject_price(row.id, org_id=org.id, reviewer_user_id=ceo.id, reason="too high")

        rejected = pricing_service.reject_price(
            row.id, org_id=org.id, reviewer_user_id=ceo.id, reason="Above the regulated ceiling",
        )
        assert rejected.status == PRICE_REJECTED

    def test_reviewed_price_cannot_be_reviewed_again(self, org, cfo, ceo):
        row = self._propose(org, cfo)
        pricing_service.approve_price(row.id, org_id=org.id, approver_user_id=ceo.id)

        with pytest.raises(InvalidStateTransition):
            pricing_service.approve_price(row.id, org_id=org.id, approver_user_id=ceo.id)

    def test_other_org_price_not_found(self, org, cfo, other_org, other_admin):
        row = self._propose(org, cfo)

        with pytest.raises(NotFoundError):
            pricing_service.approve_price(row.id, org_id=other_org.id, approver_user_id=other_admin.id)
