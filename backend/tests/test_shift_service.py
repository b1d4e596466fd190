"""
Shift lifecycle tests: open guards, price snapshot, close reconciliation, lock.

Fixture station (see conftest):
- ESSENCE tank 10 000 L (nozzles A at 1000, B at 500), price 700
- GASOIL tank 20 000 L (nozzle A at 2000), price 650
close_payload sells 150 L ESSENCE + 200 L GASOIL = 235 000.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from fuelops.errors import (
    ConcurrentModification,
    DuplicateShift,
    IncompleteSubmission,
    InvalidMeterReading,
    InvalidStateTransition,
    JustificationRequired,
    NoPriceConfigured,
    PreviousShiftOpen,
    ShiftNotFound,
    ShiftNotOpen,
    ValidationError,
    AccessDeniedError,
)
from fuelops.extensions import db
from fuelops.models import FuelPrice, Nozzle, Shift, Tank
from fuelops.models.pricing import PRICE_APPROVED
from fuelops.models.shifts import SHIFT_OPEN, SHIFT_CLOSED, SHIFT_LOCKED
from fuelops.services import audit_service, delivery_service, shift_service, station_service
from fuelops.time_utils import utcnow

D = Decimal


def close(shift, payload, user, justification=None, **kwargs):
    return shift_service.close_shift(
        shift.id,
        payload["sales"],
        payload["tank_dips"],
        payload["cash"],
        justification,
        closed_by_user_id=user.id,
        **kwargs,
    )


# =============================================================================
# OPEN
# =============================================================================

class TestOpenShift:

    def test_open_freezes_prices_and_opening_readings(self, open_shift, equipment):
        """Opening indices come from the nozzle meters, opening levels from the tanks."""
        assert open_shift.status == SHIFT_OPEN
        assert open_shift.applied_price_snapshot == {"ESSENCE": "700.0000", "GASOIL": "650.0000"}

        openings = {s.nozzle_id: s.opening_index for s in open_shift.sales}
        assert openings == {
            equipment["nozzle_e_a"].id: D("1000"),
            equipment["nozzle_e_b"].id: D("500"),
            equipment["nozzle_g_a"].id: D("2000"),
        }
        levels = {d.tank_id: d.opening_level for d in open_shift.tank_dips}
        assert levels == {
            equipment["essence_tank"].id: D("10000"),
            equipment["gasoil_tank"].id: D("20000"),
        }

    def test_open_is_audited(self, open_shift):
        events = audit_service.get_entity_events("shift", open_shift.id)

        assert [e.action for e in events] == ["SHIFT_OPENED"]

    def test_duplicate_shift_rejected(self, open_shift, station, manager, shift_date, equipment, close_payload):
        close(open_shift, close_payload(), manager)

        with pytest.raises(DuplicateShift) as exc:
            shift_service.open_shift(station.id, shift_date, "MORNING", manager)

        assert exc.value.status_code == 409
        assert exc.value.details["shift_id"] == open_shift.id

    def test_previous_shift_must_be_closed(self, open_shift, station, manager, shift_date):
        with pytest.raises(PreviousShiftOpen) as exc:
            shift_service.open_shift(station.id, shift_date, "EVENING", manager)

        assert exc.value.details["shift_id"] == open_shift.id

    def test_duplicate_checked_before_previous_open(self, open_shift, station, manager, shift_date):
        """Re-opening the same OPEN shift is a duplicate, not a sequencing error."""
        with pytest.raises(DuplicateShift):
            shift_service.open_shift(station.id, shift_date, "MORNING", manager)

    def test_no_price_blocks_open(self, station, equipment, manager, shift_date):
        with pytest.raises(NoPriceConfigured) as exc:
            shift_service.open_shift(station.id, shift_date, "MORNING", manager)

        assert exc.value.details["fuel_types"] == ["ESSENCE", "GASOIL"]
        assert db.session.query(Shift).count() == 0

    def test_price_resolved_at_open_instant(self, db_session, org, station, equipment, prices, manager, shift_date, admin):
        """A price effective after the open instant is not picked up."""
        opened_at = utcnow() - timedelta(hours=2)
        db_session.add(FuelPrice(
            org_id=org.id,
            fuel_type="ESSENCE",
            price=D("800"),
            effective_date=utcnow() - timedelta(hours=1),
            status=PRICE_APPROVED,
            created_by_user_id=admin.id,
        ))
        db_session.commit()

        shift = shift_service.open_shift(station.id, shift_date, "MORNING", manager, now=opened_at)

        assert shift.applied_price_snapshot["ESSENCE"] == "700.0000"

    def test_invalid_shift_type(self, station, equipment, prices, manager, shift_date):
        with pytest.raises(ValidationError):
            shift_service.open_shift(station.id, shift_date, "NIGHT", manager)

    def test_station_scoped_user_cannot_open_elsewhere(self, db_session, org, equipment, prices, manager, shift_date):
        other = station_service.create_station(org.id, "ST-002", "Station Two")

        with pytest.raises(AccessDeniedError):
            shift_service.open_shift(other.id, shift_date, "MORNING", manager)

    def test_open_index_backs_single_open_shift(self, db_session, open_shift, station, manager, shift_date):
        """The partial unique index rejects a second OPEN shift written behind the service's back."""
        db_session.add(Shift(
            station_id=station.id,
            shift_date=shift_date + timedelta(days=1),
            shift_type="MORNING",
            status=SHIFT_OPEN,
            applied_price_snapshot={},
            opened_by_user_id=manager.id,
        ))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


# =============================================================================
# CLOSE
# =============================================================================

class TestCloseShift:

    def test_balanced_close(self, open_shift, equipment, manager, close_payload):
        """Exact meters, dips and cash: zero variances, nothing flagged."""
        shift = close(open_shift, close_payload(), manager)

        assert shift.status == SHIFT_CLOSED
        assert shift.total_revenue == D("235000")
        assert shift.theoretical_cash == D("235000")
        assert shift.cash_variance == D("0")
        assert shift.stock_variance == D("0")
        assert shift.tolerance_exceeded is False
        assert shift.justification is None
        assert shift.closed_by_user_id == manager.id

    def test_revenue_equals_sum_of_lines(self, open_shift, equipment, manager, close_payload):
        shift = close(open_shift, close_payload(), manager)

        by_nozzle = {s.nozzle_id: s for s in shift.sales}
        assert by_nozzle[equipment["nozzle_e_a"].id].volume_sold == D("100")
        assert by_nozzle[equipment["nozzle_e_a"].id].revenue == D("70000")
        assert by_nozzle[equipment["nozzle_e_b"].id].revenue == D("35000")
        assert by_nozzle[equipment["nozzle_g_a"].id].revenue == D("130000")
        assert sum(s.revenue for s in shift.sales) == shift.total_revenue

    def test_close_writes_meters_and_tank_levels(self, open_shift, equipment, manager, close_payload):
        close(open_shift, close_payload(), manager)

        assert db.session.get(Nozzle, equipment["nozzle_e_a"].id).meter_index == D("1100")
        essence = db.session.get(Tank, equipment["essence_tank"].id)
        assert essence.current_level == D("9850")
        assert essence.version == 2

    def test_next_shift_carries_closing_readings(self, open_shift, equipment, station, manager, shift_date, close_payload):
        close(open_shift, close_payload(), manager)

        evening = shift_service.open_shift(station.id, shift_date, "EVENING", manager)

        openings = {s.nozzle_id: s.opening_index for s in evening.sales}
        assert openings[equipment["nozzle_e_a"].id] == D("1100")
        assert openings[equipment["nozzle_g_a"].id] == D("2200")
        levels = {d.tank_id: d.opening_level for d in evening.tank_dips}
        assert levels[equipment["gasoil_tank"].id] == D("19800")

    def test_cash_variance_requires_justification(self, open_shift, equipment, manager, close_payload):
        """Blocked close leaves the shift OPEN; resubmission with a reason succeeds."""
        payload = close_payload(counted="199000")

        with pytest.raises(JustificationRequired) as exc:
            close(open_shift, payload, manager)

        assert exc.value.details["cash_variance"] == "-1000.0000"
        shift = db.session.get(Shift, open_shift.id)
        assert shift.status == SHIFT_OPEN
        assert db.session.get(Nozzle, equipment["nozzle_e_a"].id).meter_index == D("1000")
        assert db.session.get(Tank, equipment["essence_tank"].id).version == 1

        shift = close(open_shift, payload, manager, justification="Counterfeit note seized")

        assert shift.status == SHIFT_CLOSED
        assert shift.cash_variance == D("-1000")
        assert shift.justification == "Counterfeit note seized"
        assert shift.tolerance_exceeded is False

    def test_tolerance_flag(self, open_shift, equipment, manager, close_payload):
        payload = close_payload(counted="194000")

        shift = close(open_shift, payload, manager, justification="Safe drop not recorded")

        assert shift.cash_variance == D("-6000")
        assert shift.tolerance_exceeded is True

    def test_station_tolerance_overrides_default(self, db_session, open_shift, station, equipment, manager, close_payload):
        station.cash_variance_tolerance = D("500")
        db_session.commit()

        shift = close(open_shift, close_payload(counted="199000"), manager, justification="Short")

        assert shift.tolerance_exceeded is True

    def test_stock_variance_aggregated(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["tank_dips"][0]["closing_level"] = "9820"  # 30 L short
        payload["tank_dips"][1]["closing_level"] = "19830"  # 30 L over

        shift = close(open_shift, payload, manager)

        dips = {d.tank_id: d for d in shift.tank_dips}
        assert dips[equipment["essence_tank"].id].stock_variance == D("-30")
        assert dips[equipment["gasoil_tank"].id].stock_variance == D("30")
        assert shift.stock_variance == D("60")
        assert shift.tolerance_exceeded is True

    def test_stock_justification_when_configured(self, app, open_shift, equipment, manager, close_payload):
        app.config["REQUIRE_JUSTIFICATION_FOR_STOCK_VARIANCE"] = True
        payload = close_payload()
        payload["tank_dips"][0]["closing_level"] = "9840"

        with pytest.raises(JustificationRequired):
            close(open_shift, payload, manager)

    def test_meter_below_opening_rejected(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["sales"][0]["closing_index"] = "999"

        with pytest.raises(InvalidMeterReading) as exc:
            close(open_shift, payload, manager)

        assert exc.value.details["nozzle_id"] == equipment["nozzle_e_a"].id
        assert db.session.get(Shift, open_shift.id).status == SHIFT_OPEN

    def test_missing_nozzle_reading(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["sales"] = payload["sales"][:2]

        with pytest.raises(IncompleteSubmission) as exc:
            close(open_shift, payload, manager)

        assert exc.value.details["missing_nozzle_ids"] == [equipment["nozzle_g_a"].id]

    def test_missing_tank_dip(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["tank_dips"] = payload["tank_dips"][:1]

        with pytest.raises(IncompleteSubmission) as exc:
            close(open_shift, payload, manager)

        assert exc.value.details["missing_tank_ids"] == [equipment["gasoil_tank"].id]

    def test_unknown_nozzle_rejected(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["sales"].append({"nozzle_id": 99999, "closing_index": "10"})

        with pytest.raises(ValidationError):
            close(open_shift, payload, manager)

    def test_duplicate_line_rejected(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["sales"].append(dict(payload["sales"][0]))

        with pytest.raises(ValidationError):
            close(open_shift, payload, manager)

    @pytest.mark.parametrize("bad_id", [True, "1.0", "1e0", None])
    def test_non_integer_line_id_rejected(self, open_shift, equipment, manager, close_payload, bad_id):
        payload = close_payload()
        payload["tank_dips"][0]["tank_id"] = bad_id

        with pytest.raises(ValidationError) as exc:
            close(open_shift, payload, manager)

        assert exc.value.details == {"field": "tank_id"}

    def test_fractional_nozzle_id_rejected(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["sales"][0]["nozzle_id"] = equipment["nozzle_e_a"].id + 0.9

        with pytest.raises(ValidationError) as exc:
            close(open_shift, payload, manager)

        assert exc.value.details == {"field": "nozzle_id"}
        assert db.session.get(Shift, open_shift.id).status == SHIFT_OPEN

    def test_missing_counted_cash(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        del payload["cash"]["counted"]

        with pytest.raises(ValidationError):
            close(open_shift, payload, manager)

    def test_dip_above_capacity_rejected(self, open_shift, equipment, manager, close_payload):
        payload = close_payload()
        payload["tank_dips"][0]["closing_level"] = "30001"

        with pytest.raises(ValidationError):
            close(open_shift, payload, manager, justification="overfill")

        assert db.session.get(Shift, open_shift.id).status == SHIFT_OPEN

    def test_closed_shift_cannot_close_again(self, open_shift, equipment, manager, close_payload):
        close(open_shift, close_payload(), manager)

        with pytest.raises(ShiftNotOpen):
            close(open_shift, close_payload(), manager)

    def test_unknown_shift(self, manager):
        with pytest.raises(ShiftNotFound):
            shift_service.close_shift(12345, [], [], {"counted": "0"}, closed_by_user_id=manager.id)

    def test_close_is_audited_once(self, open_shift, equipment, manager, close_payload):
        close(open_shift, close_payload(), manager)

        actions = [event.action for event in audit_service.get_entity_events("shift", open_shift.id)]
        assert actions == ["SHIFT_OPENED", "SHIFT_CLOSED"]

    def test_concurrent_tank_write_aborts_close(self, monkeypatch, open_shift, equipment, manager, close_payload):
        """A tank bumped after the close read its version rolls the whole close back."""
        from sqlalchemy import update
        from fuelops.services import reconciliation

        tank_id = equipment["essence_tank"].id
        original = reconciliation.compute_cash_reconciliation

        def bump_then_compute(*args, **kwargs):
            db.session.execute(update(Tank).where(Tank.id == tank_id).values(version=Tank.version + 1))
            return original(*args, **kwargs)

        monkeypatch.setattr(shift_service, "compute_cash_reconciliation", bump_then_compute)

        with pytest.raises(ConcurrentModification):
            close(open_shift, close_payload(), manager)

        assert db.session.get(Shift, open_shift.id).status == SHIFT_OPEN
        assert db.session.get(Tank, tank_id).version == 1
        assert db.session.get(Tank, tank_id).current_level == D("10000")


class TestDeliveryWindow:
    """Deliveries completed between open and close count toward theoretical stock."""

    def _receive(self, station, tank, admin, bl_number, volume):
        delivery = delivery_service.create_delivery(
            station_id=station.id,
            bl_number=bl_number,
            truck_plate="AB-123-CD",
            driver_name="Driver",
            user=admin,
        )
        compartment = delivery_service.add_compartment(delivery.id, tank_id=tank.id, bl_volume=volume, user=admin)
        delivery_service.start_delivery(delivery.id, admin)
        closing = D(tank.current_level) + D(volume)
        return delivery_service.complete_delivery(delivery.id, admin, {str(compartment.id): str(closing)})

    def test_delivery_during_shift_counts(self, station, equipment, prices, manager, admin, shift_date, close_payload):
        shift = shift_service.open_shift(
            station.id, shift_date, "MORNING", manager, now=utcnow() - timedelta(hours=1),
        )
        self._receive(station, equipment["essence_tank"], admin, "BL-1", "5000")

        payload = close_payload()
        payload["tank_dips"][0]["closing_level"] = "14850"
        shift = close(shift, payload, manager)

        dips = {d.tank_id: d for d in shift.tank_dips}
        essence = dips[equipment["essence_tank"].id]
        assert essence.deliveries == D("5000")
        assert essence.theoretical_stock == D("14850")
        assert shift.stock_variance == D("0")

    def test_delivery_window_disabled(self, app, station, equipment, prices, manager, admin, shift_date, close_payload):
        app.config["SHIFT_DELIVERY_WINDOW"] = "none"
        shift = shift_service.open_shift(
            station.id, shift_date, "MORNING", manager, now=utcnow() - timedelta(hours=1),
        )
        self._receive(station, equipment["essence_tank"], admin, "BL-2", "5000")

        payload = close_payload()
        payload["tank_dips"][0]["closing_level"] = "14850"
        shift = close(shift, payload, manager)

        assert shift.stock_variance == D("5000")
        assert shift.tolerance_exceeded is True

    def test_delivery_before_open_ignored(self, station, equipment, prices, manager, admin, shift_date, close_payload):
        self._receive(station, equipment["essence_tank"], admin, "BL-3", "5000")
        shift = shift_service.open_shift(station.id, shift_date, "MORNING", manager)

        payload = close_payload()
        payload["tank_dips"][0]["closing_level"] = "14850"
        shift = close(shift, payload, manager)

        assert shift.stock_variance == D("0")
        assert {d.tank_id: d.deliveries for d in shift.tank_dips}[equipment["essence_tank"].id] == D("0")


# =============================================================================
# LOCK AND QUERIES
# =============================================================================

class TestLockShift:

    def test_lock_closed_shift(self, open_shift, equipment, manager, dco, close_payload):
        close(open_shift, close_payload(), manager)

        shift = shift_service.lock_shift(open_shift.id, dco)

        assert shift.status == SHIFT_LOCKED
        assert shift.locked_by_user_id == dco.id
        assert shift.locked_at is not None

    def test_open_shift_cannot_be_locked(self, open_shift, dco):
        with pytest.raises(InvalidStateTransition):
            shift_service.lock_shift(open_shift.id, dco)

    def test_locked_is_terminal(self, open_shift, equipment, manager, dco, close_payload):
        close(open_shift, close_payload(), manager)
        shift_service.lock_shift(open_shift.id, dco)

        with pytest.raises(InvalidStateTransition):
            shift_service.lock_shift(open_shift.id, dco)
        with pytest.raises(ShiftNotOpen):
            close(open_shift, close_payload(), manager)

    def test_foreign_org_cannot_lock(self, open_shift, equipment, manager, other_admin, close_payload):
        close(open_shift, close_payload(), manager)

        with pytest.raises(ShiftNotFound):
            shift_service.lock_shift(open_shift.id, other_admin)


class TestShiftQueries:

    def test_current_shift(self, open_shift, station):
        assert shift_service.get_current_shift(station.id).id == open_shift.id

    def test_no_current_shift_after_close(self, open_shift, station, equipment, manager, close_payload):
        close(open_shift, close_payload(), manager)

        assert shift_service.get_current_shift(station.id) is None

    def test_list_shifts_scoped_to_org(self, open_shift, admin, other_admin):
        items, total = shift_service.list_shifts(admin)
        assert total == 1
        assert items[0].id == open_shift.id

        items, total = shift_service.list_shifts(other_admin)
        assert total == 0
        assert items == []

    def test_get_shift_hides_foreign_org(self, open_shift, other_admin):
        with pytest.raises(ShiftNotFound):
            shift_service.get_shift(open_shift.id, other_admin)
