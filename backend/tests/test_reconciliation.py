"""
Reconciliation math tests.

Pure functions, no database: meters, dips, cash, the justification gate and
the delivery receipt.
"""

from decimal import Decimal

import pytest

from fuelops.errors import InvalidDipReading, InvalidMeterReading, JustificationRequired, ValidationError
from fuelops.services.reconciliation import (
    aggregate_stock_variance,
    check_justification,
    compute_cash_reconciliation,
    compute_delivery_receipt,
    compute_sale,
    compute_stock_variance,
    exceeds_tolerance,
    resolve_unit_price,
    total_revenue,
)

D = Decimal


class TestMeterSale:
    """compute_sale: volume = closing - opening, revenue = volume x snapshot price."""

    def test_volume_and_revenue(self):
        result = compute_sale(D("1000"), D("1100.5"), "ESSENCE", {"ESSENCE": "700"}, D("1"))

        assert result.volume == D("100.5000")
        assert result.unit_price == D("700.0000")
        assert result.revenue == D("70350.0000")

    def test_zero_volume_is_valid(self):
        result = compute_sale(D("500"), D("500"), "GASOIL", {"GASOIL": "650"}, D("650"))

        assert result.volume == D("0.0000")
        assert result.revenue == D("0.0000")

    def test_closing_below_opening_rejected(self):
        with pytest.raises(InvalidMeterReading) as exc:
            compute_sale(D("1000"), D("999.9999"), "ESSENCE", {"ESSENCE": "700"}, D("700"), nozzle_id=7)

        assert exc.value.details["nozzle_id"] == 7
        assert exc.value.code == "BIZ_INVALID_METER_READING"

    def test_fallback_price_when_fuel_missing_from_snapshot(self):
        assert resolve_unit_price("GASOIL", {"ESSENCE": "700"}, D("640")) == D("640")
        assert resolve_unit_price("GASOIL", {}, D("640")) == D("640")

    def test_snapshot_price_wins_over_fallback(self):
        assert resolve_unit_price("ESSENCE", {"ESSENCE": "700.25"}, D("1")) == D("700.25")

    def test_line_revenue_is_exact(self):
        result = compute_sale(D("0"), D("0.0001"), "ESSENCE", {"ESSENCE": "0.5"}, D("0"))

        assert result.revenue == D("0.00005")

    def test_total_revenue_rounds_once(self):
        """Three sub-cent lines: 3 x 0.00005 = 0.00015 -> 0.0002, not 3 x 0.0001."""
        lines = [
            compute_sale(D("0"), D("0.0001"), "ESSENCE", {"ESSENCE": "0.5"}, D("0"))
            for _ in range(3)
        ]

        assert total_revenue(lines) == D("0.0002")

    def test_total_revenue_is_sum_of_lines(self):
        lines = [
            compute_sale(D("0"), D("10"), "ESSENCE", {"ESSENCE": "700"}, D("0")),
            compute_sale(D("0"), D("20"), "GASOIL", {"GASOIL": "650"}, D("0")),
        ]

        assert total_revenue(lines) == D("20000.0000")
        assert total_revenue([]) == D("0.0000")


class TestStockVariance:
    """theoretical = opening - sold + received; variance = closing - theoretical."""

    def test_exact_dip_has_zero_variance(self):
        result = compute_stock_variance(D("10000"), D("9850"), [D("100"), D("50")])

        assert result.theoretical_stock == D("9850.0000")
        assert result.stock_variance == D("0.0000")

    def test_shortage_is_negative(self):
        result = compute_stock_variance(D("10000"), D("9800"), [D("150")])

        assert result.stock_variance == D("-50.0000")

    def test_deliveries_raise_theoretical_stock(self):
        result = compute_stock_variance(D("1000"), D("5850"), [D("150")], [D("5000")])

        assert result.theoretical_stock == D("5850.0000")
        assert result.stock_variance == D("0.0000")

    def test_aggregate_uses_absolute_values(self):
        """A surplus in one tank must not cancel a loss in another."""
        assert aggregate_stock_variance([D("-30"), D("30")]) == D("60.0000")
        assert aggregate_stock_variance([]) == D("0.0000")


class TestCashReconciliation:

    def test_balanced_cash(self):
        result = compute_cash_reconciliation(D("235000"), D("200000"), D("35000"), D("0"))

        assert result.theoretical_cash == D("235000.0000")
        assert result.cash_variance == D("0.0000")

    def test_expenses_reduce_theoretical_cash(self):
        result = compute_cash_reconciliation(D("100000"), D("80000"), D("15000"), D("5000"))

        assert result.theoretical_cash == D("95000.0000")
        assert result.cash_variance == D("0.0000")

    def test_shortfall_is_negative(self):
        result = compute_cash_reconciliation(D("100000"), D("90000"), D("9000"), D("0"))

        assert result.cash_variance == D("-1000.0000")


class TestJustificationGate:

    def test_zero_variance_needs_nothing(self):
        assert check_justification(D("0"), None) is None

    def test_nonzero_variance_without_text_blocks(self):
        with pytest.raises(JustificationRequired) as exc:
            check_justification(D("-1000"), "   ")

        assert exc.value.details["cash_variance"] == "-1000.0000"

    def test_justification_is_stripped(self):
        assert check_justification(D("5"), "  till jam  ") == "till jam"

    def test_non_string_justification_rejected(self):
        with pytest.raises(ValidationError) as exc:
            check_justification(D("-1000"), ["cash", "short"])

        assert exc.value.details == {"field": "justification"}

    def test_stock_variance_ignored_unless_required(self):
        assert check_justification(D("0"), None, stock_variance=D("40")) is None

        with pytest.raises(JustificationRequired):
            check_justification(D("0"), None, stock_variance=D("40"), require_for_stock=True)

    def test_tolerance_check(self):
        assert exceeds_tolerance(D("-5001"), D("0"), D("5000"), D("50")) is True
        assert exceeds_tolerance(D("5000"), D("50"), D("5000"), D("50")) is False
        assert exceeds_tolerance(D("0"), D("50.0001"), D("5000"), D("50")) is True


class TestDeliveryReceipt:
    """received = closing - opening; disputed when |variance| / BL > tolerance."""

    def test_exact_receipt(self):
        result = compute_delivery_receipt(D("1000"), D("6000"), D("5000"), D("0.005"))

        assert result.received_volume == D("5000.0000")
        assert result.variance == D("0.0000")
        assert result.variance_percent == D("0.0000")
        assert result.disputed is False

    def test_short_receipt_is_disputed(self):
        result = compute_delivery_receipt(D("5000"), D("5980"), D("1000"), D("0.005"))

        assert result.received_volume == D("980.0000")
        assert result.variance == D("-20.0000")
        assert result.variance_percent == D("-2.0000")
        assert result.disputed is True

    def test_variance_within_tolerance(self):
        result = compute_delivery_receipt(D("0"), D("4990"), D("5000"), D("0.005"))

        assert result.variance_percent == D("-0.2000")
        assert result.disputed is False

    def test_closing_below_opening_rejected(self):
        with pytest.raises(InvalidDipReading) as exc:
            compute_delivery_receipt(D("6000"), D("5000"), D("1000"), D("0.005"), compartment_id=3)

        assert exc.value.details["compartment_id"] == 3
