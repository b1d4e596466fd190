# Overview: Pure reconciliation math for shift close (meters, dips, cash).

"""
Shift Reconciliation Calculations

Side-effect free: no session, no models. shift_service feeds these with rows
it has locked and persists what comes back, in this order:

1. compute_sale per nozzle          -> volume and revenue
2. compute_stock_variance per tank  -> needs the metered volumes from (1)
3. compute_cash_reconciliation      -> needs total revenue from (1)
4. check_justification              -> the blocking gate on cash variance

compute_delivery_receipt is the same kind of math for truck deliveries.

All quantities are Decimal; results are quantized to 4 places.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from ..decimal_utils import ZERO, quantize
from ..errors import InvalidDipReading, InvalidMeterReading, JustificationRequired, ValidationError


@dataclass(frozen=True)
class SaleComputation:
    volume: Decimal
    unit_price: Decimal
    revenue: Decimal


@dataclass(frozen=True)
class StockComputation:
    theoretical_stock: Decimal
    stock_variance: Decimal


@dataclass(frozen=True)
class CashComputation:
    total_revenue: Decimal
    theoretical_cash: Decimal
    cash_variance: Decimal


def resolve_unit_price(fuel_type: str, snapshot: Mapping[str, object], fallback_unit_price: Decimal) -> Decimal:
    """Snapshot price for the fuel type, else the price stored on the sale row."""
    value = snapshot.get(fuel_type) if snapshot else None
    if value is None:
        return Decimal(fallback_unit_price)
    return Decimal(str(value))


def compute_sale(
    opening: Decimal,
    closing: Decimal,
    fuel_type: str,
    snapshot: Mapping[str, object],
    fallback_unit_price: Decimal,
    *,
    nozzle_id: int | None = None,
) -> SaleComputation:
    """
    Metered volume and revenue for one nozzle.

    Meters are monotonic within a shift. A closing index below the opening
    index (meter reset, rollover, typo) is never guessed at: it is rejected
    for manual review. revenue is the exact product; it is rounded when
    stored.
    """
    volume = Decimal(closing) - Decimal(opening)
    if volume < 0:
        raise InvalidMeterReading(
            f"Closing index {closing} is below opening index {opening}",
            details={"nozzle_id": nozzle_id, "opening_index": str(opening), "closing_index": str(closing)},
        )

    unit_price = resolve_unit_price(fuel_type, snapshot, fallback_unit_price)
    return SaleComputation(
        volume=quantize(volume),
        unit_price=quantize(unit_price),
        revenue=volume * unit_price,
    )


def total_revenue(sales: Iterable[SaleComputation]) -> Decimal:
    """Exact sum of line revenues, rounded once for the shift total."""
    return quantize(sum((s.revenue for s in sales), ZERO))


def compute_stock_variance(
    opening_level: Decimal,
    closing_level: Decimal,
    volumes_sold: Iterable[Decimal],
    deliveries_received: Iterable[Decimal] = (),
) -> StockComputation:
    """
    theoretical = opening - sold + received; variance = closing - theoretical.

    Negative variance is a shortage (leak, theft, meter over-read); positive is
    a surplus. No threshold is applied here.
    """
    sold = sum((Decimal(v) for v in volumes_sold), ZERO)
    received = sum((Decimal(v) for v in deliveries_received), ZERO)
    theoretical = Decimal(opening_level) - sold + received
    return StockComputation(
        theoretical_stock=quantize(theoretical),
        stock_variance=quantize(Decimal(closing_level) - theoretical),
    )


def aggregate_stock_variance(variances: Iterable[Decimal]) -> Decimal:
    """Shift-level stock variance: a surplus in one tank must not hide a loss in another."""
    return quantize(sum((abs(Decimal(v)) for v in variances), ZERO))


def compute_cash_reconciliation(
    revenue: Decimal,
    counted: Decimal,
    card: Decimal,
    expenses: Decimal,
) -> CashComputation:
    """
    theoretical_cash = revenue - expenses
    cash_variance = (counted + card) - theoretical_cash
    """
    theoretical = Decimal(revenue) - Decimal(expenses)
    variance = (Decimal(counted) + Decimal(card)) - theoretical
    return CashComputation(
        total_revenue=quantize(Decimal(revenue)),
        theoretical_cash=quantize(theoretical),
        cash_variance=quantize(variance),
    )


def check_justification(
    cash_variance: Decimal,
    justification: str | None,
    *,
    stock_variance: Decimal | None = None,
    require_for_stock: bool = False,
) -> str | None:
    """
    Blocking gate: any nonzero cash variance needs a non-blank justification.

    Returns the stripped justification (None when blank).
    """
    if justification is not None and not isinstance(justification, str):
        raise ValidationError("justification must be a string", details={"field": "justification"})
    text = (justification or "").strip() or None
    stock_flagged = require_for_stock and stock_variance is not None and stock_variance != 0
    if (cash_variance != 0 or stock_flagged) and not text:
        details = {"cash_variance": str(quantize(cash_variance))}
        if stock_variance is not None:
            details["stock_variance"] = str(quantize(stock_variance))
        raise JustificationRequired(
            "Variance detected. A justification is required to close this shift.",
            details=details,
        )
    return text


def exceeds_tolerance(
    cash_variance: Decimal,
    stock_variance: Decimal,
    cash_tolerance: Decimal,
    stock_tolerance: Decimal,
) -> bool:
    return abs(cash_variance) > cash_tolerance or stock_variance > stock_tolerance


# =============================================================================
# DELIVERY RECEIPT
# =============================================================================

@dataclass(frozen=True)
class ReceiptComputation:
    received_volume: Decimal
    variance: Decimal
    variance_percent: Decimal
    disputed: bool


def compute_delivery_receipt(
    opening_dip: Decimal,
    closing_dip: Decimal,
    bl_volume: Decimal,
    tolerance: Decimal,
    *,
    compartment_id: int | None = None,
) -> ReceiptComputation:
    """
    received = closing dip - opening dip; variance = received - BL volume.

    A compartment is disputed when |variance| / bl_volume > tolerance. The
    flag never blocks completion; the received volume is what went in the tank.
    """
    received = Decimal(closing_dip) - Decimal(opening_dip)
    if received < 0:
        raise InvalidDipReading(
            f"Closing dip {closing_dip} is below opening dip {opening_dip}",
            details={
                "compartment_id": compartment_id,
                "opening_dip": str(opening_dip),
                "closing_dip": str(closing_dip),
            },
        )

    bl_volume = Decimal(bl_volume)
    variance = received - bl_volume
    ratio = variance / bl_volume if bl_volume else ZERO
    return ReceiptComputation(
        received_volume=quantize(received),
        variance=quantize(variance),
        variance_percent=quantize(ratio * 100),
        disputed=abs(ratio) > Decimal(tolerance),
    )
