# Overview: Fuel price workflow and the price snapshot resolver used at shift open.

"""
Fuel Pricing Service

RESOLVER: resolve_active_prices is a pure function over an explicit list of
price candidates. There is no "current price" global: the caller passes the
candidates and the instant, and gets back one price per fuel type or a
NoPriceConfigured error naming the fuel types that cannot be priced.

WORKFLOW (four-eyes):
- create_price: future effective date only, status PENDING
- approve_price: PENDING -> APPROVED, approver must differ from creator
- reject_price: PENDING -> REJECTED with a reason of at least 10 characters
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Protocol

from ..extensions import db
from ..errors import (
    ConflictError,
    BusinessRuleError,
    InvalidStateTransition,
    NoPriceConfigured,
    NotFoundError,
    ValidationError,
)
from ..models import FuelPrice, Station
from ..models.assets import VALID_FUEL_TYPES
from ..models.pricing import PRICE_PENDING, PRICE_APPROVED, PRICE_REJECTED
from ..time_utils import as_naive_utc, utcnow, to_utc_z
from .audit_service import record_event
from .station_service import get_sold_fuel_types

MIN_REJECTION_REASON_LENGTH = 10


class PriceCandidate(Protocol):
    fuel_type: str
    price: Decimal
    effective_date: datetime


def resolve_active_prices(
    fuel_types: Iterable[str],
    candidates: Iterable[PriceCandidate],
    at_time: datetime,
) -> dict[str, Decimal]:
    """
    Pick, for each fuel type, the candidate with the latest effective_date <= at_time.

    Aware and naive timestamps are compared in UTC (naive means UTC).

    Raises:
        NoPriceConfigured: if any requested fuel type has no such candidate
    """
    wanted = set(fuel_types)
    at_time = as_naive_utc(at_time)
    ordered = sorted(candidates, key=lambda c: as_naive_utc(c.effective_date), reverse=True)

    prices: dict[str, Decimal] = {}
    for candidate in ordered:
        if candidate.fuel_type not in wanted or candidate.fuel_type in prices:
            continue
        if as_naive_utc(candidate.effective_date) <= at_time:
            prices[candidate.fuel_type] = Decimal(candidate.price)

    missing = sorted(wanted - prices.keys())
    if missing:
        raise NoPriceConfigured(
            f"No active price for {', '.join(missing)}. Cannot open shift.",
            details={"fuel_types": missing, "at": to_utc_z(at_time)},
        )
    return prices


def load_price_candidates(org_id: int, fuel_types: Iterable[str], at_time: datetime) -> list[FuelPrice]:
    """Approved prices of the org for the given fuel types, effective on or before at_time."""
    fuel_types = list(fuel_types)
    if not fuel_types:
        return []
    return (
        db.session.query(FuelPrice)
        .filter(
            FuelPrice.org_id == org_id,
            FuelPrice.status == PRICE_APPROVED,
            FuelPrice.fuel_type.in_(fuel_types),
            FuelPrice.effective_date <= at_time,
        )
        .order_by(FuelPrice.effective_date.desc(), FuelPrice.id.desc())
        .all()
    )


def get_active_prices(station: Station, at_time: datetime | None = None) -> dict[str, Decimal]:
    """Active price per fuel type sold at the station."""
    at_time = at_time or utcnow()
    fuel_types = get_sold_fuel_types(station.id)
    candidates = load_price_candidates(station.org_id, fuel_types, at_time)
    return resolve_active_prices(fuel_types, candidates, at_time)


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

def create_price(
    *,
    org_id: int,
    fuel_type: str,
    price: Decimal,
    effective_date: datetime,
    created_by_user_id: int,
    now: datetime | None = None,
) -> FuelPrice:
    now = now or utcnow()

    if fuel_type not in VALID_FUEL_TYPES:
        raise ValidationError(f"Invalid fuel type: {fuel_type}")
    if price <= 0:
        raise ValidationError("price must be positive")
    if effective_date <= now:
        raise BusinessRuleError("Effective date must be in the future", code="BIZ_INVALID_DATE")

    duplicate = db.session.query(FuelPrice).filter_by(
        org_id=org_id,
        fuel_type=fuel_type,
        effective_date=effective_date,
        status=PRICE_PENDING,
    ).first()
    if duplicate:
        raise ConflictError(
            "A pending price already exists for this fuel type and date",
            code="BIZ_DUPLICATE_PENDING",
            details={"price_id": duplicate.id},
        )

    row = FuelPrice(
        org_id=org_id,
        fuel_type=fuel_type,
        price=price,
        effective_date=effective_date,
        status=PRICE_PENDING,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(row)
    db.session.flush()

    record_event(
        org_id=org_id,
        action="PRICE_CREATED",
        entity_type="fuel_price",
        entity_id=row.id,
        actor_user_id=created_by_user_id,
        payload={"fuel_type": fuel_type, "price": price, "effective_date": to_utc_z(effective_date)},
    )
    db.session.commit()
    return row


def _get_pending_price(price_id: int, org_id: int) -> FuelPrice:
    row = db.session.get(FuelPrice, price_id)
    if not row or row.org_id != org_id:
        raise NotFoundError("Price not found")
    if row.status != PRICE_PENDING:
        raise InvalidStateTransition(f"Price is {row.status}, only PENDING prices can be reviewed")
    return row


def approve_price(price_id: int, *, org_id: int, approver_user_id: int) -> FuelPrice:
    row = _get_pending_price(price_id, org_id)

    if row.created_by_user_id == approver_user_id:
        raise BusinessRuleError("A price cannot be approved by its creator", code="BIZ_SELF_APPROVAL")

    row.status = PRICE_APPROVED
    row.approved_by_user_id = approver_user_id
    row.approved_at = utcnow()

    record_event(
        org_id=org_id,
        action="PRICE_APPROVED",
        entity_type="fuel_price",
        entity_id=row.id,
        actor_user_id=approver_user_id,
    )
    db.session.commit()
    return row


def reject_price(price_id: int, *, org_id: int, reviewer_user_id: int, reason: str | None) -> FuelPrice:
    reason = (reason or "").strip()
    if len(reason) < MIN_REJECTION_REASON_LENGTH:
        raise ValidationError(f"Rejection reason must be at least {MIN_REJECTION_REASON_LENGTH} characters")

    row = _get_pending_price(price_id, org_id)
    row.status = PRICE_REJECTED
    row.rejected_reason = reason

    record_event(
        org_id=org_id,
        action="PRICE_REJECTED",
        entity_type="fuel_price",
        entity_id=row.id,
        actor_user_id=reviewer_user_id,
        payload={"reason": reason},
    )
    db.session.commit()
    return row


def list_prices(org_id: int, *, fuel_type: str | None = None, status: str | None = None) -> list[FuelPrice]:
    query = db.session.query(FuelPrice).filter_by(org_id=org_id)
    if fuel_type:
        query = query.filter_by(fuel_type=fuel_type)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(FuelPrice.effective_date.desc(), FuelPrice.id.desc()).all()
