# Overview: Flask API routes for fuel prices; parses input and returns JSON responses.

"""
Fuel Price API Routes

WHY: A price only reaches the pumps through a shift's frozen snapshot, and
only once approved by someone other than its author.

SECURITY:
- Create/approve/reject: executives (CEO, CFO) and super admins
- Active price lookup: any user who can reach the station
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decimal_utils import parse_decimal, to_decimal_str
from ..decorators import require_user, require_role, error_response, internal_error
from ..errors import ServiceError, ValidationError
from ..models.auth import ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_CFO, ROLE_STATION_MANAGER
from ..services import pricing_service
from ..services.tenant_service import require_station_access
from ..time_utils import utcnow, to_utc_z
from ..validation import json_body, parse_int, parse_datetime_field, parse_text

prices_bp = Blueprint("prices", __name__, url_prefix="/api/prices")

PRICE_ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_CFO)
PRICE_VIEW_ROLES = PRICE_ADMIN_ROLES + (ROLE_STATION_MANAGER,)


@prices_bp.post("/")
@prices_bp.post("")
@require_user
@require_role(*PRICE_ADMIN_ROLES)
def create_price_route():
    """
    Propose a price for a future date.

    Request body:
    {
        "fuel_type": "ESSENCE",
        "price": "695",
        "effective_date": "2024-06-01T00:00:00Z"
    }
    """
    try:
        data = json_body()
        try:
            price = parse_decimal(data.get("price"), "price")
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "price"})

        row = pricing_service.create_price(
            org_id=g.org_id,
            fuel_type=parse_text(data.get("fuel_type"), "fuel_type").upper(),
            price=price,
            effective_date=parse_datetime_field(data.get("effective_date"), "effective_date"),
            created_by_user_id=g.current_user.id,
        )
        current_app.logger.info("Price %s proposed for %s", row.id, row.fuel_type)
        return jsonify({"price": row.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create price")
        return internal_error()


@prices_bp.post("/<int:price_id>/approve")
@require_user
@require_role(*PRICE_ADMIN_ROLES)
def approve_price_route(price_id: int):
    try:
        row = pricing_service.approve_price(price_id, org_id=g.org_id, approver_user_id=g.current_user.id)
        return jsonify({"price": row.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve price")
        return internal_error()


@prices_bp.post("/<int:price_id>/reject")
@require_user
@require_role(*PRICE_ADMIN_ROLES)
def reject_price_route(price_id: int):
    """Request body: {"reason": "at least ten characters"}"""
    try:
        data = json_body()
        row = pricing_service.reject_price(
            price_id,
            org_id=g.org_id,
            reviewer_user_id=g.current_user.id,
            reason=parse_text(data.get("reason"), "reason"),
        )
        return jsonify({"price": row.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject price")
        return internal_error()


@prices_bp.get("/active")
@require_user
def active_prices_route():
    """
    Prices a shift opened at `at` (default now) would freeze.

    Query params: station_id (required), at (ISO-8601, optional)
    """
    try:
        station_id = parse_int(request.args.get("station_id"), "station_id")
        at_time = parse_datetime_field(request.args.get("at"), "at", required=False) or utcnow()
        station = require_station_access(station_id, g.current_user)

        prices = pricing_service.get_active_prices(station, at_time=at_time)
        return jsonify({
            "station_id": station.id,
            "at": to_utc_z(at_time),
            "prices": {fuel_type: to_decimal_str(price) for fuel_type, price in sorted(prices.items())},
        }), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve active prices")
        return internal_error()


@prices_bp.get("/")
@prices_bp.get("")
@require_user
@require_role(*PRICE_VIEW_ROLES)
def list_prices_route():
    try:
        rows = pricing_service.list_prices(
            g.org_id,
            fuel_type=(request.args.get("fuel_type") or "").strip().upper() or None,
            status=(request.args.get("status") or "").strip().upper() or None,
        )
        return jsonify({"prices": [r.to_dict() for r in rows]}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list prices")
        return internal_error()
