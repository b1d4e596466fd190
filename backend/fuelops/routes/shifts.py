# Overview: Flask API routes for shift operations; parses input and returns JSON responses.

"""
Shift API Routes

DESIGN:
- open: freezes the station's active prices on the new shift
- close: full reconciliation in one transaction, replay-safe with an
  Idempotency-Key header (a retried close returns the first response)
- lock: administrative seal of a reviewed CLOSED shift

SECURITY:
- X-User-Id resolves the acting user; station scope is enforced per request
- Open/close: station operators and executives
- Lock: review roles only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user, require_role, error_response, internal_error
from ..errors import ServiceError
from ..models.auth import (
    ROLE_SUPER_ADMIN,
    ROLE_CEO,
    ROLE_CFO,
    ROLE_DCO,
    ROLE_STATION_MANAGER,
    ROLE_CHEF_PISTE,
)
from ..services import idempotency_service, shift_service
from ..services.tenant_service import require_station_access
from ..validation import json_body, parse_int, parse_date_field, parse_pagination, parse_text

shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")

SHIFT_OPERATOR_ROLES = (ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_CFO, ROLE_STATION_MANAGER, ROLE_CHEF_PISTE)
SHIFT_REVIEW_ROLES = (ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_CFO, ROLE_DCO)
IDEMPOTENCY_HEADER = "Idempotency-Key"


@shifts_bp.post("/open")
@require_user
@require_role(*SHIFT_OPERATOR_ROLES)
def open_shift_route():
    """
    Open a shift.

    Request body:
    {
        "station_id": 1,
        "shift_date": "2024-05-01",
        "shift_type": "MORNING"
    }
    """
    try:
        data = json_body()
        station_id = parse_int(data.get("station_id"), "station_id")
        shift_date = parse_date_field(data.get("shift_date"), "shift_date")
        shift_type = parse_text(data.get("shift_type"), "shift_type").upper()

        shift = shift_service.open_shift(station_id, shift_date, shift_type, g.current_user)
        return jsonify({"shift": shift.to_dict(include_lines=True)}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return internal_error()


@shifts_bp.post("/<int:shift_id>/close")
@require_user
@require_role(*SHIFT_OPERATOR_ROLES)
def close_shift_route(shift_id: int):
    """
    Close and reconcile a shift.

    Headers:
        Idempotency-Key: optional; repeats return the stored response

    Request body:
    {
        "sales": [{"nozzle_id": 1, "closing_index": "12500.00"}],
        "tank_dips": [{"tank_id": 1, "closing_level": "8000"}],
        "cash": {"counted": "100000", "card": "25000", "expenses": "0"},
        "justification": "..."  (required when cash variance != 0)
    }
    """
    try:
        data = json_body()
        shift = shift_service.get_shift(shift_id, g.current_user)
        user_id = g.current_user.id

        def _close() -> dict:
            closed = shift_service.close_shift(
                shift.id,
                data.get("sales"),
                data.get("tank_dips"),
                data.get("cash"),
                data.get("justification"),
                closed_by_user_id=user_id,
                commit=False,
            )
            return closed.to_dict(include_lines=True)

        result = idempotency_service.execute(
            "shift.close",
            request.headers.get(IDEMPOTENCY_HEADER),
            _close,
            resource_id=shift.id,
        )
        return jsonify({"shift": result}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return internal_error()


@shifts_bp.post("/<int:shift_id>/lock")
@require_user
@require_role(*SHIFT_REVIEW_ROLES)
def lock_shift_route(shift_id: int):
    try:
        shift = shift_service.lock_shift(shift_id, g.current_user)
        return jsonify({"shift": shift.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to lock shift")
        return internal_error()


@shifts_bp.get("/current")
@require_user
def current_shift_route():
    """OPEN shift of a station, or null."""
    try:
        station_id = parse_int(request.args.get("station_id"), "station_id")
        require_station_access(station_id, g.current_user)

        shift = shift_service.get_current_shift(station_id)
        return jsonify({"shift": shift.to_dict(include_lines=True) if shift else None}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load current shift")
        return internal_error()


@shifts_bp.get("/<int:shift_id>")
@require_user
def get_shift_route(shift_id: int):
    try:
        shift = shift_service.get_shift(shift_id, g.current_user)
        return jsonify({"shift": shift.to_dict(include_lines=True)}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load shift")
        return internal_error()


@shifts_bp.get("/")
@shifts_bp.get("")
@require_user
def list_shifts_route():
    """
    List shifts, newest first.

    Query params: station_id, status, start_date, end_date, page, limit
    """
    try:
        args = request.args
        page, limit = parse_pagination(args)
        shifts, total = shift_service.list_shifts(
            g.current_user,
            station_id=parse_int(args.get("station_id"), "station_id", required=False),
            status=(args.get("status") or "").strip().upper() or None,
            start_date=parse_date_field(args.get("start_date"), "start_date", required=False),
            end_date=parse_date_field(args.get("end_date"), "end_date", required=False),
            page=page,
            limit=limit,
        )
        return jsonify({
            "shifts": [s.to_dict() for s in shifts],
            "total": total,
            "page": page,
            "limit": limit,
        }), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list shifts")
        return internal_error()
