# Overview: Flask API routes for replenishment requests and tank ullage.

"""
Replenishment API Routes

DRAFT -> SUBMITTED -> VALIDATED -> ORDERED; the linked delivery completes it.

SECURITY:
- Create/edit/submit: station managers, logistics, DCO, super admins
- Validate: DCO and super admins
- Order: logistics and super admins
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user, require_role, error_response, internal_error
from ..errors import ServiceError
from ..models.auth import ROLE_SUPER_ADMIN, ROLE_DCO, ROLE_LOGISTICS, ROLE_STATION_MANAGER
from ..services import replenishment_service, tank_service
from ..services.tenant_service import require_station_access
from ..validation import json_body, parse_int, parse_text

replenishment_bp = Blueprint("replenishment", __name__, url_prefix="/api/replenishment")

REQUESTER_ROLES = (ROLE_SUPER_ADMIN, ROLE_DCO, ROLE_LOGISTICS, ROLE_STATION_MANAGER)
VALIDATOR_ROLES = (ROLE_SUPER_ADMIN, ROLE_DCO)
ORDER_ROLES = (ROLE_SUPER_ADMIN, ROLE_LOGISTICS)


@replenishment_bp.post("/")
@replenishment_bp.post("")
@require_user
@require_role(*REQUESTER_ROLES)
def create_request_route():
    """
    Create a DRAFT request.

    Request body:
    {
        "station_id": 1,
        "tank_id": 2,
        "requested_volume": "15000"   (must fit the tank ullage)
    }
    """
    try:
        data = json_body()
        req = replenishment_service.create_request(
            station_id=parse_int(data.get("station_id"), "station_id"),
            tank_id=parse_int(data.get("tank_id"), "tank_id"),
            requested_volume=data.get("requested_volume"),
            user=g.current_user,
        )
        return jsonify({"request": req.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create replenishment request")
        return internal_error()


@replenishment_bp.patch("/<int:request_id>")
@require_user
@require_role(*REQUESTER_ROLES)
def update_request_route(request_id: int):
    """Change the volume of a DRAFT request. Request body: {"requested_volume": "12000"}"""
    try:
        data = json_body()
        req = replenishment_service.update_request_volume(request_id, g.current_user, data.get("requested_volume"))
        return jsonify({"request": req.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update replenishment request")
        return internal_error()


@replenishment_bp.delete("/<int:request_id>")
@require_user
@require_role(*REQUESTER_ROLES)
def delete_request_route(request_id: int):
    try:
        replenishment_service.delete_request(request_id, g.current_user)
        return jsonify({"deleted": request_id}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete replenishment request")
        return internal_error()


@replenishment_bp.post("/<int:request_id>/submit")
@require_user
@require_role(*REQUESTER_ROLES)
def submit_request_route(request_id: int):
    try:
        req = replenishment_service.submit_request(request_id, g.current_user)
        return jsonify({"request": req.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit replenishment request")
        return internal_error()


@replenishment_bp.post("/<int:request_id>/validate")
@require_user
@require_role(*VALIDATOR_ROLES)
def validate_request_route(request_id: int):
    """Request body: {"comment": "..."}  (optional)"""
    try:
        data = json_body()
        comment = parse_text(data.get("comment"), "comment")
        req = replenishment_service.validate_request(request_id, g.current_user, comment)
        return jsonify({"request": req.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate replenishment request")
        return internal_error()


@replenishment_bp.post("/<int:request_id>/order")
@require_user
@require_role(*ORDER_ROLES)
def order_request_route(request_id: int):
    try:
        req = replenishment_service.order_request(request_id, g.current_user)
        return jsonify({"request": req.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to order replenishment request")
        return internal_error()


@replenishment_bp.get("/ullage")
@require_user
@require_role(*REQUESTER_ROLES)
def ullage_route():
    """Per-tank capacity, level and ullage of a station."""
    try:
        station_id = parse_int(request.args.get("station_id"), "station_id")
        require_station_access(station_id, g.current_user)
        return jsonify({"station_id": station_id, "tanks": tank_service.get_ullage_report(station_id)}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build ullage report")
        return internal_error()


@replenishment_bp.get("/")
@replenishment_bp.get("")
@require_user
@require_role(*REQUESTER_ROLES)
def list_requests_route():
    try:
        requests = replenishment_service.list_requests(
            g.current_user,
            station_id=parse_int(request.args.get("station_id"), "station_id", required=False),
            status=(request.args.get("status") or "").strip().upper() or None,
        )
        return jsonify({"requests": [r.to_dict() for r in requests]}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list replenishment requests")
        return internal_error()


@replenishment_bp.get("/<int:request_id>")
@require_user
@require_role(*REQUESTER_ROLES)
def get_request_route(request_id: int):
    try:
        req = replenishment_service.get_request(request_id, g.current_user)
        return jsonify({"request": req.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load replenishment request")
        return internal_error()
