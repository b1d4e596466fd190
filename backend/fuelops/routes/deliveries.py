# Overview: Flask API routes for fuel deliveries; parses input and returns JSON responses.

"""
Fuel Delivery API Routes

DESIGN:
- PENDING: create, add/remove compartments
- start: opening dips (defaults to current tank levels), BL total check
- complete: closing dips, received volumes, disputes, tank levels

SECURITY:
- Station managers, logistics, DCO and super admins; station scope enforced
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user, require_role, error_response, internal_error
from ..errors import ServiceError
from ..models.auth import ROLE_SUPER_ADMIN, ROLE_DCO, ROLE_LOGISTICS, ROLE_STATION_MANAGER
from ..services import delivery_service
from ..validation import json_body, parse_int

deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")

SUPPLY_ROLES = (ROLE_SUPER_ADMIN, ROLE_DCO, ROLE_LOGISTICS, ROLE_STATION_MANAGER)


@deliveries_bp.post("/")
@deliveries_bp.post("")
@require_user
@require_role(*SUPPLY_ROLES)
def create_delivery_route():
    """
    Register a truck arrival.

    Request body:
    {
        "station_id": 1,
        "bl_number": "BL-2024-0001",
        "truck_plate": "AB-123-CD",
        "driver_name": "...",
        "bl_total_volume": "10000",          (optional)
        "replenishment_request_id": 3         (optional, must be ORDERED)
    }
    """
    try:
        data = json_body()
        delivery = delivery_service.create_delivery(
            station_id=parse_int(data.get("station_id"), "station_id"),
            bl_number=data.get("bl_number"),
            truck_plate=data.get("truck_plate"),
            driver_name=data.get("driver_name"),
            bl_total_volume=data.get("bl_total_volume"),
            replenishment_request_id=parse_int(
                data.get("replenishment_request_id"), "replenishment_request_id", required=False
            ),
            user=g.current_user,
        )
        current_app.logger.info("Delivery %s created (BL %s)", delivery.id, delivery.bl_number)
        return jsonify({"delivery": delivery.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create delivery")
        return internal_error()


@deliveries_bp.post("/<int:delivery_id>/compartments")
@require_user
@require_role(*SUPPLY_ROLES)
def add_compartment_route(delivery_id: int):
    """Request body: {"tank_id": 1, "bl_volume": "5000"}"""
    try:
        data = json_body()
        compartment = delivery_service.add_compartment(
            delivery_id,
            tank_id=parse_int(data.get("tank_id"), "tank_id"),
            bl_volume=data.get("bl_volume"),
            user=g.current_user,
        )
        return jsonify({"compartment": compartment.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add delivery compartment")
        return internal_error()


@deliveries_bp.delete("/<int:delivery_id>/compartments/<int:compartment_id>")
@require_user
@require_role(*SUPPLY_ROLES)
def remove_compartment_route(delivery_id: int, compartment_id: int):
    try:
        delivery_service.remove_compartment(delivery_id, compartment_id, g.current_user)
        return jsonify({"deleted": compartment_id}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove delivery compartment")
        return internal_error()


@deliveries_bp.post("/<int:delivery_id>/start")
@require_user
@require_role(*SUPPLY_ROLES)
def start_delivery_route(delivery_id: int):
    """Request body: {"opening_dips": {"<compartment_id>": "5000"}}  (optional)"""
    try:
        data = json_body()
        delivery = delivery_service.start_delivery(delivery_id, g.current_user, data.get("opening_dips"))
        return jsonify({"delivery": delivery.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start delivery")
        return internal_error()


@deliveries_bp.post("/<int:delivery_id>/complete")
@require_user
@require_role(*SUPPLY_ROLES)
def complete_delivery_route(delivery_id: int):
    """Request body: {"closing_dips": {"<compartment_id>": "6000"}}"""
    try:
        data = json_body()
        delivery = delivery_service.complete_delivery(delivery_id, g.current_user, data.get("closing_dips"))
        return jsonify({"delivery": delivery.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete delivery")
        return internal_error()


@deliveries_bp.get("/")
@deliveries_bp.get("")
@require_user
@require_role(*SUPPLY_ROLES)
def list_deliveries_route():
    try:
        deliveries = delivery_service.list_deliveries(
            g.current_user,
            station_id=parse_int(request.args.get("station_id"), "station_id", required=False),
            status=(request.args.get("status") or "").strip().upper() or None,
        )
        return jsonify({"deliveries": [d.to_dict(include_compartments=False) for d in deliveries]}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list deliveries")
        return internal_error()


@deliveries_bp.get("/<int:delivery_id>")
@require_user
@require_role(*SUPPLY_ROLES)
def get_delivery_route(delivery_id: int):
    try:
        delivery = delivery_service.get_delivery(delivery_id, g.current_user)
        return jsonify({"delivery": delivery.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load delivery")
        return internal_error()
