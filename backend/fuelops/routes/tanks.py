# Overview: Flask API routes for tanks; level reads and optimistic-lock level corrections.

from flask import Blueprint, request, jsonify, g, current_app

from ..decimal_utils import parse_decimal
from ..decorators import require_user, require_role, error_response, internal_error
from ..errors import ServiceError, ValidationError
from ..models.auth import ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_STATION_MANAGER
from ..services import station_service, tank_service
from ..services.tenant_service import require_station_access
from ..validation import json_body, parse_int

tanks_bp = Blueprint("tanks", __name__, url_prefix="/api/tanks")

TANK_ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_CEO, ROLE_STATION_MANAGER)


@tanks_bp.get("/")
@tanks_bp.get("")
@require_user
def list_tanks_route():
    try:
        station_id = parse_int(request.args.get("station_id"), "station_id")
        require_station_access(station_id, g.current_user)
        tanks = station_service.get_station_tanks(station_id)
        return jsonify({"tanks": [t.to_dict() for t in tanks]}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list tanks")
        return internal_error()


@tanks_bp.get("/<int:tank_id>")
@require_user
def get_tank_route(tank_id: int):
    try:
        tank = tank_service.get_tank(tank_id, g.current_user)
        return jsonify({"tank": tank.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load tank")
        return internal_error()


@tanks_bp.patch("/<int:tank_id>/level")
@require_user
@require_role(*TANK_ADMIN_ROLES)
def adjust_level_route(tank_id: int):
    """
    Manual level correction.

    Request body:
    {
        "level": "12000",
        "expected_version": 4     (optional; 409 if the tank moved on)
    }
    """
    try:
        data = json_body()
        try:
            level = parse_decimal(data.get("level"), "level")
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "level"})
        expected_version = parse_int(data.get("expected_version"), "expected_version", required=False)

        tank_service.get_tank(tank_id, g.current_user)
        tank = tank_service.adjust_tank_level(
            tank_id,
            level,
            actor_user_id=g.current_user.id,
            expected_version=expected_version,
        )
        current_app.logger.info("Tank %s level set to %s (version %s)", tank.id, tank.current_level, tank.version)
        return jsonify({"tank": tank.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust tank level")
        return internal_error()
