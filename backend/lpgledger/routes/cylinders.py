# Overview: Flask API routes for cylinder tracking; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..models import LOCATION_FIELDS
from ..services import cylinder_service
from ..validation import optional_decimal, optional_int, require_fields
from . import DOMAIN_ERRORS, domain_error_response


cylinders_bp = Blueprint("cylinders", __name__, url_prefix="/api/cylinders")


@cylinders_bp.get("/")
def list_cylinders_route():
    try:
        cylinders = cylinder_service.list_cylinders(
            status=request.args.get("status") or None,
            cylinder_type=request.args.get("cylinder_type") or None,
            store_id=optional_int(request.args, "store_id"),
            vehicle_id=optional_int(request.args, "vehicle_id"),
        )
        return jsonify({"cylinders": [c.to_dict() for c in cylinders]}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cylinders")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.post("/")
def register_cylinder_route():
    """Body: {"code": "CYL-0001", "cylinder_type": "STANDARD_15KG", "store_id": 1, "status": "FULL"}"""
    try:
        data = request.get_json() or {}
        require_fields(data, "code", "cylinder_type")
        cylinder = cylinder_service.register_cylinder(
            data["code"],
            data["cylinder_type"],
            store_id=optional_int(data, "store_id"),
            vehicle_id=optional_int(data, "vehicle_id"),
            status=data.get("status") or "FULL",
            capacity_kg=optional_decimal(data, "capacity_kg"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify({"cylinder": cylinder.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register cylinder")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.get("/<code>")
def get_cylinder_route(code: str):
    try:
        return jsonify({"cylinder": cylinder_service.get_cylinder(code).to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cylinder")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.get("/<code>/movements")
def list_movements_route(code: str):
    try:
        movements = cylinder_service.list_movements(code)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cylinder movements")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.post("/<code>/events")
def apply_event_route(code: str):
    """
    Apply a status event to one cylinder.

    Body: {"event_type": "REFILL", "store_id": 1}
          {"event_type": "RELEASE_FROM_MAINTENANCE", "release_to": "EMPTY"}

    Returns:
        200: updated cylinder
        409: event not allowed from the current status
    """
    try:
        data = request.get_json() or {}
        require_fields(data, "event_type")
        target = {field: optional_int(data, field) for field in LOCATION_FIELDS}
        cylinder = cylinder_service.apply_cylinder_event(
            code,
            data["event_type"],
            target,
            condition=data.get("condition"),
            remaining_kg=optional_decimal(data, "remaining_kg"),
            release_to=data.get("release_to"),
            user_id=optional_int(data, "user_id"),
            note=data.get("note"),
        )
        return jsonify({"cylinder": cylinder.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply cylinder event")
        return jsonify({"error": "Internal server error"}), 500
