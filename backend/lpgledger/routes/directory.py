# Overview: Flask API routes for stores and vehicles; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import location_service
from . import DOMAIN_ERRORS, domain_error_response


directory_bp = Blueprint("directory", __name__, url_prefix="/api")


@directory_bp.get("/stores")
def list_stores_route():
    return jsonify({"stores": [s.to_dict() for s in location_service.list_stores()]}), 200


@directory_bp.post("/stores")
def create_store_route():
    try:
        data = request.get_json() or {}
        store = location_service.create_store(
            data.get("name"),
            code=data.get("code"),
            address=data.get("address"),
        )
        return jsonify({"store": store.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create store")
        return jsonify({"error": "Internal server error"}), 500


@directory_bp.get("/vehicles")
def list_vehicles_route():
    return jsonify({"vehicles": [v.to_dict() for v in location_service.list_vehicles()]}), 200


@directory_bp.post("/vehicles")
def create_vehicle_route():
    try:
        data = request.get_json() or {}
        vehicle = location_service.create_vehicle(
            data.get("registration_number"),
            driver_name=data.get("driver_name"),
        )
        return jsonify({"vehicle": vehicle.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create vehicle")
        return jsonify({"error": "Internal server error"}), 500
