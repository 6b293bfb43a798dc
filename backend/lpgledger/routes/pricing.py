# Overview: Flask API routes for pricing; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import pricing_service
from ..validation import coerce_decimal, coerce_int, optional_int, require_fields
from . import DOMAIN_ERRORS, domain_error_response, date_arg, int_arg, flag_arg


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


# =============================================================================
# PLANT PRICES
# =============================================================================

@pricing_bp.get("/plant-prices")
def list_plant_prices_route():
    try:
        prices = pricing_service.list_plant_prices(int_arg(request.args, "limit", 30))
        return jsonify({"plant_prices": [p.to_dict() for p in prices]}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list plant prices")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.get("/plant-prices/effective")
def effective_plant_price_route():
    try:
        on_date = date_arg(request.args.get("date"), "date")
        price = pricing_service.get_effective_plant_price(on_date)
        return jsonify({"plant_price": price.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load effective plant price")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/plant-prices")
def set_plant_price_route():
    """
    Set (or overwrite) the plant price for a day.

    Request body: {"plant_price_118kg_cents": 275000, "date": "2024-01-15", "notes": "..."}
    """
    try:
        data = request.get_json() or {}
        require_fields(data, "plant_price_118kg_cents")
        price, created = pricing_service.set_plant_price(
            coerce_int("plant_price_118kg_cents", data["plant_price_118kg_cents"]),
            on_date=date_arg(data.get("date"), "date"),
            notes=data.get("notes"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify({"plant_price": price.to_dict(), "created": created}), 201 if created else 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set plant price")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CALCULATION
# =============================================================================

@pricing_bp.post("/calculate")
def calculate_route():
    """Body: {"plant_price_118kg": "2750", "margin_per_kg": "23", "target_cylinder_kg": "15"} (major units)."""
    try:
        data = request.get_json() or {}
        require_fields(data, "plant_price_118kg", "margin_per_kg", "target_cylinder_kg")
        quote = pricing_service.calculate_prices(
            coerce_decimal("plant_price_118kg", data["plant_price_118kg"]),
            coerce_decimal("margin_per_kg", data["margin_per_kg"]),
            coerce_decimal("target_cylinder_kg", data["target_cylinder_kg"]),
        )
        return jsonify({"quote": quote.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to calculate prices")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.get("/customers/<customer_type>/<int:customer_id>/quote")
def customer_quote_route(customer_type: str, customer_id: int):
    try:
        quote = pricing_service.quote_customer_prices(
            customer_id,
            customer_type.upper(),
            on_date=date_arg(request.args.get("date"), "date"),
        )
        return jsonify(quote), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to quote customer prices")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MARGIN CATEGORIES
# =============================================================================

@pricing_bp.get("/categories")
def list_categories_route():
    try:
        categories = pricing_service.list_margin_categories(
            request.args.get("customer_type") or None,
            include_inactive=flag_arg(request.args, "include_inactive", False),
        )
        return jsonify({"categories": [c.to_dict() for c in categories]}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list margin categories")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/categories/initialize")
def initialize_categories_route():
    try:
        data = request.get_json(silent=True) or {}
        created, updated = pricing_service.initialize_default_categories(data.get("customer_type") or "ALL")
        return jsonify({"created": created, "updated": updated}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to initialize margin categories")
        return jsonify({"error": "Internal server error"}), 500
