# Overview: Flask API routes for B2C sales and security deposits; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import security_service
from ..validation import coerce_int, optional_int, require_fields
from . import DOMAIN_ERRORS, domain_error_response, date_arg, time_arg, flag_arg


b2c_bp = Blueprint("b2c", __name__, url_prefix="/api/b2c")


@b2c_bp.post("/customers")
def create_customer_route():
    try:
        data = request.get_json() or {}
        require_fields(data, "name")
        customer = security_service.create_b2c_customer(
            data["name"],
            margin_category_id=optional_int(data, "margin_category_id"),
            phone=data.get("phone"),
            address=data.get("address"),
        )
        return jsonify({"customer": customer.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create B2C customer")
        return jsonify({"error": "Internal server error"}), 500


@b2c_bp.get("/customers/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = security_service.get_b2c_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load B2C customer")
        return jsonify({"error": "Internal server error"}), 500


@b2c_bp.get("/customers/<int:customer_id>/holdings")
def list_holdings_route(customer_id: int):
    try:
        holdings = security_service.list_open_holdings(customer_id, request.args.get("cylinder_type") or None)
        return jsonify({
            "holdings": [h.to_dict() for h in holdings],
            "security_held_cents": sum(h.security_amount_cents for h in holdings),
        }), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cylinder holdings")
        return jsonify({"error": "Internal server error"}), 500


@b2c_bp.get("/customers/<int:customer_id>/transactions")
def list_transactions_route(customer_id: int):
    try:
        include_voided = flag_arg(request.args, "include_voided", True)
        transactions = security_service.list_b2c_transactions(customer_id, include_voided=include_voided)
        return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list B2C transactions")
        return jsonify({"error": "Internal server error"}), 500


@b2c_bp.post("/transactions")
def post_transaction_route():
    """
    Post a B2C transaction.

    Request body:
    {
        "customer_id": 1,
        "gas_items": [{"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1, "price_per_item_cents": 330000, "cost_price_cents": 280000}],
        "accessory_items": [{"product_name": "Regulator", "quantity": 1, "price_per_item_cents": 90000}],
        "security_items": [{"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1, "is_return": false}],
        "delivery_charges_cents": 10000,
        "delivery_cost_cents": 5000,
        "payment_method": "CASH"
    }

    Returns:
        201: transaction and customer aggregates
        409: security return exceeds the customer's open holdings
    """
    try:
        data = request.get_json() or {}
        require_fields(data, "customer_id")

        posted = security_service.post_b2c_transaction(
            coerce_int("customer_id", data["customer_id"]),
            gas_items=data.get("gas_items") or (),
            security_items=data.get("security_items") or (),
            accessory_items=data.get("accessory_items") or (),
            delivery_charges_cents=optional_int(data, "delivery_charges_cents") or 0,
            delivery_cost_cents=optional_int(data, "delivery_cost_cents") or 0,
            payment_method=data.get("payment_method") or "CASH",
            bill_number=data.get("bill_number"),
            on_date=date_arg(data.get("date"), "date"),
            at_time=time_arg(data.get("time"), "time"),
            notes=data.get("notes"),
            return_store_id=optional_int(data, "return_store_id"),
            return_vehicle_id=optional_int(data, "return_vehicle_id"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(posted.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post B2C transaction")
        return jsonify({"error": "Internal server error"}), 500


@b2c_bp.get("/transactions/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        tx = security_service.get_b2c_transaction(transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load B2C transaction")
        return jsonify({"error": "Internal server error"}), 500


@b2c_bp.post("/transactions/<int:transaction_id>/void")
def void_transaction_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        voided = security_service.void_b2c_transaction(
            transaction_id,
            user_id=optional_int(data, "user_id"),
            reason=data.get("reason"),
        )
        return jsonify(voided.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void B2C transaction")
        return jsonify({"error": "Internal server error"}), 500
