# Overview: Flask API routes for B2B ledger operations; parses input and returns JSON responses.

# backend/lpgledger/routes/b2b.py
"""
B2B Ledger API Routes

Posting, void, statements and reconciliation for business customers.
Authentication is handled outside this service; user_id comes from the body
for the audit trail.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import ledger_service, reconciliation_service
from ..services.bill_sequence_service import reserve_bill_number
from ..validation import coerce_int, optional_int, require_fields
from lpgledger.time_utils import today
from . import DOMAIN_ERRORS, domain_error_response, date_arg, time_arg, int_arg, flag_arg


b2b_bp = Blueprint("b2b", __name__, url_prefix="/api/b2b")


# =============================================================================
# CUSTOMERS
# =============================================================================

@b2b_bp.post("/customers")
def create_customer_route():
    try:
        data = request.get_json() or {}
        require_fields(data, "name")
        customer = ledger_service.create_customer(
            data["name"],
            margin_category_id=optional_int(data, "margin_category_id"),
            phone=data.get("phone"),
            contact_person=data.get("contact_person"),
            address=data.get("address"),
            credit_limit_cents=optional_int(data, "credit_limit_cents") or 0,
            payment_terms_days=optional_int(data, "payment_terms_days") or 30,
        )
        return jsonify({"customer": customer.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.get("/customers/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = ledger_service.get_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load customer")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.get("/customers/<int:customer_id>/transactions")
def list_transactions_route(customer_id: int):
    try:
        include_voided = flag_arg(request.args, "include_voided", True)
        transactions = ledger_service.list_customer_transactions(customer_id, include_voided=include_voided)
        return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customer transactions")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.get("/customers/<int:customer_id>/statement")
def statement_route(customer_id: int):
    """
    Ledger statement, newest first.

    Query params: start_date, end_date (YYYY-MM-DD), page, limit
    """
    try:
        statement = reconciliation_service.customer_statement(
            customer_id,
            start_date=date_arg(request.args.get("start_date"), "start_date"),
            end_date=date_arg(request.args.get("end_date"), "end_date"),
            page=int_arg(request.args, "page", 1),
            limit=int_arg(request.args, "limit", 20),
        )
        return jsonify(statement), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build customer statement")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.get("/customers/<int:customer_id>/reconciliation")
def reconciliation_route(customer_id: int):
    try:
        as_of = date_arg(request.args.get("as_of"), "as_of")
        report = reconciliation_service.reconcile_customer(customer_id, as_of=as_of)
        return jsonify(report.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile customer ledger")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSACTIONS
# =============================================================================

@b2b_bp.post("/transactions")
def post_transaction_route():
    """
    Post a B2B transaction.

    Request body:
    {
        "customer_id": 1,
        "transaction_type": "SALE",
        "items": [{"cylinder_type": "STANDARD_15KG", "quantity": 2, "price_per_item_cents": 384100}],
        "payment_amount_cents": 300000,       (PAYMENT / ADJUSTMENT)
        "bill_number": "BILL-20240115-000001", (optional, allocated when omitted)
        "date": "2024-01-15", "time": "10:30", (optional)
        "return_store_id": 1,                  (RETURN_EMPTY / BUYBACK, optional)
        "user_id": 7                           (optional)
    }

    Returns:
        201: transaction and customer snapshot
        400: invalid input, 404: unknown customer, 409: concurrent update
    """
    try:
        data = request.get_json() or {}
        require_fields(data, "customer_id", "transaction_type")

        posted = ledger_service.post_transaction(
            coerce_int("customer_id", data["customer_id"]),
            data["transaction_type"],
            data.get("items") or (),
            payment_amount_cents=optional_int(data, "payment_amount_cents"),
            bill_number=data.get("bill_number"),
            on_date=date_arg(data.get("date"), "date"),
            at_time=time_arg(data.get("time"), "time"),
            payment_reference=data.get("payment_reference"),
            notes=data.get("notes"),
            return_store_id=optional_int(data, "return_store_id"),
            return_vehicle_id=optional_int(data, "return_vehicle_id"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(posted.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post transaction")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.get("/transactions/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        tx = ledger_service.get_transaction(transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.post("/transactions/<int:transaction_id>/void")
def void_transaction_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        voided = ledger_service.void_transaction(
            transaction_id,
            user_id=optional_int(data, "user_id"),
            reason=data.get("reason"),
        )
        return jsonify(voided.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return jsonify({"error": "Internal server error"}), 500


@b2b_bp.post("/bill-numbers")
def reserve_bill_number_route():
    """Allocate a bill number ahead of posting (lets clients retry safely)."""
    try:
        data = request.get_json(silent=True) or {}
        on_date = date_arg(data.get("date"), "date") or today()
        bill_number = reserve_bill_number(
            prefix=current_app.config.get("BILL_PREFIX_B2B", "BILL"),
            on_date=on_date,
        )
        return jsonify({"bill_number": bill_number}), 201
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reserve bill number")
        return jsonify({"error": "Internal server error"}), 500
