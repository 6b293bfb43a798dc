# Overview: Pytest coverage for the JSON API; status codes and error mapping.

import logging

from lpgledger.services import cylinder_service, ledger_service


def _sale_body(customer, **extra):
    body = {
        "customer_id": customer.id,
        "transaction_type": "SALE",
        "items": [{"cylinder_type": "STANDARD_15KG", "quantity": 2, "price_per_item_cents": 384100}],
        "date": "2024-01-15",
        "time": "09:30",
    }
    body.update(extra)
    return body


class TestSystem:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["database"]["status"] == "healthy"


class TestB2BRoutes:

    def test_post_and_void_sale(self, client, db_session, customer):
        response = client.post("/api/b2b/transactions", json=_sale_body(customer))
        assert response.status_code == 201
        body = response.json
        assert body["transaction"]["bill_number"] == "BILL-20240115-000001"
        assert body["transaction"]["time"] == "09:30:00"
        assert body["customer"]["ledger_balance_cents"] == 768200

        tx_id = body["transaction"]["id"]
        response = client.post(f"/api/b2b/transactions/{tx_id}/void", json={"reason": "Entered twice"})
        assert response.status_code == 200
        assert response.json["customer"]["ledger_balance_cents"] == 0

        response = client.post(f"/api/b2b/transactions/{tx_id}/void")
        assert response.status_code == 409

    def test_unknown_transaction(self, client, db_session):
        assert client.get("/api/b2b/transactions/999").status_code == 404

    def test_unknown_customer(self, client, db_session):
        response = client.post("/api/b2b/transactions", json={
            "customer_id": 999, "transaction_type": "PAYMENT", "payment_amount_cents": 100,
        })
        assert response.status_code == 404

    def test_invalid_transaction_type(self, client, db_session, customer):
        response = client.post("/api/b2b/transactions", json=_sale_body(customer, transaction_type="REFUND"))
        assert response.status_code == 400
        assert "Invalid transaction_type" in response.json["error"]

    def test_missing_fields(self, client, db_session):
        response = client.post("/api/b2b/transactions", json={"transaction_type": "SALE"})
        assert response.status_code == 400

    def test_bad_date(self, client, db_session, customer):
        response = client.post("/api/b2b/transactions", json=_sale_body(customer, date="15/01/2024"))
        assert response.status_code == 400

    def test_duplicate_bill_number(self, client, db_session, customer):
        body = _sale_body(customer, bill_number="BILL-20240115-000100")
        assert client.post("/api/b2b/transactions", json=body).status_code == 201
        assert client.post("/api/b2b/transactions", json=body).status_code == 400

    def test_statement_and_reconciliation(self, client, db_session, customer):
        client.post("/api/b2b/transactions", json=_sale_body(customer))

        statement = client.get(f"/api/b2b/customers/{customer.id}/statement?limit=10")
        assert statement.status_code == 200
        assert statement.json["closing_balance_cents"] == 768200

        report = client.get(f"/api/b2b/customers/{customer.id}/reconciliation")
        assert report.status_code == 200
        assert report.json["summary"]["is_balanced"] is True

        assert client.get(f"/api/b2b/customers/{customer.id}/statement?limit=0").status_code == 400

    def test_backdated_posting_is_rejected(self, client, db_session, customer):
        assert client.post("/api/b2b/transactions", json=_sale_body(customer)).status_code == 201

        response = client.post("/api/b2b/transactions", json=_sale_body(customer, date="2024-01-14"))
        assert response.status_code == 400
        assert "earlier than" in response.json["error"]

    def test_unexpected_failure_is_logged(self, client, db_session, customer, monkeypatch, caplog):
        def _boom(customer_id):
            raise RuntimeError("connection dropped")

        monkeypatch.setattr(ledger_service, "get_customer", _boom)
        with caplog.at_level(logging.ERROR):
            response = client.get(f"/api/b2b/customers/{customer.id}")

        assert response.status_code == 500
        assert response.json == {"error": "Internal server error"}
        assert "Failed to load customer" in caplog.text

    def test_reserve_bill_number(self, client, db_session):
        response = client.post("/api/b2b/bill-numbers", json={"date": "2024-01-15"})
        assert response.status_code == 201
        assert response.json["bill_number"] == "BILL-20240115-000001"

    def test_create_customer(self, client, db_session, category):
        response = client.post("/api/b2b/customers", json={"name": "Shan Foods", "margin_category_id": category.id})
        assert response.status_code == 201
        assert response.json["customer"]["ledger_balance_cents"] == 0


class TestB2CRoutes:

    def test_return_beyond_holdings_is_conflict(self, client, db_session, b2c_customer):
        response = client.post("/api/b2c/transactions", json={
            "customer_id": b2c_customer.id,
            "security_items": [{"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1, "is_return": True}],
        })
        assert response.status_code == 409

    def test_deposit_then_holdings(self, client, db_session, b2c_customer):
        response = client.post("/api/b2c/transactions", json={
            "customer_id": b2c_customer.id,
            "security_items": [{"cylinder_type": "DOMESTIC_11_8KG", "quantity": 2}],
            "date": "2024-01-10",
        })
        assert response.status_code == 201

        holdings = client.get(f"/api/b2c/customers/{b2c_customer.id}/holdings")
        assert holdings.status_code == 200
        assert len(holdings.json["holdings"]) == 2
        assert holdings.json["security_held_cents"] == 6_000_000


class TestCylinderRoutes:

    def test_illegal_event_is_conflict(self, client, db_session, store):
        cylinder_service.register_cylinder("CYL-0001", "STANDARD_15KG", store_id=store.id)

        response = client.post("/api/cylinders/CYL-0001/events", json={"event_type": "REFILL"})
        assert response.status_code == 409

        response = client.post("/api/cylinders/CYL-0001/events", json={"event_type": "SEND_TO_MAINTENANCE"})
        assert response.status_code == 200
        assert response.json["cylinder"]["current_status"] == "MAINTENANCE"

    def test_register_and_fetch(self, client, db_session, store):
        response = client.post("/api/cylinders/", json={
            "code": "cyl-0002", "cylinder_type": "COMMERCIAL_45_4KG", "store_id": store.id,
        })
        assert response.status_code == 201

        response = client.get("/api/cylinders/CYL-0002/movements")
        assert response.status_code == 200
        assert [m["event_type"] for m in response.json["movements"]] == ["REGISTER"]

        assert client.get("/api/cylinders/CYL-404").status_code == 404


class TestPricingRoutes:

    def test_calculate(self, client, db_session):
        response = client.post("/api/pricing/calculate", json={
            "plant_price_118kg": "2750", "margin_per_kg": "23", "target_cylinder_kg": "15",
        })
        assert response.status_code == 200
        assert response.json["quote"]["invoice_price_cents"] == 384100

    def test_calculate_rejects_negative_margin(self, client, db_session):
        response = client.post("/api/pricing/calculate", json={
            "plant_price_118kg": "2750", "margin_per_kg": "-1", "target_cylinder_kg": "15",
        })
        assert response.status_code == 400

    def test_set_plant_price_created_then_updated(self, client, db_session):
        body = {"plant_price_118kg_cents": 275000, "date": "2024-01-15"}
        assert client.post("/api/pricing/plant-prices", json=body).status_code == 201
        assert client.post("/api/pricing/plant-prices", json=body).status_code == 200

    def test_customer_quote(self, client, db_session, customer, plant_price):
        response = client.get(f"/api/pricing/customers/b2b/{customer.id}/quote?date=2024-01-15")
        assert response.status_code == 200
        assert response.json["final_prices_cents"]["STANDARD_15KG"] == 384100
