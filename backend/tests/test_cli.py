# Overview: Pytest coverage for the Flask CLI command groups.

from lpgledger.models import Cylinder, MarginCategory, PlantPrice
from lpgledger.services import ledger_service


def test_init_categories(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["pricing", "init-categories"])
    assert result.exit_code == 0
    assert "6 created, 0 updated" in result.output
    assert db_session.query(MarginCategory).count() == 6


def test_set_plant_price(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["pricing", "set-plant-price", "275000", "--date", "2024-01-15"])
    assert result.exit_code == 0
    assert "275000 cents" in result.output
    assert db_session.query(PlantPrice).count() == 1


def test_set_plant_price_bad_date(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["pricing", "set-plant-price", "275000", "--date", "yesterday"])
    assert result.exit_code != 0


def test_quote(app, db_session, customer, plant_price):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["pricing", "quote", "--customer-id", str(customer.id), "--date", "2024-01-15"])
    assert result.exit_code == 0
    assert "384100 cents" in result.output


def test_reconcile_balanced(app, db_session, customer):
    ledger_service.post_transaction(customer.id, "PAYMENT", payment_amount_cents=1000)
    runner = app.test_cli_runner()
    result = runner.invoke(args=["ledger", "reconcile", "--all"])
    assert result.exit_code == 0
    assert "PASS" in result.output


def test_reconcile_reports_mismatch(app, db_session, customer):
    customer.ledger_balance_cents = 500
    db_session.commit()

    runner = app.test_cli_runner()
    result = runner.invoke(args=["ledger", "reconcile", "--customer-id", str(customer.id)])
    assert result.exit_code == 1
    assert "FAIL" in result.output
    assert "difference=500" in result.output


def test_reconcile_needs_target(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["ledger", "reconcile"])
    assert result.exit_code != 0


def test_register_cylinder(app, db_session, store):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["cylinders", "register", "cyl-0001", "STANDARD_15KG", "--store-id", str(store.id)])
    assert result.exit_code == 0
    assert db_session.query(Cylinder).filter_by(code="CYL-0001").count() == 1

    result = runner.invoke(args=["cylinders", "register", "CYL-0001", "STANDARD_15KG", "--store-id", str(store.id)])
    assert result.exit_code != 0
    assert "already exists" in result.output
