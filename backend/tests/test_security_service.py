# Overview: Pytest coverage for B2C sales, security deposits and FIFO holdings.

from datetime import date

import pytest

from lpgledger.models import B2CTransaction, B2CCustomer, CylinderHolding
from lpgledger.validation import ValidationError, NotFoundError
from lpgledger.services import cylinder_service, security_service
from lpgledger.services.ledger_service import AlreadyVoidedError
from lpgledger.services.security_service import InsufficientHoldingError, return_deduction_cents


def _deposit(customer, quantity=1, price=None, on_date=date(2024, 1, 10), cylinder_type="DOMESTIC_11_8KG", **kwargs):
    item = {"cylinder_type": cylinder_type, "quantity": quantity}
    if price is not None:
        item["price_per_item_cents"] = price
    return security_service.post_b2c_transaction(customer.id, security_items=[item], on_date=on_date, **kwargs)


def _return(customer, quantity=1, on_date=date(2024, 2, 1), cylinder_type="DOMESTIC_11_8KG", **kwargs):
    return security_service.post_b2c_transaction(
        customer.id,
        security_items=[{"cylinder_type": cylinder_type, "quantity": quantity, "is_return": True}],
        on_date=on_date,
        **kwargs,
    )


class TestDeduction:

    @pytest.mark.parametrize("deposit, expected", [
        (3_000_000, 750_000),
        (1001, 250),
        (1002, 251),
        (0, 0),
    ])
    def test_quarter_retained_half_up(self, deposit, expected):
        assert return_deduction_cents(deposit) == expected


class TestB2CSale:

    def test_sale_with_deposit(self, db_session, b2c_customer):
        posted = security_service.post_b2c_transaction(
            b2c_customer.id,
            gas_items=[{"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1,
                        "price_per_item_cents": 330000, "cost_price_cents": 280000}],
            accessory_items=[{"product_name": "Regulator", "quantity": 1,
                              "price_per_item_cents": 90000, "cost_price_cents": 70000}],
            security_items=[{"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1}],
            delivery_charges_cents=10000,
            delivery_cost_cents=5000,
            on_date=date(2024, 1, 10),
        )

        tx = posted.transaction
        assert tx.bill_number == "B2C-20240110-000001"
        assert tx.total_amount_cents == 330000 + 90000 + 3_000_000
        assert tx.final_amount_cents == 3_420_000 + 10000
        assert tx.total_cost_cents == 280000 + 70000 + 5000
        assert tx.actual_profit_cents == 75000
        assert posted.customer["security_held_cents"] == 3_000_000
        assert posted.customer["total_profit_cents"] == 75000

        holdings = security_service.list_open_holdings(b2c_customer.id)
        assert len(holdings) == 1
        assert holdings[0].security_amount_cents == 3_000_000
        assert holdings[0].opened_by_transaction_id == tx.id

    def test_deposit_opens_one_holding_per_cylinder(self, db_session, b2c_customer):
        _deposit(b2c_customer, quantity=3, price=1000)
        assert db_session.query(CylinderHolding).count() == 3

    def test_requires_some_item(self, db_session, b2c_customer):
        with pytest.raises(ValidationError):
            security_service.post_b2c_transaction(b2c_customer.id, delivery_charges_cents=1000)

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            security_service.post_b2c_transaction(404, accessory_items=[
                {"product_name": "Hose", "quantity": 1, "price_per_item_cents": 50000},
            ])


class TestSecurityReturn:

    def test_returns_close_oldest_holdings_first(self, db_session, b2c_customer):
        _deposit(b2c_customer, price=1002, on_date=date(2024, 1, 12))
        _deposit(b2c_customer, price=1001, on_date=date(2024, 1, 10))

        first = _return(b2c_customer)
        assert first.transaction.refund_cents == 1001 - 250
        assert first.transaction.actual_profit_cents == 250

        second = _return(b2c_customer)
        assert second.transaction.refund_cents == 1002 - 251

        closed = db_session.query(CylinderHolding).order_by(CylinderHolding.closed_by_transaction_id).all()
        assert [h.security_amount_cents for h in closed] == [1001, 1002]
        assert [h.return_deduction_cents for h in closed] == [250, 251]
        assert security_service.get_b2c_customer(b2c_customer.id).security_held_cents == 0

    def test_refund_reduces_final_amount(self, db_session, b2c_customer):
        _deposit(b2c_customer)
        posted = _return(b2c_customer)

        tx = posted.transaction
        assert tx.refund_cents == 2_250_000
        assert tx.final_amount_cents == -2_250_000
        assert tx.actual_profit_cents == 750_000
        assert tx.security_items[0].is_return is True
        assert tx.security_items[0].total_price_cents == 2_250_000

    def test_return_more_than_held_writes_nothing(self, db_session, b2c_customer):
        _deposit(b2c_customer)

        with pytest.raises(InsufficientHoldingError):
            _return(b2c_customer, quantity=2)

        assert db_session.query(B2CTransaction).count() == 1
        assert len(security_service.list_open_holdings(b2c_customer.id)) == 1
        assert db_session.get(B2CCustomer, b2c_customer.id).security_held_cents == 3_000_000

    def test_return_matches_cylinder_type(self, db_session, b2c_customer):
        _deposit(b2c_customer, cylinder_type="STANDARD_15KG")
        with pytest.raises(InsufficientHoldingError):
            _return(b2c_customer, cylinder_type="DOMESTIC_11_8KG")

    def test_two_return_lines_do_not_claim_same_holding(self, db_session, b2c_customer):
        _deposit(b2c_customer)
        with pytest.raises(InsufficientHoldingError):
            security_service.post_b2c_transaction(b2c_customer.id, security_items=[
                {"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1, "is_return": True},
                {"cylinder_type": "DOMESTIC_11_8KG", "quantity": 1, "is_return": True},
            ])


class TestB2CVoid:

    def test_void_return_reopens_holdings(self, db_session, b2c_customer):
        _deposit(b2c_customer)
        returned = _return(b2c_customer)

        voided = security_service.void_b2c_transaction(returned.transaction.id, reason="Wrong customer")

        assert voided.customer["security_held_cents"] == 3_000_000
        assert voided.customer["total_profit_cents"] == 0
        holding = security_service.list_open_holdings(b2c_customer.id)[0]
        assert holding.return_deduction_cents is None
        assert holding.closed_by_transaction_id is None

    def test_void_deposit_voids_its_holdings(self, db_session, b2c_customer):
        posted = _deposit(b2c_customer, quantity=2)
        security_service.void_b2c_transaction(posted.transaction.id)

        assert security_service.list_open_holdings(b2c_customer.id) == []
        assert db_session.get(B2CCustomer, b2c_customer.id).security_held_cents == 0

    def test_void_refused_when_holding_returned_later(self, db_session, b2c_customer):
        deposit = _deposit(b2c_customer)
        _return(b2c_customer)

        with pytest.raises(ValidationError):
            security_service.void_b2c_transaction(deposit.transaction.id)
        assert db_session.get(B2CTransaction, deposit.transaction.id).voided is False

    def test_void_twice(self, db_session, b2c_customer):
        posted = _deposit(b2c_customer)
        security_service.void_b2c_transaction(posted.transaction.id)
        with pytest.raises(AlreadyVoidedError):
            security_service.void_b2c_transaction(posted.transaction.id)


class TestTrackedDeposits:

    def test_deposit_and_return_move_cylinders(self, db_session, tracking, b2c_customer, store, make_cylinders):
        make_cylinders("DOMESTIC_11_8KG", count=1)

        deposit = _deposit(b2c_customer)
        assert deposit.cylinders_moved == 1
        cylinder = cylinder_service.get_cylinder("CYL-DOM-0001")
        assert cylinder.current_status == "WITH_CUSTOMER"
        assert cylinder.b2c_customer_id == b2c_customer.id

        returned = _return(b2c_customer, return_store_id=store.id)
        assert returned.cylinders_moved == 1
        cylinder = cylinder_service.get_cylinder("CYL-DOM-0001")
        assert cylinder.current_status == "EMPTY"
        assert cylinder.location() == {"store_id": store.id}

        security_service.void_b2c_transaction(returned.transaction.id)
        assert cylinder_service.get_cylinder("CYL-DOM-0001").current_status == "WITH_CUSTOMER"

    def test_deposit_without_stock_writes_nothing(self, db_session, tracking, b2c_customer, store):
        with pytest.raises(ValidationError):
            _deposit(b2c_customer)
        assert db_session.query(CylinderHolding).count() == 0
        assert db_session.query(B2CTransaction).count() == 0
