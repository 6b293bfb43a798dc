# Overview: Pytest coverage for B2B posting, void and cylinder side effects.

"""
Ledger Engine Tests

Covers:
1. Balance and due counters after each transaction kind (worked example)
2. Void applies the exact stored inverse
3. Bill numbers: allocation, format and duplicates
4. Due counter floor
5. Tracked cylinders move with postings and come back on void
6. A failed posting writes nothing
"""

import logging
from datetime import date, time
from decimal import Decimal

import pytest

from lpgledger.models import B2BTransaction, B2BTransactionItem, BillSequence, Customer
from lpgledger.validation import ValidationError, NotFoundError
from lpgledger.services import cylinder_service, ledger_service, reconciliation_service
from lpgledger.services.bill_sequence_service import DuplicateBillNumberError
from lpgledger.services.ledger_service import AlreadyVoidedError


DAY = date(2024, 1, 15)


def _sale(customer, quantity=2, price=384100, cylinder_type="STANDARD_15KG", **kwargs):
    kwargs.setdefault("on_date", DAY)
    return ledger_service.post_transaction(
        customer.id,
        "SALE",
        [{"cylinder_type": cylinder_type, "quantity": quantity, "price_per_item_cents": price}],
        **kwargs,
    )


def _return_empty(customer, quantity, cylinder_type="STANDARD_15KG", **kwargs):
    kwargs.setdefault("on_date", DAY)
    return ledger_service.post_transaction(
        customer.id,
        "RETURN_EMPTY",
        [{"cylinder_type": cylinder_type, "quantity": quantity}],
        **kwargs,
    )


class TestPosting:

    def test_worked_example(self, db_session, customer):
        """Sale, part payment, partial buyback."""
        sale = _sale(customer, at_time=time(9, 0))
        assert sale.customer["ledger_balance_cents"] == 768200
        assert sale.customer["standard_due"] == 2

        payment = ledger_service.post_transaction(
            customer.id, "PAYMENT", payment_amount_cents=300000, on_date=DAY, at_time=time(10, 0),
            payment_reference="CHQ-1182",
        )
        assert payment.customer["ledger_balance_cents"] == 468200
        assert payment.transaction.ledger_delta_cents == -300000

        buyback = ledger_service.post_transaction(
            customer.id,
            "BUYBACK",
            [{
                "cylinder_type": "STANDARD_15KG",
                "quantity": 1,
                "returned_condition": "PARTIAL",
                "remaining_kg": "7.5",
                "original_sold_price_cents": 384100,
            }],
            on_date=DAY,
            at_time=time(11, 0),
        )
        assert buyback.customer["ledger_balance_cents"] == 352970
        assert buyback.customer["standard_due"] == 1

        item = buyback.transaction.items[0]
        assert item.buyback_price_per_item_cents == 115230
        assert item.buyback_rate == Decimal("0.6")
        assert item.remaining_kg == Decimal("7.5")

        stored = db_session.get(Customer, customer.id)
        assert stored.ledger_balance_cents == 352970
        assert stored.last_transaction_at is not None

    def test_items_are_persisted_with_line_numbers(self, db_session, customer):
        posted = ledger_service.post_transaction(
            customer.id,
            "SALE",
            [
                {"cylinder_type": "STANDARD_15KG", "quantity": 2, "price_per_item_cents": 384100},
                {"cylinder_type": "COMMERCIAL_45_4KG", "quantity": 1, "price_per_item_cents": 1162500},
            ],
            on_date=DAY,
        )
        items = db_session.query(B2BTransactionItem).filter_by(transaction_id=posted.transaction.id).all()
        assert sorted(i.line_number for i in items) == [1, 2]
        assert posted.transaction.total_amount_cents == 1930700
        assert posted.customer["commercial_due"] == 1

    def test_adjustment_and_credit_note_reduce_balance(self, db_session, customer):
        _sale(customer, quantity=1)
        ledger_service.post_transaction(customer.id, "ADJUSTMENT", payment_amount_cents=4100, on_date=DAY)
        posted = ledger_service.post_transaction(
            customer.id, "CREDIT_NOTE",
            [{"product_name": "Late delivery credit", "quantity": 1, "price_per_item_cents": 10000}],
            on_date=DAY,
        )
        assert posted.customer["ledger_balance_cents"] == 384100 - 4100 - 10000
        assert posted.customer["standard_due"] == 1

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.post_transaction(999, "PAYMENT", payment_amount_cents=100)

    def test_inactive_customer(self, db_session, customer):
        customer.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            ledger_service.post_transaction(customer.id, "PAYMENT", payment_amount_cents=100)

    def test_rejects_two_return_locations(self, db_session, customer, store, vehicle):
        with pytest.raises(ValidationError):
            _return_empty(customer, 1, return_store_id=store.id, return_vehicle_id=vehicle.id)

    def test_unknown_return_store(self, db_session, customer):
        with pytest.raises(NotFoundError):
            _return_empty(customer, 1, return_store_id=999)
        assert db_session.query(B2BTransaction).count() == 0


class TestBillNumbers:

    def test_allocated_per_day(self, db_session, customer):
        first = _sale(customer, quantity=1)
        second = _sale(customer, quantity=1)
        other_day = _sale(customer, quantity=1, on_date=date(2024, 1, 16))

        assert first.transaction.bill_number == "BILL-20240115-000001"
        assert second.transaction.bill_number == "BILL-20240115-000002"
        assert other_day.transaction.bill_number == "BILL-20240116-000001"

    def test_duplicate_bill_number_rejected(self, db_session, customer):
        _sale(customer, quantity=1, bill_number="bill-20240115-000009")
        with pytest.raises(DuplicateBillNumberError):
            _sale(customer, quantity=1, bill_number="BILL-20240115-000009")

        assert db_session.query(B2BTransaction).count() == 1
        assert db_session.get(Customer, customer.id).ledger_balance_cents == 384100

    def test_allocation_skips_client_supplied_number(self, db_session, customer):
        _sale(customer, quantity=1, bill_number="BILL-20240115-000001")

        first = _sale(customer, quantity=1)
        second = _sale(customer, quantity=1)

        assert first.transaction.bill_number == "BILL-20240115-000002"
        assert second.transaction.bill_number == "BILL-20240115-000003"
        assert db_session.get(Customer, customer.id).ledger_balance_cents == 3 * 384100

    @pytest.mark.parametrize("bill_number", ["12345", "BILL-2024-0001", "BILL-20241301-000001"])
    def test_malformed_bill_number(self, db_session, customer, bill_number):
        with pytest.raises(ValidationError):
            _sale(customer, quantity=1, bill_number=bill_number)
        assert db_session.query(B2BTransaction).count() == 0


class TestDueFloor:

    def test_return_beyond_due_is_floored(self, db_session, customer, caplog):
        _sale(customer, quantity=2)
        with caplog.at_level(logging.WARNING):
            posted = _return_empty(customer, 5)

        assert posted.due_floor_applied is True
        assert posted.customer["standard_due"] == 0
        assert posted.transaction.standard_due_delta == -2
        assert "Due counter floor engaged" in caplog.text

    def test_floor_is_per_counter(self, db_session, customer):
        _sale(customer, quantity=3, cylinder_type="DOMESTIC_11_8KG", price=302100)
        posted = _return_empty(customer, 1, cylinder_type="STANDARD_15KG")
        assert posted.customer["domestic_due"] == 3
        assert posted.customer["standard_due"] == 0


class TestPostingOrder:

    def test_backdated_return_is_refused(self, db_session, customer):
        _sale(customer, quantity=1, on_date=DAY)

        with pytest.raises(ValidationError, match="earlier than"):
            _return_empty(customer, 1, on_date=date(2024, 1, 14))

        assert db_session.query(B2BTransaction).count() == 1
        report = reconciliation_service.reconcile_customer(customer.id)
        assert report.is_balanced
        assert report.stored_dues["standard_due"] == 1

    def test_same_moment_is_allowed(self, db_session, customer):
        _sale(customer, quantity=2, at_time=time(9, 0))
        posted = _return_empty(customer, 1, at_time=time(9, 0))
        assert posted.customer["standard_due"] == 1

    def test_voided_later_posting_does_not_block(self, db_session, customer):
        later = _sale(customer, quantity=1, on_date=date(2024, 1, 20))
        ledger_service.void_transaction(later.transaction.id)

        posted = _sale(customer, quantity=1, on_date=DAY)

        assert posted.customer["standard_due"] == 1
        assert reconciliation_service.reconcile_customer(customer.id).is_balanced


class TestVoid:

    def test_void_restores_exact_aggregates(self, db_session, customer):
        _sale(customer, quantity=2)
        payment = ledger_service.post_transaction(customer.id, "PAYMENT", payment_amount_cents=300000, on_date=DAY)

        voided = ledger_service.void_transaction(payment.transaction.id, user_id=3, reason="Cheque bounced")

        assert voided.customer["ledger_balance_cents"] == 768200
        tx = db_session.get(B2BTransaction, payment.transaction.id)
        assert tx.voided is True
        assert tx.voided_by_user_id == 3
        assert tx.void_reason == "Cheque bounced"
        assert tx.voided_at is not None

    def test_void_uses_applied_not_requested_dues(self, db_session, customer):
        """A floored return gives back only what it actually took."""
        _sale(customer, quantity=2)
        returned = _return_empty(customer, 5)

        voided = ledger_service.void_transaction(returned.transaction.id)

        assert voided.customer["standard_due"] == 2

    def test_void_twice(self, db_session, customer):
        posted = _sale(customer, quantity=1)
        ledger_service.void_transaction(posted.transaction.id)
        with pytest.raises(AlreadyVoidedError):
            ledger_service.void_transaction(posted.transaction.id)
        assert db_session.get(Customer, customer.id).ledger_balance_cents == 0

    def test_void_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.void_transaction(404)

    def test_voided_transactions_stay_in_log(self, db_session, customer):
        posted = _sale(customer, quantity=1)
        ledger_service.void_transaction(posted.transaction.id)

        assert len(ledger_service.list_customer_transactions(customer.id)) == 1
        assert ledger_service.list_customer_transactions(customer.id, include_voided=False) == []

    def test_log_replays_to_stored_aggregates(self, db_session, customer):
        _sale(customer, quantity=3, at_time=time(8, 0))
        ledger_service.post_transaction(customer.id, "PAYMENT", payment_amount_cents=500000, on_date=DAY, at_time=time(9, 0))
        _return_empty(customer, 4, at_time=time(10, 0))
        bad = _sale(customer, quantity=1, at_time=time(11, 0))
        ledger_service.void_transaction(bad.transaction.id)
        ledger_service.post_transaction(customer.id, "ADJUSTMENT", payment_amount_cents=2500, on_date=DAY, at_time=time(12, 0))

        report = reconciliation_service.reconcile_customer(customer.id)
        assert report.is_balanced
        assert report.calculated.balance_cents == 3 * 384100 - 500000 - 2500
        assert report.calculated.floor_events == 1


class TestTrackedCylinders:

    def test_sale_hands_over_oldest_full_stock(self, db_session, tracking, customer, make_cylinders):
        make_cylinders("STANDARD_15KG", count=3)

        posted = _sale(customer, quantity=2)

        assert posted.cylinders_moved == 2
        with_customer = cylinder_service.list_cylinders(status="WITH_CUSTOMER")
        assert [c.code for c in with_customer] == ["CYL-STA-0001", "CYL-STA-0002"]
        assert all(c.customer_id == customer.id and c.store_id is None for c in with_customer)

    def test_sale_without_stock_writes_nothing(self, db_session, tracking, customer, store):
        with pytest.raises(ValidationError):
            _sale(customer, quantity=1)

        assert db_session.query(B2BTransaction).count() == 0
        assert db_session.query(BillSequence).count() == 0
        stored = db_session.get(Customer, customer.id)
        assert stored.ledger_balance_cents == 0
        assert stored.standard_due == 0

    def test_return_needs_a_destination(self, db_session, tracking, customer, make_cylinders):
        make_cylinders("STANDARD_15KG", count=1)
        _sale(customer, quantity=1)

        with pytest.raises(ValidationError):
            _return_empty(customer, 1)
        assert db_session.get(Customer, customer.id).standard_due == 1

    def test_partial_buyback_keeps_remaining_fill(self, db_session, tracking, customer, store, make_cylinders):
        make_cylinders("STANDARD_15KG", count=1)
        _sale(customer, quantity=1)

        ledger_service.post_transaction(
            customer.id,
            "BUYBACK",
            [{
                "cylinder_type": "STANDARD_15KG",
                "quantity": 1,
                "returned_condition": "PARTIAL",
                "remaining_kg": "7.5",
                "original_sold_price_cents": 384100,
            }],
            on_date=DAY,
            return_store_id=store.id,
        )

        cylinder = cylinder_service.get_cylinder("CYL-STA-0001")
        assert cylinder.current_status == "EMPTY"
        assert cylinder.remaining_kg == Decimal("7.5")
        assert cylinder.location() == {"store_id": store.id}

    def test_void_puts_cylinders_back(self, db_session, tracking, customer, store, make_cylinders):
        make_cylinders("STANDARD_15KG", count=2)
        sale = _sale(customer, quantity=2)
        returned = _return_empty(customer, 1, return_store_id=store.id)
        assert cylinder_service.get_cylinder("CYL-STA-0001").current_status == "EMPTY"

        ledger_service.void_transaction(returned.transaction.id)
        cylinder = cylinder_service.get_cylinder("CYL-STA-0001")
        assert cylinder.current_status == "WITH_CUSTOMER"
        assert cylinder.customer_id == customer.id

        voided = ledger_service.void_transaction(sale.transaction.id)
        assert voided.cylinders_moved == 2
        for code in ("CYL-STA-0001", "CYL-STA-0002"):
            cylinder = cylinder_service.get_cylinder(code)
            assert cylinder.current_status == "FULL"
            assert cylinder.location() == {"store_id": store.id}

        movements = cylinder_service.list_movements("CYL-STA-0001")
        assert [m.event_type for m in movements] == ["REGISTER", "SALE", "RETURN_EMPTY", "RETURN_EMPTY", "SALE"]
        assert [m.is_reversal for m in movements] == [False, False, False, True, True]

    def test_void_refused_while_later_return_stands(self, db_session, tracking, customer, store, make_cylinders):
        make_cylinders("STANDARD_15KG", count=1)
        sale = _sale(customer, quantity=1)
        _return_empty(customer, 1, return_store_id=store.id)

        with pytest.raises(ValidationError):
            ledger_service.void_transaction(sale.transaction.id)
        assert db_session.get(B2BTransaction, sale.transaction.id).voided is False

    def test_void_refused_after_cylinder_moved(self, db_session, tracking, customer, store, make_cylinders):
        make_cylinders("STANDARD_15KG", count=1)
        sale = _sale(customer, quantity=1)
        cylinder_service.apply_cylinder_event("CYL-STA-0001", "SEND_TO_MAINTENANCE", {"store_id": store.id})

        with pytest.raises(ValidationError):
            ledger_service.void_transaction(sale.transaction.id)

        stored = db_session.get(Customer, customer.id)
        assert stored.ledger_balance_cents == 384100
        assert stored.standard_due == 1
        assert cylinder_service.get_cylinder("CYL-STA-0001").current_status == "MAINTENANCE"
