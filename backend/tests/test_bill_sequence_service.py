# Overview: Pytest coverage for bill number allocation and format checks.

from datetime import date

import pytest

from lpgledger.extensions import db
from lpgledger.models import BillSequence
from lpgledger.validation import ValidationError
from lpgledger.services import ledger_service
from lpgledger.services.bill_sequence_service import (
    bill_number_taken,
    format_bill_number,
    next_bill_number,
    reserve_bill_number,
    validate_bill_number,
)


def test_format_bill_number():
    assert format_bill_number("BILL", date(2024, 1, 15), 42) == "BILL-20240115-000042"


def test_validate_normalizes_case_and_whitespace():
    assert validate_bill_number("  b2c-20240115-000001 ") == "B2C-20240115-000001"


@pytest.mark.parametrize("value", ["", "BILL-20240115-1", "BILL_20240115_000001", "BILL-20240230-000001", 12345])
def test_validate_rejects_malformed(value):
    with pytest.raises(ValidationError):
        validate_bill_number(value)


def test_sequences_are_per_prefix_and_day(db_session):
    day = date(2024, 1, 15)
    assert next_bill_number(prefix="BILL", on_date=day) == "BILL-20240115-000001"
    assert next_bill_number(prefix="BILL", on_date=day) == "BILL-20240115-000002"
    assert next_bill_number(prefix="B2C", on_date=day) == "B2C-20240115-000001"
    assert next_bill_number(prefix="BILL", on_date=date(2024, 1, 16)) == "BILL-20240116-000001"
    db.session.commit()

    assert db_session.query(BillSequence).count() == 3


def test_unreserved_number_is_released_on_rollback(db_session):
    day = date(2024, 1, 15)
    next_bill_number(prefix="BILL", on_date=day)
    db.session.rollback()

    assert next_bill_number(prefix="BILL", on_date=day) == "BILL-20240115-000001"


def test_reserve_commits(db_session):
    day = date(2024, 1, 15)
    assert reserve_bill_number(prefix="BILL", on_date=day) == "BILL-20240115-000001"
    db.session.rollback()
    assert reserve_bill_number(prefix="BILL", on_date=day) == "BILL-20240115-000002"


def test_prefix_required(db_session):
    with pytest.raises(ValidationError):
        next_bill_number(prefix="", on_date=date(2024, 1, 15))


def test_skips_numbers_posted_by_hand(db_session, customer):
    ledger_service.post_transaction(
        customer.id, "PAYMENT", payment_amount_cents=1000,
        bill_number="BILL-20240115-000001", on_date=date(2024, 1, 15),
    )
    ledger_service.post_transaction(
        customer.id, "PAYMENT", payment_amount_cents=1000,
        bill_number="BILL-20240115-000002", on_date=date(2024, 1, 15),
    )

    assert bill_number_taken("BILL-20240115-000002")
    assert next_bill_number(prefix="BILL", on_date=date(2024, 1, 15)) == "BILL-20240115-000003"
