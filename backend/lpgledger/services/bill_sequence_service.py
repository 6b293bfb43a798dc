# Overview: Service-layer operations for bill numbers; allocation and format checks.

from __future__ import annotations

import re
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import B2BTransaction, B2CTransaction, BillSequence
from ..validation import ValidationError
from .concurrency import ConcurrencyConflictError, run_with_retry


BILL_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{1,16}-\d{8}-\d{6}$")


class DuplicateBillNumberError(ValidationError):
    """A transaction with this bill number was already posted."""


def format_bill_number(prefix: str, on_date: date, number: int) -> str:
    return f"{prefix}-{on_date:%Y%m%d}-{number:06d}"


def validate_bill_number(bill_number: str) -> str:
    """Normalize and check PREFIX-YYYYMMDD-NNNNNN."""
    if not isinstance(bill_number, str):
        raise ValidationError("bill_number must be a string")
    normalized = bill_number.strip().upper()
    if not BILL_NUMBER_PATTERN.match(normalized):
        raise ValidationError(
            f"Invalid bill number '{bill_number}'. Expected PREFIX-YYYYMMDD-NNNNNN"
        )
    try:
        date(int(normalized[-15:-11]), int(normalized[-11:-9]), int(normalized[-9:-7]))
    except ValueError:
        raise ValidationError(f"Invalid date in bill number '{bill_number}'")
    return normalized


def bill_number_taken(bill_number: str) -> bool:
    """True if a B2B or B2C transaction already carries this number."""
    for model in (B2BTransaction, B2CTransaction):
        if db.session.query(model.id).filter_by(bill_number=bill_number).first():
            return True
    return False


def _allocate(prefix: str, on_date: date) -> int:
    stmt = (
        update(BillSequence)
        .where(BillSequence.prefix == prefix, BillSequence.date == on_date)
        .values(next_number=BillSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(BillSequence.next_number)
            .filter_by(prefix=prefix, date=on_date)
            .scalar()
        )
        return current - 1

    seq = BillSequence(prefix=prefix, date=on_date, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created the row first; the caller retries the whole operation
        raise ConcurrencyConflictError(
            f"Bill sequence {prefix}/{on_date.isoformat()} was created concurrently"
        ) from exc
    return 1


def next_bill_number(*, prefix: str, on_date: date) -> str:
    """
    Atomically allocate the next free bill number for a prefix/day.

    Uses an UPDATE ... SET next_number = next_number + 1 on the (prefix, date)
    row so two writers never receive the same number. Numbers a client already
    posted by hand are skipped. The allocation is flushed, not committed: it
    commits or rolls back with the caller's transaction.
    """
    if not prefix:
        raise ValidationError("prefix is required")

    while True:
        bill_number = format_bill_number(prefix, on_date, _allocate(prefix, on_date))
        if not bill_number_taken(bill_number):
            return bill_number


def reserve_bill_number(*, prefix: str, on_date: date) -> str:
    """
    Allocate and commit a bill number ahead of posting.

    Lets a client fetch the number first and retry the posting with it; a
    retried posting with the same number is rejected as a duplicate.
    """
    def _op() -> str:
        bill_number = next_bill_number(prefix=prefix, on_date=on_date)
        db.session.commit()
        return bill_number

    return run_with_retry(_op)
