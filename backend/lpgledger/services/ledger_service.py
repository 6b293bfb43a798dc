# Overview: Service-layer operations for the B2B ledger; posting, void and customer aggregates.

"""
Ledger Engine

The only writer of Customer.ledger_balance_cents and the due counters.

POSTING (one unit of work):
1. Validate the request into a closed transaction kind (ledger_rules)
2. Lock the customer row; refuse a date before the latest standing posting
   and a bill number already used
3. Persist header + items with the deltas actually applied
4. Apply balance and due deltas to the customer (due counters floor at zero)
5. Move tracked cylinders (SALE allocates FULL stock, returns bring them back)
6. Commit - or roll back everything

VOID:
Applies the exact stored inverse of a posting and restores the cylinders it
moved. The transaction row stays in the log, flagged voided.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import B2BTransaction, B2BTransactionItem, Customer, Store, Vehicle
from ..cylinder_types import DUE_COUNTERS
from ..enums import CylinderEventType
from ..validation import ValidationError, NotFoundError, ConflictError
from lpgledger.time_utils import utcnow
from .concurrency import atomic, lock_for_update
from .bill_sequence_service import DuplicateBillNumberError, next_bill_number, validate_bill_number
from .cylinder_service import CylinderEvent, allocate_full_cylinders, collect_customer_cylinders, restore_transaction_cylinders
from .ledger_rules import (
    BuybackKind,
    BuybackPolicy,
    ReturnEmptyKind,
    SaleKind,
    apply_due_floor,
    build_kind,
    due_deltas,
    ledger_delta,
)


class AlreadyVoidedError(ConflictError):
    """The transaction was voided before."""


@dataclass
class PostedTransaction:
    transaction: B2BTransaction
    customer: dict
    due_floor_applied: bool = False
    cylinders_moved: int = 0

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "customer": self.customer,
            "due_floor_applied": self.due_floor_applied,
            "cylinders_moved": self.cylinders_moved,
        }


def buyback_policy() -> BuybackPolicy:
    """Buyback rates from app config (decimal strings)."""
    config = current_app.config
    return BuybackPolicy(
        partial_rate=Decimal(str(config.get("BUYBACK_RATE_PARTIAL", "0.60"))),
        full_rate=Decimal(str(config.get("BUYBACK_RATE_FULL", "1.00"))),
    )


def _tracks_cylinders() -> bool:
    return bool(current_app.config.get("TRACK_CYLINDER_INVENTORY", True))


def _lock_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _items_to_rows(kind) -> list[B2BTransactionItem]:
    rows = []
    if isinstance(kind, BuybackKind):
        for line_number, line in enumerate(kind.lines, start=1):
            item = line.item
            rows.append(B2BTransactionItem(
                line_number=line_number,
                product_name=item.product_name,
                quantity=item.quantity,
                price_per_item_cents=line.per_item_cents,
                total_price_cents=line.total_cents,
                cylinder_type=item.cylinder_type,
                returned_condition=item.returned_condition,
                remaining_kg=line.remaining_kg,
                original_sold_price_cents=item.original_sold_price_cents,
                buyback_rate=line.rate,
                buyback_price_per_item_cents=line.per_item_cents,
                buyback_total_cents=line.total_cents,
            ))
        return rows

    for line_number, item in enumerate(kind.items, start=1):
        rows.append(B2BTransactionItem(
            line_number=line_number,
            product_name=item.product_name,
            quantity=item.quantity,
            price_per_item_cents=item.price_per_item_cents,
            total_price_cents=item.total_price_cents,
            cylinder_type=item.cylinder_type,
            returned_condition=item.returned_condition,
        ))
    return rows


def _move_cylinders(
    kind,
    customer: Customer,
    tx: B2BTransaction,
    *,
    return_store_id: int | None,
    return_vehicle_id: int | None,
    user_id: int | None,
) -> int:
    moved = 0
    if isinstance(kind, SaleKind):
        for item in kind.items:
            if item.cylinder_type is None:
                continue
            moved += len(allocate_full_cylinders(
                item.cylinder_type,
                item.quantity,
                customer_id=customer.id,
                b2b_transaction_id=tx.id,
                user_id=user_id,
            ))
        return moved

    if isinstance(kind, ReturnEmptyKind):
        for item in kind.items:
            event = CylinderEvent(
                event_type=CylinderEventType.RETURN_EMPTY.value,
                store_id=return_store_id,
                vehicle_id=return_vehicle_id,
            )
            moved += len(collect_customer_cylinders(
                item.cylinder_type,
                item.quantity,
                event,
                customer_id=customer.id,
                b2b_transaction_id=tx.id,
                user_id=user_id,
            ))
        return moved

    if isinstance(kind, BuybackKind):
        for line in kind.lines:
            event = CylinderEvent(
                event_type=CylinderEventType.BUYBACK.value,
                store_id=return_store_id,
                vehicle_id=return_vehicle_id,
                condition=line.item.returned_condition,
                remaining_kg=line.remaining_kg,
            )
            moved += len(collect_customer_cylinders(
                line.item.cylinder_type,
                line.item.quantity,
                event,
                customer_id=customer.id,
                b2b_transaction_id=tx.id,
                user_id=user_id,
            ))
    return moved


def post_transaction(
    customer_id: int,
    transaction_type: str,
    line_items: Iterable[Any] = (),
    *,
    payment_amount_cents: int | None = None,
    bill_number: str | None = None,
    on_date: date | None = None,
    at_time: time | None = None,
    payment_reference: str | None = None,
    notes: str | None = None,
    return_store_id: int | None = None,
    return_vehicle_id: int | None = None,
    user_id: int | None = None,
) -> PostedTransaction:
    """
    Post one B2B transaction and update the customer's aggregates.

    Args:
        customer_id: B2B customer
        transaction_type: SALE, PAYMENT, BUYBACK, RETURN_EMPTY, ADJUSTMENT or CREDIT_NOTE
        line_items: LineItem objects or request dicts
        payment_amount_cents: PAYMENT amount (or explicit ADJUSTMENT amount)
        bill_number: PREFIX-YYYYMMDD-NNNNNN; allocated when omitted
        on_date / at_time: business date and time (default now, UTC)
        return_store_id / return_vehicle_id: where returned cylinders go

    Returns:
        PostedTransaction with the new row and the customer snapshot

    Raises:
        ValidationError: invalid request (including DuplicateBillNumberError,
            or dated before the customer's latest standing transaction)
        NotFoundError: unknown customer, store or vehicle
        ConcurrencyConflictError: concurrent update; nothing was written
    """
    kind = build_kind(
        transaction_type,
        line_items,
        payment_amount_cents=payment_amount_cents,
        policy=buyback_policy(),
    )
    if bill_number:
        bill_number = validate_bill_number(bill_number)
    if return_store_id is not None and return_vehicle_id is not None:
        raise ValidationError("Provide only one of return_store_id or return_vehicle_id")

    now = utcnow()
    posting_date = on_date or now.date()
    posting_time = at_time or now.time().replace(microsecond=0)
    track = _tracks_cylinders()

    def _op():
        customer = _lock_customer(customer_id)
        if not customer.is_active:
            raise ValidationError(f"Customer {customer_id} is inactive")

        # Due floors are applied in posting order, which must match replay order
        latest = (
            db.session.query(B2BTransaction.date, B2BTransaction.time, B2BTransaction.bill_number)
            .filter_by(customer_id=customer.id, voided=False)
            .order_by(B2BTransaction.date.desc(), B2BTransaction.time.desc(), B2BTransaction.id.desc())
            .first()
        )
        if latest is not None and (posting_date, posting_time) < (latest.date, latest.time):
            raise ValidationError(
                f"Transaction dated {posting_date.isoformat()} {posting_time.isoformat()} is earlier than "
                f"{latest.bill_number} ({latest.date.isoformat()} {latest.time.isoformat()}); "
                "void the later transactions first"
            )

        if return_store_id is not None and db.session.get(Store, return_store_id) is None:
            raise NotFoundError(f"Store {return_store_id} not found")
        if return_vehicle_id is not None and db.session.get(Vehicle, return_vehicle_id) is None:
            raise NotFoundError(f"Vehicle {return_vehicle_id} not found")

        number = bill_number
        if number:
            if db.session.query(B2BTransaction.id).filter_by(bill_number=number).first():
                raise DuplicateBillNumberError(f"Bill number {number} already posted")
        else:
            number = next_bill_number(
                prefix=current_app.config.get("BILL_PREFIX_B2B", "BILL"),
                on_date=posting_date,
            )

        balance_delta = ledger_delta(kind.transaction_type, kind.total_cents)
        current = {counter: getattr(customer, counter) for counter in DUE_COUNTERS}
        applied, floored = apply_due_floor(current, due_deltas(kind.transaction_type, kind.items))
        if floored:
            current_app.logger.warning(
                "Due counter floor engaged for customer %s on %s %s: requested %s, applied %s",
                customer.id,
                kind.transaction_type,
                number,
                due_deltas(kind.transaction_type, kind.items),
                applied,
            )

        tx = B2BTransaction(
            customer_id=customer.id,
            transaction_type=kind.transaction_type,
            bill_number=number,
            date=posting_date,
            time=posting_time,
            total_amount_cents=kind.total_cents,
            ledger_delta_cents=balance_delta,
            domestic_due_delta=applied["domestic_due"],
            standard_due_delta=applied["standard_due"],
            commercial_due_delta=applied["commercial_due"],
            due_floor_applied=floored,
            payment_reference=payment_reference,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(tx)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateBillNumberError(f"Bill number {number} already posted") from exc

        for row in _items_to_rows(kind):
            row.transaction_id = tx.id
            db.session.add(row)

        customer.ledger_balance_cents += balance_delta
        for counter in DUE_COUNTERS:
            setattr(customer, counter, getattr(customer, counter) + applied[counter])
        customer.last_transaction_at = utcnow()

        moved = 0
        if track:
            moved = _move_cylinders(
                kind,
                customer,
                tx,
                return_store_id=return_store_id,
                return_vehicle_id=return_vehicle_id,
                user_id=user_id,
            )

        db.session.flush()
        return PostedTransaction(
            transaction=tx,
            customer=customer.snapshot(),
            due_floor_applied=floored,
            cylinders_moved=moved,
        )

    return atomic(_op)


def void_transaction(
    transaction_id: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
) -> PostedTransaction:
    """
    Void a posted transaction by applying the exact inverse of its stored deltas.

    Raises:
        NotFoundError: unknown transaction
        AlreadyVoidedError: voided before
        ValidationError: a cylinder it moved has moved again since
    """
    def _op():
        tx = lock_for_update(db.session.query(B2BTransaction).filter_by(id=transaction_id)).first()
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if tx.voided:
            raise AlreadyVoidedError(f"Transaction {tx.bill_number} is already voided")

        customer = _lock_customer(tx.customer_id)

        floored = False
        for counter, delta in tx.due_deltas().items():
            value = getattr(customer, counter) - delta
            if value < 0:
                floored = True
                value = 0
            setattr(customer, counter, value)
        if floored:
            current_app.logger.warning(
                "Due counter floor engaged voiding %s for customer %s",
                tx.bill_number,
                customer.id,
            )

        customer.ledger_balance_cents -= tx.ledger_delta_cents
        customer.last_transaction_at = utcnow()

        moved = restore_transaction_cylinders(b2b_transaction_id=tx.id, user_id=user_id)

        tx.voided = True
        tx.voided_at = utcnow()
        tx.voided_by_user_id = user_id
        tx.void_reason = reason

        db.session.flush()
        return PostedTransaction(
            transaction=tx,
            customer=customer.snapshot(),
            due_floor_applied=floored,
            cylinders_moved=moved,
        )

    return atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def get_customer_snapshot(customer_id: int) -> dict:
    return get_customer(customer_id).snapshot()


def get_transaction(transaction_id: int) -> B2BTransaction:
    tx = db.session.get(B2BTransaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return tx


def list_customer_transactions(customer_id: int, include_voided: bool = True) -> list[B2BTransaction]:
    """Customer's transactions in chronological order (date, time, id)."""
    get_customer(customer_id)
    query = db.session.query(B2BTransaction).filter_by(customer_id=customer_id)
    if not include_voided:
        query = query.filter(B2BTransaction.voided.is_(False))
    return query.order_by(
        B2BTransaction.date.asc(),
        B2BTransaction.time.asc(),
        B2BTransaction.id.asc(),
    ).all()


def create_customer(
    name: str,
    *,
    margin_category_id: int | None = None,
    phone: str | None = None,
    contact_person: str | None = None,
    address: str | None = None,
    credit_limit_cents: int = 0,
    payment_terms_days: int = 30,
) -> Customer:
    """Open a B2B account with a zero balance and no dues."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if credit_limit_cents < 0:
        raise ValidationError("credit_limit_cents must be >= 0")

    def _op():
        customer = Customer(
            name=name,
            margin_category_id=margin_category_id,
            phone=phone,
            contact_person=contact_person,
            address=address,
            credit_limit_cents=credit_limit_cents,
            payment_terms_days=payment_terms_days,
        )
        db.session.add(customer)
        db.session.flush()
        return customer

    return atomic(_op)
