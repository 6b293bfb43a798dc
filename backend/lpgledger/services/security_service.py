# Overview: Service-layer operations for B2C sales; security deposits, FIFO holdings and profit.

"""
B2C Security Deposit Flow

DEPOSIT:
A security item with is_return=False and quantity n opens n holdings (one
row per cylinder) at the deposit price.

RETURN:
A security item with is_return=True and quantity n closes the n oldest open
holdings of that cylinder type (issue_date, then id). Each closed holding
retains 25% of its deposit; the rest is refunded.

PROFIT:
gas margins + accessory margins + (delivery charges - delivery cost)
+ deductions retained on returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    B2CCustomer,
    B2CTransaction,
    B2CTransactionItem,
    B2CSecurityItem,
    CylinderHolding,
    Store,
    Vehicle,
)
from ..cylinder_types import CYLINDER_TYPES, get_cylinder_type
from ..enums import B2CItemKind, CylinderEventType
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    coerce_int,
    enforce_amount_cents,
    enforce_quantity,
)
from lpgledger.time_utils import utcnow
from .concurrency import atomic, lock_for_update
from .bill_sequence_service import DuplicateBillNumberError, next_bill_number, validate_bill_number
from .cylinder_service import CylinderEvent, allocate_full_cylinders, collect_customer_cylinders, restore_transaction_cylinders
from .ledger_service import AlreadyVoidedError


RETURN_DEDUCTION_RATE = Decimal("0.25")


class InsufficientHoldingError(ConflictError):
    """A security return asks for more cylinders than the customer holds."""


@dataclass(frozen=True)
class SaleLine:
    item_kind: str
    product_name: str
    quantity: int
    price_per_item_cents: int
    cost_price_cents: int = 0
    cylinder_type: str | None = None

    @property
    def total_price_cents(self) -> int:
        return self.quantity * self.price_per_item_cents

    @property
    def total_cost_cents(self) -> int:
        return self.quantity * self.cost_price_cents


@dataclass(frozen=True)
class SecurityLine:
    cylinder_type: str
    quantity: int
    price_per_item_cents: int
    is_return: bool = False


@dataclass
class PostedB2CTransaction:
    transaction: B2CTransaction
    customer: dict
    cylinders_moved: int = 0

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "customer": self.customer,
            "cylinders_moved": self.cylinders_moved,
        }


def return_deduction_cents(security_amount_cents: int) -> int:
    """Amount retained when a deposited cylinder comes back."""
    return int((Decimal(security_amount_cents) * RETURN_DEDUCTION_RATE).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _customer_snapshot(customer: B2CCustomer) -> dict:
    return {
        "customer_id": customer.id,
        "total_profit_cents": customer.total_profit_cents,
        "security_held_cents": customer.security_held_cents,
    }


def _sale_lines(items: Iterable[Any], item_kind: str) -> list[SaleLine]:
    lines = []
    for index, item in enumerate(items or (), start=1):
        label = f"{item_kind.lower()} line {index}"
        if isinstance(item, SaleLine):
            line = item
        elif isinstance(item, dict):
            cylinder_type = item.get("cylinder_type") or None
            product_name = item.get("product_name") or (
                CYLINDER_TYPES[cylinder_type].label if cylinder_type in CYLINDER_TYPES else None
            )
            if not product_name:
                raise ValidationError(f"{label}: product_name is required")
            line = SaleLine(
                item_kind=item_kind,
                product_name=product_name,
                quantity=coerce_int(f"{label} quantity", item.get("quantity")),
                price_per_item_cents=coerce_int(f"{label} price_per_item_cents", item.get("price_per_item_cents")),
                cost_price_cents=coerce_int(f"{label} cost_price_cents", item.get("cost_price_cents") or 0),
                cylinder_type=cylinder_type,
            )
        else:
            raise ValidationError(f"{label} must be an object")

        enforce_quantity(f"{label} quantity", line.quantity)
        enforce_amount_cents(f"{label} price_per_item_cents", line.price_per_item_cents)
        enforce_amount_cents(f"{label} cost_price_cents", line.cost_price_cents)
        if line.cylinder_type is not None:
            get_cylinder_type(line.cylinder_type)
        lines.append(line)
    return lines


def _security_lines(items: Iterable[Any]) -> list[SecurityLine]:
    lines = []
    for index, item in enumerate(items or (), start=1):
        label = f"security line {index}"
        if isinstance(item, SecurityLine):
            line = item
        elif isinstance(item, dict):
            spec = get_cylinder_type(item.get("cylinder_type"))
            price = item.get("price_per_item_cents")
            line = SecurityLine(
                cylinder_type=spec.code,
                quantity=coerce_int(f"{label} quantity", item.get("quantity")),
                price_per_item_cents=(
                    spec.security_price_cents if price in (None, "")
                    else coerce_int(f"{label} price_per_item_cents", price)
                ),
                is_return=bool(item.get("is_return", False)),
            )
        else:
            raise ValidationError(f"{label} must be an object")

        get_cylinder_type(line.cylinder_type)
        enforce_quantity(f"{label} quantity", line.quantity)
        enforce_amount_cents(f"{label} price_per_item_cents", line.price_per_item_cents)
        lines.append(line)
    return lines


def _open_holdings_query(customer_id: int, cylinder_type: str | None = None):
    query = db.session.query(CylinderHolding).filter(
        CylinderHolding.customer_id == customer_id,
        CylinderHolding.is_returned.is_(False),
        CylinderHolding.is_voided.is_(False),
    )
    if cylinder_type:
        query = query.filter(CylinderHolding.cylinder_type == cylinder_type)
    return query.order_by(CylinderHolding.issue_date.asc(), CylinderHolding.id.asc())


def post_b2c_transaction(
    customer_id: int,
    *,
    gas_items: Iterable[Any] = (),
    security_items: Iterable[Any] = (),
    accessory_items: Iterable[Any] = (),
    delivery_charges_cents: int = 0,
    delivery_cost_cents: int = 0,
    payment_method: str = "CASH",
    bill_number: str | None = None,
    on_date: date | None = None,
    at_time: time | None = None,
    notes: str | None = None,
    return_store_id: int | None = None,
    return_vehicle_id: int | None = None,
    user_id: int | None = None,
) -> PostedB2CTransaction:
    """
    Post a residential sale: gas, accessories, deposits and deposit returns.

    Raises:
        ValidationError: invalid request (including DuplicateBillNumberError)
        InsufficientHoldingError: a return exceeds the open holdings of its type
    """
    gas = _sale_lines(gas_items, B2CItemKind.GAS.value)
    accessories = _sale_lines(accessory_items, B2CItemKind.ACCESSORY.value)
    security = _security_lines(security_items)
    if not (gas or accessories or security):
        raise ValidationError("At least one gas, accessory or security item is required")

    enforce_amount_cents("delivery_charges_cents", delivery_charges_cents)
    enforce_amount_cents("delivery_cost_cents", delivery_cost_cents)
    payment_method = (payment_method or "").strip().upper()
    if not payment_method or len(payment_method) > 16:
        raise ValidationError("payment_method is required (max 16 characters)")
    if bill_number:
        bill_number = validate_bill_number(bill_number)
    if return_store_id is not None and return_vehicle_id is not None:
        raise ValidationError("Provide only one of return_store_id or return_vehicle_id")

    now = utcnow()
    posting_date = on_date or now.date()
    posting_time = at_time or now.time().replace(microsecond=0)
    track = bool(current_app.config.get("TRACK_CYLINDER_INVENTORY", True))

    def _op():
        customer = lock_for_update(db.session.query(B2CCustomer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError(f"B2C customer {customer_id} not found")
        if not customer.is_active:
            raise ValidationError(f"B2C customer {customer_id} is inactive")
        if return_store_id is not None and db.session.get(Store, return_store_id) is None:
            raise NotFoundError(f"Store {return_store_id} not found")
        if return_vehicle_id is not None and db.session.get(Vehicle, return_vehicle_id) is None:
            raise NotFoundError(f"Vehicle {return_vehicle_id} not found")

        # Resolve every return against open holdings before writing anything
        closing: list[tuple[SecurityLine, list[CylinderHolding]]] = []
        claimed: set[int] = set()
        for line in security:
            if not line.is_return:
                continue
            candidates = [
                h for h in lock_for_update(_open_holdings_query(customer.id, line.cylinder_type)).all()
                if h.id not in claimed
            ]
            if len(candidates) < line.quantity:
                raise InsufficientHoldingError(
                    f"Customer holds {len(candidates)} {line.cylinder_type} cylinders, cannot return {line.quantity}"
                )
            holdings = candidates[:line.quantity]
            claimed.update(h.id for h in holdings)
            closing.append((line, holdings))

        number = bill_number
        if number:
            if db.session.query(B2CTransaction.id).filter_by(bill_number=number).first():
                raise DuplicateBillNumberError(f"Bill number {number} already posted")
        else:
            number = next_bill_number(
                prefix=current_app.config.get("BILL_PREFIX_B2C", "B2C"),
                on_date=posting_date,
            )

        sale_lines = gas + accessories
        deposits_cents = sum(line.quantity * line.price_per_item_cents for line in security if not line.is_return)
        total_amount = sum(line.total_price_cents for line in sale_lines) + deposits_cents
        margin = sum(line.total_price_cents - line.total_cost_cents for line in sale_lines)

        tx = B2CTransaction(
            customer_id=customer.id,
            bill_number=number,
            date=posting_date,
            time=posting_time,
            total_amount_cents=total_amount,
            delivery_charges_cents=delivery_charges_cents,
            delivery_cost_cents=delivery_cost_cents,
            payment_method=payment_method,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(tx)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateBillNumberError(f"Bill number {number} already posted") from exc

        for line in sale_lines:
            db.session.add(B2CTransactionItem(
                transaction_id=tx.id,
                item_kind=line.item_kind,
                product_name=line.product_name,
                cylinder_type=line.cylinder_type,
                quantity=line.quantity,
                price_per_item_cents=line.price_per_item_cents,
                total_price_cents=line.total_price_cents,
                cost_price_cents=line.cost_price_cents,
                total_cost_cents=line.total_cost_cents,
                profit_margin_cents=line.total_price_cents - line.total_cost_cents,
            ))

        for line in security:
            if line.is_return:
                continue
            db.session.add(B2CSecurityItem(
                transaction_id=tx.id,
                cylinder_type=line.cylinder_type,
                quantity=line.quantity,
                price_per_item_cents=line.price_per_item_cents,
                total_price_cents=line.quantity * line.price_per_item_cents,
                is_return=False,
                deduction_rate=Decimal("0"),
            ))
            for _ in range(line.quantity):
                db.session.add(CylinderHolding(
                    customer_id=customer.id,
                    cylinder_type=line.cylinder_type,
                    quantity=1,
                    security_amount_cents=line.price_per_item_cents,
                    issue_date=posting_date,
                    opened_by_transaction_id=tx.id,
                ))

        refund = 0
        retained = 0
        released = 0
        for line, holdings in closing:
            line_refund = 0
            for holding in holdings:
                deduction = return_deduction_cents(holding.security_amount_cents)
                holding.is_returned = True
                holding.return_date = posting_date
                holding.return_deduction_cents = deduction
                holding.closed_by_transaction_id = tx.id
                line_refund += holding.security_amount_cents - deduction
                retained += deduction
                released += holding.security_amount_cents
            refund += line_refund
            db.session.add(B2CSecurityItem(
                transaction_id=tx.id,
                cylinder_type=line.cylinder_type,
                quantity=line.quantity,
                # Holdings may carry different deposits; this is the average refund
                price_per_item_cents=int((Decimal(line_refund) / line.quantity).quantize(Decimal(1), rounding=ROUND_HALF_UP)),
                total_price_cents=line_refund,
                is_return=True,
                deduction_rate=RETURN_DEDUCTION_RATE,
            ))

        tx.refund_cents = refund
        tx.final_amount_cents = total_amount + delivery_charges_cents - refund
        tx.total_cost_cents = sum(line.total_cost_cents for line in sale_lines) + delivery_cost_cents
        tx.actual_profit_cents = margin + (delivery_charges_cents - delivery_cost_cents) + retained

        customer.total_profit_cents += tx.actual_profit_cents
        customer.security_held_cents += deposits_cents - released
        customer.last_transaction_at = utcnow()

        moved = 0
        if track:
            for line in security:
                if not line.is_return:
                    moved += len(allocate_full_cylinders(
                        line.cylinder_type,
                        line.quantity,
                        b2c_customer_id=customer.id,
                        b2c_transaction_id=tx.id,
                        user_id=user_id,
                    ))
            for line, _ in closing:
                event = CylinderEvent(
                    event_type=CylinderEventType.RETURN_EMPTY.value,
                    store_id=return_store_id,
                    vehicle_id=return_vehicle_id,
                )
                moved += len(collect_customer_cylinders(
                    line.cylinder_type,
                    line.quantity,
                    event,
                    b2c_customer_id=customer.id,
                    b2c_transaction_id=tx.id,
                    user_id=user_id,
                ))

        db.session.flush()
        return PostedB2CTransaction(transaction=tx, customer=_customer_snapshot(customer), cylinders_moved=moved)

    return atomic(_op)


def void_b2c_transaction(
    transaction_id: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
) -> PostedB2CTransaction:
    """
    Void a B2C transaction: reopen the holdings it closed, void the holdings it
    opened and reverse the customer's profit and held security.

    Raises:
        AlreadyVoidedError: voided before
        ValidationError: a holding it opened was returned by a later transaction
    """
    def _op():
        tx = lock_for_update(db.session.query(B2CTransaction).filter_by(id=transaction_id)).first()
        if tx is None:
            raise NotFoundError(f"B2C transaction {transaction_id} not found")
        if tx.voided:
            raise AlreadyVoidedError(f"B2C transaction {tx.bill_number} is already voided")

        customer = lock_for_update(db.session.query(B2CCustomer).filter_by(id=tx.customer_id)).first()

        opened = lock_for_update(
            db.session.query(CylinderHolding).filter_by(opened_by_transaction_id=tx.id)
        ).all()
        for holding in opened:
            if holding.is_returned:
                raise ValidationError(
                    f"Holding {holding.id} was returned by transaction {holding.closed_by_transaction_id}; "
                    "void that transaction first"
                )

        closed = lock_for_update(
            db.session.query(CylinderHolding).filter_by(closed_by_transaction_id=tx.id)
        ).all()

        held_delta = 0
        for holding in closed:
            holding.is_returned = False
            holding.return_date = None
            holding.return_deduction_cents = None
            holding.closed_by_transaction_id = None
            held_delta += holding.security_amount_cents
        for holding in opened:
            holding.is_voided = True
            held_delta -= holding.security_amount_cents

        customer.security_held_cents += held_delta
        customer.total_profit_cents -= tx.actual_profit_cents
        customer.last_transaction_at = utcnow()

        moved = restore_transaction_cylinders(b2c_transaction_id=tx.id, user_id=user_id)

        tx.voided = True
        tx.voided_at = utcnow()
        tx.voided_by_user_id = user_id
        tx.void_reason = reason

        db.session.flush()
        return PostedB2CTransaction(transaction=tx, customer=_customer_snapshot(customer), cylinders_moved=moved)

    return atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_b2c_customer(customer_id: int) -> B2CCustomer:
    customer = db.session.get(B2CCustomer, customer_id)
    if customer is None:
        raise NotFoundError(f"B2C customer {customer_id} not found")
    return customer


def get_b2c_transaction(transaction_id: int) -> B2CTransaction:
    tx = db.session.get(B2CTransaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"B2C transaction {transaction_id} not found")
    return tx


def list_b2c_transactions(customer_id: int, include_voided: bool = True) -> list[B2CTransaction]:
    get_b2c_customer(customer_id)
    query = db.session.query(B2CTransaction).filter_by(customer_id=customer_id)
    if not include_voided:
        query = query.filter(B2CTransaction.voided.is_(False))
    return query.order_by(B2CTransaction.date.desc(), B2CTransaction.time.desc(), B2CTransaction.id.desc()).all()


def list_open_holdings(customer_id: int, cylinder_type: str | None = None) -> list[CylinderHolding]:
    """Open holdings oldest first (the order returns close them in)."""
    get_b2c_customer(customer_id)
    if cylinder_type:
        get_cylinder_type(cylinder_type)
    return _open_holdings_query(customer_id, cylinder_type).all()


def create_b2c_customer(
    name: str,
    *,
    margin_category_id: int | None = None,
    phone: str | None = None,
    address: str | None = None,
) -> B2CCustomer:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")

    def _op():
        customer = B2CCustomer(name=name, margin_category_id=margin_category_id, phone=phone, address=address)
        db.session.add(customer)
        db.session.flush()
        return customer

    return atomic(_op)
