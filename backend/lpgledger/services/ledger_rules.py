# Overview: Pure rules for B2B postings; transaction kinds, balance and due deltas, buyback economics.

"""
Ledger rules (no database access).

Each transaction type is a closed kind that carries only the fields valid for
it and validates them on construction:

    SaleKind        items with quantity and price          delta +total   dues +qty
    PaymentKind     amount                                 delta -amount
    BuybackKind     items with condition / fill / rate     delta -total   dues -qty
    ReturnEmptyKind items with cylinder type               delta 0        dues -qty
    AdjustmentKind  amount or items                        delta -total
    CreditNoteKind  items                                  delta -total

ledger_delta() and due_deltas() are shared by the ledger engine (at posting)
and the reconciliation reporter (at replay), so both always agree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from ..cylinder_types import CYLINDER_TYPES, DUE_COUNTERS, get_cylinder_type
from ..enums import TransactionType, ReturnedCondition
from ..validation import (
    ValidationError,
    coerce_decimal,
    coerce_int,
    enforce_amount_cents,
    enforce_quantity,
)


SALE = TransactionType.SALE.value
PAYMENT = TransactionType.PAYMENT.value
BUYBACK = TransactionType.BUYBACK.value
RETURN_EMPTY = TransactionType.RETURN_EMPTY.value
ADJUSTMENT = TransactionType.ADJUSTMENT.value
CREDIT_NOTE = TransactionType.CREDIT_NOTE.value

CONDITIONS = {c.value for c in ReturnedCondition}


@dataclass(frozen=True)
class BuybackPolicy:
    partial_rate: Decimal = Decimal("0.60")
    full_rate: Decimal = Decimal("1.00")


@dataclass(frozen=True)
class LineItem:
    product_name: str
    quantity: int
    price_per_item_cents: int = 0
    cylinder_type: str | None = None
    returned_condition: str | None = None
    remaining_kg: Decimal | None = None
    original_sold_price_cents: int | None = None
    buyback_rate: Decimal | None = None

    @property
    def total_price_cents(self) -> int:
        return self.quantity * self.price_per_item_cents

    @classmethod
    def from_payload(cls, payload: dict, line_number: int) -> "LineItem":
        """Build a line from request JSON; numbers arrive as ints/strings."""
        if not isinstance(payload, dict):
            raise ValidationError(f"Line {line_number} must be an object")

        def _opt_decimal(key):
            value = payload.get(key)
            return None if value in (None, "") else coerce_decimal(f"line {line_number} {key}", value)

        def _opt_int(key):
            value = payload.get(key)
            return None if value in (None, "") else coerce_int(f"line {line_number} {key}", value)

        cylinder_type = payload.get("cylinder_type") or None
        product_name = payload.get("product_name") or (
            CYLINDER_TYPES[cylinder_type].label if cylinder_type in CYLINDER_TYPES else None
        )
        if not product_name:
            raise ValidationError(f"Line {line_number}: product_name or cylinder_type is required")
        if payload.get("quantity") in (None, ""):
            raise ValidationError(f"Line {line_number}: quantity is required")

        return cls(
            product_name=product_name,
            quantity=coerce_int(f"line {line_number} quantity", payload["quantity"]),
            price_per_item_cents=_opt_int("price_per_item_cents") or 0,
            cylinder_type=cylinder_type,
            returned_condition=payload.get("returned_condition") or None,
            remaining_kg=_opt_decimal("remaining_kg"),
            original_sold_price_cents=_opt_int("original_sold_price_cents"),
            buyback_rate=_opt_decimal("buyback_rate"),
        )


@dataclass(frozen=True)
class BuybackLine:
    """A buyback line with its economics frozen at posting time."""
    item: LineItem
    rate: Decimal | None
    remaining_kg: Decimal | None
    per_item_cents: int
    total_cents: int


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_buyback(item: LineItem, policy: BuybackPolicy) -> BuybackLine:
    """
    Buyback value of one returned line.

    PARTIAL: original_sold_price x (remaining_kg / nominal_kg) x rate
    FULL:    original_sold_price x full rate (fill level does not matter)
    EMPTY:   0

    The per-item value is rounded once, half-up; the line total is that
    rounded price times quantity, like any other line.
    """
    if item.returned_condition not in CONDITIONS:
        raise ValidationError(
            f"Invalid returned_condition '{item.returned_condition}'. Must be FULL, PARTIAL or EMPTY"
        )
    spec = get_cylinder_type(item.cylinder_type)

    if item.returned_condition == ReturnedCondition.EMPTY.value:
        return BuybackLine(item=item, rate=None, remaining_kg=Decimal("0"), per_item_cents=0, total_cents=0)

    if item.original_sold_price_cents is None:
        raise ValidationError(f"original_sold_price_cents is required for {item.returned_condition} buyback")
    enforce_amount_cents("original_sold_price_cents", item.original_sold_price_cents)
    original = Decimal(item.original_sold_price_cents)

    if item.returned_condition == ReturnedCondition.FULL.value:
        rate = policy.full_rate if item.buyback_rate is None else item.buyback_rate
        remaining_kg = None
        unrounded = original * rate
    else:
        rate = policy.partial_rate if item.buyback_rate is None else item.buyback_rate
        remaining_kg = item.remaining_kg
        if remaining_kg is None:
            raise ValidationError("remaining_kg is required for PARTIAL buyback")
        if remaining_kg <= 0 or remaining_kg > spec.nominal_kg:
            raise ValidationError(
                f"remaining_kg must be > 0 and <= {spec.nominal_kg} for {spec.code}"
            )
        unrounded = original * (remaining_kg / spec.nominal_kg) * rate

    if rate < 0 or rate > 1:
        raise ValidationError("buyback_rate must be between 0 and 1")

    per_item_cents = _round_cents(unrounded)

    return BuybackLine(
        item=item,
        rate=rate,
        remaining_kg=remaining_kg,
        per_item_cents=per_item_cents,
        total_cents=per_item_cents * item.quantity,
    )


# =============================================================================
# TRANSACTION KINDS
# =============================================================================

def _check_items(items: tuple[LineItem, ...], *, require_type: bool = False, require_price: bool = False) -> None:
    for index, item in enumerate(items, start=1):
        enforce_quantity(f"line {index} quantity", item.quantity)
        enforce_amount_cents(f"line {index} price_per_item_cents", item.price_per_item_cents)
        if require_price and item.price_per_item_cents == 0:
            raise ValidationError(f"line {index} price_per_item_cents must be > 0")
        if item.cylinder_type is not None or require_type:
            get_cylinder_type(item.cylinder_type)


@dataclass(frozen=True)
class SaleKind:
    items: tuple[LineItem, ...]
    transaction_type: str = field(default=SALE, init=False)

    def __post_init__(self):
        if not self.items:
            raise ValidationError("SALE requires at least one line item")
        _check_items(self.items)

    @property
    def total_cents(self) -> int:
        return sum(item.total_price_cents for item in self.items)


@dataclass(frozen=True)
class PaymentKind:
    amount_cents: int
    transaction_type: str = field(default=PAYMENT, init=False)

    def __post_init__(self):
        enforce_amount_cents("payment_amount_cents", self.amount_cents, allow_zero=False)

    @property
    def items(self) -> tuple[LineItem, ...]:
        return ()

    @property
    def total_cents(self) -> int:
        return self.amount_cents


@dataclass(frozen=True)
class BuybackKind:
    lines: tuple[BuybackLine, ...]
    transaction_type: str = field(default=BUYBACK, init=False)

    def __post_init__(self):
        if not self.lines:
            raise ValidationError("BUYBACK requires at least one line item")

    @property
    def items(self) -> tuple[LineItem, ...]:
        return tuple(line.item for line in self.lines)

    @property
    def total_cents(self) -> int:
        return sum(line.total_cents for line in self.lines)


@dataclass(frozen=True)
class ReturnEmptyKind:
    items: tuple[LineItem, ...]
    transaction_type: str = field(default=RETURN_EMPTY, init=False)

    def __post_init__(self):
        if not self.items:
            raise ValidationError("RETURN_EMPTY requires at least one line item")
        _check_items(self.items, require_type=True)

    @property
    def total_cents(self) -> int:
        return 0


@dataclass(frozen=True)
class AdjustmentKind:
    amount_cents: int
    items: tuple[LineItem, ...] = ()
    transaction_type: str = field(default=ADJUSTMENT, init=False)

    def __post_init__(self):
        _check_items(self.items)
        enforce_amount_cents("adjustment amount", self.amount_cents, allow_zero=False)

    @property
    def total_cents(self) -> int:
        return self.amount_cents


@dataclass(frozen=True)
class CreditNoteKind:
    items: tuple[LineItem, ...]
    transaction_type: str = field(default=CREDIT_NOTE, init=False)

    def __post_init__(self):
        if not self.items:
            raise ValidationError("CREDIT_NOTE requires at least one line item")
        _check_items(self.items, require_price=True)

    @property
    def total_cents(self) -> int:
        return sum(item.total_price_cents for item in self.items)


TransactionKind = SaleKind | PaymentKind | BuybackKind | ReturnEmptyKind | AdjustmentKind | CreditNoteKind


def _coerce_items(line_items: Iterable[Any]) -> tuple[LineItem, ...]:
    items = []
    for index, item in enumerate(line_items or (), start=1):
        items.append(item if isinstance(item, LineItem) else LineItem.from_payload(item, index))
    return tuple(items)


def build_kind(
    transaction_type: str,
    line_items: Iterable[Any] = (),
    *,
    payment_amount_cents: int | None = None,
    policy: BuybackPolicy | None = None,
) -> TransactionKind:
    """
    Validate a posting request and return its closed kind.

    Fields that do not belong to the kind are rejected rather than ignored.
    """
    items = _coerce_items(line_items)
    policy = policy or BuybackPolicy()

    if transaction_type == SALE:
        _reject_amount(transaction_type, payment_amount_cents)
        return SaleKind(items=items)

    if transaction_type == PAYMENT:
        if items:
            raise ValidationError("PAYMENT does not take line items")
        if payment_amount_cents is None:
            raise ValidationError("payment_amount_cents is required for PAYMENT")
        return PaymentKind(amount_cents=payment_amount_cents)

    if transaction_type == BUYBACK:
        _reject_amount(transaction_type, payment_amount_cents)
        _check_items(items, require_type=True)
        return BuybackKind(lines=tuple(compute_buyback(item, policy) for item in items))

    if transaction_type == RETURN_EMPTY:
        _reject_amount(transaction_type, payment_amount_cents)
        for item in items:
            if item.returned_condition not in (None, ReturnedCondition.EMPTY.value):
                raise ValidationError("RETURN_EMPTY items must have returned_condition EMPTY")
        return ReturnEmptyKind(items=tuple(
            LineItem(
                product_name=item.product_name,
                quantity=item.quantity,
                cylinder_type=item.cylinder_type,
                returned_condition=ReturnedCondition.EMPTY.value,
            )
            for item in items
        ))

    if transaction_type == ADJUSTMENT:
        amount = payment_amount_cents
        if amount is None:
            amount = sum(item.total_price_cents for item in items)
        return AdjustmentKind(amount_cents=amount, items=items)

    if transaction_type == CREDIT_NOTE:
        _reject_amount(transaction_type, payment_amount_cents)
        return CreditNoteKind(items=items)

    raise ValidationError(
        f"Invalid transaction_type '{transaction_type}'. Must be one of: "
        f"{', '.join(t.value for t in TransactionType)}"
    )


def _reject_amount(transaction_type: str, payment_amount_cents: int | None) -> None:
    if payment_amount_cents is not None:
        raise ValidationError(f"{transaction_type} does not take payment_amount_cents")


# =============================================================================
# DELTAS
# =============================================================================

def ledger_delta(transaction_type: str, total_cents: int) -> int:
    """Signed balance change of a posting; positive means the customer owes more."""
    if transaction_type == SALE:
        return total_cents
    if transaction_type in (PAYMENT, BUYBACK, ADJUSTMENT, CREDIT_NOTE):
        return -total_cents
    if transaction_type == RETURN_EMPTY:
        return 0
    raise ValidationError(f"Invalid transaction_type '{transaction_type}'")


def due_deltas(transaction_type: str, items: Iterable[Any]) -> dict[str, int]:
    """
    Requested due-counter changes, before the zero floor.

    Items only need quantity and cylinder_type attributes, so stored line rows
    and LineItem objects both work. Sizes without a counter are ignored.
    """
    deltas = {counter: 0 for counter in DUE_COUNTERS}
    if transaction_type == SALE:
        sign = 1
    elif transaction_type in (BUYBACK, RETURN_EMPTY):
        sign = -1
    elif transaction_type in (PAYMENT, ADJUSTMENT, CREDIT_NOTE):
        return deltas
    else:
        raise ValidationError(f"Invalid transaction_type '{transaction_type}'")

    for item in items:
        spec = CYLINDER_TYPES.get(item.cylinder_type)
        if spec is not None and spec.due_counter:
            deltas[spec.due_counter] += sign * item.quantity
    return deltas


def apply_due_floor(current: dict[str, int], requested: dict[str, int]) -> tuple[dict[str, int], bool]:
    """
    Clamp requested due changes so no counter goes below zero.

    Returns:
        (applied deltas, whether the floor engaged)
    """
    applied = {}
    floored = False
    for counter in DUE_COUNTERS:
        before = current.get(counter, 0)
        after = before + requested.get(counter, 0)
        if after < 0:
            floored = True
            after = 0
        applied[counter] = after - before
    return applied, floored
