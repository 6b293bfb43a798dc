# Overview: Service-layer operations for reconciliation; running balances, replay and statements.

"""
Running-Balance Reporter

Everything here is read-only. Balances are rebuilt from the transaction log
with the same ledger_delta / due_deltas rules the ledger engine posts with,
then compared against the aggregates stored on the customer.

Ordering is (date, time); the sort is stable, so transactions with the same
date and time keep the order they were given in (by id when loaded here).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Sequence

from ..extensions import db
from ..models import B2BTransaction
from ..cylinder_types import DUE_COUNTERS
from ..enums import TransactionType
from ..validation import ValidationError
from .ledger_rules import apply_due_floor, due_deltas, ledger_delta
from .ledger_service import get_customer


@dataclass(frozen=True)
class RunningBalanceRow:
    transaction: Any
    delta_cents: int
    balance_after_cents: int


@dataclass(frozen=True)
class ReplayResult:
    balance_cents: int
    dues: dict[str, int]
    floor_events: int = 0


@dataclass
class ReconciliationReport:
    customer_id: int
    customer_name: str
    as_of: date | None
    totals: dict[str, int]
    counts: dict[str, int]
    calculated: ReplayResult
    stored_balance_cents: int
    stored_dues: dict[str, int]
    rows: list[RunningBalanceRow] = field(default_factory=list)

    @property
    def difference_cents(self) -> int:
        return self.stored_balance_cents - self.calculated.balance_cents

    @property
    def due_differences(self) -> dict[str, int]:
        return {c: self.stored_dues[c] - self.calculated.dues[c] for c in DUE_COUNTERS}

    @property
    def is_balanced(self) -> bool:
        return self.difference_cents == 0 and not any(self.due_differences.values())

    def to_dict(self) -> dict:
        return {
            "customer": {"id": self.customer_id, "name": self.customer_name},
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "summary": {
                "totals_cents": self.totals,
                "counts": self.counts,
                "calculated_balance_cents": self.calculated.balance_cents,
                "stored_balance_cents": self.stored_balance_cents,
                "difference_cents": self.difference_cents,
                "calculated_dues": self.calculated.dues,
                "stored_dues": self.stored_dues,
                "due_differences": self.due_differences,
                "floor_events": self.calculated.floor_events,
                "is_balanced": self.is_balanced,
            },
            "transactions": [_row_dict(row) for row in self.rows],
        }


def _row_dict(row: RunningBalanceRow) -> dict:
    data = row.transaction.to_dict(include_items=False)
    data["delta_cents"] = row.delta_cents
    data["running_balance_cents"] = row.balance_after_cents
    return data


def _chronological(transactions: Sequence[Any]) -> list[tuple[int, Any]]:
    return sorted(enumerate(transactions), key=lambda pair: (pair[1].date, pair[1].time))


def compute_running_balance(transactions: Iterable[Any]) -> list[RunningBalanceRow]:
    """
    Balance after each transaction, folded chronologically from zero.

    Voided transactions stay in the output with a zero delta. Rows come back
    in the order the transactions were passed in.
    """
    transactions = list(transactions)
    balance = 0
    computed: dict[int, tuple[int, int]] = {}
    for index, tx in _chronological(transactions):
        delta = 0 if tx.voided else ledger_delta(tx.transaction_type, tx.total_amount_cents)
        balance += delta
        computed[index] = (delta, balance)

    return [
        RunningBalanceRow(transaction=tx, delta_cents=computed[index][0], balance_after_cents=computed[index][1])
        for index, tx in enumerate(transactions)
    ]


def replay_customer(transactions: Iterable[Any]) -> ReplayResult:
    """Balance and due counters rebuilt from non-voided transactions, zero floor included."""
    balance = 0
    dues = {counter: 0 for counter in DUE_COUNTERS}
    floor_events = 0
    for _, tx in _chronological(list(transactions)):
        if tx.voided:
            continue
        balance += ledger_delta(tx.transaction_type, tx.total_amount_cents)
        applied, floored = apply_due_floor(dues, due_deltas(tx.transaction_type, getattr(tx, "items", ())))
        if floored:
            floor_events += 1
        dues = {counter: dues[counter] + applied[counter] for counter in DUE_COUNTERS}
    return ReplayResult(balance_cents=balance, dues=dues, floor_events=floor_events)


def _customer_transactions(customer_id: int, *, up_to: date | None = None) -> list[B2BTransaction]:
    query = db.session.query(B2BTransaction).filter_by(customer_id=customer_id)
    if up_to is not None:
        query = query.filter(B2BTransaction.date <= up_to)
    return query.order_by(B2BTransaction.date.asc(), B2BTransaction.time.asc(), B2BTransaction.id.asc()).all()


def reconcile_customer(customer_id: int, as_of: date | None = None) -> ReconciliationReport:
    """
    Audit a customer's stored aggregates against a replay of the log.

    With as_of, only transactions dated on or before it are replayed; the
    stored aggregates always reflect the full log.
    """
    customer = get_customer(customer_id)
    transactions = _customer_transactions(customer_id, up_to=as_of)

    totals = {t.value: 0 for t in TransactionType}
    counts = {t.value: 0 for t in TransactionType}
    for tx in transactions:
        if tx.voided:
            continue
        totals[tx.transaction_type] += tx.total_amount_cents
        counts[tx.transaction_type] += 1

    return ReconciliationReport(
        customer_id=customer.id,
        customer_name=customer.name,
        as_of=as_of,
        totals=totals,
        counts=counts,
        calculated=replay_customer(transactions),
        stored_balance_cents=customer.ledger_balance_cents,
        stored_dues={counter: getattr(customer, counter) for counter in DUE_COUNTERS},
        rows=compute_running_balance(transactions),
    )


def customer_statement(
    customer_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """
    Newest-first ledger statement for a date window.

    Running balances are computed over the full history, so a filtered page
    shows the same balances as the unfiltered statement.
    """
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > 200:
        raise ValidationError("limit must be between 1 and 200")
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    customer = get_customer(customer_id)
    rows = compute_running_balance(_customer_transactions(customer_id))

    opening = 0
    window = []
    for row in rows:
        tx_date = row.transaction.date
        if start_date and tx_date < start_date:
            opening = row.balance_after_cents
            continue
        if end_date and tx_date > end_date:
            continue
        window.append(row)

    closing = window[-1].balance_after_cents if window else opening
    window.reverse()

    total = len(window)
    offset = (page - 1) * limit
    page_rows = window[offset:offset + limit]

    return {
        "customer": customer.to_dict(),
        "period": {
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
        },
        "opening_balance_cents": opening,
        "closing_balance_cents": closing,
        "transactions": [_row_dict(row) for row in page_rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }
