from __future__ import annotations

from ..extensions import db
from lpgledger.time_utils import to_iso_date, to_iso_time, to_utc_z


class B2BTransaction(db.Model):
    """
    Append-only B2B ledger document.

    IMMUTABLE: header and items never change after posting, except the void
    fields. The deltas applied to the customer at posting time are stored so a
    void can apply their exact inverse:
    - ledger_delta_cents: signed balance change
    - *_due_delta: due-counter change actually applied (after the zero floor)
    """
    __tablename__ = "b2b_transactions"
    __table_args__ = (
        db.UniqueConstraint("bill_number", name="uq_b2b_transactions_bill_number"),
        db.Index("ix_b2b_tx_customer_date_time", "customer_id", "date", "time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    bill_number = db.Column(db.String(64), nullable=False)

    # Business date/time (chronological order for replay)
    date = db.Column(db.Date, nullable=False)
    time = db.Column(db.Time, nullable=False)

    total_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    ledger_delta_cents = db.Column(db.BigInteger, nullable=False, default=0)
    domestic_due_delta = db.Column(db.Integer, nullable=False, default=0)
    standard_due_delta = db.Column(db.Integer, nullable=False, default=0)
    commercial_due_delta = db.Column(db.Integer, nullable=False, default=0)
    due_floor_applied = db.Column(db.Boolean, nullable=False, default=False)

    payment_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Void audit trail
    voided = db.Column(db.Boolean, nullable=False, default=False, index=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    items = db.relationship(
        "B2BTransactionItem",
        backref="transaction",
        lazy=True,
        order_by="B2BTransactionItem.line_number",
    )

    def due_deltas(self) -> dict[str, int]:
        return {
            "domestic_due": self.domestic_due_delta,
            "standard_due": self.standard_due_delta,
            "commercial_due": self.commercial_due_delta,
        }

    def __repr__(self) -> str:
        return f"<B2BTransaction id={self.id} {self.transaction_type} bill={self.bill_number!r}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "bill_number": self.bill_number,
            "date": to_iso_date(self.date),
            "time": to_iso_time(self.time),
            "total_amount_cents": self.total_amount_cents,
            "ledger_delta_cents": self.ledger_delta_cents,
            "due_deltas": self.due_deltas(),
            "due_floor_applied": self.due_floor_applied,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "voided": self.voided,
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class B2BTransactionItem(db.Model):
    """
    Line item on a B2B transaction.

    Buyback columns are only populated on BUYBACK transactions and are frozen
    at posting time: plant prices and buyback rates change, stored amounts do not.
    """
    __tablename__ = "b2b_transaction_items"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_b2b_items_tx_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("b2b_transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_per_item_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    cylinder_type = db.Column(db.String(32), nullable=True, index=True)

    returned_condition = db.Column(db.String(16), nullable=True)  # FULL, PARTIAL, EMPTY
    remaining_kg = db.Column(db.Numeric(10, 3), nullable=True)
    original_sold_price_cents = db.Column(db.BigInteger, nullable=True)
    buyback_rate = db.Column(db.Numeric(6, 4), nullable=True)
    buyback_price_per_item_cents = db.Column(db.BigInteger, nullable=True)
    buyback_total_cents = db.Column(db.BigInteger, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "line_number": self.line_number,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_per_item_cents": self.price_per_item_cents,
            "total_price_cents": self.total_price_cents,
            "cylinder_type": self.cylinder_type,
            "returned_condition": self.returned_condition,
            "remaining_kg": str(self.remaining_kg) if self.remaining_kg is not None else None,
            "original_sold_price_cents": self.original_sold_price_cents,
            "buyback_rate": str(self.buyback_rate) if self.buyback_rate is not None else None,
            "buyback_price_per_item_cents": self.buyback_price_per_item_cents,
            "buyback_total_cents": self.buyback_total_cents,
        }


class BillSequence(db.Model):
    """
    Atomic per-day bill number sequences.

    WHY: Prevent race conditions when generating bill numbers
    (PREFIX-YYYYMMDD-NNNNNN).
    """
    __tablename__ = "bill_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "date", name="uq_bill_sequences_prefix_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "date": to_iso_date(self.date),
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
