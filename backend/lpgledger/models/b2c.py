from __future__ import annotations

from ..extensions import db
from lpgledger.time_utils import to_iso_date, to_iso_time, to_utc_z


class B2CTransaction(db.Model):
    """
    Residential sale document: gas refills, accessories and security deposits.

    Amounts:
    - total_amount_cents: gas + accessories + new deposits
    - refund_cents: security refunds paid out (deposit minus deduction)
    - final_amount_cents: total + delivery - refund (negative = cash paid out)
    """
    __tablename__ = "b2c_transactions"
    __table_args__ = (
        db.UniqueConstraint("bill_number", name="uq_b2c_transactions_bill_number"),
        db.Index("ix_b2c_tx_customer_date_time", "customer_id", "date", "time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("b2c_customers.id"), nullable=False, index=True)
    bill_number = db.Column(db.String(64), nullable=False)

    date = db.Column(db.Date, nullable=False)
    time = db.Column(db.Time, nullable=False)

    total_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_charges_cents = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    refund_cents = db.Column(db.BigInteger, nullable=False, default=0)
    final_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    actual_profit_cents = db.Column(db.BigInteger, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="CASH")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    voided = db.Column(db.Boolean, nullable=False, default=False, index=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    customer = db.relationship("B2CCustomer", backref=db.backref("transactions", lazy=True))
    items = db.relationship("B2CTransactionItem", backref="transaction", lazy=True, order_by="B2CTransactionItem.id")
    security_items = db.relationship("B2CSecurityItem", backref="transaction", lazy=True, order_by="B2CSecurityItem.id")

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "bill_number": self.bill_number,
            "date": to_iso_date(self.date),
            "time": to_iso_time(self.time),
            "total_amount_cents": self.total_amount_cents,
            "delivery_charges_cents": self.delivery_charges_cents,
            "delivery_cost_cents": self.delivery_cost_cents,
            "refund_cents": self.refund_cents,
            "final_amount_cents": self.final_amount_cents,
            "total_cost_cents": self.total_cost_cents,
            "actual_profit_cents": self.actual_profit_cents,
            "payment_method": self.payment_method,
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
            data["security_items"] = [item.to_dict() for item in self.security_items]
        return data


class B2CTransactionItem(db.Model):
    """Gas or accessory line with cost and margin snapshot."""
    __tablename__ = "b2c_transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("b2c_transactions.id"), nullable=False, index=True)

    item_kind = db.Column(db.String(16), nullable=False)  # GAS, ACCESSORY
    product_name = db.Column(db.String(255), nullable=False)
    cylinder_type = db.Column(db.String(32), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_per_item_cents = db.Column(db.BigInteger, nullable=False)
    total_price_cents = db.Column(db.BigInteger, nullable=False)
    cost_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    profit_margin_cents = db.Column(db.BigInteger, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "item_kind": self.item_kind,
            "product_name": self.product_name,
            "cylinder_type": self.cylinder_type,
            "quantity": self.quantity,
            "price_per_item_cents": self.price_per_item_cents,
            "total_price_cents": self.total_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "total_cost_cents": self.total_cost_cents,
            "profit_margin_cents": self.profit_margin_cents,
        }


class B2CSecurityItem(db.Model):
    """
    Security deposit line.

    is_return=False: deposit taken, price_per_item_cents is the deposit per cylinder.
    is_return=True: deposit refunded, total_price_cents is the refund paid out
    after the deduction_rate was retained.
    """
    __tablename__ = "b2c_security_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("b2c_transactions.id"), nullable=False, index=True)

    cylinder_type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_per_item_cents = db.Column(db.BigInteger, nullable=False)
    total_price_cents = db.Column(db.BigInteger, nullable=False)
    is_return = db.Column(db.Boolean, nullable=False, default=False)
    deduction_rate = db.Column(db.Numeric(6, 4), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "cylinder_type": self.cylinder_type,
            "quantity": self.quantity,
            "price_per_item_cents": self.price_per_item_cents,
            "total_price_cents": self.total_price_cents,
            "is_return": self.is_return,
            "deduction_rate": str(self.deduction_rate) if self.deduction_rate is not None else None,
        }


class CylinderHolding(db.Model):
    """
    One outstanding deposited cylinder.

    Opened by a deposit, closed oldest-first by a security return. quantity is
    always 1 so FIFO closure never has to split a row.
    """
    __tablename__ = "b2c_cylinder_holdings"
    __table_args__ = (
        db.Index("ix_holdings_customer_type_open", "customer_id", "cylinder_type", "is_returned"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("b2c_customers.id"), nullable=False, index=True)
    cylinder_type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    security_amount_cents = db.Column(db.BigInteger, nullable=False)
    issue_date = db.Column(db.Date, nullable=False)

    is_returned = db.Column(db.Boolean, nullable=False, default=False)
    return_date = db.Column(db.Date, nullable=True)
    return_deduction_cents = db.Column(db.BigInteger, nullable=True)

    opened_by_transaction_id = db.Column(db.Integer, db.ForeignKey("b2c_transactions.id"), nullable=False, index=True)
    closed_by_transaction_id = db.Column(db.Integer, db.ForeignKey("b2c_transactions.id"), nullable=True, index=True)
    is_voided = db.Column(db.Boolean, nullable=False, default=False)

    customer = db.relationship("B2CCustomer", backref=db.backref("holdings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "cylinder_type": self.cylinder_type,
            "quantity": self.quantity,
            "security_amount_cents": self.security_amount_cents,
            "issue_date": to_iso_date(self.issue_date),
            "is_returned": self.is_returned,
            "return_date": to_iso_date(self.return_date),
            "return_deduction_cents": self.return_deduction_cents,
            "opened_by_transaction_id": self.opened_by_transaction_id,
            "closed_by_transaction_id": self.closed_by_transaction_id,
            "is_voided": self.is_voided,
        }
