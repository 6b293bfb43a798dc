from __future__ import annotations

from ..extensions import db
from lpgledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    B2B customer with a running credit ledger.

    LEDGER INVARIANT:
    ledger_balance_cents and the *_due counters always equal the chronological
    fold of the customer's non-voided transactions. Only ledger_service writes
    them; every posting bumps last_transaction_at so the version check fires
    even when no balance or counter changes.

    ledger_balance_cents is signed: positive means the customer owes money.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    margin_category_id = db.Column(db.Integer, db.ForeignKey("margin_categories.id"), nullable=True, index=True)

    credit_limit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    payment_terms_days = db.Column(db.Integer, nullable=False, default=30)

    # Aggregates maintained by the ledger engine
    ledger_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    domestic_due = db.Column(db.Integer, nullable=False, default=0)
    standard_due = db.Column(db.Integer, nullable=False, default=0)
    commercial_due = db.Column(db.Integer, nullable=False, default=0)
    last_transaction_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    margin_category = db.relationship("MarginCategory")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} balance={self.ledger_balance_cents}>"

    def snapshot(self) -> dict:
        """The aggregate fields returned with every posted transaction."""
        return {
            "customer_id": self.id,
            "ledger_balance_cents": self.ledger_balance_cents,
            "domestic_due": self.domestic_due,
            "standard_due": self.standard_due,
            "commercial_due": self.commercial_due,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "phone": self.phone,
            "address": self.address,
            "margin_category_id": self.margin_category_id,
            "credit_limit_cents": self.credit_limit_cents,
            "payment_terms_days": self.payment_terms_days,
            "ledger_balance_cents": self.ledger_balance_cents,
            "domestic_due": self.domestic_due,
            "standard_due": self.standard_due,
            "commercial_due": self.commercial_due,
            "last_transaction_at": to_utc_z(self.last_transaction_at) if self.last_transaction_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class B2CCustomer(db.Model):
    """
    Residential customer.

    No credit ledger: B2C sales are settled on the spot. The aggregates track
    profit earned and the security deposits currently held for the customer.
    """
    __tablename__ = "b2c_customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    margin_category_id = db.Column(db.Integer, db.ForeignKey("margin_categories.id"), nullable=True, index=True)

    total_profit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    security_held_cents = db.Column(db.BigInteger, nullable=False, default=0)
    last_transaction_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    margin_category = db.relationship("MarginCategory")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "margin_category_id": self.margin_category_id,
            "total_profit_cents": self.total_profit_cents,
            "security_held_cents": self.security_held_cents,
            "last_transaction_at": to_utc_z(self.last_transaction_at) if self.last_transaction_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
