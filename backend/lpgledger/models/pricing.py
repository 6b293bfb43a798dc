from __future__ import annotations

from ..extensions import db
from lpgledger.time_utils import to_iso_date, to_utc_z


class PlantPrice(db.Model):
    """
    Daily base price for the 11.8kg reference cylinder.

    One row per calendar day. Setting today's price twice overwrites the row
    (upsert-by-date), so history stays one snapshot per day.
    """
    __tablename__ = "plant_prices"
    __table_args__ = (
        db.UniqueConstraint("date", name="uq_plant_prices_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)

    # Authoritative storage in cents
    plant_price_118kg_cents = db.Column(db.BigInteger, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_iso_date(self.date),
            "plant_price_118kg_cents": self.plant_price_118kg_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MarginCategory(db.Model):
    """Per-kg margin for a customer segment (B2B demand tier or B2C homes)."""
    __tablename__ = "margin_categories"
    __table_args__ = (
        db.UniqueConstraint("customer_type", "name", name="uq_margin_categories_type_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    customer_type = db.Column(db.String(8), nullable=False, index=True)  # B2B, B2C
    margin_per_kg_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<MarginCategory id={self.id} {self.customer_type}:{self.name!r} margin={self.margin_per_kg_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "customer_type": self.customer_type,
            "margin_per_kg_cents": self.margin_per_kg_cents,
            "description": self.description,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
