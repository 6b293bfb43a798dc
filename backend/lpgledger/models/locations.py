from __future__ import annotations

from ..extensions import db
from lpgledger.time_utils import to_utc_z


class Store(db.Model):
    """A depot or shop where cylinders are stocked."""
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stores_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Vehicle(db.Model):
    """A delivery vehicle; cylinders in transit are located here."""
    __tablename__ = "vehicles"
    __table_args__ = (
        db.UniqueConstraint("registration_number", name="uq_vehicles_registration"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    registration_number = db.Column(db.String(32), nullable=False)
    driver_name = db.Column(db.String(128), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "registration_number": self.registration_number,
            "driver_name": self.driver_name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
