from __future__ import annotations

from ..extensions import db
from lpgledger.time_utils import to_utc_z


LOCATION_FIELDS = ("store_id", "vehicle_id", "customer_id", "b2c_customer_id")


class Cylinder(db.Model):
    """
    A physical cylinder.

    LOCATION INVARIANT: exactly one of store_id, vehicle_id, customer_id,
    b2c_customer_id is set. WITH_CUSTOMER status means the location is a
    customer; every other status means a store or vehicle.

    Status changes go through cylinder_service.apply_transition only.
    """
    __tablename__ = "cylinders"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_cylinders_code"),
        db.Index("ix_cylinders_type_status", "cylinder_type", "current_status"),
        db.CheckConstraint(
            "(CASE WHEN store_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN vehicle_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN customer_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN b2c_customer_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_cylinders_single_location",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    cylinder_type = db.Column(db.String(32), nullable=False)
    capacity_kg = db.Column(db.Numeric(8, 2), nullable=False)
    current_status = db.Column(db.String(16), nullable=False, default="FULL", index=True)

    # Fill left in a cylinder bought back partially full
    remaining_kg = db.Column(db.Numeric(10, 3), nullable=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    b2c_customer_id = db.Column(db.Integer, db.ForeignKey("b2c_customers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def location(self) -> dict:
        return {field: getattr(self, field) for field in LOCATION_FIELDS if getattr(self, field) is not None}

    def __repr__(self) -> str:
        return f"<Cylinder code={self.code!r} {self.cylinder_type} {self.current_status} at={self.location()}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "cylinder_type": self.cylinder_type,
            "capacity_kg": str(self.capacity_kg) if self.capacity_kg is not None else None,
            "current_status": self.current_status,
            "remaining_kg": str(self.remaining_kg) if self.remaining_kg is not None else None,
            "store_id": self.store_id,
            "vehicle_id": self.vehicle_id,
            "customer_id": self.customer_id,
            "b2c_customer_id": self.b2c_customer_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CylinderMovement(db.Model):
    """
    Append-only log of cylinder status/location changes.

    Movements caused by a posted transaction reference it, so a void can put
    each cylinder back where it was.
    """
    __tablename__ = "cylinder_movements"
    __table_args__ = (
        db.Index("ix_cyl_movements_cylinder_occurred", "cylinder_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False)

    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    from_location = db.Column(db.JSON, nullable=True)
    to_location = db.Column(db.JSON, nullable=False)
    from_remaining_kg = db.Column(db.Numeric(10, 3), nullable=True)

    b2b_transaction_id = db.Column(db.Integer, db.ForeignKey("b2b_transactions.id"), nullable=True, index=True)
    b2c_transaction_id = db.Column(db.Integer, db.ForeignKey("b2c_transactions.id"), nullable=True, index=True)
    is_reversal = db.Column(db.Boolean, nullable=False, default=False)

    actor_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder = db.relationship("Cylinder", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_id": self.cylinder_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "from_remaining_kg": str(self.from_remaining_kg) if self.from_remaining_kg is not None else None,
            "b2b_transaction_id": self.b2b_transaction_id,
            "b2c_transaction_id": self.b2c_transaction_id,
            "is_reversal": self.is_reversal,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
