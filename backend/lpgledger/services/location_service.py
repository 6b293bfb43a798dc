from __future__ import annotations

from lpgledger.extensions import db
from lpgledger.models import Store, Vehicle
from lpgledger.validation import ValidationError
from lpgledger.services.concurrency import run_with_retry


def create_store(name: str, code: str | None = None, address: str | None = None) -> Store:
    def _op():
        if not name:
            raise ValidationError("Store name is required")
        if code and db.session.query(Store.id).filter_by(code=code).first():
            raise ValidationError(f"Store code '{code}' already exists")

        store = Store(name=name, code=code, address=address)
        db.session.add(store)
        db.session.commit()
        return store

    return run_with_retry(_op)


def create_vehicle(registration_number: str, driver_name: str | None = None) -> Vehicle:
    def _op():
        registration = (registration_number or "").strip().upper()
        if not registration:
            raise ValidationError("registration_number is required")
        if db.session.query(Vehicle.id).filter_by(registration_number=registration).first():
            raise ValidationError(f"Vehicle '{registration}' already exists")

        vehicle = Vehicle(registration_number=registration, driver_name=driver_name)
        db.session.add(vehicle)
        db.session.commit()
        return vehicle

    return run_with_retry(_op)


def list_stores() -> list[Store]:
    return db.session.query(Store).order_by(Store.name.asc()).all()


def list_vehicles() -> list[Vehicle]:
    return db.session.query(Vehicle).order_by(Vehicle.registration_number.asc()).all()
