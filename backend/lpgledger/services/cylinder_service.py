# Overview: Service-layer operations for cylinders; status state machine, exclusive location and movement log.

"""
Cylinder State Tracker

STATE MACHINE:
    SALE                      FULL -> WITH_CUSTOMER          (to a customer)
    RETURN_EMPTY              WITH_CUSTOMER -> EMPTY         (to a store/vehicle)
    BUYBACK                   WITH_CUSTOMER -> FULL | EMPTY  (by returned condition)
    REFILL                    EMPTY -> FULL
    SEND_TO_MAINTENANCE       FULL | EMPTY | WITH_CUSTOMER -> MAINTENANCE
    RELEASE_FROM_MAINTENANCE  MAINTENANCE -> FULL | EMPTY
    RETIRE                    any non-RETIRED -> RETIRED     (terminal)

RULES:
1. Exactly one of store_id, vehicle_id, customer_id, b2c_customer_id is set.
2. WITH_CUSTOMER <=> the location is a customer.
3. Status and location change together, or not at all.
4. Every change appends a CylinderMovement row; rows are never edited.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Cylinder, CylinderMovement, Store, Vehicle, Customer, B2CCustomer, LOCATION_FIELDS
from ..cylinder_types import get_cylinder_type
from ..enums import CylinderEventType, CylinderStatus, ReturnedCondition
from ..validation import ValidationError, NotFoundError, ConflictError
from .concurrency import atomic, lock_for_update


FULL = CylinderStatus.FULL.value
EMPTY = CylinderStatus.EMPTY.value
MAINTENANCE = CylinderStatus.MAINTENANCE.value
WITH_CUSTOMER = CylinderStatus.WITH_CUSTOMER.value
RETIRED = CylinderStatus.RETIRED.value

CUSTOMER_FIELDS = ("customer_id", "b2c_customer_id")
PREMISES_FIELDS = ("store_id", "vehicle_id")

# event -> statuses it may start from
ALLOWED_FROM = {
    CylinderEventType.SALE.value: {FULL},
    CylinderEventType.RETURN_EMPTY.value: {WITH_CUSTOMER},
    CylinderEventType.BUYBACK.value: {WITH_CUSTOMER},
    CylinderEventType.REFILL.value: {EMPTY},
    CylinderEventType.SEND_TO_MAINTENANCE.value: {FULL, EMPTY, WITH_CUSTOMER},
    CylinderEventType.RELEASE_FROM_MAINTENANCE.value: {MAINTENANCE},
    CylinderEventType.RETIRE.value: {FULL, EMPTY, MAINTENANCE, WITH_CUSTOMER},
}

# Statuses a cylinder may be registered in
REGISTRABLE_STATUSES = {FULL, EMPTY, MAINTENANCE}

REGISTER_EVENT = "REGISTER"


class IllegalTransitionError(ConflictError):
    """The event is not allowed from the cylinder's current status."""


@dataclass(frozen=True)
class CylinderEvent:
    """
    One requested status change.

    condition/remaining_kg apply to BUYBACK; release_to (FULL or EMPTY)
    applies to RELEASE_FROM_MAINTENANCE.
    """
    event_type: str
    store_id: int | None = None
    vehicle_id: int | None = None
    customer_id: int | None = None
    b2c_customer_id: int | None = None
    condition: str | None = None
    remaining_kg: Decimal | None = None
    release_to: str | None = None

    def target_location(self) -> dict:
        return {field: getattr(self, field) for field in LOCATION_FIELDS if getattr(self, field) is not None}


def _target_status(cylinder: Cylinder, event: CylinderEvent) -> str:
    event_type = event.event_type
    if event_type == CylinderEventType.SALE.value:
        return WITH_CUSTOMER
    if event_type == CylinderEventType.RETURN_EMPTY.value:
        return EMPTY
    if event_type == CylinderEventType.BUYBACK.value:
        if event.condition not in {c.value for c in ReturnedCondition}:
            raise ValidationError("BUYBACK requires condition FULL, PARTIAL or EMPTY")
        return FULL if event.condition == ReturnedCondition.FULL.value else EMPTY
    if event_type == CylinderEventType.REFILL.value:
        return FULL
    if event_type == CylinderEventType.SEND_TO_MAINTENANCE.value:
        return MAINTENANCE
    if event_type == CylinderEventType.RELEASE_FROM_MAINTENANCE.value:
        if event.release_to not in {FULL, EMPTY}:
            raise ValidationError("RELEASE_FROM_MAINTENANCE requires release_to FULL or EMPTY")
        return event.release_to
    return RETIRED


def _target_location(cylinder: Cylinder, event: CylinderEvent) -> dict:
    target = event.target_location()

    if event.event_type == CylinderEventType.SALE.value:
        if len(target) != 1 or next(iter(target)) not in CUSTOMER_FIELDS:
            raise ValidationError("SALE requires exactly one customer_id or b2c_customer_id")
        return target

    if target:
        if len(target) != 1 or next(iter(target)) not in PREMISES_FIELDS:
            raise ValidationError(f"{event.event_type} requires exactly one store_id or vehicle_id")
        return target

    # No target given: stay put, which is only possible at a store or vehicle
    current = cylinder.location()
    if cylinder.current_status != WITH_CUSTOMER and len(current) == 1 and next(iter(current)) in PREMISES_FIELDS:
        return current
    raise ValidationError(f"{event.event_type} requires a store_id or vehicle_id")


def apply_transition(cylinder: Cylinder, event: CylinderEvent) -> Cylinder:
    """
    Apply one event to a cylinder in memory.

    Mutates only the given object; the caller persists it. Nothing is changed
    when the event is rejected.

    Raises:
        IllegalTransitionError: event not allowed from the current status
        ValidationError: unknown event or bad target location
    """
    allowed = ALLOWED_FROM.get(event.event_type)
    if allowed is None:
        raise ValidationError(
            f"Invalid cylinder event '{event.event_type}'. Must be one of: {', '.join(ALLOWED_FROM)}"
        )
    if cylinder.current_status not in allowed:
        raise IllegalTransitionError(
            f"Cannot apply {event.event_type} to cylinder {cylinder.code} in status {cylinder.current_status}"
        )

    to_status = _target_status(cylinder, event)
    location = _target_location(cylinder, event)

    remaining_kg = cylinder.remaining_kg
    if event.event_type == CylinderEventType.BUYBACK.value:
        if event.condition == ReturnedCondition.PARTIAL.value:
            if event.remaining_kg is None:
                raise ValidationError("PARTIAL buyback requires remaining_kg")
            remaining_kg = Decimal(event.remaining_kg)
        elif event.condition == ReturnedCondition.EMPTY.value:
            remaining_kg = Decimal("0")
        else:
            remaining_kg = None
    elif to_status == FULL:
        remaining_kg = None

    # All checks passed; status and location change together
    cylinder.current_status = to_status
    cylinder.remaining_kg = remaining_kg
    for field in LOCATION_FIELDS:
        setattr(cylinder, field, location.get(field))
    return cylinder


# =============================================================================
# MOVEMENT LOG
# =============================================================================

def _record_movement(
    cylinder: Cylinder,
    event_type: str,
    *,
    from_status: str | None,
    from_location: dict | None,
    from_remaining_kg: Decimal | None,
    b2b_transaction_id: int | None = None,
    b2c_transaction_id: int | None = None,
    is_reversal: bool = False,
    user_id: int | None = None,
    note: str | None = None,
) -> CylinderMovement:
    movement = CylinderMovement(
        cylinder_id=cylinder.id,
        event_type=event_type,
        from_status=from_status,
        to_status=cylinder.current_status,
        from_location=from_location,
        to_location=cylinder.location(),
        from_remaining_kg=from_remaining_kg,
        b2b_transaction_id=b2b_transaction_id,
        b2c_transaction_id=b2c_transaction_id,
        is_reversal=is_reversal,
        actor_user_id=user_id,
        note=note,
    )
    db.session.add(movement)
    return movement


def move_cylinder(
    cylinder: Cylinder,
    event: CylinderEvent,
    *,
    b2b_transaction_id: int | None = None,
    b2c_transaction_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> CylinderMovement:
    """Apply an event and log it. Flushes nothing; runs inside the caller's unit of work."""
    from_status = cylinder.current_status
    from_location = cylinder.location()
    from_remaining_kg = cylinder.remaining_kg

    apply_transition(cylinder, event)

    return _record_movement(
        cylinder,
        event.event_type,
        from_status=from_status,
        from_location=from_location,
        from_remaining_kg=from_remaining_kg,
        b2b_transaction_id=b2b_transaction_id,
        b2c_transaction_id=b2c_transaction_id,
        user_id=user_id,
        note=note,
    )


def _check_location_exists(location: dict) -> None:
    models = {
        "store_id": Store,
        "vehicle_id": Vehicle,
        "customer_id": Customer,
        "b2c_customer_id": B2CCustomer,
    }
    for field, value in location.items():
        if db.session.get(models[field], value) is None:
            raise NotFoundError(f"{field} {value} not found")


# =============================================================================
# STANDALONE OPERATIONS
# =============================================================================

def register_cylinder(
    code: str,
    cylinder_type: str,
    *,
    store_id: int | None = None,
    vehicle_id: int | None = None,
    status: str = FULL,
    capacity_kg: Decimal | None = None,
    user_id: int | None = None,
) -> Cylinder:
    """
    Add a cylinder to the fleet at a store or vehicle.

    Raises:
        ValidationError: duplicate code, bad type/status, or not exactly one location
    """
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("code is required")
    spec = get_cylinder_type(cylinder_type)
    if status not in REGISTRABLE_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(sorted(REGISTRABLE_STATUSES))}")
    if (store_id is None) == (vehicle_id is None):
        raise ValidationError("Exactly one of store_id or vehicle_id is required")

    location = {"store_id": store_id} if store_id is not None else {"vehicle_id": vehicle_id}

    def _op():
        _check_location_exists(location)
        if db.session.query(Cylinder.id).filter_by(code=code).first():
            raise ValidationError(f"Cylinder code '{code}' already exists")

        cylinder = Cylinder(
            code=code,
            cylinder_type=spec.code,
            capacity_kg=capacity_kg if capacity_kg is not None else spec.nominal_kg,
            current_status=status,
            store_id=store_id,
            vehicle_id=vehicle_id,
        )
        db.session.add(cylinder)
        db.session.flush()

        _record_movement(
            cylinder,
            REGISTER_EVENT,
            from_status=None,
            from_location=None,
            from_remaining_kg=None,
            user_id=user_id,
        )
        return cylinder

    return atomic(_op)


def apply_cylinder_event(
    cylinder_code: str,
    event_type: str,
    target_location: dict | None = None,
    *,
    condition: str | None = None,
    remaining_kg: Decimal | None = None,
    release_to: str | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> Cylinder:
    """
    Apply an operational event (refill, maintenance, retirement, manual moves).

    Locks the cylinder row, applies the transition, appends a movement and
    commits atomically.

    Raises:
        NotFoundError: unknown cylinder code or location
        IllegalTransitionError: event not allowed from the current status
    """
    target_location = dict(target_location or {})
    unknown = set(target_location) - set(LOCATION_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown location fields: {', '.join(sorted(unknown))}")
    target_location = {k: v for k, v in target_location.items() if v is not None}

    event = CylinderEvent(
        event_type=event_type,
        condition=condition,
        remaining_kg=remaining_kg,
        release_to=release_to,
        **target_location,
    )

    def _op():
        cylinder = lock_for_update(
            db.session.query(Cylinder).filter_by(code=(cylinder_code or "").strip().upper())
        ).first()
        if cylinder is None:
            raise NotFoundError(f"Cylinder '{cylinder_code}' not found")
        _check_location_exists(target_location)

        move_cylinder(cylinder, event, user_id=user_id, note=note)
        return cylinder

    return atomic(_op)


# =============================================================================
# TRANSACTION SIDE EFFECTS (run inside the posting unit of work)
# =============================================================================

def allocate_full_cylinders(
    cylinder_type: str,
    quantity: int,
    *,
    customer_id: int | None = None,
    b2c_customer_id: int | None = None,
    b2b_transaction_id: int | None = None,
    b2c_transaction_id: int | None = None,
    user_id: int | None = None,
) -> list[Cylinder]:
    """
    Hand over `quantity` FULL cylinders of a type to a customer (SALE).

    Oldest registered stock goes first.

    Raises:
        ValidationError: not enough FULL cylinders of the type
    """
    cylinders = (
        lock_for_update(
            db.session.query(Cylinder)
            .filter_by(cylinder_type=cylinder_type, current_status=FULL)
            .order_by(Cylinder.id.asc())
        )
        .limit(quantity)
        .all()
    )
    if len(cylinders) < quantity:
        raise ValidationError(
            f"Insufficient FULL {cylinder_type} stock: requested {quantity}, available {len(cylinders)}"
        )

    event = CylinderEvent(
        event_type=CylinderEventType.SALE.value,
        customer_id=customer_id,
        b2c_customer_id=b2c_customer_id,
    )
    for cylinder in cylinders:
        move_cylinder(
            cylinder,
            event,
            b2b_transaction_id=b2b_transaction_id,
            b2c_transaction_id=b2c_transaction_id,
            user_id=user_id,
        )
    return cylinders


def collect_customer_cylinders(
    cylinder_type: str,
    quantity: int,
    event: CylinderEvent,
    *,
    customer_id: int | None = None,
    b2c_customer_id: int | None = None,
    b2b_transaction_id: int | None = None,
    b2c_transaction_id: int | None = None,
    user_id: int | None = None,
) -> list[Cylinder]:
    """
    Bring up to `quantity` of a customer's cylinders back (RETURN_EMPTY / BUYBACK).

    Customers can return cylinders that were never tracked individually, so a
    shortfall is logged and the rest of the posting goes ahead.
    """
    query = db.session.query(Cylinder).filter_by(cylinder_type=cylinder_type, current_status=WITH_CUSTOMER)
    if customer_id is not None:
        query = query.filter(Cylinder.customer_id == customer_id)
    else:
        query = query.filter(Cylinder.b2c_customer_id == b2c_customer_id)

    cylinders = lock_for_update(query.order_by(Cylinder.id.asc())).limit(quantity).all()
    if len(cylinders) < quantity:
        current_app.logger.warning(
            "Customer %s returned %s %s cylinders but only %s are tracked with them",
            customer_id if customer_id is not None else f"b2c:{b2c_customer_id}",
            quantity,
            cylinder_type,
            len(cylinders),
        )

    for cylinder in cylinders:
        move_cylinder(
            cylinder,
            event,
            b2b_transaction_id=b2b_transaction_id,
            b2c_transaction_id=b2c_transaction_id,
            user_id=user_id,
        )
    return cylinders


def restore_transaction_cylinders(
    *,
    b2b_transaction_id: int | None = None,
    b2c_transaction_id: int | None = None,
    user_id: int | None = None,
) -> int:
    """
    Put back every cylinder a transaction moved (used by void).

    Refuses when any of those cylinders has moved since; checks all of them
    before restoring any.

    Returns:
        Number of cylinders restored
    """
    query = db.session.query(CylinderMovement).filter_by(is_reversal=False)
    if b2b_transaction_id is not None:
        query = query.filter(CylinderMovement.b2b_transaction_id == b2b_transaction_id)
    else:
        query = query.filter(CylinderMovement.b2c_transaction_id == b2c_transaction_id)
    movements = query.order_by(CylinderMovement.id.desc()).all()

    cylinders = {}
    for movement in movements:
        cylinder = lock_for_update(db.session.query(Cylinder).filter_by(id=movement.cylinder_id)).first()
        # Still where this transaction left it (a voided later move counts as undone)
        if cylinder.current_status != movement.to_status or cylinder.location() != movement.to_location:
            raise ValidationError(
                f"Cylinder {cylinder.code} has moved since this transaction; cannot void"
            )
        cylinders[movement.id] = cylinder

    for movement in movements:
        cylinder = cylinders[movement.id]
        from_status = cylinder.current_status
        from_location = cylinder.location()
        from_remaining_kg = cylinder.remaining_kg

        cylinder.current_status = movement.from_status
        cylinder.remaining_kg = movement.from_remaining_kg
        previous = movement.from_location or {}
        for field in LOCATION_FIELDS:
            setattr(cylinder, field, previous.get(field))

        _record_movement(
            cylinder,
            movement.event_type,
            from_status=from_status,
            from_location=from_location,
            from_remaining_kg=from_remaining_kg,
            b2b_transaction_id=b2b_transaction_id,
            b2c_transaction_id=b2c_transaction_id,
            is_reversal=True,
            user_id=user_id,
            note=f"Reversal of movement {movement.id}",
        )
    return len(movements)


# =============================================================================
# QUERIES
# =============================================================================

def get_cylinder(code: str) -> Cylinder:
    cylinder = db.session.query(Cylinder).filter_by(code=(code or "").strip().upper()).first()
    if cylinder is None:
        raise NotFoundError(f"Cylinder '{code}' not found")
    return cylinder


def list_cylinders(
    *,
    status: str | None = None,
    cylinder_type: str | None = None,
    store_id: int | None = None,
    vehicle_id: int | None = None,
) -> list[Cylinder]:
    query = db.session.query(Cylinder)
    if status:
        query = query.filter(Cylinder.current_status == status)
    if cylinder_type:
        query = query.filter(Cylinder.cylinder_type == cylinder_type)
    if store_id is not None:
        query = query.filter(Cylinder.store_id == store_id)
    if vehicle_id is not None:
        query = query.filter(Cylinder.vehicle_id == vehicle_id)
    return query.order_by(Cylinder.code.asc()).all()


def list_movements(code: str) -> list[CylinderMovement]:
    cylinder = get_cylinder(code)
    return (
        db.session.query(CylinderMovement)
        .filter_by(cylinder_id=cylinder.id)
        .order_by(CylinderMovement.id.asc())
        .all()
    )
