"""
Cylinder sizes sold by the company.

The nominal fill (kg) drives pricing and buyback; the due counter names the
Customer column that tracks unreturned cylinders of that size. Sizes without a
counter (6kg, 30kg) are sold but not tracked as B2B dues.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .validation import ValidationError


# Plant prices are quoted for the 11.8kg domestic cylinder
REFERENCE_CYLINDER_KG = Decimal("11.8")


@dataclass(frozen=True)
class CylinderTypeSpec:
    code: str
    label: str
    nominal_kg: Decimal
    due_counter: str | None
    security_price_cents: int


CYLINDER_TYPES: dict[str, CylinderTypeSpec] = {
    spec.code: spec
    for spec in (
        CylinderTypeSpec("CYLINDER_6KG", "Cylinder (6kg)", Decimal("6"), None, 2_000_000),
        CylinderTypeSpec("DOMESTIC_11_8KG", "Domestic (11.8kg)", Decimal("11.8"), "domestic_due", 3_000_000),
        CylinderTypeSpec("STANDARD_15KG", "Standard (15kg)", Decimal("15"), "standard_due", 5_000_000),
        CylinderTypeSpec("CYLINDER_30KG", "Cylinder (30kg)", Decimal("30"), None, 7_000_000),
        CylinderTypeSpec("COMMERCIAL_45_4KG", "Commercial (45.4kg)", Decimal("45.4"), "commercial_due", 9_000_000),
    )
}

DUE_COUNTERS = ("domestic_due", "standard_due", "commercial_due")

# Sizes shown on a customer price quote
QUOTED_TYPES = ("DOMESTIC_11_8KG", "STANDARD_15KG", "COMMERCIAL_45_4KG")


def get_cylinder_type(code: str | None) -> CylinderTypeSpec:
    if not code or code not in CYLINDER_TYPES:
        raise ValidationError(
            f"Invalid cylinder type '{code}'. Must be one of: {', '.join(CYLINDER_TYPES)}"
        )
    return CYLINDER_TYPES[code]
