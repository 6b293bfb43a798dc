# Overview: Service-layer operations for pricing; plant prices, margin categories and price derivation.

"""
Pricing Engine

Price derivation:
1. Cost per kg = plant price of the 11.8kg reference cylinder / 11.8
2. Unit price per kg = cost per kg + category margin per kg
3. Cylinder price = unit price per kg x nominal kg of the cylinder

ROUNDING:
All arithmetic is done on unrounded Decimals. Rounding (half-up) happens once,
when a price is invoiced or displayed, so multi-item bills do not accumulate
rounding error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import PlantPrice, MarginCategory, Customer, B2CCustomer
from ..cylinder_types import REFERENCE_CYLINDER_KG, QUOTED_TYPES, get_cylinder_type
from ..enums import CustomerType
from ..validation import ValidationError, NotFoundError, enforce_amount_cents
from lpgledger.time_utils import today
from .concurrency import atomic


CENTS = Decimal(100)


class InvalidPricingInputError(ValidationError):
    """Negative pricing input or inactive margin category."""


class PricingConfigurationError(ValidationError):
    """Pricing data needed for a quote is missing (no plant price, no category)."""


@dataclass(frozen=True)
class PriceQuote:
    plant_price_118kg: Decimal
    margin_per_kg: Decimal
    target_cylinder_kg: Decimal
    cost_per_kg: Decimal
    unit_price_per_kg: Decimal
    cylinder_price: Decimal

    def invoice_price_cents(self, places: int = 0) -> int:
        """Cylinder price rounded half-up to `places` decimals, in cents."""
        return to_cents(round_half_up(self.cylinder_price, places))

    def to_dict(self) -> dict:
        return {
            "plant_price_118kg": str(self.plant_price_118kg),
            "margin_per_kg": str(self.margin_per_kg),
            "target_cylinder_kg": str(self.target_cylinder_kg),
            "cost_per_kg": str(round_half_up(self.cost_per_kg)),
            "unit_price_per_kg": str(round_half_up(self.unit_price_per_kg)),
            "cylinder_price": str(round_half_up(self.cylinder_price)),
            "invoice_price_cents": self.invoice_price_cents(),
        }


# =============================================================================
# ROUNDING
# =============================================================================

def round_half_up(value: Decimal, places: int = 2) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Major units -> integer minor units, rounded half-up."""
    return int((Decimal(value) * CENTS).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return Decimal(cents) / CENTS


# =============================================================================
# PRICE DERIVATION (pure)
# =============================================================================

def calculate_prices(
    plant_price_118kg: Decimal,
    margin_per_kg: Decimal,
    target_cylinder_kg: Decimal,
) -> PriceQuote:
    """
    Derive per-kg and per-cylinder prices.

    A zero plant price is accepted (free gas is not modeled, but not rejected).

    Raises:
        InvalidPricingInputError: any input negative, or target kg zero
    """
    plant_price_118kg = Decimal(plant_price_118kg)
    margin_per_kg = Decimal(margin_per_kg)
    target_cylinder_kg = Decimal(target_cylinder_kg)

    if plant_price_118kg < 0:
        raise InvalidPricingInputError("plant_price_118kg must be >= 0")
    if margin_per_kg < 0:
        raise InvalidPricingInputError("margin_per_kg must be >= 0")
    if target_cylinder_kg <= 0:
        raise InvalidPricingInputError("target_cylinder_kg must be > 0")

    cost_per_kg = plant_price_118kg / REFERENCE_CYLINDER_KG
    unit_price_per_kg = cost_per_kg + margin_per_kg

    return PriceQuote(
        plant_price_118kg=plant_price_118kg,
        margin_per_kg=margin_per_kg,
        target_cylinder_kg=target_cylinder_kg,
        cost_per_kg=cost_per_kg,
        unit_price_per_kg=unit_price_per_kg,
        cylinder_price=unit_price_per_kg * target_cylinder_kg,
    )


def quote_for_category(
    category: MarginCategory,
    plant_price_118kg: Decimal,
    target_cylinder_kg: Decimal,
) -> PriceQuote:
    if not category.is_active:
        raise InvalidPricingInputError(f"Margin category '{category.name}' is inactive")
    return calculate_prices(plant_price_118kg, from_cents(category.margin_per_kg_cents), target_cylinder_kg)


# =============================================================================
# PLANT PRICES
# =============================================================================

def set_plant_price(
    price_cents: int,
    *,
    on_date: date | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> tuple[PlantPrice, bool]:
    """
    Upsert the plant price for a day (default: today).

    Returns:
        (price_row, created) - created is False when an existing day was overwritten
    """
    enforce_amount_cents("plant_price_118kg_cents", price_cents, allow_zero=False)
    target_date = on_date or today()

    def _op():
        price = db.session.query(PlantPrice).filter_by(date=target_date).first()
        if price:
            price.plant_price_118kg_cents = price_cents
            price.notes = notes
            return price, False

        price = PlantPrice(
            date=target_date,
            plant_price_118kg_cents=price_cents,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(price)
        db.session.flush()
        return price, True

    return atomic(_op)


def get_plant_price(on_date: date) -> PlantPrice | None:
    return db.session.query(PlantPrice).filter_by(date=on_date).first()


def get_effective_plant_price(on_date: date | None = None) -> PlantPrice:
    """
    The plant price in force on a day: that day's row, else the most recent earlier one.

    Raises:
        PricingConfigurationError: no plant price on or before the date
    """
    target_date = on_date or today()
    price = (
        db.session.query(PlantPrice)
        .filter(PlantPrice.date <= target_date)
        .order_by(PlantPrice.date.desc())
        .first()
    )
    if price is None:
        raise PricingConfigurationError(f"No plant price set on or before {target_date.isoformat()}")
    return price


def list_plant_prices(limit: int = 30) -> list[PlantPrice]:
    limit = max(1, min(limit, 365))
    return db.session.query(PlantPrice).order_by(PlantPrice.date.desc()).limit(limit).all()


# =============================================================================
# CUSTOMER QUOTES
# =============================================================================

def quote_customer_prices(
    customer_id: int,
    customer_type: str = CustomerType.B2B.value,
    *,
    on_date: date | None = None,
) -> dict:
    """
    Price every quoted cylinder size for a customer.

    Read-only; run it before opening a posting so the write window stays short.
    """
    if customer_type == CustomerType.B2B.value:
        customer = db.session.get(Customer, customer_id)
    elif customer_type == CustomerType.B2C.value:
        customer = db.session.get(B2CCustomer, customer_id)
    else:
        raise ValidationError(f"Invalid customer_type '{customer_type}'. Must be B2B or B2C")

    if customer is None:
        raise NotFoundError(f"{customer_type} customer {customer_id} not found")

    category = customer.margin_category
    if category is None:
        raise PricingConfigurationError("Customer margin category not assigned")

    plant_price = get_effective_plant_price(on_date)
    plant_price_118kg = from_cents(plant_price.plant_price_118kg_cents)

    prices = {}
    for code in QUOTED_TYPES:
        quote = quote_for_category(category, plant_price_118kg, get_cylinder_type(code).nominal_kg)
        prices[code] = quote.invoice_price_cents()

    # Per-kg figures do not depend on the size
    reference = quote_for_category(category, plant_price_118kg, REFERENCE_CYLINDER_KG)

    return {
        "customer": {"id": customer.id, "name": customer.name, "type": customer_type},
        "category": category.to_dict(),
        "plant_price": plant_price.to_dict(),
        "is_current": plant_price.date == (on_date or today()),
        "calculation": {
            "cost_per_kg": str(round_half_up(reference.cost_per_kg)),
            "unit_price_per_kg": str(round_half_up(reference.unit_price_per_kg)),
        },
        "final_prices_cents": prices,
    }


# =============================================================================
# MARGIN CATEGORIES
# =============================================================================

DEFAULT_CATEGORIES = {
    CustomerType.B2C.value: [
        ("All Homes", 6500, "Standard margin for all residential customers", 1),
    ],
    CustomerType.B2B.value: [
        ("1 & 2C Demand Weekly", 3200, "Small commercial customers with 1-2 cylinder weekly demand", 1),
        ("3C Demand Weekly", 2800, "Medium commercial customers with 3 cylinder weekly demand", 2),
        ("4C & above demand weekly", 2300, "Large commercial customers with 4+ cylinder weekly demand", 3),
        ("Majority 15kg Customers", 4500, "Commercial customers primarily using 15kg cylinders", 4),
        ("Special 15kg", 3500, "Special commercial customers with 15kg cylinder preference", 5),
    ],
}


def initialize_default_categories(customer_type: str = "ALL") -> tuple[int, int]:
    """
    Create or refresh the default margin categories. Safe to call repeatedly.

    Returns:
        (created, updated)
    """
    if customer_type == "ALL":
        types = [CustomerType.B2C.value, CustomerType.B2B.value]
    elif customer_type in DEFAULT_CATEGORIES:
        types = [customer_type]
    else:
        raise ValidationError(f"Invalid customer_type '{customer_type}'. Must be B2B, B2C or ALL")

    def _op():
        created = 0
        updated = 0
        for ctype in types:
            for name, margin_cents, description, sort_order in DEFAULT_CATEGORIES[ctype]:
                category = (
                    db.session.query(MarginCategory)
                    .filter_by(customer_type=ctype, name=name)
                    .first()
                )
                if category:
                    category.margin_per_kg_cents = margin_cents
                    category.description = description
                    category.sort_order = sort_order
                    category.is_active = True
                    updated += 1
                else:
                    db.session.add(MarginCategory(
                        name=name,
                        customer_type=ctype,
                        margin_per_kg_cents=margin_cents,
                        description=description,
                        sort_order=sort_order,
                        is_active=True,
                    ))
                    created += 1
        return created, updated

    return atomic(_op)


def list_margin_categories(customer_type: str | None = None, include_inactive: bool = False) -> list[MarginCategory]:
    query = db.session.query(MarginCategory)
    if customer_type:
        if customer_type not in DEFAULT_CATEGORIES:
            raise ValidationError(f"Invalid customer_type '{customer_type}'. Must be B2B or B2C")
        query = query.filter(MarginCategory.customer_type == customer_type)
    if not include_inactive:
        query = query.filter(MarginCategory.is_active.is_(True))
    return query.order_by(MarginCategory.customer_type.asc(), MarginCategory.sort_order.asc()).all()
