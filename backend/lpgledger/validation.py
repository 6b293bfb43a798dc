from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Maximum money value: 9,999,999,999.99 (999,999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(ValidationError):
    """404-level: referenced entity does not exist."""


class ConflictError(ValueError):
    """409-level business rule conflict."""


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion for API input.

    Rejects bools, floats, decimals-in-strings and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_decimal(key: str, value: Any) -> Decimal:
    """
    Decimal coercion for quantities such as kg and rates.

    Floats go through str() so 7.5 becomes Decimal("7.5"), not its binary expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{key} must be a number")
    else:
        raise ValidationError(f"{key} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    return result


def require_fields(payload: dict, *keys: str) -> None:
    missing = [k for k in keys if payload.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return coerce_int(key, value)


def optional_decimal(payload: dict, key: str) -> Decimal | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return coerce_decimal(key, value)


def enforce_amount_cents(key: str, value: int, *, allow_zero: bool = True) -> int:
    """Range checks for money stored in minor units."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{key} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")
    return value


def enforce_quantity(key: str, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if value <= 0:
        raise ValidationError(f"{key} must be > 0")
    return value
