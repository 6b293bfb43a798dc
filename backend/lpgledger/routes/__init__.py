# Overview: Shared request parsing and error mapping for the API blueprints.

from __future__ import annotations

from flask import jsonify

from ..validation import ValidationError, NotFoundError, ConflictError
from ..services.concurrency import ConcurrencyConflictError
from lpgledger.time_utils import parse_iso_date, parse_clock_time


# Errors a route answers itself; anything else is logged and becomes a 500
DOMAIN_ERRORS = (ValidationError, ConflictError, ConcurrencyConflictError)


def domain_error_response(exc: Exception):
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, (ConflictError, ConcurrencyConflictError)):
        status = 409
    else:
        status = 400
    return jsonify({"error": str(exc)}), status


def date_arg(value, key: str):
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{key} must be an ISO date (YYYY-MM-DD)")


def time_arg(value, key: str):
    try:
        return parse_clock_time(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{key} must be a time (HH:MM or HH:MM:SS)")


def int_arg(args, key: str, default: int) -> int:
    raw = args.get(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{key} must be an integer")


def flag_arg(args, key: str, default: bool) -> bool:
    raw = args.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
