from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from optica.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta


# discount_percentage bounds: (0, 100], two decimal places
MIN_DISCOUNT_PERCENTAGE = Decimal("0.01")
MAX_DISCOUNT_PERCENTAGE = Decimal("100")
PERCENTAGE_SCALE = 2

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., request already decided)."""


class AuthorizationError(Exception):
    """403-level: the actor may not view or mutate this resource."""


class NotFoundError(LookupError):
    """404-level: referenced row does not exist."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - max_lengths: per-field length caps for Text columns
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    max_lengths: dict[str, int] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_decimal(value: Any, field: str) -> Decimal:
    """Parse JSON numbers and numeric strings into an exact Decimal."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        # str() keeps the shortest repr of a float (10.5 -> "10.5")
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", field)
    else:
        raise ValidationError(f"{field} must be a number", field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field)
    return result


def coerce_int(value: Any, field: str) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field)
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field)
    raise ValidationError(f"{field} must be an integer", field)


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValidationError(f"{field} must be true or false", field)


def coerce_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)", field)
        if parsed is None:
            raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)", field)
        return parsed
    raise ValidationError(f"{field} must be a date", field)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        return coerce_bool(value, col.key)

    # Numeric before anything else that could swallow it
    if isinstance(coltype, Numeric):
        return coerce_decimal(value, col.key)

    # Dates (accept "YYYY-MM-DD")
    if isinstance(coltype, Date):
        return coerce_date(value, col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string", col.key)
        return value.strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing[0])

    cols = _columns_by_key(model)
    max_lengths = policy.max_lengths or {}

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", k)

        # Max length check for String(n) and policy caps on Text
        if isinstance(val, str):
            limit = max_lengths.get(k)
            if limit is None and isinstance(col.type, String):
                limit = col.type.length
            if limit and len(val) > limit:
                raise ValidationError(f"{k} exceeds max length {limit}", k)

        patch[k] = val

    return patch


def validate_discount_percentage(value: Any) -> Decimal:
    """
    discount_percentage must lie in (0, 100] with at most two decimals.

    Runs on every write (create and update), not only at the HTTP edge.
    """
    if value is None:
        raise ValidationError("discount_percentage is required", "discount_percentage")
    pct = coerce_decimal(value, "discount_percentage")
    if pct <= 0:
        raise ValidationError("discount_percentage must be greater than 0", "discount_percentage")
    if pct > MAX_DISCOUNT_PERCENTAGE:
        raise ValidationError(
            f"discount_percentage cannot exceed {MAX_DISCOUNT_PERCENTAGE}", "discount_percentage"
        )
    if -pct.as_tuple().exponent > PERCENTAGE_SCALE and pct != pct.quantize(MIN_DISCOUNT_PERCENTAGE):
        raise ValidationError(
            f"discount_percentage supports at most {PERCENTAGE_SCALE} decimal places",
            "discount_percentage",
        )
    return pct.quantize(MIN_DISCOUNT_PERCENTAGE)


def validate_notes(value: Any, *, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    stripped = value.strip()
    if len(stripped) > max_length:
        raise ValidationError(f"{field} must not exceed {max_length} characters", field)
    return stripped or None
