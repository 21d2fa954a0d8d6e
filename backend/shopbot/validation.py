# Overview: Payload validation against model metadata plus small domain rules.

from __future__ import annotations
from datetime import date, datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_date, parse_iso_datetime


# Maximum amount: 9,999,999,999 TZS
# Prevents overflow and obviously mistyped amounts
MAX_AMOUNT_TZS = 9_999_999_999

ORDER_STATUSES = ("pending", "preparing", "out_for_delivery", "delivered", "cancelled")
DELIVERY_MODES = ("delivery", "pickup")
PAYMENT_MODES = ("prepay", "cod")
DISCOUNT_TYPES = ("percentage", "fixed")
INCOME_STATUSES = ("pending", "approved", "rejected")
INCOME_SOURCES = ("order", "manual")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be a date (YYYY-MM-DD)")
            if d is None:
                raise ValidationError(f"{col.key} must be a date (YYYY-MM-DD)")
            return d
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_amount(patch: dict, key: str, *, allow_zero: bool = True) -> None:
    if key not in patch or patch[key] is None:
        return
    amount = patch[key]
    if amount < 0 or (not allow_zero and amount == 0):
        raise ValidationError(f"{key} must be {'>= 0' if allow_zero else '> 0'}")
    if amount > MAX_AMOUNT_TZS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_TZS:,} TZS")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_amount(patch, "price_tzs")
    if patch.get("stock_qty") is not None and patch["stock_qty"] < 0:
        raise ValidationError("stock_qty must be >= 0")

    dtype = patch.get("discount_type")
    if dtype is not None and dtype not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")
    amount = patch.get("discount_amount")
    if amount is not None:
        if amount < 0:
            raise ValidationError("discount_amount must be >= 0")
        if dtype == "percentage" and amount > 100:
            raise ValidationError("percentage discount cannot exceed 100")

    starts, ends = patch.get("discount_starts_at"), patch.get("discount_ends_at")
    if starts is not None and ends is not None and ends < starts:
        raise ValidationError("discount_ends_at must be after discount_starts_at")


def enforce_rules_expense(patch: dict) -> None:
    _check_amount(patch, "amount_tzs", allow_zero=False)


def enforce_rules_income(patch: dict) -> None:
    _check_amount(patch, "amount_tzs", allow_zero=False)
    status = patch.get("status")
    if status is not None and status not in INCOME_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(INCOME_STATUSES)}")
    source = patch.get("source")
    if source is not None and source not in INCOME_SOURCES:
        raise ValidationError(f"source must be one of {', '.join(INCOME_SOURCES)}")


def enforce_rules_order_patch(patch: dict) -> None:
    mode = patch.get("delivery_mode")
    if mode is not None and mode not in DELIVERY_MODES:
        raise ValidationError(f"delivery_mode must be one of {', '.join(DELIVERY_MODES)}")
    pmode = patch.get("payment_mode")
    if pmode is not None and pmode not in PAYMENT_MODES:
        raise ValidationError(f"payment_mode must be one of {', '.join(PAYMENT_MODES)}")
    _check_amount(patch, "fee_tzs")
    _check_amount(patch, "total_tzs")
    if patch.get("km") is not None and patch["km"] < 0:
        raise ValidationError("km must be >= 0")
