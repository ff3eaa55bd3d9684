from __future__ import annotations
from datetime import datetime
from stockledger.time_utils import parse_iso_datetime, to_naive_utc

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError, InvalidItem


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

PAYMENT_METHODS = (
    "cash",
    "card",
    "bank_transfer",
    "check",
    "mobile_payment",
    "split",
    "other",
)

SALE_ADJUSTMENT_TYPES = ("sale", "sale_cancel", "sale_return")
MANUAL_ADJUSTMENT_TYPES = ("purchase", "loss", "correction")
ADJUSTMENT_TYPES = SALE_ADJUSTMENT_TYPES + MANUAL_ADJUSTMENT_TYPES


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


def _coerce_value(col, value: Any, error_cls=ValidationError):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise error_cls(f"{col.key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise error_cls(f"{col.key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise error_cls(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise error_cls(f"{col.key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise error_cls(f"{col.key} must be an integer, not a decimal")
        raise error_cls(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return to_naive_utc(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise error_cls(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise error_cls(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise error_cls(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
    error_cls=ValidationError,
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
        raise error_cls("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise error_cls(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise error_cls(f"Field not allowed: {k}")
        if k not in cols:
            raise error_cls(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise error_cls(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw, error_cls)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise error_cls(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise error_cls(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_money(patch: dict, key: str, error_cls=ValidationError) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0:
        raise error_cls(f"{key} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise error_cls(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_money(patch, "cost_price_cents")
    _check_money(patch, "selling_price_cents")

    if patch.get("stock_quantity") is not None and patch["stock_quantity"] < 0:
        raise ValidationError("stock_quantity must be >= 0")
    if patch.get("min_stock_threshold") is not None and patch["min_stock_threshold"] < 0:
        raise ValidationError("min_stock_threshold must be >= 0")


def enforce_rules_sale_item(patch: dict, *, index: int) -> None:
    # Line quantity must be a positive count; money never negative
    quantity = patch.get("quantity")
    if quantity is None or quantity <= 0:
        raise InvalidItem(f"items[{index}].quantity must be > 0", details={"index": index})

    for key in ("unit_price_cents", "discount_amount_cents", "total_price_cents"):
        _check_money(patch, key, InvalidItem)


def enforce_rules_sale_header(patch: dict) -> None:
    method = patch.get("payment_method") or "cash"
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": method},
        )

    for key in (
        "subtotal_cents",
        "tax_amount_cents",
        "discount_amount_cents",
        "total_amount_cents",
        "amount_paid_cents",
        "card_amount_cents",
        "cash_amount_cents",
    ):
        _check_money(patch, key)

    has_split_amounts = (
        patch.get("card_amount_cents") is not None
        or patch.get("cash_amount_cents") is not None
    )
    if method == "split":
        if patch.get("card_amount_cents") is None or patch.get("cash_amount_cents") is None:
            raise ValidationError("split payments require card_amount_cents and cash_amount_cents")
    elif has_split_amounts:
        raise ValidationError("card_amount_cents/cash_amount_cents are only allowed for split payments")


def enforce_rules_stock_adjustment(quantity_change: int, adjustment_type: str) -> None:
    if adjustment_type in SALE_ADJUSTMENT_TYPES:
        raise ValidationError(
            f"adjustment_type '{adjustment_type}' is reserved for sale transactions"
        )
    if adjustment_type not in MANUAL_ADJUSTMENT_TYPES:
        raise ValidationError(
            f"adjustment_type must be one of: {', '.join(MANUAL_ADJUSTMENT_TYPES)}"
        )

    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise ValidationError("quantity_change must be an integer")
    if quantity_change == 0:
        raise ValidationError("quantity_change must be non-zero")

    # purchase adds stock, loss removes it; correction may go either way
    if adjustment_type == "purchase" and quantity_change < 0:
        raise ValidationError("quantity_change must be > 0 for purchase")
    if adjustment_type == "loss" and quantity_change > 0:
        raise ValidationError("quantity_change must be < 0 for loss")
