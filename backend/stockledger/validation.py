from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum line price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Largest quantity accepted on a single checkout line
MAX_LINE_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


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
    # bool is an int subclass; reject it along with floats and "1e3"-style strings
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # JSON and anything else: leave as-is for the rule functions
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

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def normalize_line_item(item: Any, index: int) -> dict:
    """
    Normalize one checkout line to {product_id, quantity, price}.

    Legacy clients send "qty" instead of "quantity"; a missing quantity
    means 1.
    """
    if not isinstance(item, dict):
        raise ValidationError(f"items[{index}] must be an object")

    if item.get("product_id") is None:
        raise ValidationError(f"items[{index}].product_id is required")
    product_id = _coerce_int(f"items[{index}].product_id", item["product_id"])

    raw_qty = item.get("quantity", item.get("qty"))
    quantity = 1 if raw_qty is None else _coerce_int(f"items[{index}].quantity", raw_qty)
    if quantity <= 0:
        raise ValidationError(f"items[{index}].quantity must be > 0")
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"items[{index}].quantity cannot exceed {MAX_LINE_QUANTITY}")

    raw_price = item.get("price")
    price = 0 if raw_price is None else _coerce_int(f"items[{index}].price", raw_price)
    if price < 0:
        raise ValidationError(f"items[{index}].price must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"items[{index}].price cannot exceed {MAX_PRICE_CENTS}")

    normalized = dict(item)
    normalized.pop("qty", None)
    normalized.update(product_id=product_id, quantity=quantity, price=price)
    return normalized


def enforce_rules_checkout(patch: dict) -> None:
    """Checkout needs a non-empty items list; each line is normalized in place."""
    items = patch.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    patch["items"] = [normalize_line_item(item, i) for i, item in enumerate(items)]
