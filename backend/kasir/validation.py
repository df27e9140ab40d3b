from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text


# Amounts are whole currency units; this keeps them inside a 32-bit column
MAX_AMOUNT = 2_000_000_000


class ValidationError(ValueError):
    """Input problem; nothing was written."""


class ConflictError(ValueError):
    """Business rule conflict (e.g., duplicate SKU, referenced record)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a caller may write, and which must be present on create.

    Anything not listed in `writable` (ids, version counters, timestamps,
    is_archived) can only be changed by the services themselves.
    """
    writable: frozenset[str]
    required: frozenset[str] = field(default_factory=frozenset)


PRODUCT_POLICY = ModelValidationPolicy(
    writable=frozenset({"name", "sku", "price", "stock", "min_stock", "category", "description"}),
    required=frozenset({"name", "price"}),
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable=frozenset({"name", "phone", "email", "address", "photo_path"}),
    required=frozenset({"name"}),
)


def _as_whole_number(key: str, value: Any) -> int:
    """Accept ints and digit strings; refuse bools, floats, decimals and exponents."""
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a whole number")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        body = text[1:] if text.startswith("-") else text
        if body.isascii() and body.isdigit():
            return int(text)
    raise ValidationError(f"{key} must be a whole number, got {value!r}")


def _normalize(column, value: Any) -> Any:
    if isinstance(column.type, Integer):
        return _as_whole_number(column.key, value)
    if isinstance(column.type, Boolean):
        return bool(value)
    if isinstance(column.type, (String, Text)):
        text = str(value).strip()
        limit = getattr(column.type, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{column.key} is longer than {limit} characters")
        return text
    return value


def validate_payload(*, model, payload: dict | None, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Clean a field dict for `model` using its column metadata and `policy`.

    partial=False is create: every required field must be present and
    non-blank. partial=True is an edit: only the given keys are checked.
    Returns a new dict holding only writable, normalized values.
    """
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    unknown = sorted(k for k in payload if k not in policy.writable)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    if not partial:
        missing = sorted(policy.required - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    cleaned: dict = {}
    for key, raw in payload.items():
        column = columns[key]
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue
        value = _normalize(column, raw)
        if key in policy.required and value == "":
            raise ValidationError(f"{key} cannot be blank")
        cleaned[key] = value
    return cleaned


def enforce_rules_product(patch: dict) -> None:
    """Range rules for product numbers; a blank SKU becomes NULL."""
    price = patch.get("price")
    if price is not None and not 0 <= price <= MAX_AMOUNT:
        raise ValidationError(f"price must be between 0 and {MAX_AMOUNT:,}")
    for key in ("stock", "min_stock"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    # NULL SKUs never collide in the unique index; empty strings would
    if patch.get("sku") == "":
        patch["sku"] = None
