"""Coercion of query-string and JSON values for the store routes.

Every helper raises ``ValueError`` with a client-facing message; route
handlers turn that into a 400 ``bad_request``.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from flask import request

# Marks "key absent" in partial updates, where None means "clear the field".
_MISSING = object()

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_CENT = Decimal("0.01")


def _q(name: str, default: str | None = None) -> str | None:
    """Query parameter ``name``; empty strings count as absent."""
    raw = request.args.get(name)
    return default if raw in (None, "") else raw


def _parse_int(value: str | None, *, default: int, min_v: int, max_v: int) -> int:
    """Bounded integer from a query string (``limit``, ``offset`` and friends).

    Raises:
        ValueError: If value is not an integer or falls outside [min_v, max_v]
    """
    if value in (None, ""):
        return default
    try:
        n = int(str(value))
    except ValueError as exc:
        raise ValueError(f"Invalid integer value: {value!r}") from exc
    if not min_v <= n <= max_v:
        raise ValueError(f"Value {n} out of range [{min_v}, {max_v}]")
    return n


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _coerce_optional_text(value: Any) -> str | None:
    """Trimmed text, or None for missing and blank values."""
    if value is None:
        return None
    return str(value).strip() or None


def _require_text(payload: dict[str, Any], key: str) -> str:
    text = _coerce_optional_text(payload.get(key))
    if not text:
        raise ValueError(f"{key} is required")
    return text


def _as_int(value: Any, field_name: str) -> int:
    # bool is an int subclass; True must not become quantity 1.
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{field_name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer") from exc


def _coerce_positive_int(value: Any, *, field_name: str) -> int:
    """Quantities and ids: an integer greater than zero."""
    n = _as_int(value, field_name)
    if n <= 0:
        raise ValueError(f"{field_name} must be > 0")
    return n


def _coerce_non_negative_int(value: Any, *, field_name: str) -> int:
    """Display orders and offsets: an integer of at least zero."""
    n = _as_int(value, field_name)
    if n < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return n


def _coerce_optional_id(value: Any, *, field_name: str) -> int | None:
    """Parse an optional foreign-key id (``None``/empty means unset)."""
    if value is None or value == "":
        return None
    return _coerce_positive_int(value, field_name=field_name)


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"{field_name} must be a number") from exc
    if not amount.is_finite():
        raise ValueError(f"{field_name} must be a number")
    return amount


def _coerce_money(value: Any, *, field_name: str, positive: bool = False) -> Decimal:
    """Price in the shop currency, quantized to cents.

    Args:
        value: Number or numeric string
        field_name: Field name for error messages
        positive: Require > 0 instead of >= 0 (bundle prices)

    Raises:
        ValueError: If value is missing, not finite or below the allowed minimum
    """
    if value is None or isinstance(value, bool) or value == "":
        raise ValueError(f"{field_name} must be a number")
    amount = _to_decimal(value, field_name)
    if positive and amount <= 0:
        raise ValueError(f"{field_name} must be > 0")
    if amount < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return amount.quantize(_CENT)


def _coerce_signed_money(value: Any, *, field_name: str) -> Decimal:
    """Price modifier: may be negative, missing means zero."""
    if value is None or isinstance(value, bool) or value == "":
        return Decimal("0.00")
    return _to_decimal(value, field_name).quantize(_CENT)
