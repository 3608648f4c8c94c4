"""Utility helpers for normalising captured field values."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

_TRUE_TEXT = {"1", "true", "yes", "y", "on"}
_FALSE_TEXT = {"0", "false", "no", "n", "off", ""}


def normalize_price(value: Any) -> str | None:
    """Return a decimal price string, or None when *value* is not a number."""

    if value is None or isinstance(value, bool):
        return None

    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return text


def sale_price(price_info: Iterable[Any], sale_type: int, default: str = "0") -> str:
    """Pick the price of the entry whose ``priceType`` marks the sale price."""

    for entry in price_info:
        if not isinstance(entry, dict):
            continue
        try:
            entry_type = int(entry.get("priceType"))
        except (TypeError, ValueError):
            continue
        if entry_type != sale_type:
            continue
        price = normalize_price(entry.get("price"))
        return price if price is not None else default
    return default


def coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def coerce_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    lowered = str(value).strip().lower()
    if lowered in _TRUE_TEXT:
        return True
    if lowered in _FALSE_TEXT:
        return False
    return None


def normalize_id(value: Any) -> str | None:
    """Return an id as a trimmed string; numbers are accepted as-is."""

    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


__all__ = ["coerce_bool", "coerce_int", "normalize_id", "normalize_price", "sale_price"]
