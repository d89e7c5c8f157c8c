from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_PRICE_AMOUNT = Decimal(MAX_PRICE_CENTS).scaleb(-2)

# Largest value an INTEGER column holds on every supported backend
MAX_INTEGER = 2_147_483_647

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


def parse_money_cents(value: Any, *, field: str = "price") -> int:
    """
    Convert a Shopify money value to integer cents.

    Shopify sends decimal strings ("15.00"); JSON numbers are accepted too.
    Conversion goes through Decimal so "0.1" + "0.2" style drift never
    reaches the ledger. Fractions of a cent round half-up.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")

    if isinstance(value, float):
        value = repr(value)

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a decimal amount")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")

    # Compared before any arithmetic: an exponent like "1e30" overflows quantize
    if amount > MAX_PRICE_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS} cents")

    try:
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a decimal amount")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS} cents")
    return cents


def parse_positive_int(value: Any, *, field: str) -> int:
    """Strict positive integer: rejects bools, floats with fractions, and scientific notation."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer")

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        parsed = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        # isdigit() also accepts superscripts and other non-ASCII digits
        if not (stripped.isascii() and stripped.isdigit()):
            raise ValidationError(f"{field} must be a positive integer")
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be a positive integer")
    else:
        raise ValidationError(f"{field} must be a positive integer")

    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    if parsed > MAX_INTEGER:
        raise ValidationError(f"{field} exceeds maximum of {MAX_INTEGER}")
    return parsed


def parse_flag(value: Any, *, default: bool = False) -> bool:
    """Shopify line-item property values are strings; accept the usual spellings."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return default


def parse_currency_code(value: Any, *, default: str = "USD") -> str:
    if value is None or value == "":
        return default
    if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
        raise ValidationError("currency code must be a 3-letter ISO code")
    return value.strip().upper()


def optional_str(value: Any, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:max_length]
