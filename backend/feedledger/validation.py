from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import InvalidInputError


# Maximum single amount: 9,999,999,999.99 (999,999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999_999

MAX_QUANTITY = 1_000_000

# Buy-back weights are recorded to the gram
WEIGHT_PLACES = Decimal("0.001")


def parse_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints (not bool) and plain digit strings with an optional leading
    minus. Rejects floats, decimals and scientific notation.
    """
    if value is None:
        raise InvalidInputError(f"{field} is required")

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidInputError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise InvalidInputError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise InvalidInputError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise InvalidInputError(f"{field} must be an integer")

    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return int(value)

    if isinstance(value, float):
        raise InvalidInputError(f"{field} must be an integer, not a decimal")

    raise InvalidInputError(f"{field} must be an integer")


def parse_amount_cents(value: Any, field: str = "amount_cents") -> int:
    """Positive money amount in cents."""
    cents = parse_int(value, field)
    if cents <= 0:
        raise InvalidInputError(f"{field} must be a positive amount")
    if cents > MAX_AMOUNT_CENTS:
        raise InvalidInputError(f"{field} exceeds the maximum allowed amount")
    return cents


def parse_price_cents(value: Any, field: str = "price_cents") -> int:
    """Line price in cents; zero is allowed (free or sample lines)."""
    cents = parse_int(value, field)
    if cents < 0:
        raise InvalidInputError(f"{field} cannot be negative")
    if cents > MAX_AMOUNT_CENTS:
        raise InvalidInputError(f"{field} exceeds the maximum allowed amount")
    return cents


def parse_quantity(value: Any, field: str = "quantity") -> int:
    qty = parse_int(value, field)
    if qty <= 0:
        raise InvalidInputError(f"{field} must be greater than zero")
    if qty > MAX_QUANTITY:
        raise InvalidInputError(f"{field} is unreasonably large")
    return qty


def parse_weight_kg(value: Any, field: str = "weight_kg") -> Decimal:
    """
    Positive weight in kilograms, at most three decimal places.

    Floats are accepted via their shortest repr so 12.5 becomes Decimal("12.5").
    """
    if value is None:
        raise InvalidInputError(f"{field} is required")
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be a number")

    try:
        if isinstance(value, float):
            weight = Decimal(repr(value))
        elif isinstance(value, (int, Decimal)):
            weight = Decimal(value)
        elif isinstance(value, str):
            weight = Decimal(value.strip())
        else:
            raise InvalidInputError(f"{field} must be a number")
    except InvalidOperation:
        raise InvalidInputError(f"{field} must be a number")

    if not weight.is_finite():
        raise InvalidInputError(f"{field} must be a finite number")
    if weight <= 0:
        raise InvalidInputError(f"{field} must be greater than zero")
    if weight != weight.quantize(WEIGHT_PLACES):
        raise InvalidInputError(f"{field} supports at most 3 decimal places")
    return weight.quantize(WEIGHT_PLACES)


def multiply_cents(weight: Decimal, unit_cents: int) -> int:
    """weight * unit price, rounded half-up to the nearest cent."""
    total = (weight * Decimal(unit_cents)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(total)


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field} is required")
    text = value.strip()
    if len(text) > max_length:
        raise InvalidInputError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"{field} must be a string")
    text = value.strip()
    if not text:
        return None
    if len(text) > max_length:
        raise InvalidInputError(f"{field} must be at most {max_length} characters")
    return text


def format_cents(cents: int, label: str = "TK") -> str:
    """1234 -> 'TK 12.34'; negative amounts keep their sign."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{label} {whole}.{frac:02d}"
