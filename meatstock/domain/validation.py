"""
Centralized validation rules for stock records.

Provides validation functions for quantities, lot numbers and dates.
Quantities are kg figures normalized to gram precision.
"""
import math
from datetime import date
from typing import Optional, Tuple

from .errors import InvalidQuantity

QTY_PRECISION = 3  # decimal places kept on every quantity (grams)
QTY_EPSILON = 10 ** -(QTY_PRECISION + 1)


def normalize_qty(value) -> float:
    """
    Coerce a quantity to a float rounded to QTY_PRECISION.

    Raises:
        InvalidQuantity: If value is not a finite number
    """
    if isinstance(value, bool):
        raise InvalidQuantity(f"Quantity must be a number, got {value!r}")
    try:
        qty = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidQuantity(f"Quantity must be a number, got {value!r}") from e
    if math.isnan(qty) or math.isinf(qty):
        raise InvalidQuantity(f"Quantity must be finite, got {value!r}")
    qty = round(qty, QTY_PRECISION)
    # Avoid -0.0 leaking into storage and reports
    return qty + 0.0


def is_zero(qty: float) -> bool:
    """True if qty is zero at gram precision."""
    return abs(qty) < QTY_EPSILON


def validate_quantity(
    qty,
    allow_negative: bool = False,
    allow_zero: bool = False,
    max_val: Optional[float] = None,
    what: str = "Quantity",
) -> Tuple[bool, str]:
    """
    Validate quantity value.

    Args:
        qty: Quantity to validate
        allow_negative: Whether negative values are allowed
        allow_zero: Whether zero is allowed
        max_val: Maximum allowed value (inclusive)
        what: Label used in the error message

    Returns:
        (is_valid, error_message)
    """
    try:
        value = normalize_qty(qty)
    except InvalidQuantity as e:
        return False, str(e)

    if not allow_negative and value < 0:
        return False, f"{what} cannot be negative (got {value})"

    if not allow_zero and is_zero(value):
        return False, f"{what} must be greater than 0 (got {value})"

    if max_val is not None and value > max_val:
        return False, f"{what} cannot exceed {max_val} (got {value})"

    return True, ""


def require_positive(qty, what: str = "Quantity") -> float:
    """
    Normalize qty and require it to be strictly positive.

    Raises:
        InvalidQuantity: If qty <= 0 or not a number
    """
    ok, msg = validate_quantity(qty, what=what)
    if not ok:
        raise InvalidQuantity(msg)
    return normalize_qty(qty)


def validate_lot_number(lot_number: Optional[str]) -> Tuple[bool, str]:
    """
    Validate lot number format.

    Lot numbers are human-meaningful codes such as LOT-2025-09-26-12-7QXA.
    """
    if not lot_number or not lot_number.strip():
        return False, "Lot number cannot be empty"

    if len(lot_number) > 64:
        return False, "Lot number cannot exceed 64 characters"

    if any(c.isspace() for c in lot_number):
        return False, "Lot number cannot contain whitespace"

    return True, ""


def validate_expiry(expiry_date: Optional[date], receipt_date: date) -> Tuple[bool, str]:
    """
    Validate an expiry date against the receipt date.

    A missing expiry date means the lot never expires.
    """
    if expiry_date is None:
        return True, ""

    if expiry_date < receipt_date:
        return False, "Expiry date cannot be before receipt date"

    return True, ""
