"""Decimal helpers for ledger quantities, prices and amounts."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from tour_finance.config import MONEY_QUANT, QTY_QUANT
from tour_finance.services.errors import ValidationError


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Coerce ``value`` to a finite Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. Booleans, NaN and infinities
    are rejected with a VALIDATION error naming ``field``.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite")
    return result


def non_negative(value: Any, field: str, quantum: Decimal) -> Decimal:
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(f"{field} must not be negative")
    return result.quantize(quantum, rounding=ROUND_HALF_UP)


def money(value: Any, field: str = "amount") -> Decimal:
    return non_negative(value, field, MONEY_QUANT)


def quantity(value: Any, field: str = "unitQty") -> Decimal:
    return non_negative(value, field, QTY_QUANT)
