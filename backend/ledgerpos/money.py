"""Money helpers: the engine stores integer cents, the API speaks decimals."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

# Maximum amount per field: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

_CENT = Decimal("0.01")
_MAX_AMOUNT = Decimal(MAX_AMOUNT_CENTS) / 100


def amount_to_cents(value, field: str = "amount") -> int:
    """
    Convert a decimal amount (int, float, str or Decimal) to integer cents.

    Floats go through str() so 9.99 stays 9.99. More than two decimal places
    is rejected instead of silently rounded.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        dec = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    # Checked before quantize(), which overflows the context on huge exponents
    if dec.copy_abs() > _MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS / 100:,.2f}")
    if dec != dec.quantize(_CENT):
        raise ValidationError(f"{field} cannot have more than two decimal places")
    cents = int((dec * 100).to_integral_value(rounding=ROUND_HALF_UP))
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS / 100:,.2f}")
    return cents


def cents_to_amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return float((Decimal(cents) / 100).quantize(_CENT))


def apply_rate_bps(amount_cents: int, rate_bps: int) -> int:
    """amount * rate / 10000, nearest cent (half-up)."""
    if not rate_bps or not amount_cents:
        return 0
    return (amount_cents * rate_bps + 5_000) // 10_000
