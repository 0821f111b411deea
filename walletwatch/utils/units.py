"""
Unit conversion between raw integer amounts and decimal strings.

Amounts are never converted through float: a raw value with N decimals is
rendered as an exact decimal string, and parsed back with Decimal.
"""

from decimal import Decimal, InvalidOperation
from typing import Union


def format_units(value: int, decimals: int = 18) -> str:
    """
    Render a raw integer amount as a decimal string.

    Always keeps at least one fractional digit and strips trailing zeros,
    so 1500000000000000000 with 18 decimals becomes "1.5" and an exact
    whole amount becomes "2.0".

    Args:
        value: Raw amount (may be negative)
        decimals: Number of decimal places of the unit

    Returns:
        Exact decimal string
    """
    negative = value < 0
    digits = str(abs(value))

    if decimals > 0:
        digits = digits.rjust(decimals + 1, "0")
        whole, frac = digits[:-decimals], digits[-decimals:]
        frac = frac.rstrip("0") or "0"
    else:
        whole, frac = digits, "0"

    result = f"{whole}.{frac}"
    return f"-{result}" if negative else result


def parse_units(amount: Union[str, int, Decimal], decimals: int = 18) -> int:
    """
    Convert a decimal amount (e.g. "1.5") to its raw integer representation.

    Raises:
        ValueError: If the amount is not a number or has more precision
            than the unit supports.
    """
    try:
        scaled = Decimal(str(amount)).scaleb(decimals)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")

    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} exceeds {decimals} decimal places")

    return int(scaled)


def negate(amount: str) -> str:
    """Flip the sign of a decimal string."""
    if amount.startswith("-"):
        return amount[1:]
    if Decimal(amount) == 0:
        return amount
    return f"-{amount}"


def round_display(amount: str, places: int = 4) -> str:
    """Round a decimal string for display only (never for arithmetic)."""
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(amount).quantize(quantum).normalize()
    text = format(rounded, "f")
    return text if "." in text else f"{text}.0"
