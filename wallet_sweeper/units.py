"""
Unit Conversion

Amounts are integers in the smallest unit everywhere in the engine. Decimal is
only used at the edges: parsing human amounts from config and rendering log
lines.
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

# uint256 has 78 digits; leave room for the decimal shift
_PRECISION = 100


def to_smallest_unit(value: Union[str, int, float, Decimal], decimals: int) -> int:
    """
    Convert a human amount (e.g. "0.001") into smallest units

    Floats from YAML are routed through str() so 0.001 stays exactly 0.001.

    Args:
        value: Human readable amount
        decimals: Token/native decimal precision

    Returns:
        Integer amount in smallest units

    Raises:
        ValueError: Value is negative, not a number, or finer than the precision allows
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid amount: {value!r}")

        if not amount.is_finite() or amount < 0:
            raise ValueError(f"Amount must be a non-negative number: {value!r}")

        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {value} has more than {decimals} decimal places")

        return int(scaled)


def format_units(amount: int, decimals: int) -> str:
    """Render an integer smallest-unit amount as a plain decimal string"""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        text = format(Decimal(amount).scaleb(-decimals), 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text
