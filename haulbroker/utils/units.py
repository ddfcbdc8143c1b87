"""
Unit Conversion Utilities

Freights store distance in kilometers and weight in kilograms. PER_TON
pricing needs metric tonnes, so conversions happen at the pricing seam only.
Values are Decimals because they feed money calculations.
"""

from decimal import Decimal
from typing import Optional, Union

Number = Union[Decimal, int, float, str]

KG_PER_TONNE = Decimal("1000")


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """Coerce a numeric value to Decimal without float noise."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def kg_to_tonnes(kilograms: Number) -> Decimal:
    """
    Convert kilograms to metric tonnes.

    Example:
        >>> kg_to_tonnes(27000)
        Decimal('27')
    """
    return to_decimal(kilograms) / KG_PER_TONNE

