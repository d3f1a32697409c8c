"""
Numeric helpers shared by the calculation services
"""

import math
from decimal import Decimal
from typing import Union

from models.errors import NumericalInstabilityError

HUNDRED = Decimal("100")
ZERO = Decimal("0")
ONE = Decimal("1")


def ensure_finite(name: str, value: Union[Decimal, float, int]):
    """Return value unchanged, raising if it is NaN or infinite"""
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise NumericalInstabilityError(name, value)
    elif not math.isfinite(value):
        raise NumericalInstabilityError(name, value)
    return value


def to_decimal(value: Union[Decimal, float, int]) -> Decimal:
    """Convert a float result to Decimal through its shortest repr"""
    if isinstance(value, Decimal):
        return value
    ensure_finite("value", value)
    return Decimal(str(value))


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator, or zero when the denominator is zero"""
    if denominator == 0:
        return ZERO
    return numerator / denominator


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    return safe_divide(part, whole) * HUNDRED
