"""Exceptions raised by the calculation engine."""

from typing import Optional


class CalculationError(Exception):
    """Base exception for calculation engine errors."""

    pass


class InvalidInputError(CalculationError, ValueError):
    """Raised when an input record is missing a field or has the wrong shape."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NumericalInstabilityError(CalculationError, AssertionError):
    """Raised when a NaN or infinity escapes the zero-guards."""

    def __init__(self, name: str, value):
        self.name = name
        self.value = value
        super().__init__(f"Non-finite value for {name}: {value}")
