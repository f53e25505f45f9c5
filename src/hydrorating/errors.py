"""Exception hierarchy for rating construction and evaluation.

Every error raised by the package derives from :class:`RatingError`.
Conditions that are tolerated (unsafe unit handling when permitted, shift
iteration that fails to converge) are logged instead of raised.
"""
from __future__ import annotations


class RatingError(RuntimeError):
    """Base class for all rating errors."""


class ConfigurationError(RatingError, ValueError):
    """Malformed identifiers, parameter-count mismatches or invalid tables."""


class UnitConversionError(ConfigurationError):
    """A unit pair is unknown to the units capability or not convertible."""


class ExpressionError(ConfigurationError):
    """An expression or condition could not be parsed or evaluated."""

    def __init__(self, message: str, position: int = -1) -> None:
        super().__init__(message if position < 0 else f"{message} (at position {position})")
        self.position = position


class CycleError(ConfigurationError):
    """A composed rating references itself through its source ratings."""

    def __init__(self, path: list[str]) -> None:
        super().__init__(f"Cycle detected in source ratings: {' -> '.join(path)}")
        self.path = tuple(path)


class UnsafeOperationError(RatingError):
    """A unit or parameter mismatch while unsafe operations are disallowed."""


class RatingRangeError(RatingError):
    """An ERROR rating method boundary was crossed."""


class RatingLookupError(RatingError, LookupError):
    """No active rating or table entry exists for the requested value or time."""


class UnsupportedOperationError(RatingError, NotImplementedError):
    """The rating variant cannot perform the requested operation."""
