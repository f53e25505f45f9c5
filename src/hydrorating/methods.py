"""Rating methods and the rules for where each one may be used.

A rating method governs lookup behavior when a query value falls between
known values (in range), before the first value (out of range low) or
after the last value (out of range high).  "Before" and "after" are
positional: for a decreasing table the first point carries the largest
independent value.

Validity depends on position and, for the magnitude-based methods, on the
sort direction of the data:

========  =============  ==================  ===================
method    in range       out of range low    out of range high
========  =============  ==================  ===================
NEAREST   invalid        valid               valid
PREVIOUS  valid          invalid             valid
NEXT      valid          valid               invalid
LOWER     valid          decreasing only     increasing only
HIGHER    valid          increasing only     decreasing only
========  =============  ==================  ===================

Time is always increasing, so a rating series uses the increasing rules.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from hydrorating.errors import ConfigurationError


class RatingMethod(Enum):
    """Lookup behaviors; the value is the persisted text form."""

    NULL = "NULL"
    ERROR = "ERROR"
    LINEAR = "LINEAR"
    LOGARITHMIC = "LOGARITHMIC"
    LIN_LOG = "LIN-LOG"
    LOG_LIN = "LOG-LIN"
    PREVIOUS = "PREVIOUS"
    NEXT = "NEXT"
    NEAREST = "NEAREST"
    LOWER = "LOWER"
    HIGHER = "HIGHER"
    CLOSEST = "CLOSEST"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def interpolates(self) -> bool:
        """True for the methods that compute a value between two points."""
        return self in _INTERPOLATING

    @property
    def log_axes(self) -> tuple[bool, bool]:
        """(independent axis is logarithmic, dependent axis is logarithmic)."""
        # the first word names the independent axis: LOG_LIN logs x, LIN_LOG logs y
        return (
            self in (RatingMethod.LOGARITHMIC, RatingMethod.LOG_LIN),
            self in (RatingMethod.LOGARITHMIC, RatingMethod.LIN_LOG),
        )

    def swapped_axes(self) -> RatingMethod:
        """The method to use once independent and dependent axes trade places."""
        if self is RatingMethod.LIN_LOG:
            return RatingMethod.LOG_LIN
        if self is RatingMethod.LOG_LIN:
            return RatingMethod.LIN_LOG
        return self

    @classmethod
    def from_string(cls, text: str) -> RatingMethod:
        """Parse a method name, accepting ``LIN-LOG`` and ``LIN_LOG`` in any case."""
        key = text.strip().upper().replace("_", "-")
        for method in cls:
            if method.value == key:
                return method
        raise ConfigurationError(f"{text!r} is not a valid rating method")


_DESCRIPTIONS: dict[RatingMethod, str] = {
    RatingMethod.NULL: "Return null if between values or outside range",
    RatingMethod.ERROR: "Raise an error if between values or outside range",
    RatingMethod.LINEAR: "Linear interpolation or extrapolation of independent and dependent values",
    RatingMethod.LOGARITHMIC: "Logarithmic interpolation or extrapolation of independent and dependent values",
    RatingMethod.LIN_LOG: "Linear interpolation of independent values, logarithmic of dependent values",
    RatingMethod.LOG_LIN: "Logarithmic interpolation of independent values, linear of dependent values",
    RatingMethod.PREVIOUS: "Return the value that is lower in position",
    RatingMethod.NEXT: "Return the value that is higher in position",
    RatingMethod.NEAREST: "Return the value that is nearest in position",
    RatingMethod.LOWER: "Return the value that is lower in magnitude",
    RatingMethod.HIGHER: "Return the value that is higher in magnitude",
    RatingMethod.CLOSEST: "Return the value that is closest in magnitude",
}

_INTERPOLATING: frozenset[RatingMethod] = frozenset({
    RatingMethod.LINEAR,
    RatingMethod.LOGARITHMIC,
    RatingMethod.LIN_LOG,
    RatingMethod.LOG_LIN,
})


# ---------------------------------------------------------------------------
# Position validity
# ---------------------------------------------------------------------------

def in_range_allowed(method: RatingMethod) -> bool:
    return method is not RatingMethod.NEAREST


def out_range_low_allowed(method: RatingMethod, increasing: bool = True) -> bool:
    if method is RatingMethod.PREVIOUS:
        return False
    if method is RatingMethod.LOWER:
        return not increasing
    if method is RatingMethod.HIGHER:
        return increasing
    return True


def out_range_high_allowed(method: RatingMethod, increasing: bool = True) -> bool:
    if method is RatingMethod.NEXT:
        return False
    if method is RatingMethod.LOWER:
        return increasing
    if method is RatingMethod.HIGHER:
        return not increasing
    return True


def validate_methods(
    in_range: RatingMethod,
    out_range_low: RatingMethod,
    out_range_high: RatingMethod,
    *,
    increasing: bool = True,
    context: str = "rating",
) -> None:
    """Raise ConfigurationError if any method is invalid for its position."""
    direction = "increasing" if increasing else "decreasing"
    if not in_range_allowed(in_range):
        raise ConfigurationError(f"Invalid in-range method for {context}: {in_range.name}")
    if not out_range_low_allowed(out_range_low, increasing):
        raise ConfigurationError(
            f"Invalid out-of-range low method for {direction} {context}: {out_range_low.name}"
        )
    if not out_range_high_allowed(out_range_high, increasing):
        raise ConfigurationError(
            f"Invalid out-of-range high method for {direction} {context}: {out_range_high.name}"
        )


@dataclass(frozen=True, slots=True)
class RatingMethodSet:
    """In-range and out-of-range behaviors for one independent parameter."""

    in_range: RatingMethod = RatingMethod.LINEAR
    out_range_low: RatingMethod = RatingMethod.ERROR
    out_range_high: RatingMethod = RatingMethod.ERROR

    def __post_init__(self) -> None:
        # direction-dependent rules are checked once the data is known
        if not in_range_allowed(self.in_range):
            raise ConfigurationError(f"Invalid in-range method: {self.in_range.name}")
        if self.out_range_low is RatingMethod.PREVIOUS:
            raise ConfigurationError("PREVIOUS is never valid out of range low")
        if self.out_range_high is RatingMethod.NEXT:
            raise ConfigurationError("NEXT is never valid out of range high")

    def swapped_axes(self) -> RatingMethodSet:
        return RatingMethodSet(
            self.in_range.swapped_axes(),
            self.out_range_low.swapped_axes(),
            self.out_range_high.swapped_axes(),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "in_range": self.in_range.value,
            "out_range_low": self.out_range_low.value,
            "out_range_high": self.out_range_high.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> RatingMethodSet:
        return cls(
            RatingMethod.from_string(data.get("in_range", "LINEAR")),
            RatingMethod.from_string(data.get("out_range_low", "ERROR")),
            RatingMethod.from_string(data.get("out_range_high", "ERROR")),
        )
