"""Units capability: the protocol ratings consume and a table-driven default.

Ratings only need two operations, ``convert`` and ``can_convert``.  Any
object providing them can be passed as ``units=`` to a rating.
:class:`UnitTable` is the default: every unit is a linear transform
(``base = value * factor + offset``) onto a base unit of its dimension.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from hydrorating.config import RatingConfig
from hydrorating.constants import is_undefined
from hydrorating.errors import UnitConversionError, UnsafeOperationError

log = logging.getLogger(__name__)


class UnitConverter(Protocol):
    def convert(self, value: float, from_unit: str, to_unit: str) -> float: ...

    def can_convert(self, from_unit: str, to_unit: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class UnitDef:
    dimension: str
    factor: float
    offset: float = 0.0


# (unit, dimension, factor to base, offset to base)
_BUILTIN_UNITS: list[tuple[str, str, float, float]] = [
    # length, base m
    ("m", "length", 1.0, 0.0),
    ("ft", "length", 0.3048, 0.0),
    ("in", "length", 0.0254, 0.0),
    ("cm", "length", 0.01, 0.0),
    ("mm", "length", 0.001, 0.0),
    ("km", "length", 1000.0, 0.0),
    ("mi", "length", 1609.344, 0.0),
    # flow, base cms
    ("cms", "flow", 1.0, 0.0),
    ("cfs", "flow", 0.028316846592, 0.0),
    ("kcfs", "flow", 28.316846592, 0.0),
    ("gpm", "flow", 6.30901964e-05, 0.0),
    ("mgd", "flow", 0.0438126363888889, 0.0),
    # volume, base m3
    ("m3", "volume", 1.0, 0.0),
    ("ft3", "volume", 0.028316846592, 0.0),
    ("ac-ft", "volume", 1233.48183754752, 0.0),
    ("kac-ft", "volume", 1233481.83754752, 0.0),
    # area, base m2
    ("m2", "area", 1.0, 0.0),
    ("ft2", "area", 0.09290304, 0.0),
    ("acre", "area", 4046.8564224, 0.0),
    ("km2", "area", 1.0e6, 0.0),
    ("mi2", "area", 2589988.110336, 0.0),
    # speed, base m/s
    ("m/s", "speed", 1.0, 0.0),
    ("ft/s", "speed", 0.3048, 0.0),
    # temperature, base K
    ("K", "temperature", 1.0, 0.0),
    ("C", "temperature", 1.0, 273.15),
    ("F", "temperature", 5.0 / 9.0, 273.15 - 32.0 * 5.0 / 9.0),
    # dimensionless
    ("unit", "none", 1.0, 0.0),
    ("n/a", "none", 1.0, 0.0),
    ("%", "none", 0.01, 0.0),
]


class UnitTable:
    """Linear unit conversions grouped by dimension."""

    def __init__(self, units: dict[str, UnitDef] | None = None) -> None:
        self._units: dict[str, UnitDef] = dict(units) if units is not None else {}

    @classmethod
    def default(cls) -> UnitTable:
        return cls({
            name: UnitDef(dimension, factor, offset)
            for name, dimension, factor, offset in _BUILTIN_UNITS
        })

    def register(self, name: str, dimension: str, factor: float, offset: float = 0.0) -> None:
        if factor == 0:
            raise UnitConversionError(f"Unit {name!r} cannot have a zero factor")
        self._units[name] = UnitDef(dimension, factor, offset)

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def can_convert(self, from_unit: str, to_unit: str) -> bool:
        if from_unit == to_unit:
            return True
        src = self._units.get(from_unit)
        dst = self._units.get(to_unit)
        return src is not None and dst is not None and src.dimension == dst.dimension

    def convert(self, value: float, from_unit: str, to_unit: str) -> float:
        if from_unit == to_unit:
            return value
        if not self.can_convert(from_unit, to_unit):
            raise UnitConversionError(f'Cannot convert from "{from_unit}" to "{to_unit}"')
        src = self._units[from_unit]
        dst = self._units[to_unit]
        base = value * src.factor + src.offset
        return (base - dst.offset) / dst.factor


DEFAULT_UNITS = UnitTable.default()


# ---------------------------------------------------------------------------
# Unsafe-aware conversion helpers
# ---------------------------------------------------------------------------

def check_convertible(
    converter: UnitConverter,
    from_unit: str,
    to_unit: str,
    config: RatingConfig,
    consequence: str,
) -> bool:
    """Return True if values should be converted between the two units.

    A non-convertible pair raises UnsafeOperationError when unsafe operations
    are disallowed; otherwise it is logged (if warnings are on) and the
    caller proceeds on unconverted values.
    """
    if from_unit == to_unit:
        return False
    if converter.can_convert(from_unit, to_unit):
        return True
    msg = f'Cannot convert from "{from_unit}" to "{to_unit}".'
    if not config.allow_unsafe:
        raise UnsafeOperationError(msg)
    if config.warn_unsafe:
        log.warning("%s %s", msg, consequence)
    return False


def convert_value(
    converter: UnitConverter,
    value: float,
    from_unit: str,
    to_unit: str,
    config: RatingConfig,
    consequence: str = "Values will be unconverted.",
) -> float:
    if is_undefined(value):
        return value
    if check_convertible(converter, from_unit, to_unit, config, consequence):
        return converter.convert(value, from_unit, to_unit)
    return value


def convert_values(
    converter: UnitConverter,
    values: Sequence[float],
    from_units: Sequence[str],
    to_units: Sequence[str],
    config: RatingConfig,
    consequence: str = "Rating will be performed on unconverted values.",
) -> tuple[float, ...]:
    return tuple(
        convert_value(converter, v, f, t, config, consequence)
        for v, f, t in zip(values, from_units, to_units, strict=True)
    )
