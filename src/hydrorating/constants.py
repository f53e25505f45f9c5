"""Shared numeric constants and identifier separators."""
from __future__ import annotations

import math

# ---------------------------------------------------------------------------
# Undefined values
# ---------------------------------------------------------------------------

# Sentinel returned by NULL rating methods and propagated through evaluation.
UNDEFINED: float = -3.4028234663852886e38


def is_undefined(value: float) -> bool:
    """True if *value* is the undefined sentinel or NaN."""
    return value == UNDEFINED or math.isnan(value)


# ---------------------------------------------------------------------------
# Identifier separators
# ---------------------------------------------------------------------------

SEPARATOR1 = "."  # top-level parts of template and spec ids
SEPARATOR2 = ";"  # independent parameters from dependent parameter
SEPARATOR3 = ","  # individual independent parameters

# ---------------------------------------------------------------------------
# Tolerances
# ---------------------------------------------------------------------------

VALUE_TOLERANCE = 1e-8
DEFAULT_SHIFT_TOLERANCE = 1e-8
DEFAULT_MAX_SHIFT_ITERATIONS = 100


def values_equal(a: float, b: float) -> bool:
    return abs(a - b) < VALUE_TOLERANCE
