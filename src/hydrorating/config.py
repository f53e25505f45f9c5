"""Per-instance rating configuration."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from hydrorating.constants import DEFAULT_MAX_SHIFT_ITERATIONS, DEFAULT_SHIFT_TOLERANCE
from hydrorating.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class RatingConfig:
    """Safety and numeric settings handed to every rating at construction.

    ``allow_unsafe`` permits unit mismatches to proceed on unconverted
    values; ``warn_unsafe`` logs when that happens.  The shift fields
    control USGS shift rounding and the reverse-rating fixed-point loop.
    """

    allow_unsafe: bool = True
    warn_unsafe: bool = True
    shift_decimals: int | None = None
    shift_tolerance: float = DEFAULT_SHIFT_TOLERANCE
    max_shift_iterations: int = DEFAULT_MAX_SHIFT_ITERATIONS

    def __post_init__(self) -> None:
        if self.shift_decimals is not None and self.shift_decimals < 0:
            raise ConfigurationError("shift_decimals must be >= 0")
        if self.shift_tolerance <= 0:
            raise ConfigurationError("shift_tolerance must be > 0")
        if self.max_shift_iterations <= 0:
            raise ConfigurationError("max_shift_iterations must be > 0")

    def with_changes(self, **changes: Any) -> RatingConfig:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RatingConfig:
        """Build a config, ignoring unknown keys."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


DEFAULT_CONFIG = RatingConfig()
