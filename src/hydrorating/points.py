"""Rating points: the leaves (or nested sub-tables) of a table rating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from hydrorating.constants import is_undefined
from hydrorating.errors import ConfigurationError

if TYPE_CHECKING:
    from hydrorating.table import TableRating


@dataclass(frozen=True, slots=True)
class RatingPoint:
    """An independent value paired with a dependent value or a nested table.

    ``dep`` is a float for the last independent parameter and a
    :class:`TableRating` over the remaining parameters otherwise.
    """

    ind: float
    dep: float | TableRating
    note: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.ind, bool) or not isinstance(self.ind, int | float):
            raise ConfigurationError(f"Independent value must be a number, got {self.ind!r}")
        if is_undefined(float(self.ind)):
            raise ConfigurationError("Independent value cannot be undefined")

    @property
    def is_nested(self) -> bool:
        return not isinstance(self.dep, int | float)

    @property
    def depth(self) -> int:
        """Number of independent parameters below and including this point."""
        if isinstance(self.dep, int | float):
            return 1
        return 1 + self.dep.ind_param_count

    def with_dep(self, dep: float | TableRating) -> RatingPoint:
        return RatingPoint(self.ind, dep, self.note)
