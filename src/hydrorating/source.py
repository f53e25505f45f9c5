"""Source ratings feeding virtual and transitional ratings, and the cycle check."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from hydrorating.base import Rating, RatingExtents
from hydrorating.errors import ConfigurationError, CycleError, UnsupportedOperationError
from hydrorating.expression import DEFAULT_ENGINE, CompiledExpression, ExpressionEngine, normalize_variable
from hydrorating.units import convert_value

log = logging.getLogger(__name__)


class SourceRating(Rating):
    """A wrapped rating (usually a series) or a bare expression with units.

    ``units_id`` names the units the composite rating exchanges with this
    source.  For a wrapped rating it defaults to the rating's own units and
    values are converted when the two differ.  An expression source must
    declare one unit per input plus one for its result.
    """

    def __init__(
        self,
        rating: Rating | None = None,
        *,
        expression: str | None = None,
        units_id: str = "",
        engine: ExpressionEngine | None = None,
        **kwargs: Any,
    ) -> None:
        if (rating is None) == (expression is None):
            raise ConfigurationError("A source rating needs exactly one of a rating or an expression")
        if rating is not None:
            super().__init__(
                office_id=rating.office_id,
                rating_spec_id=rating.rating_spec_id,
                units_id=units_id or rating.units_id,
                **kwargs,
            )
        else:
            super().__init__(units_id=units_id, **kwargs)
        self._rating = rating
        self._text = expression
        self._compiled: CompiledExpression | None = None
        if expression is not None:
            if not units_id:
                raise ConfigurationError(f"Expression source {expression!r} needs a units id")
            self._compiled = (engine if engine is not None else DEFAULT_ENGINE).parse(expression)
            count = len(self.rating_units) - 1
            for name in self._compiled.variables:
                var = normalize_variable(name)
                if var is None or not var.startswith("I") or not 1 <= int(var[1:]) <= count:
                    raise ConfigurationError(
                        f"Expression source {expression!r} uses {name} but has {count} inputs"
                    )
        elif self.rating_units and rating.rating_units and len(self.rating_units) != len(rating.rating_units):
            raise ConfigurationError(
                f"Source units {units_id!r} do not match rating units {rating.units_id!r}"
            )

    @property
    def rating(self) -> Rating | None:
        return self._rating

    @property
    def expression(self) -> str | None:
        return self._text

    @property
    def is_expression(self) -> bool:
        return self._compiled is not None

    @property
    def ind_param_count(self) -> int:
        if self._rating is not None:
            return self._rating.ind_param_count
        return len(self.rating_units) - 1

    @property
    def reversible(self) -> bool:
        return self._rating is not None and self.ind_param_count == 1

    def unit_of(self, index: int | None) -> str:
        """Unit of input *index* (1-based), or of the output when None."""
        units = self.rating_units
        if not units:
            return ""
        return units[-1] if index is None else units[index - 1]

    def _to_wrapped(self, value: float, index: int) -> float:
        assert self._rating is not None
        inner = self._rating.data_units
        if not inner or not self.rating_units or inner[index] == self.rating_units[index]:
            return value
        return convert_value(self._converter, value, self.rating_units[index], inner[index], self.config)

    def _from_wrapped(self, value: float, index: int) -> float:
        assert self._rating is not None
        inner = self._rating.data_units
        if not inner or not self.rating_units or inner[index] == self.rating_units[index]:
            return value
        return convert_value(self._converter, value, inner[index], self.rating_units[index], self.config)

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        if self._compiled is not None:
            bindings = {f"I{i}": v for i, v in enumerate(values, 1)}
            return float(self._compiled.evaluate(bindings))
        converted = [self._to_wrapped(v, i) for i, v in enumerate(values)]
        return self._from_wrapped(self._rating.rate_one(converted, time), -1)  # type: ignore[union-attr]

    def _reverse_at(self, value: float, time: int | None) -> float:
        if self._rating is None:
            raise UnsupportedOperationError(f"Cannot reverse rate expression source {self._text!r}")
        result = self._rating.reverse_rate(self._to_wrapped(value, -1), time)
        return self._from_wrapped(result, 0)

    def _extents(self, time: int | None) -> RatingExtents:
        if self._rating is None:
            raise UnsupportedOperationError("Expression sources do not report extents")
        return self._rating.extents(time)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {"kind": "source", "units_id": self.units_id}
        if self._rating is not None:
            record["rating"] = self._rating.to_record()
        else:
            record["expression"] = self._text
        return record


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------

def find_cycles(rating: Rating, sources: Sequence[SourceRating] | None = None) -> None:
    """Raise CycleError when *rating* reaches itself through its sources.

    Composite ratings are keyed by ``office/spec``; series are transparent
    and contribute their member ratings.  Pass *sources* to check the
    sources *rating* is about to take instead of the ones it has.
    """
    if sources is None:
        _walk(rating, [])
        return
    path = [_key(rating)]
    for source in sources:
        _walk(source, path)


def _key(rating: Rating) -> str:
    if rating.rating_spec_id:
        return rating.name
    # unnamed composites only collide with themselves
    return f"{type(rating).__name__}@{id(rating):#x}"


def _walk(rating: Rating, path: list[str]) -> None:
    if isinstance(rating, SourceRating):
        if rating.rating is not None:
            _walk(rating.rating, path)
        return
    sources = getattr(rating, "source_ratings", None)
    if sources is None:
        for member in getattr(rating, "ratings", ()):
            _walk(member, path)
        return
    key = _key(rating)
    if key in path:
        raise CycleError([*path, key])
    path.append(key)
    try:
        for source in sources:
            _walk(source, path)
    finally:
        path.pop()
