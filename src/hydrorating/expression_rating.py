"""Ratings computed from an algebraic expression over I1..In."""
from __future__ import annotations

import math
from typing import Any

from hydrorating.base import AbstractRating, RatingExtents
from hydrorating.errors import ConfigurationError, UnsupportedOperationError
from hydrorating.expression import (
    DEFAULT_ENGINE,
    CompiledExpression,
    ExpressionEngine,
    variable_sort_key,
)


class ExpressionRating(AbstractRating):
    """Evaluate a formula such as ``"3.2 * (I1 - 0.5) ^ 1.6"``.

    The expression's variables, sorted by name, are bound positionally to the
    independent values.  Reverse rating is not supported and extents are
    unbounded.
    """

    def __init__(
        self,
        expression: str,
        *,
        engine: ExpressionEngine | None = None,
        **identity: Any,
    ) -> None:
        super().__init__(**identity)
        self._engine = engine if engine is not None else DEFAULT_ENGINE
        self._compiled: CompiledExpression = self._compile(expression)
        self._text = expression

    def _compile(self, text: str) -> CompiledExpression:
        compiled = self._engine.parse(text)
        if self.rating_spec_id or self.rating_units:
            count = self.ind_param_count
            if len(compiled.variables) > count:
                raise ConfigurationError(
                    f"Expression {text!r} uses {len(compiled.variables)} variables but "
                    f"rating {self.name} has {count} independent parameters"
                )
        return compiled

    @property
    def expression(self) -> str:
        return self._text

    @expression.setter
    def expression(self, text: str) -> None:
        with self._lock:
            self._compiled = self._compile(text)
            self._text = text
        self._notify()

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(self._compiled.variables)

    @property
    def ind_param_count(self) -> int:
        if self.rating_spec_id or self.rating_units:
            return super().ind_param_count
        return max(len(self._compiled.variables), 1)

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        # engines other than the default may hand back unsorted names
        names = sorted(self._compiled.variables, key=variable_sort_key)
        bindings = dict(zip(names, values, strict=False))
        return float(self._compiled.evaluate(bindings))

    def _reverse_at(self, value: float, time: int | None) -> float:
        raise UnsupportedOperationError(f"Cannot reverse rate expression rating {self.name}")

    def _extents(self, time: int | None) -> RatingExtents:
        n = self.ind_param_count + 1
        return RatingExtents((-math.inf,) * n, (math.inf,) * n)

    def to_record(self) -> dict[str, Any]:
        return {"kind": "expression", **self.identity_record(), "expression": self._text}
