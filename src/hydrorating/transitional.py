"""Ratings that choose an evaluation by testing ordered conditions."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from hydrorating.base import AbstractRating, RatingExtents
from hydrorating.constants import UNDEFINED, is_undefined
from hydrorating.errors import ConfigurationError, UnsupportedOperationError
from hydrorating.expression import (
    DEFAULT_ENGINE,
    CompiledCondition,
    CompiledExpression,
    ExpressionEngine,
    normalize_variable,
)
from hydrorating.source import SourceRating, find_cycles
from hydrorating.units import convert_value

log = logging.getLogger(__name__)


class TransitionalRating(AbstractRating):
    """Pick the evaluation whose condition holds first, else the last one.

    Conditions and evaluations may use ``I1..In`` (the inputs) and
    ``R1..Rm`` (the result of source rating *k* applied to all inputs).
    There is one more evaluation than conditions::

        TransitionalRating(
            ["I1 LT 10"],
            ["R1", "R2"],
            [SourceRating(low_flow), SourceRating(high_flow)],
            rating_spec_id="LOC.Stage;Flow.Transitional.1",
            units_id="ft;cfs",
        )
    """

    def __init__(
        self,
        conditions: Sequence[str],
        evaluations: Sequence[str],
        source_ratings: Sequence[SourceRating] = (),
        *,
        engine: ExpressionEngine | None = None,
        **identity: Any,
    ) -> None:
        super().__init__(**identity)
        self._engine = engine if engine is not None else DEFAULT_ENGINE
        self._condition_texts: tuple[str, ...] = ()
        self._evaluation_texts: tuple[str, ...] = ()
        self._conditions: list[CompiledCondition] = []
        self._evaluations: list[CompiledExpression] = []
        self._sources: tuple[SourceRating, ...] = ()
        self._install(conditions, evaluations, source_ratings)

    def _install(
        self,
        conditions: Sequence[str],
        evaluations: Sequence[str],
        source_ratings: Sequence[SourceRating],
    ) -> None:
        if len(evaluations) != len(conditions) + 1:
            raise ConfigurationError(
                f"Transitional rating has {len(conditions)} conditions and {len(evaluations)} "
                "evaluations; it needs exactly one more evaluation than conditions"
            )
        count = self.ind_param_count
        sources = tuple(source_ratings)
        for k, source in enumerate(sources, 1):
            if not isinstance(source, SourceRating):
                raise ConfigurationError(f"Expected SourceRating, got {type(source).__name__}")
            if source.ind_param_count != count:
                raise ConfigurationError(
                    f"Source rating R{k} has {source.ind_param_count} independent parameters, "
                    f"expected {count}"
                )
        compiled_conditions = [self._engine.parse_condition(c) for c in conditions]
        compiled_evaluations = [self._engine.parse(e) for e in evaluations]
        for text, compiled in zip(
            [*conditions, *evaluations], [*compiled_conditions, *compiled_evaluations], strict=True,
        ):
            for name in compiled.variables:
                self._check_variable(name, text, count, len(sources))
        find_cycles(self, sources)
        self._condition_texts = tuple(conditions)
        self._evaluation_texts = tuple(evaluations)
        self._conditions = compiled_conditions
        self._evaluations = compiled_evaluations
        self._sources = sources

    @staticmethod
    def _check_variable(name: str, text: str, inputs: int, sources: int) -> None:
        var = normalize_variable(name) or name
        if var.startswith("I") and var[1:].isdigit():
            if not 1 <= int(var[1:]) <= inputs:
                raise ConfigurationError(
                    f"Variable {name!r} in {text!r} specifies invalid independent parameter number"
                )
        elif var.startswith("R") and var[1:].isdigit():
            if not 1 <= int(var[1:]) <= sources:
                raise ConfigurationError(f"Variable {name!r} in {text!r} specifies invalid rating number")
        else:
            raise ConfigurationError(f"Unexpected variable name {name!r} in {text!r}")

    def set_transitions(
        self,
        conditions: Sequence[str],
        evaluations: Sequence[str],
        source_ratings: Sequence[SourceRating] | None = None,
    ) -> None:
        with self._lock:
            self._install(conditions, evaluations, self._sources if source_ratings is None else source_ratings)
        self._notify()

    @property
    def conditions(self) -> tuple[str, ...]:
        return self._condition_texts

    @property
    def evaluations(self) -> tuple[str, ...]:
        return self._evaluation_texts

    @property
    def source_ratings(self) -> tuple[SourceRating, ...]:
        return self._sources

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _source_value(self, k: int, values: tuple[float, ...], time: int | None) -> float:
        source = self._sources[k - 1]
        units = self.rating_units
        inputs = list(values)
        if units:
            inputs = [
                convert_value(self._converter, v, units[i], source.unit_of(i + 1), self.config)
                if source.unit_of(i + 1) else v
                for i, v in enumerate(values)
            ]
        result = source.rate_one(inputs, time)
        if units and source.unit_of(None):
            result = convert_value(self._converter, result, source.unit_of(None), units[-1], self.config)
        return result

    def _bindings(self, names: Sequence[str], values: tuple[float, ...], time: int | None,
                  cache: dict[str, float]) -> dict[str, float]:
        for name in names:
            var = normalize_variable(name) or name
            if name in cache:
                continue
            if var.startswith("I"):
                cache[name] = values[int(var[1:]) - 1]
            else:
                cache[name] = self._source_value(int(var[1:]), values, time)
        return cache

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        cache: dict[str, float] = {}
        chosen = self._evaluations[-1]
        for condition, evaluation in zip(self._conditions, self._evaluations, strict=False):
            if condition.test(self._bindings(condition.variables, values, time, cache)):
                chosen = evaluation
                break
        bindings = self._bindings(chosen.variables, values, time, cache)
        if any(is_undefined(bindings[n]) for n in chosen.variables):
            return UNDEFINED
        return float(chosen.evaluate(bindings))

    def _reverse_at(self, value: float, time: int | None) -> float:
        raise UnsupportedOperationError(f"Cannot reverse rate transitional rating {self.name}")

    def _extents(self, time: int | None) -> RatingExtents:
        raise UnsupportedOperationError("Transitional ratings do not report extents")

    def to_record(self) -> dict[str, Any]:
        return {
            "kind": "transitional",
            **self.identity_record(),
            "conditions": list(self._condition_texts),
            "evaluations": list(self._evaluation_texts),
            "source_ratings": [s.to_record() for s in self._sources],
        }
