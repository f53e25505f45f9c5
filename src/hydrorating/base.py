"""The shared rating contract.

:class:`Rating` is implemented by every rating variant and by
:class:`~hydrorating.series.RatingSeries`.  Subclasses supply three hooks
that work purely in rating units:

* ``_rate_at(values, time)`` - evaluate one set of independent values
* ``_reverse_at(value, time)`` - evaluate the inverse (one parameter only)
* ``_extents(time)`` - the (low, high) bounds of every parameter

The public methods wrap those hooks with parameter-count checks, undefined
value propagation, data/rating unit conversion and the instance lock.
"""
from __future__ import annotations

import logging
import threading
import time as _time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

from hydrorating.config import DEFAULT_CONFIG, RatingConfig
from hydrorating.constants import UNDEFINED, is_undefined
from hydrorating.errors import ConfigurationError, UnsupportedOperationError
from hydrorating.identifiers import format_units_id, parse_rating_spec_id, parse_units_id
from hydrorating.units import DEFAULT_UNITS, UnitConverter, check_convertible, convert_value

log = logging.getLogger(__name__)

Listener: TypeAlias = Callable[["Rating"], None]
DateCheck: TypeAlias = Callable[["AbstractRating", int | None], None]
TimeArg: TypeAlias = int | Sequence[int] | None

_INPUT_CONSEQUENCE = "Rating will be performed on unconverted values."
_OUTPUT_CONSEQUENCE = "Rated values will be unconverted."


def now_millis() -> int:
    return int(_time.time() * 1000)


@dataclass(frozen=True, slots=True)
class RatingExtents:
    """Lowest and highest value per parameter, dependent parameter last."""

    low: tuple[float, ...]
    high: tuple[float, ...]


class Rating(ABC):
    """Base class of everything that can rate a value."""

    def __init__(
        self,
        *,
        office_id: str = "",
        rating_spec_id: str = "",
        units_id: str = "",
        config: RatingConfig | None = None,
        units: UnitConverter | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._config = config if config is not None else DEFAULT_CONFIG
        self._converter: UnitConverter = units if units is not None else DEFAULT_UNITS
        self._data_units: tuple[str, ...] | None = None
        self._office_id = office_id
        self._rating_spec_id = ""
        self._rating_units: tuple[str, ...] = ()
        self._set_ids(rating_spec_id, units_id)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def _set_ids(self, rating_spec_id: str, units_id: str) -> None:
        rating_units = parse_units_id(units_id) if units_id else ()
        if rating_spec_id:
            params = parse_rating_spec_id(rating_spec_id).ind_parameters
            if rating_units and len(rating_units) != len(params) + 1:
                raise ConfigurationError(
                    f"Units {units_id!r} do not match the {len(params)} independent "
                    f"parameter(s) of {rating_spec_id!r}"
                )
        self._rating_spec_id = rating_spec_id
        self._rating_units = rating_units

    @property
    def office_id(self) -> str:
        return self._office_id

    @office_id.setter
    def office_id(self, value: str) -> None:
        with self._lock:
            self._office_id = value
        self._notify()

    @property
    def rating_spec_id(self) -> str:
        return self._rating_spec_id

    @rating_spec_id.setter
    def rating_spec_id(self, value: str) -> None:
        with self._lock:
            self._set_ids(value, self.units_id)
        self._notify()

    @property
    def units_id(self) -> str:
        return format_units_id(self._rating_units) if self._rating_units else ""

    @units_id.setter
    def units_id(self, value: str) -> None:
        with self._lock:
            self._set_ids(self._rating_spec_id, value)
            self._data_units = None
        self._notify()

    @property
    def name(self) -> str:
        """``office/spec`` key used in messages and cycle checks."""
        return f"{self._office_id}/{self._rating_spec_id}"

    @property
    def config(self) -> RatingConfig:
        return self._config

    @property
    def unit_converter(self) -> UnitConverter:
        return self._converter

    @property
    def rating_units(self) -> tuple[str, ...]:
        return self._rating_units

    @property
    def ind_param_count(self) -> int:
        if self._rating_spec_id:
            return len(parse_rating_spec_id(self._rating_spec_id).ind_parameters)
        if self._rating_units:
            return len(self._rating_units) - 1
        raise ConfigurationError(f"Rating {self.name} has no parameter information")

    # ------------------------------------------------------------------
    # Data units
    # ------------------------------------------------------------------

    @property
    def data_units(self) -> tuple[str, ...]:
        return self._data_units if self._data_units is not None else self.rating_units

    def set_data_units(self, units: Sequence[str] | str | None) -> None:
        """Declare the units of values passed to and returned from this rating."""
        if units is None:
            with self._lock:
                self._data_units = None
            self._notify()
            return
        parsed = parse_units_id(units) if isinstance(units, str) else tuple(units)
        rating_units = self.rating_units
        if not rating_units:
            raise ConfigurationError(f"Rating {self.name} has no rating units to convert to")
        if len(parsed) != len(rating_units):
            raise ConfigurationError("Invalid number of data units.")
        for i, (data_unit, rating_unit) in enumerate(zip(parsed, rating_units, strict=True)):
            last = i == len(parsed) - 1
            check_convertible(
                self._converter, data_unit, rating_unit, self._config,
                _OUTPUT_CONSEQUENCE if last else _INPUT_CONSEQUENCE,
            )
        with self._lock:
            self._data_units = parsed
        self._notify()

    def _input_to_rating_units(self, values: tuple[float, ...]) -> tuple[float, ...]:
        data, rating = self.data_units, self.rating_units
        if not rating or data == rating:
            return values
        return tuple(
            convert_value(self._converter, v, data[i], rating[i], self._config, _INPUT_CONSEQUENCE)
            for i, v in enumerate(values)
        )

    def _output_to_data_units(self, value: float) -> float:
        data, rating = self.data_units, self.rating_units
        if not rating or data[-1] == rating[-1]:
            return value
        return convert_value(self._converter, value, rating[-1], data[-1], self._config, _OUTPUT_CONSEQUENCE)

    def _dep_to_rating_units(self, value: float) -> float:
        data, rating = self.data_units, self.rating_units
        if not rating or data[-1] == rating[-1]:
            return value
        return convert_value(self._converter, value, data[-1], rating[-1], self._config, _INPUT_CONSEQUENCE)

    def _ind_to_data_units(self, value: float, index: int = 0) -> float:
        data, rating = self.data_units, self.rating_units
        if not rating or data[index] == rating[index]:
            return value
        return convert_value(
            self._converter, value, rating[index], data[index], self._config, _OUTPUT_CONSEQUENCE,
        )

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def on_changed(self, callback: Listener) -> None:
        with self._lock:
            if callback not in self._listeners:
                self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(self)

    # ------------------------------------------------------------------
    # Public evaluation
    # ------------------------------------------------------------------

    def rate(self, value: float, time: int | None = None) -> float:
        """Rate a single value of a one-parameter rating."""
        if self.ind_param_count != 1:
            raise ConfigurationError(
                f"Data has 1 independent parameter; rating {self.name} requires {self.ind_param_count}"
            )
        return self.rate_one((value,), time)

    def rate_one(self, values: Sequence[float], time: int | None = None) -> float:
        """Rate one set of independent values (one per parameter)."""
        ind = tuple(float(v) for v in values)
        count = self.ind_param_count
        if len(ind) != count:
            raise ConfigurationError(
                f"Data has {len(ind)} independent parameters; rating {self.name} requires {count}"
            )
        if any(is_undefined(v) for v in ind):
            return UNDEFINED
        with self._lock:
            result = self._rate_at(self._input_to_rating_units(ind), time)
            if is_undefined(result):
                return UNDEFINED
            return self._output_to_data_units(result)

    def rate_values(
        self,
        value_sets: Sequence[float] | Sequence[Sequence[float]],
        times: TimeArg = None,
    ) -> list[float]:
        """Rate many values.

        ``value_sets`` holds one entry per value: a number for one-parameter
        ratings, else a sequence with one value per parameter.  ``times`` is
        a single time, one time per value, or None.
        """
        expanded = _expand_times(times, len(value_sets))
        out: list[float] = []
        for entry, t in zip(value_sets, expanded, strict=True):
            if isinstance(entry, int | float):
                out.append(self.rate_one((entry,), t))
            else:
                out.append(self.rate_one(entry, t))
        return out

    def reverse_rate(self, value: float, time: int | None = None) -> float:
        """Find the independent value that rates to *value*."""
        if self.ind_param_count != 1:
            raise UnsupportedOperationError(
                f"Cannot reverse rate {self.name}: it has {self.ind_param_count} independent parameters"
            )
        value = float(value)
        if is_undefined(value):
            return UNDEFINED
        with self._lock:
            result = self._reverse_at(self._dep_to_rating_units(value), time)
            if is_undefined(result):
                return UNDEFINED
            return self._ind_to_data_units(result)

    def reverse_rate_values(self, values: Sequence[float], times: TimeArg = None) -> list[float]:
        expanded = _expand_times(times, len(values))
        return [self.reverse_rate(v, t) for v, t in zip(values, expanded, strict=True)]

    def extents(self, time: int | None = None) -> RatingExtents:
        with self._lock:
            ext = self._extents(time)
            data, rating = self.data_units, self.rating_units
            if not rating or data == rating:
                return ext
            convert = self._converter
            low = tuple(
                convert_value(convert, v, rating[i], data[i], self._config, _OUTPUT_CONSEQUENCE)
                for i, v in enumerate(ext.low)
            )
            high = tuple(
                convert_value(convert, v, rating[i], data[i], self._config, _OUTPUT_CONSEQUENCE)
                for i, v in enumerate(ext.high)
            )
            return RatingExtents(low, high)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        """Rate values already in rating units."""

    def _reverse_at(self, value: float, time: int | None) -> float:
        raise UnsupportedOperationError(f"{type(self).__name__} does not support reverse rating")

    def _extents(self, time: int | None) -> RatingExtents:
        raise UnsupportedOperationError(f"{type(self).__name__} does not report extents")

    @abstractmethod
    def to_record(self) -> dict[str, Any]:
        """Plain-dict representation, tagged by ``kind``."""


class AbstractRating(Rating):
    """A single dated rating with identity metadata."""

    def __init__(
        self,
        *,
        office_id: str = "",
        rating_spec_id: str = "",
        units_id: str = "",
        effective_date: int | None = None,
        create_date: int | None = None,
        transition_start_date: int | None = None,
        active: bool = True,
        description: str = "",
        config: RatingConfig | None = None,
        units: UnitConverter | None = None,
    ) -> None:
        super().__init__(
            office_id=office_id,
            rating_spec_id=rating_spec_id,
            units_id=units_id,
            config=config,
            units=units,
        )
        self._effective_date = effective_date
        self._create_date = create_date
        self._transition_start_date = transition_start_date
        self._active = active
        self._description = description
        self._date_checks: list[DateCheck] = []

    @property
    def effective_date(self) -> int | None:
        return self._effective_date

    @effective_date.setter
    def effective_date(self, value: int | None) -> None:
        # checks raise to veto the change before anything is stored
        for check in list(self._date_checks):
            check(self, value)
        with self._lock:
            self._effective_date = value
        self._notify()

    def add_date_check(self, check: DateCheck) -> None:
        """Register *check* to be called with a proposed effective date before it is set."""
        with self._lock:
            if check not in self._date_checks:
                self._date_checks.append(check)

    def remove_date_check(self, check: DateCheck) -> None:
        with self._lock:
            if check in self._date_checks:
                self._date_checks.remove(check)

    @property
    def create_date(self) -> int | None:
        return self._create_date

    @create_date.setter
    def create_date(self, value: int | None) -> None:
        with self._lock:
            self._create_date = value
        self._notify()

    @property
    def transition_start_date(self) -> int | None:
        return self._transition_start_date

    @transition_start_date.setter
    def transition_start_date(self, value: int | None) -> None:
        with self._lock:
            self._transition_start_date = value
        self._notify()

    @property
    def active(self) -> bool:
        return self._active

    @active.setter
    def active(self, value: bool) -> None:
        with self._lock:
            self._active = value
        self._notify()

    @property
    def description(self) -> str:
        return self._description

    @description.setter
    def description(self, value: str) -> None:
        with self._lock:
            self._description = value
        self._notify()

    def is_active_as_of(self, as_of: int | None) -> bool:
        if not self._active:
            return False
        if as_of is None or self._create_date is None:
            return True
        return self._create_date <= as_of

    def latest_effective_date(self, as_of: int) -> int | None:
        """Start of the blend window when this rating is the earlier of two.

        Plain ratings start at their effective date; shifted ratings override
        this with their newest shift date.
        """
        return self._effective_date

    def identity_record(self) -> dict[str, Any]:
        return {
            "office_id": self._office_id,
            "rating_spec_id": self._rating_spec_id,
            "units_id": self.units_id,
            "effective_date": self._effective_date,
            "create_date": self._create_date,
            "transition_start_date": self._transition_start_date,
            "active": self._active,
            "description": self._description,
        }


def _expand_times(times: TimeArg, count: int) -> list[int | None]:
    if times is None or isinstance(times, int):
        return [times] * count
    expanded = list(times)
    if len(expanded) != count:
        raise ConfigurationError(f"Got {len(expanded)} times for {count} values")
    return expanded
