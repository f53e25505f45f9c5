"""Time-ordered collections of ratings sharing one specification.

A :class:`RatingSeries` picks the rating (or pair of ratings) that applies
at each value time and blends between them according to its
:class:`~hydrorating.specs.RatingSpec`:

* before the earliest active rating - the out-of-range-low method
* after the latest active rating - the out-of-range-high method
* exactly on an effective date - that rating alone
* between two effective dates - the in-range method

Interpolating methods blend the two bracketing results linearly in time.
The start of the blend window moves forward to the upper rating's transition
start date and to the lower rating's newest shift date when those fall
inside the window.
"""
from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from hydrorating.base import AbstractRating, Rating, RatingExtents, now_millis
from hydrorating.constants import UNDEFINED, is_undefined
from hydrorating.errors import ConfigurationError, RatingLookupError, RatingRangeError
from hydrorating.methods import RatingMethod
from hydrorating.specs import RatingSpec
from hydrorating.table import interpolate

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Selection:
    """Outcome of temporal resolution: one rating, a pair to blend, or nothing.

    ``extrapolate`` marks a pair chosen for a time outside every effective
    date; the blend then runs past the window instead of holding at its start.
    """

    rating: AbstractRating | None = None
    lower: AbstractRating | None = None
    upper: AbstractRating | None = None
    method: RatingMethod | None = None
    extrapolate: bool = False


_UNDEFINED_SELECTION = _Selection()


class RatingSeries(Rating):
    """Ratings of one specification keyed by effective date."""

    def __init__(
        self,
        spec: RatingSpec,
        ratings: Iterable[AbstractRating] = (),
        *,
        rating_time: int | None = None,
        default_value_time: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(office_id=spec.office_id, rating_spec_id=spec.rating_spec_id, **kwargs)
        self._spec = spec
        self._ratings: list[AbstractRating] = []
        self._active: list[AbstractRating] = []
        self._active_dates: list[int] = []
        self._rating_time = rating_time
        self._default_value_time = default_value_time
        self._last: tuple[int, AbstractRating] | None = None
        for rating in ratings:
            self._admit(rating)
        self._rebuild()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _check(self, rating: AbstractRating, replacing: AbstractRating | None = None) -> None:
        if not isinstance(rating, AbstractRating):
            raise ConfigurationError(f"Cannot add {type(rating).__name__} to a rating series")
        if rating.effective_date is None:
            raise ConfigurationError(f"Rating {rating.name} has no effective date")
        if rating.rating_spec_id and rating.rating_spec_id.upper() != self.rating_spec_id.upper():
            raise ConfigurationError(
                f"Rating {rating.rating_spec_id} does not belong to series {self.rating_spec_id}"
            )
        if rating.office_id and self.office_id and rating.office_id.upper() != self.office_id.upper():
            raise ConfigurationError(f"Rating office {rating.office_id} is not {self.office_id}")
        if rating.ind_param_count != self.ind_param_count:
            raise ConfigurationError(
                f"Rating {rating.name} has {rating.ind_param_count} independent parameters, "
                f"series {self.name} has {self.ind_param_count}"
            )
        if self.rating_units and rating.rating_units and rating.rating_units != self.rating_units:
            raise ConfigurationError(
                f"Rating units {rating.units_id} differ from series units {self.units_id}"
            )
        for existing in self._ratings:
            if existing is not replacing and existing.effective_date == rating.effective_date:
                raise ConfigurationError(
                    f"Series {self.name} already has a rating effective at {rating.effective_date}"
                )

    def _admit(self, rating: AbstractRating) -> None:
        self._check(rating)
        self._ratings.append(rating)
        if not self.rating_units and rating.rating_units:
            self._set_ids(self.rating_spec_id, rating.units_id)
        rating.on_changed(self._member_changed)
        rating.add_date_check(self._check_member_date)

    def _release(self, rating: AbstractRating) -> None:
        self._ratings.remove(rating)
        rating.remove_listener(self._member_changed)
        rating.remove_date_check(self._check_member_date)

    def _find(self, effective_date: int) -> AbstractRating:
        for rating in self._ratings:
            if rating.effective_date == effective_date:
                return rating
        raise RatingLookupError(f"Series {self.name} has no rating effective at {effective_date}")

    def add_rating(self, rating: AbstractRating) -> None:
        with self._lock:
            self._admit(rating)
            self._rebuild()
        self._notify()

    def add_ratings(self, ratings: Iterable[AbstractRating]) -> None:
        with self._lock:
            for rating in ratings:
                self._admit(rating)
            self._rebuild()
        self._notify()

    def remove_rating(self, effective_date: int) -> AbstractRating:
        """Remove and return the rating effective at *effective_date*."""
        with self._lock:
            rating = self._find(effective_date)
            self._release(rating)
            self._rebuild()
        self._notify()
        return rating

    def replace_rating(self, rating: AbstractRating) -> AbstractRating:
        """Swap in *rating* for the member with the same effective date."""
        with self._lock:
            if rating.effective_date is None:
                raise ConfigurationError(f"Rating {rating.name} has no effective date")
            old = self._find(rating.effective_date)
            self._check(rating, replacing=old)
            self._release(old)
            self._ratings.append(rating)
            rating.on_changed(self._member_changed)
            rating.add_date_check(self._check_member_date)
            self._rebuild()
        self._notify()
        return old

    def get_rating(self, effective_date: int) -> AbstractRating:
        with self._lock:
            return self._find(effective_date)

    def _check_member_date(self, rating: AbstractRating, effective_date: int | None) -> None:
        if effective_date is None:
            raise ConfigurationError(f"Rating {rating.name} in series {self.name} needs an effective date")
        with self._lock:
            for existing in self._ratings:
                if existing is not rating and existing.effective_date == effective_date:
                    raise ConfigurationError(
                        f"Series {self.name} already has a rating effective at {effective_date}"
                    )

    def _member_changed(self, rating: Rating) -> None:
        with self._lock:
            self._rebuild()
        self._notify()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _rebuild(self) -> None:
        """Re-sort members and recompute the active view.  Caller holds the lock."""
        self._ratings.sort(key=lambda r: r.effective_date)  # type: ignore[arg-type,return-value]
        self._active = [r for r in self._ratings if r.is_active_as_of(self._rating_time)]
        self._active_dates = [r.effective_date for r in self._active]  # type: ignore[misc]
        self._last = None
        log.debug(
            "Rebuilt %s: %d of %d ratings active", self.name, len(self._active), len(self._ratings),
        )

    @property
    def spec(self) -> RatingSpec:
        return self._spec

    @property
    def ratings(self) -> tuple[AbstractRating, ...]:
        with self._lock:
            return tuple(self._ratings)

    @property
    def active_ratings(self) -> tuple[AbstractRating, ...]:
        with self._lock:
            return tuple(self._active)

    @property
    def rating_time(self) -> int | None:
        """Cutoff for rating create dates; None means every active rating."""
        return self._rating_time

    @rating_time.setter
    def rating_time(self, value: int | None) -> None:
        with self._lock:
            self._rating_time = value
            self._rebuild()
        self._notify()

    @property
    def default_value_time(self) -> int | None:
        return self._default_value_time

    @default_value_time.setter
    def default_value_time(self, value: int | None) -> None:
        with self._lock:
            self._default_value_time = value
            self._last = None
        self._notify()

    def _value_time(self, time: int | None) -> int:
        if time is not None:
            return time
        if self._default_value_time is not None:
            return self._default_value_time
        return now_millis()

    # ------------------------------------------------------------------
    # Temporal resolution
    # ------------------------------------------------------------------

    def _select(self, t: int) -> _Selection:
        active = self._active
        if not active:
            raise RatingLookupError(f"Series {self.name} has no active ratings")
        dates = self._active_dates
        i = bisect.bisect_right(dates, t)

        if i == 0:
            method = self._spec.out_range_low_method
            if method is RatingMethod.ERROR:
                raise RatingRangeError(f"Value time {t} is before the earliest rating of {self.name}")
            if method is RatingMethod.NULL:
                return _UNDEFINED_SELECTION
            if not method.interpolates:
                return _Selection(rating=active[0])
            if len(active) == 1:
                raise RatingRangeError(f"Cannot use rating method {method.name} with only one active rating")
            return _Selection(lower=active[0], upper=active[1], method=method, extrapolate=True)

        if dates[i - 1] == t:
            return _Selection(rating=active[i - 1])

        if i == len(active):
            method = self._spec.out_range_high_method
            if method is RatingMethod.ERROR:
                raise RatingRangeError(f"Value time {t} is after the latest rating of {self.name}")
            if method is RatingMethod.NULL:
                return _UNDEFINED_SELECTION
            if not method.interpolates:
                return _Selection(rating=active[-1])
            if len(active) == 1:
                raise RatingRangeError(f"Cannot use rating method {method.name} with only one active rating")
            return _Selection(lower=active[-2], upper=active[-1], method=method, extrapolate=True)

        lower, upper = active[i - 1], active[i]
        method = self._spec.in_range_method
        match method:
            case RatingMethod.ERROR:
                raise RatingRangeError(f"Value time {t} falls between ratings of {self.name}")
            case RatingMethod.NULL:
                return _UNDEFINED_SELECTION
            case RatingMethod.PREVIOUS | RatingMethod.LOWER:
                return _Selection(rating=lower)
            case RatingMethod.NEXT | RatingMethod.HIGHER:
                return _Selection(rating=upper)
            case RatingMethod.CLOSEST:
                closer_lower = t - dates[i - 1] < dates[i] - t
                return _Selection(rating=lower if closer_lower else upper)
        return _Selection(lower=lower, upper=upper, method=method)

    def _blend_window(self, lower: AbstractRating, upper: AbstractRating) -> tuple[int, int]:
        t2 = upper.effective_date
        t1 = lower.latest_effective_date(t2)  # type: ignore[arg-type]
        transition = upper.transition_start_date
        if transition is not None and t1 < transition < t2:  # type: ignore[operator]
            t1 = transition
        return t1, t2  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Rating hooks
    # ------------------------------------------------------------------

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        t = self._value_time(time)
        if self._last is not None and self._last[0] == t:
            return self._last[1].rate_one(values, t)
        sel = self._select(t)
        if sel.rating is not None:
            self._last = (t, sel.rating)
            return sel.rating.rate_one(values, t)
        self._last = None
        if sel.lower is None or sel.upper is None:
            return UNDEFINED
        y1 = sel.lower.rate_one(values, t)
        y2 = sel.upper.rate_one(values, t)
        if is_undefined(y1) or is_undefined(y2):
            return UNDEFINED
        t1, t2 = self._blend_window(sel.lower, sel.upper)
        if t <= t1 and not sel.extrapolate:
            return y1
        return y1 + ((t - t1) / (t2 - t1)) * (y2 - y1)

    def _reverse_at(self, value: float, time: int | None) -> float:
        t = self._value_time(time)
        sel = self._select(t)
        if sel.rating is not None:
            return sel.rating.reverse_rate(value, t)
        if sel.lower is None or sel.upper is None or sel.method is None:
            return UNDEFINED
        x1 = sel.lower.reverse_rate(value, t)
        x2 = sel.upper.reverse_rate(value, t)
        if is_undefined(x1) or is_undefined(x2):
            return UNDEFINED
        t1, t2 = self._blend_window(sel.lower, sel.upper)
        if t <= t1 and not sel.extrapolate:
            return x1
        return interpolate(float(t), float(t1), float(t2), x1, x2, sel.method)  # type: ignore[arg-type]

    def _extents(self, time: int | None) -> RatingExtents:
        t = self._value_time(time)
        sel = self._select(t)
        rating = sel.rating if sel.rating is not None else sel.lower
        if rating is None:
            raise RatingLookupError(f"No rating of {self.name} applies at {t}")
        return rating.extents(t)

    def to_record(self) -> dict[str, Any]:
        with self._lock:
            return {
                "kind": "series",
                "spec": self._spec.to_dict(),
                "rating_time": self._rating_time,
                "default_value_time": self._default_value_time,
                "ratings": [r.to_record() for r in self._ratings],
            }
