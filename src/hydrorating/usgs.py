"""USGS-style stage/flow tables with dated shifts and log interpolation offsets.

A shift is a correction added to the observed stage before the table is
consulted.  Shifts are themselves small stage/shift tables with their own
effective dates; between two shift dates the shift is interpolated in time,
and before the first one it ramps from zero at the base rating's effective
date.

Offsets are subtracted from the stage before any logarithmic transform so
that stages near or below the gage datum still interpolate.
"""
from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from hydrorating.base import Rating
from hydrorating.constants import UNDEFINED, is_undefined
from hydrorating.errors import ConfigurationError, RatingLookupError
from hydrorating.methods import RatingMethod, RatingMethodSet
from hydrorating.table import OffsetFn, PointLike, TableRating, build_table

log = logging.getLogger(__name__)

SHIFT_METHODS = RatingMethodSet(RatingMethod.LINEAR, RatingMethod.NEAREST, RatingMethod.NEAREST)
OFFSET_METHODS = RatingMethodSet(RatingMethod.PREVIOUS, RatingMethod.NEXT, RatingMethod.PREVIOUS)


def shift_table(rows: Sequence[Sequence[Any]], effective_date: int, **identity: Any) -> TableRating:
    """Build a stage/shift curve effective at *effective_date*."""
    return build_table(rows, [SHIFT_METHODS], effective_date=effective_date, **identity)


def offset_table(rows: Sequence[Sequence[Any]], **identity: Any) -> TableRating:
    """Build a stage/offset table; one row means a constant offset."""
    return build_table(rows, [OFFSET_METHODS], **identity)


class UsgsShiftedRating(TableRating):
    """Stage/flow table rating corrected by time-varying shifts."""

    def __init__(
        self,
        points: Sequence[PointLike],
        *,
        shifts: Iterable[TableRating] = (),
        offsets: TableRating | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(points, **kwargs)
        if self.ind_param_count != 1:
            raise ConfigurationError("USGS shifted ratings have exactly one independent parameter")
        self._shifts: list[TableRating] = []
        self._offsets: TableRating | None = None
        self._install_shifts(shifts)
        self._install_offsets(offsets)

    # ------------------------------------------------------------------
    # Shifts and offsets
    # ------------------------------------------------------------------

    def _check_shift(self, shift: TableRating, others: Iterable[TableRating]) -> None:
        if not isinstance(shift, TableRating) or shift.ind_param_count != 1:
            raise ConfigurationError("Shifts must be one-parameter table ratings")
        if shift.effective_date is None:
            raise ConfigurationError("Shift has no effective date")
        base = self.effective_date
        if base is not None and shift.effective_date < base:
            raise ConfigurationError(
                f"Shift effective at {shift.effective_date} precedes rating effective date {base}"
            )
        if any(o.effective_date == shift.effective_date for o in others):
            raise ConfigurationError(f"Duplicate shift effective date {shift.effective_date}")

    def _install_shifts(self, shifts: Iterable[TableRating]) -> None:
        accepted: list[TableRating] = []
        for shift in shifts:
            self._check_shift(shift, accepted)
            accepted.append(shift)
        for old in self._shifts:
            old.remove_listener(self._shift_changed)
        accepted.sort(key=lambda s: s.effective_date)  # type: ignore[arg-type,return-value]
        for shift in accepted:
            shift.on_changed(self._shift_changed)
        self._shifts = accepted

    def _install_offsets(self, offsets: TableRating | None) -> None:
        if offsets is not None and offsets.ind_param_count != 1:
            raise ConfigurationError("Offsets must be a one-parameter table rating")
        self._offsets = offsets

    def _shift_changed(self, shift: Rating) -> None:
        with self._lock:
            self._shifts.sort(key=lambda s: s.effective_date)  # type: ignore[arg-type,return-value]
        self._notify()

    @property
    def shifts(self) -> tuple[TableRating, ...]:
        with self._lock:
            return tuple(self._shifts)

    def active_shifts(self) -> list[TableRating]:
        with self._lock:
            return [s for s in self._shifts if s.active]

    def set_shifts(self, shifts: Iterable[TableRating]) -> None:
        with self._lock:
            self._install_shifts(shifts)
        self._notify()

    def add_shift(self, shift: TableRating) -> None:
        with self._lock:
            self._install_shifts([*self._shifts, shift])
        self._notify()

    def remove_shift(self, effective_date: int) -> TableRating:
        with self._lock:
            for shift in self._shifts:
                if shift.effective_date == effective_date:
                    break
            else:
                raise RatingLookupError(f"No shift effective at {effective_date} in {self.name}")
            self._install_shifts([s for s in self._shifts if s is not shift])
        self._notify()
        return shift

    @property
    def offsets(self) -> TableRating | None:
        return self._offsets

    def set_offsets(self, offsets: TableRating | None) -> None:
        with self._lock:
            self._install_offsets(offsets)
        self._notify()

    def offset_at(self, stage: float) -> float:
        offsets = self._offsets
        if offsets is None:
            return 0.0
        points = offsets.points
        if len(points) == 1:
            return float(points[0].dep)  # type: ignore[arg-type]
        return offsets.lookup((stage,))

    # ------------------------------------------------------------------
    # Shift evaluation
    # ------------------------------------------------------------------

    def _round_shift(self, shift: float) -> float:
        decimals = self.config.shift_decimals
        return round(shift, decimals) if decimals is not None else shift

    def shift_at(self, time: int | None, stage: float) -> float:
        """Shift to add to an unshifted *stage* at value time *time*."""
        active = self.active_shifts()
        if not active:
            return 0.0
        if time is None:
            raise RatingLookupError(
                f"Value time is undefined in the presence of dated shifts for {self.name}"
            )
        dates = [s.effective_date for s in active]
        i = bisect.bisect_right(dates, time)
        if i == len(active):
            return self._round_shift(active[-1].lookup((stage,)))
        if i > 0 and dates[i - 1] == time:
            return self._round_shift(active[i - 1].lookup((stage,)))
        upper = active[i]
        hi_time, hi_shift = upper.effective_date, upper.lookup((stage,))
        if i > 0:
            lo_time, lo_shift = active[i - 1].effective_date, active[i - 1].lookup((stage,))
        else:
            base = self.effective_date
            if base is None or time <= base:
                return 0.0
            lo_time, lo_shift = base, 0.0
        fraction = (time - lo_time) / (hi_time - lo_time)  # type: ignore[operator]
        return self._round_shift(lo_shift + fraction * (hi_shift - lo_shift))

    def shift_from_shifted(self, time: int | None, shifted: float) -> float:
        """Solve ``shift = shift_at(time, shifted - shift)`` by fixed-point iteration."""
        if not self.active_shifts():
            return 0.0
        tolerance = self.config.shift_tolerance
        limit = self.config.max_shift_iterations
        shift1 = self.shift_at(time, shifted)
        for _ in range(limit):
            shift2 = self.shift_at(time, shifted - shift1)
            mean = (shift1 + shift2) / 2.0
            if shift2 == shift1 or abs(shift2 - shift1) < tolerance * abs(mean):
                return shift2
            shift1 = mean
        log.warning(
            "Shift for %s did not converge in %d iterations at stage %s; using %s",
            self.name, limit, shifted, shift1,
        )
        return shift1

    def latest_effective_date(self, as_of: int) -> int | None:
        latest = self.effective_date
        for shift in self.active_shifts():
            date = shift.effective_date
            if date is not None and date <= as_of and (latest is None or date > latest):
                latest = date
        return latest

    # ------------------------------------------------------------------
    # Rating hooks
    # ------------------------------------------------------------------

    def _offset_fn(self, raw: float) -> OffsetFn | None:
        if self._offsets is None:
            return None
        return lambda x2: self.offset_at(min(x2, raw))

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        raw = values[0]
        stage = raw + self.shift_at(time, raw)
        return self.lookup((stage,), log_offset=self._offset_fn(raw))

    def _reverse_at(self, value: float, time: int | None) -> float:
        dep_offset = self.offset_at if self._offsets is not None else None
        shifted = self.reverse().lookup((value,), dep_offset=dep_offset)
        if is_undefined(shifted):
            return UNDEFINED
        return shifted - self.shift_from_shifted(time, shifted)

    def to_record(self) -> dict[str, Any]:
        with self._lock:
            record = super().to_record()
            record["kind"] = "usgs"
            record["shifts"] = [s.to_record() for s in self._shifts]
            record["offsets"] = self._offsets.to_record() if self._offsets is not None else None
            return record
