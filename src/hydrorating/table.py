"""Tabular ratings with optional nesting for multiple independent parameters.

A :class:`TableRating` holds an ordered, strictly monotonic list of
:class:`RatingPoint`.  With more than one independent parameter, each point
carries a nested table over the remaining parameters, so a value set
``(x1, x2, ..., xn)`` is rated by looking up ``x1`` in the top table, then
``x2`` in the nested tables of the bracketing points, and so on.

Lookups honor the table's sort direction.  "Before" and "after" the data are
positional: for a decreasing table a value larger than the first point is
out of range low.
"""
from __future__ import annotations

import bisect
import itertools
import math
from collections.abc import Callable, Sequence
from typing import Any, TypeAlias

from hydrorating.base import AbstractRating, RatingExtents
from hydrorating.constants import UNDEFINED, is_undefined, values_equal
from hydrorating.errors import (
    ConfigurationError,
    RatingRangeError,
    UnsupportedOperationError,
)
from hydrorating.methods import RatingMethod, RatingMethodSet, validate_methods
from hydrorating.points import RatingPoint

PointLike: TypeAlias = RatingPoint | tuple[Any, ...]
OffsetFn: TypeAlias = Callable[[float], float]


# ---------------------------------------------------------------------------
# Interpolation
# ---------------------------------------------------------------------------

def _log10(value: float) -> float | None:
    if value > 0 and math.isfinite(value):
        return math.log10(value)
    return None


def interpolate(
    x: float,
    x1: float,
    x2: float,
    y1: float,
    y2: float,
    method: RatingMethod,
    ind_offset: float = 0.0,
    dep_offset: float = 0.0,
) -> float:
    """Interpolate (or extrapolate) y at x between (x1, y1) and (x2, y2).

    Logarithmic axes are transformed with log10 after subtracting the axis
    offset.  An axis whose transform is not finite falls back to linear.
    """
    ind_log, dep_log = method.log_axes
    if ind_log:
        logs = (_log10(x - ind_offset), _log10(x1 - ind_offset), _log10(x2 - ind_offset))
        if None not in logs:
            x, x1, x2 = logs  # type: ignore[assignment]
    if dep_log:
        ly1, ly2 = _log10(y1 - dep_offset), _log10(y2 - dep_offset)
        if ly1 is None or ly2 is None:
            dep_log = False
        else:
            y1, y2 = ly1, ly2
    if x2 == x1:
        y = y1
    else:
        y = y1 + ((x - x1) / (x2 - x1)) * (y2 - y1)
    return 10.0 ** y + dep_offset if dep_log else y


def _lt(a: float, b: float) -> bool:
    return a < b and not values_equal(a, b)


def _gt(a: float, b: float) -> bool:
    return a > b and not values_equal(a, b)


# ---------------------------------------------------------------------------
# Point helpers
# ---------------------------------------------------------------------------

def _as_point(item: PointLike) -> RatingPoint:
    if isinstance(item, RatingPoint):
        return item
    if not 2 <= len(item) <= 3:
        raise ConfigurationError(f"Rating point must be (ind, dep[, note]), got {item!r}")
    dep = item[1]
    if isinstance(dep, int | float):
        dep = float(dep)
    note = item[2] if len(item) == 3 else None
    return RatingPoint(float(item[0]), dep, note)


def _direction(points: Sequence[RatingPoint], what: str) -> bool:
    """Return True for increasing, False for decreasing; raise otherwise."""
    if len(points) < 2:
        return True
    increasing = points[1].ind > points[0].ind
    for a, b in itertools.pairwise(points):
        if values_equal(a.ind, b.ind) or (b.ind > a.ind) != increasing:
            raise ConfigurationError(
                f"{what} do not monotonically increase or decrease "
                f"(at {a.ind!r} -> {b.ind!r})"
            )
    return increasing


class TableRating(AbstractRating):
    """Monotonic lookup table, optionally nested.

    Defaults are ``LINEAR`` in range and ``ERROR`` out of range.  Extension
    points (one-parameter tables only) are used outside the base domain and
    never as interpolation anchors inside it.
    """

    def __init__(
        self,
        points: Sequence[PointLike],
        *,
        extension_points: Sequence[PointLike] | None = None,
        in_range_method: RatingMethod = RatingMethod.LINEAR,
        out_range_low_method: RatingMethod = RatingMethod.ERROR,
        out_range_high_method: RatingMethod = RatingMethod.ERROR,
        **identity: Any,
    ) -> None:
        super().__init__(**identity)
        self._points: tuple[RatingPoint, ...] = ()
        self._extension_points: tuple[RatingPoint, ...] | None = None
        self._effective: tuple[RatingPoint, ...] = ()
        self._keys: list[float] = []
        self._increasing = True
        self._methods = RatingMethodSet()
        self._reversed: TableRating | None = None
        self._install(points, extension_points, in_range_method, out_range_low_method, out_range_high_method)

    # ------------------------------------------------------------------
    # Construction and mutation
    # ------------------------------------------------------------------

    def _install(
        self,
        points: Sequence[PointLike],
        extension_points: Sequence[PointLike] | None,
        in_range: RatingMethod,
        out_low: RatingMethod,
        out_high: RatingMethod,
    ) -> None:
        pts = tuple(_as_point(p) for p in points)
        if not pts:
            raise ConfigurationError("Table rating has no points")
        depth = pts[0].depth
        for p in pts:
            if p.depth != depth:
                raise ConfigurationError(
                    "Table rating points have inconsistent nesting: "
                    f"{p.depth} independent parameters at {p.ind!r}, expected {depth}"
                )
        if self.rating_spec_id and depth != super().ind_param_count:
            raise ConfigurationError(
                f"Table has {depth} independent parameters but {self.rating_spec_id} "
                f"specifies {super().ind_param_count}"
            )
        increasing = _direction(pts, "Table rating points")
        validate_methods(in_range, out_low, out_high, increasing=increasing, context="table rating")

        ext: tuple[RatingPoint, ...] | None = None
        effective = pts
        if extension_points:
            ext = tuple(_as_point(p) for p in extension_points)
            if depth != 1:
                raise ConfigurationError("Extension points are only allowed on one-parameter tables")
            if any(p.is_nested for p in ext):
                raise ConfigurationError("Extension points cannot hold nested tables")
            if len(ext) > 1 and _direction(ext, "Extension points") != increasing:
                raise ConfigurationError("Extension points are not sorted in the table's direction")
            effective = self._merge_extension(pts, ext, increasing)

        self._points = pts
        self._extension_points = ext
        self._effective = effective
        self._increasing = increasing
        self._keys = [p.ind if increasing else -p.ind for p in effective]
        self._methods = RatingMethodSet(in_range, out_low, out_high)
        self._reversed = None

    @staticmethod
    def _merge_extension(
        points: tuple[RatingPoint, ...],
        ext: tuple[RatingPoint, ...],
        increasing: bool,
    ) -> tuple[RatingPoint, ...]:
        first, last = points[0].ind, points[-1].ind
        if increasing:
            before = [p for p in ext if _lt(p.ind, first)]
            after = [p for p in ext if _gt(p.ind, last)]
        else:
            before = [p for p in ext if _gt(p.ind, first)]
            after = [p for p in ext if _lt(p.ind, last)]
        return (*before, *points, *after)

    def set_points(
        self,
        points: Sequence[PointLike],
        extension_points: Sequence[PointLike] | None = None,
    ) -> None:
        with self._lock:
            m = self._methods
            self._install(points, extension_points, m.in_range, m.out_range_low, m.out_range_high)
        self._notify()

    def set_methods(
        self,
        in_range_method: RatingMethod,
        out_range_low_method: RatingMethod,
        out_range_high_method: RatingMethod,
    ) -> None:
        with self._lock:
            self._install(
                self._points, self._extension_points,
                in_range_method, out_range_low_method, out_range_high_method,
            )
        self._notify()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def points(self) -> tuple[RatingPoint, ...]:
        return self._points

    @property
    def extension_points(self) -> tuple[RatingPoint, ...] | None:
        return self._extension_points

    @property
    def effective_points(self) -> tuple[RatingPoint, ...]:
        return self._effective

    @property
    def increasing(self) -> bool:
        return self._increasing

    @property
    def methods(self) -> RatingMethodSet:
        return self._methods

    @property
    def in_range_method(self) -> RatingMethod:
        return self._methods.in_range

    @property
    def out_range_low_method(self) -> RatingMethod:
        return self._methods.out_range_low

    @property
    def out_range_high_method(self) -> RatingMethod:
        return self._methods.out_range_high

    @property
    def ind_param_count(self) -> int:
        return self._points[0].depth

    def method_sets(self) -> tuple[RatingMethodSet, ...]:
        """Methods per parameter level, taken from the first nested table of each level."""
        sets = [self._methods]
        dep = self._points[0].dep
        while isinstance(dep, TableRating):
            sets.append(dep.methods)
            dep = dep.points[0].dep
        return tuple(sets)

    def rows(self, extension: bool = False) -> list[tuple[Any, ...]]:
        """Flatten to ``(ind1, ..., indN, dep)`` rows, with a trailing note where one exists."""
        source = self._extension_points if extension else self._points
        out: list[tuple[Any, ...]] = []
        for p in source or ():
            if isinstance(p.dep, TableRating):
                out.extend((p.ind, *row) for row in p.dep.rows())
            elif p.note is not None:
                out.append((p.ind, p.dep, p.note))
            else:
                out.append((p.ind, p.dep))
        return out

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        return self.lookup(values)

    def _dep_of(self, point: RatingPoint, values: tuple[float, ...], level: int) -> float:
        if isinstance(point.dep, TableRating):
            return point.dep.lookup(values, level + 1)
        return point.dep

    def _locate(self, x: float) -> tuple[int, int, str]:
        """Return (lo, hi, where) with where in {"low", "high", "in"}."""
        pts = self._effective
        n = len(pts)
        first, last = pts[0].ind, pts[-1].ind
        if (_lt(x, first) if self._increasing else _gt(x, first)):
            return 0, min(1, n - 1), "low"
        if (_gt(x, last) if self._increasing else _lt(x, last)):
            return max(n - 2, 0), n - 1, "high"
        if n == 1:
            return 0, 0, "in"
        key = x if self._increasing else -x
        hi = bisect.bisect_right(self._keys, key)
        hi = min(max(hi, 1), n - 1)
        return hi - 1, hi, "in"

    def lookup(
        self,
        values: tuple[float, ...],
        level: int = 0,
        log_offset: OffsetFn | None = None,
        dep_offset: OffsetFn | None = None,
    ) -> float:
        """Rate ``values[level:]`` against this table (values in rating units).

        *log_offset* maps the upper bracketing independent value to the
        offset subtracted before a logarithmic transform of the independent
        axis.  *dep_offset* does the same for the dependent axis, keyed on the
        smaller bracketing dependent value.
        """
        x = values[level]
        if is_undefined(x):
            return UNDEFINED
        pts = self._effective
        lo, hi, where = self._locate(x)
        method = self._methods.in_range

        if where != "in":
            method = self._methods.out_range_low if where == "low" else self._methods.out_range_high
            if method is RatingMethod.NULL:
                return UNDEFINED
            if method is RatingMethod.ERROR:
                raise RatingRangeError(f"Value {x!r} is out of range {where} for {self.name}")
            if not method.interpolates:
                boundary = pts[0] if where == "low" else pts[-1]
                return self._dep_of(boundary, values, level)
            if len(pts) < 2:
                raise RatingRangeError(f"Cannot extrapolate {x!r} from a single-point table")

        lo_pt, hi_pt = pts[lo], pts[hi]
        if values_equal(x, lo_pt.ind):
            return self._dep_of(lo_pt, values, level)
        if values_equal(x, hi_pt.ind):
            return self._dep_of(hi_pt, values, level)

        if method is RatingMethod.NULL:
            return UNDEFINED
        if method is RatingMethod.ERROR:
            raise RatingRangeError(f"No value in table {self.name} for {x!r}")
        if method is RatingMethod.PREVIOUS:
            return self._dep_of(lo_pt, values, level)
        if method is RatingMethod.NEXT:
            return self._dep_of(hi_pt, values, level)
        if method is RatingMethod.LOWER:
            return self._dep_of(lo_pt if self._increasing else hi_pt, values, level)
        if method is RatingMethod.HIGHER:
            return self._dep_of(hi_pt if self._increasing else lo_pt, values, level)
        if method is RatingMethod.CLOSEST:
            closer_lo = _lt(abs(x - lo_pt.ind), abs(hi_pt.ind - x))
            return self._dep_of(lo_pt if closer_lo else hi_pt, values, level)

        y1 = self._dep_of(lo_pt, values, level)
        y2 = self._dep_of(hi_pt, values, level)
        if is_undefined(y1) or is_undefined(y2):
            return UNDEFINED
        ind_log, dep_log = method.log_axes
        offset = log_offset(hi_pt.ind) if log_offset is not None and ind_log else 0.0
        y_offset = dep_offset(min(y1, y2)) if dep_offset is not None and dep_log else 0.0
        return interpolate(x, lo_pt.ind, hi_pt.ind, y1, y2, method, offset, y_offset)

    # ------------------------------------------------------------------
    # Reverse
    # ------------------------------------------------------------------

    def reverse(self) -> TableRating:
        """The cached table with independent and dependent columns swapped."""
        with self._lock:
            if self._reversed is None:
                self._reversed = self._build_reversed()
            return self._reversed

    def _build_reversed(self) -> TableRating:
        if self.ind_param_count != 1:
            raise UnsupportedOperationError(
                f"Cannot reverse {self.name}: it has {self.ind_param_count} independent parameters"
            )
        swapped = [RatingPoint(float(p.dep), p.ind, p.note) for p in self._points]  # type: ignore[arg-type]
        ext = None
        if self._extension_points:
            ext = [RatingPoint(float(p.dep), p.ind, p.note) for p in self._extension_points]  # type: ignore[arg-type]
        flipped = _direction(swapped, "Dependent values") != self._increasing
        m = self._methods
        units = self.rating_units
        return TableRating(
            swapped,
            extension_points=ext,
            in_range_method=_reversed_method(m.in_range, flipped),
            out_range_low_method=_reversed_method(m.out_range_low, flipped),
            out_range_high_method=_reversed_method(m.out_range_high, flipped),
            office_id=self.office_id,
            units_id=f"{units[1]};{units[0]}" if units else "",
            config=self.config,
            units=self.unit_converter,
        )

    def _reverse_at(self, value: float, time: int | None) -> float:
        return self.reverse().lookup((value,))

    # ------------------------------------------------------------------
    # Extents
    # ------------------------------------------------------------------

    def bounds(self) -> tuple[list[float], list[float]]:
        """Per-level (lows, highs), recursing into nested tables."""
        inds = [p.ind for p in self._effective]
        lows, highs = [min(inds)], [max(inds)]
        if self._effective[0].is_nested:
            nested = [p.dep.bounds() for p in self._effective]  # type: ignore[union-attr]
            for k in range(len(nested[0][0])):
                lows.append(min(b[0][k] for b in nested))
                highs.append(max(b[1][k] for b in nested))
        else:
            deps = [float(p.dep) for p in self._effective if not is_undefined(float(p.dep))]  # type: ignore[arg-type]
            lows.append(min(deps) if deps else UNDEFINED)
            highs.append(max(deps) if deps else UNDEFINED)
        return lows, highs

    def _extents(self, time: int | None) -> RatingExtents:
        lows, highs = self.bounds()
        return RatingExtents(tuple(lows), tuple(highs))

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        return {
            "kind": "table",
            **self.identity_record(),
            "method_sets": [m.to_dict() for m in self.method_sets()],
            "rows": [list(r) for r in self.rows()],
            "extension_rows": [list(r) for r in self.rows(extension=True)] if self._extension_points else None,
        }


def _reversed_method(method: RatingMethod, flipped: bool) -> RatingMethod:
    method = method.swapped_axes()
    if flipped and method is RatingMethod.LOWER:
        return RatingMethod.HIGHER
    if flipped and method is RatingMethod.HIGHER:
        return RatingMethod.LOWER
    return method


# ---------------------------------------------------------------------------
# Building from flat rows
# ---------------------------------------------------------------------------

def _split_row(row: Sequence[Any], width: int) -> tuple[tuple[float, ...], str | None]:
    if len(row) == width + 1 and isinstance(row[-1], str | None):
        return tuple(float(v) for v in row[:width]), row[-1]
    if len(row) != width:
        raise ConfigurationError(f"Row {list(row)!r} should have {width} values")
    return tuple(float(v) for v in row), None


def _build_points(
    rows: list[tuple[tuple[float, ...], str | None]],
    method_sets: Sequence[RatingMethodSet],
    level: int,
    nested_kwargs: dict[str, Any],
) -> list[RatingPoint]:
    if level == len(method_sets) - 1:
        return [RatingPoint(vals[level], vals[level + 1], note) for vals, note in rows]
    points: list[RatingPoint] = []
    methods = method_sets[level + 1]
    for key, group in itertools.groupby(rows, key=lambda r: r[0][level]):
        sub = _build_points(list(group), method_sets, level + 1, nested_kwargs)
        nested = TableRating(
            sub,
            in_range_method=methods.in_range,
            out_range_low_method=methods.out_range_low,
            out_range_high_method=methods.out_range_high,
            **nested_kwargs,
        )
        points.append(RatingPoint(key, nested))
    return points


def build_table(
    rows: Sequence[Sequence[Any]],
    method_sets: Sequence[RatingMethodSet] | None = None,
    *,
    extension_rows: Sequence[Sequence[Any]] | None = None,
    **identity: Any,
) -> TableRating:
    """Build a (possibly nested) table from flat ``(ind1, ..., indN, dep[, note])`` rows.

    Rows are grouped in order by their leading independent values; each
    nesting level takes its methods from ``method_sets[level]``.  When
    *method_sets* is omitted the parameter count is inferred from the rows
    and default methods are used.
    """
    if not rows:
        raise ConfigurationError("Table rating has no rows")
    if method_sets is None:
        width = len(rows[0]) - (1 if isinstance(rows[0][-1], str | None) else 0)
        method_sets = tuple(RatingMethodSet() for _ in range(width - 1))
    if not method_sets:
        raise ConfigurationError("Table rating needs at least one method set")
    width = len(method_sets) + 1
    parsed = [_split_row(r, width) for r in rows]
    nested_kwargs = {k: identity[k] for k in ("config", "units") if k in identity}
    points = _build_points(parsed, method_sets, 0, nested_kwargs)
    top = method_sets[0]
    ext_points = None
    if extension_rows:
        if len(method_sets) != 1:
            raise ConfigurationError("Extension points are only allowed on one-parameter tables")
        ext_points = [RatingPoint(vals[0], vals[1], note) for vals, note in (_split_row(r, 2) for r in extension_rows)]
    return TableRating(
        points,
        extension_points=ext_points,
        in_range_method=top.in_range,
        out_range_low_method=top.out_range_low,
        out_range_high_method=top.out_range_high,
        **identity,
    )
