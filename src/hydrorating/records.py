"""Plain-dict records for every rating kind, and JSON files of records.

Records are tagged by ``"kind"``::

    table | usgs | expression | series | source | virtual | transitional

``to_record`` / ``from_record`` convert between ratings and records with
ISO-8601 UTC timestamps.  ``save_records`` / ``load_records`` read and write
a JSON document (``{"ratings": [...]}``) or, for ``.jsonl`` paths, one record
per line.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson

from hydrorating.base import Rating
from hydrorating.config import RatingConfig
from hydrorating.errors import ConfigurationError
from hydrorating.expression import ExpressionEngine
from hydrorating.expression_rating import ExpressionRating
from hydrorating.methods import RatingMethodSet
from hydrorating.series import RatingSeries
from hydrorating.source import SourceRating
from hydrorating.specs import RatingSpec
from hydrorating.table import TableRating, build_table
from hydrorating.transitional import TransitionalRating
from hydrorating.units import UnitConverter
from hydrorating.usgs import UsgsShiftedRating
from hydrorating.virtual import VirtualRating

log = logging.getLogger(__name__)

TIME_KEYS = frozenset({
    "effective_date",
    "create_date",
    "transition_start_date",
    "rating_time",
    "default_value_time",
})

_IDENTITY_KEYS = (
    "office_id",
    "rating_spec_id",
    "units_id",
    "effective_date",
    "create_date",
    "transition_start_date",
    "active",
    "description",
)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def millis_to_iso(millis: int | None) -> str | None:
    if millis is None:
        return None
    dt = datetime.fromtimestamp(millis / 1000, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_to_millis(value: str | int | None) -> int | None:
    """Parse an ISO-8601 timestamp (naive means UTC); ints pass through."""
    if value is None or isinstance(value, int):
        return value
    try:
        dt = datetime.fromisoformat(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid timestamp {value!r}: {e}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return round(dt.timestamp() * 1000)


def _map_times(obj: Any, fn: Any) -> Any:
    if isinstance(obj, dict):
        return {k: fn(v) if k in TIME_KEYS else _map_times(v, fn) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_map_times(v, fn) for v in obj]
    return obj


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def to_record(rating: Rating) -> dict[str, Any]:
    """Record for *rating* with ISO timestamps."""
    return _map_times(rating.to_record(), millis_to_iso)


class _Builder:
    """Rebuilds ratings from int-timestamp records, sharing config and capabilities."""

    def __init__(
        self,
        config: RatingConfig | None,
        units: UnitConverter | None,
        engine: ExpressionEngine | None,
    ) -> None:
        self.config = config
        self.units = units
        self.engine = engine

    def identity(self, record: dict[str, Any]) -> dict[str, Any]:
        out = {k: record[k] for k in _IDENTITY_KEYS if record.get(k) is not None}
        out["config"] = self.config
        out["units"] = self.units
        return out

    def build(self, record: dict[str, Any]) -> Rating:
        kind = record.get("kind")
        match kind:
            case "table":
                return self.table(record)
            case "usgs":
                return self.usgs(record)
            case "expression":
                return ExpressionRating(record["expression"], engine=self.engine, **self.identity(record))
            case "series":
                return self.series(record)
            case "source":
                return self.source(record)
            case "virtual":
                return VirtualRating(
                    [self.source(s) for s in record.get("source_ratings", [])],
                    record["connections"],
                    **self.identity(record),
                )
            case "transitional":
                return TransitionalRating(
                    record.get("conditions", []),
                    record["evaluations"],
                    [self.source(s) for s in record.get("source_ratings", [])],
                    engine=self.engine,
                    **self.identity(record),
                )
        raise ConfigurationError(f"Unknown rating record kind: {kind!r}")

    def table(self, record: dict[str, Any]) -> TableRating:
        method_sets = [RatingMethodSet.from_dict(m) for m in record.get("method_sets", [])] or None
        return build_table(
            record["rows"],
            method_sets,
            extension_rows=record.get("extension_rows"),
            **self.identity(record),
        )

    def usgs(self, record: dict[str, Any]) -> UsgsShiftedRating:
        base = self.table({**record, "kind": "table"})
        shifts = [self.table(s) for s in record.get("shifts") or []]
        offsets = self.table(record["offsets"]) if record.get("offsets") else None
        methods = base.methods
        return UsgsShiftedRating(
            base.points,
            extension_points=base.extension_points,
            in_range_method=methods.in_range,
            out_range_low_method=methods.out_range_low,
            out_range_high_method=methods.out_range_high,
            shifts=shifts,
            offsets=offsets,
            **self.identity(record),
        )

    def series(self, record: dict[str, Any]) -> RatingSeries:
        ratings = [self.build(r) for r in record.get("ratings", [])]
        return RatingSeries(
            RatingSpec.from_dict(record["spec"]),
            ratings,  # type: ignore[arg-type]
            rating_time=record.get("rating_time"),
            default_value_time=record.get("default_value_time"),
            config=self.config,
            units=self.units,
        )

    def source(self, record: dict[str, Any]) -> SourceRating:
        if record.get("kind", "source") != "source":
            # a bare rating record stands for a source with the rating's own units
            return SourceRating(self.build(record), config=self.config, units=self.units)
        if record.get("rating") is not None:
            return SourceRating(
                self.build(record["rating"]),
                units_id=record.get("units_id", ""),
                config=self.config,
                units=self.units,
            )
        return SourceRating(
            expression=record["expression"],
            units_id=record.get("units_id", ""),
            engine=self.engine,
            config=self.config,
            units=self.units,
        )


def from_record(
    record: dict[str, Any],
    *,
    config: RatingConfig | None = None,
    units: UnitConverter | None = None,
    engine: ExpressionEngine | None = None,
) -> Rating:
    """Rebuild a rating from its record.

    Parameters
    ----------
    record
        A record as produced by :func:`to_record`; integer timestamps are
        accepted as well.
    config, units, engine
        Handed to the rating and every rating nested in it.
    """
    return _Builder(config, units, engine).build(_map_times(record, iso_to_millis))


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def save_records(ratings: Iterable[Rating], path: Path) -> None:
    """Write ratings as records; ``.jsonl`` paths get one record per line."""
    records = [to_record(r) for r in ratings]
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".jsonl":
        lines = [orjson.dumps(r, option=orjson.OPT_SORT_KEYS) for r in records]
        path.write_bytes(b"\n".join(lines) + b"\n")
    else:
        doc = {"ratings": records}
        path.write_bytes(orjson.dumps(doc, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
    log.debug("Wrote %d rating records to %s", len(records), path)


def load_record_dicts(path: Path) -> list[dict[str, Any]]:
    raw = path.read_bytes()
    if path.suffix == ".jsonl":
        return [orjson.loads(line) for line in raw.split(b"\n") if line.strip()]
    doc = orjson.loads(raw)
    if isinstance(doc, list):
        return doc
    if isinstance(doc, dict) and "ratings" in doc:
        return list(doc["ratings"])
    if isinstance(doc, dict) and "kind" in doc:
        return [doc]
    raise ConfigurationError(f"{path} does not hold rating records")


def load_records(
    path: Path,
    *,
    config: RatingConfig | None = None,
    units: UnitConverter | None = None,
    engine: ExpressionEngine | None = None,
) -> list[Rating]:
    """Read ratings written by :func:`save_records`."""
    ratings = [
        from_record(r, config=config, units=units, engine=engine) for r in load_record_dicts(path)
    ]
    log.debug("Loaded %d ratings from %s", len(ratings), path)
    return ratings
