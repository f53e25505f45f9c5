#!/usr/bin/env python3
"""Rate (or reverse rate) values with a rating loaded from a records file.

Usage::

    python3 scripts/rate_values.py --records ratings.json --value 5 --value 7.5
    python3 scripts/rate_values.py --records ratings.json --spec "LOC.Stage;Flow.USGS-EXSA.1" \\
        --time 2024-06-01T00:00:00Z --value 3.2
    python3 scripts/rate_values.py --records ratings.json --reverse --value 1200
    python3 scripts/rate_values.py --records ratings.json --value 10,2  # two parameters

Writes a JSON document to stdout; undefined results are ``null``.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

import orjson

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from hydrorating.base import Rating
from hydrorating.config import RatingConfig
from hydrorating.constants import is_undefined
from hydrorating.errors import RatingError
from hydrorating.records import iso_to_millis, load_records, millis_to_iso

log = logging.getLogger("rate_values")


def dump_json(obj: Any) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rate values with a stored rating")
    parser.add_argument("--records", required=True, type=Path, help="JSON or JSONL rating records")
    parser.add_argument(
        "--spec", default=None,
        help="Rating spec id to use (default: first rating in the file)",
    )
    parser.add_argument(
        "--value", action="append", required=True,
        help="Value to rate; comma-separate one value per independent parameter. Repeatable.",
    )
    parser.add_argument("--time", default=None, help="ISO-8601 value time (default: now)")
    parser.add_argument("--reverse", action="store_true", help="Reverse rate the values")
    parser.add_argument("--data-units", default=None, help="Units id of the values, e.g. 'm;cms'")
    parser.add_argument(
        "--strict-units", action="store_true",
        help="Fail instead of rating unconverted values when units cannot be converted",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def select_rating(ratings: list[Rating], spec: str | None) -> Rating:
    if not ratings:
        raise RatingError("No ratings in records file")
    if spec is None:
        return ratings[0]
    for rating in ratings:
        if rating.rating_spec_id.upper() == spec.upper():
            return rating
    raise RatingError(f"No rating with spec id {spec!r}")


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    config = RatingConfig(allow_unsafe=not args.strict_units)
    try:
        rating = select_rating(load_records(args.records, config=config), args.spec)
        if args.data_units:
            rating.set_data_units(args.data_units)
        time = iso_to_millis(args.time)
        results: list[dict[str, Any]] = []
        for text in args.value:
            inputs = [float(v) for v in text.split(",")]
            if args.reverse:
                out = rating.reverse_rate(inputs[0], time)
            else:
                out = rating.rate_one(inputs, time)
            results.append({"input": inputs, "output": None if is_undefined(out) else out})
    except (RatingError, ValueError) as e:
        log.error("%s", e)
        return 1

    log.debug("Rated %d values with %s", len(results), rating.name)
    dump_json({
        "rating": rating.name,
        "reverse": args.reverse,
        "time": millis_to_iso(time),
        "units": list(rating.data_units),
        "results": results,
    })
    return 0


if __name__ == "__main__":
    sys.exit(main())
