"""Tests for the rate_values command-line script."""
from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from hydrorating.records import save_records
from hydrorating.series import RatingSeries
from hydrorating.specs import RatingSpec
from hydrorating.table import TableRating, build_table

ROOT = Path(__file__).resolve().parents[1]
SPEC_ID = "LOC.Stage;Flow.Linear.1"


def _run(args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["PYTHONPATH"] = str(ROOT / "src")
    return subprocess.run(
        [sys.executable, str(ROOT / "scripts" / "rate_values.py"), *args],
        cwd=str(ROOT),
        env=env,
        capture_output=True,
        text=True,
        check=check,
    )


@pytest.fixture
def records(tmp_path: Path) -> Path:
    members = [
        TableRating([(0, 0), (10, 100)], office_id="SWT", rating_spec_id=SPEC_ID,
                    units_id="ft;cfs", effective_date=0),
        TableRating([(0, 0), (10, 200)], office_id="SWT", rating_spec_id=SPEC_ID,
                    units_id="ft;cfs", effective_date=86_400_000),
    ]
    gate = build_table(
        [(1, 0, 0), (1, 10, 100), (2, 0, 0), (2, 10, 200)],
        office_id="SWT", rating_spec_id="LOC.Elev,Opening;Flow.Gate.1", units_id="ft,ft;cfs",
    )
    path = tmp_path / "ratings.json"
    save_records([RatingSeries(RatingSpec("SWT", SPEC_ID), members), gate], path)
    return path


def test_rate_values_at_time(records: Path) -> None:
    proc = _run([
        "--records", str(records),
        "--time", "1970-01-01T12:00:00Z",
        "--value", "5", "--value", "10",
    ])
    out = json.loads(proc.stdout)
    assert out["rating"] == f"SWT/{SPEC_ID}"
    assert out["time"] == "1970-01-01T12:00:00.000Z"
    assert out["units"] == ["ft", "cfs"]
    assert [r["output"] for r in out["results"]] == pytest.approx([75, 150])


def test_reverse_with_data_units(records: Path) -> None:
    proc = _run([
        "--records", str(records),
        "--time", "1970-01-01T00:00:00Z",
        "--reverse",
        "--data-units", "m;cfs",
        "--value", "50",
    ])
    out = json.loads(proc.stdout)
    assert out["reverse"] is True
    assert out["units"] == ["m", "cfs"]
    assert out["results"][0]["output"] == pytest.approx(5 * 0.3048)


def test_select_by_spec_and_undefined_output(records: Path) -> None:
    proc = _run([
        "--records", str(records),
        "--spec", "loc.elev,opening;flow.gate.1",
        "--value", "1.5,5",
        "--value", "1.5,-99",
    ], check=False)
    # ERROR out of range on the nested table fails the run
    assert proc.returncode == 1
    assert "out of range" in proc.stderr

    out = json.loads(_run([
        "--records", str(records),
        "--spec", "LOC.Elev,Opening;Flow.Gate.1",
        "--value", "1.5,5",
    ]).stdout)
    assert out["results"] == [{"input": [1.5, 5.0], "output": pytest.approx(75)}]


def test_unknown_spec_fails(records: Path) -> None:
    proc = _run(["--records", str(records), "--spec", "LOC.Stage;Flow.Nope.1", "--value", "1"], check=False)
    assert proc.returncode == 1
    assert "No rating with spec id" in proc.stderr
