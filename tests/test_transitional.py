"""Tests for hydrorating.transitional: condition-selected evaluations."""
from __future__ import annotations

import pytest

from hydrorating.constants import is_undefined
from hydrorating.errors import ConfigurationError, CycleError, UnsupportedOperationError
from hydrorating.methods import RatingMethod
from hydrorating.source import SourceRating
from hydrorating.table import TableRating, build_table
from hydrorating.transitional import TransitionalRating
from hydrorating.virtual import VirtualRating

SPEC_ID = "LOC.Stage;Flow.Transitional.1"


def _table(slope: float, version: str, high: RatingMethod = RatingMethod.ERROR) -> TableRating:
    return TableRating(
        [(0, 0), (10, 10 * slope)],
        out_range_high_method=high,
        office_id="SWT",
        rating_spec_id=f"LOC.Stage;Flow.{version}.1",
        units_id="ft;cfs",
    )


def _transitional(conditions, evaluations, sources=None, units_id="ft;cfs") -> TransitionalRating:
    if sources is None:
        sources = [SourceRating(_table(10, "Low")), SourceRating(_table(20, "High"))]
    return TransitionalRating(
        conditions, evaluations, sources,
        office_id="SWT", rating_spec_id=SPEC_ID, units_id=units_id,
    )


class TestEvaluation:
    def test_first_true_condition_selects(self) -> None:
        t = _transitional(["I1 LT 5"], ["R1", "R2"])
        assert t.rate(2) == pytest.approx(20)
        assert t.rate(7) == pytest.approx(140)

    def test_conditions_checked_in_order(self) -> None:
        t = _transitional(["I1 LT 5", "I1 LT 8"], ["R1", "R2", "0"])
        assert t.rate(2) == pytest.approx(20)
        assert t.rate(6) == pytest.approx(120)
        assert t.rate(9) == 0

    def test_default_evaluation_without_conditions(self) -> None:
        t = _transitional([], ["I1 * 3"], sources=[])
        assert t.rate(2) == 6

    def test_evaluations_mix_sources_and_inputs(self) -> None:
        t = _transitional(["R1 GT 50 AND I1 < 9"], ["(R1 + R2) / 2", "R1"])
        assert t.rate(6) == pytest.approx(90)
        assert t.rate(4) == pytest.approx(40)

    def test_unused_sources_not_rated(self) -> None:
        # R2 raises above 10 but is never needed there
        t = _transitional(["I1 GT 10"], ["I1", "R2"])
        assert t.rate(20) == 20

    def test_undefined_source_value(self) -> None:
        sources = [SourceRating(_table(10, "Low", high=RatingMethod.NULL))]
        t = _transitional([], ["R1 + 1"], sources=sources)
        assert is_undefined(t.rate(20))

    def test_inputs_converted_to_source_units(self) -> None:
        t = _transitional(["I1 LT 1"], ["R1", "R2"], units_id="m;cms")
        # 0.5 m = 1.64 ft -> 16.4 cfs
        assert t.rate(0.5) == pytest.approx(0.5 / 0.3048 * 10 * 0.028316846592)

    def test_reverse_and_extents_unsupported(self) -> None:
        t = _transitional(["I1 LT 5"], ["R1", "R2"])
        with pytest.raises(UnsupportedOperationError):
            t.reverse_rate(20)
        with pytest.raises(UnsupportedOperationError):
            t.extents()


class TestValidation:
    def test_evaluation_count(self) -> None:
        with pytest.raises(ConfigurationError, match="exactly one more evaluation"):
            _transitional(["I1 LT 5"], ["R1"])

    @pytest.mark.parametrize(("text", "message"), [
        ("R3", "invalid rating number"),
        ("I2 + R1", "invalid independent parameter number"),
        ("ARG1", "Unexpected variable name"),
    ])
    def test_bad_variables(self, text: str, message: str) -> None:
        with pytest.raises(ConfigurationError, match=message):
            _transitional([], [text])

    def test_source_parameter_count(self) -> None:
        gate = build_table(
            [(1, 0, 0), (1, 10, 100), (2, 0, 0), (2, 10, 200)],
            office_id="SWT", rating_spec_id="LOC.Elev,Opening;Flow.Gate.1",
        )
        with pytest.raises(ConfigurationError, match="expected 1"):
            _transitional([], ["R1"], sources=[SourceRating(gate)])

    def test_set_transitions_keeps_sources(self) -> None:
        t = _transitional(["I1 LT 5"], ["R1", "R2"])
        seen: list[object] = []
        t.on_changed(seen.append)
        t.set_transitions(["I1 LT 1"], ["R1", "R2"])
        assert t.conditions == ("I1 LT 1",)
        assert t.rate(2) == pytest.approx(40)
        assert seen == [t]
        with pytest.raises(ConfigurationError):
            t.set_transitions([], ["R1", "R2"])
        assert t.evaluations == ("R1", "R2")

    def test_cycle_through_virtual(self) -> None:
        t = _transitional(["I1 LT 5"], ["R1", "R2"])
        v = VirtualRating(
            [SourceRating(t)], "I1=R1I1",
            office_id="SWT", rating_spec_id="LOC.Stage;Flow.Virtual.1",
        )
        with pytest.raises(CycleError, match="Transitional.1 -> SWT/LOC.Stage;Flow.Virtual.1"):
            t.set_transitions(["I1 LT 5"], ["R1", "R2"], [SourceRating(v), SourceRating(_table(1, "Low"))])

    def test_record(self) -> None:
        rec = _transitional(["I1 LT 5"], ["R1", "R2"]).to_record()
        assert rec["kind"] == "transitional"
        assert rec["conditions"] == ["I1 LT 5"]
        assert len(rec["source_ratings"]) == 2
