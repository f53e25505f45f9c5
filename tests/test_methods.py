"""Tests for rating methods, identifiers, templates and specifications."""
from __future__ import annotations

import pytest

from hydrorating.errors import ConfigurationError
from hydrorating.identifiers import (
    format_units_id,
    parse_parameters_id,
    parse_rating_spec_id,
    parse_template_id,
    parse_units_id,
)
from hydrorating.methods import RatingMethod, RatingMethodSet, validate_methods
from hydrorating.specs import RatingSpec, RatingTemplate

M = RatingMethod


# ───────────────────────────── Methods ─────────────────────────────


class TestRatingMethod:
    def test_from_string_accepts_both_separators(self) -> None:
        assert RatingMethod.from_string("lin-log") is M.LIN_LOG
        assert RatingMethod.from_string("LOG_LIN") is M.LOG_LIN
        assert RatingMethod.from_string(" linear ") is M.LINEAR

    def test_from_string_rejects_unknown(self) -> None:
        with pytest.raises(ConfigurationError, match="not a valid rating method"):
            RatingMethod.from_string("CUBIC")

    def test_log_axes(self) -> None:
        assert M.LOGARITHMIC.log_axes == (True, True)
        assert M.LIN_LOG.log_axes == (False, True)
        assert M.LOG_LIN.log_axes == (True, False)
        assert M.LINEAR.log_axes == (False, False)

    def test_swapped_axes(self) -> None:
        assert M.LIN_LOG.swapped_axes() is M.LOG_LIN
        assert M.LOG_LIN.swapped_axes() is M.LIN_LOG
        assert M.LOGARITHMIC.swapped_axes() is M.LOGARITHMIC

    def test_every_method_has_description(self) -> None:
        assert all(m.description for m in RatingMethod)


class TestValidateMethods:
    def test_time_rules_are_increasing_rules(self) -> None:
        validate_methods(M.LINEAR, M.HIGHER, M.LOWER)
        with pytest.raises(ConfigurationError, match="out-of-range low"):
            validate_methods(M.LINEAR, M.LOWER, M.LOWER)

    def test_decreasing(self) -> None:
        validate_methods(M.LINEAR, M.LOWER, M.HIGHER, increasing=False)
        with pytest.raises(ConfigurationError, match="decreasing"):
            validate_methods(M.LINEAR, M.LOWER, M.LOWER, increasing=False)

    def test_nearest_in_range(self) -> None:
        with pytest.raises(ConfigurationError, match="in-range"):
            validate_methods(M.NEAREST, M.NEAREST, M.NEAREST)


class TestRatingMethodSet:
    def test_defaults(self) -> None:
        s = RatingMethodSet()
        assert (s.in_range, s.out_range_low, s.out_range_high) == (M.LINEAR, M.ERROR, M.ERROR)

    def test_dict_round_trip(self) -> None:
        s = RatingMethodSet(M.LIN_LOG, M.NEXT, M.NEAREST)
        assert s.to_dict() == {"in_range": "LIN-LOG", "out_range_low": "NEXT", "out_range_high": "NEAREST"}
        assert RatingMethodSet.from_dict(s.to_dict()) == s

    def test_positional_rules_checked_early(self) -> None:
        with pytest.raises(ConfigurationError):
            RatingMethodSet(M.LINEAR, M.PREVIOUS, M.ERROR)
        with pytest.raises(ConfigurationError):
            RatingMethodSet(M.LINEAR, M.ERROR, M.NEXT)


# ───────────────────────────── Identifiers ─────────────────────────────


class TestIdentifiers:
    def test_parse_spec_id(self) -> None:
        sid = parse_rating_spec_id("BIGR.Elev,Opening;Flow.Gate.Production")
        assert sid.location == "BIGR"
        assert sid.ind_parameters == ("Elev", "Opening")
        assert sid.dep_parameter == "Flow"
        assert sid.template_id == "Elev,Opening;Flow.Gate"
        assert str(sid) == "BIGR.Elev,Opening;Flow.Gate.Production"

    @pytest.mark.parametrize("text", [
        "BIGR.Stage;Flow.USGS",
        "BIGR.Stage.Flow.USGS.1",
        "BIGR.Stage;Flow,Other.USGS.1",
        ".Stage;Flow.USGS.1",
        "BIGR.,Stage;Flow.USGS.1",
    ])
    def test_bad_spec_ids(self, text: str) -> None:
        with pytest.raises(ConfigurationError):
            parse_rating_spec_id(text)

    def test_template_and_parameters(self) -> None:
        params, version = parse_template_id("Stage;Flow.USGS-EXSA")
        assert params == parse_parameters_id("Stage;Flow")
        assert version == "USGS-EXSA"

    def test_units_round_trip(self) -> None:
        assert parse_units_id("ft,ft;cfs") == ("ft", "ft", "cfs")
        assert format_units_id(("ft", "ft", "cfs")) == "ft,ft;cfs"
        with pytest.raises(ConfigurationError):
            parse_units_id("ft cfs")
        with pytest.raises(ConfigurationError):
            format_units_id(("ft",))


# ───────────────────────────── Templates and specs ─────────────────────────────


class TestSpecs:
    def test_template_method_count_checked(self) -> None:
        with pytest.raises(ConfigurationError, match="2 independent parameters"):
            RatingTemplate("SWT", "Elev,Opening;Flow.Gate", (RatingMethodSet(),))

    def test_spec_defaults(self) -> None:
        spec = RatingSpec("SWT", "LOC.Stage;Flow.USGS.1")
        assert spec.in_range_method is M.LINEAR
        assert spec.out_range_low_method is M.NEXT
        assert spec.out_range_high_method is M.PREVIOUS
        assert spec.method_sets() == (RatingMethodSet(),)

    def test_spec_must_match_template(self) -> None:
        template = RatingTemplate("SWT", "Stage;Flow.USGS", (RatingMethodSet(),))
        RatingSpec("SWT", "LOC.Stage;Flow.USGS.1", template)
        with pytest.raises(ConfigurationError, match="does not use template"):
            RatingSpec("SWT", "LOC.Stage;Flow.Linear.1", template)
        with pytest.raises(ConfigurationError, match="office"):
            RatingSpec("NWK", "LOC.Stage;Flow.USGS.1", template)

    def test_spec_rejects_invalid_time_methods(self) -> None:
        with pytest.raises(ConfigurationError):
            RatingSpec("SWT", "LOC.Stage;Flow.USGS.1", out_range_low_method=M.LOWER)

    def test_spec_dict_round_trip(self) -> None:
        template = RatingTemplate("SWT", "Stage;Flow.USGS", (RatingMethodSet(M.LOGARITHMIC),))
        spec = RatingSpec(
            "SWT", "LOC.Stage;Flow.USGS.1", template,
            out_range_high_method=M.NULL, description="main gage",
        )
        assert RatingSpec.from_dict(spec.to_dict()) == spec
