"""Tests for hydrorating.ports, hydrorating.source and hydrorating.virtual."""
from __future__ import annotations

import logging

import pytest

from hydrorating.errors import ConfigurationError, CycleError, UnsupportedOperationError
from hydrorating.ports import (
    OwnInput,
    OwnOutput,
    SourceInfo,
    SourcePort,
    build_connection_graph,
    parse_connections,
    parse_port,
)
from hydrorating.series import RatingSeries
from hydrorating.source import SourceRating, find_cycles
from hydrorating.specs import RatingSpec
from hydrorating.table import TableRating, build_table
from hydrorating.virtual import VirtualRating

ONE = SourceInfo(1, True)


def _stage_elev() -> TableRating:
    return TableRating(
        [(0, 100), (10, 110)],
        office_id="SWT", rating_spec_id="LOC.Stage;Elev.Linear.1", units_id="ft;ft",
    )


def _elev_stor() -> TableRating:
    return TableRating(
        [(100, 0), (110, 1000)],
        office_id="SWT", rating_spec_id="LOC.Elev;Stor.Linear.1", units_id="ft;ac-ft",
    )


def _stage_stor(**kw) -> VirtualRating:
    return VirtualRating(
        [SourceRating(_stage_elev()), SourceRating(_elev_stor())],
        "I1=R1I1,R1D=R2I1",
        office_id="SWT",
        rating_spec_id="LOC.Stage;Stor.Virtual.1",
        **kw,
    )


# ───────────────────────────── Ports ─────────────────────────────


class TestPorts:
    def test_parse_port(self) -> None:
        assert parse_port("i2") == OwnInput(2)
        assert parse_port(" R3I1 ") == SourcePort(3, 1)
        assert parse_port("r2d") == SourcePort(2)
        assert parse_port("D") == OwnOutput()
        assert str(SourcePort(2)) == "R2D"

    @pytest.mark.parametrize("text", ["X1", "R", "I0", "R0D", "R1I", "RD"])
    def test_bad_ports(self, text: str) -> None:
        with pytest.raises(ConfigurationError, match="Invalid connection point"):
            parse_port(text)

    def test_parse_connections_is_bidirectional(self) -> None:
        adj = parse_connections("I1=R1I1, R1D=R2I1")
        assert adj[OwnInput(1)] == {SourcePort(1, 1)}
        assert adj[SourcePort(2, 1)] == {SourcePort(1)}

    def test_duplicate_connection_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="hydrorating.ports"):
            parse_connections("I1=R1I1,R1I1=I1")
        assert "specified more than once" in caplog.text

    def test_malformed_connections(self) -> None:
        with pytest.raises(ConfigurationError, match="empty"):
            parse_connections(" ")
        with pytest.raises(ConfigurationError, match="Invalid connections string"):
            parse_connections("I1=R1I1=R2I1")
        with pytest.raises(ConfigurationError, match="itself"):
            parse_connections("R1D=R1D")


class TestConnectionGraph:
    def test_chain_output_is_last_unconnected_port(self) -> None:
        graph = build_connection_graph("I1=R1I1,R1D=R2I1", [ONE, ONE], 1)
        assert graph.output == SourcePort(2)
        assert graph.automatic == ("D",)
        assert graph.text() == "I1=R1I1,R1D=R2I1"

    def test_inputs_bound_automatically(self) -> None:
        graph = build_connection_graph("R1D=R2I1", [ONE, ONE], 1)
        assert graph.automatic == ("I1", "D")
        assert graph.input_port(1) == SourcePort(1, 1)

    def test_explicit_output(self) -> None:
        graph = build_connection_graph("I1=R1I1,R1D=R2I1,R2D=D", [ONE, ONE], 1)
        assert graph.output == SourcePort(2)
        assert graph.automatic == ()

    def test_under_connected(self) -> None:
        with pytest.raises(ConfigurationError, match="under-connected"):
            build_connection_graph("I1=R1I1", [ONE, ONE], 1)

    def test_unconnected_input(self) -> None:
        with pytest.raises(ConfigurationError, match="Independent parameter 2 is not connected"):
            build_connection_graph("I1=R1I1", [ONE], 2)

    def test_port_range_checks(self) -> None:
        with pytest.raises(ConfigurationError, match="beyond source rating count"):
            build_connection_graph("I1=R3I1", [ONE], 1)
        with pytest.raises(ConfigurationError, match="missing input"):
            build_connection_graph("I1=R1I2", [ONE], 1)
        with pytest.raises(ConfigurationError, match="missing independent parameter"):
            build_connection_graph("I2=R1I1", [ONE], 1)

    def test_reverse_through_multi_parameter_source_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="would reverse"):
            build_connection_graph("I1=R1D", [SourceInfo(1, False)], 1)

    def test_reverse_path(self) -> None:
        graph = build_connection_graph("I1=R2D,R2I1=R1D", [ONE, ONE], 1)
        assert graph.output == SourcePort(1, 1)


# ───────────────────────────── Source ratings ─────────────────────────────


class TestSourceRating:
    def test_needs_exactly_one_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="exactly one"):
            SourceRating()
        with pytest.raises(ConfigurationError, match="exactly one"):
            SourceRating(_stage_elev(), expression="I1")

    def test_expression_source(self) -> None:
        src = SourceRating(expression="I1 * 2 + I2", units_id="ft,ft;ft")
        assert src.ind_param_count == 2
        assert not src.reversible
        assert src.rate_one((1, 3)) == 5
        with pytest.raises(ConfigurationError, match="needs a units id"):
            SourceRating(expression="I1")
        with pytest.raises(ConfigurationError, match="uses I2"):
            SourceRating(expression="I1 + I2", units_id="ft;ft")

    def test_wrapped_rating_units_convert(self) -> None:
        src = SourceRating(_stage_elev(), units_id="m;m")
        assert src.unit_of(1) == "m"
        assert src.rate(0.3048) == pytest.approx(101 * 0.3048)
        assert src.reverse_rate(101 * 0.3048) == pytest.approx(0.3048)

    def test_record(self) -> None:
        assert SourceRating(expression="I1", units_id="ft;ft").to_record() == {
            "kind": "source", "units_id": "ft;ft", "expression": "I1",
        }


# ───────────────────────────── Virtual ratings ─────────────────────────────


class TestVirtualRating:
    def test_identity_connection_matches_source(self) -> None:
        table = _stage_elev()
        v = VirtualRating([SourceRating(table)], "I1=R1I1")
        for x in (0, 3.3, 10):
            assert v.rate(x) == pytest.approx(table.rate(x))

    def test_chain(self) -> None:
        v = _stage_stor()
        assert v.rating_units == ("ft", "ac-ft")
        assert v.rate(5) == pytest.approx(500)
        assert v.rate_values([0, 2.5]) == pytest.approx([0, 250])

    def test_reverse(self) -> None:
        assert _stage_stor().reverse_rate(500) == pytest.approx(5)

    def test_reverse_connection_path(self) -> None:
        v = VirtualRating(
            [SourceRating(_stage_elev()), SourceRating(_elev_stor())], "I1=R2D,R2I1=R1D",
        )
        # storage in, stage out
        assert v.rating_units == ("ac-ft", "ft")
        assert v.rate(500) == pytest.approx(5)

    def test_units_convert_between_ports(self) -> None:
        v = VirtualRating(
            [SourceRating(_stage_elev()), SourceRating(_elev_stor(), units_id="m;ac-ft")],
            "I1=R1I1,R1D=R2I1",
        )
        assert v.rate(5) == pytest.approx(500)

    def test_declared_units_become_data_units(self) -> None:
        v = _stage_stor(units_id="m;ac-ft")
        assert v.rating_units == ("ft", "ac-ft")
        assert v.data_units == ("m", "ac-ft")
        assert v.rate(5 * 0.3048) == pytest.approx(500)

    def test_expression_source_forward_only(self) -> None:
        v = VirtualRating(
            [SourceRating(expression="I1 + 100", units_id="ft;ft"), SourceRating(_elev_stor())],
            "I1=R1I1,R1D=R2I1",
        )
        assert v.rate(5) == pytest.approx(500)
        with pytest.raises(UnsupportedOperationError):
            v.reverse_rate(500)

    def test_two_parameter_source(self) -> None:
        gate = build_table(
            [(1, 0, 0), (1, 10, 100), (2, 0, 0), (2, 10, 200)],
            office_id="SWT", rating_spec_id="LOC.Elev,Opening;Flow.Gate.1", units_id="ft,ft;cfs",
        )
        v = VirtualRating([SourceRating(gate)], "I1=R1I1,I2=R1I2")
        assert v.ind_param_count == 2
        assert v.rate_one((1.5, 5)) == pytest.approx(75)
        with pytest.raises(UnsupportedOperationError):
            v.reverse_rate(75)

    def test_series_source(self) -> None:
        spec_id = "LOC.Stage;Elev.Linear.1"
        members = [
            TableRating([(0, 100), (10, 110)], office_id="SWT", rating_spec_id=spec_id,
                        units_id="ft;ft", effective_date=0),
            TableRating([(0, 200), (10, 210)], office_id="SWT", rating_spec_id=spec_id,
                        units_id="ft;ft", effective_date=100),
        ]
        series = RatingSeries(RatingSpec("SWT", spec_id), members)
        v = VirtualRating([SourceRating(series)], "I1=R1I1")
        assert v.rate(5, 0) == pytest.approx(105)
        assert v.rate(5, 50) == pytest.approx(155)

    def test_record(self) -> None:
        rec = _stage_stor().to_record()
        assert rec["kind"] == "virtual"
        assert rec["connections"] == "I1=R1I1,R1D=R2I1"
        assert [s["rating"]["rating_spec_id"] for s in rec["source_ratings"]] == [
            "LOC.Stage;Elev.Linear.1", "LOC.Elev;Stor.Linear.1",
        ]


class TestCycles:
    def test_cycle_rejected_and_state_kept(self) -> None:
        inner = _stage_stor()
        outer = VirtualRating(
            [SourceRating(inner)], "I1=R1I1",
            office_id="SWT", rating_spec_id="LOC.Stage;Stor.Outer.1",
        )
        with pytest.raises(CycleError) as info:
            inner.set_sources([SourceRating(outer)], "I1=R1I1")
        assert info.value.path == (
            "SWT/LOC.Stage;Stor.Virtual.1",
            "SWT/LOC.Stage;Stor.Outer.1",
            "SWT/LOC.Stage;Stor.Virtual.1",
        )
        assert "Cycle detected" in str(info.value)
        assert inner.rate(5) == pytest.approx(500)

    def test_shared_source_is_not_a_cycle(self) -> None:
        shared = _stage_stor()
        v = VirtualRating([SourceRating(shared), SourceRating(shared)], "I1=R1I1,R1D=R2D")
        find_cycles(v)

    def test_unnamed_composites_do_not_collide(self) -> None:
        inner = VirtualRating([SourceRating(_stage_elev())], "I1=R1I1")
        outer = VirtualRating([SourceRating(inner)], "I1=R1I1")
        assert outer.rate(5) == pytest.approx(105)
