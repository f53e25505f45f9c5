"""Ratings composed from other ratings wired together by a port graph."""
from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from hydrorating.base import AbstractRating, RatingExtents
from hydrorating.errors import ConfigurationError, RatingError, UnsupportedOperationError
from hydrorating.identifiers import format_units_id, parse_units_id
from hydrorating.ports import (
    ConnectionGraph,
    OwnInput,
    OwnOutput,
    Port,
    SourceInfo,
    SourcePort,
    build_connection_graph,
)
from hydrorating.source import SourceRating, find_cycles
from hydrorating.units import convert_value

log = logging.getLogger(__name__)

_OWN_INPUT_RE = re.compile(r"\bI(\d+)\b", re.IGNORECASE)


class VirtualRating(AbstractRating):
    """Chain source ratings forward (and backward where needed) to rate inputs.

    Example: stage to elevation through a datum table, then elevation to
    storage::

        VirtualRating(
            [SourceRating(stage_elev), SourceRating(elev_stor)],
            "I1=R1I1,R1D=R2I1",
            rating_spec_id="LOC.Stage;Stor.Virtual.1",
        )

    Rating units are those of the ports the inputs and output attach to.  A
    declared ``units_id`` that differs becomes the data units.
    """

    def __init__(
        self,
        source_ratings: Sequence[SourceRating],
        connections: str,
        **identity: Any,
    ) -> None:
        declared_units = identity.pop("units_id", "")
        super().__init__(**identity)
        self._sources: tuple[SourceRating, ...] = ()
        self._graph: ConnectionGraph | None = None
        self._install(source_ratings, connections)
        if declared_units and parse_units_id(declared_units) != self.rating_units:
            self.set_data_units(declared_units)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _own_input_count(self, connections: str) -> int:
        if self.rating_spec_id:
            return super().ind_param_count
        found = [int(m) for m in _OWN_INPUT_RE.findall(connections)]
        return max(found, default=1)

    def _install(self, source_ratings: Sequence[SourceRating], connections: str) -> None:
        sources = tuple(source_ratings)
        if not sources:
            raise ConfigurationError("A virtual rating needs at least one source rating")
        for s in sources:
            if not isinstance(s, SourceRating):
                raise ConfigurationError(f"Expected SourceRating, got {type(s).__name__}")
        count = self._own_input_count(connections)
        infos = [SourceInfo(s.ind_param_count, s.reversible) for s in sources]
        graph = build_connection_graph(connections, infos, count)
        find_cycles(self, sources)
        self._sources = sources
        self._graph = graph
        self._count = count
        units = [self._port_unit(graph.input_port(i)) for i in range(1, count + 1)]
        units.append(self._port_unit(graph.output))
        if all(units):
            self._set_ids(self.rating_spec_id, format_units_id(units))

    def _port_unit(self, port: Port) -> str:
        if isinstance(port, SourcePort):
            return self._sources[port.source - 1].unit_of(port.param)
        if isinstance(port, OwnInput):
            units = self.rating_units
            return units[port.index - 1] if units else ""
        return ""

    def set_sources(self, source_ratings: Sequence[SourceRating], connections: str | None = None) -> None:
        with self._lock:
            self._install(source_ratings, connections if connections is not None else self.connections)
        self._notify()

    @property
    def source_ratings(self) -> tuple[SourceRating, ...]:
        return self._sources

    @property
    def connections(self) -> str:
        """Normalized connection text, including automatic connections."""
        assert self._graph is not None
        return self._graph.text()

    @property
    def graph(self) -> ConnectionGraph:
        assert self._graph is not None
        return self._graph

    @property
    def ind_param_count(self) -> int:
        return self._count

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _solve(self, known: dict[Port, float], target: Port, time: int | None) -> float:
        graph = self.graph
        spent: set[Port] = set()
        while target not in known:
            progress = False
            for port in list(known):
                if port in spent:
                    continue
                for nb in graph.neighbors(port):
                    if nb in known or isinstance(nb, OwnOutput):
                        continue
                    known[nb] = self._carry(known[port], port, nb)
                    progress = True
                spent.add(port)
            if target in known:
                break
            for r, source in enumerate(self._sources, 1):
                inputs = [SourcePort(r, p) for p in range(1, source.ind_param_count + 1)]
                output = SourcePort(r)
                if output not in known and all(p in known for p in inputs):
                    known[output] = source.rate_one([known[p] for p in inputs], time)
                    progress = True
                elif len(inputs) == 1 and output in known and inputs[0] not in known:
                    known[inputs[0]] = source.reverse_rate(known[output], time)
                    progress = True
            if not progress:
                raise RatingError(f"Virtual rating {self.name} cannot reach {target} from its inputs")
        return known[target]

    def _carry(self, value: float, src: Port, dst: Port) -> float:
        from_unit, to_unit = self._port_unit(src), self._port_unit(dst)
        if not from_unit or not to_unit or from_unit == to_unit:
            return value
        return convert_value(self._converter, value, from_unit, to_unit, self.config)

    def _rate_at(self, values: tuple[float, ...], time: int | None) -> float:
        known: dict[Port, float] = {OwnInput(i): v for i, v in enumerate(values, 1)}
        return self._solve(known, self.graph.output, time)

    def _reverse_at(self, value: float, time: int | None) -> float:
        if self._count != 1:
            raise UnsupportedOperationError(
                f"Cannot reverse virtual rating {self.name} with {self._count} independent parameters"
            )
        for source in self._sources:
            if not source.reversible:
                raise UnsupportedOperationError(
                    f"Cannot reverse virtual rating {self.name} through an expression "
                    "or multiple-parameter source"
                )
        return self._solve({self.graph.output: value}, OwnInput(1), time)

    def _extents(self, time: int | None) -> RatingExtents:
        raise UnsupportedOperationError("Virtual ratings do not report extents")

    def to_record(self) -> dict[str, Any]:
        return {
            "kind": "virtual",
            **self.identity_record(),
            "connections": self.connections,
            "source_ratings": [s.to_record() for s in self._sources],
        }
