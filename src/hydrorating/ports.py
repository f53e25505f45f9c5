"""Typed connection ports and the connection graph of a virtual rating.

Connection text wires the virtual rating's own inputs (``I1..In``), the
inputs and outputs of its source ratings (``R2I1``, ``R2D``) and optionally
its own output (``D``)::

    I1=R1I1, R1D=R2I1

Ports left unconnected after the text is parsed are bound to the virtual
rating's inputs in order; the one port that remains unbound is the output.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TypeAlias

from hydrorating.errors import ConfigurationError

log = logging.getLogger(__name__)

_PORT_RE = re.compile(r"^(?:I(\d+)|R(\d+)(?:I(\d+)|(D))|(D))$")


@dataclass(frozen=True, slots=True)
class OwnInput:
    index: int

    def __str__(self) -> str:
        return f"I{self.index}"


@dataclass(frozen=True, slots=True)
class SourcePort:
    """Input *param* (1-based) of source *source*, or its output when param is None."""

    source: int
    param: int | None = None

    @property
    def is_output(self) -> bool:
        return self.param is None

    def __str__(self) -> str:
        return f"R{self.source}D" if self.param is None else f"R{self.source}I{self.param}"


@dataclass(frozen=True, slots=True)
class OwnOutput:
    def __str__(self) -> str:
        return "D"


Port: TypeAlias = OwnInput | SourcePort | OwnOutput


def parse_port(text: str) -> Port:
    """Parse ``I1``, ``R2I1``, ``R2D`` or ``D`` (case and spacing ignored)."""
    m = _PORT_RE.match(text.strip().upper())
    if m is None:
        raise ConfigurationError(f"Invalid connection point: {text!r}")
    own_in, src, src_in, _, own_out = m.groups()
    if own_out:
        return OwnOutput()
    if own_in is not None:
        if int(own_in) < 1:
            raise ConfigurationError(f"Invalid connection point: {text!r}")
        return OwnInput(int(own_in))
    if int(src) < 1 or (src_in is not None and int(src_in) < 1):
        raise ConfigurationError(f"Invalid connection point: {text!r}")
    return SourcePort(int(src), int(src_in) if src_in is not None else None)


def _port_order(port: Port) -> tuple[int, int, int]:
    match port:
        case OwnInput(index=i):
            return (0, i, 0)
        case SourcePort(source=r, param=p):
            return (1, r, p if p is not None else 1_000_000)
    return (2, 0, 0)


@dataclass(frozen=True, slots=True)
class SourceInfo:
    """What the graph builder needs to know about one source rating."""

    ind_param_count: int
    reversible: bool


@dataclass(frozen=True, slots=True)
class ConnectionGraph:
    """Validated, bidirectional port adjacency."""

    adjacency: Mapping[Port, frozenset[Port]]
    output: Port
    automatic: tuple[str, ...]

    def neighbors(self, port: Port) -> frozenset[Port]:
        return self.adjacency.get(port, frozenset())

    def pairs(self) -> list[tuple[Port, Port]]:
        """Each connection once, ordered for stable text."""
        seen: set[frozenset[Port]] = set()
        out: list[tuple[Port, Port]] = []
        for port in sorted(self.adjacency, key=_port_order):
            for other in sorted(self.adjacency[port], key=_port_order):
                key = frozenset((port, other))
                if key not in seen:
                    seen.add(key)
                    out.append((port, other))
        return out

    def text(self) -> str:
        return ",".join(f"{a}={b}" for a, b in self.pairs())

    def input_port(self, index: int) -> Port:
        """The source port an own input feeds."""
        for port in sorted(self.neighbors(OwnInput(index)), key=_port_order):
            return port
        raise ConfigurationError(f"Independent parameter {index} is not connected")


def parse_connections(text: str) -> dict[Port, set[Port]]:
    """Parse ``A=B`` pairs into a bidirectional adjacency map."""
    if not text or not text.strip():
        raise ConfigurationError("Connection text is empty")
    adjacency: dict[Port, set[Port]] = {}
    for pair in text.strip().upper().split(","):
        parts = [p.strip() for p in pair.split("=")]
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError(f"Invalid connections string: {text!r}")
        a, b = parse_port(parts[0]), parse_port(parts[1])
        if a == b:
            raise ConfigurationError(f"Connection {pair.strip()} joins a port to itself")
        duplicate = b in adjacency.get(a, ())
        adjacency.setdefault(a, set()).add(b)
        adjacency.setdefault(b, set()).add(a)
        if duplicate:
            log.warning("Connection %s specified more than once", pair.strip())
    return adjacency


def build_connection_graph(
    text: str,
    sources: Sequence[SourceInfo],
    ind_param_count: int,
) -> ConnectionGraph:
    """Parse and validate *text* for a virtual rating over *sources*."""
    adjacency = parse_connections(text)
    for port in adjacency:
        if isinstance(port, SourcePort):
            if port.source > len(sources):
                raise ConfigurationError(f"Connection point {port} names a rating beyond source rating count")
            if port.param is not None and port.param > sources[port.source - 1].ind_param_count:
                raise ConfigurationError(f"Connection point {port} names a missing input")
        elif isinstance(port, OwnInput) and port.index > ind_param_count:
            raise ConfigurationError(f"Connection point {port} names a missing independent parameter")

    explicit_output: Port | None = None
    if OwnOutput() in adjacency:
        outs = adjacency[OwnOutput()]
        if len(outs) != 1:
            raise ConfigurationError("The dependent parameter D is connected more than once")
        explicit_output = next(iter(outs))

    unconnected: list[Port] = []
    for r, info in enumerate(sources, 1):
        for p in range(1, info.ind_param_count + 1):
            if SourcePort(r, p) not in adjacency:
                unconnected.append(SourcePort(r, p))
        if SourcePort(r) not in adjacency:
            unconnected.append(SourcePort(r))

    reserve = 0 if explicit_output is not None else 1
    automatic: list[str] = []
    if len(unconnected) > reserve:
        for i in range(1, min(len(unconnected), ind_param_count) + 1):
            own = OwnInput(i)
            port = unconnected.pop(0)
            adjacency.setdefault(port, set()).add(own)
            if own not in adjacency:
                automatic.append(str(own))
            adjacency.setdefault(own, set()).add(port)
    if explicit_output is None:
        automatic.append("D")
    if len(unconnected) > reserve:
        raise ConfigurationError(
            "Virtual rating is under-connected: unconnected internal parameters are "
            f"{', '.join(map(str, unconnected))}; automatic connections are {', '.join(automatic)}"
        )
    for i in range(1, ind_param_count + 1):
        if OwnInput(i) not in adjacency:
            raise ConfigurationError(f"Independent parameter {i} is not connected")

    if explicit_output is not None:
        output = explicit_output
    elif unconnected:
        output = unconnected[0]
    else:
        raise ConfigurationError("Virtual rating has no unconnected port for its output")

    frozen = {port: frozenset(nbrs) for port, nbrs in adjacency.items()}
    for i in range(1, ind_param_count + 1):
        end = _walk(frozen, OwnInput(i), sources, set())
        if end != output:
            raise ConfigurationError(
                f"Connection path does not connect independent parameter {i} "
                f"with the dependent parameter ({output})"
            )
    return ConnectionGraph(adjacency=frozen, output=output, automatic=tuple(automatic))


def _walk(
    adjacency: Mapping[Port, frozenset[Port]],
    start: Port,
    sources: Sequence[SourceInfo],
    visiting: set[Port],
) -> Port:
    """Follow connections from *start* through source ratings to the terminal port."""
    if start in visiting:
        raise ConfigurationError(f"Connection path loops back to {start}")
    neighbors = adjacency.get(start)
    if not neighbors or isinstance(start, OwnOutput):
        return start
    start_source = start.source if isinstance(start, SourcePort) else None
    ends: list[Port] = []
    for nb in sorted(neighbors, key=_port_order):
        if isinstance(nb, OwnOutput):
            return start
        if isinstance(nb, OwnInput):
            if isinstance(start, OwnInput):
                raise ConfigurationError(f"Independent parameters {start} and {nb} are connected")
            continue
        if nb.source == start_source:
            raise ConfigurationError("Connection path specifies a connection from one rating to itself")
        if nb.is_output:
            info = sources[nb.source - 1]
            if not info.reversible:
                raise ConfigurationError(
                    f"Connection path from {start} would reverse through a multiple-parameter "
                    "or expression rating"
                )
            nxt: Port = SourcePort(nb.source, 1)
        else:
            nxt = SourcePort(nb.source)
        ends.append(_walk(adjacency, nxt, sources, visiting | {start}))
        if ends[-1] != ends[0]:
            raise ConfigurationError(f"Connection point {nxt} leads to multiple termination points")
    if not ends:
        return start
    return ends[0]
