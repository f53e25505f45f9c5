"""Parsing and formatting of rating identifiers.

Identifier grammar::

    parameters_id := ind_param (',' ind_param)* ';' dep_param
    template_id   := parameters_id '.' template_version
    spec_id       := location '.' parameters_id '.' template_version '.' spec_version
    units_id      := unit (',' unit)* ';' unit
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from hydrorating.constants import SEPARATOR1, SEPARATOR2, SEPARATOR3
from hydrorating.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class ParametersId:
    ind_parameters: tuple[str, ...]
    dep_parameter: str

    def __str__(self) -> str:
        return f"{SEPARATOR3.join(self.ind_parameters)}{SEPARATOR2}{self.dep_parameter}"


@dataclass(frozen=True, slots=True)
class RatingSpecId:
    """A parsed ``Location.Ind1,Ind2;Dep.TemplateVersion.SpecVersion`` id."""

    location: str
    parameters: ParametersId
    template_version: str
    version: str

    @property
    def ind_parameters(self) -> tuple[str, ...]:
        return self.parameters.ind_parameters

    @property
    def dep_parameter(self) -> str:
        return self.parameters.dep_parameter

    @property
    def template_id(self) -> str:
        return f"{self.parameters}{SEPARATOR1}{self.template_version}"

    def __str__(self) -> str:
        return SEPARATOR1.join((self.location, str(self.parameters), self.template_version, self.version))


def _split_nonempty(text: str, sep: str, what: str, source: str) -> list[str]:
    parts = [p.strip() for p in text.split(sep)]
    if any(not p for p in parts):
        raise ConfigurationError(f"Invalid {what}: {source!r}")
    return parts


def parse_parameters_id(text: str) -> ParametersId:
    halves = text.strip().split(SEPARATOR2)
    if len(halves) != 2:
        raise ConfigurationError(f"Invalid parameters identifier: {text!r}")
    inds = _split_nonempty(halves[0], SEPARATOR3, "parameters identifier", text)
    dep = halves[1].strip()
    if not dep or SEPARATOR3 in dep:
        raise ConfigurationError(f"Invalid parameters identifier: {text!r}")
    return ParametersId(tuple(inds), dep)


def parse_template_id(text: str) -> tuple[ParametersId, str]:
    """Return (parameters, template version)."""
    parts = text.strip().split(SEPARATOR1)
    if len(parts) != 2 or not parts[1].strip():
        raise ConfigurationError(f"Invalid template identifier: {text!r}")
    return parse_parameters_id(parts[0]), parts[1].strip()


def parse_rating_spec_id(text: str) -> RatingSpecId:
    parts = text.strip().split(SEPARATOR1)
    if len(parts) != 4:
        raise ConfigurationError(f"Invalid rating specification: {text!r}")
    location, params, template_version, version = (p.strip() for p in parts)
    if not location or not template_version or not version:
        raise ConfigurationError(f"Invalid rating specification: {text!r}")
    return RatingSpecId(location, parse_parameters_id(params), template_version, version)


def parse_units_id(text: str) -> tuple[str, ...]:
    """``"ft,ft;cfs"`` -> ``("ft", "ft", "cfs")``."""
    halves = text.strip().split(SEPARATOR2)
    if len(halves) != 2:
        raise ConfigurationError(f"Invalid units identifier: {text!r}")
    inds = _split_nonempty(halves[0], SEPARATOR3, "units identifier", text)
    dep = halves[1].strip()
    if not dep or SEPARATOR3 in dep:
        raise ConfigurationError(f"Invalid units identifier: {text!r}")
    return (*inds, dep)


def format_units_id(units: Sequence[str]) -> str:
    if len(units) < 2:
        raise ConfigurationError("A units identifier needs at least two units")
    return f"{SEPARATOR3.join(units[:-1])}{SEPARATOR2}{units[-1]}"
