"""Rating templates and specifications.

A template names the parameters of a family of ratings and carries one
method set per independent parameter, used when tables are built from
flat rows.  A specification binds a template to a location and carries the
methods a rating series applies across effective dates.  Both are
read-only configuration.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from hydrorating.errors import ConfigurationError
from hydrorating.identifiers import (
    ParametersId,
    RatingSpecId,
    parse_rating_spec_id,
    parse_template_id,
)
from hydrorating.methods import RatingMethod, RatingMethodSet, validate_methods


@dataclass(frozen=True, slots=True)
class RatingTemplate:
    office_id: str
    template_id: str
    method_sets: tuple[RatingMethodSet, ...]
    description: str = ""

    def __post_init__(self) -> None:
        params = self.parameters
        if len(self.method_sets) != len(params.ind_parameters):
            raise ConfigurationError(
                f"Template {self.template_id} has {len(params.ind_parameters)} independent "
                f"parameters but {len(self.method_sets)} method sets"
            )

    @property
    def parameters(self) -> ParametersId:
        return parse_template_id(self.template_id)[0]

    @property
    def version(self) -> str:
        return parse_template_id(self.template_id)[1]

    @property
    def ind_param_count(self) -> int:
        return len(self.method_sets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "office_id": self.office_id,
            "template_id": self.template_id,
            "method_sets": [m.to_dict() for m in self.method_sets],
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RatingTemplate:
        return cls(
            office_id=data["office_id"],
            template_id=data["template_id"],
            method_sets=tuple(RatingMethodSet.from_dict(m) for m in data.get("method_sets", [])),
            description=data.get("description", ""),
        )


@dataclass(frozen=True, slots=True)
class RatingSpec:
    """Methods a rating series applies over effective dates."""

    office_id: str
    rating_spec_id: str
    template: RatingTemplate | None = None
    in_range_method: RatingMethod = RatingMethod.LINEAR
    out_range_low_method: RatingMethod = RatingMethod.NEXT
    out_range_high_method: RatingMethod = RatingMethod.PREVIOUS
    active: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        spec_id = parse_rating_spec_id(self.rating_spec_id)
        validate_methods(
            self.in_range_method,
            self.out_range_low_method,
            self.out_range_high_method,
            context=f"rating specification {self.rating_spec_id}",
        )
        if self.template is not None:
            if self.template.office_id != self.office_id:
                raise ConfigurationError(
                    "Rating template and specification have different office identifiers"
                )
            if spec_id.template_id != self.template.template_id:
                raise ConfigurationError(
                    f"Rating specification {self.rating_spec_id} does not use template "
                    f"{self.template.template_id}"
                )

    @property
    def spec_id(self) -> RatingSpecId:
        return parse_rating_spec_id(self.rating_spec_id)

    @property
    def ind_param_count(self) -> int:
        return len(self.spec_id.ind_parameters)

    def method_sets(self) -> tuple[RatingMethodSet, ...]:
        """Per-parameter table methods, defaulting when no template is attached."""
        if self.template is not None:
            return self.template.method_sets
        return tuple(RatingMethodSet() for _ in range(self.ind_param_count))

    def to_dict(self) -> dict[str, Any]:
        return {
            "office_id": self.office_id,
            "rating_spec_id": self.rating_spec_id,
            "template": self.template.to_dict() if self.template is not None else None,
            "in_range_method": self.in_range_method.value,
            "out_range_low_method": self.out_range_low_method.value,
            "out_range_high_method": self.out_range_high_method.value,
            "active": self.active,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RatingSpec:
        template = data.get("template")
        return cls(
            office_id=data["office_id"],
            rating_spec_id=data["rating_spec_id"],
            template=RatingTemplate.from_dict(template) if template else None,
            in_range_method=RatingMethod.from_string(data.get("in_range_method", "LINEAR")),
            out_range_low_method=RatingMethod.from_string(data.get("out_range_low_method", "NEXT")),
            out_range_high_method=RatingMethod.from_string(data.get("out_range_high_method", "PREVIOUS")),
            active=bool(data.get("active", True)),
            description=data.get("description", ""),
        )
