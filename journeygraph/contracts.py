"""Input and output contracts for the journey step-graph engine."""

from __future__ import annotations

import json
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .db.models import JourneyStep, JourneyStepChild
from .errors import StepMapValidationError

T = TypeVar("T")


def _json_payload(v: Any) -> Any:
    """Coerce a payload to what the JSON column will hand back."""
    if v is None:
        return {}
    try:
        return json.loads(json.dumps(v, allow_nan=False))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"data must be JSON serialisable: {exc}") from exc


class JourneyParams(BaseModel):
    """Fields accepted when creating a journey."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    published: bool = False


class UpdateJourneyParams(BaseModel):
    """Fields accepted when updating a journey; unset fields are left alone."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    published: Optional[bool] = None


class SearchParams(BaseModel):
    """Name search and offset paging for journey listings."""

    q: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class Page(BaseModel, Generic[T]):
    results: List[T] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int = 0


class StepChildRef(BaseModel):
    """Reference from a step to one of its children, by external id."""

    external_id: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _normalise_data(cls, v: Any) -> Any:
        return _json_payload(v)


class StepMapEntry(BaseModel):
    """One node of a journey step map."""

    type: str
    x: float = 0
    y: float = 0
    data: Dict[str, Any] = Field(default_factory=dict)
    children: List[StepChildRef] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def _ensure_type(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("type must be a non-empty string")
        return v

    @field_validator("x", "y", mode="before")
    @classmethod
    def _default_position(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("data", mode="before")
    @classmethod
    def _normalise_data(cls, v: Any) -> Any:
        return _json_payload(v)

    @field_validator("children", mode="before")
    @classmethod
    def _default_children(cls, v: Any) -> Any:
        return [] if v is None else v


JourneyStepMap = Dict[str, StepMapEntry]

_step_map_adapter: TypeAdapter[JourneyStepMap] = TypeAdapter(JourneyStepMap)


def parse_step_map(raw: Mapping[str, Any]) -> JourneyStepMap:
    """Validate a raw step map keyed by external id.

    Raises:
        StepMapValidationError: when an entry is malformed or a key is empty.
    """
    if not isinstance(raw, Mapping):
        raise StepMapValidationError("Step map must be a mapping of external ids")
    empty = [key for key in raw if not isinstance(key, str) or not key.strip()]
    if empty:
        raise StepMapValidationError("Step map keys must be non-empty strings")
    try:
        return _step_map_adapter.validate_python(dict(raw))
    except ValidationError as exc:
        raise StepMapValidationError(
            f"Invalid step map: {exc.error_count()} error(s)",
            errors=exc.errors(include_url=False),
        ) from exc


def to_step_map(
    steps: Iterable[JourneyStep], children: Iterable[JourneyStepChild]
) -> JourneyStepMap:
    """Build the step map for persisted rows.

    Children are listed in edge id order; edges with an endpoint outside
    ``steps`` are left out.
    """
    by_id = {step.id: step for step in steps}
    step_map: JourneyStepMap = {
        step.external_id: StepMapEntry(
            type=step.type, x=step.x, y=step.y, data=step.data or {}
        )
        for step in by_id.values()
    }
    for child in sorted(children, key=lambda c: c.id or 0):
        parent = by_id.get(child.step_id)
        target = by_id.get(child.child_id)
        if parent is None or target is None:
            continue
        step_map[parent.external_id].children.append(
            StepChildRef(external_id=target.external_id, data=child.data or {})
        )
    return step_map


def dump_step_map(step_map: JourneyStepMap) -> dict[str, Any]:
    """Plain-dict form of a step map, as exchanged with the editor."""
    return _step_map_adapter.dump_python(step_map)


class StepStats(BaseModel):
    """Live population of a step."""

    users: int = 0


class ReconcileResult(BaseModel):
    """Outcome of applying a step map: the canonical map and write counts."""

    step_map: JourneyStepMap = Field(default_factory=dict)
    steps_inserted: int = 0
    steps_updated: int = 0
    steps_deleted: int = 0
    children_inserted: int = 0
    children_updated: int = 0
    children_deleted: int = 0

    @property
    def writes(self) -> int:
        return (
            self.steps_inserted
            + self.steps_updated
            + self.steps_deleted
            + self.children_inserted
            + self.children_updated
            + self.children_deleted
        )

    def summary(self) -> str:
        return (
            f"steps +{self.steps_inserted} ~{self.steps_updated} -{self.steps_deleted}, "
            f"children +{self.children_inserted} ~{self.children_updated} "
            f"-{self.children_deleted}"
        )
