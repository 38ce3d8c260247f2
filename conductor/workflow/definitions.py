from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class StepPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkflowCategory(str, Enum):
    BUSINESS = "business"
    SECURITY = "security"
    AUDIOVISUAL = "audiovisual"
    GENERAL = "general"


class StepDefinition(BaseModel):
    """One schedulable unit of a workflow, bound to a worker capability.

    Catalog files may use the shorter legacy keys (``team``, ``dependencies``,
    ``estimated_duration``, ``parallel``); they are accepted as aliases.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    target_capability: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("target_capability", "capability", "team"),
    )
    depends_on: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("depends_on", "dependencies"),
    )
    estimated_duration_ms: int = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("estimated_duration_ms", "estimated_duration"),
    )
    parallelizable: bool = Field(
        default=False,
        validation_alias=AliasChoices("parallelizable", "parallel"),
    )
    optional: bool = False
    priority: StepPriority = StepPriority.MEDIUM

    @field_validator("depends_on", mode="before")
    @classmethod
    def dedupe_dependencies(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        if isinstance(value, (list, tuple, set, frozenset)):
            seen: dict[str, None] = {}
            for item in value:
                seen.setdefault(item, None)
            return tuple(seen)
        return value

    @property
    def label(self) -> str:
        return self.name or self.id


class OptimizationRule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    type: str = Field(..., min_length=1)
    target: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("target", "targets", "teams", "capabilities"),
    )

    @field_validator("target", mode="before")
    @classmethod
    def wrap_single_target(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    @property
    def options(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class WorkflowDefinition(BaseModel):
    """Immutable workflow template. A changed workflow is registered under a new id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    category: WorkflowCategory = WorkflowCategory.GENERAL
    priority: StepPriority = StepPriority.MEDIUM
    steps: tuple[StepDefinition, ...] = Field(..., min_length=1)
    declared_duration_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices(
            "declared_duration_ms",
            "estimated_total_duration_ms",
            "estimated_duration",
        ),
    )
    optimization_rules: tuple[OptimizationRule, ...] = ()

    @field_validator("steps")
    @classmethod
    def unique_step_ids(cls, steps: tuple[StepDefinition, ...]) -> tuple[StepDefinition, ...]:
        seen: set[str] = set()
        duplicates: list[str] = []
        for step in steps:
            if step.id in seen and step.id not in duplicates:
                duplicates.append(step.id)
            seen.add(step.id)
        if duplicates:
            raise ValueError(f"Duplicate step ids: {', '.join(duplicates)}")
        return steps

    @property
    def estimated_total_duration_ms(self) -> int:
        if self.declared_duration_ms is not None:
            return self.declared_duration_ms
        return sum(step.estimated_duration_ms for step in self.steps)

    @property
    def capabilities(self) -> tuple[str, ...]:
        ordered: dict[str, None] = {}
        for step in self.steps:
            ordered.setdefault(step.target_capability, None)
        return tuple(ordered)

    def step(self, step_id: str) -> StepDefinition | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "priority": self.priority.value,
            "step_count": len(self.steps),
            "capabilities": list(self.capabilities),
            "estimated_total_duration_ms": self.estimated_total_duration_ms,
        }
