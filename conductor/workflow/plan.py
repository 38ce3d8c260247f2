"""Execution plan value objects. Plans are immutable once published."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from conductor.workflow.definitions import StepPriority

PLAN_VERSION = "v1"

OPTIMISTIC_FACTOR = 0.8
LIKELY_FACTOR = 1.0
PESSIMISTIC_FACTOR = 1.5


class OptimizationLevel(str, Enum):
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"


class PlanConstraints(BaseModel):
    """Caller constraints checked against a plan. Unknown keys are kept and reported."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    max_duration_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("max_duration_ms", "max_duration", "maxDuration"),
    )
    required_capabilities: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "required_capabilities",
            "requiredCapabilities",
            "required_teams",
        ),
    )
    priority: StepPriority | None = None

    @field_validator("required_capabilities", mode="before")
    @classmethod
    def wrap_single(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    @property
    def unknown_keys(self) -> list[str]:
        return sorted((self.model_extra or {}).keys())

    def cache_parts(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ExecutionPhase(_Frozen):
    """One dependency wave.

    ``estimated_duration_ms`` is an upper bound: the longest parallelizable step
    plus the sum of the sequential ones. The executor does not serialize
    ``sequential_step_ids`` in parallel mode, so real waves usually finish sooner.
    """

    index: int
    step_ids: tuple[str, ...]
    parallel_step_ids: tuple[str, ...]
    sequential_step_ids: tuple[str, ...]
    capabilities: tuple[str, ...]
    estimated_duration_ms: int


class CriticalPathSummary(_Frozen):
    step_ids: tuple[str, ...]
    total_duration_ms: int
    earliest_start_ms: dict[str, int]
    earliest_finish_ms: dict[str, int]
    slack_ms: dict[str, int]


class CapabilityResources(_Frozen):
    step_count: int
    cpu_cores: float
    memory_gb: float
    network_mbps: float
    storage_gb: float
    cost: float


class ResourcePrediction(_Frozen):
    cpu_cores: float
    memory_gb: float
    network_mbps: float
    storage_gb: float
    estimated_cost: float
    by_capability: dict[str, CapabilityResources]


class StepTimeEstimate(_Frozen):
    step_id: str
    step_name: str
    optimistic_ms: int
    likely_ms: int
    pessimistic_ms: int


class TimeEstimate(_Frozen):
    optimistic_ms: int
    likely_ms: int
    pessimistic_ms: int
    sequential_total_ms: int
    critical_path_ms: int
    steps: tuple[StepTimeEstimate, ...]


class PlanValidation(_Frozen):
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    constraints_checked: dict[str, Any] = Field(default_factory=dict)


class OptimizationSuggestion(_Frozen):
    type: str
    description: str
    impact: str = "medium"
    target: tuple[str, ...] = ()
    details: dict[str, Any] = Field(default_factory=dict)


class ExecutionPlan(_Frozen):
    plan_version: str = PLAN_VERSION
    workflow_id: str
    workflow_name: str
    optimization_level: OptimizationLevel
    parameters: dict[str, Any]
    constraints: dict[str, Any]
    cache_key: str
    cached_at: datetime
    phases: tuple[ExecutionPhase, ...]
    topological_order: tuple[str, ...]
    critical_path: CriticalPathSummary
    resource_prediction: ResourcePrediction
    time_estimate: TimeEstimate
    validations: PlanValidation
    suggestions: tuple[OptimizationSuggestion, ...]
    cached: bool = False
    cache_age_ms: float | None = None

    @property
    def waves(self) -> list[list[str]]:
        return [list(phase.step_ids) for phase in self.phases]
