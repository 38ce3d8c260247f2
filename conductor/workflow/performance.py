"""Performance prediction and goal-driven optimization proposals.

Both are advisory: they read a computed plan and the resource catalog and
never change a plan, a definition, or anything cached.
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from conductor.workers.registry import DEFAULT_RESOURCE_PROFILE, ResourceProfile
from conductor.workflow.definitions import WorkflowDefinition
from conductor.workflow.plan import ExecutionPlan

HIGH_INTENSITY_COST = 5.0
LOW_INTENSITY_COST = 2.0
COMPLEXITY_NORMALIZER = 10.0
COLLABORATION_OVERHEAD_PER_CAPABILITY = 0.1
MAX_COLLABORATION_OVERHEAD = 0.3
CONTENTION_SCALING_THRESHOLD = 0.3
COMPLEXITY_RISK_STEPS = 10
COORDINATION_RISK_CAPABILITIES = 6
MAX_CONFIDENCE = 0.95
CONFIDENCE_SAMPLE_SIZE = 1000

MAX_TIME_REDUCTION = 50.0
MAX_COST_REDUCTION = 30.0
MAX_QUALITY_IMPROVEMENT = 25.0
RISKY_TIME_REDUCTION = 30.0
RISKY_COST_REDUCTION = 25.0

IMPLEMENTATION_PHASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "preparation",
        (
            "Back up the current workflow definition",
            "Set up monitoring for the affected capabilities",
            "Prepare a rollback procedure",
        ),
    ),
    (
        "implementation",
        (
            "Apply optimizations gradually",
            "Watch dispatch latency and success rate while rolling out",
            "Validate step outputs at each phase",
        ),
    ),
    (
        "validation",
        (
            "Compare actual against expected improvements",
            "Tune the optimizations from observed results",
            "Record what changed and why",
        ),
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Input(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class HistoricalData(_Input):
    data_points: int = Field(default=100, ge=0, validation_alias=AliasChoices("data_points", "dataPoints"))
    precision: float = Field(default=0.8, ge=0, le=1)


class ExecutionBaseline(_Input):
    """Observed behaviour of a workflow; missing figures come from its plan."""

    avg_execution_time_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("avg_execution_time_ms", "avg_time", "avgExecutionTime"),
    )
    success_rate: float = Field(
        default=0.95,
        ge=0,
        le=1,
        validation_alias=AliasChoices("success_rate", "successRate"),
    )
    resource_utilization: float = Field(
        default=0.7,
        ge=0,
        le=1,
        validation_alias=AliasChoices("resource_utilization", "resource_util", "resourceUtilization"),
    )
    bottlenecks: tuple[str, ...] = ()
    cost_per_execution: float | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("cost_per_execution", "cost", "costPerExecution"),
    )


class OptimizationGoals(_Input):
    """Requested improvements, in percent."""

    time_reduction: float = Field(
        default=0.0,
        ge=0,
        le=100,
        validation_alias=AliasChoices("time_reduction", "timeReduction"),
    )
    cost_reduction: float = Field(
        default=0.0,
        ge=0,
        le=100,
        validation_alias=AliasChoices("cost_reduction", "costReduction"),
    )
    quality_improvement: float = Field(
        default=0.0,
        ge=0,
        le=100,
        validation_alias=AliasChoices("quality_improvement", "qualityImprovement"),
    )


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ParallelSavings(_Frozen):
    sequential_total_ms: int
    estimated_ms: int
    potential_savings_ms: int
    efficiency_gain_percent: float


class ResourceIntensity(_Frozen):
    high_intensity_capabilities: tuple[str, ...]
    medium_intensity_capabilities: tuple[str, ...]
    low_intensity_capabilities: tuple[str, ...]
    overall_intensity: str


class ResourceRequirements(_Frozen):
    capabilities_required: int
    estimated_cost: float
    intensity: ResourceIntensity


class BaseEstimates(_Frozen):
    total_steps: int
    avg_step_duration_ms: float
    estimated_total_ms: int
    critical_path_ms: int
    parallel_savings: ParallelSavings
    resource_requirements: ResourceRequirements


class ResourceContention(_Frozen):
    contention_score: float
    high_usage_capabilities: tuple[str, ...]
    recommended_scaling: str


class PerformanceFactors(_Frozen):
    complexity_score: float
    collaboration_overhead: float
    dependency_depth: int
    resource_contention: ResourceContention


class PerformanceRisk(_Frozen):
    type: str
    description: str
    probability: float
    impact: str
    mitigation: str


class ConfidenceMetrics(_Frozen):
    confidence_level: float
    precision_score: float
    reliability_score: float
    sample_size: int


class PerformancePrediction(_Frozen):
    workflow_id: str
    predicted_at: datetime
    parameters: dict[str, Any]
    base_estimates: BaseEstimates
    performance_factors: PerformanceFactors
    risk_assessment: tuple[PerformanceRisk, ...]
    confidence_metrics: ConfidenceMetrics


class CurrentPerformance(_Frozen):
    avg_execution_time_ms: int
    success_rate: float
    resource_utilization: float
    bottlenecks: tuple[str, ...]
    cost_per_execution: float


class AppliedOptimization(_Frozen):
    type: str
    description: str
    goal_percent: float
    target: tuple[str, ...] = ()


class ExpectedImprovements(_Frozen):
    time_reduction_percent: float
    cost_reduction_percent: float
    quality_improvement_percent: float
    expected_execution_time_ms: int
    expected_cost_per_execution: float


class OptimizationRisk(_Frozen):
    type: str
    description: str
    severity: str
    mitigation: str


class ImplementationPhase(_Frozen):
    phase: str
    actions: tuple[str, ...]


class WorkflowOptimization(_Frozen):
    workflow_id: str
    optimized_at: datetime
    goals: OptimizationGoals
    current_performance: CurrentPerformance
    optimizations_applied: tuple[AppliedOptimization, ...]
    expected_improvements: ExpectedImprovements
    optimization_risks: tuple[OptimizationRisk, ...]
    implementation_recommendations: tuple[ImplementationPhase, ...]


def classify_intensity(profile: ResourceProfile) -> str:
    if profile.cost >= HIGH_INTENSITY_COST:
        return "high"
    if profile.cost <= LOW_INTENSITY_COST:
        return "low"
    return "medium"


def _intensity(capabilities: tuple[str, ...], profiles: Mapping[str, ResourceProfile]) -> ResourceIntensity:
    buckets: dict[str, list[str]] = {"high": [], "medium": [], "low": []}
    for capability in capabilities:
        buckets[classify_intensity(profiles.get(capability, DEFAULT_RESOURCE_PROFILE))].append(capability)
    overall = "high" if len(buckets["high"]) > len(capabilities) / 2 else "medium"
    return ResourceIntensity(
        high_intensity_capabilities=tuple(buckets["high"]),
        medium_intensity_capabilities=tuple(buckets["medium"]),
        low_intensity_capabilities=tuple(buckets["low"]),
        overall_intensity=overall,
    )


def _parallel_savings(plan: ExecutionPlan) -> ParallelSavings:
    sequential = plan.time_estimate.sequential_total_ms
    estimated = plan.time_estimate.likely_ms
    savings = max(sequential - estimated, 0)
    return ParallelSavings(
        sequential_total_ms=sequential,
        estimated_ms=estimated,
        potential_savings_ms=savings,
        efficiency_gain_percent=round(savings / sequential * 100.0, 2) if sequential else 0.0,
    )


def _contention(definition: WorkflowDefinition) -> ResourceContention:
    counts = Counter(step.target_capability for step in definition.steps)
    busy = tuple(capability for capability in definition.capabilities if counts[capability] > 1)
    score = round(len(busy) / len(definition.steps), 3)
    return ResourceContention(
        contention_score=score,
        high_usage_capabilities=busy,
        recommended_scaling="horizontal" if score > CONTENTION_SCALING_THRESHOLD else "none",
    )


def _performance_risks(definition: WorkflowDefinition) -> list[PerformanceRisk]:
    risks: list[PerformanceRisk] = []
    if len(definition.steps) > COMPLEXITY_RISK_STEPS:
        risks.append(
            PerformanceRisk(
                type="complexity_risk",
                description="High number of steps increases failure probability",
                probability=0.2,
                impact="medium",
                mitigation="Mark non-essential steps optional and keep runs in parallel mode",
            )
        )
    if len(definition.capabilities) > COORDINATION_RISK_CAPABILITIES:
        risks.append(
            PerformanceRisk(
                type="coordination_risk",
                description="Many distinct capabilities raise coordination overhead",
                probability=0.3,
                impact="high",
                mitigation="Group steps by capability and watch worker health closely",
            )
        )
    return risks


def predict_performance(
    definition: WorkflowDefinition,
    plan: ExecutionPlan,
    profiles: Mapping[str, ResourceProfile],
    parameters: Mapping[str, Any],
    historical: HistoricalData,
) -> PerformancePrediction:
    steps = definition.steps
    capabilities = definition.capabilities
    total_dependencies = sum(len(step.depends_on) for step in steps)
    complexity = (
        len(steps) / COMPLEXITY_NORMALIZER
        + len(capabilities) / COMPLEXITY_NORMALIZER
        + total_dependencies / len(steps)
    )
    confidence = min(MAX_CONFIDENCE, historical.data_points / CONFIDENCE_SAMPLE_SIZE)

    return PerformancePrediction(
        workflow_id=definition.id,
        predicted_at=_utcnow(),
        parameters=dict(parameters),
        base_estimates=BaseEstimates(
            total_steps=len(steps),
            avg_step_duration_ms=round(definition.estimated_total_duration_ms / len(steps), 3),
            estimated_total_ms=definition.estimated_total_duration_ms,
            critical_path_ms=plan.critical_path.total_duration_ms,
            parallel_savings=_parallel_savings(plan),
            resource_requirements=ResourceRequirements(
                capabilities_required=len(capabilities),
                estimated_cost=plan.resource_prediction.estimated_cost,
                intensity=_intensity(capabilities, profiles),
            ),
        ),
        performance_factors=PerformanceFactors(
            complexity_score=round(complexity, 3),
            collaboration_overhead=round(
                min(len(capabilities) * COLLABORATION_OVERHEAD_PER_CAPABILITY, MAX_COLLABORATION_OVERHEAD),
                3,
            ),
            # one wave per level of the longest dependency chain
            dependency_depth=len(plan.phases),
            resource_contention=_contention(definition),
        ),
        risk_assessment=tuple(_performance_risks(definition)),
        confidence_metrics=ConfidenceMetrics(
            confidence_level=round(confidence, 3),
            precision_score=historical.precision,
            reliability_score=round((confidence + historical.precision) / 2, 3),
            sample_size=historical.data_points,
        ),
    )


def propose_optimizations(
    definition: WorkflowDefinition,
    plan: ExecutionPlan,
    baseline: ExecutionBaseline,
    goals: OptimizationGoals,
) -> WorkflowOptimization:
    current = CurrentPerformance(
        avg_execution_time_ms=baseline.avg_execution_time_ms or plan.time_estimate.likely_ms,
        success_rate=baseline.success_rate,
        resource_utilization=baseline.resource_utilization,
        bottlenecks=baseline.bottlenecks,
        cost_per_execution=(
            plan.resource_prediction.estimated_cost
            if baseline.cost_per_execution is None
            else baseline.cost_per_execution
        ),
    )

    applied: list[AppliedOptimization] = []
    if goals.time_reduction:
        applied.append(
            AppliedOptimization(
                type="parallelization",
                description="Increase parallel execution along the critical path",
                goal_percent=goals.time_reduction,
                target=plan.critical_path.step_ids,
            )
        )
    if goals.cost_reduction:
        by_cost = sorted(
            plan.resource_prediction.by_capability.items(),
            key=lambda item: (-item[1].cost, item[0]),
        )
        applied.append(
            AppliedOptimization(
                type="resource_optimization",
                description="Rebalance resource allocation across capabilities",
                goal_percent=goals.cost_reduction,
                target=tuple(capability for capability, _ in by_cost),
            )
        )
    if goals.quality_improvement:
        applied.append(
            AppliedOptimization(
                type="quality_enhancement",
                description="Add review and validation steps",
                goal_percent=goals.quality_improvement,
            )
        )

    time_cut = min(goals.time_reduction, MAX_TIME_REDUCTION)
    cost_cut = min(goals.cost_reduction, MAX_COST_REDUCTION)
    improvements = ExpectedImprovements(
        time_reduction_percent=time_cut,
        cost_reduction_percent=cost_cut,
        quality_improvement_percent=min(goals.quality_improvement, MAX_QUALITY_IMPROVEMENT),
        expected_execution_time_ms=round(current.avg_execution_time_ms * (1 - time_cut / 100.0)),
        expected_cost_per_execution=round(current.cost_per_execution * (1 - cost_cut / 100.0), 3),
    )

    risks: list[OptimizationRisk] = []
    if goals.time_reduction > RISKY_TIME_REDUCTION:
        risks.append(
            OptimizationRisk(
                type="time_rush",
                description="Aggressive time reduction may compromise quality",
                severity="medium",
                mitigation="Keep validation steps non-optional",
            )
        )
    if goals.cost_reduction > RISKY_COST_REDUCTION:
        risks.append(
            OptimizationRisk(
                type="resource_cuts",
                description="Deep cost reduction may degrade worker performance",
                severity="high",
                mitigation="Monitor worker latency and success rate closely",
            )
        )

    return WorkflowOptimization(
        workflow_id=definition.id,
        optimized_at=_utcnow(),
        goals=goals,
        current_performance=current,
        optimizations_applied=tuple(applied),
        expected_improvements=improvements,
        optimization_risks=tuple(risks),
        implementation_recommendations=tuple(
            ImplementationPhase(phase=phase, actions=actions) for phase, actions in IMPLEMENTATION_PHASES
        ),
    )
