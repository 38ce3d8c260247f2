from __future__ import annotations

import copy
import json
import logging
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from conductor.cache.key_policy import make_plan_cache_key
from conductor.cache.plan_cache import PlanCache
from conductor.errors import ValidationError
from conductor.workers.registry import DEFAULT_RESOURCE_PROFILE, ResourceProfile
from conductor.workers.stats import RollingStat
from conductor.workflow.critical_path import CriticalPathResult, analyze_critical_path
from conductor.workflow.definitions import StepDefinition, WorkflowDefinition
from conductor.workflow.dependency_graph import build_dependency_graph
from conductor.workflow.parallel_groups import group_into_waves
from conductor.workflow.performance import (
    ExecutionBaseline,
    HistoricalData,
    OptimizationGoals,
    PerformancePrediction,
    WorkflowOptimization,
    predict_performance,
    propose_optimizations,
)
from conductor.workflow.plan import (
    LIKELY_FACTOR,
    OPTIMISTIC_FACTOR,
    PESSIMISTIC_FACTOR,
    PLAN_VERSION,
    CapabilityResources,
    CriticalPathSummary,
    ExecutionPhase,
    ExecutionPlan,
    OptimizationLevel,
    OptimizationSuggestion,
    PlanConstraints,
    PlanValidation,
    ResourcePrediction,
    StepTimeEstimate,
    TimeEstimate,
)
from conductor.workflow.registry import WorkflowRegistry

logger = logging.getLogger(__name__)

SEQUENTIAL_STEP_THRESHOLD = 3
CAPABILITY_DIVERSITY_THRESHOLD = 5
STEP_COUNT_THRESHOLD = 10
CHAIN_LENGTH_THRESHOLD = 3


def _parse_model(model: type[Any], raw: Any, label: str) -> Any:
    try:
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {label}",
            details={"errors": json.loads(exc.json(include_url=False))},
        ) from exc


class ExecutionPlanner:
    """Turns a registered workflow into a cached execution plan.

    Graph validation runs on every cache miss; cycles and unknown
    dependencies raise ValidationError before anything is cached.
    Constraint violations never raise, they mark the plan invalid.
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        cache: PlanCache,
        resource_profiles: Mapping[str, ResourceProfile] | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.resource_profiles: dict[str, ResourceProfile] = dict(resource_profiles or {})
        self.plans_computed = 0
        self.predictions_computed = 0
        self.optimizations_computed = 0
        self.planning_time_ms = RollingStat()
        self._clock = clock

    def plan(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None = None,
        constraints: Mapping[str, Any] | PlanConstraints | None = None,
        optimization_level: OptimizationLevel | str = OptimizationLevel.STANDARD,
    ) -> ExecutionPlan:
        definition = self.registry.require(workflow_id)
        try:
            level = OptimizationLevel(optimization_level)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown optimization level: {optimization_level}",
                details={"accepted": [item.value for item in OptimizationLevel]},
            ) from exc
        parsed = (
            constraints
            if isinstance(constraints, PlanConstraints)
            else _parse_model(PlanConstraints, dict(constraints or {}), "plan constraints")
        )
        # callers keep their nested dicts; the cached plan owns its own copy
        parameters = copy.deepcopy(dict(parameters or {}))
        cache_key = make_plan_cache_key(
            workflow_id,
            parameters,
            parsed.cache_parts(),
            level.value,
            version=PLAN_VERSION,
        )

        entry = self.cache.get(cache_key, workflow_id)
        if entry is not None:
            age_ms = round(entry.age_seconds(self.cache.now()) * 1000.0, 3)
            logger.debug("Plan cache hit for %s (age %.0fms)", workflow_id, age_ms)
            return entry.plan.model_copy(deep=True, update={"cached": True, "cache_age_ms": age_ms})

        start = self._clock()
        plan = self._compute(definition, parameters, parsed, level, cache_key)
        elapsed_ms = (self._clock() - start) * 1000.0
        self.plans_computed += 1
        self.planning_time_ms.update(elapsed_ms)
        self.cache.put(cache_key, workflow_id, plan)
        logger.info(
            "Planned %s: %d phase(s), critical path %dms, valid=%s",
            workflow_id,
            len(plan.phases),
            plan.critical_path.total_duration_ms,
            plan.validations.valid,
        )
        return plan.model_copy(deep=True)

    def _compute(
        self,
        definition: WorkflowDefinition,
        parameters: dict[str, Any],
        constraints: PlanConstraints,
        level: OptimizationLevel,
        cache_key: str,
    ) -> ExecutionPlan:
        graph = build_dependency_graph(definition.steps)
        critical = analyze_critical_path(graph)
        waves = group_into_waves(graph)

        phases = self._build_phases(definition, waves)
        time_estimate = self._estimate_time(definition, phases, critical)

        return ExecutionPlan(
            workflow_id=definition.id,
            workflow_name=definition.name,
            optimization_level=level,
            parameters=parameters,
            constraints=constraints.cache_parts(),
            cache_key=cache_key,
            cached_at=datetime.now(timezone.utc),
            phases=tuple(phases),
            topological_order=critical.topological_order,
            critical_path=CriticalPathSummary(
                step_ids=critical.path,
                total_duration_ms=critical.total_duration_ms,
                earliest_start_ms=dict(critical.earliest_start_ms),
                earliest_finish_ms=dict(critical.earliest_finish_ms),
                slack_ms=dict(critical.slack_ms),
            ),
            resource_prediction=self._predict_resources(definition.steps),
            time_estimate=time_estimate,
            validations=self._validate(definition, constraints, time_estimate),
            suggestions=tuple(self._suggest(definition, critical, level)),
        )

    def _build_phases(
        self,
        definition: WorkflowDefinition,
        waves: list[tuple[str, ...]],
    ) -> list[ExecutionPhase]:
        phases: list[ExecutionPhase] = []
        for index, wave in enumerate(waves):
            steps = [definition.step(step_id) for step_id in wave]
            parallel = [step for step in steps if step.parallelizable]
            sequential = [step for step in steps if not step.parallelizable]
            # Conservative: non-parallelizable steps are costed back to back, though
            # parallel-mode runs still dispatch the whole wave at once.
            duration = max((step.estimated_duration_ms for step in parallel), default=0) + sum(
                step.estimated_duration_ms for step in sequential
            )
            capabilities: dict[str, None] = {}
            for step in steps:
                capabilities.setdefault(step.target_capability, None)
            phases.append(
                ExecutionPhase(
                    index=index,
                    step_ids=wave,
                    parallel_step_ids=tuple(step.id for step in parallel),
                    sequential_step_ids=tuple(step.id for step in sequential),
                    capabilities=tuple(capabilities),
                    estimated_duration_ms=duration,
                )
            )
        return phases

    def profile_for(self, capability: str) -> ResourceProfile:
        return self.resource_profiles.get(capability, DEFAULT_RESOURCE_PROFILE)

    def _predict_resources(self, steps: Sequence[StepDefinition]) -> ResourcePrediction:
        per_capability: dict[str, dict[str, float]] = {}
        for step in steps:
            profile = self.profile_for(step.target_capability)
            bucket = per_capability.setdefault(
                step.target_capability,
                {"step_count": 0, "cpu_cores": 0.0, "memory_gb": 0.0, "network_mbps": 0.0, "storage_gb": 0.0, "cost": 0.0},
            )
            bucket["step_count"] += 1
            bucket["cpu_cores"] += profile.cpu_cores
            bucket["memory_gb"] += profile.memory_gb
            bucket["network_mbps"] += profile.network_mbps
            bucket["storage_gb"] += profile.storage_gb
            bucket["cost"] += profile.cost

        def total(field_name: str) -> float:
            return round(sum(bucket[field_name] for bucket in per_capability.values()), 3)

        return ResourcePrediction(
            cpu_cores=total("cpu_cores"),
            memory_gb=total("memory_gb"),
            network_mbps=total("network_mbps"),
            storage_gb=total("storage_gb"),
            estimated_cost=total("cost"),
            by_capability={
                capability: CapabilityResources(
                    step_count=int(bucket["step_count"]),
                    cpu_cores=round(bucket["cpu_cores"], 3),
                    memory_gb=round(bucket["memory_gb"], 3),
                    network_mbps=round(bucket["network_mbps"], 3),
                    storage_gb=round(bucket["storage_gb"], 3),
                    cost=round(bucket["cost"], 3),
                )
                for capability, bucket in per_capability.items()
            },
        )

    def _estimate_time(
        self,
        definition: WorkflowDefinition,
        phases: list[ExecutionPhase],
        critical: CriticalPathResult,
    ) -> TimeEstimate:
        likely = sum(phase.estimated_duration_ms for phase in phases)
        return TimeEstimate(
            optimistic_ms=round(likely * OPTIMISTIC_FACTOR),
            likely_ms=round(likely * LIKELY_FACTOR),
            pessimistic_ms=round(likely * PESSIMISTIC_FACTOR),
            sequential_total_ms=sum(step.estimated_duration_ms for step in definition.steps),
            critical_path_ms=critical.total_duration_ms,
            steps=tuple(
                StepTimeEstimate(
                    step_id=step.id,
                    step_name=step.label,
                    optimistic_ms=round(step.estimated_duration_ms * OPTIMISTIC_FACTOR),
                    likely_ms=round(step.estimated_duration_ms * LIKELY_FACTOR),
                    pessimistic_ms=round(step.estimated_duration_ms * PESSIMISTIC_FACTOR),
                )
                for step in definition.steps
            ),
        )

    def _validate(
        self,
        definition: WorkflowDefinition,
        constraints: PlanConstraints,
        time_estimate: TimeEstimate,
    ) -> PlanValidation:
        errors: list[str] = []
        warnings: list[str] = []

        if constraints.max_duration_ms is not None and time_estimate.likely_ms > constraints.max_duration_ms:
            errors.append(
                f"Estimated duration ({time_estimate.likely_ms}ms) exceeds max_duration "
                f"({constraints.max_duration_ms}ms)"
            )

        targets = set(definition.capabilities)
        missing = [capability for capability in constraints.required_capabilities if capability not in targets]
        if missing:
            errors.append(f"Missing required capabilities: {', '.join(missing)}")

        if constraints.priority is not None and constraints.priority != definition.priority:
            warnings.append(
                f"Workflow priority ({definition.priority.value}) does not match "
                f"constraint ({constraints.priority.value})"
            )

        for key in constraints.unknown_keys:
            warnings.append(f"Unsupported constraint ignored: {key}")

        return PlanValidation(
            valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            constraints_checked=constraints.cache_parts(),
        )

    def _suggest(
        self,
        definition: WorkflowDefinition,
        critical: CriticalPathResult,
        level: OptimizationLevel,
    ) -> list[OptimizationSuggestion]:
        suggestions: list[OptimizationSuggestion] = []

        sequential = [step.id for step in definition.steps if not step.parallelizable]
        if len(sequential) > SEQUENTIAL_STEP_THRESHOLD:
            suggestions.append(
                OptimizationSuggestion(
                    type="parallelization",
                    description="Consider making more steps parallel to reduce total execution time",
                    impact="high",
                    target=tuple(sequential),
                )
            )

        if len(definition.capabilities) > CAPABILITY_DIVERSITY_THRESHOLD:
            suggestions.append(
                OptimizationSuggestion(
                    type="coordination_overhead",
                    description="Many distinct capabilities; group similar workers to limit coordination overhead",
                    impact="medium",
                    target=definition.capabilities,
                )
            )

        if len(definition.steps) > STEP_COUNT_THRESHOLD:
            suggestions.append(
                OptimizationSuggestion(
                    type="complexity_risk",
                    description="High step count increases failure probability",
                    impact="medium",
                )
            )

        if len(critical.path) > CHAIN_LENGTH_THRESHOLD:
            suggestions.append(
                OptimizationSuggestion(
                    type="chain_break",
                    description="Long dependency chain; consider splitting into parallel branches",
                    impact="medium",
                    target=critical.path,
                )
            )

        if level == OptimizationLevel.AGGRESSIVE:
            suggestions.append(
                OptimizationSuggestion(
                    type="aggressive_parallelization",
                    description="Maximize parallel execution of independent steps",
                    impact="high",
                    details={"estimated_improvement": "30-50% time reduction", "risk_level": "medium"},
                )
            )

        for rule in definition.optimization_rules:
            suggestions.append(
                OptimizationSuggestion(
                    type=rule.type,
                    description=f"Apply optimization rule: {rule.type}",
                    impact="high",
                    target=rule.target,
                    details=rule.options,
                )
            )
        return suggestions

    def predict_performance(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None = None,
        historical_data: Mapping[str, Any] | HistoricalData | None = None,
    ) -> PerformancePrediction:
        historical = (
            historical_data
            if isinstance(historical_data, HistoricalData)
            else _parse_model(HistoricalData, dict(historical_data or {}), "historical data")
        )
        plan = self.plan(workflow_id, parameters)
        definition = self.registry.require(workflow_id)
        prediction = predict_performance(
            definition,
            plan,
            self.resource_profiles,
            plan.parameters,
            historical,
        )
        self.predictions_computed += 1
        logger.info(
            "Predicted %s: complexity %.2f, depth %d, confidence %.2f",
            workflow_id,
            prediction.performance_factors.complexity_score,
            prediction.performance_factors.dependency_depth,
            prediction.confidence_metrics.confidence_level,
        )
        return prediction

    def optimize_workflow(
        self,
        workflow_id: str,
        execution_data: Mapping[str, Any] | ExecutionBaseline | None = None,
        goals: Mapping[str, Any] | OptimizationGoals | None = None,
    ) -> WorkflowOptimization:
        """Propose optimizations toward ``goals``; the registered workflow is left as is."""
        baseline = (
            execution_data
            if isinstance(execution_data, ExecutionBaseline)
            else _parse_model(ExecutionBaseline, dict(execution_data or {}), "execution data")
        )
        parsed_goals = (
            goals
            if isinstance(goals, OptimizationGoals)
            else _parse_model(OptimizationGoals, dict(goals or {}), "optimization goals")
        )
        plan = self.plan(workflow_id)
        definition = self.registry.require(workflow_id)
        optimization = propose_optimizations(definition, plan, baseline, parsed_goals)
        self.optimizations_computed += 1
        logger.info(
            "Optimization for %s: %d change(s), %d risk(s)",
            workflow_id,
            len(optimization.optimizations_applied),
            len(optimization.optimization_risks),
        )
        return optimization

    def analyze_steps(self, raw_steps: Sequence[Any]) -> dict[str, Any]:
        """Dependency analysis of an ad-hoc step list; nothing is cached."""
        steps = [
            raw if isinstance(raw, StepDefinition) else _parse_model(StepDefinition, raw, f"step #{index}")
            for index, raw in enumerate(raw_steps)
        ]
        graph = build_dependency_graph(steps)
        critical = analyze_critical_path(graph)
        waves = group_into_waves(graph)

        suggestions: list[dict[str, Any]] = []
        if len(critical.path) > CHAIN_LENGTH_THRESHOLD:
            suggestions.append(
                {
                    "type": "chain_break",
                    "description": "Long dependency chain; consider splitting into parallel branches",
                    "target": list(critical.path),
                }
            )

        return {
            "graph": graph.as_dict(),
            "topological_order": list(critical.topological_order),
            "critical_path": critical.as_dict(),
            "waves": [list(wave) for wave in waves],
            "parallel_opportunities": [
                {"wave": index, "step_ids": list(wave)}
                for index, wave in enumerate(waves)
                if len(wave) > 1
            ],
            "sequential_requirements": [
                {"step_id": step.id, "depends_on": list(step.depends_on)}
                for step in steps
                if step.depends_on
            ],
            "resource_prediction": self._predict_resources(steps).model_dump(mode="json"),
            "suggestions": suggestions,
        }

    def stats(self) -> dict[str, Any]:
        return {
            "registered_workflows": len(self.registry),
            "plans_computed": self.plans_computed,
            "predictions_computed": self.predictions_computed,
            "optimizations_computed": self.optimizations_computed,
            "avg_planning_ms": round(self.planning_time_ms.value(), 3),
            "cache": self.cache.stats(),
        }
