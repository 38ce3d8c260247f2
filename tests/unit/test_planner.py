from __future__ import annotations

from pathlib import Path

import pytest

from conductor.cache.plan_cache import PlanCache
from conductor.errors import CyclicDependencyError, DanglingDependencyError, NotFoundError, ValidationError
from conductor.workers.registry import ResourceProfile
from conductor.workflow.planner import ExecutionPlanner
from conductor.workflow.registry import WorkflowRegistry, load_workflow_catalog
from fakes import launch_workflow, step, workflow

CATALOG_DIR = Path(__file__).resolve().parents[2] / "catalog"


class _Clock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def _planner(*definitions, clock: _Clock | None = None, **kwargs) -> ExecutionPlanner:
    registry = WorkflowRegistry(list(definitions) or [launch_workflow()])
    cache = PlanCache(ttl_seconds=300, clock=clock or _Clock())
    return ExecutionPlanner(registry, cache, **kwargs)


def test_plan_phases_follow_dependency_waves() -> None:
    plan = _planner().plan("launch")

    assert plan.waves == [["research"], ["draft", "design"], ["qa"]]
    assert plan.phases[1].parallel_step_ids == ("draft", "design")
    assert plan.phases[0].sequential_step_ids == ("research",)
    assert [phase.estimated_duration_ms for phase in plan.phases] == [300000, 900000, 180000]
    assert plan.topological_order == ("research", "draft", "design", "qa")
    assert plan.cached is False
    assert plan.cache_age_ms is None


def test_plan_critical_path_and_time_estimate() -> None:
    plan = _planner().plan("launch")

    assert plan.critical_path.step_ids == ("research", "design", "qa")
    assert plan.critical_path.total_duration_ms == 1380000
    assert plan.critical_path.slack_ms["draft"] == 300000
    assert plan.time_estimate.likely_ms == 1380000
    assert plan.time_estimate.optimistic_ms == 1104000
    assert plan.time_estimate.pessimistic_ms == 2070000
    assert plan.time_estimate.sequential_total_ms == 1980000
    assert plan.time_estimate.critical_path_ms == 1380000
    assert [estimate.step_id for estimate in plan.time_estimate.steps] == ["research", "draft", "design", "qa"]


def test_resource_prediction_sums_capability_profiles() -> None:
    profiles = {"research-team": ResourceProfile(cpu_cores=2, memory_gb=4, network_mbps=10, storage_gb=2, cost=5)}
    plan = _planner(resource_profiles=profiles).plan("launch")
    prediction = plan.resource_prediction

    assert prediction.cpu_cores == 5.0
    assert prediction.memory_gb == 10.0
    assert prediction.estimated_cost == 14.0
    assert prediction.by_capability["research-team"].cpu_cores == 2.0
    assert prediction.by_capability["qa-team"].step_count == 1


def test_cache_hit_matches_fresh_plan_except_cache_fields() -> None:
    clock = _Clock()
    planner = _planner(clock=clock)

    fresh = planner.plan("launch", {"region": "eu"})
    clock.now += 12.5
    hit = planner.plan("launch", {"region": "eu"})

    assert hit.cached is True
    assert hit.cache_age_ms == 12500.0
    assert fresh.cached is False
    excluded = {"cached", "cache_age_ms"}
    assert hit.model_dump(exclude=excluded) == fresh.model_dump(exclude=excluded)
    assert planner.plans_computed == 1


def test_different_parameters_miss_the_cache() -> None:
    planner = _planner()

    first = planner.plan("launch", {"region": "eu"})
    second = planner.plan("launch", {"region": "us"})

    assert second.cached is False
    assert first.cache_key != second.cache_key
    assert planner.plans_computed == 2


def test_mutating_a_returned_plan_leaves_the_cache_untouched() -> None:
    planner = _planner()

    first = planner.plan("launch", {"region": "eu"})
    first.critical_path.slack_ms["qa"] = 999
    first.parameters["region"] = "us"
    first.validations.constraints_checked["injected"] = True
    second = planner.plan("launch", {"region": "eu"})
    second.critical_path.earliest_start_ms["qa"] = -1
    third = planner.plan("launch", {"region": "eu"})

    assert third.cached is True
    assert third.critical_path.slack_ms["qa"] == 0
    assert third.critical_path.earliest_start_ms["qa"] == 1200000
    assert third.parameters == {"region": "eu"}
    assert "injected" not in third.validations.constraints_checked


def test_caller_parameters_are_copied_on_ingress() -> None:
    planner = _planner()
    params = {"audience": {"region": "eu", "tags": ["b2b"]}}

    planner.plan("launch", params)
    params["audience"]["region"] = "us"
    params["audience"]["tags"].append("b2c")
    hit = planner.plan("launch", {"audience": {"region": "eu", "tags": ["b2b"]}})

    assert hit.cached is True
    assert hit.parameters == {"audience": {"region": "eu", "tags": ["b2b"]}}


def test_expired_plan_is_recomputed() -> None:
    clock = _Clock()
    planner = _planner(clock=clock)

    planner.plan("launch")
    clock.now += 300
    again = planner.plan("launch")

    assert again.cached is False
    assert planner.plans_computed == 2


def test_unknown_workflow_raises_not_found() -> None:
    with pytest.raises(NotFoundError):
        _planner().plan("ghost")


def test_cyclic_workflow_is_rejected_and_not_cached() -> None:
    cyclic = workflow("loop", [step("a", depends_on=["b"]), step("b", depends_on=["a"])])
    planner = _planner(cyclic)

    with pytest.raises(CyclicDependencyError) as exc_info:
        planner.plan("loop")

    assert exc_info.value.step_ids == ["a", "b"]
    assert len(planner.cache) == 0


def test_dangling_dependency_is_rejected() -> None:
    planner = _planner(workflow("dangling", [step("a", depends_on=["ghost"])]))

    with pytest.raises(DanglingDependencyError):
        planner.plan("dangling")


def test_unknown_optimization_level_is_rejected() -> None:
    with pytest.raises(ValidationError, match="optimization level"):
        _planner().plan("launch", optimization_level="reckless")


def test_max_duration_violation_marks_plan_invalid() -> None:
    plan = _planner().plan("launch", constraints={"maxDuration": 1000000})

    assert plan.validations.valid is False
    assert "exceeds max_duration" in plan.validations.errors[0]
    assert plan.validations.constraints_checked == {"max_duration_ms": 1000000, "required_capabilities": []}


def test_missing_required_capability_is_an_error() -> None:
    plan = _planner().plan("launch", constraints={"required_capabilities": ["legal-team", "qa-team"]})

    assert plan.validations.valid is False
    assert plan.validations.errors == ("Missing required capabilities: legal-team",)


def test_priority_mismatch_and_unknown_keys_only_warn() -> None:
    plan = _planner().plan("launch", constraints={"priority": "critical", "budget_cap": 10})

    assert plan.validations.valid is True
    assert any("priority" in warning for warning in plan.validations.warnings)
    assert "Unsupported constraint ignored: budget_cap" in plan.validations.warnings


def test_malformed_constraints_are_a_validation_error() -> None:
    with pytest.raises(ValidationError, match="plan constraints"):
        _planner().plan("launch", constraints={"max_duration_ms": -5})


def test_constraints_are_part_of_the_cache_key() -> None:
    planner = _planner()

    planner.plan("launch")
    constrained = planner.plan("launch", constraints={"max_duration_ms": 10})

    assert constrained.cached is False
    assert constrained.validations.valid is False


def test_suggestions_for_wide_sequential_workflow() -> None:
    steps = [step(f"s{index}", depends_on=[f"s{index - 1}"] if index else []) for index in range(6)]
    plan = _planner(workflow("chain", steps)).plan("chain", optimization_level="aggressive")
    kinds = [suggestion.type for suggestion in plan.suggestions]

    assert "parallelization" in kinds
    assert "coordination_overhead" in kinds
    assert "chain_break" in kinds
    assert "aggressive_parallelization" in kinds
    assert "complexity_risk" not in kinds


def test_optimization_rules_become_suggestions() -> None:
    definition = workflow(
        "ruled",
        [step("a")],
        optimization_rules=[{"type": "cache_results", "target": "a-team", "ttl": 60}],
    )
    plan = _planner(definition).plan("ruled")

    assert plan.suggestions[-1].type == "cache_results"
    assert plan.suggestions[-1].target == ("a-team",)
    assert plan.suggestions[-1].details == {"ttl": 60}


def test_analyze_steps_accepts_raw_dicts() -> None:
    analysis = _planner().analyze_steps(
        [
            {"id": "a", "team": "research", "estimated_duration": 100},
            {"id": "b", "team": "design", "dependencies": ["a"], "estimated_duration": 200},
            {"id": "c", "team": "design", "dependencies": ["a"], "estimated_duration": 50},
        ]
    )

    assert analysis["waves"] == [["a"], ["b", "c"]]
    assert analysis["parallel_opportunities"] == [{"wave": 1, "step_ids": ["b", "c"]}]
    assert analysis["critical_path"]["step_ids"] == ["a", "b"]
    assert analysis["sequential_requirements"][0] == {"step_id": "b", "depends_on": ["a"]}
    assert analysis["resource_prediction"]["by_capability"]["design"]["step_count"] == 2


def test_analyze_steps_rejects_bad_input() -> None:
    planner = _planner()

    with pytest.raises(ValidationError, match="step #0"):
        planner.analyze_steps([{"id": "a"}])
    with pytest.raises(CyclicDependencyError):
        planner.analyze_steps(
            [
                {"id": "a", "team": "x", "dependencies": ["b"], "estimated_duration": 1},
                {"id": "b", "team": "x", "dependencies": ["a"], "estimated_duration": 1},
            ]
        )


def test_stats_track_computed_plans_and_cache() -> None:
    planner = _planner()
    planner.plan("launch")
    planner.plan("launch")

    stats = planner.stats()
    assert stats["registered_workflows"] == 1
    assert stats["plans_computed"] == 1
    assert stats["cache"]["hits"] == 1
    assert stats["cache"]["misses"] == 1


def test_every_shipped_workflow_plans_cleanly() -> None:
    definitions = load_workflow_catalog(CATALOG_DIR / "workflows.yaml")
    planner = ExecutionPlanner(WorkflowRegistry(definitions), PlanCache())

    for definition in definitions:
        plan = planner.plan(definition.id)
        assert sorted(plan.topological_order) == sorted(item.id for item in definition.steps)
        assert plan.validations.valid is True
