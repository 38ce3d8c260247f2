from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable
from uuid import uuid4

from conductor.errors import OrchestrationError, ValidationError
from conductor.observability.execution_log import ExecutionLog
from conductor.workers.dispatcher import TaskDispatcher
from conductor.workers.registry import utcnow
from conductor.workflow.definitions import StepDefinition
from conductor.workflow.plan import ExecutionPlan
from conductor.workflow.planner import ExecutionPlanner

from .fsm import RunState, RunStateMachine

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_DEPENDENCY_FAILED = "skipped-dependency-failed"
    SKIPPED_RUN_HALTED = "skipped-run-halted"


@dataclass
class StepResult:
    step_id: str
    step_name: str
    capability: str
    optional: bool
    status: StepStatus
    task_id: str | None = None
    worker_id: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    error_kind: str | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @property
    def attempted(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.FAILED)

    @property
    def skipped(self) -> bool:
        return not self.attempted

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "capability": self.capability,
            "optional": self.optional,
            "status": self.status.value,
            "success": self.success,
            "task_id": self.task_id,
            "worker_id": self.worker_id,
            "duration_ms": self.duration_ms,
        }
        if self.success:
            payload["result"] = self.result
        else:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        return payload


@dataclass
class WorkflowExecutionResult:
    workflow_id: str
    run_id: str
    mode: ExecutionMode
    state: RunState
    steps: list[StepResult]
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    plan_cached: bool = False
    state_history: list[RunState] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return sum(1 for step in self.steps if step.attempted)

    @property
    def succeeded(self) -> int:
        return sum(1 for step in self.steps if step.success)

    @property
    def success_rate(self) -> float:
        attempted = self.attempted
        if attempted == 0:
            return 0.0
        return self.succeeded / attempted

    @property
    def success(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def partial(self) -> bool:
        return not self.success and self.succeeded > 0

    def step(self, step_id: str) -> StepResult | None:
        for result in self.steps:
            if result.step_id == step_id:
                return result
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "run_id": self.run_id,
            "mode": self.mode.value,
            "state": self.state.value,
            "success": self.success,
            "partial": self.partial,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "success_rate": round(self.success_rate, 4),
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "plan_cached": self.plan_cached,
            "state_history": [state.value for state in self.state_history],
            "steps": [step.as_dict() for step in self.steps],
        }


class WorkflowExecutor:
    """Runs a planned workflow through the dispatcher.

    Planning errors propagate before any dispatch. Per-step failures are
    folded into the result so a failing step never aborts the caller.
    """

    def __init__(
        self,
        planner: ExecutionPlanner,
        dispatcher: TaskDispatcher,
        *,
        default_timeout_ms: int = 30000,
        execution_log: ExecutionLog | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.planner = planner
        self.dispatcher = dispatcher
        self.default_timeout_ms = int(default_timeout_ms)
        self.execution_log = execution_log
        self._clock = clock

    async def run(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None = None,
        mode: ExecutionMode | str = ExecutionMode.PARALLEL,
        timeout_ms: int | None = None,
    ) -> WorkflowExecutionResult:
        try:
            resolved_mode = ExecutionMode(mode)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown execution mode: {mode}",
                details={"accepted": [item.value for item in ExecutionMode]},
            ) from exc
        step_timeout_ms = self.default_timeout_ms if timeout_ms is None else int(timeout_ms)
        if step_timeout_ms <= 0:
            raise ValidationError("timeout_ms must be positive", details={"timeout_ms": step_timeout_ms})

        fsm = RunStateMachine()
        run_id = f"run-{uuid4().hex[:10]}"
        parameters = dict(parameters or {})
        started_at = utcnow()
        start = self._clock()

        try:
            plan = self.planner.plan(workflow_id, parameters)
        except OrchestrationError as exc:
            fsm.transition(RunState.FAILED)
            logger.warning("Run %s of %s rejected during planning: %s", run_id, workflow_id, exc.message)
            raise
        if not plan.validations.valid:
            logger.warning("Run %s proceeds with an invalid plan: %s", run_id, list(plan.validations.errors))

        definition = self.planner.registry.require(workflow_id)
        steps_by_id = {step.id: step for step in definition.steps}

        fsm.transition(RunState.DISPATCHING)
        logger.info("Run %s of %s started (%s)", run_id, workflow_id, resolved_mode.value)
        if resolved_mode == ExecutionMode.PARALLEL:
            outcomes = await self._run_waves(plan, steps_by_id, run_id, parameters, step_timeout_ms)
        else:
            outcomes = await self._run_sequential(plan, steps_by_id, run_id, parameters, step_timeout_ms)

        fsm.transition(RunState.AGGREGATING)
        ordered = [outcomes[step_id] for step_id in plan.topological_order]
        completed = all(result.success for result in ordered if not result.optional)
        fsm.transition(RunState.COMPLETED if completed else RunState.FAILED)

        result = WorkflowExecutionResult(
            workflow_id=workflow_id,
            run_id=run_id,
            mode=resolved_mode,
            state=fsm.current_state,
            steps=ordered,
            started_at=started_at,
            finished_at=utcnow(),
            duration_ms=round((self._clock() - start) * 1000.0, 3),
            plan_cached=plan.cached,
            state_history=list(fsm.history),
        )
        log = logger.info if result.success else logger.warning
        log(
            "Run %s of %s %s: %d/%d succeeded",
            run_id,
            workflow_id,
            result.state.value,
            result.succeeded,
            result.attempted,
        )
        if self.execution_log is not None:
            await asyncio.to_thread(self.execution_log.log_workflow_result, result.as_dict())
        return result

    def _blocking_dependencies(
        self,
        step: StepDefinition,
        outcomes: dict[str, StepResult],
        steps_by_id: dict[str, StepDefinition],
    ) -> list[str]:
        return [
            dep
            for dep in step.depends_on
            if not outcomes[dep].success and not steps_by_id[dep].optional
        ]

    async def _run_waves(
        self,
        plan: ExecutionPlan,
        steps_by_id: dict[str, StepDefinition],
        run_id: str,
        parameters: dict[str, Any],
        timeout_ms: int,
    ) -> dict[str, StepResult]:
        outcomes: dict[str, StepResult] = {}
        for phase in plan.phases:
            ready: list[StepDefinition] = []
            for step_id in phase.step_ids:
                step = steps_by_id[step_id]
                blocked = self._blocking_dependencies(step, outcomes, steps_by_id)
                if blocked:
                    outcomes[step_id] = self._skipped(step, StepStatus.SKIPPED_DEPENDENCY_FAILED, blocked)
                else:
                    ready.append(step)

            # the whole wave settles before the next one starts
            settled = await asyncio.gather(
                *(self._dispatch_step(step, run_id, plan.workflow_id, parameters, timeout_ms) for step in ready),
                return_exceptions=True,
            )
            for step, outcome in zip(ready, settled):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    outcome = self._internal_failure(step, outcome)
                outcomes[step.id] = outcome
        return outcomes

    async def _run_sequential(
        self,
        plan: ExecutionPlan,
        steps_by_id: dict[str, StepDefinition],
        run_id: str,
        parameters: dict[str, Any],
        timeout_ms: int,
    ) -> dict[str, StepResult]:
        outcomes: dict[str, StepResult] = {}
        halted_by: str | None = None

        for step_id in plan.topological_order:
            step = steps_by_id[step_id]
            blocked = self._blocking_dependencies(step, outcomes, steps_by_id)
            if blocked:
                outcomes[step_id] = self._skipped(step, StepStatus.SKIPPED_DEPENDENCY_FAILED, blocked)
                continue
            if halted_by is not None:
                outcomes[step_id] = self._skipped(step, StepStatus.SKIPPED_RUN_HALTED, [halted_by])
                continue

            outcome = await self._dispatch_step(step, run_id, plan.workflow_id, parameters, timeout_ms)
            outcomes[step_id] = outcome
            if not outcome.success and not step.optional:
                halted_by = step_id
                logger.warning("Run %s halted: required step %s failed", run_id, step_id)
        return outcomes

    async def _dispatch_step(
        self,
        step: StepDefinition,
        run_id: str,
        workflow_id: str,
        parameters: dict[str, Any],
        timeout_ms: int,
    ) -> StepResult:
        payload = {
            "workflow_id": workflow_id,
            "run_id": run_id,
            "step_id": step.id,
            "step_name": step.label,
            "priority": step.priority.value,
            "parameters": parameters,
        }
        try:
            record = await self.dispatcher.dispatch(
                step.target_capability,
                payload,
                timeout_ms=timeout_ms,
                task_id=f"{run_id}.{step.id}",
            )
        except OrchestrationError as exc:
            logger.warning("Step %s of %s not dispatched: %s", step.id, run_id, exc.message)
            return self._result(step, StepStatus.FAILED, error=exc.message, error_kind=exc.kind)
        except Exception as exc:
            return self._internal_failure(step, exc)

        if record.success:
            return self._result(
                step,
                StepStatus.SUCCEEDED,
                task_id=record.task_id,
                worker_id=record.worker_id,
                result=record.payload,
                duration_ms=record.duration_ms,
            )
        return self._result(
            step,
            StepStatus.FAILED,
            task_id=record.task_id,
            worker_id=record.worker_id,
            error=record.error_message,
            error_kind=record.error_kind,
            duration_ms=record.duration_ms,
        )

    def _result(self, step: StepDefinition, status: StepStatus, **fields: Any) -> StepResult:
        return StepResult(
            step_id=step.id,
            step_name=step.label,
            capability=step.target_capability,
            optional=step.optional,
            status=status,
            **fields,
        )

    def _skipped(self, step: StepDefinition, status: StepStatus, causes: list[str]) -> StepResult:
        if status == StepStatus.SKIPPED_DEPENDENCY_FAILED:
            message = f"Dependency failed: {', '.join(causes)}"
        else:
            message = f"Run halted after {', '.join(causes)} failed"
        return self._result(step, status, error=message, error_kind=status.value)

    def _internal_failure(self, step: StepDefinition, exc: Exception) -> StepResult:
        logger.error("Unexpected error in step %s", step.id, exc_info=exc)
        return self._result(step, StepStatus.FAILED, error=str(exc) or type(exc).__name__, error_kind="internal")
