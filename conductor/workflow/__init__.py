from .definitions import StepDefinition, StepPriority, WorkflowCategory, WorkflowDefinition
from .plan import ExecutionPlan, OptimizationLevel, PlanConstraints
from .planner import ExecutionPlanner
from .registry import WorkflowRegistry, load_workflow_catalog

__all__ = [
    "StepDefinition",
    "StepPriority",
    "WorkflowCategory",
    "WorkflowDefinition",
    "ExecutionPlan",
    "OptimizationLevel",
    "PlanConstraints",
    "ExecutionPlanner",
    "WorkflowRegistry",
    "load_workflow_catalog",
]
