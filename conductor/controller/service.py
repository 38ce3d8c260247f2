from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from conductor.cache.plan_cache import PlanCache
from conductor.cache.settings import PlanCacheSettings, load_plan_cache_settings
from conductor.cache.snapshot_store import MetricsSnapshotStore, create_snapshot_store
from conductor.config.settings import Settings
from conductor.observability.execution_log import ExecutionLog
from conductor.workers.dispatcher import TaskDispatcher
from conductor.workers.registry import RegistryStore, ResourceProfile, WorkerHandle, load_worker_catalog
from conductor.workers.transport import AiohttpWorkerTransport, WorkerTransport
from conductor.workflow.definitions import WorkflowDefinition
from conductor.workflow.planner import ExecutionPlanner
from conductor.workflow.registry import WorkflowRegistry, load_workflow_catalog

from .health_loop import HealthMonitor
from .workflow_executor import WorkflowExecutor

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorService:
    """Every piece of mutable orchestrator state, owned in one place."""

    settings: Settings
    workflows: WorkflowRegistry
    workers: RegistryStore
    plan_cache: PlanCache
    planner: ExecutionPlanner
    transport: WorkerTransport
    dispatcher: TaskDispatcher
    executor: WorkflowExecutor
    health: HealthMonitor
    snapshot_store: MetricsSnapshotStore | None = None
    execution_log: ExecutionLog | None = None

    def metrics(self) -> dict[str, Any]:
        return {
            "dispatch": self.dispatcher.stats.summary(),
            "planner": self.planner.stats(),
            "workers": self.workers.counts(),
            "health": self.health.snapshot.as_dict(),
            "recommendations": list(self.health.last_recommendations),
            "snapshot_store": (
                self.snapshot_store.health_check()
                if self.snapshot_store is not None
                else {"enabled": False, "connected": False, "message": "Snapshots disabled"}
            ),
        }

    async def close(self) -> None:
        await self.health.stop()
        await self.transport.close()


def build_orchestrator_service(
    settings: Settings | None = None,
    *,
    transport: WorkerTransport | None = None,
    cache_settings: PlanCacheSettings | None = None,
    workflows: list[WorkflowDefinition] | None = None,
    workers: list[WorkerHandle] | None = None,
    resource_profiles: dict[str, ResourceProfile] | None = None,
    snapshot_store: MetricsSnapshotStore | None = None,
) -> OrchestratorService:
    """Assemble the service. Explicit arguments override the YAML catalogs."""
    resolved = settings or Settings()
    cache_config = cache_settings or load_plan_cache_settings()

    definitions = workflows if workflows is not None else load_workflow_catalog(resolved.WORKFLOW_CATALOG_PATH)
    if workers is None:
        handles, catalog_profiles = load_worker_catalog(resolved.WORKER_CATALOG_PATH)
    else:
        handles, catalog_profiles = workers, {}
    profiles = {**catalog_profiles, **(resource_profiles or {})}

    execution_log = ExecutionLog(resolved.EXECUTION_LOG_PATH) if resolved.EXECUTION_LOG_PATH else None
    store = snapshot_store if snapshot_store is not None else create_snapshot_store(cache_config)
    worker_transport = transport if transport is not None else AiohttpWorkerTransport()

    workflow_registry = WorkflowRegistry(definitions)
    worker_registry = RegistryStore(handles)
    plan_cache = PlanCache(ttl_seconds=cache_config.ttl_seconds, max_entries=cache_config.max_entries)
    planner = ExecutionPlanner(workflow_registry, plan_cache, resource_profiles=profiles)
    dispatcher = TaskDispatcher(
        worker_registry,
        worker_transport,
        orchestrator_version=resolved.ORCHESTRATOR_VERSION,
        default_timeout_ms=resolved.DEFAULT_TASK_TIMEOUT_MS,
        execution_log=execution_log,
    )
    executor = WorkflowExecutor(
        planner,
        dispatcher,
        default_timeout_ms=resolved.DEFAULT_TASK_TIMEOUT_MS,
        execution_log=execution_log,
    )
    health = HealthMonitor(
        worker_registry,
        worker_transport,
        planner=planner,
        dispatcher=dispatcher,
        snapshot_store=store,
        execution_log=execution_log,
        probe_timeout_s=resolved.HEALTH_PROBE_TIMEOUT_SECONDS,
        probe_interval_s=resolved.HEALTH_PROBE_INTERVAL_SECONDS,
        optimization_interval_s=resolved.OPTIMIZATION_INTERVAL_SECONDS,
        healthy_ratio=resolved.HEALTHY_WORKER_RATIO,
        auto_optimize=resolved.AUTO_OPTIMIZATION,
        memory_warning_percent=resolved.MEMORY_WARNING_PERCENT,
    )

    logger.info(
        "Orchestrator ready: %d workflow(s), %d worker(s) across %d capabilities",
        len(workflow_registry),
        len(worker_registry),
        len(worker_registry.capabilities()),
    )
    return OrchestratorService(
        settings=resolved,
        workflows=workflow_registry,
        workers=worker_registry,
        plan_cache=plan_cache,
        planner=planner,
        transport=worker_transport,
        dispatcher=dispatcher,
        executor=executor,
        health=health,
        snapshot_store=store,
        execution_log=execution_log,
    )
