"""Background worker probing and periodic optimization hooks."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import psutil

from conductor.cache.snapshot_store import MetricsSnapshotStore
from conductor.errors import ValidationError
from conductor.observability.execution_log import ExecutionLog
from conductor.workers.dispatcher import TaskDispatcher
from conductor.workers.registry import RegistryStore, WorkerHandle, WorkerStatus, utcnow
from conductor.workers.transport import WorkerTransport
from conductor.workflow.planner import ExecutionPlanner

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = {"healthy", "ok"}
OPTIMIZATION_KINDS = ("workers", "workflows", "resources", "all")
MIN_SAMPLES_FOR_RATES = 5
LOW_SUCCESS_RATE = 0.8
LOW_CACHE_HIT_RATE = 0.5


def _memory_percent() -> float:
    return float(psutil.virtual_memory().percent)


@dataclass(frozen=True)
class HealthSnapshot:
    healthy: bool
    active: int
    total: int
    ratio: float
    checked_at: datetime | None = None
    counts: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "status": "healthy" if self.healthy else "unhealthy",
            "active_workers": self.active,
            "total_workers": self.total,
            "active_ratio": round(self.ratio, 4),
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "workers_by_status": dict(self.counts),
        }


class HealthMonitor:
    def __init__(
        self,
        registry: RegistryStore,
        transport: WorkerTransport,
        *,
        planner: ExecutionPlanner | None = None,
        dispatcher: TaskDispatcher | None = None,
        snapshot_store: MetricsSnapshotStore | None = None,
        execution_log: ExecutionLog | None = None,
        probe_timeout_s: float = 5.0,
        probe_interval_s: float = 30.0,
        optimization_interval_s: float = 300.0,
        healthy_ratio: float = 1.0,
        auto_optimize: bool = False,
        memory_warning_percent: float = 90.0,
        memory_probe: Callable[[], float] = _memory_percent,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.planner = planner
        self.dispatcher = dispatcher
        self.snapshot_store = snapshot_store
        self.execution_log = execution_log
        self.probe_timeout_s = float(probe_timeout_s)
        self.probe_interval_s = float(probe_interval_s)
        self.optimization_interval_s = float(optimization_interval_s)
        self.healthy_ratio = float(healthy_ratio)
        self.auto_optimize = bool(auto_optimize)
        self.memory_warning_percent = float(memory_warning_percent)
        self._memory_probe = memory_probe
        self._tasks: list[asyncio.Task[None]] = []
        self.last_recommendations: list[dict[str, Any]] = []
        self.snapshot = self._summarize(checked_at=None)

    @property
    def healthy(self) -> bool:
        return self.snapshot.healthy

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def _summarize(self, checked_at: datetime | None) -> HealthSnapshot:
        counts = self.registry.counts()
        total = counts["total"]
        active = counts[WorkerStatus.ACTIVE.value]
        ratio = active / total if total else 0.0
        return HealthSnapshot(
            healthy=total > 0 and ratio >= self.healthy_ratio,
            active=active,
            total=total,
            ratio=ratio,
            checked_at=checked_at,
            counts=counts,
        )

    async def _probe(self, handle: WorkerHandle) -> WorkerStatus:
        try:
            response = await asyncio.wait_for(
                self.transport.probe(handle.endpoint, self.probe_timeout_s),
                timeout=self.probe_timeout_s,
            )
        except Exception as exc:
            logger.debug("Probe of %s failed: %s", handle.worker_id, exc)
            status = WorkerStatus.UNREACHABLE
        else:
            reported = str(response.get("status", "")).strip().lower()
            status = WorkerStatus.ACTIVE if reported in HEALTHY_STATUSES else WorkerStatus.DEGRADED
        self.registry.mark(handle.worker_id, status, probed_at=utcnow())
        return status

    async def probe_all(self) -> HealthSnapshot:
        handles = self.registry.handles()
        await asyncio.gather(*(self._probe(handle) for handle in handles))

        previous = self.snapshot.healthy
        self.snapshot = self._summarize(checked_at=utcnow())
        if previous != self.snapshot.healthy:
            log = logger.info if self.snapshot.healthy else logger.warning
            log("Orchestrator health changed: %s", self.snapshot.as_dict()["status"])
        logger.debug("Health probe: %d/%d workers active", self.snapshot.active, self.snapshot.total)
        return self.snapshot

    def run_optimization_cycle(self) -> dict[str, Any]:
        evicted = self.planner.cache.evict_expired() if self.planner is not None else 0
        written = self._write_snapshots()
        recommendations = self.recommend("all") if self.auto_optimize else []
        return {
            "evicted_plans": evicted,
            "snapshots_written": written,
            "recommendations": recommendations,
        }

    def trigger_optimization(self, kind: str = "all") -> dict[str, Any]:
        if kind not in OPTIMIZATION_KINDS:
            raise ValidationError(
                f"Unknown optimization kind: {kind}",
                details={"accepted": list(OPTIMIZATION_KINDS)},
            )
        evicted = 0
        if kind in ("workflows", "all") and self.planner is not None:
            evicted = self.planner.cache.evict_expired()
        return {
            "kind": kind,
            "evicted_plans": evicted,
            "recommendations": self.recommend(kind),
        }

    def _write_snapshots(self) -> int:
        if self.snapshot_store is None:
            return 0
        snapshots: dict[str, dict[str, Any]] = {"orchestrator_health": self.snapshot.as_dict()}
        if self.planner is not None:
            snapshots["planner_metrics"] = self.planner.stats()
        if self.dispatcher is not None:
            snapshots["dispatch_metrics"] = self.dispatcher.stats.summary()
        return sum(1 for name, payload in snapshots.items() if self.snapshot_store.write(name, payload))

    def recommend(self, kind: str = "all") -> list[dict[str, Any]]:
        """Compute recommendations. Nothing here changes plans or running work."""
        recommendations: list[dict[str, Any]] = []

        if kind in ("workers", "all"):
            for handle in self.registry.handles():
                if not handle.is_active:
                    recommendations.append(
                        {
                            "type": "worker_status",
                            "target": handle.worker_id,
                            "description": f"{handle.capability} worker is {handle.status.value}; check its deployment",
                        }
                    )
                performance = handle.performance
                if performance.total >= MIN_SAMPLES_FOR_RATES and performance.success_rate.value() < LOW_SUCCESS_RATE:
                    recommendations.append(
                        {
                            "type": "worker_reliability",
                            "target": handle.worker_id,
                            "description": (
                                f"Success rate {performance.success_rate.value():.0%} is below "
                                f"{LOW_SUCCESS_RATE:.0%}; consider adding capacity for {handle.capability}"
                            ),
                        }
                    )

        if kind in ("workflows", "all") and self.planner is not None:
            metrics = self.planner.cache.metrics
            if metrics.hits + metrics.misses >= MIN_SAMPLES_FOR_RATES * 2 and metrics.hit_rate() < LOW_CACHE_HIT_RATE:
                recommendations.append(
                    {
                        "type": "plan_cache_hit_rate",
                        "target": "plan_cache",
                        "description": f"Plan cache hit rate {metrics.hit_rate():.0%}; callers may vary parameters needlessly",
                    }
                )

        if kind in ("resources", "all"):
            memory_percent = self._memory_probe()
            if memory_percent > self.memory_warning_percent:
                logger.warning("High memory usage: %.1f%%", memory_percent)
                recommendations.append(
                    {
                        "type": "memory_pressure",
                        "target": "host",
                        "description": f"Memory usage at {memory_percent:.1f}% exceeds {self.memory_warning_percent:.0f}%",
                    }
                )

        for recommendation in recommendations:
            logger.info("Optimization recommendation [%s] %s", recommendation["type"], recommendation["description"])
        if recommendations and self.execution_log is not None:
            self.execution_log.log_recommendations(recommendations)
        self.last_recommendations = recommendations
        return recommendations

    async def _probe_loop(self) -> None:
        while True:
            try:
                await self.probe_all()
            except Exception:
                logger.exception("Health probe cycle failed")
            await asyncio.sleep(self.probe_interval_s)

    async def _optimization_loop(self) -> None:
        while True:
            await asyncio.sleep(self.optimization_interval_s)
            try:
                self.run_optimization_cycle()
            except Exception:
                logger.exception("Optimization cycle failed")

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._probe_loop(), name="conductor-health-probe"),
            asyncio.create_task(self._optimization_loop(), name="conductor-optimization"),
        ]
        logger.info(
            "Health monitor started (probe every %.0fs, optimization every %.0fs)",
            self.probe_interval_s,
            self.optimization_interval_s,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
