from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from conductor.errors import DispatchTimeoutError, TransportError, ValidationError
from conductor.observability.execution_log import ExecutionLog
from conductor.workers.registry import RegistryStore, WorkerHandle, WorkerStatus, utcnow
from conductor.workers.stats import DispatchStats
from conductor.workers.transport import WorkerTransport

logger = logging.getLogger(__name__)

VERSION_HEADER = "X-Orchestrator-Version"


@dataclass
class TaskExecutionRecord:
    task_id: str
    capability: str
    worker_id: str | None
    started_at: datetime
    duration_ms: float
    success: bool
    error_kind: str | None = None
    error_message: str | None = None
    payload: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "capability": self.capability,
            "worker_id": self.worker_id,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "payload": self.payload,
        }


class TaskDispatcher:
    """Single-task dispatch with a hard timeout and no retries.

    Registry lookups fail before any network call: unknown capabilities raise
    NotFoundError, capabilities with no active worker raise UnavailableError.
    Timeouts and transport failures come back as failed records and demote
    the worker to degraded.
    """

    def __init__(
        self,
        registry: RegistryStore,
        transport: WorkerTransport,
        *,
        orchestrator_version: str = "4.0.0",
        default_timeout_ms: int = 30000,
        execution_log: ExecutionLog | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.orchestrator_version = orchestrator_version
        self.default_timeout_ms = int(default_timeout_ms)
        self.execution_log = execution_log
        self.stats = DispatchStats()
        self._clock = clock

    async def dispatch(
        self,
        capability: str,
        payload: dict[str, Any],
        timeout_ms: int | None = None,
        task_id: str | None = None,
    ) -> TaskExecutionRecord:
        bound_ms = self.default_timeout_ms if timeout_ms is None else int(timeout_ms)
        if bound_ms <= 0:
            raise ValidationError("timeout_ms must be positive", details={"timeout_ms": bound_ms})

        handle = self.registry.select(capability)
        task_id = task_id or f"task-{uuid4().hex[:10]}"
        timeout_s = bound_ms / 1000.0
        body = {**payload, "task_id": task_id, "capability": capability}
        headers = {VERSION_HEADER: self.orchestrator_version}

        started_at = utcnow()
        start = self._clock()
        logger.info("Dispatching %s to %s (%s)", task_id, handle.worker_id, capability)

        try:
            response = await asyncio.wait_for(
                self.transport.execute(handle.endpoint, body, timeout_s, headers),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, DispatchTimeoutError):
            return await self._failed(
                handle,
                task_id,
                started_at,
                start,
                kind=DispatchTimeoutError.kind,
                message=f"Worker {handle.worker_id} did not answer within {bound_ms}ms",
            )
        except TransportError as exc:
            return await self._failed(
                handle,
                task_id,
                started_at,
                start,
                kind=TransportError.kind,
                message=exc.message,
            )

        duration_ms = self._elapsed_ms(start)
        self.registry.mark(handle.worker_id, WorkerStatus.ACTIVE)
        handle.performance.record(duration_ms, success=True)
        self.stats.record(duration_ms, success=True)
        logger.info("Task %s completed by %s in %.1fms", task_id, handle.worker_id, duration_ms)

        record = TaskExecutionRecord(
            task_id=task_id,
            capability=capability,
            worker_id=handle.worker_id,
            started_at=started_at,
            duration_ms=duration_ms,
            success=True,
            payload=response,
        )
        await self._forward(record)
        return record

    def _elapsed_ms(self, start: float) -> float:
        return round((self._clock() - start) * 1000.0, 3)

    async def _failed(
        self,
        handle: WorkerHandle,
        task_id: str,
        started_at: datetime,
        start: float,
        *,
        kind: str,
        message: str,
    ) -> TaskExecutionRecord:
        duration_ms = self._elapsed_ms(start)
        self.registry.mark(handle.worker_id, WorkerStatus.DEGRADED)
        handle.performance.record(duration_ms, success=False)
        self.stats.record(duration_ms, success=False)
        logger.warning("Task %s failed on %s (%s): %s", task_id, handle.worker_id, kind, message)

        record = TaskExecutionRecord(
            task_id=task_id,
            capability=handle.capability,
            worker_id=handle.worker_id,
            started_at=started_at,
            duration_ms=duration_ms,
            success=False,
            error_kind=kind,
            error_message=message,
        )
        await self._forward(record)
        return record

    async def _forward(self, record: TaskExecutionRecord) -> None:
        if self.execution_log is not None:
            await asyncio.to_thread(self.execution_log.log_task_record, record.as_dict())
