"""
Execution Log - JSONL record of dispatches and workflow runs.
"""
from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class ExecutionEventType(str, Enum):
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    OPTIMIZATION_RECOMMENDED = "optimization_recommended"


@dataclass
class ExecutionEvent:
    event_type: ExecutionEventType
    timestamp: str
    context: dict[str, Any]
    severity: str  # "info", "warning"
    task_id: str | None = None
    run_id: str | None = None


class ExecutionLog:
    """Append-only execution events, one JSON object per line.

    Async callers write through ``asyncio.to_thread``; the lock keeps lines
    from concurrent writers whole.
    """

    def __init__(self, log_path: str | Path) -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log_event(self, event: ExecutionEvent) -> None:
        record = asdict(event)
        record["event_type"] = event.event_type.value
        line = json.dumps(record, ensure_ascii=True, default=str) + "\n"
        with self._lock, open(self.log_path, "a", encoding="utf-8", newline="\n") as handle:
            handle.write(line)
            handle.flush()

    def log_task_record(self, record: dict[str, Any]) -> None:
        success = bool(record.get("success"))
        self.log_event(
            ExecutionEvent(
                event_type=ExecutionEventType.TASK_COMPLETED if success else ExecutionEventType.TASK_FAILED,
                timestamp=datetime.now(timezone.utc).isoformat(),
                context={key: value for key, value in record.items() if key != "payload"},
                severity="info" if success else "warning",
                task_id=record.get("task_id"),
                run_id=record.get("run_id"),
            )
        )

    def log_workflow_result(self, result: dict[str, Any]) -> None:
        completed = result.get("state") == "completed"
        self.log_event(
            ExecutionEvent(
                event_type=(
                    ExecutionEventType.WORKFLOW_COMPLETED
                    if completed
                    else ExecutionEventType.WORKFLOW_FAILED
                ),
                timestamp=datetime.now(timezone.utc).isoformat(),
                context={
                    "workflow_id": result.get("workflow_id"),
                    "mode": result.get("mode"),
                    "attempted": result.get("attempted"),
                    "succeeded": result.get("succeeded"),
                    "success_rate": result.get("success_rate"),
                    "duration_ms": result.get("duration_ms"),
                },
                severity="info" if completed else "warning",
                run_id=result.get("run_id"),
            )
        )

    def log_recommendations(self, recommendations: list[dict[str, Any]]) -> None:
        for recommendation in recommendations:
            self.log_event(
                ExecutionEvent(
                    event_type=ExecutionEventType.OPTIMIZATION_RECOMMENDED,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    context=dict(recommendation),
                    severity="info",
                )
            )

    def read_events(
        self,
        event_type: ExecutionEventType | None = None,
        since: datetime | None = None,
    ) -> list[ExecutionEvent]:
        """Read events back with optional filtering."""
        if not self.log_path.exists():
            return []

        normalized_since = since
        if normalized_since is not None and normalized_since.tzinfo is None:
            normalized_since = normalized_since.replace(tzinfo=timezone.utc)

        events: list[ExecutionEvent] = []
        with open(self.log_path, "r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue

                event_dict = json.loads(line)
                event = ExecutionEvent(
                    event_type=ExecutionEventType(event_dict["event_type"]),
                    timestamp=event_dict["timestamp"],
                    context=event_dict["context"],
                    severity=event_dict["severity"],
                    task_id=event_dict.get("task_id"),
                    run_id=event_dict.get("run_id"),
                )

                if event_type is not None and event.event_type != event_type:
                    continue

                if normalized_since is not None:
                    event_time = datetime.fromisoformat(event.timestamp)
                    if event_time.tzinfo is None:
                        event_time = event_time.replace(tzinfo=timezone.utc)
                    if event_time < normalized_since:
                        continue

                events.append(event)

        return events
