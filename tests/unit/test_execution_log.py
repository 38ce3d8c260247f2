import json
from datetime import datetime, timezone
from pathlib import Path

from conductor.observability.execution_log import (
    ExecutionEvent,
    ExecutionEventType,
    ExecutionLog,
)


def _make_log(tmp_path: Path, name: str) -> ExecutionLog:
    return ExecutionLog(tmp_path / "nested" / name)


def test_jsonl_append_and_read_back(tmp_path: Path) -> None:
    log = _make_log(tmp_path, "append_read_back.jsonl")

    log.log_event(
        ExecutionEvent(
            event_type=ExecutionEventType.TASK_COMPLETED,
            timestamp="2026-02-24T12:00:00+00:00",
            context={"capability": "research"},
            severity="info",
            task_id="task-1",
        )
    )
    log.log_event(
        ExecutionEvent(
            event_type=ExecutionEventType.WORKFLOW_FAILED,
            timestamp="2026-02-24T12:01:00+00:00",
            context={"workflow_id": "launch"},
            severity="warning",
            run_id="run-1",
        )
    )

    lines = log.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["event_type"] == "task_completed"
    assert json.loads(lines[1])["event_type"] == "workflow_failed"

    events = log.read_events()
    assert [event.task_id for event in events] == ["task-1", None]
    assert events[1].run_id == "run-1"


def test_missing_log_reads_as_empty(tmp_path: Path) -> None:
    assert _make_log(tmp_path, "never_written.jsonl").read_events() == []


def test_filter_by_since_with_naive_and_aware_timestamps(tmp_path: Path) -> None:
    log = _make_log(tmp_path, "since.jsonl")

    for index, timestamp in enumerate(("2026-02-24T12:00:00", "2026-02-24T12:10:00+00:00")):
        log.log_event(
            ExecutionEvent(
                event_type=ExecutionEventType.TASK_FAILED,
                timestamp=timestamp,
                context={"index": index},
                severity="warning",
            )
        )

    filtered = log.read_events(since=datetime(2026, 2, 24, 12, 5, 0))
    assert [event.context["index"] for event in filtered] == [1]

    aware = log.read_events(since=datetime(2026, 2, 24, 11, 0, 0, tzinfo=timezone.utc))
    assert len(aware) == 2


def test_helpers_choose_event_type_and_severity(tmp_path: Path) -> None:
    log = _make_log(tmp_path, "helpers.jsonl")

    log.log_task_record({"task_id": "t-1", "success": True, "payload": {"big": "blob"}})
    log.log_task_record({"task_id": "t-2", "success": False, "error_kind": "timeout"})
    log.log_workflow_result({"workflow_id": "launch", "run_id": "run-9", "state": "completed", "attempted": 4})
    log.log_recommendations([{"type": "memory_pressure", "target": "host"}])

    events = log.read_events()
    assert [event.event_type for event in events] == [
        ExecutionEventType.TASK_COMPLETED,
        ExecutionEventType.TASK_FAILED,
        ExecutionEventType.WORKFLOW_COMPLETED,
        ExecutionEventType.OPTIMIZATION_RECOMMENDED,
    ]
    assert [event.severity for event in events] == ["info", "warning", "info", "info"]
    assert "payload" not in events[0].context
    assert events[2].run_id == "run-9"
    assert events[2].context["attempted"] == 4
    assert events[3].context == {"type": "memory_pressure", "target": "host"}

    for event in events:
        assert datetime.fromisoformat(event.timestamp).tzinfo is not None
