from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from conductor.errors import DispatchTimeoutError, NotFoundError, TransportError, UnavailableError, ValidationError
from conductor.observability.execution_log import ExecutionEventType, ExecutionLog
from conductor.workers.dispatcher import VERSION_HEADER, TaskDispatcher
from conductor.workers.registry import RegistryStore, WorkerStatus
from fakes import FakeTransport, endpoint_for, make_workers, slow


def _dispatcher(transport: FakeTransport, **kwargs) -> TaskDispatcher:
    registry = RegistryStore(make_workers(["research", "design"]))
    return TaskDispatcher(registry, transport, orchestrator_version="4.0.0", **kwargs)


@pytest.mark.asyncio
async def test_successful_dispatch_returns_worker_payload() -> None:
    transport = FakeTransport(execute={endpoint_for("research"): {"result": "insights"}})
    dispatcher = _dispatcher(transport)

    record = await dispatcher.dispatch("research", {"task": {"type": "market_analysis"}}, task_id="t-1")

    assert record.success is True
    assert record.payload == {"result": "insights"}
    assert record.worker_id == "research-1"
    assert record.task_id == "t-1"
    call = transport.execute_calls[0]
    assert call["endpoint"] == endpoint_for("research")
    assert call["payload"] == {"task": {"type": "market_analysis"}, "task_id": "t-1", "capability": "research"}
    assert call["headers"] == {VERSION_HEADER: "4.0.0"}
    assert call["timeout_s"] == 30.0
    assert dispatcher.stats.succeeded == 1
    assert dispatcher.registry.get("research-1").performance.total == 1


@pytest.mark.asyncio
async def test_unknown_capability_never_reaches_transport() -> None:
    transport = FakeTransport()

    with pytest.raises(NotFoundError):
        await _dispatcher(transport).dispatch("legal", {})

    assert transport.execute_calls == []


@pytest.mark.asyncio
async def test_unavailable_capability_never_reaches_transport() -> None:
    transport = FakeTransport()
    dispatcher = _dispatcher(transport)
    dispatcher.registry.mark("research-1", WorkerStatus.DEGRADED)

    with pytest.raises(UnavailableError):
        await dispatcher.dispatch("research", {})

    assert transport.execute_calls == []


@pytest.mark.asyncio
async def test_timeout_is_a_failed_record_and_degrades_worker() -> None:
    transport = FakeTransport(execute={endpoint_for("research"): slow(1.0)})
    dispatcher = _dispatcher(transport)

    record = await dispatcher.dispatch("research", {}, timeout_ms=20)

    assert record.success is False
    assert record.error_kind == "timeout"
    assert "20ms" in record.error_message
    assert dispatcher.registry.get("research-1").status == WorkerStatus.DEGRADED
    assert dispatcher.stats.failed == 1


@pytest.mark.asyncio
async def test_transport_reported_timeout_maps_to_timeout() -> None:
    transport = FakeTransport(execute={endpoint_for("research"): DispatchTimeoutError("slow worker")})

    record = await _dispatcher(transport).dispatch("research", {})

    assert record.error_kind == "timeout"


@pytest.mark.asyncio
async def test_transport_failure_is_a_failed_record() -> None:
    transport = FakeTransport(execute={endpoint_for("design"): TransportError("HTTP 500")})
    dispatcher = _dispatcher(transport)

    record = await dispatcher.dispatch("design", {})

    assert record.success is False
    assert record.error_kind == "transport"
    assert record.error_message == "HTTP 500"
    assert record.capability == "design"
    assert dispatcher.registry.get("design-1").status == WorkerStatus.DEGRADED


@pytest.mark.asyncio
async def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValidationError):
        await _dispatcher(FakeTransport()).dispatch("research", {}, timeout_ms=0)


@pytest.mark.asyncio
async def test_generated_task_ids_are_distinct() -> None:
    dispatcher = _dispatcher(FakeTransport())

    first = await dispatcher.dispatch("research", {})
    second = await dispatcher.dispatch("research", {})

    assert first.task_id != second.task_id
    assert first.task_id.startswith("task-")


@pytest.mark.asyncio
async def test_records_are_forwarded_to_execution_log(tmp_path: Path) -> None:
    log = ExecutionLog(tmp_path / "execution.jsonl")
    transport = FakeTransport(execute={endpoint_for("design"): TransportError("refused")})
    dispatcher = _dispatcher(transport, execution_log=log)

    await dispatcher.dispatch("research", {}, task_id="ok-1")
    await dispatcher.dispatch("design", {}, task_id="bad-1")

    completed = log.read_events(event_type=ExecutionEventType.TASK_COMPLETED)
    failed = log.read_events(event_type=ExecutionEventType.TASK_FAILED)
    assert [event.task_id for event in completed] == ["ok-1"]
    assert [event.task_id for event in failed] == ["bad-1"]
    assert failed[0].context["error_kind"] == "transport"
    assert "payload" not in completed[0].context


class _ThreadRecordingLog(ExecutionLog):
    def __init__(self, log_path: Path) -> None:
        super().__init__(log_path)
        self.writer_threads: list[int] = []

    def log_task_record(self, record: dict) -> None:
        self.writer_threads.append(threading.get_ident())
        super().log_task_record(record)


@pytest.mark.asyncio
async def test_execution_log_writes_stay_off_the_event_loop(tmp_path: Path) -> None:
    log = _ThreadRecordingLog(tmp_path / "execution.jsonl")
    dispatcher = _dispatcher(FakeTransport(), execution_log=log)

    records = await asyncio.gather(
        *(dispatcher.dispatch("research", {"index": index}, task_id=f"t-{index}") for index in range(20))
    )

    assert all(record.success for record in records)
    assert threading.get_ident() not in log.writer_threads
    lines = log.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 20
    assert sorted(json.loads(line)["task_id"] for line in lines) == sorted(f"t-{index}" for index in range(20))
