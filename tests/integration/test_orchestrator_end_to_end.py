"""Full stack: FastAPI app -> planner -> dispatcher -> aiohttp transport -> in-process workers."""
from __future__ import annotations

from typing import Any

import httpx
import pytest
from aiohttp import test_utils, web

from conductor.api.main import create_app
from conductor.cache.settings import PlanCacheSettings
from conductor.cache.snapshot_store import MetricsSnapshotStore
from conductor.config.settings import Settings
from conductor.controller.service import build_orchestrator_service
from conductor.workers.registry import WorkerHandle, WorkerStatus
from fakes import launch_workflow

FAILING = "draft-team"


def _worker_fleet(seen: list[dict[str, Any]], state: dict[str, bool]) -> web.Application:
    async def execute(request: web.Request) -> web.Response:
        capability = request.match_info["capability"]
        body = await request.json()
        seen.append({"capability": capability, "body": body, "version": request.headers.get("X-Orchestrator-Version")})
        if capability == FAILING and state["fail"]:
            return web.json_response({"error": "out of capacity"}, status=503)
        label = body.get("step_id", body["task_id"])
        return web.json_response({"success": True, "result": f"{label} done"})

    async def health(request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "team": request.match_info["capability"]})

    app = web.Application()
    app.router.add_post("/{capability}/execute", execute)
    app.router.add_get("/{capability}/health", health)
    return app


async def _stack(seen: list[dict[str, Any]]):
    state = {"fail": False}
    server = test_utils.TestServer(_worker_fleet(seen, state))
    await server.start_server()
    base = str(server.make_url("/")).rstrip("/")

    definition = launch_workflow()
    workers = [
        WorkerHandle(worker_id=f"{capability}-agent", capability=capability, endpoint=f"{base}/{capability}")
        for capability in definition.capabilities
    ]
    service = build_orchestrator_service(
        Settings(HEALTH_MONITOR_ENABLED=False, ORCHESTRATOR_VERSION="4.0.0"),
        cache_settings=PlanCacheSettings(),
        workflows=[definition],
        workers=workers,
        snapshot_store=MetricsSnapshotStore(enabled=False),
    )
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_app(service=service)), base_url="http://conductor")
    return state, server, service, client


@pytest.mark.asyncio
async def test_workflow_runs_against_live_workers() -> None:
    seen: list[dict[str, Any]] = []
    state, server, service, client = await _stack(seen)
    try:
        response = await client.post("/workflows/launch/execute", json={"parameters": {"region": "eu"}})
        body = response.json()

        assert response.status_code == 200
        assert body["state"] == "completed"
        assert body["steps"][3]["result"] == {"success": True, "result": "qa done"}
        assert [item["capability"] for item in seen][0] == "research-team"
        assert seen[-1]["capability"] == "qa-team"
        assert {item["version"] for item in seen} == {"4.0.0"}
        assert all(item["body"]["parameters"] == {"region": "eu"} for item in seen)

        state["fail"] = True
        failed = (await client.post("/workflows/launch/execute", json={})).json()
        assert failed["state"] == "failed"
        assert failed["partial"] is True
        draft = next(item for item in failed["steps"] if item["step_id"] == "draft")
        assert draft["error_kind"] == "transport"
        assert service.workers.get("draft-team-agent").status == WorkerStatus.DEGRADED

        snapshot = await service.health.probe_all()
        assert snapshot.healthy is True
        assert service.workers.get("draft-team-agent").status == WorkerStatus.ACTIVE
    finally:
        await client.aclose()
        await service.close()
        await server.close()


@pytest.mark.asyncio
async def test_single_task_endpoint_against_live_worker() -> None:
    seen: list[dict[str, Any]] = []
    _, server, service, client = await _stack(seen)
    try:
        response = await client.post(
            "/tasks/research-team/execute",
            json={"task": {"category": "business", "type": "competitive_analysis"}, "timeout_ms": 2000},
        )

        assert response.status_code == 200
        assert seen[0]["body"]["task"]["task_type"] == "competitive_analysis"
        assert seen[0]["body"]["capability"] == "research-team"
    finally:
        await client.aclose()
        await service.close()
        await server.close()
