from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conductor.api.main import create_app
from conductor.cache.settings import PlanCacheSettings
from conductor.config.settings import Settings
from conductor.controller.service import build_orchestrator_service
from conductor.workers.registry import ResourceProfile
from fakes import FakeTransport

CATALOG_DIR = Path(__file__).resolve().parents[2] / "catalog"


def _catalog_settings(**overrides) -> Settings:
    return Settings(
        WORKFLOW_CATALOG_PATH=str(CATALOG_DIR / "workflows.yaml"),
        WORKER_CATALOG_PATH=str(CATALOG_DIR / "workers.yaml"),
        HEALTH_MONITOR_ENABLED=False,
        **overrides,
    )


def test_service_loads_shipped_catalogs() -> None:
    service = build_orchestrator_service(
        _catalog_settings(),
        transport=FakeTransport(),
        cache_settings=PlanCacheSettings(ttl_seconds=30, max_entries=5),
    )

    assert len(service.workflows) >= 4
    assert "research-team" in service.workers.capabilities()
    assert service.planner.profile_for("research-team") != ResourceProfile()
    assert service.plan_cache.ttl_seconds == 30
    assert service.plan_cache.max_entries == 5
    assert service.execution_log is None
    assert service.snapshot_store.enabled is False


def test_explicit_profiles_override_catalog_profiles() -> None:
    custom = ResourceProfile(cpu_cores=16)
    service = build_orchestrator_service(
        _catalog_settings(),
        transport=FakeTransport(),
        cache_settings=PlanCacheSettings(),
        resource_profiles={"research-team": custom},
    )

    assert service.planner.profile_for("research-team") == custom


def test_execution_log_is_created_when_configured(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "execution.jsonl"
    service = build_orchestrator_service(
        _catalog_settings(EXECUTION_LOG_PATH=str(log_path)),
        transport=FakeTransport(),
        cache_settings=PlanCacheSettings(),
    )

    assert service.execution_log is not None
    assert service.dispatcher.execution_log is service.execution_log
    assert log_path.parent.exists()


@pytest.mark.asyncio
async def test_close_stops_monitor_and_transport() -> None:
    transport = FakeTransport()
    service = build_orchestrator_service(
        _catalog_settings(),
        transport=transport,
        cache_settings=PlanCacheSettings(),
        workflows=[],
        workers=[],
    )
    service.health.start()

    await service.close()

    assert transport.closed is True
    assert service.health.running is False


def test_lifespan_builds_and_closes_owned_service(monkeypatch) -> None:
    monkeypatch.delenv("SNAPSHOT_ENABLED", raising=False)
    app = create_app(settings=_catalog_settings())

    with TestClient(app) as client:
        listing = client.get("/workflows").json()
        assert listing["total"] >= 4
        assert app.state.service is not None

    assert app.state.service is None
