from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from conductor import __version__
from conductor.config.logging import configure_logging
from conductor.config.settings import Settings
from conductor.controller.service import OrchestratorService, build_orchestrator_service
from conductor.errors import OrchestrationError, ValidationError
from conductor.observability.execution_log import ExecutionEventType
from conductor.workflow.definitions import StepPriority
from conductor.workflow.tasks import parse_task, task_wire_payload

logger = logging.getLogger(__name__)

router = APIRouter()


class TaskExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    task: dict[str, Any]
    parameters: dict[str, Any] = Field(default_factory=dict)
    priority: StepPriority = StepPriority.MEDIUM
    timeout_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeoutMs", "timeout"),
    )


class PlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    parameters: dict[str, Any] = Field(default_factory=dict)
    constraints: dict[str, Any] = Field(default_factory=dict)
    optimization_level: str = Field(
        default="standard",
        validation_alias=AliasChoices("optimization_level", "optimizationLevel"),
    )


class WorkflowExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    parameters: dict[str, Any] = Field(default_factory=dict)
    mode: str = "parallel"
    timeout_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeoutMs", "timeout"),
    )


class AnalyzeRequest(BaseModel):
    steps: list[dict[str, Any]] = Field(..., min_length=1)


class CacheClearRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    workflow_id: str | None = Field(default=None, validation_alias=AliasChoices("workflow_id", "workflowId"))


class PredictRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    workflow_id: str = Field(..., min_length=1, validation_alias=AliasChoices("workflow_id", "workflowId"))
    parameters: dict[str, Any] = Field(default_factory=dict)
    historical_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("historical_data", "historicalData"),
    )


class WorkflowOptimizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    current_execution_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("current_execution_data", "currentExecutionData"),
    )
    optimization_goals: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("optimization_goals", "optimizationGoals", "goals"),
    )


class OptimizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    kind: str = Field(default="all", validation_alias=AliasChoices("kind", "type"))


def get_service(request: Request) -> OrchestratorService:
    return request.app.state.service


@router.get("/health")
async def health(service: OrchestratorService = Depends(get_service)) -> dict[str, Any]:
    return {
        "success": True,
        "service": service.settings.APP_NAME,
        "version": service.settings.ORCHESTRATOR_VERSION,
        **service.health.snapshot.as_dict(),
    }


@router.get("/capabilities")
async def capabilities(service: OrchestratorService = Depends(get_service)) -> dict[str, Any]:
    workers = service.workers.snapshot()
    return {
        "success": True,
        "total": len(workers),
        "capabilities": service.workers.capabilities(),
        "workers": workers,
    }


@router.get("/workflows")
async def list_workflows(service: OrchestratorService = Depends(get_service)) -> dict[str, Any]:
    workflows = [definition.summary() for definition in service.workflows.list_workflows()]
    return {"success": True, "total": len(workflows), "workflows": workflows}


@router.get("/workflows/{workflow_id}")
async def describe_workflow(workflow_id: str, service: OrchestratorService = Depends(get_service)) -> dict[str, Any]:
    return {"success": True, "workflow": service.workflows.describe(workflow_id)}


@router.post("/tasks/{capability}/execute", response_model=None)
async def execute_task(
    capability: str,
    body: TaskExecuteRequest,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any] | JSONResponse:
    task = parse_task(body.task)
    record = await service.dispatcher.dispatch(
        capability,
        {
            "task": task_wire_payload(task),
            "parameters": body.parameters,
            "priority": body.priority.value,
        },
        timeout_ms=body.timeout_ms,
    )
    content: dict[str, Any] = {
        "success": record.success,
        "task_id": record.task_id,
        "capability": record.capability,
        "worker_id": record.worker_id,
        "duration_ms": record.duration_ms,
        "timestamp": record.started_at.isoformat(),
    }
    if record.success:
        content["result"] = record.payload
        return content

    content["error"] = {"kind": record.error_kind, "message": record.error_message}
    return JSONResponse(status_code=503, content=jsonable_encoder(content))


@router.post("/workflows/{workflow_id}/plan")
async def plan_workflow(
    workflow_id: str,
    body: PlanRequest | None = None,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    body = body or PlanRequest()
    plan = service.planner.plan(
        workflow_id,
        body.parameters,
        body.constraints,
        body.optimization_level,
    )
    return {"success": True, **plan.model_dump(mode="json")}


@router.post("/workflows/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    body: WorkflowExecuteRequest | None = None,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    body = body or WorkflowExecuteRequest()
    result = await service.executor.run(
        workflow_id,
        body.parameters,
        mode=body.mode,
        timeout_ms=body.timeout_ms,
    )
    return jsonable_encoder(result.as_dict())


@router.post("/workflows/{workflow_id}/optimize")
async def optimize_workflow(
    workflow_id: str,
    body: WorkflowOptimizeRequest | None = None,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    body = body or WorkflowOptimizeRequest()
    optimization = service.planner.optimize_workflow(
        workflow_id,
        body.current_execution_data,
        body.optimization_goals,
    )
    return {"success": True, **optimization.model_dump(mode="json")}


@router.post("/performance/predict")
async def predict_performance(
    body: PredictRequest,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    prediction = service.planner.predict_performance(body.workflow_id, body.parameters, body.historical_data)
    return {"success": True, **prediction.model_dump(mode="json")}


@router.post("/dependencies/analyze")
async def analyze_dependencies(
    body: AnalyzeRequest,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    return {"success": True, **service.planner.analyze_steps(body.steps)}


@router.get("/metrics")
async def metrics(service: OrchestratorService = Depends(get_service)) -> dict[str, Any]:
    return {"success": True, **service.metrics()}


@router.get("/logs")
async def execution_logs(
    event_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    if service.execution_log is None:
        return {"success": True, "enabled": False, "count": 0, "events": []}
    try:
        selected = ExecutionEventType(event_type) if event_type else None
    except ValueError as exc:
        raise ValidationError(
            f"Unknown event type: {event_type}",
            details={"accepted": [item.value for item in ExecutionEventType]},
        ) from exc
    events = await asyncio.to_thread(service.execution_log.read_events, selected)
    recent = [asdict(event) for event in events[-limit:]]
    return {"success": True, "enabled": True, "count": len(recent), "events": recent}


@router.post("/cache/clear")
async def clear_cache(
    body: CacheClearRequest | None = None,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    body = body or CacheClearRequest()
    if body.workflow_id:
        removed = service.plan_cache.invalidate_workflow(body.workflow_id)
    else:
        removed = service.plan_cache.clear()
    return {"success": True, "workflow_id": body.workflow_id, "removed": removed}


@router.post("/optimize")
async def optimize(
    body: OptimizeRequest | None = None,
    service: OrchestratorService = Depends(get_service),
) -> dict[str, Any]:
    body = body or OptimizeRequest()
    return {"success": True, **service.health.trigger_optimization(body.kind)}


async def _orchestration_error_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=jsonable_encoder({"success": False, "error": exc.as_dict()}),
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            {
                "success": False,
                "error": {
                    "kind": "validation",
                    "message": "Request validation failed",
                    "details": {"errors": exc.errors()},
                },
            }
        ),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": {"kind": "internal", "message": "Internal server error"}},
    )


def create_app(
    service: OrchestratorService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the API. An injected service is used as-is and never started or closed here."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.service is None
        if owned:
            resolved = settings or Settings()
            configure_logging(resolved.LOG_LEVEL)
            app.state.service = build_orchestrator_service(resolved)
            if resolved.HEALTH_MONITOR_ENABLED:
                app.state.service.health.start()
        try:
            yield
        finally:
            if owned:
                await app.state.service.close()
                app.state.service = None

    app = FastAPI(title="Conductor Orchestrator", version=__version__, lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(OrchestrationError, _orchestration_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    settings = Settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        "conductor.api.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
