from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from conductor.errors import NotFoundError, UnavailableError, ValidationError
from conductor.workers.stats import DispatchStats

logger = logging.getLogger(__name__)


class WorkerStatus(str, Enum):
    ACTIVE = "active"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


class ResourceProfile(BaseModel):
    """Per-dispatch resource weight of one capability."""

    model_config = ConfigDict(frozen=True)

    cpu_cores: float = Field(default=1.0, ge=0)
    memory_gb: float = Field(default=2.0, ge=0)
    network_mbps: float = Field(default=5.0, ge=0)
    storage_gb: float = Field(default=1.0, ge=0)
    cost: float = Field(default=3.0, ge=0)


DEFAULT_RESOURCE_PROFILE = ResourceProfile()


@dataclass
class WorkerHandle:
    worker_id: str
    capability: str
    endpoint: str
    category: str = "general"
    status: WorkerStatus = WorkerStatus.ACTIVE
    last_probe_at: datetime | None = None
    performance: DispatchStats = field(default_factory=DispatchStats)

    @property
    def is_active(self) -> bool:
        return self.status == WorkerStatus.ACTIVE

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.worker_id,
            "capability": self.capability,
            "endpoint": self.endpoint,
            "category": self.category,
            "status": self.status.value,
            "last_probe_at": self.last_probe_at.isoformat() if self.last_probe_at else None,
            "performance": self.performance.summary(),
        }


class RegistryStore:
    """Capability -> worker handles, owned by the orchestrator service.

    Only the health loop and dispatch outcomes change a handle's status.
    """

    def __init__(self, handles: list[WorkerHandle] | None = None) -> None:
        self._handles: dict[str, WorkerHandle] = {}
        self._by_capability: dict[str, list[str]] = {}
        for handle in handles or []:
            self.register(handle)

    def __len__(self) -> int:
        return len(self._handles)

    def register(self, handle: WorkerHandle) -> None:
        if handle.worker_id in self._handles:
            raise ValidationError(
                f"Worker already registered: {handle.worker_id}",
                details={"worker_id": handle.worker_id},
            )
        self._handles[handle.worker_id] = handle
        self._by_capability.setdefault(handle.capability, []).append(handle.worker_id)

    def get(self, worker_id: str) -> WorkerHandle | None:
        return self._handles.get(worker_id)

    def handles(self) -> list[WorkerHandle]:
        return [self._handles[worker_id] for worker_id in sorted(self._handles)]

    def handles_for(self, capability: str) -> list[WorkerHandle]:
        return [self._handles[worker_id] for worker_id in self._by_capability.get(capability, [])]

    def capabilities(self) -> list[str]:
        return sorted(self._by_capability)

    def select(self, capability: str) -> WorkerHandle:
        candidates = self.handles_for(capability)
        if not candidates:
            raise NotFoundError(
                f"Unknown capability: {capability}",
                details={"capability": capability},
            )

        active = [handle for handle in candidates if handle.is_active]
        if not active:
            raise UnavailableError(
                f"No active worker for capability: {capability}",
                details={
                    "capability": capability,
                    "statuses": {handle.worker_id: handle.status.value for handle in candidates},
                },
            )
        return min(active, key=lambda handle: (handle.performance.latency_ms.value(), handle.worker_id))

    def mark(
        self,
        worker_id: str,
        status: WorkerStatus,
        probed_at: datetime | None = None,
    ) -> WorkerHandle:
        handle = self._handles.get(worker_id)
        if handle is None:
            raise NotFoundError(f"Worker not found: {worker_id}", details={"worker_id": worker_id})

        if handle.status != status:
            log = logger.info if status == WorkerStatus.ACTIVE else logger.warning
            log("Worker %s (%s): %s -> %s", worker_id, handle.capability, handle.status.value, status.value)
        handle.status = status
        if probed_at is not None:
            handle.last_probe_at = probed_at
        return handle

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in WorkerStatus}
        for handle in self._handles.values():
            counts[handle.status.value] += 1
        counts["total"] = len(self._handles)
        return counts

    def snapshot(self) -> list[dict[str, Any]]:
        return [handle.as_dict() for handle in self.handles()]


class WorkerCatalogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    capability: str = Field(..., min_length=1, validation_alias=AliasChoices("capability", "team"))
    endpoint: str = Field(..., min_length=1, validation_alias=AliasChoices("endpoint", "url"))
    category: str = "general"
    resources: ResourceProfile | None = None


def load_worker_catalog(
    catalog_path: str | Path,
) -> tuple[list[WorkerHandle], dict[str, ResourceProfile]]:
    """Read worker handles and per-capability resource profiles from YAML."""
    path = Path(catalog_path)
    if not path.exists():
        logger.warning("Worker catalog not found at %s", path)
        return [], {}

    content = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    entries = content.get("workers", []) if isinstance(content, dict) else []
    if not isinstance(entries, list):
        raise ValidationError(f"'workers' must be a list in {path}")

    handles: list[WorkerHandle] = []
    profiles: dict[str, ResourceProfile] = {}
    for index, raw in enumerate(entries):
        try:
            entry = WorkerCatalogEntry.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid worker entry #{index} in {path}",
                details={"errors": json.loads(exc.json(include_url=False))},
            ) from exc

        handles.append(
            WorkerHandle(
                worker_id=entry.id,
                capability=entry.capability,
                endpoint=entry.endpoint.rstrip("/"),
                category=entry.category,
            )
        )
        if entry.resources is not None:
            profiles.setdefault(entry.capability, entry.resources)
    return handles, profiles


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
