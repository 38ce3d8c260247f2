"""Redis-backed metric snapshot store with fail-safe behavior."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable

import redis

from conductor.cache.settings import PlanCacheSettings, load_plan_cache_settings

logger = logging.getLogger(__name__)

SNAPSHOT_KEY_PREFIX = "conductor:snapshot"


class MetricsSnapshotStore:
    """Periodic snapshots of orchestrator health and metrics.

    Every operation degrades to a no-op when Redis is disabled or unreachable;
    snapshotting must never break the optimization loop.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        enabled: bool = True,
        default_ttl: int = 300,
        redis_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.enabled = bool(enabled)
        self.default_ttl = int(default_ttl)
        self._connection_failed = False
        self.client: Any | None = None

        if not self.enabled:
            return

        factory = redis_factory if redis_factory is not None else redis.from_url
        try:
            self.client = factory(
                url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            self.client.ping()
        except Exception as exc:
            logger.warning("Metric snapshot store unavailable: %s", exc)
            self.client = None
            self._connection_failed = True

    @staticmethod
    def key_for(name: str) -> str:
        return f"{SNAPSHOT_KEY_PREFIX}:{name}"

    def _usable(self) -> bool:
        return self.enabled and not self._connection_failed and self.client is not None

    def write(self, name: str, payload: dict[str, Any], ttl: int | None = None) -> bool:
        if not self._usable():
            return False
        try:
            serialized = json.dumps(payload, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            return False
        try:
            ttl_seconds = int(ttl) if ttl is not None else self.default_ttl
            self.client.setex(self.key_for(name), ttl_seconds, serialized)
            return True
        except Exception as exc:
            logger.warning("Failed to write snapshot %s: %s", name, exc)
            return False

    def read(self, name: str) -> dict[str, Any] | None:
        if not self._usable():
            return None
        try:
            raw = self.client.get(self.key_for(name))
        except Exception:
            return None
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    def health_check(self) -> dict[str, Any]:
        if not self.enabled:
            return {"enabled": False, "connected": False, "message": "Snapshots disabled"}

        if self._connection_failed or self.client is None:
            return {"enabled": True, "connected": False, "message": "Connection unavailable"}

        try:
            self.client.ping()
            return {"enabled": True, "connected": True, "message": "Connected"}
        except Exception:
            return {"enabled": True, "connected": False, "message": "Connection unavailable"}


def create_snapshot_store(settings: PlanCacheSettings | None = None) -> MetricsSnapshotStore:
    resolved = settings if settings is not None else load_plan_cache_settings()
    return MetricsSnapshotStore(
        url=resolved.redis_url,
        enabled=resolved.snapshot_enabled,
        default_ttl=resolved.snapshot_ttl_seconds,
    )
