"""Plan cache and metric snapshot settings."""
from __future__ import annotations

import os
from dataclasses import dataclass


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(value: str | None, default: bool = True) -> bool:
    """Parse common boolean env forms with deterministic fallback."""
    if value is None:
        return default

    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def _parse_positive_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class PlanCacheSettings:
    ttl_seconds: int = 300
    max_entries: int = 1000
    snapshot_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    snapshot_ttl_seconds: int = 300


def load_plan_cache_settings() -> PlanCacheSettings:
    return PlanCacheSettings(
        ttl_seconds=_parse_positive_int(os.getenv("PLAN_CACHE_TTL_SECONDS"), default=300),
        max_entries=_parse_positive_int(os.getenv("PLAN_CACHE_MAX_ENTRIES"), default=1000),
        snapshot_enabled=parse_bool(os.getenv("SNAPSHOT_ENABLED"), default=False),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        snapshot_ttl_seconds=_parse_positive_int(os.getenv("SNAPSHOT_TTL_SECONDS"), default=300),
    )
