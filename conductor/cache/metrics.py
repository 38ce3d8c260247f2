"""In-memory plan cache metrics with per-workflow breakdowns."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _normalize_workflow(workflow_id: str) -> str:
    normalized = str(workflow_id).strip()
    return normalized or "unknown"


@dataclass
class PlanCacheMetrics:
    hits: int = 0
    misses: int = 0
    stores: int = 0
    expirations: int = 0
    evictions: int = 0
    invalidations: int = 0

    workflow_hits: dict[str, int] = field(default_factory=dict)
    workflow_misses: dict[str, int] = field(default_factory=dict)

    def record_hit(self, workflow_id: str) -> None:
        name = _normalize_workflow(workflow_id)
        self.hits += 1
        self.workflow_hits[name] = self.workflow_hits.get(name, 0) + 1

    def record_miss(self, workflow_id: str) -> None:
        name = _normalize_workflow(workflow_id)
        self.misses += 1
        self.workflow_misses[name] = self.workflow_misses.get(name, 0) + 1

    def record_store(self) -> None:
        self.stores += 1

    def record_expiration(self, count: int = 1) -> None:
        self.expirations += count

    def record_eviction(self, count: int = 1) -> None:
        self.evictions += count

    def record_invalidation(self, count: int = 1) -> None:
        self.invalidations += count

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def workflow_hit_rate(self, workflow_id: str) -> float:
        name = _normalize_workflow(workflow_id)
        hits = self.workflow_hits.get(name, 0)
        total = hits + self.workflow_misses.get(name, 0)
        if total == 0:
            return 0.0
        return hits / total

    def summary(self) -> dict[str, Any]:
        workflows = sorted(set(self.workflow_hits) | set(self.workflow_misses))
        overall_rate = self.hit_rate()

        return {
            "total_requests": self.hits + self.misses,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": overall_rate,
            "hit_rate_pct": f"{overall_rate:.2%}",
            "stores": self.stores,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "workflows": {
                workflow_id: {
                    "hits": self.workflow_hits.get(workflow_id, 0),
                    "misses": self.workflow_misses.get(workflow_id, 0),
                    "hit_rate": self.workflow_hit_rate(workflow_id),
                }
                for workflow_id in workflows
            },
        }

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.stores = 0
        self.expirations = 0
        self.evictions = 0
        self.invalidations = 0
        self.workflow_hits.clear()
        self.workflow_misses.clear()
