"""TTL-bounded in-process store for published execution plans."""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from conductor.cache.metrics import PlanCacheMetrics

logger = logging.getLogger(__name__)


@dataclass
class PlanCacheEntry:
    workflow_id: str
    plan: Any
    cached_at: float
    access_count: int = 0

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.cached_at)


class PlanCache:
    """Owned, injectable plan cache.

    Entries are treated as immutable once stored. Reads past the TTL drop the
    entry and count as a miss.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        metrics: PlanCacheMetrics | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self.metrics = metrics if metrics is not None else PlanCacheMetrics()
        self._clock = clock
        self._entries: OrderedDict[str, PlanCacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def now(self) -> float:
        return self._clock()

    def _expired(self, entry: PlanCacheEntry, now: float) -> bool:
        return entry.age_seconds(now) >= self.ttl_seconds

    def get(self, key: str, workflow_id: str = "") -> PlanCacheEntry | None:
        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None and self._expired(entry, now):
            del self._entries[key]
            self.metrics.record_expiration()
            entry = None

        if entry is None:
            self.metrics.record_miss(workflow_id)
            return None

        entry.access_count += 1
        self.metrics.record_hit(entry.workflow_id)
        return entry

    def put(self, key: str, workflow_id: str, plan: Any) -> PlanCacheEntry:
        if key in self._entries:
            del self._entries[key]
        entry = PlanCacheEntry(workflow_id=workflow_id, plan=plan, cached_at=self._clock())
        self._entries[key] = entry
        self.metrics.record_store()

        while len(self._entries) > self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self.metrics.record_eviction()
            logger.debug("Plan cache full; evicted %s", evicted_key)
        return entry

    def invalidate(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self.metrics.record_invalidation()
        return True

    def invalidate_workflow(self, workflow_id: str) -> int:
        keys = [key for key, entry in self._entries.items() if entry.workflow_id == workflow_id]
        for key in keys:
            del self._entries[key]
        if keys:
            self.metrics.record_invalidation(len(keys))
        return len(keys)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        if count:
            self.metrics.record_invalidation(count)
        return count

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self.metrics.record_expiration(len(expired))
            logger.info("Plan cache sweep removed %d expired plan(s)", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "total_accesses": sum(entry.access_count for entry in self._entries.values()),
            **self.metrics.summary(),
        }
