"""Rolling statistics for dispatch latency and success rate."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

EMA_WEIGHT = 0.1


class RollingStat:
    """Exponential moving average with a fixed per-sample weight.

    The first sample seeds the average; before that ``value()`` returns the
    configured initial value.
    """

    def __init__(self, weight: float = EMA_WEIGHT, initial: float = 0.0) -> None:
        if not 0.0 < weight <= 1.0:
            raise ValueError("weight must be in (0, 1]")
        self.weight = float(weight)
        self._initial = float(initial)
        self._value: float | None = None
        self.samples = 0

    def update(self, sample: float) -> float:
        sample = float(sample)
        if self._value is None:
            self._value = sample
        else:
            self._value = self._value * (1.0 - self.weight) + sample * self.weight
        self.samples += 1
        return self._value

    def value(self) -> float:
        return self._initial if self._value is None else self._value

    def reset(self) -> None:
        self._value = None
        self.samples = 0


@dataclass
class DispatchStats:
    """Counters for one worker or for the whole dispatcher."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    latency_ms: RollingStat = field(default_factory=RollingStat)
    success_rate: RollingStat = field(default_factory=lambda: RollingStat(initial=1.0))

    def record(self, duration_ms: float, success: bool) -> None:
        self.total += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1
        self.latency_ms.update(duration_ms)
        self.success_rate.update(1.0 if success else 0.0)

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "avg_latency_ms": round(self.latency_ms.value(), 3),
            "success_rate": round(self.success_rate.value(), 4),
            "error_rate": round(1.0 - self.success_rate.value(), 4),
        }
