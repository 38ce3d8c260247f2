from __future__ import annotations

import heapq
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from conductor.errors import CyclicDependencyError
from conductor.workflow.dependency_graph import DependencyGraph


@dataclass(frozen=True)
class CriticalPathResult:
    path: tuple[str, ...]
    total_duration_ms: int
    topological_order: tuple[str, ...]
    earliest_start_ms: Mapping[str, int]
    earliest_finish_ms: Mapping[str, int]
    slack_ms: Mapping[str, int]

    def as_dict(self) -> dict[str, Any]:
        return {
            "step_ids": list(self.path),
            "total_duration_ms": self.total_duration_ms,
            "topological_order": list(self.topological_order),
            "earliest_start_ms": dict(self.earliest_start_ms),
            "earliest_finish_ms": dict(self.earliest_finish_ms),
            "slack_ms": dict(self.slack_ms),
        }


def _kahn(graph: DependencyGraph) -> Iterator[str]:
    # Ready steps leave in declaration order so results are reproducible.
    position = {node: index for index, node in enumerate(graph.nodes)}
    indegree = {node: len(graph.dependencies[node]) for node in graph.nodes}
    ready = [(position[node], node) for node in graph.nodes if indegree[node] == 0]
    heapq.heapify(ready)
    emitted = 0

    while ready:
        _, node = heapq.heappop(ready)
        emitted += 1
        yield node
        for child in graph.dependents[node]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (position[child], child))

    if emitted != len(graph.nodes):
        raise CyclicDependencyError([node for node in graph.nodes if indegree[node] > 0])


def topological_order(graph: DependencyGraph) -> list[str]:
    return list(_kahn(graph))


def analyze_critical_path(graph: DependencyGraph) -> CriticalPathResult:
    """Longest duration-weighted chain through the graph.

    Every root starts at t=0. ``earliest_start_ms`` is the propagated distance;
    the step with the largest earliest finish terminates the critical path.
    """
    durations = graph.durations
    distance = {node: 0 for node in graph.nodes}
    chosen_predecessor: dict[str, str | None] = {node: None for node in graph.nodes}
    order: list[str] = []

    for node in _kahn(graph):
        order.append(node)
        reach = distance[node] + durations[node]
        for child in graph.dependents[node]:
            if reach > distance[child]:
                distance[child] = reach
                chosen_predecessor[child] = node

    finish = {node: distance[node] + durations[node] for node in order}
    terminal = order[0]
    for node in order[1:]:
        if finish[node] > finish[terminal]:
            terminal = node
    total = finish[terminal]

    path: list[str] = []
    cursor: str | None = terminal
    while cursor is not None:
        path.append(cursor)
        cursor = chosen_predecessor[cursor]
    path.reverse()

    latest_start: dict[str, int] = {}
    for node in reversed(order):
        children = graph.dependents[node]
        latest_finish = min((latest_start[child] for child in children), default=total)
        latest_start[node] = latest_finish - durations[node]

    return CriticalPathResult(
        path=tuple(path),
        total_duration_ms=total,
        topological_order=tuple(order),
        earliest_start_ms={node: distance[node] for node in order},
        earliest_finish_ms=finish,
        slack_ms={node: latest_start[node] - distance[node] for node in order},
    )
