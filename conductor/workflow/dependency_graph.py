from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from conductor.errors import CyclicDependencyError, DanglingDependencyError, ValidationError
from conductor.workflow.definitions import StepDefinition


@dataclass(frozen=True)
class DependencyEdge:
    from_step: str
    to_step: str


@dataclass(frozen=True)
class DependencyGraph:
    """Directed step graph; edge a -> b exists iff b depends on a.

    ``nodes`` keeps declaration order, which every analyzer uses to break ties.
    """

    nodes: tuple[str, ...]
    edges: tuple[DependencyEdge, ...]
    dependencies: Mapping[str, tuple[str, ...]]
    dependents: Mapping[str, tuple[str, ...]]
    durations: Mapping[str, int]

    def roots(self) -> tuple[str, ...]:
        return tuple(node for node in self.nodes if not self.dependencies[node])

    def as_dict(self) -> dict[str, Any]:
        return {
            "nodes": list(self.nodes),
            "edges": [{"from": edge.from_step, "to": edge.to_step} for edge in self.edges],
            "dependencies": {node: list(self.dependencies[node]) for node in self.nodes},
            "dependents": {node: list(self.dependents[node]) for node in self.nodes},
        }


def _assemble(steps: Sequence[StepDefinition]) -> DependencyGraph:
    if not steps:
        raise ValidationError("A workflow needs at least one step")

    nodes: list[str] = []
    duplicates: list[str] = []
    for step in steps:
        if step.id in nodes:
            duplicates.append(step.id)
        else:
            nodes.append(step.id)
    if duplicates:
        raise ValidationError(
            f"Duplicate step ids: {', '.join(sorted(set(duplicates)))}",
            details={"step_ids": sorted(set(duplicates))},
        )

    node_set = set(nodes)
    missing: dict[str, list[str]] = {}
    for step in steps:
        unknown = [dep for dep in step.depends_on if dep not in node_set]
        if unknown:
            missing[step.id] = unknown
    if missing:
        raise DanglingDependencyError(missing)

    dependents: dict[str, list[str]] = {node: [] for node in nodes}
    edges: list[DependencyEdge] = []
    for step in steps:
        for dep in step.depends_on:
            dependents[dep].append(step.id)
            edges.append(DependencyEdge(from_step=dep, to_step=step.id))

    return DependencyGraph(
        nodes=tuple(nodes),
        edges=tuple(edges),
        dependencies={step.id: tuple(step.depends_on) for step in steps},
        dependents={node: tuple(children) for node, children in dependents.items()},
        durations={step.id: step.estimated_duration_ms for step in steps},
    )


def find_cycle_participants(graph: DependencyGraph) -> list[str]:
    """Depth-first search with an explicit recursion stack.

    A step reached again while still on the stack closes a cycle; every step
    on the stack from that point down is reported.
    """
    unvisited, on_stack, done = 0, 1, 2
    state = {node: unvisited for node in graph.nodes}
    participants: set[str] = set()

    for root in graph.nodes:
        if state[root] != unvisited:
            continue
        state[root] = on_stack
        path = [root]
        frames = [iter(graph.dependents[root])]

        while frames:
            advanced = False
            for child in frames[-1]:
                if state[child] == on_stack:
                    participants.update(path[path.index(child):])
                elif state[child] == unvisited:
                    state[child] = on_stack
                    path.append(child)
                    frames.append(iter(graph.dependents[child]))
                    advanced = True
                    break
            if not advanced:
                state[path.pop()] = done
                frames.pop()

    return [node for node in graph.nodes if node in participants]


def build_dependency_graph(steps: Sequence[StepDefinition]) -> DependencyGraph:
    """Build and validate the graph for one planning request.

    Raises DanglingDependencyError for unknown references and
    CyclicDependencyError listing every step found on a cycle.
    """
    graph = _assemble(steps)
    cyclic = find_cycle_participants(graph)
    if cyclic:
        raise CyclicDependencyError(cyclic)
    return graph
