from __future__ import annotations

from conductor.errors import ValidationError
from conductor.workflow.dependency_graph import DependencyGraph


def group_into_waves(graph: DependencyGraph) -> list[tuple[str, ...]]:
    """Partition steps into waves of mutually independent work.

    Wave k holds every unplaced step whose dependencies all sit in waves
    0..k-1. Steps keep declaration order inside a wave. Layering stops after
    len(nodes) + 1 rounds; anything still unplaced is a graph defect.
    """
    placed: set[str] = set()
    waves: list[tuple[str, ...]] = []
    remaining = list(graph.nodes)

    for _ in range(len(graph.nodes) + 1):
        if not remaining:
            break
        wave = tuple(
            node
            for node in remaining
            if all(dep in placed for dep in graph.dependencies[node])
        )
        if not wave:
            break
        waves.append(wave)
        placed.update(wave)
        remaining = [node for node in remaining if node not in placed]

    if remaining:
        raise ValidationError(
            "Steps could not be scheduled; check for cycles or unknown dependencies: "
            + ", ".join(remaining),
            details={"step_ids": remaining},
        )
    return waves
