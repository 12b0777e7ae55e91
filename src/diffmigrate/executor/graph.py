"""
Dependency levels for a set of migration tasks.

Entities are grouped into levels by topological layering: a level holds
every entity whose dependencies (restricted to the task set) sit in
earlier levels. Entities in one level may run concurrently; levels run
in order.

A cycle among the tasks does not abort scheduling. When no entity is
free of unresolved dependencies, every remaining cycle member is
placed in a single-entity level of its own, in task order, and layering
of the entities that depend on them continues afterwards. The cycle members
are reported on the graph so callers can surface the anomaly.

Example:
    >>> graph = build_dependency_graph(
    ...     {"offices": [], "doctors": ["offices"], "patients": ["doctors"]}
    ... )
    >>> graph.execution_order
    [['offices'], ['doctors'], ['patients']]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyGraph:
    """
    Scheduling plan for a task set.

    Attributes:
        entities: Entity types in input order.
        dependencies: Dependencies of each entity restricted to the task set.
        execution_order: Levels of entities, run in order.
        cycle_members: Entities on a dependency cycle (empty for a DAG).
    """

    entities: list[str]
    dependencies: dict[str, list[str]]
    execution_order: list[list[str]]
    cycle_members: list[str] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return bool(self.cycle_members)

    def level_of(self, entity_type: str) -> int:
        """Index of the level holding `entity_type`."""
        for index, level in enumerate(self.execution_order):
            if entity_type in level:
                return index
        raise KeyError(entity_type)


def _on_cycle(entity: str, dependencies: Mapping[str, list[str]]) -> bool:
    stack = list(dependencies.get(entity, []))
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == entity:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(dependencies.get(current, []))
    return False


def build_dependency_graph(tasks: Mapping[str, Iterable[str]]) -> DependencyGraph:
    """
    Compute the execution levels of a task set.

    Args:
        tasks: Entity type -> its dependencies, in scheduling order

    Returns:
        DependencyGraph with levels and any cycle members
    """
    entities = list(tasks)
    selected = set(entities)
    dependencies = {
        entity: [dep for dep in dict.fromkeys(deps) if dep in selected and dep != entity]
        for entity, deps in tasks.items()
    }
    # Self-dependencies are dropped above; they are cycles all the same
    self_loops = [entity for entity, deps in tasks.items() if entity in set(deps)]
    cycle_members = [
        entity for entity in entities if entity in self_loops or _on_cycle(entity, dependencies)
    ]

    execution_order: list[list[str]] = []
    resolved: set[str] = set()
    remaining = list(entities)

    while remaining:
        level = [
            entity
            for entity in remaining
            if all(dep in resolved for dep in dependencies[entity])
        ]
        if not level:
            stuck = [entity for entity in remaining if entity in cycle_members]
            logger.warning(
                "Dependency cycle among migration tasks; scheduling %s one level each",
                ", ".join(stuck),
            )
            execution_order.extend([entity] for entity in stuck)
            resolved.update(stuck)
            remaining = [entity for entity in remaining if entity not in resolved]
            continue
        execution_order.append(level)
        resolved.update(level)
        remaining = [entity for entity in remaining if entity not in resolved]

    return DependencyGraph(
        entities=entities,
        dependencies=dependencies,
        execution_order=execution_order,
        cycle_members=cycle_members,
    )


__all__ = ["DependencyGraph", "build_dependency_graph"]
