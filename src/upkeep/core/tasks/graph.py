"""
Task dependency graph.

Immutable after construction. Nodes live in an index-based table (position in
the config order); edges are stored as tuples of node indices, so the graph can
be read from worker threads without locking.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from upkeep.core.errors import ConfigError, CycleError

from .models import TaskSpec


class TaskGraph:
    """Validated, acyclic dependency graph built from a list of task specs.

    The graph models two kinds of edges:

    * **forward edge** (``depends_on``): task A depends on task B  →  A cannot
      start until B reaches a terminal state.
    * **reverse edge** (``dependents``): B finishing may make A ready.

    Example::

        graph = TaskGraph.build(specs)
        graph.ready_set(completed={"dotfiles"})
    """

    __slots__ = ("_specs", "_index", "_forward", "_reverse")

    def __init__(
        self,
        specs: Sequence[TaskSpec],
        forward: Sequence[tuple[int, ...]],
    ) -> None:
        """Use ``TaskGraph.build``; this constructor does not validate."""
        self._specs: tuple[TaskSpec, ...] = tuple(specs)
        self._index: dict[str, int] = {s.id: i for i, s in enumerate(self._specs)}
        self._forward: tuple[tuple[int, ...], ...] = tuple(forward)

        reverse: list[list[int]] = [[] for _ in self._specs]
        for node, deps in enumerate(self._forward):
            for dep in deps:
                reverse[dep].append(node)
        self._reverse: tuple[tuple[int, ...], ...] = tuple(tuple(r) for r in reverse)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, tasks: Iterable[TaskSpec]) -> TaskGraph:
        """Validate *tasks* and build the graph.

        Raises:
            ConfigError: On duplicate task ids or a dependency on an unknown id
            CycleError: If the dependency relation is cyclic; ``cycle`` holds the
                        full path, e.g. ``["a", "b", "a"]``
        """
        specs = list(tasks)
        index: dict[str, int] = {}
        for i, spec in enumerate(specs):
            if spec.id in index:
                raise ConfigError(f"Duplicate task id '{spec.id}'")
            index[spec.id] = i

        forward: list[tuple[int, ...]] = []
        for spec in specs:
            deps: list[int] = []
            for dep_id in spec.depends_on:
                if dep_id not in index:
                    raise ConfigError(f"Task '{spec.id}' depends on unknown task '{dep_id}'")
                if index[dep_id] not in deps:
                    deps.append(index[dep_id])
            forward.append(tuple(deps))

        cycle = _find_cycle(forward)
        if cycle is not None:
            raise CycleError([specs[i].id for i in cycle])

        return cls(specs, forward)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._index

    @property
    def ids(self) -> list[str]:
        """Task ids in config order."""
        return [s.id for s in self._specs]

    def spec(self, task_id: str) -> TaskSpec:
        return self._specs[self._index[task_id]]

    def dependencies(self, task_id: str) -> list[str]:
        """Direct prerequisites of *task_id*, in config order."""
        return [self._specs[d].id for d in self._forward[self._index[task_id]]]

    def dependents(self, task_id: str) -> list[str]:
        """Tasks that directly depend on *task_id*."""
        return [self._specs[d].id for d in self._reverse[self._index[task_id]]]

    def ready_set(self, completed: set[str] | frozenset[str]) -> set[str]:
        """Tasks not in *completed* whose prerequisites are all in *completed*."""
        done = {self._index[t] for t in completed if t in self._index}
        return {
            self._specs[node].id
            for node, deps in enumerate(self._forward)
            if node not in done and all(d in done for d in deps)
        }

    def topological_order(self) -> list[str]:
        """Dependency-respecting order, ties broken by config order."""
        remaining = [len(deps) for deps in self._forward]
        ready = [i for i, n in enumerate(remaining) if n == 0]
        order: list[int] = []
        while ready:
            ready.sort()
            node = ready.pop(0)
            order.append(node)
            for dependent in self._reverse[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        return [self._specs[i].id for i in order]


def _find_cycle(forward: Sequence[tuple[int, ...]]) -> list[int] | None:
    """Three-color DFS; returns the first cycle found as a closed index path."""
    WHITE, GRAY, BLACK = 0, 1, 2  # noqa: N806
    color = [WHITE] * len(forward)
    path: list[int] = []

    def _visit(node: int) -> list[int] | None:
        color[node] = GRAY
        path.append(node)
        for dep in forward[node]:
            if color[dep] == GRAY:
                return path[path.index(dep):] + [dep]
            if color[dep] == WHITE:
                found = _visit(dep)
                if found is not None:
                    return found
        path.pop()
        color[node] = BLACK
        return None

    for node in range(len(forward)):
        if color[node] == WHITE:
            found = _visit(node)
            if found is not None:
                return found
    return None
