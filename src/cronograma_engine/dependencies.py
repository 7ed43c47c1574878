from __future__ import annotations

import logging
import uuid
from collections import deque
from typing import Iterable

from .errors import (
    Cycle,
    CycleError,
    DependencyNotFoundError,
    DuplicateDependencyError,
    InvalidFieldError,
    SelfDependencyError,
)
from .schedule_models import DEPENDENCY_TYPES, Dependency
from .tree_store import ScheduleTree

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Task dependency edges of one schedule.

    Every admission goes through `add`, which keeps the graph free of
    self-loops, duplicates and cycles.
    """

    def __init__(self, tree: ScheduleTree):
        self.tree = tree
        self.dependencies: dict[str, Dependency] = {}

    def __len__(self) -> int:
        return len(self.dependencies)

    def __iter__(self):
        return iter(list(self.dependencies.values()))

    def add(
        self,
        source_id: str,
        target_id: str,
        type: str = "finish_to_start",
        lag_days: int = 0,
        dependency_id: str | None = None,
    ) -> Dependency:
        candidate = self.validate(source_id, target_id, type, lag_days)
        candidate.id = dependency_id or uuid.uuid4().hex
        if candidate.id in self.dependencies:
            raise DuplicateDependencyError(f"Dependency id '{candidate.id}' already exists")
        self.dependencies[candidate.id] = candidate
        logger.debug("Added %s dependency %s -> %s (lag %+d)", candidate.abbreviation, source_id, target_id, lag_days)
        return candidate

    def validate(self, source_id: str, target_id: str, type: str, lag_days: int = 0) -> Dependency:
        """Run every admission check for a candidate edge without storing it."""
        if type not in DEPENDENCY_TYPES:
            raise InvalidFieldError(f"Dependency type must be one of {list(DEPENDENCY_TYPES)}, got '{type}'")
        if not isinstance(lag_days, int) or isinstance(lag_days, bool):
            raise InvalidFieldError(f"Dependency lag must be a whole number of days, got {lag_days!r}")
        if source_id == target_id:
            raise SelfDependencyError(f"Task '{source_id}' cannot depend on itself")
        self.tree.get_task(source_id)
        self.tree.get_task(target_id)

        pair = {source_id, target_id}
        for existing in self.dependencies.values():
            if existing.type == type and {existing.source_id, existing.target_id} == pair:
                raise DuplicateDependencyError(
                    f"A {existing.abbreviation} dependency already links '{existing.source_id}' "
                    f"and '{existing.target_id}'"
                )

        successors = self.adjacency()
        successors.setdefault(source_id, []).append(target_id)
        cycle = find_cycle(self._task_order(), successors)
        if cycle:
            raise CycleError(cycle)

        return Dependency(
            id="",
            schedule_id=self.tree.schedule_id,
            source_id=source_id,
            target_id=target_id,
            type=type,  # type: ignore[arg-type]
            lag_days=lag_days,
        )

    def remove(self, dependency_id: str) -> Dependency:
        removed = self.dependencies.pop(dependency_id, None)
        if removed is None:
            raise DependencyNotFoundError(f"Dependency '{dependency_id}' does not exist")
        logger.debug("Removed dependency %s", dependency_id)
        return removed

    def remove_for_tasks(self, task_ids: Iterable[str]) -> list[Dependency]:
        """Drop every edge whose source or target is in `task_ids`."""
        doomed = set(task_ids)
        removed = [dep for dep in self.dependencies.values() if dep.source_id in doomed or dep.target_id in doomed]
        for dep in removed:
            del self.dependencies[dep.id]
        return removed

    def clear(self) -> None:
        self.dependencies.clear()

    def outgoing(self, task_id: str) -> list[Dependency]:
        return [dep for dep in self.dependencies.values() if dep.source_id == task_id]

    def incoming(self, task_id: str) -> list[Dependency]:
        return [dep for dep in self.dependencies.values() if dep.target_id == task_id]

    def adjacency(self) -> dict[str, list[str]]:
        """Successor lists keyed by source task id."""
        successors: dict[str, list[str]] = {}
        for dep in self.dependencies.values():
            successors.setdefault(dep.source_id, []).append(dep.target_id)
        return successors

    def orphans(self) -> list[Dependency]:
        """Edges pointing at tasks that no longer exist."""
        return [
            dep
            for dep in self.dependencies.values()
            if dep.source_id not in self.tree or dep.target_id not in self.tree
        ]

    def topological_order(self) -> list[str]:
        return toposort(self._task_order(), self.adjacency())

    def _task_order(self) -> list[str]:
        return [task.id for task in self.tree.tasks()]


def _node_universe(order: list[str], successors: dict[str, list[str]]) -> list[str]:
    nodes = list(order)
    seen = set(nodes)
    for source, targets in successors.items():
        for nid in [source, *targets]:
            if nid not in seen:
                seen.add(nid)
                nodes.append(nid)
    return nodes


def find_cycle(order: list[str], successors: dict[str, list[str]]) -> Cycle | None:
    """
    Depth-first search for a cycle, visiting roots in `order`.

    Uses an explicit stack of (node, next-successor-index) frames; `path` holds
    the nodes currently on the recursion stack.
    """

    done: set[str] = set()

    for seed in _node_universe(order, successors):
        if seed in done:
            continue
        path: list[str] = [seed]
        on_path: set[str] = {seed}
        frames: list[tuple[str, int]] = [(seed, 0)]
        while frames:
            node, idx = frames[-1]
            nexts = successors.get(node, [])
            if idx >= len(nexts):
                frames.pop()
                path.pop()
                on_path.discard(node)
                done.add(node)
                continue
            frames[-1] = (node, idx + 1)
            nxt = nexts[idx]
            if nxt in on_path:
                return Cycle(path[path.index(nxt) :] + [nxt])
            if nxt not in done:
                path.append(nxt)
                on_path.add(nxt)
                frames.append((nxt, 0))
    return None


def toposort(order: list[str], successors: dict[str, list[str]]) -> list[str]:
    # Preserve input order by using the incoming iteration order for seeds and adjacency.
    nodes = _node_universe(order, successors)
    indegree: dict[str, int] = {nid: 0 for nid in nodes}
    for targets in successors.values():
        for target in targets:
            indegree[target] += 1

    queue = deque([nid for nid in nodes if indegree[nid] == 0])
    result: list[str] = []

    while queue:
        current = queue.popleft()
        result.append(current)
        for child in successors.get(current, []):
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if len(result) != len(nodes):
        # Should not happen because cycles are rejected on admission.
        raise CycleError(find_cycle(nodes, successors) or Cycle([]))
    return result
