from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable

from .dependencies import DependencyGraph
from .rollup import recompute_all, recompute_rollup
from .schedule_models import Dependency, ScheduleNode
from .tree_store import ScheduleTree
from .working_calendar import WorkingCalendar, compute_end_date, earliest_start_for_end, next_working_day

logger = logging.getLogger(__name__)


def required_start(
    dependency: Dependency,
    source: ScheduleNode,
    target: ScheduleNode,
    calendar: WorkingCalendar | None = None,
) -> date | None:
    """
    Earliest start of `target` that satisfies `dependency`, or None if the
    source dates are unresolved.

    Finish constraints (FF, SF) are turned into start constraints with the
    target's own duration.
    """

    lag = timedelta(days=dependency.lag_days)
    if dependency.type == "finish_to_start":
        return None if source.end is None else source.end + lag
    if dependency.type == "start_to_start":
        return None if source.start is None else source.start + lag
    if dependency.type == "finish_to_finish":
        if source.end is None:
            return None
        return earliest_start_for_end(source.end + lag, target.estimated_hours, calendar)
    if source.start is None:
        return None
    return earliest_start_for_end(source.start + lag, target.estimated_hours, calendar)


def constraint_satisfied(dependency: Dependency, source: ScheduleNode, target: ScheduleNode) -> bool:
    """Check a dependency on current dates; unresolved dates count as satisfied."""
    lag = timedelta(days=dependency.lag_days)
    if dependency.type == "finish_to_start":
        pair = (target.start, source.end)
    elif dependency.type == "start_to_start":
        pair = (target.start, source.start)
    elif dependency.type == "finish_to_finish":
        pair = (target.end, source.end)
    else:
        pair = (target.end, source.start)
    actual, anchor = pair
    if actual is None or anchor is None:
        return True
    return actual >= anchor + lag


def reschedule_leaf(node: ScheduleNode, start: date, calendar: WorkingCalendar | None = None) -> None:
    """Move a leaf to `start`, holding its hours constant."""
    node.start = start
    node.end = compute_end_date(start, node.estimated_hours, calendar)


def shift_subtree(
    tree: ScheduleTree,
    node_id: str,
    delta: timedelta,
    calendar: WorkingCalendar | None = None,
) -> list[str]:
    """
    Move every dated leaf under `node_id` by `delta`, keeping hours.

    Starts that land on a non-working day go to the next working day. Zero-hour
    leaves keep their explicit span. Returns the moved leaf ids in tree order
    after refreshing their ancestor rollups.
    """

    moved: list[str] = []
    for node in list(tree.walk(node_id)):
        if not node.is_leaf or node.start is None:
            continue
        new_start = next_working_day(node.start + delta, calendar)
        if node.estimated_hours <= 0 and node.end is not None:
            node.start, node.end = new_start, new_start + (node.end - node.start)
        else:
            reschedule_leaf(node, new_start, calendar)
        moved.append(node.id)

    for leaf_id in moved:
        recompute_rollup(tree, leaf_id)
    return moved


def propagate(
    tree: ScheduleTree,
    graph: DependencyGraph,
    seeds: Iterable[str],
    calendar: WorkingCalendar | None = None,
) -> list[str]:
    """
    Push dependent tasks forward after the tasks in `seeds` changed.

    Tasks are visited once each, in topological order, restricted to the seeds
    and everything reachable from them. A task only moves when one of its
    incoming constraints is violated (or it has no start yet); it never moves
    earlier. Ancestor rollups are refreshed for every moved task. Returns the
    moved task ids in the order they were resolved.
    """

    seed_ids = [sid for sid in seeds if sid in tree and tree.get(sid).kind == "task"]
    if not seed_ids:
        return []

    successors = graph.adjacency()
    affected: set[str] = set()
    frontier = list(seed_ids)
    while frontier:
        current = frontier.pop()
        if current in affected:
            continue
        affected.add(current)
        frontier.extend(successors.get(current, []))

    incoming: dict[str, list[Dependency]] = {}
    for dep in graph:
        incoming.setdefault(dep.target_id, []).append(dep)

    moved: list[str] = []
    for task_id in graph.topological_order():
        if task_id not in affected or task_id not in tree:
            continue
        task = tree.get(task_id)
        live = [dep for dep in incoming.get(task_id, []) if dep.source_id in tree]
        requirements = [
            needed
            for needed in (required_start(dep, tree.get(dep.source_id), task, calendar) for dep in live)
            if needed is not None
        ]
        if not requirements:
            continue
        if task.start is not None and all(constraint_satisfied(dep, tree.get(dep.source_id), task) for dep in live):
            continue

        new_start = next_working_day(max(requirements), calendar)
        if task.start is not None and task.start > new_start:
            new_start = task.start  # never earlier
        logger.debug("Task '%s' moved %s -> %s by dependency", task_id, task.start, new_start)
        reschedule_leaf(task, new_start, calendar)
        moved.append(task_id)

    for task_id in moved:
        recompute_rollup(tree, task_id)

    if moved:
        logger.info("Propagation moved %d task(s)", len(moved))
    return moved


def recalculate(tree: ScheduleTree, graph: DependencyGraph, calendar: WorkingCalendar | None = None) -> list[str]:
    """Re-resolve every task against every dependency, then run a full rollup."""
    moved = propagate(tree, graph, [task.id for task in tree.tasks()], calendar)
    recompute_all(tree)
    return moved
