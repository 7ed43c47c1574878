from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Iterable

from .dependencies import DependencyGraph
from .errors import InvalidFieldError, InvalidNodeReferenceError
from .propagation import propagate
from .rollup import recompute_all, recompute_rollup
from .schedule_models import CatalogDependency, CatalogItem, GenerationDefaults, NodeKind, Schedule, ScheduleNode
from .tree_store import ScheduleTree
from .working_calendar import (
    DEFAULT_HOURS_PER_DAY,
    ONE_DAY,
    WorkingCalendar,
    compute_end_date,
    default_calendar,
    next_working_day,
)

logger = logging.getLogger(__name__)

DEFAULT_PHASE_NAME = "General"
SIBLING_LAG_DAYS = 1

# phase -> category -> activity -> items, each level in first-seen order
CatalogGroups = dict[str, dict[str, dict[str, list[CatalogItem]]]]


def group_catalog(items: Iterable[CatalogItem]) -> CatalogGroups:
    groups: CatalogGroups = {}
    for item in items:
        phase = item.phase or DEFAULT_PHASE_NAME
        activity = item.activity or item.category
        groups.setdefault(phase, {}).setdefault(item.category, {}).setdefault(activity, []).append(item)
    return groups


def _new_node(tree: ScheduleTree, kind: NodeKind, name: str, parent_id: str | None, **fields) -> ScheduleNode:
    node = ScheduleNode(
        id=uuid.uuid4().hex,
        schedule_id=tree.schedule_id,
        kind=kind,
        name=name,
        parent_id=parent_id,
        **fields,
    )
    return tree.add(node)


def _check_items(items: list[CatalogItem]) -> None:
    if not items:
        raise InvalidFieldError("Catalog is empty; nothing to generate")
    seen: set[str] = set()
    for item in items:
        if item.id in seen:
            raise InvalidFieldError(f"Duplicate catalog item id '{item.id}'")
        if item.estimated_hours < 0 or item.quantity < 0:
            raise InvalidFieldError(f"Catalog item '{item.id}' has negative hours or quantity")
        seen.add(item.id)


def task_hours(
    item: CatalogItem, defaults: GenerationDefaults | None = None, calendar: WorkingCalendar | None = None
) -> float:
    """Item hours, or the default task duration in working days when the item has none."""
    if item.total_hours > 0:
        return item.total_hours
    defaults = defaults or GenerationDefaults()
    hours_per_day = (calendar or default_calendar()).hours_per_day
    return defaults.task_days * (hours_per_day if hours_per_day > 0 else DEFAULT_HOURS_PER_DAY)


def _next_sibling_start(previous_end: date | None, fallback: date, calendar: WorkingCalendar | None) -> date:
    """A sibling may not start before the previous sibling's end plus one day."""
    if previous_end is None:
        return fallback
    return next_working_day(previous_end + timedelta(days=SIBLING_LAG_DAYS), calendar)


def build_from_catalog(
    schedule: Schedule,
    items: Iterable[CatalogItem],
    start: date,
    calendar: WorkingCalendar | None = None,
    defaults: GenerationDefaults | None = None,
) -> tuple[ScheduleTree, DependencyGraph]:
    """
    Build a fresh tree and dependency graph from flat catalog items.

    Items are grouped phase -> category (work-breakdown element) -> activity,
    with one task per item. The first child of every parent starts with its
    parent; each later sibling starts one day after the previous sibling ends,
    on the next working day. Consecutive sibling tasks are linked with an FS
    dependency of lag +1 day.
    Items without hours get `defaults.task_days` working days.
    """

    item_list = list(items)
    _check_items(item_list)

    tree = ScheduleTree(schedule.id)
    graph = DependencyGraph(tree)
    cursor = next_working_day(start, calendar)

    phase_end: date | None = None
    for phase_name, categories in group_catalog(item_list).items():
        phase = _new_node(tree, "phase", phase_name, None)
        phase_start = _next_sibling_start(phase_end, cursor, calendar)

        wbe_end: date | None = None
        for category, activities in categories.items():
            wbe = _new_node(tree, "work_breakdown", category, phase.id)
            wbe_start = _next_sibling_start(wbe_end, phase_start, calendar)

            activity_end: date | None = None
            for activity_name, activity_items in activities.items():
                activity = _new_node(tree, "activity", activity_name, wbe.id)
                task_start = _next_sibling_start(activity_end, wbe_start, calendar)

                previous: ScheduleNode | None = None
                for item in activity_items:
                    if previous is not None:
                        task_start = _next_sibling_start(previous.end, task_start, calendar)
                    hours = task_hours(item, defaults, calendar)
                    task = _new_node(
                        tree,
                        "task",
                        item.name,
                        activity.id,
                        start=task_start,
                        end=compute_end_date(task_start, hours, calendar),
                        estimated_hours=hours,
                        source_item_ref=item.id,
                    )
                    if previous is not None:
                        graph.add(previous.id, task.id, "finish_to_start", SIBLING_LAG_DAYS)
                    previous = task

                recompute_rollup(tree, activity.id)
                activity_end = activity.end
            recompute_rollup(tree, wbe.id)
            wbe_end = wbe.end
        recompute_rollup(tree, phase.id)
        phase_end = phase.end

    logger.info(
        "Generated schedule '%s' from %d catalog item(s): %d node(s), %d dependency(ies)",
        schedule.id,
        len(item_list),
        len(tree),
        len(graph),
    )
    return tree, graph


def _build_skeleton(
    schedule: Schedule,
    items: list[CatalogItem],
    defaults: GenerationDefaults | None = None,
    calendar: WorkingCalendar | None = None,
) -> tuple[ScheduleTree, list[tuple[CatalogItem, ScheduleNode]]]:
    """Create the hierarchy with undated tasks; return tasks paired with their items."""
    tree = ScheduleTree(schedule.id)
    tasks: list[tuple[CatalogItem, ScheduleNode]] = []
    for phase_name, categories in group_catalog(items).items():
        phase = _new_node(tree, "phase", phase_name, None)
        for category, activities in categories.items():
            wbe = _new_node(tree, "work_breakdown", category, phase.id)
            for activity_name, activity_items in activities.items():
                activity = _new_node(tree, "activity", activity_name, wbe.id)
                for item in activity_items:
                    task = _new_node(
                        tree,
                        "task",
                        item.name,
                        activity.id,
                        estimated_hours=task_hours(item, defaults, calendar),
                        source_item_ref=item.id,
                    )
                    tasks.append((item, task))
    return tree, tasks


def quick_from_catalog(
    schedule: Schedule,
    items: Iterable[CatalogItem],
    start: date,
    window_end: date,
    calendar: WorkingCalendar | None = None,
    defaults: GenerationDefaults | None = None,
) -> tuple[ScheduleTree, DependencyGraph]:
    """Spread task starts evenly over the working days of [start, window_end]; no dependencies."""
    item_list = list(items)
    _check_items(item_list)
    if window_end < start:
        raise InvalidFieldError(f"Window end {window_end} precedes start {start}")

    working_days: list[date] = []
    current = start
    while current <= window_end:
        if next_working_day(current, calendar) == current:
            working_days.append(current)
        current += ONE_DAY
    if not working_days:
        raise InvalidFieldError(f"No working days between {start} and {window_end}")

    tree, tasks = _build_skeleton(schedule, item_list, defaults, calendar)
    for idx, (_, task) in enumerate(tasks):
        task.start = working_days[idx * len(working_days) // len(tasks)]
        task.end = compute_end_date(task.start, task.estimated_hours, calendar)
    recompute_all(tree)

    logger.info("Quick-generated schedule '%s' with %d task(s)", schedule.id, len(tasks))
    return tree, DependencyGraph(tree)


def advanced_from_catalog(
    schedule: Schedule,
    items: Iterable[CatalogItem],
    start: date,
    dependencies: Iterable[CatalogDependency],
    calendar: WorkingCalendar | None = None,
    defaults: GenerationDefaults | None = None,
) -> tuple[ScheduleTree, DependencyGraph]:
    """
    Anchor every task at `start`, admit user-authored dependencies through the
    dependency graph checks, then resolve dates by propagation.
    """

    item_list = list(items)
    _check_items(item_list)

    tree, tasks = _build_skeleton(schedule, item_list, defaults, calendar)
    graph = DependencyGraph(tree)
    anchor = next_working_day(start, calendar)
    task_by_item: dict[str, ScheduleNode] = {}
    for item, task in tasks:
        task.start = anchor
        task.end = compute_end_date(anchor, task.estimated_hours, calendar)
        task_by_item[item.id] = task

    for dep in dependencies:
        source = task_by_item.get(dep.source_item_id)
        target = task_by_item.get(dep.target_item_id)
        if source is None or target is None:
            missing = dep.source_item_id if source is None else dep.target_item_id
            raise InvalidNodeReferenceError(f"Dependency references unknown catalog item '{missing}'")
        graph.add(source.id, target.id, dep.type, dep.lag_days)

    propagate(tree, graph, [task.id for _, task in tasks], calendar)
    recompute_all(tree)

    logger.info(
        "Advanced-generated schedule '%s' with %d task(s) and %d dependency(ies)",
        schedule.id,
        len(tasks),
        len(graph),
    )
    return tree, graph
