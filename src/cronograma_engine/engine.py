from __future__ import annotations

import copy
import dataclasses
import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from .dependencies import DependencyGraph
from .errors import InvalidFieldError, ReadOnlyScheduleError, RollupInconsistencyError
from .generator import advanced_from_catalog, build_from_catalog, quick_from_catalog
from .projection import build_projection, flatten_dependencies, flatten_nodes
from .propagation import constraint_satisfied, propagate, recalculate, shift_subtree
from .rollup import check_rollup, find_rollup_inconsistencies, recompute_all, recompute_parent_chain, recompute_rollup
from .schedule_models import (
    NODE_PRIORITIES,
    NODE_STATUSES,
    CatalogDependency,
    CatalogItem,
    Dependency,
    ExportBundle,
    GenerationDefaults,
    GanttProjection,
    Granularity,
    NodeKind,
    Schedule,
    ScheduleNode,
)
from .tree_store import ScheduleTree
from .variance import VarianceReport, compute_variance
from .working_calendar import WorkingCalendar, compute_end_date, default_calendar

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "name",
        "start",
        "end",
        "estimated_hours",
        "progress",
        "status",
        "priority",
        "responsible_ref",
        "source_item_ref",
    }
)
ROLLED_UP_FIELDS: frozenset[str] = frozenset({"end", "estimated_hours", "progress"})
GENERATION_MODES: tuple[str, ...] = ("default", "quick", "advanced")


@dataclass(frozen=True)
class ScheduleMetrics:
    node_count: int
    task_count: int
    dependency_count: int
    total_hours: float
    progress: float
    tasks_by_status: dict[str, int]
    milestones: int


def _validate_fields(fields: dict[str, Any]) -> None:
    if "name" in fields and (not isinstance(fields["name"], str) or not fields["name"].strip()):
        raise InvalidFieldError("name must be a non-empty string")
    if "progress" in fields:
        progress = fields["progress"]
        if not isinstance(progress, (int, float)) or not 0 <= progress <= 100:
            raise InvalidFieldError(f"progress must be between 0 and 100, got {progress!r}")
    if "estimated_hours" in fields:
        hours = fields["estimated_hours"]
        if not isinstance(hours, (int, float)) or hours < 0:
            raise InvalidFieldError(f"estimated_hours must be a non-negative number, got {hours!r}")
    if "status" in fields and fields["status"] not in NODE_STATUSES:
        raise InvalidFieldError(f"status must be one of {list(NODE_STATUSES)}")
    if "priority" in fields and fields["priority"] not in NODE_PRIORITIES:
        raise InvalidFieldError(f"priority must be one of {list(NODE_PRIORITIES)}")
    for key in ("start", "end"):
        value = fields.get(key)
        if value is not None and not isinstance(value, date):
            raise InvalidFieldError(f"{key} must be a date, got {value!r}")


class ScheduleEngine:
    """
    Single-writer facade over one schedule's tree and dependency graph.

    Every mutation is validated before anything changes, then rollups and
    dependency propagation run so the schedule is consistent when the call
    returns. Callers serialize mutations per schedule.
    """

    def __init__(self, schedule: Schedule, calendar: WorkingCalendar | None = None):
        self.schedule = schedule
        self.calendar = calendar or default_calendar()
        self.tree = ScheduleTree(schedule.id)
        self.graph = DependencyGraph(self.tree)

    # Node CRUD

    def create_node(
        self,
        kind: NodeKind,
        name: str,
        parent_id: str | None = None,
        *,
        node_id: str | None = None,
        position: int | None = None,
        start: date | None = None,
        end: date | None = None,
        estimated_hours: float = 0.0,
        progress: float = 0.0,
        status: str = "planned",
        priority: str = "medium",
        responsible_ref: str | None = None,
        source_item_ref: str | None = None,
    ) -> ScheduleNode:
        self._ensure_mutable()
        fields = {
            "name": name,
            "start": start,
            "end": end,
            "estimated_hours": estimated_hours,
            "progress": progress,
            "status": status,
            "priority": priority,
        }
        _validate_fields(fields)
        self.tree.validate_placement(kind, parent_id)

        node = ScheduleNode(
            id=node_id or uuid.uuid4().hex,
            schedule_id=self.schedule.id,
            kind=kind,
            name=name,
            parent_id=parent_id,
            start=start,
            end=end,
            estimated_hours=float(estimated_hours),
            progress=float(progress),
            status=status,  # type: ignore[arg-type]
            priority=priority,  # type: ignore[arg-type]
            responsible_ref=responsible_ref,
            source_item_ref=source_item_ref,
        )
        self._derive_leaf_dates(node)
        self.tree.add(node, position)
        recompute_rollup(self.tree, node.id)
        return node

    def update_node(self, node_id: str, **changes: Any) -> ScheduleNode:
        """
        Apply field changes to a node and re-establish consistency.

        Leaf dates are re-derived from start and hours, so an explicit `end`
        only sticks on zero-hour leaves. On a node with children, end, hours
        and progress are owned by rollup and cannot be set; a new start shifts
        every dated task below it by the same number of days.
        """

        self._ensure_mutable()
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise InvalidFieldError(f"Cannot update fields {unknown}")
        _validate_fields(changes)
        node = self.tree.get(node_id)
        if not node.is_leaf:
            return self._update_parent(node, changes)

        candidate = dataclasses.replace(node, children=list(node.children), **changes)
        if "estimated_hours" in changes:
            candidate.estimated_hours = float(candidate.estimated_hours)
        if "start" in changes and "end" not in changes and candidate.start is None:
            candidate.end = None
        self._derive_leaf_dates(candidate)

        before = (node.start, node.end)
        for key in UPDATABLE_FIELDS:
            setattr(node, key, getattr(candidate, key))

        recompute_rollup(self.tree, node_id)
        if node.kind == "task" and (node.start, node.end) != before:
            propagate(self.tree, self.graph, [node_id], self.calendar)
        logger.debug("Updated node '%s': %s", node_id, sorted(changes))
        return node

    def _update_parent(self, node: ScheduleNode, changes: dict[str, Any]) -> ScheduleNode:
        rolled_up = sorted(ROLLED_UP_FIELDS & set(changes))
        if rolled_up:
            raise InvalidFieldError(f"Fields {rolled_up} of '{node.id}' are rolled up from its children")
        new_start = changes.get("start", node.start)
        if new_start != node.start and (new_start is None or node.start is None):
            raise InvalidFieldError(f"Start of '{node.id}' can only move between dates, got {node.start} -> {new_start}")

        for key, value in changes.items():
            if key != "start":
                setattr(node, key, value)
        if new_start != node.start:
            moved = shift_subtree(self.tree, node.id, new_start - node.start, self.calendar)
            propagate(self.tree, self.graph, moved, self.calendar)
        logger.debug("Updated node '%s': %s", node.id, sorted(changes))
        return node

    def delete_node(self, node_id: str) -> list[str]:
        """Delete a node, its subtree and every dependency touching a removed task."""
        self._ensure_mutable()
        parent_id = self.tree.get(node_id).parent_id
        removed = self.tree.remove_subtree(node_id)
        dropped = self.graph.remove_for_tasks(removed)
        recompute_parent_chain(self.tree, parent_id)
        logger.debug("Deleted %d node(s) and %d dependency(ies) under '%s'", len(removed), len(dropped), node_id)
        return removed

    def reorder_siblings(self, parent_id: str | None, ordered_child_ids: list[str]) -> None:
        self._ensure_mutable()
        self.tree.reorder_siblings(parent_id, list(ordered_child_ids))

    # Dependencies

    def add_dependency(
        self,
        source_id: str,
        target_id: str,
        type: str = "finish_to_start",
        lag_days: int = 0,
        dependency_id: str | None = None,
    ) -> Dependency:
        self._ensure_mutable()
        dependency = self.graph.add(source_id, target_id, type, lag_days, dependency_id)
        propagate(self.tree, self.graph, [target_id], self.calendar)
        return dependency

    def remove_dependency(self, dependency_id: str) -> Dependency:
        self._ensure_mutable()
        return self.graph.remove(dependency_id)

    # Whole-schedule operations

    def generate_from_catalog(
        self,
        items: Iterable[CatalogItem],
        start: date,
        mode: str = "default",
        window_end: date | None = None,
        dependencies: Iterable[CatalogDependency] = (),
        defaults: GenerationDefaults | None = None,
    ) -> list[ScheduleNode]:
        """
        Replace the schedule content with a tree generated from catalog items.

        The new tree is built aside and only swapped in once it is complete,
        so a rejected generation leaves the current schedule untouched.
        """

        self._ensure_mutable()
        if mode == "default":
            tree, graph = build_from_catalog(self.schedule, items, start, self.calendar, defaults)
        elif mode == "quick":
            if window_end is None:
                raise InvalidFieldError("quick generation needs a window end date")
            tree, graph = quick_from_catalog(self.schedule, items, start, window_end, self.calendar, defaults)
        elif mode == "advanced":
            tree, graph = advanced_from_catalog(
                self.schedule, items, start, dependencies, self.calendar, defaults
            )
        else:
            raise InvalidFieldError(f"mode must be one of {list(GENERATION_MODES)}, got '{mode}'")

        self.tree, self.graph = tree, graph
        return self.nodes()

    def recalculate(self) -> list[str]:
        """Re-resolve every task against its dependencies and refresh all rollups."""
        self._ensure_mutable()
        return recalculate(self.tree, self.graph, self.calendar)

    def reset(self) -> None:
        self._ensure_mutable()
        self.tree.clear()
        self.graph.clear()

    # Read model

    def node(self, node_id: str) -> ScheduleNode:
        return copy.deepcopy(self.tree.get(node_id))

    def nodes(self) -> list[ScheduleNode]:
        """Snapshot of every node in depth-first order."""
        return [copy.deepcopy(node) for node in self.tree.walk()]

    def dependencies(self) -> list[Dependency]:
        return [dataclasses.replace(dep) for dep in self.graph]

    def get_projection(
        self,
        window_start: date | None = None,
        window_end: date | None = None,
        granularity: Granularity = "week",
    ) -> GanttProjection:
        """Gantt geometry; the window defaults to the schedule's own span."""
        if window_start is None or window_end is None:
            starts = [n.start for n in self.tree.nodes.values() if n.start is not None]
            ends = [n.end for n in self.tree.nodes.values() if n.end is not None]
            if not starts or not ends:
                raise ValueError("Cannot infer projection window; no dated nodes present")
            window_start = window_start or min(starts)
            window_end = window_end or max(ends)
        return build_projection(self.tree, self.graph, window_start, window_end, granularity)

    def metrics(self) -> ScheduleMetrics:
        tasks = self.tree.tasks()
        hours = sum(task.estimated_hours for task in tasks)
        if hours > 0:
            progress = sum(task.progress * task.estimated_hours for task in tasks) / hours
        elif tasks:
            progress = sum(task.progress for task in tasks) / len(tasks)
        else:
            progress = 0.0
        return ScheduleMetrics(
            node_count=len(self.tree),
            task_count=len(tasks),
            dependency_count=len(self.graph),
            total_hours=hours,
            progress=round(progress, 2),
            tasks_by_status=dict(Counter(task.status for task in tasks)),
            milestones=sum(1 for task in tasks if task.is_milestone),
        )

    def export(self) -> ExportBundle:
        """
        Flatten the schedule for interchange exporters.

        Rollup inconsistencies are corrected by a full rollup first; whatever
        cannot be corrected is reported as a warning and export goes ahead.
        """

        warnings: list[str] = []
        try:
            check_rollup(self.tree)
        except RollupInconsistencyError as exc:
            logger.warning("%s; running full rollup", exc)
            recompute_all(self.tree)
            remaining = find_rollup_inconsistencies(self.tree)
            if remaining:
                warnings.append(f"Rollup still inconsistent for: {', '.join(remaining)}")

        for dep in self.graph.orphans():
            warnings.append(f"Dependency '{dep.id}' references a deleted task ({dep.source_id} -> {dep.target_id})")
        for dep in self.graph:
            if dep.source_id not in self.tree or dep.target_id not in self.tree:
                continue
            source, target = self.tree.get(dep.source_id), self.tree.get(dep.target_id)
            if not constraint_satisfied(dep, source, target):
                warnings.append(f"{dep.abbreviation} dependency violated: '{source.name}' -> '{target.name}'")
        for task in self.tree.tasks():
            if task.status == "completed" and task.progress < 100:
                warnings.append(f"Task '{task.name}' is completed but progress is {task.progress:g}%")

        for warning in warnings:
            logger.warning("Export of schedule '%s': %s", self.schedule.id, warning)
        return ExportBundle(
            schedule=self.schedule,
            nodes=flatten_nodes(self.tree),
            dependencies=flatten_dependencies(self.graph),
            warnings=warnings,
        )

    # Baselines

    def snapshot_baseline(self, baseline_id: str | None = None) -> "ScheduleEngine":
        """Copy this schedule into a read-only baseline sharing node ids."""
        baseline = ScheduleEngine(
            dataclasses.replace(self.schedule, id=baseline_id or f"{self.schedule.id}-baseline", baseline=True),
            self.calendar,
        )
        baseline.tree, baseline.graph = copy.deepcopy((self.tree, self.graph))
        baseline.tree.schedule_id = baseline.schedule.id
        for node in baseline.tree.nodes.values():
            node.schedule_id = baseline.schedule.id
        for dep in baseline.graph:
            dep.schedule_id = baseline.schedule.id
        return baseline

    def variance_against(self, baseline: "ScheduleEngine") -> VarianceReport:
        return compute_variance(baseline.tree, self.tree)

    # Internals

    def _ensure_mutable(self) -> None:
        if self.schedule.baseline:
            raise ReadOnlyScheduleError(f"Schedule '{self.schedule.id}' is a baseline and cannot be modified")

    def _derive_leaf_dates(self, node: ScheduleNode) -> None:
        if not node.is_leaf or node.start is None:
            if node.start is not None and node.end is not None and node.end < node.start:
                raise InvalidFieldError(f"end {node.end} precedes start {node.start}")
            return
        if node.estimated_hours > 0:
            node.end = compute_end_date(node.start, node.estimated_hours, self.calendar)
        elif node.end is None:
            node.end = node.start
        elif node.end < node.start:
            raise InvalidFieldError(f"end {node.end} precedes start {node.start}")
