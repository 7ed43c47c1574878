from __future__ import annotations

from datetime import date, timedelta
from typing import List

from .dependencies import DependencyGraph
from .schedule_models import (
    FlatDependencyRow,
    FlatNodeRow,
    GanttProjection,
    Granularity,
    ProjectionBar,
    ProjectionLink,
    ProjectionTick,
)
from .tree_store import ScheduleTree
from .working_calendar import ONE_DAY

GRANULARITIES: tuple[str, ...] = ("day", "week", "month")
TICK_FORMATS: dict[str, str] = {
    "day": "%b %d",
    "week": "%b %d",
    "month": "%b %Y",
}


def flatten_nodes(tree: ScheduleTree) -> list[FlatNodeRow]:
    """
    Convert the tree into flat rows in depth-first order.

    Parents precede their children; depth is 0 for phases.
    """

    rows: List[FlatNodeRow] = []
    codes = tree.wbs_codes()
    depths: dict[str, int] = {}

    for order, node in enumerate(tree.walk()):
        depth = 0 if node.parent_id is None else depths[node.parent_id] + 1
        depths[node.id] = depth
        rows.append(
            FlatNodeRow(
                order=order,
                depth=depth,
                node_id=node.id,
                parent_id=node.parent_id,
                wbs=codes[node.id],
                name=node.name,
                kind=node.kind,
                start=node.start,
                end=node.end,
                estimated_hours=node.estimated_hours,
                progress=node.progress,
                status=node.status,
                priority=node.priority,
                responsible_ref=node.responsible_ref,
                source_item_ref=node.source_item_ref,
                milestone=node.is_milestone,
            )
        )
    return rows


def flatten_dependencies(graph: DependencyGraph) -> list[FlatDependencyRow]:
    return [
        FlatDependencyRow(
            dependency_id=dep.id,
            source_id=dep.source_id,
            target_id=dep.target_id,
            type=dep.type,
            lag_days=dep.lag_days,
        )
        for dep in graph
    ]


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _fraction(delta: timedelta, span: timedelta) -> float:
    return _clamp(delta / span)


def timeline_ticks(window_start: date, window_end: date, granularity: Granularity) -> list[ProjectionTick]:
    """Tick marks at every granularity boundary inside the window, labelled for display."""
    span = window_end - window_start
    fmt = TICK_FORMATS[granularity]
    ticks: list[ProjectionTick] = []
    current = _first_boundary(window_start, granularity)
    while current <= window_end:
        ticks.append(ProjectionTick(day=current, label=current.strftime(fmt), offset=_fraction(current - window_start, span)))
        current = _next_boundary(current, granularity)
    return ticks


def _first_boundary(day: date, granularity: Granularity) -> date:
    if granularity == "day":
        return day
    if granularity == "week":
        return day + timedelta(days=(7 - day.weekday()) % 7)
    if day.day == 1:
        return day
    return _next_boundary(day, "month")


def _next_boundary(day: date, granularity: Granularity) -> date:
    if granularity == "day":
        return day + ONE_DAY
    if granularity == "week":
        return day + timedelta(days=7)
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def build_projection(
    tree: ScheduleTree,
    graph: DependencyGraph,
    window_start: date,
    window_end: date,
    granularity: Granularity = "week",
) -> GanttProjection:
    """
    Derive Gantt geometry for a visible window without touching schedule state.

    Bar offset and width are fractions of the window, clamped to [0, 1];
    unresolved nodes keep None geometry. Dependency anchors sit on bar edges:
    FS source end -> target start, SS start -> start, FF end -> end,
    SF source start -> target end.
    """

    if window_end <= window_start:
        raise ValueError(f"window_end {window_end} must be after window_start {window_start}")
    if granularity not in GRANULARITIES:
        raise ValueError(f"granularity must be one of {list(GRANULARITIES)}")

    span = window_end - window_start
    projection = GanttProjection(window_start=window_start, window_end=window_end, granularity=granularity)
    rows: dict[str, ProjectionBar] = {}

    for flat in flatten_nodes(tree):
        offset = width = None
        if flat.start is not None and flat.end is not None:
            offset = _fraction(flat.start - window_start, span)
            width = _fraction(flat.end - flat.start, span)
        bar = ProjectionBar(
            row=flat.order,
            indent=flat.depth,
            node_id=flat.node_id,
            name=flat.name,
            kind=flat.kind,
            start=flat.start,
            end=flat.end,
            offset=offset,
            width=width,
            progress=flat.progress,
        )
        projection.bars.append(bar)
        rows[bar.node_id] = bar

    projection.ticks = timeline_ticks(window_start, window_end, granularity)

    for dep in graph:
        source = rows.get(dep.source_id)
        target = rows.get(dep.target_id)
        if source is None or target is None or source.offset is None or target.offset is None:
            continue
        source_x = _edge(source, dep.type in ("finish_to_start", "finish_to_finish"))
        target_x = _edge(target, dep.type in ("finish_to_finish", "start_to_finish"))
        projection.links.append(
            ProjectionLink(
                dependency_id=dep.id,
                type=dep.type,
                source_point=(source_x, source.row),
                target_point=(target_x, target.row),
            )
        )
    return projection


def _edge(bar: ProjectionBar, right: bool) -> float:
    assert bar.offset is not None and bar.width is not None
    if right:
        return _clamp(bar.offset + bar.width)
    return bar.offset
