from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

NodeKind = Literal["phase", "work_breakdown", "activity", "task"]
"""Hierarchy levels, top to bottom: phase, work-breakdown element (EDT), activity, task."""

ScheduleKind = Literal["commercial", "planning", "execution"]
NodeStatus = Literal["planned", "in_progress", "completed", "paused", "cancelled"]
NodePriority = Literal["low", "medium", "high", "critical"]
DependencyType = Literal["finish_to_start", "start_to_start", "finish_to_finish", "start_to_finish"]
Granularity = Literal["day", "week", "month"]

NODE_KINDS: tuple[str, ...] = ("phase", "work_breakdown", "activity", "task")
SCHEDULE_KINDS: tuple[str, ...] = ("commercial", "planning", "execution")
NODE_STATUSES: tuple[str, ...] = ("planned", "in_progress", "completed", "paused", "cancelled")
NODE_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
DEPENDENCY_TYPES: tuple[str, ...] = ("finish_to_start", "start_to_start", "finish_to_finish", "start_to_finish")

DEPENDENCY_ABBREVIATIONS: dict[str, str] = {
    "finish_to_start": "FS",
    "start_to_start": "SS",
    "finish_to_finish": "FF",
    "start_to_finish": "SF",
}


def kind_level(kind: str) -> int:
    """Depth of a kind in the hierarchy: phase=0 ... task=3."""
    return NODE_KINDS.index(kind)


@dataclass
class Schedule:
    """One cronograma: owns its node tree and dependency set."""

    id: str
    kind: ScheduleKind = "commercial"
    baseline: bool = False
    calendar_id: str | None = None
    project_ref: str | None = None


@dataclass
class ScheduleNode:
    """
    A node of the four-level hierarchy.

    `children` is an ordered list of child ids; `parent_id` is a plain lookup
    key. Phases hang from the implicit schedule root and carry parent_id=None.
    """

    id: str
    schedule_id: str
    kind: NodeKind
    name: str
    parent_id: str | None = None
    order: int = 0
    start: date | None = None
    end: date | None = None
    estimated_hours: float = 0.0
    progress: float = 0.0
    status: NodeStatus = "planned"
    priority: NodePriority = "medium"
    responsible_ref: str | None = None
    source_item_ref: str | None = None
    children: list[str] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_milestone(self) -> bool:
        """Zero-hour tasks, or tasks starting and ending the same day."""
        if self.kind != "task":
            return False
        if self.estimated_hours <= 0:
            return True
        return self.start is not None and self.start == self.end


@dataclass
class Dependency:
    """Directed constraint between two task nodes of one schedule."""

    id: str
    schedule_id: str
    source_id: str
    target_id: str
    type: DependencyType = "finish_to_start"
    lag_days: int = 0

    @property
    def abbreviation(self) -> str:
        return DEPENDENCY_ABBREVIATIONS[self.type]


@dataclass(frozen=True)
class CatalogItem:
    """Flat catalog entry supplied by the quotation side (one task per item)."""

    id: str
    name: str
    category: str
    quantity: float = 1.0
    estimated_hours: float = 0.0
    phase: str | None = None
    activity: str | None = None

    @property
    def total_hours(self) -> float:
        return self.estimated_hours * self.quantity


@dataclass(frozen=True)
class CatalogDependency:
    """User-authored dependency between two catalog items, used by advanced generation."""

    source_item_id: str
    target_item_id: str
    type: DependencyType = "finish_to_start"
    lag_days: int = 0


@dataclass(frozen=True)
class GenerationDefaults:
    """Durations used by generation for catalog items that carry no hours."""

    task_days: float = 2.0


@dataclass
class Catalog:
    items: list[CatalogItem]
    dependencies: list[CatalogDependency] = field(default_factory=list)
    defaults: GenerationDefaults = field(default_factory=GenerationDefaults)


@dataclass
class FlatNodeRow:
    """
    Flattened view of a node used by interchange exporters.

    Rows come out in depth-first order; `wbs` is the outline code built from
    sibling order (1, 1.2, 1.2.3 ...).
    """

    order: int
    depth: int
    node_id: str
    parent_id: str | None
    wbs: str
    name: str
    kind: NodeKind
    start: date | None
    end: date | None
    estimated_hours: float
    progress: float
    status: NodeStatus
    priority: NodePriority
    responsible_ref: str | None = None
    source_item_ref: str | None = None
    milestone: bool = False


@dataclass
class FlatDependencyRow:
    dependency_id: str
    source_id: str
    target_id: str
    type: DependencyType
    lag_days: int


@dataclass
class ProjectionBar:
    """Geometry of one node inside a visible window, as fractions in [0, 1]."""

    row: int
    indent: int
    node_id: str
    name: str
    kind: NodeKind
    start: date | None
    end: date | None
    offset: float | None
    width: float | None
    progress: float


@dataclass
class ProjectionTick:
    day: date
    label: str
    offset: float


@dataclass
class ProjectionLink:
    """Anchor points (x fraction, row) of a dependency connector."""

    dependency_id: str
    type: DependencyType
    source_point: tuple[float, int]
    target_point: tuple[float, int]


@dataclass
class GanttProjection:
    window_start: date
    window_end: date
    granularity: Granularity
    bars: list[ProjectionBar] = field(default_factory=list)
    ticks: list[ProjectionTick] = field(default_factory=list)
    links: list[ProjectionLink] = field(default_factory=list)


@dataclass
class ExportBundle:
    """Flattened schedule handed to interchange exporters, with non-fatal warnings."""

    schedule: Schedule
    nodes: list[FlatNodeRow]
    dependencies: list[FlatDependencyRow]
    warnings: list[str] = field(default_factory=list)
