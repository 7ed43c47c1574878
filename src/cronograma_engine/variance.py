from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from .schedule_models import NodeKind
from .tree_store import ScheduleTree


@dataclass
class NodeVariance:
    """Deviation of one node from its baseline; positive values mean later or more."""

    node_id: str
    name: str
    kind: NodeKind
    start_days: int | None
    end_days: int | None
    hours: float


@dataclass
class VarianceReport:
    rows: list[NodeVariance] = field(default_factory=list)
    total_end_days: int = 0
    total_hours: float = 0.0
    missing_in_current: list[str] = field(default_factory=list)
    added_in_current: list[str] = field(default_factory=list)

    def by_kind(self, kind: NodeKind) -> list[NodeVariance]:
        return [row for row in self.rows if row.kind == kind]


def _days(current: date | None, baseline: date | None) -> int | None:
    if current is None or baseline is None:
        return None
    return (current - baseline).days


def compute_variance(baseline: ScheduleTree, current: ScheduleTree) -> VarianceReport:
    """
    Compare `current` against `baseline`, matching nodes by id.

    Totals are taken over phases only so each task counts once.
    """

    report = VarianceReport()
    for node in current.walk():
        base = baseline.nodes.get(node.id)
        if base is None:
            report.added_in_current.append(node.id)
            continue
        row = NodeVariance(
            node_id=node.id,
            name=node.name,
            kind=node.kind,
            start_days=_days(node.start, base.start),
            end_days=_days(node.end, base.end),
            hours=node.estimated_hours - base.estimated_hours,
        )
        report.rows.append(row)
        if node.kind == "phase":
            report.total_end_days += row.end_days or 0
            report.total_hours += row.hours

    report.missing_in_current = [nid for nid in baseline.nodes if nid not in current]
    return report
