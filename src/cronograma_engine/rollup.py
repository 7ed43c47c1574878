from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from .errors import RollupInconsistencyError
from .schedule_models import ScheduleNode
from .tree_store import ScheduleTree


@dataclass(frozen=True)
class RollupValues:
    start: date | None
    end: date | None
    estimated_hours: float
    progress: float


def aggregate_children(children: list[ScheduleNode]) -> RollupValues:
    """
    Derive a parent's values from its children.

    Dates are min/max ignoring unresolved children; hours are summed; progress
    is the hours-weighted mean, or the plain mean when no child carries hours.
    """

    starts = [child.start for child in children if child.start is not None]
    ends = [child.end for child in children if child.end is not None]
    hours = sum(child.estimated_hours for child in children)

    if hours > 0:
        progress = sum(child.progress * child.estimated_hours for child in children) / hours
    elif children:
        progress = sum(child.progress for child in children) / len(children)
    else:
        progress = 0.0

    return RollupValues(
        start=min(starts) if starts else None,
        end=max(ends) if ends else None,
        estimated_hours=hours,
        progress=round(progress, 2),
    )


def _apply(node: ScheduleNode, values: RollupValues) -> bool:
    changed = (node.start, node.end, node.estimated_hours, node.progress) != (
        values.start,
        values.end,
        values.estimated_hours,
        values.progress,
    )
    node.start = values.start
    node.end = values.end
    node.estimated_hours = values.estimated_hours
    node.progress = values.progress
    return changed


def recompute_node(tree: ScheduleTree, node_id: str) -> bool:
    """Recompute a single non-leaf node from its current children; leaves are left alone."""
    node = tree.get(node_id)
    if node.is_leaf:
        return False
    return _apply(node, aggregate_children(tree.children_of(node_id)))


def recompute_rollup(tree: ScheduleTree, node_id: str) -> list[str]:
    """
    Re-establish rollup values from `node_id` up to the schedule root.

    The subtree below `node_id` is assumed consistent. Returns the ids whose
    values changed, nearest first.
    """

    changed: list[str] = []
    if recompute_node(tree, node_id):
        changed.append(node_id)
    for ancestor in tree.ancestors(node_id):
        if recompute_node(tree, ancestor.id):
            changed.append(ancestor.id)
    return changed


def clear_rollup(tree: ScheduleTree, node_id: str) -> bool:
    """Drop the values a non-task node rolled up from children it no longer has."""
    node = tree.get(node_id)
    if not node.is_leaf or node.kind == "task":
        return False
    return _apply(node, aggregate_children([]))


def recompute_parent_chain(tree: ScheduleTree, parent_id: str | None) -> list[str]:
    """
    Rollup starting at a (possibly absent) former parent, e.g. after a deletion.

    A former parent left without children loses its rolled-up dates, hours and
    progress before its ancestors are recomputed.
    """
    if parent_id is None or parent_id not in tree:
        return []
    changed: list[str] = []
    if clear_rollup(tree, parent_id):
        changed.append(parent_id)
    return changed + recompute_rollup(tree, parent_id)


def recompute_all(tree: ScheduleTree) -> list[str]:
    """Full post-order pass over the schedule."""
    return [node.id for node in tree.post_order() if recompute_node(tree, node.id)]


def find_rollup_inconsistencies(tree: ScheduleTree) -> list[str]:
    inconsistent: list[str] = []
    for node in tree.post_order():
        if node.is_leaf:
            continue
        expected = aggregate_children(tree.children_of(node.id))
        if (node.start, node.end, node.estimated_hours) != (expected.start, expected.end, expected.estimated_hours):
            inconsistent.append(node.id)
    return inconsistent


def check_rollup(tree: ScheduleTree) -> None:
    """Raise RollupInconsistencyError when a parent disagrees with its children."""
    inconsistent = find_rollup_inconsistencies(tree)
    if inconsistent:
        raise RollupInconsistencyError(inconsistent)
