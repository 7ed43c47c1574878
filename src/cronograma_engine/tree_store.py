from __future__ import annotations

import logging
from typing import Iterable, Iterator

from .errors import InvalidHierarchyError, InvalidNodeReferenceError
from .schedule_models import NODE_KINDS, ScheduleNode, kind_level

logger = logging.getLogger(__name__)


class ScheduleTree:
    """
    Flat arena of ScheduleNodes keyed by id.

    Parents hold ordered child id lists; the implicit root holds the phases in
    `root_ids`. Nodes only know their parent by id.
    """

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        self.nodes: dict[str, ScheduleNode] = {}
        self.root_ids: list[str] = []

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> ScheduleNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise InvalidNodeReferenceError(f"Node '{node_id}' does not exist in schedule '{self.schedule_id}'")
        return node

    def get_task(self, node_id: str) -> ScheduleNode:
        node = self.nodes.get(node_id)
        if node is None or node.kind != "task":
            raise InvalidNodeReferenceError(f"'{node_id}' is not a task of schedule '{self.schedule_id}'")
        return node

    def sibling_ids(self, parent_id: str | None) -> list[str]:
        if parent_id is None:
            return self.root_ids
        return self.get(parent_id).children

    def children_of(self, node_id: str | None) -> list[ScheduleNode]:
        return [self.nodes[cid] for cid in self.sibling_ids(node_id)]

    def validate_placement(self, kind: str, parent_id: str | None) -> None:
        """Reject a node whose kind is not exactly one level below its parent's."""
        if kind not in NODE_KINDS:
            raise InvalidHierarchyError(f"Unknown node kind '{kind}'")
        level = kind_level(kind)
        if parent_id is None:
            if level != 0:
                raise InvalidHierarchyError(f"A {kind} needs a parent; only phases hang from the schedule root")
            return
        parent = self.get(parent_id)
        if kind_level(parent.kind) != level - 1:
            raise InvalidHierarchyError(
                f"A {kind} cannot be placed under {parent.kind} '{parent_id}' "
                f"(expected parent kind {NODE_KINDS[level - 1] if level else 'root'})"
            )

    def add(self, node: ScheduleNode, position: int | None = None) -> ScheduleNode:
        """
        Insert `node` under its parent and renumber sibling order.

        `position` is a 0-based slot among siblings; None appends.
        """

        if node.id in self.nodes:
            raise InvalidNodeReferenceError(f"Duplicate node id '{node.id}'")
        self.validate_placement(node.kind, node.parent_id)

        node.schedule_id = self.schedule_id
        siblings = self.sibling_ids(node.parent_id)
        self.nodes[node.id] = node
        if position is None or position >= len(siblings):
            siblings.append(node.id)
        else:
            siblings.insert(max(position, 0), node.id)
        self._renumber(siblings)
        logger.debug("Added %s '%s' under %s", node.kind, node.id, node.parent_id or "<root>")
        return node

    def remove_subtree(self, node_id: str) -> list[str]:
        """Delete a node and all its descendants; return the removed ids (post-order)."""
        node = self.get(node_id)
        removed = [n.id for n in self.post_order(node_id)]
        siblings = self.sibling_ids(node.parent_id)
        siblings.remove(node_id)
        self._renumber(siblings)
        for rid in removed:
            del self.nodes[rid]
        logger.debug("Removed subtree of '%s' (%d nodes)", node_id, len(removed))
        return removed

    def reorder_siblings(self, parent_id: str | None, ordered_ids: list[str]) -> None:
        """Rewrite sibling order atomically; `ordered_ids` must permute the current children."""
        siblings = self.sibling_ids(parent_id)
        if len(ordered_ids) != len(siblings) or set(ordered_ids) != set(siblings):
            raise InvalidNodeReferenceError(
                f"Reorder of '{parent_id or '<root>'}' must list exactly its current children"
            )
        siblings[:] = ordered_ids
        self._renumber(siblings)

    def clear(self) -> None:
        self.nodes.clear()
        self.root_ids.clear()

    def ancestors(self, node_id: str) -> Iterator[ScheduleNode]:
        """Yield the parent chain of `node_id`, nearest first."""
        parent_id = self.get(node_id).parent_id
        while parent_id is not None:
            parent = self.nodes[parent_id]
            yield parent
            parent_id = parent.parent_id

    def depth(self, node_id: str) -> int:
        return sum(1 for _ in self.ancestors(node_id))

    def walk(self, node_id: str | None = None) -> Iterator[ScheduleNode]:
        """Pre-order traversal in sibling order; None walks the whole schedule."""
        stack = list(reversed(self.sibling_ids(node_id))) if node_id is None else [node_id]
        while stack:
            current = self.nodes[stack.pop()]
            yield current
            stack.extend(reversed(current.children))

    def post_order(self, node_id: str | None = None) -> Iterator[ScheduleNode]:
        """Children before parents; None covers the whole schedule."""
        start = list(self.sibling_ids(node_id)) if node_id is None else [node_id]
        stack: list[tuple[str, bool]] = [(nid, False) for nid in reversed(start)]
        while stack:
            current_id, expanded = stack.pop()
            if expanded:
                yield self.nodes[current_id]
                continue
            stack.append((current_id, True))
            stack.extend((cid, False) for cid in reversed(self.nodes[current_id].children))

    def tasks(self) -> list[ScheduleNode]:
        return [node for node in self.walk() if node.kind == "task"]

    def wbs_codes(self) -> dict[str, str]:
        """Outline codes (1, 1.1, 1.1.2 ...) derived from sibling order."""
        codes: dict[str, str] = {}

        def visit(ids: Iterable[str], prefix: str) -> None:
            for idx, nid in enumerate(ids, start=1):
                code = f"{prefix}{idx}"
                codes[nid] = code
                visit(self.nodes[nid].children, f"{code}.")

        visit(self.root_ids, "")
        return codes

    def _renumber(self, siblings: list[str]) -> None:
        for idx, sid in enumerate(siblings, start=1):
            self.nodes[sid].order = idx
