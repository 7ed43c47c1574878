from __future__ import annotations

from dataclasses import dataclass


class ScheduleError(Exception):
    """Base class for every error raised by the schedule engine."""


class InvalidNodeReferenceError(ScheduleError):
    """Raised when an id does not resolve to a node of the expected kind."""


class InvalidHierarchyError(ScheduleError):
    """Raised when a node kind is not exactly one level below its parent's kind."""


class InvalidFieldError(ScheduleError):
    """Raised for out-of-range or unknown node/dependency field values."""


class SelfDependencyError(ScheduleError):
    """Raised when a dependency would link a task to itself."""


class DuplicateDependencyError(ScheduleError):
    """Raised when an equivalent dependency already exists."""


class DependencyNotFoundError(ScheduleError):
    """Raised when removing a dependency id that is not in the schedule."""


@dataclass(frozen=True)
class Cycle:
    """Represents a detected cycle path for error reporting."""

    path: list[str]

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return " -> ".join(self.path)


class CycleError(ScheduleError):
    """Raised when a dependency would close a cycle in the task graph."""

    def __init__(self, cycle: Cycle):
        super().__init__(f"Dependency cycle detected: {cycle}")
        self.cycle = cycle


class RollupInconsistencyError(ScheduleError):
    """Raised when parent dates/hours no longer match their children. Recoverable."""

    def __init__(self, node_ids: list[str]):
        super().__init__(f"Rollup inconsistent for nodes: {', '.join(node_ids)}")
        self.node_ids = node_ids


class ScheduleLoadError(ScheduleError):
    """Raised when a YAML schedule, catalog or calendar file is malformed."""


class ReadOnlyScheduleError(ScheduleError):
    """Raised when mutating a baseline schedule."""
