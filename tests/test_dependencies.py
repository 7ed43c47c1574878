import pytest

from cronograma_engine.dependencies import DependencyGraph, find_cycle, toposort
from cronograma_engine.errors import (
    CycleError,
    DependencyNotFoundError,
    DuplicateDependencyError,
    InvalidFieldError,
    InvalidNodeReferenceError,
    SelfDependencyError,
)
from cronograma_engine.schedule_models import ScheduleNode
from cronograma_engine.tree_store import ScheduleTree


def _graph(task_ids=("A", "B", "C", "D")):
    tree = ScheduleTree("s1")
    tree.add(ScheduleNode(id="p", schedule_id="s1", kind="phase", name="P"))
    tree.add(ScheduleNode(id="e", schedule_id="s1", kind="work_breakdown", name="E", parent_id="p"))
    tree.add(ScheduleNode(id="a", schedule_id="s1", kind="activity", name="Act", parent_id="e"))
    for tid in task_ids:
        tree.add(ScheduleNode(id=tid, schedule_id="s1", kind="task", name=tid, parent_id="a"))
    return DependencyGraph(tree)


def test_add_dependency_assigns_id_and_schedule():
    graph = _graph()

    dep = graph.add("A", "B")

    assert dep.id
    assert dep.schedule_id == "s1"
    assert dep.type == "finish_to_start"
    assert dep.abbreviation == "FS"
    assert graph.incoming("B") == [dep]
    assert graph.outgoing("A") == [dep]


def test_self_dependency_is_rejected():
    graph = _graph()

    with pytest.raises(SelfDependencyError):
        graph.add("A", "A")


def test_duplicate_same_direction_is_rejected():
    graph = _graph()
    graph.add("A", "B", "start_to_start")

    with pytest.raises(DuplicateDependencyError):
        graph.add("A", "B", "start_to_start", lag_days=3)


def test_duplicate_check_ignores_direction():
    graph = _graph()
    graph.add("A", "B", "start_to_start")

    # The reverse edge would also close a cycle; duplicate detection wins.
    with pytest.raises(DuplicateDependencyError):
        graph.add("B", "A", "start_to_start")


def test_same_pair_with_another_type_is_allowed():
    graph = _graph()
    graph.add("A", "B", "finish_to_start")

    graph.add("A", "B", "start_to_start")

    assert len(graph) == 2


def test_cycle_is_rejected_and_graph_left_unchanged():
    graph = _graph()
    graph.add("A", "B")
    graph.add("B", "C")
    before = list(graph)

    with pytest.raises(CycleError) as excinfo:
        graph.add("C", "A")

    assert list(graph) == before
    path = excinfo.value.cycle.path
    assert path[0] == path[-1]
    assert set(path) == {"A", "B", "C"}


def test_two_node_cycle_with_different_type_is_rejected():
    graph = _graph()
    graph.add("A", "B", "finish_to_start")

    with pytest.raises(CycleError):
        graph.add("B", "A", "start_to_start")


def test_dependencies_only_link_tasks():
    graph = _graph()

    with pytest.raises(InvalidNodeReferenceError):
        graph.add("A", "a")
    with pytest.raises(InvalidNodeReferenceError):
        graph.add("missing", "A")


def test_unknown_type_and_fractional_lag_are_rejected():
    graph = _graph()

    with pytest.raises(InvalidFieldError):
        graph.add("A", "B", "finish_first")
    with pytest.raises(InvalidFieldError):
        graph.add("A", "B", "finish_to_start", 1.5)
    with pytest.raises(InvalidFieldError):
        graph.add("A", "B", "finish_to_start", True)
    assert len(graph) == 0


def test_explicit_duplicate_id_is_rejected():
    graph = _graph()
    graph.add("A", "B", dependency_id="d1")

    with pytest.raises(DuplicateDependencyError):
        graph.add("C", "D", dependency_id="d1")


def test_remove_unknown_dependency_raises():
    graph = _graph()

    with pytest.raises(DependencyNotFoundError):
        graph.remove("nope")


def test_remove_for_tasks_drops_touching_edges():
    graph = _graph()
    graph.add("A", "B")
    graph.add("B", "C")
    keep = graph.add("C", "D")

    dropped = graph.remove_for_tasks(["B"])

    assert len(dropped) == 2
    assert list(graph) == [keep]


def test_topological_order_respects_edges():
    graph = _graph()
    graph.add("C", "A")
    graph.add("A", "B")

    order = graph.topological_order()

    assert order.index("C") < order.index("A") < order.index("B")
    assert set(order) == {"A", "B", "C", "D"}


def test_find_cycle_and_toposort_helpers():
    successors = {"x": ["y"], "y": ["z"], "z": ["x"]}

    cycle = find_cycle(["x"], successors)

    assert cycle is not None
    assert str(cycle) == "x -> y -> z -> x"
    with pytest.raises(CycleError):
        toposort(["x", "y", "z"], successors)
    assert find_cycle(["x"], {"x": ["y"]}) is None
