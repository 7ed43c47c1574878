import datetime as dt

import pytest

from cronograma_engine.engine import ScheduleEngine
from cronograma_engine.errors import (
    CycleError,
    DependencyNotFoundError,
    InvalidFieldError,
    InvalidHierarchyError,
    ReadOnlyScheduleError,
)
from cronograma_engine.schedule_models import CatalogItem, Schedule

MONDAY = dt.date(2024, 1, 1)


def _engine():
    engine = ScheduleEngine(Schedule(id="s1"))
    engine.create_node("phase", "Phase", node_id="p")
    engine.create_node("work_breakdown", "Element", "p", node_id="e")
    engine.create_node("activity", "Install", "e", node_id="a1")
    engine.create_node("activity", "Test", "e", node_id="a2")
    engine.create_node("task", "A", "a1", node_id="A", start=MONDAY, estimated_hours=8)
    engine.create_node("task", "B", "a1", node_id="B", start=MONDAY, estimated_hours=8)
    engine.create_node("task", "C", "a2", node_id="C", start=MONDAY, estimated_hours=16)
    return engine


def test_create_node_rolls_up_to_every_ancestor():
    engine = _engine()

    phase = engine.node("p")

    assert (phase.start, phase.end) == (MONDAY, dt.date(2024, 1, 3))
    assert phase.estimated_hours == 32


def test_leaf_end_is_derived_from_start_and_hours():
    engine = _engine()

    engine.update_node("A", estimated_hours=40, end=dt.date(2024, 1, 2))

    assert engine.node("A").end == dt.date(2024, 1, 8)
    assert engine.node("p").end == dt.date(2024, 1, 8)


def test_hierarchy_violation_is_rejected():
    engine = _engine()

    with pytest.raises(InvalidHierarchyError):
        engine.create_node("task", "Loose", "e")


@pytest.mark.parametrize(
    "changes",
    [{"progress": 120}, {"estimated_hours": -1}, {"status": "done"}, {"priority": "urgent"}, {"name": " "}],
)
def test_invalid_field_values_are_rejected_without_change(changes):
    engine = _engine()
    before = engine.node("A")

    with pytest.raises(InvalidFieldError):
        engine.update_node("A", **changes)

    assert engine.node("A") == before


def test_unknown_update_field_is_rejected():
    engine = _engine()

    with pytest.raises(InvalidFieldError):
        engine.update_node("A", parent_id="a2")


def test_delete_cascades_subtree_and_dependencies():
    engine = _engine()
    engine.add_dependency("A", "C")
    engine.add_dependency("B", "C", "start_to_start")
    keep = engine.add_dependency("A", "B")

    removed = engine.delete_node("a2")

    assert removed == ["C", "a2"]
    assert engine.dependencies() == [keep]
    assert engine.node("e").estimated_hours == 16
    assert engine.node("e").end == engine.node("a1").end


def test_deleting_last_child_clears_stale_rollup():
    engine = _engine()

    engine.delete_node("C")

    emptied = engine.node("a2")
    assert (emptied.start, emptied.end, emptied.estimated_hours, emptied.progress) == (None, None, 0, 0)
    assert engine.node("e").estimated_hours == 16
    assert engine.node("p").estimated_hours == 16
    assert engine.node("p").end == dt.date(2024, 1, 2)
    assert engine.metrics().total_hours == engine.node("p").estimated_hours


def test_moving_parent_start_shifts_its_tasks():
    engine = _engine()
    engine.add_dependency("A", "C")

    engine.update_node("a1", start=dt.date(2024, 1, 8))

    assert (engine.node("A").start, engine.node("A").end) == (dt.date(2024, 1, 8), dt.date(2024, 1, 9))
    assert (engine.node("B").start, engine.node("B").end) == (dt.date(2024, 1, 8), dt.date(2024, 1, 9))
    assert engine.node("a1").start == dt.date(2024, 1, 8)
    assert (engine.node("C").start, engine.node("C").end) == (dt.date(2024, 1, 9), dt.date(2024, 1, 11))
    assert engine.node("p").start == dt.date(2024, 1, 8)


def test_moving_parent_start_earlier_keeps_hours():
    engine = _engine()

    engine.update_node("a1", start=dt.date(2023, 12, 26), name="Install early")

    assert (engine.node("A").start, engine.node("A").end) == (dt.date(2023, 12, 26), dt.date(2023, 12, 27))
    assert engine.node("A").estimated_hours == 8
    assert engine.node("a1").name == "Install early"
    assert engine.node("p").start == dt.date(2023, 12, 26)


@pytest.mark.parametrize(
    "changes",
    [{"estimated_hours": 5}, {"end": dt.date(2024, 2, 1)}, {"progress": 50}, {"start": None}],
)
def test_rolled_up_fields_cannot_be_set_on_parents(changes):
    engine = _engine()
    before = engine.node("a1")

    with pytest.raises(InvalidFieldError):
        engine.update_node("a1", **changes)

    assert engine.node("a1") == before
    assert engine.node("A").start == MONDAY


def test_rejected_cycle_leaves_schedule_unchanged():
    engine = _engine()
    engine.add_dependency("A", "B")
    engine.add_dependency("B", "C")
    nodes_before = engine.nodes()
    deps_before = engine.dependencies()

    with pytest.raises(CycleError):
        engine.add_dependency("C", "A")

    assert engine.nodes() == nodes_before
    assert engine.dependencies() == deps_before


def test_remove_dependency():
    engine = _engine()
    dep = engine.add_dependency("A", "B")

    engine.remove_dependency(dep.id)

    assert engine.dependencies() == []
    with pytest.raises(DependencyNotFoundError):
        engine.remove_dependency(dep.id)


def test_reorder_siblings():
    engine = _engine()

    engine.reorder_siblings("e", ["a2", "a1"])

    assert engine.node("e").children == ["a2", "a1"]
    assert engine.node("a2").order == 1


def test_snapshots_do_not_alias_engine_state():
    engine = _engine()

    snapshot = engine.node("A")
    snapshot.name = "changed"

    assert engine.node("A").name == "A"


def test_generate_replaces_content():
    engine = _engine()

    nodes = engine.generate_from_catalog(
        [CatalogItem(id="i1", name="Survey", category="Install", estimated_hours=8)], MONDAY
    )

    assert [node.kind for node in nodes] == ["phase", "work_breakdown", "activity", "task"]
    assert "A" not in engine.tree
    assert all(node.schedule_id == "s1" for node in nodes)


def test_rejected_generation_keeps_previous_content():
    engine = _engine()
    before = engine.nodes()

    with pytest.raises(InvalidFieldError):
        engine.generate_from_catalog([], MONDAY)
    with pytest.raises(InvalidFieldError):
        engine.generate_from_catalog([CatalogItem(id="i1", name="X", category="Y")], MONDAY, mode="quick")

    assert engine.nodes() == before


def test_generated_schedule_stays_consistent_under_edits():
    engine = ScheduleEngine(Schedule(id="s1"))
    items = [
        CatalogItem(id="i1", name="Survey", category="Install", estimated_hours=8),
        CatalogItem(id="i2", name="Wiring", category="Install", estimated_hours=16),
    ]
    engine.generate_from_catalog(items, MONDAY)
    first, second = engine.tree.tasks()

    engine.update_node(first.id, estimated_hours=24)

    assert engine.node(second.id).start == dt.date(2024, 1, 5)
    assert engine.export().warnings == []


def test_reset_clears_nodes_and_dependencies():
    engine = _engine()
    engine.add_dependency("A", "B")

    engine.reset()

    assert engine.nodes() == []
    assert engine.dependencies() == []


def test_metrics_summarise_tasks():
    engine = _engine()
    engine.update_node("A", progress=100, status="completed")
    engine.create_node("task", "Sign-off", "a2", node_id="M", start=MONDAY)

    metrics = engine.metrics()

    assert metrics.node_count == 8
    assert metrics.task_count == 4
    assert metrics.total_hours == 32
    assert metrics.progress == 25.0
    assert metrics.tasks_by_status == {"completed": 1, "planned": 3}
    assert metrics.milestones == 1


def test_export_flattens_schedule_and_reports_warnings():
    engine = _engine()
    engine.add_dependency("A", "B", dependency_id="d1")
    engine.update_node("B", status="completed", progress=50)

    bundle = engine.export()

    assert [row.node_id for row in bundle.nodes] == ["p", "e", "a1", "A", "B", "a2", "C"]
    assert bundle.dependencies[0].dependency_id == "d1"
    assert len(bundle.warnings) == 1
    assert "completed" in bundle.warnings[0]


def test_export_repairs_stale_rollup():
    engine = _engine()
    engine.tree.get("p").end = dt.date(2030, 1, 1)

    bundle = engine.export()

    assert bundle.warnings == []
    assert engine.node("p").end == dt.date(2024, 1, 3)


def test_export_warns_on_violated_constraint():
    engine = _engine()
    engine.add_dependency("A", "B")
    engine.tree.get("B").start = MONDAY

    bundle = engine.export()

    assert any("FS dependency violated" in warning for warning in bundle.warnings)


def test_baseline_is_read_only_copy():
    engine = _engine()
    engine.add_dependency("A", "B")

    baseline = engine.snapshot_baseline()

    assert baseline.schedule.baseline is True
    assert baseline.schedule.id == "s1-baseline"
    assert {node.id for node in baseline.nodes()} == {node.id for node in engine.nodes()}
    assert all(node.schedule_id == "s1-baseline" for node in baseline.nodes())
    with pytest.raises(ReadOnlyScheduleError):
        baseline.update_node("A", progress=10)
    with pytest.raises(ReadOnlyScheduleError):
        baseline.add_dependency("A", "C")

    engine.update_node("A", estimated_hours=16)
    assert baseline.node("A").estimated_hours == 8
