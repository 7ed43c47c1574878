import datetime as dt
import textwrap

import pytest

from cronograma_engine.errors import CycleError, ReadOnlyScheduleError, ScheduleLoadError
from cronograma_engine.parse_schedule import load_calendar_store, load_catalog, load_schedule

SCHEDULE_YAML = """
schedule:
  id: cot-001
  kind: commercial
  calendar_id: plant
nodes:
  - id: p1
    name: Engineering
    children:
      - id: e1
        name: Electrical
        children:
          - id: a1
            name: Install
            children:
              - id: t1
                name: Survey
                start: 2024-01-01
                estimated_hours: 8
              - id: t2
                name: Wiring
                start: "2024-01-01"
                estimated_hours: 16
                priority: high
                responsible: ana
dependencies:
  - id: d1
    source: t1
    target: t2
    type: finish_to_start
    lag_days: 1
"""

CALENDARS_YAML = """
default: office
calendars:
  - id: office
  - id: plant
    working_weekdays: [mon, tue, wed, thu, fri, sat]
    hours_per_day: 8
    holidays: [2024-01-02]
"""


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return str(path)


def test_load_calendar_store(tmp_path):
    store = load_calendar_store(_write(tmp_path, "calendars.yaml", CALENDARS_YAML))

    plant = store.get("plant")
    assert plant.working_weekdays == frozenset({1, 2, 3, 4, 5, 6})
    assert plant.holidays == (dt.date(2024, 1, 2),)
    assert store.default().id == "office"


def test_unknown_weekday_name_is_rejected(tmp_path):
    text = "calendars:\n  - id: x\n    working_weekdays: [funday]\n"

    with pytest.raises(ScheduleLoadError, match=r"calendars\[0\]\.working_weekdays\[0\]"):
        load_calendar_store(_write(tmp_path, "calendars.yaml", text))


def test_load_schedule_builds_nested_tree(tmp_path):
    engine = load_schedule(_write(tmp_path, "schedule.yaml", SCHEDULE_YAML))

    assert [node.kind for node in engine.nodes()] == ["phase", "work_breakdown", "activity", "task", "task"]
    t2 = engine.node("t2")
    assert t2.priority == "high"
    assert t2.responsible_ref == "ana"
    # FS +1 from Tuesday's end moves Wiring to Wednesday.
    assert t2.start == dt.date(2024, 1, 3)
    assert engine.dependencies()[0].id == "d1"
    assert engine.node("p1").estimated_hours == 24


def test_load_schedule_uses_calendar_from_store(tmp_path):
    store = load_calendar_store(_write(tmp_path, "calendars.yaml", CALENDARS_YAML))

    engine = load_schedule(_write(tmp_path, "schedule.yaml", SCHEDULE_YAML), store)

    assert engine.calendar.id == "plant"
    # The holiday on Jan 2 pushes Survey's end to Jan 3.
    assert engine.node("t1").end == dt.date(2024, 1, 3)


def test_flat_nodes_with_parent(tmp_path):
    text = """
    schedule: {id: s1}
    nodes:
      - {id: p1, name: P}
      - {id: e1, name: E, parent: p1}
      - {id: a1, name: A, parent: e1}
      - {id: t1, name: T, parent: a1, start: 2024-01-01, estimated_hours: 8}
    """

    engine = load_schedule(_write(tmp_path, "schedule.yaml", text))

    assert engine.node("t1").kind == "task"
    assert engine.node("p1").end == dt.date(2024, 1, 2)


def test_hierarchy_errors_carry_yaml_path(tmp_path):
    text = """
    schedule: {id: s1}
    nodes:
      - id: p1
        name: P
        children:
          - {id: t1, name: T, kind: task}
    """

    with pytest.raises(ScheduleLoadError, match=r"nodes\[0\]\.children\[0\]"):
        load_schedule(_write(tmp_path, "schedule.yaml", text))


def test_cyclic_dependencies_are_rejected_with_cause(tmp_path):
    text = SCHEDULE_YAML + "  - {source: t2, target: t1, type: start_to_start}\n"

    with pytest.raises(ScheduleLoadError, match=r"dependencies\[1\]") as excinfo:
        load_schedule(_write(tmp_path, "schedule.yaml", text))
    assert isinstance(excinfo.value.__cause__, CycleError)


def test_unexpected_fields_are_rejected(tmp_path):
    text = "schedule: {id: s1}\nnodes:\n  - {id: p1, name: P, colour: red}\n"

    with pytest.raises(ScheduleLoadError, match="unexpected fields"):
        load_schedule(_write(tmp_path, "schedule.yaml", text))


def test_invalid_yaml_is_a_load_error(tmp_path):
    with pytest.raises(ScheduleLoadError):
        load_schedule(_write(tmp_path, "schedule.yaml", "schedule: [unclosed"))


def test_baseline_schedule_is_read_only_after_load(tmp_path):
    text = SCHEDULE_YAML.replace("kind: commercial", "kind: commercial\n  baseline: true")

    engine = load_schedule(_write(tmp_path, "schedule.yaml", text))

    assert len(engine.dependencies()) == 1
    with pytest.raises(ReadOnlyScheduleError):
        engine.update_node("t1", progress=50)


def test_load_catalog_with_dependencies(tmp_path):
    text = """
    items:
      - {id: 101, name: Survey, category: Install, estimated_hours: 8}
      - {id: i2, name: Wiring, category: Install, estimated_hours: 4, quantity: 3, phase: Build}
    dependencies:
      - {source: "101", target: i2, type: start_to_start, lag_days: 2}
    """

    catalog = load_catalog(_write(tmp_path, "catalog.yaml", text))

    assert [item.id for item in catalog.items] == ["101", "i2"]
    assert catalog.items[1].total_hours == 12
    assert catalog.items[1].phase == "Build"
    assert catalog.dependencies[0].type == "start_to_start"
    assert catalog.dependencies[0].lag_days == 2
    assert catalog.defaults.task_days == 2


def test_catalog_item_requires_name(tmp_path):
    text = "items:\n  - {id: i1, category: Install}\n"

    with pytest.raises(ScheduleLoadError, match=r"items\[0\]: missing required field 'name'"):
        load_catalog(_write(tmp_path, "catalog.yaml", text))


def test_catalog_generation_defaults(tmp_path):
    text = """
    defaults: {task_days: 3}
    items:
      - {id: i1, name: Handover, category: Closing}
    """

    catalog = load_catalog(_write(tmp_path, "catalog.yaml", text))

    assert catalog.defaults.task_days == 3
    assert catalog.dependencies == []


def test_negative_default_task_days_are_rejected(tmp_path):
    text = "defaults: {task_days: -1}\nitems:\n  - {id: i1, name: A, category: B}\n"

    with pytest.raises(ScheduleLoadError, match=r"defaults\.task_days"):
        load_catalog(_write(tmp_path, "catalog.yaml", text))
