from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass
from typing import Any

import yaml

from .engine import ScheduleEngine
from .errors import ScheduleError, ScheduleLoadError
from .schedule_models import (
    DEPENDENCY_TYPES,
    NODE_KINDS,
    SCHEDULE_KINDS,
    Catalog,
    CatalogDependency,
    CatalogItem,
    GenerationDefaults,
    Schedule,
)
from .working_calendar import (
    DEFAULT_CALENDAR_ID,
    DEFAULT_HOURS_PER_DAY,
    DEFAULT_WORKING_WEEKDAYS,
    CalendarStore,
    WorkingCalendar,
)

WEEKDAY_NAMES: dict[str, int] = {
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
    "sun": 7,
}

NODE_KEYS = {
    "id",
    "kind",
    "name",
    "parent",
    "start",
    "end",
    "estimated_hours",
    "progress",
    "status",
    "priority",
    "responsible",
    "source_item",
    "children",
}


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable YAML path strings like nodes[0].children[1]."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:  # pragma: no cover - trivial
        return ".".join(self.parts) if self.parts else "root"


def _read_yaml(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ScheduleLoadError(f"{path}: invalid YAML ({exc})") from exc


def load_calendar_store(path: str) -> CalendarStore:
    """Load the calendar configuration store from a YAML file."""
    return parse_calendar_store(_read_yaml(path), _Path())


def parse_calendar_store(data: Any, path: _Path) -> CalendarStore:
    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"default", "calendars"}, path)
    calendars_raw = data.get("calendars") or []
    if not isinstance(calendars_raw, list):
        raise ScheduleLoadError(f"{path.child('calendars')}: expected list")

    calendars = [_parse_calendar(raw, path.child(f"calendars[{idx}]")) for idx, raw in enumerate(calendars_raw)]
    ids = [cal.id for cal in calendars]
    if len(set(ids)) != len(ids):
        raise ScheduleLoadError(f"{path.child('calendars')}: duplicate calendar ids")

    default_id = data.get("default", DEFAULT_CALENDAR_ID)
    if not isinstance(default_id, str):
        raise ScheduleLoadError(f"{path.child('default')}: expected string calendar id")
    return CalendarStore(calendars, default_id=default_id)


def _parse_calendar(data: Any, path: _Path) -> WorkingCalendar:
    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: expected mapping for calendar")
    _assert_allowed_keys(data, {"id", "working_weekdays", "hours_per_day", "holidays"}, path)
    cal_id = _require_str(data, "id", path)

    weekdays = DEFAULT_WORKING_WEEKDAYS
    if "working_weekdays" in data:
        weekdays = frozenset(
            _parse_weekday(value, path.child(f"working_weekdays[{idx}]"))
            for idx, value in enumerate(_require_list(data, "working_weekdays", path))
        )

    hours_per_day = data.get("hours_per_day", DEFAULT_HOURS_PER_DAY)
    if not isinstance(hours_per_day, (int, float)) or hours_per_day <= 0:
        raise ScheduleLoadError(f"{path.child('hours_per_day')}: expected positive number")

    holidays_raw = _require_list(data, "holidays", path) if "holidays" in data else []
    holidays = tuple(
        sorted(_parse_date(value, path.child(f"holidays[{idx}]")) for idx, value in enumerate(holidays_raw))
    )
    return WorkingCalendar(id=cal_id, working_weekdays=weekdays, hours_per_day=float(hours_per_day), holidays=holidays)


def _parse_weekday(value: Any, path: _Path) -> int:
    if isinstance(value, int) and 1 <= value <= 7:
        return value
    if isinstance(value, str) and value[:3].lower() in WEEKDAY_NAMES:
        return WEEKDAY_NAMES[value[:3].lower()]
    raise ScheduleLoadError(f"{path}: expected weekday name (mon..sun) or ISO number 1-7")


def load_catalog(path: str) -> Catalog:
    """Load catalog items, optional item dependencies for advanced generation and generation defaults."""
    return parse_catalog(_read_yaml(path), _Path())


def parse_catalog(data: Any, path: _Path) -> Catalog:
    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"items", "dependencies", "defaults"}, path)
    items_raw = _require_list(data, "items", path)

    items: list[CatalogItem] = []
    for idx, raw in enumerate(items_raw):
        item_path = path.child(f"items[{idx}]")
        if not isinstance(raw, dict):
            raise ScheduleLoadError(f"{item_path}: expected mapping for catalog item")
        _assert_allowed_keys(
            raw, {"id", "name", "category", "quantity", "estimated_hours", "phase", "activity"}, item_path
        )
        items.append(
            CatalogItem(
                id=_require_id(raw, item_path),
                name=_require_str(raw, "name", item_path),
                category=_require_str(raw, "category", item_path),
                quantity=_optional_number(raw, "quantity", item_path, 1.0),
                estimated_hours=_optional_number(raw, "estimated_hours", item_path, 0.0),
                phase=_optional_str(raw, "phase", item_path),
                activity=_optional_str(raw, "activity", item_path),
            )
        )

    deps_raw = _require_list(data, "dependencies", path) if "dependencies" in data else []
    dependencies: list[CatalogDependency] = []
    for idx, raw in enumerate(deps_raw):
        dep_path = path.child(f"dependencies[{idx}]")
        source, target, dep_type, lag = _parse_edge(raw, dep_path)
        dependencies.append(CatalogDependency(source, target, dep_type, lag))  # type: ignore[arg-type]
    return Catalog(items, dependencies, _parse_defaults(data.get("defaults"), path.child("defaults")))


def _parse_defaults(raw: Any, path: _Path) -> GenerationDefaults:
    if raw is None:
        return GenerationDefaults()
    if not isinstance(raw, dict):
        raise ScheduleLoadError(f"{path}: expected mapping for generation defaults")
    _assert_allowed_keys(raw, {"task_days"}, path)
    task_days = _optional_number(raw, "task_days", path, GenerationDefaults.task_days)
    if task_days < 0:
        raise ScheduleLoadError(f"{path.child('task_days')}: must not be negative")
    return GenerationDefaults(task_days=task_days)


def load_schedule(path: str, calendars: CalendarStore | None = None) -> ScheduleEngine:
    """Load a schedule YAML file into a consistent ScheduleEngine."""
    return parse_schedule(_read_yaml(path), _Path(), calendars)


def parse_schedule(data: Any, path: _Path, calendars: CalendarStore | None = None) -> ScheduleEngine:
    """
    Build an engine from a schedule mapping.

    Nodes may be nested through `children` or listed flat with `parent`
    (parents first). A missing `kind` is inferred from the nesting depth.
    Every node and dependency goes through the engine, so hierarchy and graph
    rules apply exactly as for interactive edits.
    """

    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"schedule", "nodes", "dependencies"}, path)

    schedule = _parse_schedule_header(data.get("schedule"), path.child("schedule"))
    baseline, schedule.baseline = schedule.baseline, False
    store = calendars or CalendarStore()
    engine = ScheduleEngine(schedule, store.get(schedule.calendar_id))

    nodes_raw = _require_list(data, "nodes", path) if "nodes" in data else []
    for idx, raw in enumerate(nodes_raw):
        _load_node(engine, raw, path.child(f"nodes[{idx}]"), parent_id=None, depth=0)

    deps_raw = _require_list(data, "dependencies", path) if "dependencies" in data else []
    for idx, raw in enumerate(deps_raw):
        dep_path = path.child(f"dependencies[{idx}]")
        source, target, dep_type, lag = _parse_edge(raw, dep_path)
        dep_id = raw.get("id")
        if dep_id is not None and not isinstance(dep_id, str):
            raise ScheduleLoadError(f"{dep_path.child('id')}: expected string")
        try:
            engine.add_dependency(source, target, dep_type, lag, dependency_id=dep_id)
        except ScheduleError as exc:
            raise ScheduleLoadError(f"{dep_path}: {exc}") from exc

    # Baselines are frozen only once fully loaded.
    schedule.baseline = baseline
    return engine


def _parse_schedule_header(data: Any, path: _Path) -> Schedule:
    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: missing required mapping 'schedule'")
    _assert_allowed_keys(data, {"id", "kind", "baseline", "calendar_id", "project_ref"}, path)
    kind = data.get("kind", "commercial")
    if kind not in SCHEDULE_KINDS:
        raise ScheduleLoadError(f"{path.child('kind')}: expected one of {list(SCHEDULE_KINDS)}")
    baseline = data.get("baseline", False)
    if not isinstance(baseline, bool):
        raise ScheduleLoadError(f"{path.child('baseline')}: expected boolean")
    return Schedule(
        id=_require_id(data, path),
        kind=kind,
        baseline=baseline,
        calendar_id=_optional_str(data, "calendar_id", path),
        project_ref=_optional_str(data, "project_ref", path),
    )


def _load_node(engine: ScheduleEngine, data: Any, path: _Path, parent_id: str | None, depth: int) -> None:
    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: expected mapping for node")
    _assert_allowed_keys(data, NODE_KEYS, path)

    if "parent" in data:
        if parent_id is not None:
            raise ScheduleLoadError(f"{path}: nested nodes must not declare 'parent'")
        parent_id = _optional_str(data, "parent", path)
        if parent_id is not None and parent_id in engine.tree:
            depth = engine.tree.depth(parent_id) + 1

    kind = data.get("kind")
    if kind is None:
        if depth >= len(NODE_KINDS):
            raise ScheduleLoadError(f"{path}: nesting deeper than {len(NODE_KINDS)} levels")
        kind = NODE_KINDS[depth]

    fields = dict(
        node_id=_require_id(data, path),
        start=_optional_date(data, "start", path),
        end=_optional_date(data, "end", path),
        estimated_hours=_optional_number(data, "estimated_hours", path, 0.0),
        progress=_optional_number(data, "progress", path, 0.0),
        status=data.get("status", "planned"),
        priority=data.get("priority", "medium"),
        responsible_ref=_optional_str(data, "responsible", path),
        source_item_ref=_optional_str(data, "source_item", path),
    )
    name = _require_str(data, "name", path)
    try:
        node = engine.create_node(kind, name, parent_id, **fields)
    except ScheduleError as exc:
        raise ScheduleLoadError(f"{path}: {exc}") from exc

    children_raw = _require_list(data, "children", path) if "children" in data else []
    for idx, child in enumerate(children_raw):
        _load_node(engine, child, path.child(f"children[{idx}]"), parent_id=node.id, depth=depth + 1)


def _parse_edge(data: Any, path: _Path) -> tuple[str, str, str, int]:
    if not isinstance(data, dict):
        raise ScheduleLoadError(f"{path}: expected mapping for dependency")
    _assert_allowed_keys(data, {"id", "source", "target", "type", "lag_days"}, path)
    dep_type = data.get("type", "finish_to_start")
    if dep_type not in DEPENDENCY_TYPES:
        raise ScheduleLoadError(f"{path.child('type')}: expected one of {list(DEPENDENCY_TYPES)}")
    lag = data.get("lag_days", 0)
    if not isinstance(lag, int) or isinstance(lag, bool):
        raise ScheduleLoadError(f"{path.child('lag_days')}: expected integer")
    return _require_str(data, "source", path), _require_str(data, "target", path), dep_type, lag


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise ScheduleLoadError(f"{path}: unexpected fields {extras}")


def _require_value(data: dict[str, Any], key: str, path: _Path) -> Any:
    if key not in data:
        raise ScheduleLoadError(f"{path}: missing required field '{key}'")
    return data[key]


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    value = _require_value(data, key, path)
    if not isinstance(value, str) or not value.strip():
        raise ScheduleLoadError(f"{path.child(key)}: expected non-empty string")
    return value


def _require_id(data: dict[str, Any], path: _Path) -> str:
    value = _require_value(data, "id", path)
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _require_str(data, "id", path)


def _require_list(data: dict[str, Any], key: str, path: _Path) -> list[Any]:
    value = _require_value(data, key, path)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ScheduleLoadError(f"{path.child(key)}: expected list")
    return value


def _optional_str(data: dict[str, Any], key: str, path: _Path) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ScheduleLoadError(f"{path.child(key)}: expected string")
    return value


def _optional_number(data: dict[str, Any], key: str, path: _Path, default: float) -> float:
    value = data.get(key, default)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ScheduleLoadError(f"{path.child(key)}: expected number")
    return float(value)


def _optional_date(data: dict[str, Any], key: str, path: _Path) -> _dt.date | None:
    if data.get(key) is None:
        return None
    return _parse_date(data[key], path.child(key))


def _parse_date(value: Any, path: _Path) -> _dt.date:
    # yaml.safe_load already turns unquoted ISO dates into date objects.
    if isinstance(value, _dt.datetime):
        return value.date()
    if isinstance(value, _dt.date):
        return value
    if not isinstance(value, str):
        raise ScheduleLoadError(f"{path}: expected YYYY-MM-DD string")
    try:
        parsed = _dt.date.fromisoformat(value)
    except ValueError as exc:
        raise ScheduleLoadError(f"{path}: expected YYYY-MM-DD string") from exc
    return parsed
