from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from .engine import GENERATION_MODES, ScheduleEngine
from .errors import ScheduleError
from .parse_schedule import load_calendar_store, load_catalog, load_schedule
from .projection import GRANULARITIES
from .schedule_models import Schedule
from .working_calendar import CalendarStore


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cronograma-engine",
        description="Schedule engine for phase/work-breakdown/activity/task cronogramas",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--calendars", help="Path to calendar store YAML")
    parser.add_argument("--out", help="Write YAML output to this path instead of stdout")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a schedule from a catalog YAML")
    gen.add_argument("catalog", help="Path to catalog YAML")
    gen.add_argument("--start", type=_parse_date, required=True, help="Schedule start date (YYYY-MM-DD)")
    gen.add_argument("--mode", choices=GENERATION_MODES, default="default", help="Generation mode")
    gen.add_argument("--window-end", type=_parse_date, help="Window end for quick mode (YYYY-MM-DD)")
    gen.add_argument("--schedule-id", default="generated", help="Id of the generated schedule")
    gen.add_argument("--calendar-id", help="Calendar id from the calendar store")

    validate = sub.add_parser("validate", help="Load a schedule and report consistency warnings")
    validate.add_argument("schedule", help="Path to schedule YAML")

    export = sub.add_parser("export", help="Print the flattened node and dependency rows")
    export.add_argument("schedule", help="Path to schedule YAML")

    project = sub.add_parser("project", help="Print the Gantt projection of a schedule")
    project.add_argument("schedule", help="Path to schedule YAML")
    project.add_argument("--window-start", type=_parse_date, help="Window start (defaults to schedule start)")
    project.add_argument("--window-end", type=_parse_date, help="Window end (defaults to schedule end)")
    project.add_argument("--granularity", choices=GRANULARITIES, default="week", help="Tick granularity")

    recalc = sub.add_parser("recalculate", help="Re-run dependency propagation and rollup")
    recalc.add_argument("schedule", help="Path to schedule YAML")
    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _plain(value: Any) -> Any:
    """Convert dataclass output into YAML-friendly builtins."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {key: _plain(item) for key, item in dataclasses.asdict(value).items()}
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dt.date):
        return value.isoformat()
    return value


def schedule_document(engine: ScheduleEngine) -> dict[str, Any]:
    """Nested schedule mapping in the same shape `load_schedule` reads."""
    tree = engine.tree

    def node_doc(node_id: str) -> dict[str, Any]:
        node = tree.nodes[node_id]
        doc: dict[str, Any] = {"id": node.id, "kind": node.kind, "name": node.name}
        if node.is_leaf:
            doc["start"] = _plain(node.start)
            doc["end"] = _plain(node.end)
            doc["estimated_hours"] = node.estimated_hours
            doc["progress"] = node.progress
        doc["status"] = node.status
        doc["priority"] = node.priority
        if node.responsible_ref is not None:
            doc["responsible"] = node.responsible_ref
        if node.source_item_ref is not None:
            doc["source_item"] = node.source_item_ref
        if node.children:
            doc["children"] = [node_doc(cid) for cid in node.children]
        return doc

    header = {key: value for key, value in _plain(engine.schedule).items() if value is not None}
    return {
        "schedule": header,
        "nodes": [node_doc(root_id) for root_id in tree.root_ids],
        "dependencies": [
            {
                "id": dep.id,
                "source": dep.source_id,
                "target": dep.target_id,
                "type": dep.type,
                "lag_days": dep.lag_days,
            }
            for dep in engine.dependencies()
        ],
    }


def _emit(document: Any, out: str | None) -> None:
    text = yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    if out is None:
        sys.stdout.write(text)
        return
    out_path = Path(out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text, encoding="utf-8")


def _run(args: argparse.Namespace, calendars: CalendarStore) -> Any:
    if args.command == "generate":
        catalog = load_catalog(args.catalog)
        schedule = Schedule(id=args.schedule_id, calendar_id=args.calendar_id)
        engine = ScheduleEngine(schedule, calendars.get(args.calendar_id))
        engine.generate_from_catalog(
            catalog.items, args.start, args.mode, args.window_end, catalog.dependencies, catalog.defaults
        )
        return schedule_document(engine)

    engine = load_schedule(args.schedule, calendars)
    if args.command == "validate":
        bundle = engine.export()
        return {"schedule": engine.schedule.id, "metrics": _plain(engine.metrics()), "warnings": bundle.warnings}
    if args.command == "export":
        bundle = engine.export()
        return _plain(bundle)
    if args.command == "project":
        return _plain(engine.get_projection(args.window_start, args.window_end, args.granularity))
    engine.recalculate()
    return schedule_document(engine)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        calendars = load_calendar_store(args.calendars) if args.calendars else CalendarStore()
        document = _run(args, calendars)
    except ScheduleError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError as exc:
        print(f"Error: file not found: {exc.filename}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except Exception as exc:  # Unexpected
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 1

    try:
        _emit(document, args.out)
    except OSError as exc:
        print(f"Error: cannot write output: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
