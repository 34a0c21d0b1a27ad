"""Command-line entrypoint for working with exported diagrams."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .config.settings import load_settings
from .core.diagram import Diagram, Orientation
from .core.exceptions import FormatError, SwimlaneException
from .notation import export_diagram, import_diagram
from .store.store import DiagramStore
from .utils.logging import configure_logging


def _write(text: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
    else:
        sys.stdout.write(text + "\n")


def _read(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def describe(diagram: Diagram) -> str:
    """Human-readable summary of a diagram."""
    lines = [
        f"Title: {diagram.title}",
        f"Orientation: {diagram.orientation.value}",
        f"Lanes: {len(diagram.lanes)}",
    ]
    for lane in diagram.sorted_lanes:
        steps = diagram.steps_in_lane(lane.id)
        lines.append(f"  [{lane.order}] {lane.title} ({len(steps)} steps)")
        for step in steps:
            lines.append(f"      row {step.order}: {step.title} <{step.kind.value}>")
    lines.append(f"Connections: {len(diagram.connections)}")
    lines.append(f"Phase groups: {len(diagram.phase_groups)}")
    for phase in diagram.phase_groups:
        lines.append(f"  {phase.title}: rows {phase.start_row}-{phase.end_row}")
    return "\n".join(lines)


def cmd_new(args: argparse.Namespace, store: DiagramStore) -> int:
    store.initialize_diagram(args.orientation)
    diagram = store.diagram
    if args.title:
        diagram.title = args.title
    _write(export_diagram(diagram), args.output)
    return 0


def cmd_roundtrip(args: argparse.Namespace, store: DiagramStore) -> int:
    store.set_diagram(import_diagram(_read(args.input)), preserve_layout=args.preserve_layout)
    _write(export_diagram(store.diagram), args.output)
    return 0


def cmd_inspect(args: argparse.Namespace, store: DiagramStore) -> int:
    store.set_diagram(import_diagram(_read(args.input)), preserve_layout=True, label="inspect")
    diagram = store.diagram
    if args.json:
        _write(diagram.model_dump_json(by_alias=True, indent=2), None)
    else:
        _write(describe(diagram), None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="swimlane", description="Swimlane diagram tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    new = subparsers.add_parser("new", help="Write a default diagram as Mermaid")
    new.add_argument(
        "--orientation",
        choices=[item.value for item in Orientation],
        default=None,
        help="Lane direction (defaults to SWIMLANE_DEFAULT_ORIENTATION)",
    )
    new.add_argument("--title", help="Diagram title")
    new.add_argument("-o", "--output", help="Output file (default: stdout)")
    new.set_defaults(handler=cmd_new)

    roundtrip = subparsers.add_parser(
        "roundtrip", help="Import a Mermaid export, normalize it and export it again"
    )
    roundtrip.add_argument("input", help="Input file, or - for stdin")
    roundtrip.add_argument("-o", "--output", help="Output file (default: stdout)")
    roundtrip.add_argument(
        "--preserve-layout",
        action="store_true",
        help="Keep embedded step coordinates instead of recomputing them",
    )
    roundtrip.set_defaults(handler=cmd_roundtrip)

    inspect = subparsers.add_parser("inspect", help="Summarize a Mermaid export")
    inspect.add_argument("input", help="Input file, or - for stdin")
    inspect.add_argument("--json", action="store_true", help="Print the parsed diagram as JSON")
    inspect.set_defaults(handler=cmd_inspect)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except SwimlaneException as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)
    if getattr(args, "orientation", None) is None and args.command == "new":
        args.orientation = settings.default_orientation.value

    store = DiagramStore(settings=settings)
    try:
        return args.handler(args, store)
    except FormatError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
