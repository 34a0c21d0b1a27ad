"""Mermaid flowchart → Diagram import.

Two strategies, tried in order:

1. Snapshot: the ``swimlane-json`` record holds ``lanes``, ``steps`` and
   ``connections`` arrays. Each entity is sanitized and used directly.
2. Outline: subgraph blocks, node lines and arrows are scanned, each paired
   with the tag record on the following line when there is one. Missing
   records are synthesized from the outline.

Tag records are parsed one by one; a record whose JSON does not parse is
treated as absent.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..core.diagram import Diagram, Lane, Orientation, Step, StepKind, utc_now
from ..core.exceptions import FormatError
from ..core.invariants import normalize_lane_orders, reflow_all, sort_steps
from ..utils.logging import get_logger
from .export import HEADER_MARKER
from .sanitize import (
    dedupe_connections,
    sanitize_connection,
    sanitize_lane,
    sanitize_lanes,
    sanitize_phase_groups,
    sanitize_step,
)

logger = get_logger(__name__)

IMPORTED_TITLE = "Imported swimlane"

_TAG = re.compile(
    r"^\s*%%\s*(diagram-meta|swimlane-json|phase-meta|lane-meta|step-meta|edge-meta)\s*:(.*)$"
)
_FLOWCHART = re.compile(r"^\s*(?:flowchart|graph)\s+(TD|TB|BT|LR|RL)\b", re.IGNORECASE)
_SUBGRAPH = re.compile(r'^\s*subgraph\s+([A-Za-z0-9_-]+)\s*\["((?:[^"\\]|\\.)*)"\]\s*$')
_END = re.compile(r"^\s*end\s*$")
_NODE = re.compile(
    r'^\s*([A-Za-z0-9_-]+)\s*'
    r'(?:\[\("(?P<db>(?:[^"\\]|\\.)*)"\)\]'
    r'|\[\\"(?P<loop>(?:[^"\\]|\\.)*)"/\]'
    r'|\["(?P<rect>(?:[^"\\]|\\.)*)"\])(?::::[A-Za-z0-9_-]+)?\s*;?\s*$'
)
_ARROW = re.compile(r"^\s*([A-Za-z0-9_-]+)\s*-->(?:\|([^|]*)\|)?\s*([A-Za-z0-9_-]+)\s*;?\s*$")
_BREAK = re.compile(r"<br\s*/?>", re.IGNORECASE)
_ESCAPE = re.compile(r"\\(.)")


@dataclass
class _Record:
    tag: str
    value: Any


@dataclass
class _LaneBlock:
    title: str
    meta: Dict[str, Any] = field(default_factory=dict)
    nodes: List["_NodeLine"] = field(default_factory=list)


@dataclass
class _NodeLine:
    alias: str
    label: str
    kind: StepKind
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _ArrowLine:
    source_alias: str
    target_alias: str
    label: str
    meta: Dict[str, Any] = field(default_factory=dict)


def unescape_label(text: str) -> str:
    return _ESCAPE.sub(r"\1", _BREAK.sub("\n", text))


def _clean_lines(text: str) -> List[str]:
    lines = []
    for line in text.replace("\r\n", "\n").split("\n"):
        if line.strip().startswith("```"):
            continue
        lines.append(line.rstrip())
    return lines


def _parse_record(line: str) -> Optional[_Record]:
    match = _TAG.match(line)
    if not match:
        return None
    tag, raw = match.group(1), match.group(2).strip()
    try:
        value = json.loads(raw)
    except ValueError:
        logger.debug("Ignored malformed tag record", extra={"tag": tag})
        return _Record(tag=tag, value=None)
    return _Record(tag=tag, value=value)


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _resolve_orientation(*candidates: Any) -> Orientation:
    for candidate in candidates:
        if candidate in (Orientation.VERTICAL.value, Orientation.HORIZONTAL.value):
            return Orientation(candidate)
    return Orientation.VERTICAL


def _direction_orientation(lines: List[str]) -> Optional[str]:
    for line in lines:
        match = _FLOWCHART.match(line)
        if match:
            direction = match.group(1).upper()
            return "horizontal" if direction in ("LR", "RL") else "vertical"
    return None


def _build_diagram(
    meta: Dict[str, Any],
    orientation: Orientation,
    lanes: List[Lane],
    steps: List[Step],
    connections: list,
    phases: list,
) -> Diagram:
    now = utc_now()
    diagram_id = meta.get("id")
    created_at = meta.get("createdAt")
    diagram = Diagram(
        title=meta["title"] if isinstance(meta.get("title"), str) else IMPORTED_TITLE,
        orientation=orientation,
        lanes=lanes,
        steps=steps,
        connections=dedupe_connections(connections),
        phase_groups=phases,
        created_at=created_at if isinstance(created_at, str) and created_at else now,
        updated_at=now,
    )
    if isinstance(diagram_id, str) and diagram_id:
        diagram.id = diagram_id
    # Resolve row collisions without moving anything
    reflow_all(diagram, reposition=False)
    sort_steps(diagram)
    return diagram


# -----------------------------------------------------------------------------
# Strategies
# -----------------------------------------------------------------------------


def _from_snapshot(
    snapshot: Dict[str, Any], meta: Dict[str, Any], orientation: Orientation
) -> Diagram:
    lanes = sanitize_lanes(snapshot["lanes"])

    seen: Set[str] = set()
    steps: List[Step] = []
    for index, raw in enumerate(snapshot["steps"]):
        if not isinstance(raw, dict):
            continue
        step = sanitize_step(raw, lanes, orientation, seen, default_order=index)
        if step is not None:
            steps.append(step)

    step_ids = {step.id for step in steps}
    connection_ids: Set[str] = set()
    connections = [
        connection
        for connection in (
            sanitize_connection(raw, step_ids, connection_ids)
            for raw in snapshot["connections"]
            if isinstance(raw, dict)
        )
        if connection is not None
    ]
    raw_phases = snapshot.get("phaseGroups")
    phases = sanitize_phase_groups(raw_phases if isinstance(raw_phases, list) else [])

    return _build_diagram(meta, orientation, lanes, steps, connections, phases)


def _scan_outline(lines: List[str]) -> tuple:
    """Collect lane blocks and arrows, each with its adjacent tag record."""
    blocks: List[_LaneBlock] = []
    arrows: List[_ArrowLine] = []
    current: Optional[_LaneBlock] = None
    last_node: Optional[_NodeLine] = None
    last_arrow: Optional[_ArrowLine] = None

    for line in lines:
        if not line.strip():
            continue

        record = _parse_record(line)
        if record is not None:
            if record.tag == "lane-meta" and current is not None and not current.meta:
                current.meta = _dict(record.value)
            elif record.tag == "step-meta" and last_node is not None:
                last_node.meta = _dict(record.value)
            elif record.tag == "edge-meta" and last_arrow is not None:
                last_arrow.meta = _dict(record.value)
            last_node = None
            last_arrow = None
            continue

        last_node = None
        last_arrow = None

        subgraph = _SUBGRAPH.match(line)
        if subgraph:
            current = _LaneBlock(title=unescape_label(subgraph.group(2)))
            blocks.append(current)
            continue

        if _END.match(line):
            current = None
            continue

        # Arrows count wherever they appear, including inside a lane block.
        arrow = _ARROW.match(line)
        if arrow:
            label = unescape_label((arrow.group(2) or "").strip().replace("#124;", "|"))
            last_arrow = _ArrowLine(
                source_alias=arrow.group(1), target_alias=arrow.group(3), label=label
            )
            arrows.append(last_arrow)
            continue

        if current is not None:
            node = _NODE.match(line)
            if node:
                if node.group("db") is not None:
                    label, kind = node.group("db"), StepKind.DATABASE
                elif node.group("loop") is not None:
                    label, kind = node.group("loop"), StepKind.LOOP_START
                else:
                    label, kind = node.group("rect"), StepKind.PROCESS
                last_node = _NodeLine(alias=node.group(1), label=unescape_label(label), kind=kind)
                current.nodes.append(last_node)

    return blocks, arrows


def _from_outline(
    lines: List[str],
    records: List[_Record],
    meta: Dict[str, Any],
    orientation: Orientation,
) -> Diagram:
    blocks, arrows = _scan_outline(lines)

    lane_ids: Set[str] = set()
    lanes: List[Lane] = []
    for index, block in enumerate(blocks):
        raw = dict(block.meta)
        raw.setdefault("title", block.title)
        raw["order"] = index
        lanes.append(sanitize_lane(raw, index, lane_ids))
    lanes = normalize_lane_orders(lanes)

    step_ids: Set[str] = set()
    steps: List[Step] = []
    aliases: Dict[str, str] = {}
    for block, lane in zip(blocks, lanes):
        for position, node in enumerate(block.nodes):
            raw = dict(node.meta)
            raw["laneId"] = lane.id
            step = sanitize_step(
                raw,
                lanes,
                orientation,
                step_ids,
                default_order=position,
                default_kind=node.kind,
                default_title=node.label,
            )
            if step is not None:
                steps.append(step)
                aliases[node.alias] = step.id

    if not lanes or not steps:
        raise FormatError(
            "No lanes or steps found in document",
            context={"lanes": len(lanes), "steps": len(steps)},
        )

    connection_ids: Set[str] = set()
    known_steps = set(aliases.values())
    connections = []
    for arrow in arrows:
        raw = dict(arrow.meta)
        raw["sourceId"] = aliases.get(arrow.source_alias)
        raw["targetId"] = aliases.get(arrow.target_alias)
        if not isinstance(raw.get("label"), str):
            raw["label"] = arrow.label
        connection = sanitize_connection(raw, known_steps, connection_ids)
        if connection is not None:
            connections.append(connection)

    phases = sanitize_phase_groups(
        record.value for record in records if record.tag == "phase-meta"
    )
    return _build_diagram(meta, orientation, lanes, steps, connections, phases)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def import_diagram(text: str) -> Diagram:
    """Parse an exported document back into a :class:`Diagram`.

    Raises:
        FormatError: If the header marker is missing, or nothing usable
            (no lanes or no steps) could be reconstructed.
    """
    if not isinstance(text, str) or HEADER_MARKER not in text:
        raise FormatError("Document is not a Swimlane Studio export")

    lines = _clean_lines(text)
    records = [record for record in map(_parse_record, lines) if record is not None]

    meta = next((_dict(r.value) for r in records if r.tag == "diagram-meta" and r.value), {})
    snapshot = next(
        (r.value for r in records if r.tag == "swimlane-json" and isinstance(r.value, dict)),
        None,
    )
    orientation = _resolve_orientation(
        meta.get("orientation"),
        snapshot.get("orientation") if snapshot else None,
        _direction_orientation(lines),
    )

    if snapshot is not None and all(
        isinstance(snapshot.get(key), list) for key in ("lanes", "steps", "connections")
    ):
        diagram = _from_snapshot(snapshot, meta, orientation)
        strategy = "snapshot"
    else:
        diagram = _from_outline(lines, records, meta, orientation)
        strategy = "outline"

    logger.info(
        "Imported diagram",
        extra={
            "strategy": strategy,
            "lanes": len(diagram.lanes),
            "steps": len(diagram.steps),
            "connections": len(diagram.connections),
        },
    )
    return diagram
