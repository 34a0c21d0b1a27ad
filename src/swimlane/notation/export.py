"""Diagram → Mermaid flowchart export.

The document is a regular Mermaid ``flowchart`` (lanes as subgraphs, steps
as nodes, connections as arrows) that also carries tagged JSON comment
records so it can be imported back without loss:

    %% diagram-meta:{...}     id, title, timestamps, orientation
    %% swimlane-json:{...}    full snapshot (authoritative on import)
    %% phase-meta:{...}       one per phase group
    %% lane-meta:{...}        first line inside each subgraph
    %% step-meta:{...}        line after each node
    %% edge-meta:{...}        line after each arrow
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from ..core.diagram import Connection, Diagram, Orientation, Step, StepKind

HEADER_MARKER = "Swimlane Studio Export"
HEADER_LINE = f"%% {HEADER_MARKER} v1"
FENCE_OPEN = "```mermaid"
FENCE_CLOSE = "```"
FILE_CLASS_DEF = "classDef file fill:#f0f9ff,stroke:#0ea5e9,color:#0f172a;"

# Node fills in the rendered flowchart, not the editor fills
MERMAID_FILLS: Dict[StepKind, str] = {
    StepKind.PROCESS: "#ffffff",
    StepKind.DECISION: "#ede9fe",
    StepKind.START: "#dcfce7",
    StepKind.END: "#fee2e2",
    StepKind.FILE: "#f0f9ff",
    StepKind.LOOP_START: "#e0ebff",
    StepKind.LOOP_END: "#e0ebff",
    StepKind.DATABASE: "#e0ebff",
}

LOOP_KINDS = (StepKind.LOOP_START, StepKind.LOOP_END)


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def escape_label(text: str) -> str:
    """Escape a label for use inside ``"..."`` and keep it on one line."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\r\n", "\n")
        .replace("\n", "<br/>")
    )


def node_line(alias: str, step: Step) -> str:
    label = escape_label(step.title or "Untitled step")
    if step.kind in LOOP_KINDS:
        return f'{alias}[\\"{label}"/]'
    if step.kind == StepKind.DATABASE:
        return f'{alias}[("{label}")]'
    return f'{alias}["{label}"]'


def arrow_line(source_alias: str, target_alias: str, connection: Connection) -> str:
    text = connection.label.strip()
    if not text:
        return f"{source_alias} --> {target_alias}"
    label = escape_label(text).replace("|", "#124;")
    return f"{source_alias} -->|{label}| {target_alias}"


def export_diagram(diagram: Diagram) -> str:
    """Render ``diagram`` as a fenced Mermaid document."""
    horizontal = diagram.orientation == Orientation.HORIZONTAL
    orientation = Orientation.HORIZONTAL.value if horizontal else Orientation.VERTICAL.value

    lines: List[str] = [
        FENCE_OPEN,
        f"flowchart {'LR' if horizontal else 'TD'}",
        HEADER_LINE,
    ]
    lines.append(
        "%% diagram-meta:"
        + _json(
            {
                "id": diagram.id,
                "title": diagram.title,
                "createdAt": diagram.created_at,
                "updatedAt": diagram.updated_at,
                "orientation": orientation,
            }
        )
    )
    lines.append(
        "%% swimlane-json:"
        + _json(
            {
                "orientation": orientation,
                "lanes": [lane.to_json_dict() for lane in diagram.lanes],
                "steps": [step.to_json_dict() for step in diagram.steps],
                "connections": [c.to_json_dict() for c in diagram.connections],
                "phaseGroups": [phase.to_json_dict() for phase in diagram.phase_groups],
            }
        )
    )
    for phase in diagram.phase_groups:
        lines.append("%% phase-meta:" + _json(phase.to_json_dict()))

    if any(step.kind == StepKind.FILE for step in diagram.steps):
        lines.append(FILE_CLASS_DEF)

    aliases: Dict[str, str] = {}
    for lane_index, lane in enumerate(diagram.sorted_lanes):
        lines.append(f'subgraph L{lane_index}["{escape_label(lane.title)}"]')
        lines.append("    %% lane-meta:" + _json(lane.to_json_dict()))

        lane_steps = sorted(
            diagram.steps_in_lane(lane.id),
            key=lambda step: (step.order, step.x if horizontal else step.y),
        )
        for step in lane_steps:
            alias = f"S{len(aliases)}"
            aliases[step.id] = alias
            lines.append(f"    {node_line(alias, step)}")
            lines.append("    %% step-meta:" + _json(step.to_json_dict()))
            fill = MERMAID_FILLS.get(step.kind, "#ffffff")
            stroke = lane.color or "#0ea5e9"
            text_color = step.color or "#1f2937"
            lines.append(f"    style {alias} fill:{fill},stroke:{stroke},color:{text_color}")
            if step.kind == StepKind.FILE:
                lines.append(f"    class {alias} file")
        lines.append("end")

    if diagram.connections:
        lines.append("")
        for connection in diagram.connections:
            source_alias = aliases.get(connection.source_id)
            target_alias = aliases.get(connection.target_id)
            if not source_alias or not target_alias:
                continue
            lines.append(arrow_line(source_alias, target_alias, connection))
            lines.append("%% edge-meta:" + _json(connection.to_json_dict()))

    lines.append(FENCE_CLOSE)
    return "\n".join(lines)
