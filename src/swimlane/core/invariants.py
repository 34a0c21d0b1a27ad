"""Invariant-restoring helpers used by the store.

All helpers mutate the diagram they are given in place. The store only ever
hands them a private copy, so callers never observe intermediate states.

Invariants maintained here:
- lane orders are a dense permutation of ``0..n-1``
- no two steps of one lane share an ``order`` (gaps are allowed)
- step ``x``/``y`` always match ``lane_id`` + ``order`` + lane geometry
- no connection references a missing step
- no two connections share (source, target, source handle, target handle)
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Set

from ..layout.engine import clamp_index, position_of_step
from .defaults import LANE_COLORS, get_lane_color
from .diagram import Connection, Diagram, Lane, Step

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def sanitize_color(color: Optional[str]) -> Optional[str]:
    """Normalize ``"abc123"`` / ``" #abc123 "`` to ``"#abc123"``; None if unusable."""
    if not isinstance(color, str):
        return None
    trimmed = color.strip()
    if not trimmed:
        return None
    if not trimmed.startswith("#"):
        trimmed = f"#{trimmed}"
    if not _HEX_COLOR.match(trimmed):
        return None
    return trimmed.lower()


# -----------------------------------------------------------------------------
# Lanes
# -----------------------------------------------------------------------------


def normalize_lane_orders(lanes: Iterable[Lane]) -> List[Lane]:
    """Sort lanes by order, renumber them ``0..n-1`` and recolour by position.

    Lanes carrying a palette colour (or no usable colour) take the palette
    colour of their new position. Custom colours outside the palette stay.
    """
    ordered = sorted(lanes, key=lambda lane: lane.order)
    for index, lane in enumerate(ordered):
        lane.order = index
        color = sanitize_color(lane.color)
        if color is None or color in LANE_COLORS:
            lane.color = get_lane_color(index)
        else:
            lane.color = color
    return ordered


def move_lane(diagram: Diagram, lane_id: str, new_index: int) -> bool:
    """Move a lane to ``new_index`` (clamped) and renumber every lane."""
    lane = diagram.get_lane(lane_id)
    if lane is None:
        return False
    others = [item for item in diagram.sorted_lanes if item.id != lane_id]
    bounded = max(0, min(int(new_index), len(others)))
    others.insert(bounded, lane)
    for index, item in enumerate(others):
        item.order = index
    diagram.lanes = normalize_lane_orders(others)
    return True


# -----------------------------------------------------------------------------
# Steps
# -----------------------------------------------------------------------------


def reflow_lane(
    diagram: Diagram,
    lane_id: str,
    steps: Optional[List[Step]] = None,
    *,
    reposition: bool = True,
) -> None:
    """Resolve order collisions in a lane and recompute step positions.

    Steps are visited in order; a step whose row is already taken moves
    forward one row at a time until it finds a free one. Orders are not
    compacted, so intentional gaps survive.

    Args:
        diagram: Diagram being edited.
        lane_id: Lane to reflow.
        steps: Steps to place in the lane. Defaults to the lane's current steps.
        reposition: When False only orders are fixed and ``x``/``y`` are kept.
    """
    lane = diagram.get_lane(lane_id)
    if lane is None:
        return

    lane_steps = list(steps) if steps is not None else [
        step for step in diagram.steps if step.lane_id == lane_id
    ]
    occupied: Set[int] = set()
    for step in sorted(lane_steps, key=lambda item: item.order):
        row = clamp_index(step.order)
        while row in occupied:
            row += 1
        occupied.add(row)

        step.order = row
        step.lane_id = lane.id
        if reposition:
            point = position_of_step(
                diagram.lanes, lane, diagram.orientation, row, (step.width, step.height)
            )
            step.x = point.x
            step.y = point.y


def reflow_all(diagram: Diagram, *, reposition: bool = True) -> None:
    for lane in diagram.lanes:
        reflow_lane(diagram, lane.id, reposition=reposition)


def sort_steps(diagram: Diagram) -> None:
    """Order ``diagram.steps`` by lane order, then by row."""
    lane_orders = {lane.id: lane.order for lane in diagram.lanes}
    diagram.steps.sort(key=lambda step: (lane_orders.get(step.lane_id, 0), step.order))


def first_free_row(
    diagram: Diagram,
    lane_id: str,
    start: int = 0,
    *,
    exclude_id: Optional[str] = None,
) -> int:
    """Lowest row >= ``start`` with no step in the lane."""
    occupied = {
        step.order
        for step in diagram.steps
        if step.lane_id == lane_id and step.id != exclude_id
    }
    row = max(0, int(start))
    while row in occupied:
        row += 1
    return row


def cascade_delete(diagram: Diagram, step_id: str) -> Optional[Step]:
    """Remove a step and every connection touching it. Returns the removed step."""
    step = diagram.get_step(step_id)
    if step is None:
        return None
    diagram.steps = [item for item in diagram.steps if item.id != step_id]
    diagram.connections = [
        c for c in diagram.connections
        if c.source_id != step_id and c.target_id != step_id
    ]
    return step


def remove_lane_cascade(diagram: Diagram, lane_id: str) -> Optional[Lane]:
    """Remove a lane, its steps and the connections touching those steps."""
    lane = diagram.get_lane(lane_id)
    if lane is None:
        return None
    diagram.lanes = normalize_lane_orders(item for item in diagram.lanes if item.id != lane_id)
    for step in [item for item in diagram.steps if item.lane_id == lane_id]:
        cascade_delete(diagram, step.id)
    return lane


def prune_orphan_connections(diagram: Diagram) -> None:
    step_ids = {step.id for step in diagram.steps}
    diagram.connections = [
        c for c in diagram.connections
        if c.source_id in step_ids and c.target_id in step_ids
    ]


# -----------------------------------------------------------------------------
# Connections
# -----------------------------------------------------------------------------


def is_duplicate_connection(
    diagram: Diagram,
    source_id: str,
    target_id: str,
    source_handle: Optional[str],
    target_handle: Optional[str],
    *,
    ignore_id: Optional[str] = None,
) -> bool:
    key = (source_id, target_id, source_handle or None, target_handle or None)
    return any(
        connection.id != ignore_id and connection.key == key
        for connection in diagram.connections
    )


def dedupe_connection(diagram: Diagram, candidate: Connection) -> bool:
    """Append ``candidate`` unless an equivalent connection exists.

    Returns True when the connection was added.
    """
    if is_duplicate_connection(
        diagram,
        candidate.source_id,
        candidate.target_id,
        candidate.source_handle,
        candidate.target_handle,
        ignore_id=candidate.id,
    ):
        return False
    diagram.connections.append(candidate)
    return True


def swap_handle(handle: Optional[str], end: str) -> Optional[str]:
    """Translate a handle name for use on the other end of a reversed edge.

    ``end`` is the role the handle will play ("source" or "target"):
    ``"bottom-target"`` becomes ``"bottom-source"`` when used as a source.
    Handles without a role suffix are returned unchanged.
    """
    if not handle:
        return None
    if handle.endswith("-source") and end == "target":
        return handle[: -len("-source")] + "-target"
    if handle.endswith("-target") and end == "source":
        return handle[: -len("-target")] + "-source"
    return handle
