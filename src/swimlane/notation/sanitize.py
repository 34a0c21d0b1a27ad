"""Repair loosely-typed entity records into valid models.

Imported records may come from older exports or from hand edits, so every
field is checked on its own: unusable ids get fresh ones, missing numbers
get computed defaults, unknown enum values fall back to a default. Records
that cannot be attached (a step without its lane, a connection without
both steps) are dropped.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Type, TypeVar

from ..core.defaults import KIND_COLORS, get_lane_color, kind_dimensions, kind_fill_color
from ..core.diagram import (
    LABEL_MAX_LENGTH,
    Connection,
    Lane,
    MarkerKind,
    Orientation,
    PhaseGroup,
    Point,
    Step,
    StepKind,
    clamp_marker_size,
    generate_id,
    normalize_row_range,
)
from ..core.invariants import normalize_lane_orders, sanitize_color
from ..layout.engine import LANE_WIDTH, clamp_index, position_of_step, row_from_pixel
from ..utils.logging import get_logger

logger = get_logger(__name__)

E = TypeVar("E", bound=Enum)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _enum(enum_cls: Type[E], value: Any, default: E) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        return default


def claim_id(value: Any, seen: Set[str]) -> str:
    """Return ``value`` if it is a usable, unused id; otherwise a fresh one."""
    if isinstance(value, str) and value.strip() and value not in seen:
        seen.add(value)
        return value
    fresh = generate_id()
    while fresh in seen:
        fresh = generate_id()
    seen.add(fresh)
    if value is not None:
        logger.debug("Replaced unusable id", extra={"original_id": str(value)})
    return fresh


def _point(value: Any) -> Optional[Point]:
    if not isinstance(value, dict):
        return None
    x = _number(value.get("x"))
    y = _number(value.get("y"))
    if x is None or y is None:
        return None
    return Point(x=x, y=y)


def _handle(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# -----------------------------------------------------------------------------
# Lanes
# -----------------------------------------------------------------------------


def sanitize_lane(raw: Dict[str, Any], index: int, seen: Set[str]) -> Lane:
    order = _number(raw.get("order"))
    width = _number(raw.get("width"))
    return Lane(
        id=claim_id(raw.get("id"), seen),
        title=_text(raw.get("title"), f"Lane {index + 1}"),
        description=_text(raw.get("description")),
        order=clamp_index(order) if order is not None else index,
        color=sanitize_color(raw.get("color")) or get_lane_color(index),
        width=width if width is not None and width > 0 else LANE_WIDTH,
    )


def sanitize_lanes(raw_lanes: Iterable[Any]) -> List[Lane]:
    """Sanitize lane records, then sort by order and renumber ``0..n-1``."""
    seen: Set[str] = set()
    lanes = [
        sanitize_lane(raw, index, seen)
        for index, raw in enumerate(raw_lanes)
        if isinstance(raw, dict)
    ]
    return normalize_lane_orders(lanes)


# -----------------------------------------------------------------------------
# Steps
# -----------------------------------------------------------------------------


def sanitize_step(
    raw: Dict[str, Any],
    lanes: List[Lane],
    orientation: Orientation,
    seen: Set[str],
    *,
    default_order: int = 0,
    default_kind: StepKind = StepKind.PROCESS,
    default_title: str = "Untitled step",
) -> Optional[Step]:
    """Build a step from a record; None when its lane does not exist.

    ``order`` falls back to the row implied by the record's pixel position
    and then to ``default_order``. Missing ``x``/``y`` are computed from the
    lane and row.
    """
    lane = next((item for item in lanes if item.id == raw.get("laneId")), None)
    if lane is None:
        logger.debug("Dropped step without lane", extra={"lane_id": str(raw.get("laneId"))})
        return None

    kind = _enum(StepKind, raw.get("kind"), default_kind)
    default_width, default_height = kind_dimensions(kind)
    width = _number(raw.get("width"))
    height = _number(raw.get("height"))
    width = width if width is not None and width >= 0 else default_width
    height = height if height is not None and height >= 0 else default_height

    x = _number(raw.get("x"))
    y = _number(raw.get("y"))
    order = _number(raw.get("order"))
    if order is not None:
        row = clamp_index(order)
    elif orientation == Orientation.HORIZONTAL and x is not None:
        row = row_from_pixel(x, width, orientation)
    elif orientation == Orientation.VERTICAL and y is not None:
        row = row_from_pixel(y, height, orientation)
    else:
        row = default_order

    if x is None or y is None:
        point = position_of_step(lanes, lane, orientation, row, (width, height))
        x = point.x if x is None else x
        y = point.y if y is None else y

    return Step(
        id=claim_id(raw.get("id"), seen),
        lane_id=lane.id,
        title=_text(raw.get("title"), default_title),
        description=_text(raw.get("description")),
        order=row,
        x=x,
        y=y,
        width=width,
        height=height,
        color=sanitize_color(raw.get("color")) or KIND_COLORS[kind],
        fill_color=sanitize_color(raw.get("fillColor")) or kind_fill_color(kind),
        kind=kind,
    )


# -----------------------------------------------------------------------------
# Connections
# -----------------------------------------------------------------------------


def sanitize_connection(
    raw: Dict[str, Any],
    step_ids: Set[str],
    seen: Set[str],
) -> Optional[Connection]:
    """Build a connection; None when an endpoint is missing or it loops on itself."""
    source_id = raw.get("sourceId")
    target_id = raw.get("targetId")
    if source_id not in step_ids or target_id not in step_ids or source_id == target_id:
        logger.debug(
            "Dropped connection with unusable endpoints",
            extra={"source_id": str(source_id), "target_id": str(target_id)},
        )
        return None

    size = _number(raw.get("markerSize"))
    return Connection(
        id=claim_id(raw.get("id"), seen),
        source_id=source_id,
        target_id=target_id,
        source_handle=_handle(raw.get("sourceHandle")),
        target_handle=_handle(raw.get("targetHandle")),
        control=_point(raw.get("control")),
        start_marker=_enum(MarkerKind, raw.get("startMarker"), MarkerKind.NONE),
        end_marker=_enum(MarkerKind, raw.get("endMarker"), MarkerKind.ARROW),
        marker_size=clamp_marker_size(size) if size is not None else 16,
        label=_text(raw.get("label"))[:LABEL_MAX_LENGTH],
    )


def dedupe_connections(connections: Iterable[Connection]) -> List[Connection]:
    """Keep the first connection of each (source, target, handles) tuple."""
    kept: List[Connection] = []
    keys = set()
    for connection in connections:
        if connection.key in keys:
            logger.debug("Dropped duplicate connection", extra={"connection_id": connection.id})
            continue
        keys.add(connection.key)
        kept.append(connection)
    return kept


# -----------------------------------------------------------------------------
# Phase groups
# -----------------------------------------------------------------------------


def sanitize_phase_group(raw: Dict[str, Any], index: int, seen: Set[str]) -> PhaseGroup:
    start = _number(raw.get("startRow"))
    end = _number(raw.get("endRow"))
    start_row = int(math.floor(start)) if start is not None else index
    end_row = int(math.floor(end)) if end is not None else start_row
    start_row, end_row = normalize_row_range(start_row, end_row)
    return PhaseGroup(
        id=claim_id(raw.get("id"), seen),
        title=_text(raw.get("title"), f"Phase {index + 1}"),
        start_row=start_row,
        end_row=end_row,
    )


def sanitize_phase_groups(raw_phases: Iterable[Any]) -> List[PhaseGroup]:
    seen: Set[str] = set()
    phases = [
        sanitize_phase_group(raw, index, seen)
        for index, raw in enumerate(raw_phases)
        if isinstance(raw, dict)
    ]
    return sorted(phases, key=lambda phase: phase.start_row)
