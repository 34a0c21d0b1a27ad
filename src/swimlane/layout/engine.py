"""Swimlane geometry.

Maps logical coordinates (lane order, row/column index) to pixel positions
and back. Everything here is pure: no function mutates its inputs or
raises on bad numbers, out-of-range values clamp to the nearest valid index.

Axes:
- vertical diagrams stack lanes left to right, rows run top to bottom
- horizontal diagrams stack lanes top to bottom, columns run left to right
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List, Sequence, Tuple

from ..core.diagram import DEFAULT_LANE_WIDTH, Lane, Orientation, Point, Step

LANE_WIDTH = DEFAULT_LANE_WIDTH
LANE_GAP = 48
LANE_PADDING = 80
ROW_HEIGHT = 240
COLUMN_WIDTH = 240
HORIZONTAL_STEP_GAP = 40
HORIZONTAL_HEADER_WIDTH = 160


def _finite(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def _is_horizontal(orientation: Any) -> bool:
    return orientation == Orientation.HORIZONTAL or orientation == "horizontal"


def clamp_index(value: Any) -> int:
    """Round to the nearest integer index, never below zero."""
    return max(0, int(math.floor(_finite(value) + 0.5)))


def row_stride(orientation: Any = Orientation.VERTICAL) -> float:
    """Distance between consecutive rows (vertical) or columns (horizontal)."""
    if _is_horizontal(orientation):
        return COLUMN_WIDTH + HORIZONTAL_STEP_GAP
    return ROW_HEIGHT


def _cell_size(orientation: Any) -> float:
    return COLUMN_WIDTH if _is_horizontal(orientation) else ROW_HEIGHT


def _row_origin(orientation: Any) -> float:
    if _is_horizontal(orientation):
        return HORIZONTAL_HEADER_WIDTH + LANE_PADDING
    return LANE_PADDING


def _centering(size: float, cell: float) -> float:
    return max(0.0, (cell - size) / 2)


# -----------------------------------------------------------------------------
# Main axis (rows / columns)
# -----------------------------------------------------------------------------


def pixel_from_row(row: Any, step_size: Any, orientation: Any = Orientation.VERTICAL) -> float:
    """Pixel coordinate of a step's leading edge when centred in ``row``.

    ``step_size`` is the step's extent along the main axis (height for
    vertical diagrams, width for horizontal ones).
    """
    index = clamp_index(row)
    size = max(0.0, _finite(step_size))
    return (
        _row_origin(orientation)
        + index * row_stride(orientation)
        + _centering(size, _cell_size(orientation))
    )


def row_from_pixel(value: Any, step_size: Any, orientation: Any = Orientation.VERTICAL) -> int:
    """Row/column index whose cell contains a step whose leading edge is at ``value``.

    Exact inverse of :func:`pixel_from_row` for every row >= 0.
    """
    size = max(0.0, _finite(step_size))
    stride = row_stride(orientation)
    adjusted = (
        _finite(value)
        - _row_origin(orientation)
        - _centering(size, _cell_size(orientation))
        + stride / 2
    )
    if adjusted <= 0:
        return 0
    return int(math.floor(adjusted / stride))


def lane_extent(steps_in_lane: Iterable[Step], orientation: Any = Orientation.VERTICAL) -> float:
    """Main-axis length of a lane: enough rows for its furthest step."""
    stride = row_stride(orientation)
    minimum = LANE_PADDING * 2 + stride
    rows = [clamp_index(step.order) for step in steps_in_lane]
    if not rows:
        return minimum
    return max(minimum, LANE_PADDING * 2 + (max(rows) + 1) * stride)


# -----------------------------------------------------------------------------
# Cross axis (lanes)
# -----------------------------------------------------------------------------


def _sorted_lanes(lanes: Sequence[Lane]) -> List[Lane]:
    return sorted(lanes, key=lambda lane: lane.order)


def position_of_lane(lanes: Sequence[Lane], order: Any) -> float:
    """Cross-axis offset of the lane at ``order``.

    Sum of the preceding lanes' thickness plus the gap between lanes.
    """
    index = clamp_index(order)
    offset = float(LANE_PADDING)
    for position, lane in enumerate(_sorted_lanes(lanes)):
        if position >= index:
            break
        offset += max(0.0, _finite(lane.width, LANE_WIDTH)) + LANE_GAP
    return offset


def lane_center(lanes: Sequence[Lane], order: Any) -> float:
    ordered = _sorted_lanes(lanes)
    index = clamp_index(order)
    width = LANE_WIDTH
    if index < len(ordered):
        width = max(0.0, _finite(ordered[index].width, LANE_WIDTH))
    return position_of_lane(ordered, index) + width / 2


def resolve_lane_index(lanes: Sequence[Lane], center: Any) -> int:
    """Index of the lane whose centre is nearest to ``center`` on the cross axis."""
    ordered = _sorted_lanes(lanes)
    if not ordered:
        return 0
    target = _finite(center)
    best_index = 0
    best_distance = math.inf
    for index in range(len(ordered)):
        distance = abs(lane_center(ordered, index) - target)
        if distance < best_distance:
            best_index = index
            best_distance = distance
    return best_index


# -----------------------------------------------------------------------------
# Steps
# -----------------------------------------------------------------------------


def position_of_step(
    lanes: Sequence[Lane],
    lane: Lane,
    orientation: Any,
    row: Any,
    step_size: Tuple[float, float],
) -> Point:
    """Top-left pixel position of a ``(width, height)`` step at ``row`` in ``lane``."""
    width = max(0.0, _finite(step_size[0]))
    height = max(0.0, _finite(step_size[1]))
    ordered = _sorted_lanes(lanes)
    lane_index = next(
        (index for index, item in enumerate(ordered) if item.id == lane.id),
        clamp_index(lane.order),
    )
    lane_offset = position_of_lane(ordered, lane_index)
    thickness = max(0.0, _finite(lane.width, LANE_WIDTH))

    if _is_horizontal(orientation):
        return Point(
            x=pixel_from_row(row, width, orientation),
            y=lane_offset + _centering(height, thickness),
        )
    return Point(
        x=lane_offset + _centering(width, thickness),
        y=pixel_from_row(row, height, orientation),
    )


def step_cross_center(x: float, y: float, width: float, height: float, orientation: Any) -> float:
    """Centre of a step's box on the lane (cross) axis."""
    if _is_horizontal(orientation):
        return _finite(y) + max(0.0, _finite(height)) / 2
    return _finite(x) + max(0.0, _finite(width)) / 2
