"""Swimlane geometry: logical rows and lanes to pixels and back."""

from .engine import (
    COLUMN_WIDTH,
    HORIZONTAL_HEADER_WIDTH,
    HORIZONTAL_STEP_GAP,
    LANE_GAP,
    LANE_PADDING,
    LANE_WIDTH,
    ROW_HEIGHT,
    lane_center,
    lane_extent,
    pixel_from_row,
    position_of_lane,
    position_of_step,
    resolve_lane_index,
    row_from_pixel,
    row_stride,
)

__all__ = [
    "COLUMN_WIDTH",
    "HORIZONTAL_HEADER_WIDTH",
    "HORIZONTAL_STEP_GAP",
    "LANE_GAP",
    "LANE_PADDING",
    "LANE_WIDTH",
    "ROW_HEIGHT",
    "lane_center",
    "lane_extent",
    "pixel_from_row",
    "position_of_lane",
    "position_of_step",
    "resolve_lane_index",
    "row_from_pixel",
    "row_stride",
]
