"""Default entities and per-kind styling."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..layout.engine import LANE_WIDTH, position_of_step
from .diagram import Diagram, Lane, Orientation, Step, StepKind, utc_now

if TYPE_CHECKING:
    from ..config.settings import Settings

LANE_COLORS = ["#0ea5e9", "#22c55e", "#f97316", "#6366f1", "#ec4899"]

STEP_DEFAULT_SIZE = (240.0, 120.0)

KIND_DIMENSIONS: Dict[StepKind, Tuple[float, float]] = {
    StepKind.PROCESS: STEP_DEFAULT_SIZE,
    StepKind.DECISION: (220.0, 160.0),
    StepKind.START: (220.0, 110.0),
    StepKind.END: (220.0, 110.0),
    StepKind.FILE: STEP_DEFAULT_SIZE,
    StepKind.LOOP_START: STEP_DEFAULT_SIZE,
    StepKind.LOOP_END: STEP_DEFAULT_SIZE,
    StepKind.DATABASE: STEP_DEFAULT_SIZE,
}

KIND_COLORS: Dict[StepKind, str] = {kind: "#000000" for kind in StepKind}

KIND_FILL_COLORS: Dict[StepKind, str] = {
    StepKind.PROCESS: "#e0ebff",
    StepKind.DECISION: "#e4c9fd",
    StepKind.START: "#c2ffd8",
    StepKind.END: "#ffd1d1",
    StepKind.FILE: "#fff4ad",
    StepKind.LOOP_START: "#e0ebff",
    StepKind.LOOP_END: "#e0ebff",
    StepKind.DATABASE: "#e0ebff",
}

DEFAULT_LANE_TITLES = ["Planning", "Development", "Operations"]
DEFAULT_DIAGRAM_TITLE = "New swimlane"


def get_lane_color(order: int) -> str:
    """Palette colour for the lane at ``order``."""
    return LANE_COLORS[max(0, order) % len(LANE_COLORS)]


def kind_dimensions(kind: StepKind) -> Tuple[float, float]:
    return KIND_DIMENSIONS.get(kind, STEP_DEFAULT_SIZE)


def kind_fill_color(kind: StepKind) -> str:
    return KIND_FILL_COLORS.get(kind, KIND_FILL_COLORS[StepKind.PROCESS])


def create_lane(order: int, title: str) -> Lane:
    return Lane(title=title, order=order, color=get_lane_color(order), width=LANE_WIDTH)


def create_step(
    lanes: List[Lane],
    lane: Lane,
    orientation: Orientation,
    *,
    title: str,
    row: int = 0,
    kind: StepKind = StepKind.PROCESS,
) -> Step:
    """Build a step sized and coloured for ``kind`` and positioned at ``row``."""
    width, height = kind_dimensions(kind)
    point = position_of_step(lanes, lane, orientation, row, (width, height))
    return Step(
        lane_id=lane.id,
        title=title,
        order=row,
        x=point.x,
        y=point.y,
        width=width,
        height=height,
        color=KIND_COLORS[kind],
        fill_color=kind_fill_color(kind),
        kind=kind,
    )


def create_empty_diagram(
    orientation: Orientation = Orientation.VERTICAL,
    *,
    settings: Optional["Settings"] = None,
) -> Diagram:
    """Three lanes, one process step each."""
    orientation = Orientation(orientation)
    lane_titles = list(settings.default_lane_titles) if settings else DEFAULT_LANE_TITLES
    title = settings.default_diagram_title if settings else DEFAULT_DIAGRAM_TITLE

    lanes = [create_lane(order, lane_title) for order, lane_title in enumerate(lane_titles)]
    steps = [
        create_step(lanes, lane, orientation, title=f"Task {lane.order + 1}", row=0)
        for lane in lanes
    ]
    now = utc_now()
    return Diagram(
        title=title,
        orientation=orientation,
        lanes=lanes,
        steps=steps,
        created_at=now,
        updated_at=now,
    )
