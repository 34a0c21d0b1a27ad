"""Swimlane diagram models.

This module defines the entity graph edited by the store:
- Lanes: ordered parallel tracks (actors, departments)
- Steps: nodes placed in a lane at a row/column index
- Connections: directed edges between steps
- Phase groups: labelled row ranges spanning every lane
- Diagram: the complete document with metadata

Python attributes are snake_case. The JSON form used by the text notation
is camelCase (``laneId``, ``phaseGroups``...), produced with
``model_dump(mode="json", by_alias=True)``.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_LANE_WIDTH = 320.0
LABEL_MAX_LENGTH = 50
MARKER_SIZE_MIN = 4
MARKER_SIZE_MAX = 64
DEFAULT_MARKER_SIZE = 16


def generate_id() -> str:
    """Generate a unique ID for diagram entities."""
    return uuid4().hex[:12]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class Orientation(str, Enum):
    """Direction lanes are stacked in. Fixed for the life of a diagram."""
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


class StepKind(str, Enum):
    """Shapes a step can take."""
    PROCESS = "process"
    DECISION = "decision"
    START = "start"
    END = "end"
    FILE = "file"
    LOOP_START = "loop-start"
    LOOP_END = "loop-end"
    DATABASE = "database"


class MarkerKind(str, Enum):
    """Arrowhead styles for connection ends."""
    NONE = "none"
    ARROW = "arrow"
    DOT = "dot"


class TargetType(str, Enum):
    """Entity families recorded in the audit trail."""
    LANE = "lane"
    STEP = "step"
    CONNECTION = "connection"
    PHASE = "phase"
    DIAGRAM = "diagram"


# -----------------------------------------------------------------------------
# Base
# -----------------------------------------------------------------------------


class DiagramModel(BaseModel):
    """Base for all diagram entities (camelCase aliases, snake_case fields)."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Point(DiagramModel):
    """2D pixel position (connection bend points)."""
    x: float = 0.0
    y: float = 0.0


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------


class Lane(DiagramModel):
    """A parallel track. ``width`` is the lane's cross-axis thickness."""
    id: str = Field(default_factory=generate_id)
    title: str
    description: str = ""
    order: int = 0
    color: str = "#0ea5e9"
    width: float = DEFAULT_LANE_WIDTH


class Step(DiagramModel):
    """A node in a lane.

    ``order`` is the row (vertical) or column (horizontal) index inside the
    owning lane. ``x``/``y`` are derived from it and never authoritative.
    """
    id: str = Field(default_factory=generate_id)
    lane_id: str
    title: str
    description: str = ""
    order: int = 0
    x: float = 0.0
    y: float = 0.0
    width: float = 240.0
    height: float = 120.0
    color: str = "#000000"
    fill_color: Optional[str] = None
    kind: StepKind = StepKind.PROCESS


class Connection(DiagramModel):
    """Directed edge between two steps.

    Handles name the attachment side on each end (e.g. ``"bottom-source"``).
    """
    id: str = Field(default_factory=generate_id)
    source_id: str
    target_id: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    control: Optional[Point] = None
    start_marker: MarkerKind = MarkerKind.NONE
    end_marker: MarkerKind = MarkerKind.ARROW
    marker_size: int = DEFAULT_MARKER_SIZE
    label: str = ""

    @field_validator("marker_size")
    @classmethod
    def validate_marker_size(cls, v: int) -> int:
        return clamp_marker_size(v)

    @field_validator("label")
    @classmethod
    def truncate_label(cls, v: str) -> str:
        return v[:LABEL_MAX_LENGTH]

    @property
    def key(self) -> tuple:
        """Identity tuple used for duplicate detection."""
        return (self.source_id, self.target_id, self.source_handle, self.target_handle)


class PhaseGroup(DiagramModel):
    """Labelled inclusive row range shared by all lanes."""
    id: str = Field(default_factory=generate_id)
    title: str = ""
    start_row: int = 0
    end_row: int = 0

    @model_validator(mode="after")
    def normalize_range(self) -> "PhaseGroup":
        start, end = normalize_row_range(self.start_row, self.end_row)
        self.start_row = start
        self.end_row = end
        return self


class Diagram(DiagramModel):
    """Complete swimlane diagram."""
    id: str = Field(default_factory=generate_id)
    title: str = ""
    orientation: Orientation = Orientation.VERTICAL
    lanes: List[Lane] = Field(default_factory=list)
    steps: List[Step] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    phase_groups: List[PhaseGroup] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    # -------------------------------------------------------------------------
    # Convenience accessors
    # -------------------------------------------------------------------------

    @property
    def sorted_lanes(self) -> List[Lane]:
        """Lanes in display order."""
        return sorted(self.lanes, key=lambda lane: lane.order)

    def get_lane(self, lane_id: Optional[str]) -> Optional[Lane]:
        for lane in self.lanes:
            if lane.id == lane_id:
                return lane
        return None

    def get_step(self, step_id: Optional[str]) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_connection(self, connection_id: Optional[str]) -> Optional[Connection]:
        for connection in self.connections:
            if connection.id == connection_id:
                return connection
        return None

    def get_phase_group(self, phase_id: Optional[str]) -> Optional[PhaseGroup]:
        for phase in self.phase_groups:
            if phase.id == phase_id:
                return phase
        return None

    def steps_in_lane(self, lane_id: str) -> List[Step]:
        """Steps of one lane sorted by their row/column index."""
        return sorted(
            (step for step in self.steps if step.lane_id == lane_id),
            key=lambda step: step.order,
        )

    def connections_for_step(self, step_id: str) -> List[Connection]:
        return [
            c for c in self.connections
            if c.source_id == step_id or c.target_id == step_id
        ]

    def snapshot(self) -> "Diagram":
        """Independent deep copy."""
        return self.model_copy(deep=True)


# -----------------------------------------------------------------------------
# Editor state
# -----------------------------------------------------------------------------


class SelectionState(DiagramModel):
    """Ids currently selected in the editor."""
    lanes: List[str] = Field(default_factory=list)
    steps: List[str] = Field(default_factory=list)
    connections: List[str] = Field(default_factory=list)
    phases: List[str] = Field(default_factory=list)


class PendingInsert(DiagramModel):
    """Insertion cursor used by ``add_step`` when no lane is given."""
    lane_id: str
    row: int = 0


class HistoryEntry(DiagramModel):
    """Snapshot kept on the undo/redo stacks."""
    diagram: Diagram
    label: str
    timestamp: int = Field(default_factory=now_ms)


class AuditEntry(DiagramModel):
    """One record of the append-only audit trail."""
    id: str = Field(default_factory=generate_id)
    action: str
    target_type: TargetType
    target_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    timestamp: int = Field(default_factory=now_ms)


# -----------------------------------------------------------------------------
# Value helpers
# -----------------------------------------------------------------------------


def clamp_marker_size(value: Any) -> int:
    try:
        size = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_MARKER_SIZE
    return max(MARKER_SIZE_MIN, min(MARKER_SIZE_MAX, size))


def normalize_row_range(start_row: int, end_row: int) -> tuple[int, int]:
    """Return ``(start, end)`` with ``0 <= start <= end``."""
    low = min(int(start_row), int(end_row))
    high = max(int(start_row), int(end_row))
    start = max(0, low)
    return start, max(start, high)
