"""Diagram store: the command API over a single diagram.

Every mutating command runs through :meth:`DiagramStore._commit`:

1. deep-copy the current diagram
2. apply the change to the copy (helpers restore invariants)
3. stamp ``updated_at``
4. push the pre-mutation diagram onto the undo stack and clear redo
5. append one audit entry
6. swap the copy in

Updaters return False when the command does not apply (unknown id,
duplicate connection, self-loop...). Nothing is recorded in that case.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..config.settings import Settings, load_settings
from ..core.defaults import (
    KIND_COLORS,
    create_empty_diagram,
    create_lane,
    create_step,
    get_lane_color,
    kind_dimensions,
    kind_fill_color,
)
from ..core.diagram import (
    LABEL_MAX_LENGTH,
    AuditEntry,
    Connection,
    Diagram,
    MarkerKind,
    Orientation,
    PendingInsert,
    PhaseGroup,
    Point,
    SelectionState,
    StepKind,
    TargetType,
    clamp_marker_size,
    normalize_row_range,
    utc_now,
)
from ..core.exceptions import UnknownCommandError
from ..core.invariants import (
    cascade_delete,
    dedupe_connection,
    first_free_row,
    is_duplicate_connection,
    move_lane,
    normalize_lane_orders,
    prune_orphan_connections,
    reflow_all,
    reflow_lane,
    remove_lane_cascade,
    sanitize_color,
    sort_steps,
    swap_handle,
)
from ..layout.engine import clamp_index, resolve_lane_index, row_from_pixel, step_cross_center
from ..utils.logging import get_logger
from .audit import AuditTrail, audit_log_to_json
from .history import HistoryStack

logger = get_logger(__name__)

Updater = Callable[[Diagram], bool]

# Marks an endpoint handle argument that was not passed (None clears the handle)
_UNSET: Any = object()

# Methods reachable through :meth:`DiagramStore.execute`
COMMANDS = frozenset(
    {
        "add_lane",
        "update_lane",
        "remove_lane",
        "reorder_lane",
        "add_step",
        "update_step",
        "move_step",
        "reorder_step",
        "move_step_up",
        "move_step_down",
        "change_step_kind",
        "remove_step",
        "shift_rows",
        "add_connection",
        "update_connection_label",
        "update_connection_marker",
        "update_connection_control",
        "update_connection_endpoints",
        "reverse_connection",
        "remove_connection",
        "add_phase_group",
        "update_phase_group",
        "remove_phase_group",
        "undo",
        "redo",
        "initialize_diagram",
        "reset",
        "set_selection",
        "clear_selection",
        "set_pending_insert",
        "clear_pending_insert",
    }
)


def _as_point(value: Any) -> Optional[Point]:
    if value is None:
        return None
    if isinstance(value, Point):
        return Point(x=value.x, y=value.y)
    if isinstance(value, dict):
        return Point(x=float(value.get("x", 0.0)), y=float(value.get("y", 0.0)))
    x, y = value
    return Point(x=float(x), y=float(y))


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number)


class DiagramStore:
    """Owns one diagram plus its undo/redo history and audit trail.

    The live diagram is only ever replaced, never mutated in place, so
    history entries can hold references to previous diagrams safely.
    """

    def __init__(self, diagram: Optional[Diagram] = None, *, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        if diagram is None:
            self._diagram = create_empty_diagram(
                self.settings.default_orientation, settings=self.settings
            )
            self._orientation_committed = False
        else:
            self._diagram = diagram.snapshot()
            self._orientation_committed = True

        self._undo = HistoryStack(self.settings.history_limit)
        self._redo = HistoryStack(self.settings.history_limit)
        self._audit = AuditTrail(self.settings.audit_limit)
        self._selection = SelectionState()
        self._pending_insert: Optional[PendingInsert] = None

    # -------------------------------------------------------------------------
    # Read API
    # -------------------------------------------------------------------------

    @property
    def diagram(self) -> Diagram:
        """Deep copy of the current diagram."""
        return self._diagram.snapshot()

    @property
    def selection(self) -> SelectionState:
        return self._selection.model_copy(deep=True)

    @property
    def pending_insert(self) -> Optional[PendingInsert]:
        return self._pending_insert.model_copy() if self._pending_insert else None

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_labels(self) -> List[str]:
        return self._undo.labels

    @property
    def redo_labels(self) -> List[str]:
        return self._redo.labels

    @property
    def audit_trail(self) -> List[AuditEntry]:
        return self._audit.entries

    @property
    def orientation_committed(self) -> bool:
        return self._orientation_committed

    def export_audit(self) -> str:
        """Audit trail as a ``{generatedAt, count, entries}`` JSON document."""
        return audit_log_to_json(self._audit.entries)

    def log(
        self,
        action: str,
        target_type: Union[TargetType, str],
        target_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append an audit entry without touching the diagram."""
        return self._audit.append(action, TargetType(target_type), target_id, payload)

    # -------------------------------------------------------------------------
    # Commit protocol
    # -------------------------------------------------------------------------

    def _commit(
        self,
        label: str,
        updater: Updater,
        *,
        action: str,
        target_type: TargetType,
        target_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        draft = self._diagram.snapshot()
        if not updater(draft):
            logger.debug(
                "Command had no effect",
                extra={"action": action, "target_id": target_id},
            )
            return False

        draft.updated_at = utc_now()
        self._undo.push(self._diagram, label)
        self._redo.clear()
        self._audit.append(action, target_type, target_id, payload)
        self._diagram = draft
        self._orientation_committed = True
        self._prune_selection()

        logger.info(
            "Applied %s",
            action,
            extra={"action": action, "target_type": target_type, "target_id": target_id},
        )
        return True

    def _prune_selection(self) -> None:
        """Drop selected ids and insertion cursors that no longer resolve."""
        diagram = self._diagram
        lane_ids = {lane.id for lane in diagram.lanes}
        step_ids = {step.id for step in diagram.steps}
        connection_ids = {c.id for c in diagram.connections}
        phase_ids = {phase.id for phase in diagram.phase_groups}
        self._selection = SelectionState(
            lanes=[i for i in self._selection.lanes if i in lane_ids],
            steps=[i for i in self._selection.steps if i in step_ids],
            connections=[i for i in self._selection.connections if i in connection_ids],
            phases=[i for i in self._selection.phases if i in phase_ids],
        )
        if self._pending_insert and self._pending_insert.lane_id not in lane_ids:
            self._pending_insert = None

    # -------------------------------------------------------------------------
    # Lanes
    # -------------------------------------------------------------------------

    def add_lane(self, title: Optional[str] = None) -> Optional[str]:
        """Append a lane after the last one. Returns the new lane id."""
        lane = create_lane(len(self._diagram.lanes), title or self.settings.new_lane_title)

        def apply(draft: Diagram) -> bool:
            draft.lanes.append(lane)
            draft.lanes = normalize_lane_orders(draft.lanes)
            reflow_all(draft)
            sort_steps(draft)
            return True

        committed = self._commit(
            "add lane",
            apply,
            action="add_lane",
            target_type=TargetType.LANE,
            target_id=lane.id,
            payload={"title": lane.title},
        )
        return lane.id if committed else None

    def update_lane(
        self,
        lane_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
        width: Optional[float] = None,
        order: Optional[int] = None,
    ) -> bool:
        updates = {
            key: value
            for key, value in {
                "title": title,
                "description": description,
                "color": color,
                "width": width,
                "order": order,
            }.items()
            if value is not None
        }
        if not _is_number(width):
            updates.pop("width", None)
        if not updates:
            return False

        def apply(draft: Diagram) -> bool:
            lane = draft.get_lane(lane_id)
            if lane is None:
                return False
            if title is not None:
                lane.title = title
            if description is not None:
                lane.description = description
            if color is not None:
                lane.color = sanitize_color(color) or get_lane_color(lane.order)
            if _is_number(width):
                lane.width = max(0.0, float(width))
            if order is not None:
                move_lane(draft, lane_id, clamp_index(order))
            reflow_all(draft)
            sort_steps(draft)
            return True

        return self._commit(
            "update lane",
            apply,
            action="update_lane",
            target_type=TargetType.LANE,
            target_id=lane_id,
            payload=updates,
        )

    def remove_lane(self, lane_id: str) -> bool:
        """Remove a lane with its steps and every connection touching them."""

        def apply(draft: Diagram) -> bool:
            if remove_lane_cascade(draft, lane_id) is None:
                return False
            reflow_all(draft)
            sort_steps(draft)
            return True

        return self._commit(
            "remove lane",
            apply,
            action="remove_lane",
            target_type=TargetType.LANE,
            target_id=lane_id,
        )

    def reorder_lane(self, lane_id: str, new_order: int) -> bool:
        def apply(draft: Diagram) -> bool:
            if not move_lane(draft, lane_id, clamp_index(new_order)):
                return False
            reflow_all(draft)
            sort_steps(draft)
            return True

        return self._commit(
            "reorder lane",
            apply,
            action="reorder_lane",
            target_type=TargetType.LANE,
            target_id=lane_id,
            payload={"newOrder": new_order},
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def add_step(
        self,
        lane_id: Optional[str] = None,
        *,
        kind: Union[StepKind, str] = StepKind.PROCESS,
        title: Optional[str] = None,
        row: Optional[int] = None,
    ) -> Optional[str]:
        """Add a step to a lane. Returns the new step id.

        Without ``lane_id`` the pending insert cursor supplies the lane and
        row, and advances one row on success. Without ``row`` the step takes
        the first free row of the lane. With an occupied ``row`` the occupant
        and every later step shift down by one.
        """
        kind = StepKind(kind)
        from_cursor = lane_id is None
        if from_cursor:
            if self._pending_insert is None:
                logger.debug("add_step without lane or pending insert")
                return None
            lane_id = self._pending_insert.lane_id
            if row is None:
                row = self._pending_insert.row

        lane = self._diagram.get_lane(lane_id)
        if lane is None:
            logger.debug("add_step on unknown lane", extra={"lane_id": lane_id})
            return None

        insert_row = (
            first_free_row(self._diagram, lane.id) if row is None else clamp_index(row)
        )
        step = create_step(
            self._diagram.lanes,
            lane,
            self._diagram.orientation,
            title=title or self.settings.new_step_title,
            row=insert_row,
            kind=kind,
        )

        def apply(draft: Diagram) -> bool:
            lane_steps = [item for item in draft.steps if item.lane_id == lane.id]
            if any(item.order == insert_row for item in lane_steps):
                for item in lane_steps:
                    if item.order >= insert_row:
                        item.order += 1
            draft.steps.append(step)
            reflow_lane(draft, lane.id)
            sort_steps(draft)
            return True

        committed = self._commit(
            "add step",
            apply,
            action="add_step",
            target_type=TargetType.STEP,
            target_id=step.id,
            payload={"laneId": lane.id, "row": insert_row, "kind": kind.value},
        )
        if not committed:
            return None
        if from_cursor:
            self._pending_insert = PendingInsert(lane_id=lane.id, row=insert_row + 1)
            self._selection = SelectionState(lanes=[lane.id], steps=[step.id])
        return step.id

    def update_step(
        self,
        step_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
        fill_color: Optional[str] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
        order: Optional[int] = None,
        lane_id: Optional[str] = None,
    ) -> bool:
        """Edit step fields. Moving to another lane lands on its first free row at or after ``order``."""
        updates = {
            key: value
            for key, value in {
                "title": title,
                "description": description,
                "color": color,
                "fillColor": fill_color,
                "width": width,
                "height": height,
                "order": order,
                "laneId": lane_id,
            }.items()
            if value is not None
        }

        def apply(draft: Diagram) -> bool:
            step = draft.get_step(step_id)
            if step is None:
                return False
            if lane_id is not None and draft.get_lane(lane_id) is None:
                return False

            previous_lane_id = step.lane_id
            if title is not None:
                step.title = title
            if description is not None:
                step.description = description
            if color is not None:
                step.color = sanitize_color(color) or step.color
            if fill_color is not None:
                step.fill_color = sanitize_color(fill_color) or step.fill_color
            if _is_number(width):
                step.width = max(0.0, float(width))
            if _is_number(height):
                step.height = max(0.0, float(height))
            if order is not None:
                step.order = clamp_index(order)
            if lane_id is not None and lane_id != previous_lane_id:
                step.lane_id = lane_id
                step.order = first_free_row(draft, lane_id, step.order, exclude_id=step.id)

            reflow_lane(draft, step.lane_id)
            if step.lane_id != previous_lane_id:
                reflow_lane(draft, previous_lane_id)
            sort_steps(draft)
            return True

        return self._commit(
            "update step",
            apply,
            action="update_step",
            target_type=TargetType.STEP,
            target_id=step_id,
            payload=updates,
        )

    def move_step(self, step_id: str, x: float, y: float) -> bool:
        """Drop a step at pixel ``(x, y)``.

        The lane is the one whose centre is nearest to the step's centre on
        the cross axis; the row comes from the main axis and is bumped to the
        first free row at or after it.
        """

        def apply(draft: Diagram) -> bool:
            step = draft.get_step(step_id)
            if step is None or not draft.lanes:
                return False

            orientation = draft.orientation
            center = step_cross_center(x, y, step.width, step.height, orientation)
            target_lane = draft.sorted_lanes[resolve_lane_index(draft.lanes, center)]
            if orientation == Orientation.HORIZONTAL:
                desired_row = row_from_pixel(x, step.width, orientation)
            else:
                desired_row = row_from_pixel(y, step.height, orientation)

            previous_lane_id = step.lane_id
            step.lane_id = target_lane.id
            step.order = first_free_row(draft, target_lane.id, desired_row, exclude_id=step.id)
            reflow_lane(draft, target_lane.id)
            if previous_lane_id != target_lane.id:
                reflow_lane(draft, previous_lane_id)
            sort_steps(draft)
            return True

        return self._commit(
            "move step",
            apply,
            action="move_step",
            target_type=TargetType.STEP,
            target_id=step_id,
            payload={"x": x, "y": y},
        )

    def reorder_step(self, step_id: str, target_index: int) -> bool:
        """Move a step to ``target_index`` in its lane and compact the lane to rows 0..n-1."""

        def apply(draft: Diagram) -> bool:
            step = draft.get_step(step_id)
            if step is None:
                return False
            lane_steps = [item for item in draft.steps_in_lane(step.lane_id) if item.id != step_id]
            bounded = max(0, min(clamp_index(target_index), len(lane_steps)))
            lane_steps.insert(bounded, step)
            for index, item in enumerate(lane_steps):
                item.order = index
            reflow_lane(draft, step.lane_id, lane_steps)
            sort_steps(draft)
            return True

        return self._commit(
            "reorder step",
            apply,
            action="reorder_step",
            target_type=TargetType.STEP,
            target_id=step_id,
            payload={"targetIndex": target_index},
        )

    def _shift_step(self, step_id: str, delta: int, label: str, action: str) -> bool:
        def apply(draft: Diagram) -> bool:
            step = draft.get_step(step_id)
            if step is None:
                return False
            previous = step.order
            target = previous + delta
            if target < 0:
                return False
            for item in draft.steps:
                if item.lane_id == step.lane_id and item.id != step_id and item.order == target:
                    item.order = previous
                    break
            step.order = target
            reflow_lane(draft, step.lane_id)
            sort_steps(draft)
            return True

        return self._commit(
            label,
            apply,
            action=action,
            target_type=TargetType.STEP,
            target_id=step_id,
        )

    def move_step_up(self, step_id: str) -> bool:
        """Swap with the step one row up, or move into the empty row above."""
        return self._shift_step(step_id, -1, "move step up", "move_step_up")

    def move_step_down(self, step_id: str) -> bool:
        return self._shift_step(step_id, 1, "move step down", "move_step_down")

    def change_step_kind(self, step_id: str, kind: Union[StepKind, str]) -> bool:
        """Switch kind; size and colours reset to that kind's defaults."""
        kind = StepKind(kind)

        def apply(draft: Diagram) -> bool:
            step = draft.get_step(step_id)
            if step is None:
                return False
            step.kind = kind
            step.width, step.height = kind_dimensions(kind)
            step.color = KIND_COLORS[kind]
            step.fill_color = kind_fill_color(kind)
            reflow_lane(draft, step.lane_id)
            sort_steps(draft)
            return True

        return self._commit(
            "change step kind",
            apply,
            action="change_step_kind",
            target_type=TargetType.STEP,
            target_id=step_id,
            payload={"kind": kind.value},
        )

    def remove_step(self, step_id: str) -> bool:
        def apply(draft: Diagram) -> bool:
            step = cascade_delete(draft, step_id)
            if step is None:
                return False
            reflow_lane(draft, step.lane_id)
            sort_steps(draft)
            return True

        return self._commit(
            "remove step",
            apply,
            action="remove_step",
            target_type=TargetType.STEP,
            target_id=step_id,
        )

    def shift_rows(
        self,
        row: int,
        amount: int,
        *,
        scope: str = "lane",
        lane_id: Optional[str] = None,
        direction: str = "down",
    ) -> bool:
        """Insert or close empty rows.

        Steps at or after ``row`` move by ``amount`` in one lane
        (``scope="lane"``) or in every lane (``scope="all"``). Moving up is
        skipped for any lane where a moved step would land on a step that
        stays put. Phase groups follow the shifted rows.
        """
        if direction not in ("down", "up"):
            raise ValueError(f"direction must be 'down' or 'up', got {direction!r}")
        if scope not in ("lane", "all"):
            raise ValueError(f"scope must be 'lane' or 'all', got {scope!r}")

        start = clamp_index(row)
        normalized = max(0, int(math.floor(float(amount)))) if _is_number(amount) else 0
        if normalized <= 0:
            return False
        if scope == "all":
            lane_ids = [lane.id for lane in self._diagram.lanes]
        else:
            lane_ids = [lane_id] if lane_id else []
        if not lane_ids:
            return False

        down = direction == "down"

        def apply(draft: Diagram) -> bool:
            changed = False
            for target_lane_id in lane_ids:
                if draft.get_lane(target_lane_id) is None:
                    continue
                lane_steps = draft.steps_in_lane(target_lane_id)
                moving = [step for step in lane_steps if step.order >= start]
                if not moving:
                    continue
                if down:
                    for step in moving:
                        step.order += normalized
                else:
                    static_rows = {step.order for step in lane_steps if step.order < start}
                    if any(max(0, step.order - normalized) in static_rows for step in moving):
                        logger.debug(
                            "Skipped upward shift",
                            extra={"lane_id": target_lane_id, "row": start},
                        )
                        continue
                    for step in moving:
                        step.order = max(0, step.order - normalized)
                reflow_lane(draft, target_lane_id, lane_steps)
                changed = True
            sort_steps(draft)

            for phase in draft.phase_groups:
                before = (phase.start_row, phase.end_row)
                if down:
                    if phase.start_row >= start:
                        phase.start_row += normalized
                        phase.end_row += normalized
                    elif phase.end_row >= start:
                        phase.end_row += normalized
                else:
                    if phase.start_row >= start:
                        phase.start_row = max(0, phase.start_row - normalized)
                        phase.end_row = max(phase.start_row, phase.end_row - normalized)
                    elif phase.end_row >= start:
                        phase.end_row = max(phase.start_row, phase.end_row - normalized)
                changed = changed or before != (phase.start_row, phase.end_row)
            draft.phase_groups.sort(key=lambda phase: phase.start_row)
            return changed

        committed = self._commit(
            "shift rows down" if down else "shift rows up",
            apply,
            action="shift_rows_down" if down else "shift_rows_up",
            target_type=TargetType.DIAGRAM,
            payload={
                "row": start,
                "amount": normalized,
                "scope": scope,
                "laneIds": lane_ids,
                "direction": direction,
            },
        )
        pending = self._pending_insert
        if committed and pending and pending.lane_id in lane_ids:
            next_row = pending.row + normalized if down else max(0, pending.row - normalized)
            self._pending_insert = PendingInsert(lane_id=pending.lane_id, row=next_row)
        return committed

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def add_connection(
        self,
        source_id: str,
        target_id: str,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
    ) -> Optional[str]:
        """Connect two existing steps. Self-loops and duplicates are refused."""
        connection = Connection(
            source_id=source_id,
            target_id=target_id,
            source_handle=source_handle or None,
            target_handle=target_handle or None,
        )

        def apply(draft: Diagram) -> bool:
            if source_id == target_id:
                return False
            if draft.get_step(source_id) is None or draft.get_step(target_id) is None:
                return False
            return dedupe_connection(draft, connection)

        committed = self._commit(
            "add connection",
            apply,
            action="add_connection",
            target_type=TargetType.CONNECTION,
            target_id=connection.id,
            payload={
                "sourceId": source_id,
                "targetId": target_id,
                "sourceHandle": source_handle,
                "targetHandle": target_handle,
            },
        )
        return connection.id if committed else None

    def update_connection_label(self, connection_id: str, label: Optional[str]) -> bool:
        text = str(label or "")[:LABEL_MAX_LENGTH]

        def apply(draft: Diagram) -> bool:
            connection = draft.get_connection(connection_id)
            if connection is None:
                return False
            connection.label = text
            return True

        return self._commit(
            "update connection label",
            apply,
            action="update_connection_label",
            target_type=TargetType.CONNECTION,
            target_id=connection_id,
            payload={"label": text},
        )

    def update_connection_marker(
        self,
        connection_id: str,
        *,
        start: Optional[Union[MarkerKind, str]] = None,
        end: Optional[Union[MarkerKind, str]] = None,
        size: Optional[float] = None,
    ) -> bool:
        start_marker = MarkerKind(start) if start is not None else None
        end_marker = MarkerKind(end) if end is not None else None
        marker_size = clamp_marker_size(size) if _is_number(size) else None

        def apply(draft: Diagram) -> bool:
            connection = draft.get_connection(connection_id)
            if connection is None:
                return False
            if start_marker is not None:
                connection.start_marker = start_marker
            if end_marker is not None:
                connection.end_marker = end_marker
            if marker_size is not None:
                connection.marker_size = marker_size
            return True

        payload: Dict[str, Any] = {}
        if start_marker is not None:
            payload["startMarker"] = start_marker.value
        if end_marker is not None:
            payload["endMarker"] = end_marker.value
        if marker_size is not None:
            payload["markerSize"] = marker_size
        if not payload:
            return False

        return self._commit(
            "update connection marker",
            apply,
            action="update_connection_marker",
            target_type=TargetType.CONNECTION,
            target_id=connection_id,
            payload=payload,
        )

    def update_connection_control(self, connection_id: str, control: Any = None) -> bool:
        """Set the bend point (``Point``, ``{"x", "y"}`` or ``(x, y)``); None clears it."""
        point = _as_point(control)

        def apply(draft: Diagram) -> bool:
            connection = draft.get_connection(connection_id)
            if connection is None:
                return False
            connection.control = point
            return True

        return self._commit(
            "update connection control",
            apply,
            action="update_connection_control",
            target_type=TargetType.CONNECTION,
            target_id=connection_id,
            payload=point.model_dump() if point else None,
        )

    def update_connection_endpoints(
        self,
        connection_id: str,
        *,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        source_handle: Any = _UNSET,
        target_handle: Any = _UNSET,
    ) -> bool:
        """Re-attach a connection.

        Handles left unset keep their value; passing None clears them. Any
        change of endpoint or handle clears the bend point.
        """
        payload: Dict[str, Any] = {}
        if source_id is not None:
            payload["sourceId"] = source_id
        if target_id is not None:
            payload["targetId"] = target_id
        if source_handle is not _UNSET:
            payload["sourceHandle"] = source_handle
        if target_handle is not _UNSET:
            payload["targetHandle"] = target_handle

        def apply(draft: Diagram) -> bool:
            connection = draft.get_connection(connection_id)
            if connection is None:
                return False
            next_source = source_id or connection.source_id
            next_target = target_id or connection.target_id
            if next_source == next_target:
                return False
            if draft.get_step(next_source) is None or draft.get_step(next_target) is None:
                return False
            next_source_handle = (
                connection.source_handle if source_handle is _UNSET else (source_handle or None)
            )
            next_target_handle = (
                connection.target_handle if target_handle is _UNSET else (target_handle or None)
            )
            if is_duplicate_connection(
                draft,
                next_source,
                next_target,
                next_source_handle,
                next_target_handle,
                ignore_id=connection_id,
            ):
                return False

            endpoints_changed = (
                next_source != connection.source_id
                or next_target != connection.target_id
                or source_handle is not _UNSET
                or target_handle is not _UNSET
            )
            connection.source_id = next_source
            connection.target_id = next_target
            connection.source_handle = next_source_handle
            connection.target_handle = next_target_handle
            if endpoints_changed:
                connection.control = None
            return True

        return self._commit(
            "update connection endpoints",
            apply,
            action="update_connection_endpoints",
            target_type=TargetType.CONNECTION,
            target_id=connection_id,
            payload=payload,
        )

    def reverse_connection(self, connection_id: str) -> bool:
        """Swap source and target; handles keep their side but switch role."""

        def apply(draft: Diagram) -> bool:
            connection = draft.get_connection(connection_id)
            if connection is None:
                return False
            next_source = connection.target_id
            next_target = connection.source_id
            next_source_handle = swap_handle(connection.target_handle, "source")
            next_target_handle = swap_handle(connection.source_handle, "target")
            if is_duplicate_connection(
                draft,
                next_source,
                next_target,
                next_source_handle,
                next_target_handle,
                ignore_id=connection_id,
            ):
                return False
            connection.source_id = next_source
            connection.target_id = next_target
            connection.source_handle = next_source_handle
            connection.target_handle = next_target_handle
            return True

        return self._commit(
            "reverse connection",
            apply,
            action="reverse_connection",
            target_type=TargetType.CONNECTION,
            target_id=connection_id,
        )

    def remove_connection(self, connection_id: str) -> bool:
        def apply(draft: Diagram) -> bool:
            if draft.get_connection(connection_id) is None:
                return False
            draft.connections = [c for c in draft.connections if c.id != connection_id]
            return True

        return self._commit(
            "remove connection",
            apply,
            action="remove_connection",
            target_type=TargetType.CONNECTION,
            target_id=connection_id,
        )

    # -------------------------------------------------------------------------
    # Phase groups
    # -------------------------------------------------------------------------

    def phase_group_is_valid(self, start_row: int, end_row: int) -> bool:
        """True when every row of the range holds a step in at least one lane."""
        start, end = normalize_row_range(start_row, end_row)
        used_rows = {step.order for step in self._diagram.steps}
        return all(row in used_rows for row in range(start, end + 1))

    def add_phase_group(self, start_row: int, end_row: int, title: str = "") -> Optional[str]:
        phase = PhaseGroup(title=title, start_row=start_row, end_row=end_row)

        def apply(draft: Diagram) -> bool:
            draft.phase_groups.append(phase)
            draft.phase_groups.sort(key=lambda item: item.start_row)
            return True

        committed = self._commit(
            "add phase",
            apply,
            action="add_phase_group",
            target_type=TargetType.PHASE,
            target_id=phase.id,
            payload={"title": phase.title, "startRow": phase.start_row, "endRow": phase.end_row},
        )
        return phase.id if committed else None

    def update_phase_group(
        self,
        phase_id: str,
        *,
        title: Optional[str] = None,
        start_row: Optional[int] = None,
        end_row: Optional[int] = None,
    ) -> bool:
        updates = {
            key: value
            for key, value in {"title": title, "startRow": start_row, "endRow": end_row}.items()
            if value is not None
        }

        def apply(draft: Diagram) -> bool:
            phase = draft.get_phase_group(phase_id)
            if phase is None:
                return False
            if start_row is not None or end_row is not None:
                start, end = normalize_row_range(
                    phase.start_row if start_row is None else start_row,
                    phase.end_row if end_row is None else end_row,
                )
                phase.start_row = start
                phase.end_row = end
            if title is not None:
                phase.title = title
            draft.phase_groups.sort(key=lambda item: item.start_row)
            return True

        return self._commit(
            "update phase",
            apply,
            action="update_phase_group",
            target_type=TargetType.PHASE,
            target_id=phase_id,
            payload=updates,
        )

    def remove_phase_group(self, phase_id: str) -> bool:
        def apply(draft: Diagram) -> bool:
            if draft.get_phase_group(phase_id) is None:
                return False
            draft.phase_groups = [phase for phase in draft.phase_groups if phase.id != phase_id]
            return True

        return self._commit(
            "remove phase",
            apply,
            action="remove_phase_group",
            target_type=TargetType.PHASE,
            target_id=phase_id,
        )

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def undo(self) -> bool:
        entry = self._undo.pop()
        if entry is None:
            return False
        self._redo.push(self._diagram, "undo")
        self._diagram = entry.diagram
        self._audit.append("undo", TargetType.DIAGRAM, payload={"label": entry.label})
        self._prune_selection()
        logger.info("Undid %s", entry.label)
        return True

    def redo(self) -> bool:
        entry = self._redo.pop()
        if entry is None:
            return False
        self._undo.push(self._diagram, "redo")
        self._diagram = entry.diagram
        self._audit.append("redo", TargetType.DIAGRAM)
        self._prune_selection()
        logger.info("Redid last undo")
        return True

    def _replace(self, diagram: Diagram) -> None:
        self._diagram = diagram
        self._orientation_committed = True
        self._undo.clear()
        self._redo.clear()
        self._selection = SelectionState()
        self._pending_insert = None

    def set_diagram(
        self,
        diagram: Union[Diagram, Dict[str, Any]],
        *,
        preserve_layout: bool = False,
        label: str = "import diagram",
    ) -> None:
        """Replace the whole diagram and start a fresh history.

        With ``preserve_layout`` the given step coordinates are kept and
        only order collisions are resolved; otherwise every position is
        recomputed from lane and row.
        """
        if isinstance(diagram, Diagram):
            snapshot = diagram.snapshot()
        else:
            snapshot = Diagram.model_validate(diagram)
        snapshot.updated_at = utc_now()

        snapshot.lanes = normalize_lane_orders(snapshot.lanes)
        lane_ids = {lane.id for lane in snapshot.lanes}
        kept_steps = [step for step in snapshot.steps if step.lane_id in lane_ids]
        dropped = len(snapshot.steps) - len(kept_steps)
        snapshot.steps = kept_steps
        prune_orphan_connections(snapshot)
        connections, snapshot.connections = snapshot.connections, []
        for connection in connections:
            if connection.source_id != connection.target_id:
                dedupe_connection(snapshot, connection)
        snapshot.phase_groups.sort(key=lambda phase: phase.start_row)
        reflow_all(snapshot, reposition=not preserve_layout)
        sort_steps(snapshot)

        if dropped:
            logger.debug("Dropped steps without a lane", extra={"count": dropped})

        self._replace(snapshot)
        self._audit.append(
            "set_diagram",
            TargetType.DIAGRAM,
            snapshot.id,
            {"label": label, "preserveLayout": preserve_layout},
        )
        logger.info(
            "Diagram replaced",
            extra={"label": label, "lanes": len(snapshot.lanes), "steps": len(snapshot.steps)},
        )

    def initialize_diagram(self, orientation: Union[Orientation, str] = Orientation.VERTICAL) -> bool:
        """Start a default diagram in ``orientation``. Only allowed once."""
        if self._orientation_committed:
            return False
        self._replace(create_empty_diagram(Orientation(orientation), settings=self.settings))
        self._audit.append("initialize_diagram", TargetType.DIAGRAM, self._diagram.id)
        return True

    def reset(self) -> None:
        """Fresh default diagram in the current orientation, with empty history."""
        orientation = self._diagram.orientation
        self._replace(create_empty_diagram(orientation, settings=self.settings))
        self._audit.append("reset", TargetType.DIAGRAM, self._diagram.id)
        logger.info("Diagram reset", extra={"orientation": orientation})

    # -------------------------------------------------------------------------
    # Editor state (not part of history)
    # -------------------------------------------------------------------------

    def set_selection(
        self,
        lanes: Optional[Iterable[str]] = None,
        steps: Optional[Iterable[str]] = None,
        connections: Optional[Iterable[str]] = None,
        phases: Optional[Iterable[str]] = None,
    ) -> None:
        """Replace the selection. Selecting steps or connections drops the insert cursor."""
        self._selection = SelectionState(
            lanes=list(lanes or []),
            steps=list(steps or []),
            connections=list(connections or []),
            phases=list(phases or []),
        )
        if self._selection.steps or self._selection.connections:
            self._pending_insert = None

    def clear_selection(self) -> None:
        self._selection = SelectionState()
        self._pending_insert = None

    def set_pending_insert(self, lane_id: str, row: int = 0) -> bool:
        if self._diagram.get_lane(lane_id) is None:
            return False
        self._pending_insert = PendingInsert(lane_id=lane_id, row=clamp_index(math.floor(float(row))))
        return True

    def clear_pending_insert(self) -> None:
        self._pending_insert = None

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """Run a command by name with keyword arguments.

        Raises:
            UnknownCommandError: If ``name`` is not a store command.
            TypeError: If the arguments do not match the command signature.
            ValueError: If an enum argument (kind, marker, orientation) is invalid.
        """
        if name not in COMMANDS:
            raise UnknownCommandError(f"Unknown command: {name}", context={"command": name})
        return getattr(self, name)(**(args or {}))
