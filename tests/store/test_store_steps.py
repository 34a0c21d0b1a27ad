"""Tests for step commands on DiagramStore."""

import pytest

from swimlane.core.defaults import KIND_FILL_COLORS, create_lane, create_step
from swimlane.core.diagram import Diagram, Orientation, PhaseGroup, StepKind
from swimlane.layout.engine import pixel_from_row, position_of_lane, position_of_step
from swimlane.store.store import DiagramStore


def rows(store, lane_id):
    return [(step.title, step.order) for step in store.diagram.steps_in_lane(lane_id)]


def first_lane(store):
    return store.diagram.sorted_lanes[0]


def fill_lane(store, lane_id, titles):
    """Append steps with the given titles below the existing ones."""
    return [store.add_step(lane_id, title=title) for title in titles]


def two_lane_store(settings) -> DiagramStore:
    lanes = [create_lane(0, "Customer"), create_lane(1, "Support")]
    steps = [create_step(lanes, lanes[0], Orientation.VERTICAL, title="Call")]
    return DiagramStore(Diagram(title="Two lanes", lanes=lanes, steps=steps), settings=settings)


# -----------------------------------------------------------------------------
# add_step
# -----------------------------------------------------------------------------


class TestAddStep:
    def test_decision_in_empty_lane(self, settings):
        """A decision added to an empty lane lands on row 0 with decision size."""
        store = two_lane_store(settings)
        lane = store.diagram.sorted_lanes[1]
        step_id = store.add_step(lane.id, kind="decision")

        diagram = store.diagram
        step = diagram.get_step(step_id)
        expected = position_of_step(diagram.lanes, lane, Orientation.VERTICAL, 0, (220, 160))
        assert step.order == 0
        assert (step.width, step.height) == (220, 160)
        assert (step.x, step.y) == (expected.x, expected.y)
        assert step.fill_color == KIND_FILL_COLORS[StepKind.DECISION]

    def test_takes_first_free_row(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B", "C"])
        assert rows(store, lane.id) == [("Task 1", 0), ("B", 1), ("C", 2)]

    def test_fills_gaps_before_appending(self, store):
        lane = first_lane(store)
        b, c = fill_lane(store, lane.id, ["B", "C"])
        store.remove_step(b)
        store.add_step(lane.id, title="D")
        assert rows(store, lane.id) == [("Task 1", 0), ("D", 1), ("C", 2)]

    def test_explicit_row_shifts_occupants(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B"])
        store.add_step(lane.id, title="Top", row=0)
        assert rows(store, lane.id) == [("Top", 0), ("Task 1", 1), ("B", 2)]

    def test_explicit_free_row_keeps_others(self, store):
        lane = first_lane(store)
        store.add_step(lane.id, title="Far", row=4)
        assert rows(store, lane.id) == [("Task 1", 0), ("Far", 4)]

    def test_pending_insert_supplies_lane_and_row(self, store):
        lane = store.diagram.sorted_lanes[1]
        store.set_pending_insert(lane.id, 0)
        step_id = store.add_step(title="Inserted")

        assert rows(store, lane.id) == [("Inserted", 0), ("Task 2", 1)]
        assert store.pending_insert.row == 1
        assert store.selection.steps == [step_id]
        assert store.selection.lanes == [lane.id]

    def test_without_lane_or_cursor(self, store):
        assert store.add_step() is None
        assert not store.can_undo

    def test_unknown_lane(self, store):
        assert store.add_step("missing") is None
        assert store.audit_trail == []

    def test_unknown_kind_raises(self, store):
        with pytest.raises(ValueError):
            store.add_step(first_lane(store).id, kind="hexagon")

    def test_horizontal_step_position(self, horizontal_store):
        lane = horizontal_store.diagram.sorted_lanes[2]
        step_id = horizontal_store.add_step(lane.id)
        diagram = horizontal_store.diagram
        step = diagram.get_step(step_id)
        assert step.order == 1
        assert step.x == pixel_from_row(1, step.width, Orientation.HORIZONTAL)
        assert step.y == position_of_lane(diagram.lanes, 2) + (lane.width - step.height) / 2


# -----------------------------------------------------------------------------
# Ordering
# -----------------------------------------------------------------------------


class TestReorderStep:
    def test_move_third_of_four_to_top(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B", "C", "D"])
        moved = store.diagram.steps_in_lane(lane.id)[2]

        assert store.reorder_step(moved.id, 0)
        steps = store.diagram.steps_in_lane(lane.id)
        assert [step.title for step in steps] == ["C", "Task 1", "B", "D"]
        assert [step.order for step in steps] == [0, 1, 2, 3]
        assert steps[0].id == moved.id

    def test_compacts_gaps(self, store):
        lane = first_lane(store)
        store.add_step(lane.id, title="Four", row=4)
        nine = store.add_step(lane.id, title="Nine", row=9)
        store.reorder_step(nine, 1)
        assert rows(store, lane.id) == [("Task 1", 0), ("Nine", 1), ("Four", 2)]

    def test_index_is_clamped(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B"])
        top = store.diagram.steps_in_lane(lane.id)[0]
        store.reorder_step(top.id, 50)
        assert rows(store, lane.id) == [("B", 0), ("Task 1", 1)]

    def test_positions_follow_new_rows(self, store):
        lane = first_lane(store)
        b, = fill_lane(store, lane.id, ["B"])
        store.reorder_step(b, 0)
        step = store.diagram.get_step(b)
        assert step.y == pixel_from_row(0, step.height)


class TestMoveStepUpDown:
    def test_up_swaps_with_occupant(self, store):
        lane = first_lane(store)
        b, = fill_lane(store, lane.id, ["B"])
        assert store.move_step_up(b)
        assert rows(store, lane.id) == [("B", 0), ("Task 1", 1)]

    def test_up_into_empty_row(self, store):
        lane = first_lane(store)
        far = store.add_step(lane.id, title="Far", row=3)
        store.move_step_up(far)
        assert rows(store, lane.id) == [("Task 1", 0), ("Far", 2)]

    def test_up_at_top_is_noop(self, store):
        top = store.diagram.steps_in_lane(first_lane(store).id)[0]
        assert store.move_step_up(top.id) is False
        assert not store.can_undo

    def test_down_swaps_or_opens_gap(self, store):
        lane = first_lane(store)
        b, = fill_lane(store, lane.id, ["B"])
        top = store.diagram.steps_in_lane(lane.id)[0]
        store.move_step_down(top.id)
        assert rows(store, lane.id) == [("B", 0), ("Task 1", 1)]
        store.move_step_down(top.id)
        assert rows(store, lane.id) == [("B", 0), ("Task 1", 2)]

    def test_unknown_step(self, store):
        assert store.move_step_down("missing") is False


class TestMoveStep:
    def test_moves_across_lanes(self, store):
        diagram = store.diagram
        lanes = diagram.sorted_lanes
        step = diagram.steps_in_lane(lanes[0].id)[0]
        x = position_of_lane(diagram.lanes, 1) + 40
        y = pixel_from_row(2, step.height)

        assert store.move_step(step.id, x, y)
        moved = store.diagram.get_step(step.id)
        assert moved.lane_id == lanes[1].id
        assert moved.order == 2
        assert moved.y == pixel_from_row(2, moved.height)
        assert store.diagram.steps_in_lane(lanes[0].id) == []

    def test_occupied_row_bumps_down(self, store):
        diagram = store.diagram
        lanes = diagram.sorted_lanes
        step = diagram.steps_in_lane(lanes[0].id)[0]
        x = position_of_lane(diagram.lanes, 1) + 40
        store.move_step(step.id, x, pixel_from_row(0, step.height))
        assert rows(store, lanes[1].id) == [("Task 2", 0), ("Task 1", 1)]

    def test_drop_on_own_row_keeps_it(self, store):
        step = store.diagram.steps[0]
        store.move_step(step.id, step.x + 15, step.y - 30)
        moved = store.diagram.get_step(step.id)
        assert (moved.lane_id, moved.order) == (step.lane_id, step.order)

    def test_horizontal_uses_y_for_lane(self, horizontal_store):
        diagram = horizontal_store.diagram
        lanes = diagram.sorted_lanes
        step = diagram.steps_in_lane(lanes[0].id)[0]
        x = pixel_from_row(3, step.width, Orientation.HORIZONTAL)
        y = position_of_lane(diagram.lanes, 2) + 100
        horizontal_store.move_step(step.id, x, y)
        moved = horizontal_store.diagram.get_step(step.id)
        assert (moved.lane_id, moved.order) == (lanes[2].id, 3)


class TestUpdateStep:
    def test_fields(self, store):
        step = store.diagram.steps[0]
        assert store.update_step(step.id, title="Plan", description="d", fill_color="FFEEDD")
        updated = store.diagram.get_step(step.id)
        assert (updated.title, updated.description, updated.fill_color) == ("Plan", "d", "#ffeedd")

    def test_order_collision_is_resolved(self, store):
        lane = first_lane(store)
        b, = fill_lane(store, lane.id, ["B"])
        store.update_step(b, order=0)
        orders = [order for _, order in rows(store, lane.id)]
        assert sorted(orders) == [0, 1]

    def test_lane_change_finds_free_row(self, store):
        lanes = store.diagram.sorted_lanes
        step = store.diagram.steps_in_lane(lanes[0].id)[0]
        store.update_step(step.id, lane_id=lanes[1].id)
        assert rows(store, lanes[1].id) == [("Task 2", 0), ("Task 1", 1)]
        moved = store.diagram.get_step(step.id)
        expected = position_of_step(
            store.diagram.lanes, lanes[1], Orientation.VERTICAL, 1, (moved.width, moved.height)
        )
        assert (moved.x, moved.y) == (expected.x, expected.y)

    def test_unknown_lane_refused(self, store):
        step = store.diagram.steps[0]
        assert store.update_step(step.id, lane_id="missing") is False

    def test_size_change_recentres(self, store):
        step = store.diagram.steps[0]
        store.update_step(step.id, width=100, height=40)
        updated = store.diagram.get_step(step.id)
        assert updated.y == pixel_from_row(0, 40)


class TestChangeKindAndRemove:
    def test_change_kind_resets_size_and_colours(self, store):
        step = store.diagram.steps[0]
        store.update_step(step.id, width=400, fill_color="#123456")
        assert store.change_step_kind(step.id, StepKind.START)
        updated = store.diagram.get_step(step.id)
        assert (updated.width, updated.height) == (220, 110)
        assert updated.fill_color == KIND_FILL_COLORS[StepKind.START]
        assert updated.kind == StepKind.START
        assert updated.y == pixel_from_row(0, 110)

    def test_remove_step_cascades(self, store):
        a, b, c = store.diagram.steps
        store.add_connection(a.id, b.id)
        store.add_connection(b.id, c.id)
        kept = store.add_connection(c.id, a.id)
        assert store.remove_step(b.id)
        diagram = store.diagram
        assert diagram.get_step(b.id) is None
        assert [c.id for c in diagram.connections] == [kept]

    def test_remove_unknown(self, store):
        assert store.remove_step("missing") is False


# -----------------------------------------------------------------------------
# shift_rows
# -----------------------------------------------------------------------------


class TestShiftRows:
    def test_shift_down_in_one_lane(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B", "C"])
        assert store.shift_rows(1, 2, lane_id=lane.id)
        assert rows(store, lane.id) == [("Task 1", 0), ("B", 3), ("C", 4)]

    def test_shift_down_moves_phase_groups(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B", "C"])
        inside = store.add_phase_group(1, 2, "inside")
        spanning = store.add_phase_group(0, 1, "spanning")
        store.shift_rows(1, 2, lane_id=lane.id)
        phases = {phase.id: phase for phase in store.diagram.phase_groups}
        assert (phases[inside].start_row, phases[inside].end_row) == (3, 4)
        assert (phases[spanning].start_row, phases[spanning].end_row) == (0, 3)

    def test_shift_up_skipped_on_collision(self, store):
        lane = first_lane(store)
        store.add_step(lane.id, title="Two", row=2)
        assert store.shift_rows(2, 2, lane_id=lane.id, direction="up") is False
        assert rows(store, lane.id) == [("Task 1", 0), ("Two", 2)]

    def test_shift_up_all_lanes(self, store):
        lanes = store.diagram.sorted_lanes
        store.add_step(lanes[0].id, title="Three", row=3)
        assert store.shift_rows(1, 2, scope="all", direction="up")
        assert rows(store, lanes[0].id) == [("Task 1", 0), ("Three", 1)]

    def test_shift_moves_pending_insert(self, store):
        lane = first_lane(store)
        fill_lane(store, lane.id, ["B"])
        store.set_pending_insert(lane.id, 1)
        store.shift_rows(1, 3, lane_id=lane.id)
        assert store.pending_insert.row == 4

    def test_zero_amount_is_noop(self, store):
        assert store.shift_rows(0, 0, scope="all") is False

    def test_bad_direction(self, store):
        with pytest.raises(ValueError):
            store.shift_rows(0, 1, scope="all", direction="sideways")

    def test_shift_up_closes_phase_rows(self, store):
        lane = first_lane(store)
        store.add_step(lane.id, title="Three", row=3)
        store.add_phase_group(3, 3, "late")
        store.shift_rows(1, 2, lane_id=lane.id, direction="up")
        phase = store.diagram.phase_groups[0]
        assert isinstance(phase, PhaseGroup)
        assert (phase.start_row, phase.end_row) == (1, 1)
