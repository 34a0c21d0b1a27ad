"""Tests for phase groups and the history stack."""

import pytest

from swimlane.core.defaults import create_empty_diagram
from swimlane.store.history import HistoryStack


def phase_rows(store):
    return [(phase.title, phase.start_row, phase.end_row) for phase in store.diagram.phase_groups]


class TestPhaseGroups:
    def test_add_normalizes_range(self, store):
        phase_id = store.add_phase_group(4, 1, "Build")
        phase = store.diagram.get_phase_group(phase_id)
        assert (phase.start_row, phase.end_row) == (1, 4)
        assert store.audit_trail[-1].action == "add_phase_group"
        assert store.undo_labels == ["add phase"]

    def test_kept_sorted_by_start_row(self, store):
        store.add_phase_group(5, 6, "Late")
        store.add_phase_group(0, 1, "Early")
        late_id = store.diagram.phase_groups[1].id
        store.update_phase_group(late_id, start_row=-4)
        assert phase_rows(store) == [("Early", 0, 1), ("Late", 0, 6)]

    def test_update_title_only(self, store):
        phase_id = store.add_phase_group(0, 0)
        assert store.update_phase_group(phase_id, title="Kickoff")
        assert phase_rows(store) == [("Kickoff", 0, 0)]
        assert store.audit_trail[-1].payload == {"title": "Kickoff"}

    def test_update_swapped_bounds(self, store):
        phase_id = store.add_phase_group(1, 2)
        store.update_phase_group(phase_id, start_row=7)
        assert phase_rows(store) == [("", 2, 7)]

    def test_remove(self, store):
        phase_id = store.add_phase_group(0, 0)
        assert store.remove_phase_group(phase_id)
        assert store.diagram.phase_groups == []
        assert store.remove_phase_group(phase_id) is False
        assert store.update_phase_group(phase_id, title="x") is False

    def test_validity_needs_a_step_in_every_row(self, store):
        lane = store.diagram.sorted_lanes[1]
        assert store.phase_group_is_valid(0, 0)
        assert not store.phase_group_is_valid(0, 1)
        store.add_step(lane.id, row=1)
        assert store.phase_group_is_valid(1, 0)
        assert not store.phase_group_is_valid(0, 2)

    def test_removed_phase_leaves_selection(self, store):
        phase_id = store.add_phase_group(0, 0)
        store.set_selection(phases=[phase_id])
        store.remove_phase_group(phase_id)
        assert store.selection.phases == []


class TestHistoryStack:
    def test_lifo(self):
        stack = HistoryStack(limit=5)
        first, second = create_empty_diagram(), create_empty_diagram()
        stack.push(first, "one")
        stack.push(second, "two")
        assert stack.peek().label == "two"
        assert stack.pop().diagram is second
        assert stack.pop().diagram is first
        assert stack.pop() is None
        assert not stack

    def test_evicts_oldest(self):
        stack = HistoryStack(limit=2)
        for label in ("a", "b", "c"):
            stack.push(create_empty_diagram(), label)
        assert stack.labels == ["b", "c"]
        assert len(stack) == 2

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            HistoryStack(limit=0)
