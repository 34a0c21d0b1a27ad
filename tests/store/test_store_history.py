"""Tests for undo/redo, audit trail, whole-diagram replacement and dispatch."""

import json

import pytest

from swimlane.config.settings import load_settings
from swimlane.core.defaults import create_empty_diagram, create_lane
from swimlane.core.diagram import Connection, Diagram, Orientation, Step
from swimlane.core.exceptions import SwimlaneException, UnknownCommandError
from swimlane.store.store import COMMANDS, DiagramStore


def dump(store):
    return store.diagram.model_dump()


def actions(store):
    return [entry.action for entry in store.audit_trail]


# -----------------------------------------------------------------------------
# Undo / redo
# -----------------------------------------------------------------------------


COMMAND_CASES = [
    ("add_lane", lambda s, d: s.add_lane("Extra")),
    ("update_lane", lambda s, d: s.update_lane(d.lanes[0].id, title="Renamed", width=400)),
    ("remove_lane", lambda s, d: s.remove_lane(d.lanes[1].id)),
    ("reorder_lane", lambda s, d: s.reorder_lane(d.lanes[0].id, 2)),
    ("add_step", lambda s, d: s.add_step(d.lanes[0].id, kind="decision", row=0)),
    ("update_step", lambda s, d: s.update_step(d.steps[0].id, lane_id=d.lanes[2].id)),
    ("move_step", lambda s, d: s.move_step(d.steps[0].id, 500, 600)),
    ("change_step_kind", lambda s, d: s.change_step_kind(d.steps[1].id, "end")),
    ("remove_step", lambda s, d: s.remove_step(d.steps[2].id)),
    ("shift_rows", lambda s, d: s.shift_rows(0, 2, scope="all")),
    ("add_connection", lambda s, d: s.add_connection(d.steps[0].id, d.steps[2].id)),
    ("add_phase_group", lambda s, d: s.add_phase_group(0, 0, "Kickoff")),
]


class TestUndoRedo:
    @pytest.mark.parametrize("name,command", COMMAND_CASES, ids=[case[0] for case in COMMAND_CASES])
    def test_undo_restores_and_redo_reapplies(self, store, name, command):
        before = dump(store)
        assert command(store, store.diagram)
        after = dump(store)
        assert after != before

        assert store.undo()
        assert dump(store) == before
        assert store.redo()
        assert dump(store) == after

    def test_undo_on_empty_history(self, store):
        assert store.undo() is False
        assert store.redo() is False
        assert store.audit_trail == []

    def test_new_command_clears_redo(self, store):
        store.add_lane("a")
        store.undo()
        assert store.can_redo
        store.add_lane("b")
        assert not store.can_redo

    def test_labels(self, store):
        store.add_lane("a")
        lane = store.diagram.sorted_lanes[0]
        store.update_lane(lane.id, title="x")
        assert store.undo_labels == ["add lane", "update lane"]
        store.undo()
        assert store.redo_labels == ["undo"]

    def test_history_limit_drops_oldest(self, settings):
        store = DiagramStore(settings=settings.model_copy(update={"history_limit": 3}))
        initial = dump(store)
        for index in range(5):
            store.add_lane(f"lane {index}")
        assert len(store.undo_labels) == 3
        while store.undo():
            pass
        restored = dump(store)
        assert restored != initial
        assert len(restored["lanes"]) == 5

    def test_undo_does_not_restamp_updated_at(self, store):
        store.add_lane("a")
        stamp_before = store.diagram.updated_at
        store.add_lane("b")
        store.undo()
        assert store.diagram.updated_at == stamp_before

    def test_noop_leaves_everything_untouched(self, store):
        before = dump(store)
        assert store.remove_step("missing") is False
        assert dump(store) == before
        assert not store.can_undo
        assert store.audit_trail == []

    def test_diagram_property_is_a_copy(self, store):
        diagram = store.diagram
        diagram.lanes[0].title = "Mutated"
        diagram.steps.clear()
        assert store.diagram.lanes[0].title != "Mutated"
        assert len(store.diagram.steps) == 3


# -----------------------------------------------------------------------------
# Audit trail
# -----------------------------------------------------------------------------


class TestAuditTrail:
    def test_one_entry_per_command(self, store):
        lane_id = store.add_lane("Audit")
        store.update_lane(lane_id, title="Audited")
        store.undo()
        store.redo()
        assert actions(store) == ["add_lane", "update_lane", "undo", "redo"]
        undo_entry = store.audit_trail[2]
        assert undo_entry.target_type == "diagram"
        assert undo_entry.payload == {"label": "update lane"}

    def test_payload_records_updates(self, store):
        lane = store.diagram.sorted_lanes[0]
        store.update_lane(lane.id, title="New")
        entry = store.audit_trail[-1]
        assert entry.target_id == lane.id
        assert entry.payload == {"title": "New"}

    def test_entries_are_copies(self, store):
        store.add_lane()
        store.audit_trail[0].action = "tampered"
        assert actions(store) == ["add_lane"]

    def test_export_audit_document(self, store):
        store.add_lane("a")
        store.add_lane("b")
        document = json.loads(store.export_audit())
        assert document["count"] == 2
        assert set(document) == {"generatedAt", "count", "entries"}
        first = document["entries"][0]
        assert first["action"] == "add_lane"
        assert first["targetType"] == "lane"
        assert "targetId" in first
        assert isinstance(first["timestamp"], int)

    def test_audit_limit(self, settings):
        store = DiagramStore(settings=settings.model_copy(update={"audit_limit": 2}))
        for index in range(4):
            store.add_lane(str(index))
        trail = store.audit_trail
        assert len(trail) == 2
        assert [entry.payload["title"] for entry in trail] == ["2", "3"]

    def test_log_appends_without_history(self, store):
        store.log("export", "diagram", payload={"format": "mermaid"})
        assert actions(store) == ["export"]
        assert not store.can_undo

    def test_log_rejects_unknown_target_type(self, store):
        with pytest.raises(ValueError):
            store.log("export", "galaxy")


# -----------------------------------------------------------------------------
# Whole-diagram operations
# -----------------------------------------------------------------------------


def messy_diagram() -> Diagram:
    lanes = [create_lane(5, "Late"), create_lane(2, "Early")]
    step_a = Step(lane_id=lanes[0].id, title="a", order=0, x=1, y=2)
    step_b = Step(lane_id=lanes[0].id, title="b", order=0, x=3, y=4)
    orphan = Step(lane_id="gone", title="orphan")
    return Diagram(
        title="Messy",
        lanes=lanes,
        steps=[step_a, step_b, orphan],
        connections=[
            Connection(source_id=step_a.id, target_id=step_b.id),
            Connection(source_id=step_a.id, target_id=step_b.id),
            Connection(source_id=step_a.id, target_id=step_a.id),
            Connection(source_id=step_a.id, target_id=orphan.id),
        ],
    )


class TestSetDiagram:
    def test_repairs_invariants(self, store):
        store.set_diagram(messy_diagram())
        diagram = store.diagram
        assert [lane.title for lane in diagram.sorted_lanes] == ["Early", "Late"]
        assert [lane.order for lane in diagram.sorted_lanes] == [0, 1]
        assert [step.title for step in diagram.steps] == ["a", "b"]
        assert sorted(step.order for step in diagram.steps) == [0, 1]
        assert len(diagram.connections) == 1

    def test_preserve_layout_keeps_coordinates(self, store):
        store.set_diagram(messy_diagram(), preserve_layout=True)
        coordinates = {(step.x, step.y) for step in store.diagram.steps}
        assert coordinates == {(1, 2), (3, 4)}

    def test_recomputes_layout_by_default(self, store):
        store.set_diagram(messy_diagram())
        coordinates = {(step.x, step.y) for step in store.diagram.steps}
        assert (1, 2) not in coordinates

    def test_accepts_camel_case_dict(self, store):
        data = create_empty_diagram(Orientation.HORIZONTAL).to_json_dict()
        store.set_diagram(data)
        assert store.diagram.orientation == Orientation.HORIZONTAL

    def test_clears_history_and_editor_state(self, store):
        lane = store.diagram.sorted_lanes[0]
        store.add_lane()
        store.set_pending_insert(lane.id)
        store.set_selection(lanes=[lane.id])
        store.set_diagram(create_empty_diagram(), label="load file")
        assert not store.can_undo
        assert not store.can_redo
        assert store.pending_insert is None
        assert store.selection.lanes == []
        entry = store.audit_trail[-1]
        assert entry.action == "set_diagram"
        assert entry.payload == {"label": "load file", "preserveLayout": False}


class TestInitializeAndReset:
    def test_initialize_once(self, store):
        assert not store.orientation_committed
        assert store.initialize_diagram("horizontal")
        assert store.diagram.orientation == Orientation.HORIZONTAL
        assert store.orientation_committed
        assert store.initialize_diagram("vertical") is False

    def test_initialize_refused_after_first_edit(self, store):
        store.add_lane()
        assert store.initialize_diagram(Orientation.HORIZONTAL) is False
        assert store.diagram.orientation == Orientation.VERTICAL

    def test_store_built_from_diagram_is_committed(self, settings):
        store = DiagramStore(create_empty_diagram(), settings=settings)
        assert store.orientation_committed

    def test_reset_keeps_orientation(self, horizontal_store):
        horizontal_store.add_lane()
        horizontal_store.reset()
        diagram = horizontal_store.diagram
        assert diagram.orientation == Orientation.HORIZONTAL
        assert len(diagram.lanes) == 3
        assert not horizontal_store.can_undo
        assert actions(horizontal_store)[-1] == "reset"


# -----------------------------------------------------------------------------
# Editor state and dispatch
# -----------------------------------------------------------------------------


class TestEditorState:
    def test_selecting_steps_drops_cursor(self, store):
        lane = store.diagram.sorted_lanes[0]
        store.set_pending_insert(lane.id, 2)
        store.set_selection(lanes=[lane.id])
        assert store.pending_insert.row == 2
        store.set_selection(steps=[store.diagram.steps[0].id])
        assert store.pending_insert is None

    def test_pending_insert_unknown_lane(self, store):
        assert store.set_pending_insert("missing") is False
        assert store.pending_insert is None

    def test_clear_selection(self, store):
        lane = store.diagram.sorted_lanes[0]
        store.set_pending_insert(lane.id)
        store.set_selection(lanes=[lane.id])
        store.clear_selection()
        assert store.selection.lanes == []
        assert store.pending_insert is None

    def test_selection_is_not_history(self, store):
        store.set_selection(lanes=[store.diagram.lanes[0].id])
        assert not store.can_undo
        assert store.audit_trail == []


class TestExecute:
    def test_dispatches_by_name(self, store):
        lane_id = store.execute("add_lane", {"title": "Via execute"})
        assert store.diagram.get_lane(lane_id).title == "Via execute"
        assert store.execute("undo") is True

    def test_unknown_command(self, store):
        with pytest.raises(UnknownCommandError) as exc_info:
            store.execute("drop_tables")
        assert isinstance(exc_info.value, SwimlaneException)
        assert exc_info.value.context == {"command": "drop_tables"}

    def test_private_methods_are_not_commands(self, store):
        assert "_commit" not in COMMANDS
        with pytest.raises(UnknownCommandError):
            store.execute("_commit")

    def test_bad_arguments(self, store):
        with pytest.raises(TypeError):
            store.execute("add_lane", {"colour": "red"})

    def test_every_command_exists(self):
        assert all(callable(getattr(DiagramStore, name)) for name in COMMANDS)


def test_default_settings_are_loaded(monkeypatch):
    monkeypatch.setenv("SWIMLANE_NEW_LANE_TITLE", "Fresh")
    store = DiagramStore(settings=load_settings(_env_file=None))
    lane_id = store.add_lane()
    assert store.diagram.get_lane(lane_id).title == "Fresh"
