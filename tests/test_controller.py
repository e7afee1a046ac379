"""Tests for the diagram state controller."""

import pytest

from conftest import FailingOracle, RecordingOracle, make_graph, pos

from diagram_layout.config import LayoutSettings
from diagram_layout.controller import ControllerState, DiagramStateController
from diagram_layout.incremental import LayoutOracleFailure
from diagram_layout.layout import LayeredLayoutOracle, LayoutOracle
from diagram_layout.models import DiagramDocument, PositionSource


class SwitchableOracle(LayoutOracle):
    """Layered layout that can be told to fail."""

    def __init__(self):
        self.fail = False
        self._inner = LayeredLayoutOracle()

    async def layout(self, request):
        if self.fail:
            raise RuntimeError("layout engine crashed")
        return await self._inner.layout(request)


CHAIN = make_graph(
    [("a", "service", "A"), ("b", "service", "B"), ("c", "database", "C")],
    [("a", "b"), ("b", "c")],
)


def _controller(oracle=None, **settings) -> DiagramStateController:
    return DiagramStateController(LayoutSettings(**settings), oracle or RecordingOracle())


# ===================================================================
# set_graph
# ===================================================================

@pytest.mark.asyncio
async def test_first_graph_lays_out_every_node(recording_oracle) -> None:
    controller = _controller(recording_oracle)

    update = await controller.set_graph(CHAIN)

    assert update.applied
    assert update.needs_layout == ["a", "b", "c"]
    assert set(controller.positions) == {"a", "b", "c"}
    assert all(controller.get_position_source(i) == PositionSource.ELK_COMPUTED for i in "abc")
    assert controller.state == ControllerState.IDLE


@pytest.mark.asyncio
async def test_same_graph_twice_is_idempotent(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    await controller.set_graph(CHAIN)
    before = controller.positions

    update = await controller.set_graph(CHAIN)

    assert update.needs_layout == []
    assert controller.positions == before
    assert recording_oracle.call_count == 1


@pytest.mark.asyncio
async def test_label_change_keeps_position(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    await controller.set_graph(CHAIN)
    controller.set_node_positions({"b": pos(640, 480)}, PositionSource.USER_DRAGGED)

    renamed = make_graph(
        [("a", "service", "A"), ("b", "queue", "Renamed"), ("c", "database", "C")],
        [("a", "b"), ("b", "c")],
    )
    await controller.set_graph(renamed)

    assert controller.get_position("b") == pos(640, 480)
    assert controller.get_position_source("b") == PositionSource.USER_DRAGGED
    assert controller.nodes[1].data.label == "Renamed"
    assert recording_oracle.call_count == 1


@pytest.mark.asyncio
async def test_added_node_laid_out_around_pinned_nodes(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    await controller.set_graph(CHAIN)
    controller.set_node_positions({"a": pos(10, 20)}, PositionSource.USER_DRAGGED)

    grown = make_graph(
        [("a", "service", "A"), ("b", "service", "B"), ("c", "database", "C"), ("d", "cache", "D")],
        [("a", "b"), ("b", "c"), ("a", "d")],
    )
    update = await controller.set_graph(grown)

    assert update.needs_layout == ["d"]
    request = recording_oracle.requests[-1]
    assert set(request.fixed_positions) == {"a", "b", "c"}
    assert request.fixed_positions["a"] == pos(10, 20)
    assert controller.get_position("a") == pos(10, 20)
    assert controller.get_position_source("d") == PositionSource.ELK_COMPUTED
    assert controller.get_position_source("a") == PositionSource.USER_DRAGGED


@pytest.mark.asyncio
async def test_removed_node_is_forgotten() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)

    await controller.set_graph(make_graph([("a", "service", "A")]))

    assert set(controller.positions) == {"a"}
    assert controller.get_position_source("b") is None
    assert controller.edges == []


@pytest.mark.asyncio
async def test_invalid_edge_is_dropped_and_reported() -> None:
    controller = _controller()
    graph = make_graph([("a", "t", "A"), ("b", "t", "B")], [("a", "b"), ("a", "ghost")])

    update = await controller.set_graph(graph)

    assert [e.id for e in controller.edges] == ["a->b"]
    assert len(update.issues) == 1
    assert update.issues[0].edge_id == "a->ghost"
    assert controller.get_state()["issues"][0]["type"] == "warning"


@pytest.mark.asyncio
async def test_duplicate_node_ids_keep_first() -> None:
    controller = _controller()
    graph = make_graph([("a", "t", "first"), ("a", "t", "second")])

    await controller.set_graph(graph)

    assert len(controller.nodes) == 1
    assert controller.nodes[0].data.label == "first"


@pytest.mark.asyncio
async def test_set_graph_failure_leaves_state_untouched() -> None:
    oracle = SwitchableOracle()
    controller = _controller(oracle)
    await controller.set_graph(CHAIN)
    before = controller.positions
    oracle.fail = True

    grown = make_graph([("a", "service", "A"), ("z", "t", "Z")])
    with pytest.raises(LayoutOracleFailure):
        await controller.set_graph(grown)

    assert controller.positions == before
    assert [n.id for n in controller.nodes] == ["a", "b", "c"]
    assert controller.state == ControllerState.IDLE


class ListOracle(LayoutOracle):
    async def layout(self, request):
        return [(1, 2) for _ in request.nodes]


@pytest.mark.asyncio
async def test_malformed_oracle_result_is_failure() -> None:
    controller = _controller(ListOracle())

    with pytest.raises(LayoutOracleFailure):
        await controller.set_graph(CHAIN)

    assert not controller.is_loading
    assert controller.positions == {}


@pytest.mark.asyncio
async def test_failure_on_first_graph() -> None:
    controller = _controller(FailingOracle())

    with pytest.raises(LayoutOracleFailure):
        await controller.set_graph(CHAIN)

    assert controller.positions == {}
    assert not controller.is_loading


# ===================================================================
# Drag gestures and undo/redo
# ===================================================================

@pytest.mark.asyncio
async def test_drag_undo_redo_round_trip() -> None:
    controller = _controller()
    await controller.set_graph(make_graph([("a", "t", "A")]))
    controller.set_node_positions({"a": pos(0, 0)}, PositionSource.LOADED)

    controller.on_node_drag("a", pos(50, 50))
    controller.on_drag_end()
    assert controller.get_position("a") == pos(50, 50)

    assert controller.undo()
    assert controller.get_position("a") == pos(0, 0)

    assert controller.redo()
    assert controller.get_position("a") == pos(50, 50)


@pytest.mark.asyncio
async def test_one_history_entry_per_gesture() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    start = controller.get_position("a")

    for step in range(10):
        controller.on_node_drag("a", pos(step * 10, step * 5))
    assert controller.history.undo_depth == 0
    controller.on_drag_end()

    assert controller.history.undo_depth == 1
    controller.undo()
    assert controller.get_position("a") == start


@pytest.mark.asyncio
async def test_drag_sets_user_source() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)

    controller.on_node_drag("b", pos(7, 7))

    assert controller.is_dragging
    assert controller.get_position_source("b") == PositionSource.USER_DRAGGED


@pytest.mark.asyncio
async def test_drag_of_unknown_node_ignored() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)

    controller.on_node_drag("ghost", pos(1, 1))

    assert not controller.is_dragging
    assert "ghost" not in controller.positions
    assert not controller.on_drag_end()


@pytest.mark.asyncio
async def test_set_graph_commits_drag_in_progress() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    controller.on_node_drag("a", pos(999, 999))

    await controller.set_graph(CHAIN)

    assert not controller.is_dragging
    assert controller.history.undo_depth == 1
    assert controller.get_position("a") == pos(999, 999)


@pytest.mark.asyncio
async def test_undo_commits_drag_in_progress() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    start = controller.get_position("a")
    controller.on_node_drag("a", pos(999, 999))

    assert controller.undo()

    assert controller.get_position("a") == start
    assert controller.can_redo


@pytest.mark.asyncio
async def test_undo_without_history() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    assert not controller.undo()
    assert not controller.redo()


@pytest.mark.asyncio
async def test_undo_never_runs_layout(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    await controller.set_graph(CHAIN)
    controller.on_node_drag("a", pos(1, 1))
    controller.on_drag_end()

    controller.undo()
    controller.redo()

    assert recording_oracle.call_count == 1


@pytest.mark.asyncio
async def test_undo_skips_nodes_removed_since() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    controller.on_node_drag("c", pos(5, 5))
    controller.on_drag_end()
    await controller.set_graph(make_graph([("a", "service", "A"), ("b", "service", "B")]))

    controller.undo()

    assert "c" not in controller.positions


@pytest.mark.asyncio
async def test_history_is_bounded_by_settings() -> None:
    controller = _controller(max_history=2)
    await controller.set_graph(CHAIN)
    for step in range(5):
        controller.on_node_drag("a", pos(step, step))
        controller.on_drag_end()

    assert controller.history.undo_depth == 2


# ===================================================================
# Direct position updates
# ===================================================================

@pytest.mark.asyncio
async def test_set_node_positions_writes_no_history() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)

    controller.set_node_positions({"a": pos(1, 2), "ghost": pos(3, 4)}, PositionSource.LOADED)

    assert controller.get_position("a") == pos(1, 2)
    assert controller.get_position_source("a") == PositionSource.LOADED
    assert "ghost" not in controller.positions
    assert not controller.can_undo


# ===================================================================
# Reflow
# ===================================================================

@pytest.mark.asyncio
async def test_reflow_places_every_node_and_is_undoable() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    stacked = {i: pos(0, 0) for i in "abc"}
    controller.set_node_positions(stacked, PositionSource.LOADED)

    assert await controller.reflow()

    positions = controller.positions
    assert len(set(positions.values())) == 3
    assert all(p != pos(0, 0) for p in positions.values())
    assert controller.history.undo_depth == 1
    assert all(controller.get_position_source(i) == PositionSource.ELK_COMPUTED for i in "abc")

    controller.undo()
    assert controller.positions == stacked


@pytest.mark.asyncio
async def test_reflow_ignores_existing_positions(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    await controller.set_graph(CHAIN)

    await controller.reflow()

    assert recording_oracle.requests[-1].fixed_positions == {}


@pytest.mark.asyncio
async def test_reflow_of_empty_diagram(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    assert not await controller.reflow()
    assert recording_oracle.call_count == 0


@pytest.mark.asyncio
async def test_reflow_failure_keeps_positions_and_history() -> None:
    oracle = SwitchableOracle()
    controller = _controller(oracle)
    await controller.set_graph(CHAIN)
    before = controller.positions
    oracle.fail = True

    with pytest.raises(LayoutOracleFailure):
        await controller.reflow()

    assert controller.positions == before
    assert not controller.can_undo
    assert controller.state == ControllerState.IDLE


# ===================================================================
# Change notification and state
# ===================================================================

@pytest.mark.asyncio
async def test_on_change_fires_for_visible_changes() -> None:
    controller = _controller()
    calls = []
    controller.on_change(lambda: calls.append(1))

    await controller.set_graph(CHAIN)
    controller.on_node_drag("a", pos(1, 1))
    controller.on_drag_end()
    controller.undo()

    assert len(calls) == 4


@pytest.mark.asyncio
async def test_get_state_shape() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)

    state = controller.get_state()

    assert [n["id"] for n in state["nodes"]] == ["a", "b", "c"]
    assert state["nodes"][0]["data"] == {"label": "A", "node_type": "service"}
    assert [e["id"] for e in state["edges"]] == ["a->b", "b->c"]
    assert state["state"] == "idle"
    assert state["is_loading"] is False
    assert state["position_sources"]["a"] == "elk-computed"


# ===================================================================
# Documents
# ===================================================================

@pytest.mark.asyncio
async def test_to_document_captures_final_positions() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    controller.on_node_drag("a", pos(42, 42))
    controller.on_drag_end()

    document = controller.to_document(name="Checkout", document_id="diagram-1234")

    assert document.id == "diagram-1234"
    assert document.name == "Checkout"
    assert document.positions["a"] == pos(42, 42)
    assert "history" not in document.to_json_dict()


@pytest.mark.asyncio
async def test_load_document_restores_saved_positions(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    await controller.set_graph(make_graph([("old", "t", "Old")]))
    controller.on_node_drag("old", pos(1, 1))
    controller.on_drag_end()

    document = DiagramDocument(
        name="Saved",
        graph=make_graph([("a", "t", "A"), ("b", "t", "B")], [("a", "b")]),
        positions={"a": pos(300, 200)},
    )
    update = await controller.load_document(document)

    assert update.applied
    assert controller.get_position("a") == pos(300, 200)
    assert controller.get_position_source("a") == PositionSource.LOADED
    assert controller.get_position_source("b") == PositionSource.ELK_COMPUTED
    assert recording_oracle.requests[-1].fixed_positions == {"a": pos(300, 200)}
    assert "old" not in controller.positions
    assert not controller.can_undo
    assert not controller.can_redo


@pytest.mark.asyncio
async def test_fully_positioned_document_opens_without_layout() -> None:
    oracle = FailingOracle()
    controller = _controller(oracle)
    document = DiagramDocument(
        graph=make_graph([("a", "t", "A"), ("b", "t", "B")], [("a", "b")]),
        positions={"a": pos(10, 10), "b": pos(10, 200), "stale": pos(5, 5)},
    )

    update = await controller.load_document(document)

    assert update.applied
    assert update.needs_layout == []
    assert oracle.call_count == 0
    assert controller.positions == {"a": pos(10, 10), "b": pos(10, 200)}
    assert controller.get_position_source("b") == PositionSource.LOADED


@pytest.mark.asyncio
async def test_failed_load_keeps_open_diagram() -> None:
    oracle = SwitchableOracle()
    controller = _controller(oracle)
    await controller.set_graph(CHAIN)
    controller.on_node_drag("a", pos(1, 1))
    controller.on_drag_end()
    before = controller.positions
    oracle.fail = True

    document = DiagramDocument(
        graph=make_graph([("x", "t", "X"), ("y", "t", "Y")]),
        positions={"x": pos(0, 0)},
    )
    with pytest.raises(LayoutOracleFailure):
        await controller.load_document(document)

    assert controller.positions == before
    assert [n.id for n in controller.nodes] == ["a", "b", "c"]
    assert controller.can_undo
    assert controller.state == ControllerState.IDLE


@pytest.mark.asyncio
async def test_loaded_graph_is_the_diff_baseline(recording_oracle) -> None:
    controller = _controller(recording_oracle)
    graph = make_graph([("a", "t", "A")])
    await controller.load_document(DiagramDocument(graph=graph, positions={"a": pos(7, 7)}))

    update = await controller.set_graph(graph)

    assert update.needs_layout == []
    assert recording_oracle.call_count == 0
    assert controller.get_position("a") == pos(7, 7)


@pytest.mark.asyncio
async def test_reset_clears_everything() -> None:
    controller = _controller()
    await controller.set_graph(CHAIN)
    controller.on_node_drag("a", pos(1, 1))
    controller.on_drag_end()

    controller.reset()

    assert controller.positions == {}
    assert controller.nodes == []
    assert not controller.can_undo


def test_unknown_algorithm_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown layout algorithm"):
        DiagramStateController(LayoutSettings(algorithm="radial"))
