"""
Diagram State Controller - orchestrates parse -> diff -> resolve -> layout -> render.

This module implements:
- Position-stable graph updates (only new nodes are laid out)
- Drag tracking with one history entry per gesture
- Full reflow on request
- Linear undo/redo of positions that never re-runs layout
- Last-write-wins handling of overlapping layout requests

The layout oracle call is the only suspension point. Drags, undo/redo
and bulk position sets are synchronous and never wait on a pending
layout. Each set_graph()/reflow() call takes a sequence number when it
is issued; a layout result is applied only if no later request has been
issued in the meantime.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping, Optional

from .config import LayoutSettings
from .history import HistoryManager
from .incremental import LayoutOracleFailure, incremental_layout
from .layout import LayoutNode, LayoutOracle, get_layout_oracle
from .models import (
    DiagramDocument,
    DiffableGraph,
    ORIGIN,
    ParsedGraph,
    ParsedNode,
    Position,
    PositionResolution,
    PositionSource,
    RenderEdge,
    RenderNode,
    RenderNodeData,
)
from .positions import PositionStore, resolve_positions
from .validation import ValidationIssue, drop_invalid_edges

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    """Idle -> Loading -> Idle for each layout-affecting operation."""
    IDLE = "idle"
    LOADING = "loading"


@dataclass
class GraphUpdate:
    """Outcome of a set_graph() or load_document() call."""
    resolution: PositionResolution
    applied: bool = True
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def needs_layout(self) -> list[str]:
        return self.resolution.needs_layout


class DiagramStateController:
    """
    Owns the position state of one open diagram.

    One instance per diagram: its Position Store, history stacks and
    position-source map are never shared.
    """

    def __init__(self, settings: Optional[LayoutSettings] = None,
                 oracle: Optional[LayoutOracle] = None):
        self._settings = settings or LayoutSettings()
        self._oracle = oracle or get_layout_oracle(self._settings.algorithm)
        self._store = PositionStore()
        self._history = HistoryManager(self._settings.max_history)
        self._graph = ParsedGraph()
        self._previous_graph = DiffableGraph()
        self._issues: list[ValidationIssue] = []
        self._state = ControllerState.IDLE
        self._request_seq = 0
        self._dragging = False
        self._drag_start_positions: dict[str, Position] = {}
        self._on_change_callbacks: list[Callable] = []

    # --- Properties ---

    @property
    def settings(self) -> LayoutSettings:
        return self._settings

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state == ControllerState.LOADING

    @property
    def is_dragging(self) -> bool:
        return self._dragging

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def history(self) -> HistoryManager:
        return self._history

    @property
    def graph(self) -> ParsedGraph:
        """The current graph (invalid edges already dropped)."""
        return self._graph

    @property
    def issues(self) -> list[ValidationIssue]:
        """Issues found in the most recently applied graph."""
        return list(self._issues)

    @property
    def positions(self) -> dict[str, Position]:
        return self._store.snapshot()

    @property
    def nodes(self) -> list[RenderNode]:
        """Renderable nodes, in parser order."""
        return [
            RenderNode(
                id=n.id,
                position=self._store.get(n.id) or ORIGIN,
                data=RenderNodeData(label=n.label, node_type=n.type),
            )
            for n in self._graph.nodes
        ]

    @property
    def edges(self) -> list[RenderEdge]:
        """Renderable edges (replaced wholesale on every graph update)."""
        return [
            RenderEdge(id=e.id, source=e.source, target=e.target, label=e.label)
            for e in self._graph.edges
        ]

    def get_position(self, node_id: str) -> Optional[Position]:
        return self._store.get(node_id)

    def get_position_source(self, node_id: str) -> Optional[PositionSource]:
        return self._store.source_of(node_id)

    # --- Change Callbacks ---

    def on_change(self, callback: Callable):
        """Register a callback fired after every visible state change."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self):
        for callback in self._on_change_callbacks:
            callback()

    # --- Internal helpers ---

    def _normalize(self, parsed: ParsedGraph) -> tuple[ParsedGraph, list[ValidationIssue]]:
        """Drop duplicate node ids and edges that name unknown nodes."""
        nodes: list[ParsedNode] = []
        seen: set[str] = set()
        for node in parsed.nodes:
            if node.id in seen:
                logger.warning("Ignoring duplicate node id: %s", node.id)
                continue
            seen.add(node.id)
            nodes.append(node)

        edges, issues = drop_invalid_edges(seen, parsed.edges)
        return ParsedGraph(nodes=nodes, edges=edges), issues

    def _layout_nodes(self, graph: ParsedGraph) -> list[LayoutNode]:
        return [
            LayoutNode(
                id=n.id,
                width=n.width or self._settings.default_node_width,
                height=n.height or self._settings.default_node_height,
            )
            for n in graph.nodes
        ]

    def _next_request(self) -> int:
        self._request_seq += 1
        return self._request_seq

    def _is_current(self, seq: int) -> bool:
        return seq == self._request_seq

    def _finish_request(self, seq: int):
        """Leave LOADING once the newest request settles, however it ends."""
        if self._is_current(seq):
            self._state = ControllerState.IDLE

    def _merge_user_edits(
        self,
        computed: Mapping[str, Position],
        baseline: Mapping[str, Position]
    ) -> tuple[dict[str, Position], set[str]]:
        """
        Keep positions the user changed while a layout was pending.

        Returns the merged map and the ids whose position came from the
        user rather than from the layout.
        """
        merged = dict(computed)
        kept: set[str] = set()
        for node_id in computed:
            current = self._store.get(node_id)
            if current is not None and baseline.get(node_id) != current:
                merged[node_id] = current
                kept.add(node_id)
        return merged, kept

    def _commit_pending_drag(self):
        if self._dragging:
            logger.debug("Committing in-progress drag before continuing")
            self.on_drag_end()

    # --- Graph updates ---

    async def set_graph(self, parsed: ParsedGraph) -> GraphUpdate:
        """
        Apply a freshly parsed graph while keeping existing positions.

        Nodes whose id survives keep their exact position, even if their
        label or type changed. Only nodes without a position are sent to
        the layout oracle, with every other node pinned in place.

        Raises:
            LayoutOracleFailure: layout failed for the most recent request;
                the position store is left exactly as it was
        """
        self._commit_pending_drag()

        graph, issues = self._normalize(parsed)
        new_graph = DiffableGraph.from_parsed(graph)
        resolution = resolve_positions(self._previous_graph, new_graph, self._store.snapshot())

        seq = self._next_request()
        baseline = self._store.snapshot()
        placed = list(resolution.needs_layout)
        user_kept: set[str] = set()

        if resolution.needs_layout:
            self._state = ControllerState.LOADING
            logger.debug("Request %d: laying out %d node(s)", seq, len(resolution.needs_layout))
            try:
                computed = await incremental_layout(
                    self._layout_nodes(graph),
                    graph.edges,
                    resolution.positions,
                    resolution.needs_layout,
                    self._settings.layout_options(),
                    self._oracle,
                )
            except LayoutOracleFailure:
                if not self._is_current(seq):
                    logger.info("Discarding failure of superseded layout request %d", seq)
                    return GraphUpdate(resolution=resolution, applied=False, issues=issues)
                raise
            finally:
                self._finish_request(seq)

            if not self._is_current(seq):
                logger.debug("Discarding superseded layout result for request %d", seq)
                return GraphUpdate(resolution=resolution, applied=False, issues=issues)

            final, user_kept = self._merge_user_edits(computed, baseline)
        else:
            final = dict(resolution.positions)

        self._store.replace(final)
        self._store.retain(final)
        self._store.tag((i for i in placed if i not in user_kept), PositionSource.ELK_COMPUTED)

        self._graph = graph
        self._previous_graph = new_graph
        self._issues = issues
        self._state = ControllerState.IDLE
        self._notify_change()

        return GraphUpdate(resolution=resolution, applied=True, issues=issues)

    async def reflow(self) -> bool:
        """
        Re-layout every node from scratch.

        The positions as they were right before the new layout is applied
        are pushed to history, so one undo() reverts the whole reflow.

        Returns:
            True if a new layout was applied, False for an empty diagram
            or a superseded request

        Raises:
            LayoutOracleFailure: layout failed; positions and history are
                left as they were
        """
        self._commit_pending_drag()

        if not self._graph.nodes:
            return False

        seq = self._next_request()
        baseline = self._store.snapshot()
        all_ids = [n.id for n in self._graph.nodes]
        self._state = ControllerState.LOADING

        try:
            computed = await incremental_layout(
                self._layout_nodes(self._graph),
                self._graph.edges,
                {},
                all_ids,
                self._settings.layout_options(),
                self._oracle,
            )
        except LayoutOracleFailure:
            if not self._is_current(seq):
                logger.info("Discarding failure of superseded reflow request %d", seq)
                return False
            raise
        finally:
            self._finish_request(seq)

        if not self._is_current(seq):
            logger.debug("Discarding superseded reflow result for request %d", seq)
            return False

        final, user_kept = self._merge_user_edits(computed, baseline)

        self._history.push(self._store.snapshot())
        self._store.update(final)
        self._store.tag((i for i in all_ids if i not in user_kept), PositionSource.ELK_COMPUTED)
        self._state = ControllerState.IDLE
        self._notify_change()
        return True

    # --- Drag gestures ---

    def on_node_drag(self, node_id: str, position: Position):
        """
        Move a node during a drag gesture.

        Cheap and idempotent per call: the first event of a gesture
        remembers the pre-drag positions, no history entry is pushed.
        """
        if node_id not in self._graph.node_ids():
            logger.debug("Ignoring drag of unknown node: %s", node_id)
            return

        if not self._dragging:
            self._dragging = True
            self._drag_start_positions = self._store.snapshot()

        self._store.set(node_id, position, PositionSource.USER_DRAGGED)
        self._notify_change()

    def on_drag_end(self) -> bool:
        """
        Finish a drag gesture.

        Commits exactly one history entry holding the positions from
        before the gesture started, so one undo reverts the whole drag.
        Call once per pointer gesture, not per movement event.
        """
        if not self._dragging:
            return False

        self._history.push(self._drag_start_positions)
        self._dragging = False
        self._drag_start_positions = {}
        self._notify_change()
        return True

    # --- Direct position updates ---

    def set_node_positions(self, positions: Mapping[str, Position], source: PositionSource):
        """
        Overwrite positions directly (e.g. from a loaded document).

        No layout is run and no history entry is pushed. Ids not in the
        current graph are ignored.
        """
        known = self._graph.node_ids()
        accepted = {node_id: pos for node_id, pos in positions.items() if node_id in known}
        skipped = len(positions) - len(accepted)
        if skipped:
            logger.debug("Ignoring %d position(s) for unknown nodes", skipped)

        self._store.update(accepted, source)
        self._notify_change()

    def _apply_snapshot(self, positions: Mapping[str, Position]):
        known = self._graph.node_ids()
        for node_id, pos in positions.items():
            if node_id in known:
                self._store.set(node_id, pos)

    # --- Undo/Redo ---

    def undo(self) -> bool:
        """Undo the last position change. Never re-runs layout."""
        self._commit_pending_drag()

        snapshot = self._history.undo(self._store.snapshot())
        if snapshot is None:
            return False

        self._apply_snapshot(snapshot)
        self._notify_change()
        return True

    def redo(self) -> bool:
        """Redo the last undone position change. Never re-runs layout."""
        snapshot = self._history.redo(self._store.snapshot())
        if snapshot is None:
            return False

        self._apply_snapshot(snapshot)
        self._notify_change()
        return True

    # --- Documents ---

    def _clear(self):
        self._store.clear()
        self._history.clear()
        self._graph = ParsedGraph()
        self._previous_graph = DiffableGraph()
        self._issues = []
        self._dragging = False
        self._drag_start_positions = {}
        self._state = ControllerState.IDLE

    def reset(self):
        """Forget the current graph, positions and history."""
        self._next_request()  # any pending layout is now stale
        self._clear()
        self._notify_change()

    def to_document(self, name: str = "Untitled Diagram",
                    document_id: Optional[str] = None) -> DiagramDocument:
        """Capture the graph and its final positions for persistence."""
        fields = {"name": name, "graph": self._graph, "positions": self._store.snapshot()}
        if document_id:
            fields["id"] = document_id
        return DiagramDocument(**fields)

    async def load_document(self, document: DiagramDocument) -> GraphUpdate:
        """
        Replace the current diagram with a saved document.

        Saved positions are re-entered as "loaded" and pinned; only nodes
        without a saved position go to the layout oracle, so a fully
        positioned document opens without running layout. History starts
        empty.

        Raises:
            LayoutOracleFailure: layout of the unpositioned nodes failed;
                the diagram that was open is left as it was
        """
        graph, issues = self._normalize(document.graph)
        known = graph.node_ids()
        saved = {
            node_id: pos for node_id, pos in document.positions.items() if node_id in known
        }
        resolution = PositionResolution(
            positions={n.id: saved.get(n.id, ORIGIN) for n in graph.nodes},
            needs_layout=[n.id for n in graph.nodes if n.id not in saved],
        )

        seq = self._next_request()
        computed = dict(resolution.positions)

        if resolution.needs_layout:
            self._state = ControllerState.LOADING
            logger.debug("Request %d: laying out %d unsaved node(s)", seq, len(resolution.needs_layout))
            try:
                computed = await incremental_layout(
                    self._layout_nodes(graph),
                    graph.edges,
                    saved,
                    resolution.needs_layout,
                    self._settings.layout_options(),
                    self._oracle,
                )
            except LayoutOracleFailure:
                if not self._is_current(seq):
                    logger.info("Discarding failure of superseded load request %d", seq)
                    return GraphUpdate(resolution=resolution, applied=False, issues=issues)
                raise
            finally:
                self._finish_request(seq)

            if not self._is_current(seq):
                logger.debug("Discarding superseded load result for request %d", seq)
                return GraphUpdate(resolution=resolution, applied=False, issues=issues)

        self._clear()
        self._store.update(saved, PositionSource.LOADED)
        self._store.update(
            {i: computed[i] for i in resolution.needs_layout}, PositionSource.ELK_COMPUTED
        )
        self._graph = graph
        self._previous_graph = DiffableGraph.from_parsed(graph)
        self._issues = issues
        self._notify_change()

        return GraphUpdate(resolution=resolution, applied=True, issues=issues)

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        return {
            "nodes": [n.model_dump(mode="json") for n in self.nodes],
            "edges": [e.model_dump(mode="json") for e in self.edges],
            "state": self._state.value,
            "is_loading": self.is_loading,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "position_sources": {k: v.value for k, v in self._store.sources().items()},
            "issues": [i.to_dict() for i in self._issues],
        }
