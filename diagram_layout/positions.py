"""
Position store and resolver.

The store is the authoritative map from node id to position for one
diagram, together with the provenance of each position. The resolver
combines a graph diff with the store to decide which positions are kept
and which nodes still need to be placed.
"""

from typing import Iterable, Iterator, Mapping, Optional

from .diff import diff_graphs
from .models import (
    DiffableGraph,
    ORIGIN,
    Position,
    PositionResolution,
    PositionSource,
)


class PositionStore:
    """
    Per-diagram map of node id -> Position, with provenance.

    Positions are immutable, so snapshots are shallow dict copies that
    later mutation of the store cannot affect.
    """

    def __init__(self, positions: Optional[Mapping[str, Position]] = None):
        self._positions: dict[str, Position] = dict(positions or {})
        self._sources: dict[str, PositionSource] = {}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[str]:
        return iter(self._positions)

    def get(self, node_id: str) -> Optional[Position]:
        return self._positions.get(node_id)

    def items(self):
        return self._positions.items()

    def set(self, node_id: str, position: Position, source: Optional[PositionSource] = None):
        """Set one position, optionally recording where it came from."""
        self._positions[node_id] = position
        if source is not None:
            self._sources[node_id] = source

    def update(self, positions: Mapping[str, Position], source: Optional[PositionSource] = None):
        """Overwrite several positions at once."""
        for node_id, position in positions.items():
            self.set(node_id, position, source)

    def replace(self, positions: Mapping[str, Position]):
        """Replace the whole position map. Sources are left alone."""
        self._positions = dict(positions)

    def snapshot(self) -> dict[str, Position]:
        """Copy of the current positions."""
        return dict(self._positions)

    def retain(self, node_ids: Iterable[str]):
        """Drop positions and sources for every id not in node_ids."""
        keep = set(node_ids)
        for node_id in [n for n in self._positions if n not in keep]:
            del self._positions[node_id]
        for node_id in [n for n in self._sources if n not in keep]:
            del self._sources[node_id]

    def source_of(self, node_id: str) -> Optional[PositionSource]:
        return self._sources.get(node_id)

    def tag(self, node_ids: Iterable[str], source: PositionSource):
        """Record the provenance of several ids without moving them."""
        for node_id in node_ids:
            self._sources[node_id] = source

    def sources(self) -> dict[str, PositionSource]:
        return dict(self._sources)

    def clear(self):
        self._positions.clear()
        self._sources.clear()


def resolve_positions(
    old_graph: DiffableGraph,
    new_graph: DiffableGraph,
    current_positions: Mapping[str, Position]
) -> PositionResolution:
    """
    Resolve positions for the nodes of new_graph.

    - Unchanged and modified nodes keep their current positions
    - Surviving nodes without a position, and all added nodes, get a
      (0, 0) placeholder and are listed in needs_layout
    - Removed nodes are dropped

    A node whose id survives an edit therefore keeps its place even when
    its label or type changed.

    Args:
        old_graph: The previous graph state
        new_graph: The new graph state
        current_positions: Current node id -> position map

    Returns:
        PositionResolution with kept positions and ids needing layout
    """
    diff = diff_graphs(old_graph, new_graph)
    resolution = PositionResolution()

    for node_id in diff.retained:
        position = current_positions.get(node_id)
        if position is not None:
            resolution.positions[node_id] = position
        else:
            resolution.needs_layout.append(node_id)
            resolution.positions[node_id] = ORIGIN

    for node_id in diff.added:
        resolution.needs_layout.append(node_id)
        resolution.positions[node_id] = ORIGIN

    return resolution
