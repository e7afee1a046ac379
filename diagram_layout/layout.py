"""
Layout oracles - algorithms that compute node positions.

The controller treats the layout algorithm as an opaque, asynchronous
collaborator: it hands over node sizes, edges and a set of fixed
(anchored) positions, and gets a position back for every node. Fixed
ids must come back unchanged.

Built-in strategies:
- Layered: rank nodes along edge direction (default)
- Grid: simple grid arrangement
- Force: force-directed layout using spring physics

Any object with an async `layout(request)` method can stand in for
these, e.g. a client for an external ELK service.
"""

import asyncio
import logging
import math
from collections import defaultdict, deque
from dataclasses import dataclass, field

from .models import LayoutDirection, Position

logger = logging.getLogger(__name__)


# Default layout parameters
DEFAULT_START_X = 100
DEFAULT_START_Y = 100


@dataclass
class LayoutNode:
    id: str
    width: float
    height: float


@dataclass
class LayoutEdge:
    source: str
    target: str


@dataclass
class LayoutRequest:
    """Everything an oracle needs for one layout run."""
    nodes: list[LayoutNode]
    edges: list[LayoutEdge] = field(default_factory=list)
    fixed_positions: dict[str, Position] = field(default_factory=dict)
    direction: LayoutDirection = LayoutDirection.DOWN
    spacing: float = 50
    layer_spacing: float = 70

    def free_nodes(self) -> list[LayoutNode]:
        return [n for n in self.nodes if n.id not in self.fixed_positions]


@dataclass
class _Rect:
    x: float
    y: float
    width: float
    height: float

    def overlaps(self, other: "_Rect", margin: float = 0) -> bool:
        return (
            self.x < other.x + other.width + margin
            and other.x < self.x + self.width + margin
            and self.y < other.y + other.height + margin
            and other.y < self.y + self.height + margin
        )


def _fixed_rects(request: LayoutRequest) -> list[_Rect]:
    sizes = {n.id: n for n in request.nodes}
    rects = []
    for node_id, pos in request.fixed_positions.items():
        node = sizes.get(node_id)
        if node is not None:
            rects.append(_Rect(pos.x, pos.y, node.width, node.height))
    return rects


class LayoutOracle:
    """Base class for layout oracles."""

    name = "base"

    async def layout(self, request: LayoutRequest) -> dict[str, Position]:
        raise NotImplementedError


class ComputedLayoutOracle(LayoutOracle):
    """
    Oracle backed by an in-process algorithm.

    The computation runs in a worker thread so that the event loop (and
    with it drags, undo and redo) stays responsive during large layouts.
    """

    async def layout(self, request: LayoutRequest) -> dict[str, Position]:
        logger.debug(
            "%s layout: %d nodes (%d fixed), %d edges",
            self.name, len(request.nodes), len(request.fixed_positions), len(request.edges)
        )
        result = await asyncio.to_thread(self.compute, request)
        # Anchors are echoed back untouched
        for node_id, pos in request.fixed_positions.items():
            result[node_id] = pos
        return result

    def compute(self, request: LayoutRequest) -> dict[str, Position]:
        raise NotImplementedError


class LayeredLayoutOracle(ComputedLayoutOracle):
    """
    Arrange nodes in ranks based on edge directions.

    Nodes with no incoming edges form the first rank; each edge pushes
    its target one rank further along the layout direction. Free nodes
    are never placed on top of a fixed node.
    """

    name = "layered"

    def __init__(self, start_x: float = DEFAULT_START_X, start_y: float = DEFAULT_START_Y):
        self.start_x = start_x
        self.start_y = start_y

    def _assign_levels(self, request: LayoutRequest) -> dict[str, int]:
        ids = [n.id for n in request.nodes]
        children: dict[str, list[str]] = {node_id: [] for node_id in ids}
        has_parent: set[str] = set()

        for edge in request.edges:
            if edge.source in children and edge.target in children and edge.source != edge.target:
                children[edge.source].append(edge.target)
                has_parent.add(edge.target)

        # Roots are nodes with no incoming edges
        roots = [node_id for node_id in ids if node_id not in has_parent]
        if not roots and ids:
            roots = [ids[0]]

        levels: dict[str, int] = {}
        queue = deque((r, 0) for r in roots)
        while queue:
            node_id, level = queue.popleft()
            if node_id in levels:
                continue
            levels[node_id] = level
            for child in children[node_id]:
                queue.append((child, level + 1))

        # Nodes only reachable through a cycle
        for node_id in ids:
            levels.setdefault(node_id, 0)

        return levels

    def compute(self, request: LayoutRequest) -> dict[str, Position]:
        if not request.nodes:
            return {}

        levels = self._assign_levels(request)
        max_level = max(levels.values())
        direction = request.direction
        vertical = direction in (LayoutDirection.DOWN, LayoutDirection.UP)
        if direction in (LayoutDirection.UP, LayoutDirection.LEFT):
            levels = {node_id: max_level - level for node_id, level in levels.items()}

        by_level: dict[int, list[LayoutNode]] = defaultdict(list)
        for node in request.nodes:
            by_level[levels[node.id]].append(node)

        rank_start = self.start_y if vertical else self.start_x
        cross_start = self.start_x if vertical else self.start_y

        # Rank offsets: each rank is as deep as its deepest node
        rank_offset: dict[int, float] = {}
        offset = rank_start
        for level in range(max_level + 1):
            rank_offset[level] = offset
            members = by_level.get(level, [])
            depth = max((n.height if vertical else n.width for n in members), default=0)
            offset += depth + request.layer_spacing

        obstacles = _fixed_rects(request)
        positions: dict[str, Position] = {}

        for level in range(max_level + 1):
            cursor = cross_start
            for node in by_level.get(level, []):
                if node.id in request.fixed_positions:
                    continue

                extent = node.width if vertical else node.height
                while True:
                    if vertical:
                        rect = _Rect(cursor, rank_offset[level], node.width, node.height)
                    else:
                        rect = _Rect(rank_offset[level], cursor, node.width, node.height)
                    blocker = next(
                        (r for r in obstacles if rect.overlaps(r, request.spacing)), None
                    )
                    if blocker is None:
                        break
                    # Jump past the anchor that is in the way
                    cursor = (blocker.x + blocker.width if vertical
                              else blocker.y + blocker.height) + request.spacing

                positions[node.id] = Position(x=rect.x, y=rect.y)
                obstacles.append(rect)
                cursor += extent + request.spacing

        return positions


class GridLayoutOracle(ComputedLayoutOracle):
    """Arrange free nodes in a grid, skipping cells taken by fixed nodes."""

    name = "grid"

    def __init__(self, columns: int | None = None,
                 start_x: float = DEFAULT_START_X, start_y: float = DEFAULT_START_Y):
        self.columns = columns
        self.start_x = start_x
        self.start_y = start_y

    def compute(self, request: LayoutRequest) -> dict[str, Position]:
        free = request.free_nodes()
        if not free:
            return {}

        # Auto-calculate columns based on node count
        columns = self.columns or max(3, int(len(request.nodes) ** 0.5) + 1)
        cell_w = max(n.width for n in request.nodes) + request.spacing
        cell_h = max(n.height for n in request.nodes) + request.spacing
        horizontal = request.direction in (LayoutDirection.DOWN, LayoutDirection.UP)

        obstacles = _fixed_rects(request)
        positions: dict[str, Position] = {}
        cell = 0

        for node in free:
            while True:
                major, minor = divmod(cell, columns)
                row, col = (major, minor) if horizontal else (minor, major)
                rect = _Rect(self.start_x + col * cell_w, self.start_y + row * cell_h,
                             node.width, node.height)
                cell += 1
                if not any(rect.overlaps(r) for r in obstacles):
                    break
            positions[node.id] = Position(x=rect.x, y=rect.y)

        return positions


class ForceLayoutOracle(ComputedLayoutOracle):
    """
    Arrange nodes using a force-directed simulation.

    - All nodes repel each other (like charged particles)
    - Connected nodes attract each other (like springs)
    - Fixed nodes exert forces but never move
    """

    name = "force"

    def __init__(self, iterations: int = 100, repulsion: float = 5000,
                 attraction: float = 0.01, damping: float = 0.1,
                 min_distance: float = 50):
        self.iterations = iterations
        self.repulsion = repulsion
        self.attraction = attraction
        self.damping = damping
        self.min_distance = min_distance

    def compute(self, request: LayoutRequest) -> dict[str, Position]:
        free = request.free_nodes()
        if not free:
            return {}

        coords: dict[str, list[float]] = {
            node_id: [pos.x, pos.y] for node_id, pos in request.fixed_positions.items()
        }
        movable = [n.id for n in free]

        # Start free nodes on a circle around the anchors (or a default center)
        if coords:
            center_x = sum(c[0] for c in coords.values()) / len(coords)
            center_y = sum(c[1] for c in coords.values()) / len(coords)
        else:
            center_x, center_y = 400, 400
        radius = 200
        for i, node_id in enumerate(movable):
            angle = 2 * math.pi * i / len(movable)
            coords[node_id] = [center_x + radius * math.cos(angle),
                               center_y + radius * math.sin(angle)]

        ids = [n.id for n in request.nodes if n.id in coords]
        moving = set(movable)

        for _ in range(self.iterations):
            forces: dict[str, list[float]] = {node_id: [0.0, 0.0] for node_id in ids}

            # Repulsion between all node pairs (Coulomb)
            for i, a in enumerate(ids):
                for b in ids[i + 1:]:
                    dx = coords[a][0] - coords[b][0]
                    dy = coords[a][1] - coords[b][1]
                    dist = max(self.min_distance, math.sqrt(dx * dx + dy * dy))
                    force = self.repulsion / (dist * dist)
                    fx, fy = force * dx / dist, force * dy / dist
                    forces[a][0] += fx
                    forces[a][1] += fy
                    forces[b][0] -= fx
                    forces[b][1] -= fy

            # Attraction along edges (Hooke)
            for edge in request.edges:
                if edge.source not in forces or edge.target not in forces:
                    continue
                dx = coords[edge.target][0] - coords[edge.source][0]
                dy = coords[edge.target][1] - coords[edge.source][1]
                dist = max(self.min_distance, math.sqrt(dx * dx + dy * dy))
                force = dist * self.attraction
                fx, fy = force * dx / dist, force * dy / dist
                forces[edge.source][0] += fx
                forces[edge.source][1] += fy
                forces[edge.target][0] -= fx
                forces[edge.target][1] -= fy

            for node_id in moving:
                fx, fy = forces[node_id]
                coords[node_id][0] = max(self.min_distance, coords[node_id][0] + fx * self.damping)
                coords[node_id][1] = max(self.min_distance, coords[node_id][1] + fy * self.damping)

        return {node_id: Position(x=coords[node_id][0], y=coords[node_id][1]) for node_id in movable}


_ORACLES: dict[str, type[ComputedLayoutOracle]] = {
    "layered": LayeredLayoutOracle,
    "tree": LayeredLayoutOracle,
    "grid": GridLayoutOracle,
    "force": ForceLayoutOracle,
}


def available_algorithms() -> list[str]:
    return sorted(_ORACLES)


def get_layout_oracle(algorithm: str = "layered") -> LayoutOracle:
    """Create a built-in oracle by algorithm name."""
    try:
        return _ORACLES[algorithm]()
    except KeyError:
        raise ValueError(
            f"Unknown layout algorithm: {algorithm} (expected one of {', '.join(available_algorithms())})"
        ) from None
