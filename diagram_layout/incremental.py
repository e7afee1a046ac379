"""
Incremental layout - place only the nodes that need it.

Existing positions are passed to the layout oracle as fixed anchors, so
new nodes are placed consistently with their already-positioned
neighbours while nothing the user has already seen moves.
"""

import asyncio
import logging
from typing import Iterable, Mapping, Optional

from .config import LayoutOptions
from .layout import LayoutEdge, LayoutNode, LayoutOracle, LayoutRequest, get_layout_oracle
from .models import Position
from .validation import drop_invalid_edges

logger = logging.getLogger(__name__)


class LayoutOracleFailure(Exception):
    """The layout oracle rejected, timed out, or returned an incomplete result."""


def _as_position(value) -> Position:
    if isinstance(value, Position):
        return value
    if isinstance(value, dict):
        return Position(**value)
    x, y = value
    return Position(x=x, y=y)


async def incremental_layout(
    nodes: list[LayoutNode],
    edges: Iterable,
    pinned_positions: Mapping[str, Position],
    needs_layout: Iterable[str],
    options: Optional[LayoutOptions] = None,
    oracle: Optional[LayoutOracle] = None
) -> dict[str, Position]:
    """
    Compute positions for the nodes in needs_layout, anchoring the rest.

    - No nodes: returns an empty map
    - Nothing to lay out: returns pinned_positions unchanged without
      calling the oracle (no async round-trip, no flicker)
    - Otherwise the full node/edge set goes to the oracle with every
      pinned id not in needs_layout marked fixed
    - Full reflow: all ids in needs_layout and no pinned positions

    The returned map is built only once the oracle has succeeded, so a
    failure never leaves a partially applied result behind.

    Args:
        nodes: All nodes to lay out (with dimensions)
        edges: All edges (anything with source/target attributes)
        pinned_positions: Positions to preserve
        needs_layout: Node ids that need fresh positions
        options: Direction, spacing, algorithm and optional timeout
        oracle: Layout oracle to use (defaults to options.algorithm)

    Returns:
        Map of node id -> position for every node

    Raises:
        LayoutOracleFailure: the oracle failed or timed out
    """
    if not nodes:
        return {}

    needs = list(dict.fromkeys(needs_layout))
    if not needs:
        return dict(pinned_positions)

    options = options or LayoutOptions()
    if oracle is None:
        oracle = get_layout_oracle(options.algorithm)

    node_ids = [n.id for n in nodes]
    known = set(node_ids)
    needs_set = set(needs)
    fixed = {
        node_id: pos for node_id, pos in pinned_positions.items()
        if node_id not in needs_set and node_id in known
    }

    valid_edges, _ = drop_invalid_edges(node_ids, edges)

    request = LayoutRequest(
        nodes=list(nodes),
        edges=[LayoutEdge(source=e.source, target=e.target) for e in valid_edges],
        fixed_positions=fixed,
        direction=options.direction,
        spacing=options.spacing,
        layer_spacing=options.layer_spacing,
    )

    try:
        if options.timeout is not None:
            computed = await asyncio.wait_for(oracle.layout(request), options.timeout)
        else:
            computed = await oracle.layout(request)
    except asyncio.TimeoutError as e:
        raise LayoutOracleFailure(f"Layout timed out after {options.timeout}s") from e
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise LayoutOracleFailure(f"Layout oracle failed: {e}") from e

    if computed is None:
        computed = {}
    if not isinstance(computed, Mapping):
        raise LayoutOracleFailure(
            f"Layout oracle returned {type(computed).__name__}, expected a mapping of node id to position"
        )

    result: dict[str, Position] = {}
    for node_id in node_ids:
        if node_id in fixed:
            # Anchors are restored even if the oracle nudged them
            result[node_id] = fixed[node_id]
            continue
        value = computed.get(node_id)
        if value is None:
            raise LayoutOracleFailure(f"Layout oracle returned no position for node: {node_id}")
        try:
            result[node_id] = _as_position(value)
        except (TypeError, ValueError) as e:
            raise LayoutOracleFailure(f"Invalid position for node {node_id}: {value!r}") from e

    logger.debug("Incremental layout placed %d of %d nodes", len(needs_set), len(node_ids))
    return result
