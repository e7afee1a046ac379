"""
Graph differ - classify node identities between two graph snapshots.

Only nodes are diffed. Edges are cheap to re-render wholesale on every
update; what matters to the user is that a node keeps its place.
"""

from .models import DiffableGraph, DiffableNode, GraphDiff


def diff_graphs(old_graph: DiffableGraph, new_graph: DiffableGraph) -> GraphDiff:
    """
    Compare two graphs and split node ids into added/removed/modified/unchanged.

    A node present in both graphs is "modified" if its type or label
    changed, otherwise "unchanged". Ids keep the order in which they
    appear in the new graph (removed ids: order in the old graph).

    Args:
        old_graph: The previous graph state
        new_graph: The new graph state

    Returns:
        GraphDiff with the four disjoint id lists
    """
    old_nodes: dict[str, DiffableNode] = {}
    for node in old_graph.nodes:
        old_nodes.setdefault(node.id, node)
    new_ids: set[str] = set()

    diff = GraphDiff()

    for node in new_graph.nodes:
        if node.id in new_ids:
            continue  # duplicate id in the new graph, first one wins
        new_ids.add(node.id)

        old_node = old_nodes.get(node.id)
        if old_node is None:
            diff.added.append(node.id)
        elif old_node.type != node.type or old_node.label != node.label:
            diff.modified.append(node.id)
        else:
            diff.unchanged.append(node.id)

    seen_removed: set[str] = set()
    for node in old_graph.nodes:
        if node.id not in new_ids and node.id not in seen_removed:
            seen_removed.add(node.id)
            diff.removed.append(node.id)

    return diff
