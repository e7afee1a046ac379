"""
Graph validation - check parsed graphs for structural issues.

The layout engine only needs one check to be strict: an edge that names
an unknown node id must never reach the layout oracle. Such edges are
dropped and reported as warnings; they are never fatal.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, TypeVar

from .models import ParsedGraph

logger = logging.getLogger(__name__)

EdgeT = TypeVar("EdgeT")


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a graph."""
    severity: IssueSeverity
    message: str
    node_id: str | None = None
    edge_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.node_id:
            result["node_id"] = self.node_id
        if self.edge_id:
            result["edge_id"] = self.edge_id
        return result


def find_invalid_references(node_ids: Iterable[str], edges: Iterable) -> list[ValidationIssue]:
    """
    Report edges whose source or target is not a known node id.

    Edges are duck-typed: anything with `source` and `target` attributes
    (and optionally `id`) works.
    """
    known = set(node_ids)
    issues: list[ValidationIssue] = []

    for edge in edges:
        edge_id = getattr(edge, "id", None)
        for end in ("source", "target"):
            node_id = getattr(edge, end)
            if node_id not in known:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"Edge references non-existent {end} node: {node_id}",
                    node_id=node_id,
                    edge_id=edge_id
                ))

    return issues


def drop_invalid_edges(
    node_ids: Iterable[str],
    edges: Iterable[EdgeT]
) -> tuple[list[EdgeT], list[ValidationIssue]]:
    """
    Split edges into those safe to lay out and the issues for the rest.

    Every dropped edge is logged at WARNING level.

    Returns:
        (valid_edges, issues)
    """
    known = set(node_ids)
    valid: list[EdgeT] = []
    dropped = []

    for edge in edges:
        if edge.source in known and edge.target in known:
            valid.append(edge)
        else:
            dropped.append(edge)

    issues = find_invalid_references(known, dropped)
    for issue in issues:
        logger.warning("Dropping edge %s: %s", issue.edge_id or "<unnamed>", issue.message)

    return valid, issues


def validate_graph(graph: ParsedGraph) -> list[ValidationIssue]:
    """
    Validate a parsed graph and return a list of issues.

    Checks for:
    - Invalid edge references (source/target doesn't exist) - WARNING
    - Duplicate node ids - ERROR (later duplicates are ignored by the differ)
    - Duplicate edge ids - WARNING
    - Self-referencing edges - INFO
    - Empty graph - INFO
    """
    issues: list[ValidationIssue] = []

    if not graph.nodes:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Graph has no nodes"
        ))

    seen_nodes: set[str] = set()
    for node in graph.nodes:
        if node.id in seen_nodes:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Duplicate node id: {node.id}",
                node_id=node.id
            ))
        seen_nodes.add(node.id)

    issues.extend(find_invalid_references(seen_nodes, graph.edges))

    seen_edges: set[str] = set()
    for edge in graph.edges:
        if edge.id in seen_edges:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Duplicate edge id: {edge.id}",
                edge_id=edge.id
            ))
        seen_edges.add(edge.id)

        if edge.source == edge.target:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                message="Self-referencing edge (node points to itself)",
                edge_id=edge.id,
                node_id=edge.source
            ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """Counts by severity."""
    return {
        "total": len(issues),
        "errors": len([i for i in issues if i.severity == IssueSeverity.ERROR]),
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": len([i for i in issues if i.severity == IssueSeverity.ERROR]) == 0
    }
