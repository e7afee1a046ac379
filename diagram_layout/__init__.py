"""
Diagram Layout - incremental layout and position stability for diagram editors.

This package decides, on every diagram edit, which node positions are
kept exactly and which are computed fresh, and reconciles asynchronous
layout runs with synchronous dragging and undo/redo.
"""

from .models import (
    # Enums
    PositionSource,
    LayoutDirection,
    # Core models
    Position,
    ParsedNode,
    ParsedEdge,
    ParsedGraph,
    DiffableNode,
    DiffableEdge,
    DiffableGraph,
    GraphDiff,
    PositionResolution,
    # Renderer / persistence models
    RenderNode,
    RenderEdge,
    DiagramDocument,
)

from .config import LayoutSettings, LayoutOptions
from .diff import diff_graphs
from .positions import PositionStore, resolve_positions
from .layout import (
    LayoutOracle,
    LayoutRequest,
    LayoutNode,
    LayoutEdge,
    LayeredLayoutOracle,
    GridLayoutOracle,
    ForceLayoutOracle,
    get_layout_oracle,
)
from .incremental import incremental_layout, LayoutOracleFailure
from .history import HistoryManager, HistoryEntry
from .controller import DiagramStateController, ControllerState, GraphUpdate
from .validation import validate_graph, ValidationIssue, IssueSeverity
from .persistence import read_document, write_document

__version__ = "0.1.0"

__all__ = [
    # Enums
    "PositionSource",
    "LayoutDirection",
    # Models
    "Position",
    "ParsedNode",
    "ParsedEdge",
    "ParsedGraph",
    "DiffableNode",
    "DiffableEdge",
    "DiffableGraph",
    "GraphDiff",
    "PositionResolution",
    "RenderNode",
    "RenderEdge",
    "DiagramDocument",
    # Configuration
    "LayoutSettings",
    "LayoutOptions",
    # Diffing and resolution
    "diff_graphs",
    "PositionStore",
    "resolve_positions",
    # Layout
    "LayoutOracle",
    "LayoutRequest",
    "LayoutNode",
    "LayoutEdge",
    "LayeredLayoutOracle",
    "GridLayoutOracle",
    "ForceLayoutOracle",
    "get_layout_oracle",
    "incremental_layout",
    "LayoutOracleFailure",
    # History
    "HistoryManager",
    "HistoryEntry",
    # Controller
    "DiagramStateController",
    "ControllerState",
    "GraphUpdate",
    # Validation
    "validate_graph",
    "ValidationIssue",
    "IssueSeverity",
    # Persistence
    "read_document",
    "write_document",
]
