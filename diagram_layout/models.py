"""
Core data models for position-stable diagrams.

These models define the shapes that flow through the layout engine:
- Parsed graphs handed over by the DSL/Mermaid/DOT importers
- Diffable graphs used to track node identity between edits
- Positions and their provenance
- Renderable nodes/edges handed to the canvas
- Persisted documents (final positions only)

Field Naming Convention:
- Edges use `source` and `target` (same as the canvas renderer)
- For backward compatibility, `from`/`to` are accepted on input and converted
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator
import uuid


# Default node dimensions when the parser does not supply them
DEFAULT_NODE_WIDTH = 150
DEFAULT_NODE_HEIGHT = 50


class PositionSource(str, Enum):
    """How a node's current position was produced (provenance, not ownership)."""
    ELK_COMPUTED = "elk-computed"
    USER_DRAGGED = "user-dragged"
    LOADED = "loaded"
    INCREMENTAL = "incremental"


class LayoutDirection(str, Enum):
    """Direction in which layout ranks are stacked."""
    DOWN = "DOWN"
    UP = "UP"
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class Position(BaseModel):
    """A point on the canvas (top-left corner of a node)."""
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


ORIGIN = Position(x=0, y=0)


def _convert_legacy_edge_fields(data: Any) -> Any:
    """Convert legacy 'from'/'to' fields to 'source'/'target'."""
    if isinstance(data, dict):
        data = dict(data)
        if 'from' in data and 'source' not in data:
            data['source'] = data.pop('from')
        if 'to' in data and 'target' not in data:
            data['target'] = data.pop('to')
    return data


def generate_document_id() -> str:
    """Generate a unique document ID."""
    return f"diagram-{uuid.uuid4().hex[:8]}"


# --- Parser collaborator (upstream) ---

class ParsedNode(BaseModel):
    """A node as produced by an importer."""
    id: str
    type: str
    label: str
    width: Optional[float] = None
    height: Optional[float] = None


class ParsedEdge(BaseModel):
    """An edge as produced by an importer."""
    id: str
    source: str
    target: str
    label: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        return _convert_legacy_edge_fields(data)


class ParsedGraph(BaseModel):
    """
    Normalized graph handed over by the DSL/Mermaid/DOT importers.

    Node ids must stay stable across re-parses of edited source text;
    position stability depends entirely on that.
    """
    nodes: list[ParsedNode] = Field(default_factory=list)
    edges: list[ParsedEdge] = Field(default_factory=list)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}


# --- Diffing ---

class DiffableNode(BaseModel):
    """Identity is `id`; content equality is (type, label)."""
    id: str
    type: str
    label: str


class DiffableEdge(BaseModel):
    id: str
    source: str
    target: str


class DiffableGraph(BaseModel):
    nodes: list[DiffableNode] = Field(default_factory=list)
    edges: list[DiffableEdge] = Field(default_factory=list)

    @classmethod
    def from_parsed(cls, graph: ParsedGraph) -> "DiffableGraph":
        """Strip a parsed graph down to what identity tracking needs."""
        return cls(
            nodes=[DiffableNode(id=n.id, type=n.type, label=n.label) for n in graph.nodes],
            edges=[DiffableEdge(id=e.id, source=e.source, target=e.target) for e in graph.edges],
        )


@dataclass
class GraphDiff:
    """Node ids of two graph snapshots, split into four disjoint groups."""
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def retained(self) -> list[str]:
        """Ids present in both graphs (unchanged first, then modified)."""
        return self.unchanged + self.modified

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def to_dict(self) -> dict:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": list(self.modified),
            "unchanged": list(self.unchanged),
        }


@dataclass
class PositionResolution:
    """
    Positions kept from the previous state plus the ids still to be placed.

    Ids in `needs_layout` carry a (0, 0) placeholder in `positions`
    until a layout run resolves them.
    """
    positions: dict[str, Position] = field(default_factory=dict)
    needs_layout: list[str] = field(default_factory=list)


# --- Renderer collaborator (downstream) ---

class RenderNodeData(BaseModel):
    label: str
    node_type: str


class RenderNode(BaseModel):
    """A node as consumed by the canvas renderer."""
    id: str
    position: Position
    data: RenderNodeData


class RenderEdge(BaseModel):
    """An edge as consumed by the canvas renderer."""
    id: str
    source: str
    target: str
    label: Optional[str] = None


# --- Persistence collaborator ---

class DocumentMetadata(BaseModel):
    """Metadata about the saved document."""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DiagramDocument(BaseModel):
    """
    What gets saved to/loaded from JSON files.

    Only final positions are persisted. Position sources and undo/redo
    history belong to the live controller and are never serialized.
    """
    id: str = Field(default_factory=generate_document_id)
    name: str = "Untitled Diagram"
    graph: ParsedGraph = Field(default_factory=ParsedGraph)
    positions: dict[str, Position] = Field(default_factory=dict)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "name": self.name,
            "graph": self.graph.model_dump(exclude_none=True),
            "positions": {
                node_id: {"x": pos.x, "y": pos.y}
                for node_id, pos in self.positions.items()
            },
            "metadata": {
                "created_at": self.metadata.created_at.isoformat(),
                "updated_at": self.metadata.updated_at.isoformat(),
            }
        }

    @classmethod
    def from_json_dict(cls, data: dict) -> "DiagramDocument":
        """Create a document from a JSON dict (handles legacy edge keys)."""
        graph_data = data.get('graph', {})
        graph = ParsedGraph(
            nodes=[ParsedNode(**n) for n in graph_data.get('nodes', [])],
            edges=[ParsedEdge(**e) for e in graph_data.get('edges', [])],
        )

        positions = {
            node_id: Position(**pos)
            for node_id, pos in data.get('positions', {}).items()
        }

        meta_data = data.get('metadata', {})
        metadata = DocumentMetadata(
            created_at=datetime.fromisoformat(meta_data['created_at']) if 'created_at' in meta_data else datetime.utcnow(),
            updated_at=datetime.fromisoformat(meta_data['updated_at']) if 'updated_at' in meta_data else datetime.utcnow(),
        )

        return cls(
            id=data.get('id', generate_document_id()),
            name=data.get('name', 'Untitled Diagram'),
            graph=graph,
            positions=positions,
            metadata=metadata,
        )
