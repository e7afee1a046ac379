"""
JSON file persistence for diagram documents.

Only the graph and its final positions are written. Position sources and
undo/redo history live in the controller and are never serialized.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

from .models import DiagramDocument

logger = logging.getLogger(__name__)


def read_document(file_path: str | Path) -> DiagramDocument:
    """Load a document from a JSON file."""
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Diagram file not found: {path}")

    with open(path, 'r') as f:
        data = json.load(f)

    return DiagramDocument.from_json_dict(data)


def write_document(document: DiagramDocument, file_path: str | Path) -> Path:
    """Save a document to a JSON file, creating parent directories."""
    path = Path(file_path)
    document.metadata.updated_at = datetime.utcnow()

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(document.to_json_dict(), f, indent=2)

    logger.info("Saved %s (%d nodes) to %s", document.name, len(document.graph.nodes), path)
    return path


def list_documents(directory: str | Path) -> list[dict]:
    """List diagram documents in a directory. Unreadable files are skipped."""
    path = Path(directory)
    if not path.exists():
        return []

    documents = []
    for f in sorted(path.glob("*.json")):
        try:
            with open(f) as file:
                data = json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            logger.debug("Skipping %s: %s", f, e)
            continue
        graph = data.get("graph", {})
        documents.append({
            "path": str(f),
            "name": data.get("name", f.stem),
            "nodes": len(graph.get("nodes", [])),
            "edges": len(graph.get("edges", [])),
        })

    return documents
