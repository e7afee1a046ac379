"""
Diagram Layout Backend - FastAPI Application

Hosts one DiagramStateController and exposes it to the canvas:
- REST API for graph updates, drag events, reflow, undo/redo, file ops
- WebSocket endpoint pushing positions after every applied change

The importer posts each re-parse to PUT /api/diagram/graph; the canvas
routes raw drag events to /api/nodes/{id}/drag and /api/drag/end.
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from ..config import LayoutSettings
from ..controller import DiagramStateController
from ..incremental import LayoutOracleFailure
from ..layout import LayoutOracle, available_algorithms
from ..models import LayoutDirection, ParsedGraph, Position, PositionSource
from ..persistence import list_documents, read_document, write_document
from ..validation import validate_graph, validation_summary
from .websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_DIAGRAMS_DIR = os.path.expanduser("~/diagrams")


# --- Request Models ---

class SetPositionsRequest(BaseModel):
    positions: dict[str, Position]
    source: PositionSource = PositionSource.LOADED


class OpenDiagramRequest(BaseModel):
    file_path: str


class SaveDiagramRequest(BaseModel):
    file_path: Optional[str] = None
    name: Optional[str] = None


class NewDiagramRequest(BaseModel):
    name: str = Field(default="Untitled Diagram")


# --- Dependencies ---

def get_controller(request: Request) -> DiagramStateController:
    return request.app.state.controller


def _state_response(request: Request) -> dict:
    state = request.app.state
    result = state.controller.get_state()
    result["name"] = state.document_name
    result["file_path"] = str(state.file_path) if state.file_path else None
    return result


router = APIRouter(prefix="/api")


# --- Health Check ---

@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    return {"status": "ok", "connections": request.app.state.ws_manager.connection_count}


# --- Diagram State ---

@router.get("/diagram")
async def get_diagram(request: Request):
    """Get the current renderable state."""
    return _state_response(request)


@router.put("/diagram/graph")
async def set_graph(graph: ParsedGraph, request: Request,
                    controller: DiagramStateController = Depends(get_controller)):
    """Apply a re-parsed graph, laying out only nodes without a position."""
    try:
        update = await controller.set_graph(graph)
    except LayoutOracleFailure as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "success": True,
        "applied": update.applied,
        "needs_layout": update.needs_layout,
        "issues": [i.to_dict() for i in update.issues],
        "diagram": _state_response(request),
    }


@router.post("/diagram/reflow")
async def reflow(request: Request, controller: DiagramStateController = Depends(get_controller)):
    """Re-layout every node from scratch (undoable)."""
    try:
        applied = await controller.reflow()
    except LayoutOracleFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": applied, "diagram": _state_response(request)}


# --- Drag Events ---

@router.post("/nodes/{node_id}/drag")
async def drag_node(node_id: str, position: Position,
                    controller: DiagramStateController = Depends(get_controller)):
    """Move a node during a drag gesture."""
    if node_id not in controller.graph.node_ids():
        raise HTTPException(status_code=404, detail="Node not found")
    controller.on_node_drag(node_id, position)
    return {"success": True, "node_id": node_id, "position": position.model_dump()}


@router.post("/drag/end")
async def drag_end(controller: DiagramStateController = Depends(get_controller)):
    """Finish the current drag gesture (one undo step)."""
    committed = controller.on_drag_end()
    return {"success": committed, "can_undo": controller.can_undo}


@router.put("/positions")
async def set_positions(body: SetPositionsRequest,
                        controller: DiagramStateController = Depends(get_controller)):
    """Overwrite positions directly. No layout, no history entry."""
    controller.set_node_positions(body.positions, body.source)
    return {"success": True}


# --- Undo/Redo ---

@router.post("/undo")
async def undo(request: Request, controller: DiagramStateController = Depends(get_controller)):
    """Undo the last position change."""
    if controller.undo():
        return {"success": True, "diagram": _state_response(request)}
    return {"success": False, "message": "Nothing to undo"}


@router.post("/redo")
async def redo(request: Request, controller: DiagramStateController = Depends(get_controller)):
    """Redo the last undone position change."""
    if controller.redo():
        return {"success": True, "diagram": _state_response(request)}
    return {"success": False, "message": "Nothing to redo"}


# --- File Operations ---

@router.post("/diagram/new")
async def new_diagram(body: NewDiagramRequest, request: Request,
                      controller: DiagramStateController = Depends(get_controller)):
    """Start a new empty diagram."""
    controller.reset()
    request.app.state.document_name = body.name
    request.app.state.file_path = None
    return {"success": True, "diagram": _state_response(request)}


@router.post("/diagram/open")
async def open_diagram(body: OpenDiagramRequest, request: Request,
                       controller: DiagramStateController = Depends(get_controller)):
    """Open a diagram document from a JSON file."""
    try:
        document = read_document(body.file_path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Failed to open diagram: {e}")

    try:
        await controller.load_document(document)
    except LayoutOracleFailure as e:
        raise HTTPException(status_code=502, detail=str(e))

    request.app.state.document_name = document.name
    request.app.state.document_id = document.id
    request.app.state.file_path = body.file_path
    return {"success": True, "diagram": _state_response(request)}


@router.post("/diagram/save")
async def save_diagram(body: SaveDiagramRequest, request: Request,
                       controller: DiagramStateController = Depends(get_controller)):
    """Save the graph and its final positions to a JSON file."""
    state = request.app.state
    file_path = body.file_path or state.file_path
    if not file_path:
        raise HTTPException(status_code=400, detail="No file path specified and no current file path")

    if body.name:
        state.document_name = body.name
    document = controller.to_document(name=state.document_name, document_id=state.document_id)
    try:
        path = write_document(document, file_path)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save: {e}")

    state.file_path = str(path)
    state.document_id = document.id
    return {"success": True, "file_path": str(path)}


@router.get("/diagrams")
async def list_diagrams(directory: str = Query(default=DEFAULT_DIAGRAMS_DIR)):
    """List diagram files in a directory."""
    return {"success": True, "diagrams": list_documents(directory)}


# --- Validation ---

@router.get("/diagram/validate")
async def validate_current_diagram(controller: DiagramStateController = Depends(get_controller)):
    """
    Report issues with the current graph.

    Includes edges dropped for referencing unknown nodes.
    """
    issues = controller.issues + validate_graph(controller.graph)
    return {
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues),
    }


# --- Enums for Frontend ---

@router.get("/enums/algorithms")
async def get_algorithms():
    return {"algorithms": available_algorithms()}


@router.get("/enums/directions")
async def get_directions():
    return {"directions": [d.value for d in LayoutDirection]}


# --- App Factory ---

def create_app(settings: Optional[LayoutSettings] = None,
               oracle: Optional[LayoutOracle] = None) -> FastAPI:
    """
    Build the application around a fresh controller.

    Controller changes are synchronous; an asyncio.Event bridges them to
    the background task that broadcasts to WebSocket clients.
    """
    settings = settings or LayoutSettings.from_env()
    controller = DiagramStateController(settings, oracle)
    ws_manager = WebSocketManager()
    change_event = asyncio.Event()
    controller.on_change(change_event.set)

    async def change_broadcaster():
        while True:
            await change_event.wait()
            change_event.clear()
            await ws_manager.notify_positions_updated(controller.get_state())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        broadcaster_task = asyncio.create_task(change_broadcaster())
        yield
        broadcaster_task.cancel()
        try:
            await broadcaster_task
        except asyncio.CancelledError:
            pass

    app = FastAPI(
        title="Diagram Layout API",
        description="Position-stable incremental layout for the diagram canvas",
        version="0.1.0",
        lifespan=lifespan
    )

    # CORS for local frontend development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.controller = controller
    app.state.ws_manager = ws_manager
    app.state.document_name = "Untitled Diagram"
    app.state.document_id = None
    app.state.file_path = None

    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Clients connect here to receive positions_updated events."""
        await ws_manager.serve(websocket)

    return app


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("DIAGRAM_LAYOUT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("DIAGRAM_LAYOUT_HOST", DEFAULT_HOST)
    port = int(os.environ.get("DIAGRAM_LAYOUT_PORT", DEFAULT_PORT))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    run()
