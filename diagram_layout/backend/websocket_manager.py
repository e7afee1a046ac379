"""
WebSocket Manager - Handles real-time connections and broadcasts.

Connected canvases receive a positions_updated event whenever the
controller applies a visible change (graph update, layout, drag, undo).
"""
import asyncio
import json
import logging
from typing import Set

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("WebSocket connected. Total connections: %d", len(self._connections))

    async def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("WebSocket disconnected. Total connections: %d", len(self._connections))

    async def serve(self, websocket: WebSocket):
        """
        Register a client and answer its pings until it goes away.

        The client is unregistered however the receive loop ends; errors
        other than a disconnect still propagate.
        """
        await self.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text('{"type": "pong"}')
        except WebSocketDisconnect:
            logger.debug("WebSocket client closed the connection")
        finally:
            await self.disconnect(websocket)

    async def broadcast(self, message: dict):
        """
        Broadcast a message to all connected clients.

        Clients that fail to receive are dropped.
        """
        if not self._connections:
            return

        # Serialize once for all clients
        message_text = json.dumps(message)
        failed: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception as e:
                    logger.debug("Dropping WebSocket after failed send: %s", e)
                    failed.add(websocket)

            self._connections -= failed

    async def notify_positions_updated(self, state: dict):
        """Push the renderable state to every client."""
        await self.broadcast({
            "type": "positions_updated",
            "nodes": state["nodes"],
            "edges": state["edges"],
            "can_undo": state["can_undo"],
            "can_redo": state["can_redo"],
        })

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return len(self._connections)
