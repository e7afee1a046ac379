"""HTTP/WebSocket host for the diagram layout controller."""

from .main import create_app

__all__ = ["create_app"]
