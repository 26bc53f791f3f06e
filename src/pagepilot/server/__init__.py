"""HTTP and WebSocket surface for PagePilot."""

from pagepilot.server.routes import create_app, status_for
from pagepilot.server.server import BackgroundServer, build_server, serve
from pagepilot.server.websocket import WebSocketPageChannel, serve_page_context

__all__ = [
    "BackgroundServer",
    "WebSocketPageChannel",
    "build_server",
    "create_app",
    "serve",
    "serve_page_context",
    "status_for",
]
