"""Server lifecycle management under uvicorn."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import uvicorn

from pagepilot.logging import get_logger
from pagepilot.server.routes import create_app

if TYPE_CHECKING:
    from pagepilot.runtime import Runtime

log = get_logger("server")


def build_server(runtime: Runtime, host: str | None = None, port: int | None = None) -> uvicorn.Server:
    server_config = runtime.config.server
    config = uvicorn.Config(
        create_app(runtime),
        host=host or server_config.host,
        port=port or server_config.port,
        log_level="warning",
        access_log=False,
    )
    return uvicorn.Server(config)


async def serve(runtime: Runtime, host: str | None = None, port: int | None = None) -> None:
    """Run the HTTP/WebSocket server until it is stopped."""
    server = build_server(runtime, host, port)
    log.info("Serving on http://%s:%d", server.config.host, server.config.port)
    await server.serve()


class BackgroundServer:
    """Runs the server as a task alongside an interactive front end."""

    def __init__(self, runtime: Runtime, host: str | None = None, port: int | None = None) -> None:
        self._server = build_server(runtime, host, port)
        self._task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return f"http://{self._server.config.host}:{self._server.config.port}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            raise RuntimeError(f"Server already running on {self.url}")
        self._task = asyncio.create_task(self._server.serve())
        while not self._server.started:
            if self._task.done():
                # Surfaces bind errors and the like
                await self._task
                raise RuntimeError("Server exited during startup")
            await asyncio.sleep(0.05)
        log.info("Server started on %s", self.url)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("Server stopped")
