"""WebSocket endpoint for page contexts.

A page context connects to ``/pages/{context_id}``, receives ``execute``
frames and answers with ``result`` frames. Other inbound frames: ``hello``
(url/title, sent on connect), ``activate`` (the tab gained focus) and
``ping``. Malformed frames are logged and dropped; the connection stays up.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from pagepilot.logging import TRACE, get_logger, log_scope
from pagepilot.transport.messages import (
    ActivateFrame,
    ExecutionResult,
    HelloFrame,
    PingFrame,
    PongFrame,
    encode_frame,
    parse_page_frame,
)

if TYPE_CHECKING:
    from pagepilot.runtime import Runtime

log = get_logger("server.pages")


class WebSocketPageChannel:
    """PageChannel over a FastAPI WebSocket.

    Sends are serialised: several sessions may dispatch to the same page.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, frame: dict[str, Any]) -> None:
        if not self.is_open:
            raise ConnectionError("page connection is closed")
        async with self._send_lock:
            log.log(TRACE, "-> %s", frame)
            await self._websocket.send_json(frame)


async def serve_page_context(websocket: WebSocket, context_id: str, runtime: Runtime) -> None:
    """Run one page connection until it closes."""
    with log_scope(page=context_id):
        await _serve(websocket, context_id, runtime)


async def _serve(websocket: WebSocket, context_id: str, runtime: Runtime) -> None:
    await websocket.accept()
    channel = WebSocketPageChannel(websocket)
    contexts = runtime.contexts
    transport = runtime.transport
    contexts.attach(context_id, channel)

    try:
        while True:
            raw = await websocket.receive_text()
            log.log(TRACE, "<- %s: %s", context_id, raw)
            try:
                frame = parse_page_frame(raw)
            except ValidationError as e:
                log.warning(
                    "Dropping malformed frame from page %s: %d error(s): %s",
                    context_id,
                    e.error_count(),
                    e.errors(include_url=False)[:3],
                )
                continue

            if isinstance(frame, ExecutionResult):
                transport.deliver(frame, context_id)
            elif isinstance(frame, HelloFrame):
                contexts.update(context_id, url=frame.url, title=frame.title)
                if frame.activate:
                    contexts.activate(context_id)
            elif isinstance(frame, ActivateFrame):
                contexts.update(context_id, url=frame.url, title=frame.title)
                contexts.activate(context_id)
            elif isinstance(frame, PingFrame):
                await channel.send(encode_frame(PongFrame()))
    except WebSocketDisconnect as e:
        log.debug("Page %s disconnected (code %s)", context_id, e.code)
    finally:
        channel.mark_closed()
        failed = transport.detach_context(context_id, channel)
        if failed:
            log.warning("Page %s went away with %d request(s) in flight", context_id, failed)
