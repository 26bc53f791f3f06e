"""In-process execution of local tools.

Local tools never reach a page: they wait, ask the human for help, or work
on the page-context registry itself (listing and switching tabs).
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pagepilot.logging import get_logger
from pagepilot.tools.builtin import MAX_SLEEP_MS
from pagepilot.transport.contexts import PageContextRegistry
from pagepilot.transport.messages import ExecutionRequest

log = get_logger("transport.local")

# Recent assistance requests kept for inspection; older ones are dropped
ASSISTANCE_HISTORY = 100


@dataclass
class AssistanceRequest:
    """A request from the agent for the human to step in."""

    kind: str  # captcha, login, confirmation, custom
    message: str
    context: Any = None
    session_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "message": self.message,
            "context": self.context,
            "session_id": self.session_id,
            "created_at": self.created_at,
        }


AssistanceCallback = Callable[[AssistanceRequest], Awaitable[None] | None]

LocalHandler = Callable[[ExecutionRequest], Awaitable[Any]]


class LocalExecutor:
    """Runs local tools by name.

    Handlers return a payload on success and raise on failure; the transport
    turns both into an ExecutionResult.
    """

    def __init__(
        self,
        contexts: PageContextRegistry,
        on_assistance: AssistanceCallback | None = None,
        history: int = ASSISTANCE_HISTORY,
    ) -> None:
        self._contexts = contexts
        self._on_assistance = on_assistance
        self.assistance_requests: deque[AssistanceRequest] = deque(maxlen=history)
        self._handlers: dict[str, LocalHandler] = {
            "sleep": self._sleep,
            "get_tabs_list": self._get_tabs_list,
            "switch_to_tab": self._switch_to_tab,
            "request_human_assistance": self._request_assistance,
        }

    def handles(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    async def execute(self, request: ExecutionRequest) -> Any:
        handler = self._handlers.get(request.tool_name)
        if handler is None:
            raise LookupError(f"No local handler for '{request.tool_name}'")
        return await handler(request)

    async def _sleep(self, request: ExecutionRequest) -> Any:
        duration = min(int(request.arguments.get("duration", 0)), MAX_SLEEP_MS)
        await asyncio.sleep(duration / 1000)
        return {"slept_ms": duration}

    async def _get_tabs_list(self, request: ExecutionRequest) -> Any:
        return {"tabs": self._contexts.list_contexts()}

    async def _switch_to_tab(self, request: ExecutionRequest) -> Any:
        context = self._contexts.activate(request.arguments["tab_id"])
        return {"active": context.describe()}

    async def _request_assistance(self, request: ExecutionRequest) -> Any:
        args = request.arguments
        assistance = AssistanceRequest(
            kind=args["type"],
            message=args["message"],
            context=args.get("context"),
            session_id=request.session_id,
        )
        self.assistance_requests.append(assistance)
        log.warning(
            "Human assistance requested (%s) for session %s: %s",
            assistance.kind,
            assistance.session_id,
            assistance.message,
        )
        if self._on_assistance is not None:
            outcome = self._on_assistance(assistance)
            if asyncio.iscoroutine(outcome):
                await outcome
        return {
            "requested": True,
            "id": assistance.id,
            "note": "The user has been asked for help. Wait for their next message.",
        }
