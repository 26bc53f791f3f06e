"""Shared test utilities for PagePilot tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

from pagepilot.config import Config
from pagepilot.core.llm.provider import CompletionResult, Message, ToolCallRequest
from pagepilot.runtime import Runtime, create_runtime
from pagepilot.session.storage import MemorySessionStore, SessionStore
from pagepilot.transport.messages import ErrorKind, ExecutionResult


class ScriptedLLM:
    """LLMProvider returning canned results in order.

    An Exception in the script is raised instead of returned. Every call's
    messages and tools are recorded.
    """

    def __init__(self, *script: CompletionResult | Exception, delay: float = 0.0) -> None:
        self.delay = delay
        self.script: list[CompletionResult | Exception] = list(script)
        self.calls: list[list[Message]] = []
        self.tools: list[list[dict[str, Any]] | None] = []

    @property
    def model(self) -> str:
        return "scripted-model"

    def extend(self, *script: CompletionResult | Exception) -> None:
        self.script.extend(script)

    async def complete(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 4096,
    ) -> CompletionResult:
        self.calls.append(list(messages))
        self.tools.append(tools)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.script:
            raise AssertionError("Unexpected model call")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class BlockingLLM:
    """LLMProvider that waits on an event before answering."""

    def __init__(self, content: str = "done") -> None:
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.cancelled = False
        self.content = content

    @property
    def model(self) -> str:
        return "blocking-model"

    async def complete(self, messages, *, tools=None, max_tokens=4096) -> CompletionResult:
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return CompletionResult(content=self.content)


def reply(content: str) -> CompletionResult:
    """A final answer with no tool calls."""
    return CompletionResult(content=content, finish_reason="stop")


def call(name: str, call_id: str = "call_1", **arguments: Any) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name=name, arguments=arguments)


def calls(*requests: ToolCallRequest, content: str = "") -> CompletionResult:
    """A model turn requesting the given tool calls, in order."""
    return CompletionResult(content=content, tool_calls=list(requests), finish_reason="tool_calls")


class FakeChannel:
    """PageChannel that records frames and optionally answers them."""

    def __init__(self, responder: Callable[[dict[str, Any]], None] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.open = True
        self.fail_send = False
        self.responder = responder

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, frame: dict[str, Any]) -> None:
        if self.fail_send:
            raise ConnectionError("socket closed")
        self.sent.append(frame)
        if self.responder is not None:
            self.responder(frame)


def answering(
    transport: Any,
    context_id: str,
    payload: Any = "ok",
    *,
    error_kind: ErrorKind | None = None,
    error: str | None = None,
) -> Callable[[dict[str, Any]], None]:
    """Responder that delivers a result for every execute frame on the next loop tick."""

    def respond(frame: dict[str, Any]) -> None:
        if error_kind is not None:
            result = ExecutionResult.failure(frame["requestId"], error_kind, error or "failed")
        else:
            result = ExecutionResult.ok(frame["requestId"], payload)
        asyncio.get_running_loop().call_soon(transport.deliver, result, context_id)

    return respond


def make_runtime(
    llm: Any,
    *,
    config: Config | None = None,
    store: SessionStore | None = None,
    on_assistance: Any = None,
) -> Runtime:
    """Runtime with fast retries and an in-memory store."""
    config = config or Config()
    config.llm.retry_backoff = 0.0
    return create_runtime(
        config,
        llm=llm,
        store=store if store is not None else MemorySessionStore(),
        on_assistance=on_assistance,
    )


def connect_page(runtime: Runtime, context_id: str = "tab-1", **responder_kwargs: Any) -> FakeChannel:
    """Attach a fake page that answers every request."""
    channel = FakeChannel()
    channel.responder = answering(runtime.transport, context_id, **responder_kwargs)
    runtime.contexts.attach(context_id, channel, url=f"https://example.test/{context_id}")
    return channel


def create_mock_llm_response(
    content: str | None = "",
    tool_calls: list[Any] | None = None,
    finish_reason: str = "stop",
) -> Mock:
    """Create a mock litellm completion response."""
    message = Mock()
    message.content = content
    message.tool_calls = tool_calls

    choice = Mock()
    choice.message = message
    choice.finish_reason = finish_reason

    response = Mock()
    response.choices = [choice]
    response.usage = Mock(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    return response


def create_mock_tool_call(call_id: str | None, name: str, arguments: str) -> Mock:
    """Create a mock litellm tool call object."""
    function = Mock()
    function.name = name
    function.arguments = arguments
    tool_call = Mock()
    tool_call.id = call_id
    tool_call.function = function
    return tool_call
