"""Tests for the execution transport, page contexts and local tools."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from pagepilot.errors import TargetUnreachable
from pagepilot.transport import (
    AssistanceRequest,
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
    ExecutionTransport,
    LocalExecutor,
    PageContextRegistry,
)
from tests.utils import FakeChannel, answering


@pytest.fixture
def contexts() -> PageContextRegistry:
    return PageContextRegistry()


@pytest.fixture
def transport(contexts: PageContextRegistry) -> ExecutionTransport:
    return ExecutionTransport(contexts, default_timeout=1.0, local_timeout=1.0)


def request(tool_name: str = "find_elements", **arguments) -> ExecutionRequest:
    return ExecutionRequest.create(tool_name, arguments or {"selector": "a"}, "s1")


# =============================================================================
# Page context registry
# =============================================================================


class TestPageContextRegistry:
    """Test attach/detach and active-context tracking."""

    def test_attach_activates(self, contexts: PageContextRegistry) -> None:
        contexts.attach("tab-1", FakeChannel())
        contexts.attach("tab-2", FakeChannel())
        assert contexts.active_id == "tab-2"

    def test_attach_without_activation(self, contexts: PageContextRegistry) -> None:
        contexts.attach("tab-1", FakeChannel())
        contexts.attach("tab-2", FakeChannel(), activate=False)
        assert contexts.active_id == "tab-1"

    def test_first_attach_always_active(self, contexts: PageContextRegistry) -> None:
        contexts.attach("tab-1", FakeChannel(), activate=False)
        assert contexts.active_id == "tab-1"

    def test_detach_active_falls_back(self, contexts: PageContextRegistry) -> None:
        contexts.attach("tab-1", FakeChannel())
        contexts.attach("tab-2", FakeChannel())
        assert contexts.detach("tab-2")
        assert contexts.active_id == "tab-1"
        assert contexts.detach("tab-1")
        assert contexts.active_id is None

    def test_stale_detach_ignored(self, contexts: PageContextRegistry) -> None:
        old, new = FakeChannel(), FakeChannel()
        contexts.attach("tab-1", old)
        contexts.attach("tab-1", new)
        assert contexts.detach("tab-1", old) is False
        assert "tab-1" in contexts

    def test_resolve_none_connected(self, contexts: PageContextRegistry) -> None:
        with pytest.raises(TargetUnreachable):
            contexts.resolve()

    def test_resolve_closed_channel(self, contexts: PageContextRegistry) -> None:
        channel = FakeChannel()
        contexts.attach("tab-1", channel)
        channel.open = False
        with pytest.raises(TargetUnreachable, match="closed"):
            contexts.resolve()

    def test_activate_unknown(self, contexts: PageContextRegistry) -> None:
        with pytest.raises(TargetUnreachable):
            contexts.activate("tab-9")

    def test_update_and_list(self, contexts: PageContextRegistry) -> None:
        contexts.attach("tab-1", FakeChannel(), url="https://a.test")
        contexts.attach("tab-2", FakeChannel(), activate=False)
        contexts.update("tab-2", title="Second")
        listing = contexts.list_contexts()
        assert [c["id"] for c in listing] == ["tab-1", "tab-2"]
        assert listing[0]["active"] is True
        assert listing[0]["url"] == "https://a.test"
        assert listing[1]["title"] == "Second"


# =============================================================================
# Remote dispatch
# =============================================================================


class TestDispatch:
    """Test request/response correlation with page contexts."""

    async def test_no_page_connected(self, transport: ExecutionTransport) -> None:
        result = await transport.dispatch(request())
        assert result.success is False
        assert result.error_kind is ErrorKind.TARGET_UNREACHABLE
        assert transport.pending_count == 0

    async def test_round_trip(self, contexts: PageContextRegistry, transport: ExecutionTransport) -> None:
        channel = FakeChannel(answering(transport, "tab-1", payload=[{"tag": "a"}]))
        contexts.attach("tab-1", channel)

        req = request()
        result = await transport.dispatch(req)

        assert result.success is True
        assert result.request_id == req.request_id
        assert result.payload == [{"tag": "a"}]
        assert channel.sent[0]["type"] == "execute"
        assert channel.sent[0]["requestId"] == req.request_id
        assert transport.pending_count == 0

    async def test_page_error_passed_through(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        contexts.attach(
            "tab-1",
            FakeChannel(
                answering(transport, "tab-1", error_kind=ErrorKind.ELEMENT_NOT_FOUND, error="no match")
            ),
        )
        result = await transport.dispatch(request())
        assert result.error_kind is ErrorKind.ELEMENT_NOT_FOUND
        assert result.error == "no match"

    async def test_timeout_then_late_result_discarded(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        channel = FakeChannel()
        contexts.attach("tab-1", channel)
        req = request()

        result = await transport.dispatch(req, timeout=0.05)

        assert result.success is False
        assert result.error_kind is ErrorKind.TIMEOUT
        assert "50 ms" in (result.error or "")
        assert transport.pending_count == 0
        assert transport.deliver(ExecutionResult.ok(req.request_id), "tab-1") is False

    async def test_each_dispatch_gets_own_id(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        channel = FakeChannel(answering(transport, "tab-1"))
        contexts.attach("tab-1", channel)
        await transport.dispatch(request())
        await transport.dispatch(request())
        assert channel.sent[0]["requestId"] != channel.sent[1]["requestId"]

    async def test_send_failure(self, contexts: PageContextRegistry, transport: ExecutionTransport) -> None:
        channel = FakeChannel()
        channel.fail_send = True
        contexts.attach("tab-1", channel)
        result = await transport.dispatch(request())
        assert result.error_kind is ErrorKind.TARGET_UNREACHABLE
        assert transport.pending_count == 0

    async def test_active_context_resolved_per_dispatch(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        first = FakeChannel(answering(transport, "tab-1"))
        second = FakeChannel(answering(transport, "tab-2"))
        contexts.attach("tab-1", first)
        contexts.attach("tab-2", second, activate=False)

        await transport.dispatch(request())
        contexts.activate("tab-2")
        await transport.dispatch(request())

        assert len(first.sent) == 1
        assert len(second.sent) == 1

    async def test_tab_id_selects_target(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        first = FakeChannel(answering(transport, "tab-1"))
        second = FakeChannel(answering(transport, "tab-2"))
        contexts.attach("tab-1", first)
        contexts.attach("tab-2", second, activate=False)

        result = await transport.dispatch(request(selector="a", tab_id="tab-2"))

        assert result.success is True
        assert first.sent == []
        assert second.sent[0]["arguments"] == {"selector": "a"}

    async def test_unknown_tab_id(self, contexts: PageContextRegistry, transport: ExecutionTransport) -> None:
        contexts.attach("tab-1", FakeChannel(answering(transport, "tab-1")))
        result = await transport.dispatch(request(selector="a", tab_id="tab-9"))
        assert result.error_kind is ErrorKind.TARGET_UNREACHABLE
        assert "tab-9" in (result.error or "")

    async def test_result_from_wrong_context_discarded(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        channel = FakeChannel()
        contexts.attach("tab-1", channel)
        task = asyncio.create_task(transport.dispatch(request(), timeout=1.0))
        await asyncio.sleep(0)
        request_id = channel.sent[0]["requestId"]

        assert transport.deliver(ExecutionResult.ok(request_id, "spoofed"), "tab-2") is False
        assert transport.deliver(ExecutionResult.ok(request_id, "real"), "tab-1") is True
        assert (await task).payload == "real"

    async def test_duplicate_result_ignored(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        channel = FakeChannel()
        contexts.attach("tab-1", channel)
        task = asyncio.create_task(transport.dispatch(request()))
        await asyncio.sleep(0)
        request_id = channel.sent[0]["requestId"]

        assert transport.deliver(ExecutionResult.ok(request_id, "first")) is True
        assert transport.deliver(ExecutionResult.ok(request_id, "second")) is False
        assert (await task).payload == "first"

    async def test_unknown_result_discarded(self, transport: ExecutionTransport) -> None:
        assert transport.deliver(ExecutionResult.ok("nobody-asked")) is False

    async def test_detach_fails_in_flight(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        channel = FakeChannel()
        contexts.attach("tab-1", channel)
        task = asyncio.create_task(transport.dispatch(request()))
        await asyncio.sleep(0)

        assert transport.detach_context("tab-1", channel) == 1
        result = await task
        assert result.error_kind is ErrorKind.TARGET_UNREACHABLE
        assert "disconnected" in (result.error or "")
        assert "tab-1" not in contexts

    async def test_close_cancels_in_flight(
        self, contexts: PageContextRegistry, transport: ExecutionTransport
    ) -> None:
        contexts.attach("tab-1", FakeChannel())
        task = asyncio.create_task(transport.dispatch(request()))
        await asyncio.sleep(0)

        transport.close()
        assert (await task).error_kind is ErrorKind.CANCELLED


# =============================================================================
# Local tools
# =============================================================================


class TestLocalExecution:
    """Test in-process tools."""

    async def test_sleep(self, transport: ExecutionTransport) -> None:
        result = await transport.execute_local(ExecutionRequest.create("sleep", {"duration": 10}))
        assert result.success is True
        assert result.payload == {"slept_ms": 10}

    async def test_local_timeout(self, transport: ExecutionTransport) -> None:
        result = await transport.execute_local(
            ExecutionRequest.create("sleep", {"duration": 5000}), timeout=0.02
        )
        assert result.error_kind is ErrorKind.TIMEOUT

    async def test_tabs_list(self, contexts: PageContextRegistry, transport: ExecutionTransport) -> None:
        contexts.attach("tab-1", FakeChannel(), url="https://a.test", title="A")
        result = await transport.execute_local(ExecutionRequest.create("get_tabs_list", {}))
        assert result.payload["tabs"][0]["id"] == "tab-1"
        assert result.payload["tabs"][0]["active"] is True

    async def test_switch_to_tab(self, contexts: PageContextRegistry, transport: ExecutionTransport) -> None:
        contexts.attach("tab-1", FakeChannel())
        contexts.attach("tab-2", FakeChannel())
        result = await transport.execute_local(
            ExecutionRequest.create("switch_to_tab", {"tab_id": "tab-1"})
        )
        assert result.success is True
        assert contexts.active_id == "tab-1"

    async def test_switch_to_unknown_tab(self, transport: ExecutionTransport) -> None:
        result = await transport.execute_local(
            ExecutionRequest.create("switch_to_tab", {"tab_id": "tab-9"})
        )
        assert result.error_kind is ErrorKind.TARGET_UNREACHABLE

    async def test_unknown_local_tool(self, transport: ExecutionTransport) -> None:
        result = await transport.execute_local(ExecutionRequest.create("teleport", {}))
        assert result.error_kind is ErrorKind.EXECUTION_ERROR

    async def test_assistance_callback(self, contexts: PageContextRegistry) -> None:
        seen: list[AssistanceRequest] = []
        transport = ExecutionTransport(contexts, LocalExecutor(contexts, on_assistance=seen.append))

        result = await transport.execute_local(
            ExecutionRequest.create(
                "request_human_assistance", {"type": "login", "message": "Please sign in"}, "s1"
            )
        )

        assert result.success is True
        assert result.payload["requested"] is True
        assert seen[0].kind == "login"
        assert seen[0].session_id == "s1"
        assert list(transport.local.assistance_requests) == seen

    async def test_assistance_history_bounded(self, contexts: PageContextRegistry) -> None:
        transport = ExecutionTransport(contexts, LocalExecutor(contexts, history=2))

        for i in range(5):
            await transport.execute_local(
                ExecutionRequest.create(
                    "request_human_assistance", {"type": "custom", "message": f"help {i}"}
                )
            )

        assert [r.message for r in transport.local.assistance_requests] == ["help 3", "help 4"]

    async def test_async_assistance_callback(self, contexts: PageContextRegistry) -> None:
        callback = AsyncMock()
        transport = ExecutionTransport(contexts, LocalExecutor(contexts, on_assistance=callback))
        await transport.execute_local(
            ExecutionRequest.create("request_human_assistance", {"type": "captcha", "message": "x"})
        )
        callback.assert_awaited_once()

    async def test_failing_callback_becomes_error(self, contexts: PageContextRegistry) -> None:
        callback = MagicMock(side_effect=RuntimeError("console gone"))
        transport = ExecutionTransport(contexts, LocalExecutor(contexts, on_assistance=callback))
        result = await transport.execute_local(
            ExecutionRequest.create("request_human_assistance", {"type": "custom", "message": "x"})
        )
        assert result.error_kind is ErrorKind.EXECUTION_ERROR
        assert "console gone" in (result.error or "")
