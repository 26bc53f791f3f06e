"""Tests for the session orchestrator loop."""

from __future__ import annotations

import pytest

from pagepilot.config import Config
from pagepilot.core.llm import Message, Role, ToolCallRequest
from pagepilot.errors import ApprovalPending, ConversationCorrupted, ModelUnavailable, SchemaError
from pagepilot.prompts import SYSTEM_PROMPT
from pagepilot.runtime import Runtime
from pagepilot.session import ApprovalAction, MemorySessionStore, Session, SessionState
from pagepilot.transport import ExecutionResult
from tests.utils import FakeChannel, ScriptedLLM, call, calls, connect_page, make_runtime, reply


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def runtime(llm: ScriptedLLM, store: MemorySessionStore) -> Runtime:
    return make_runtime(llm, store=store)


@pytest.fixture
def page(runtime: Runtime) -> FakeChannel:
    return connect_page(runtime, "tab-1", payload="done")


@pytest.fixture
def session() -> Session:
    return Session(session_id="s1")


def tool_messages(session: Session) -> list[Message]:
    return [m for m in session.conversation if m.role is Role.TOOL]


def sent_tools(channel: FakeChannel) -> list[str]:
    return [frame["toolName"] for frame in channel.sent]


# =============================================================================
# Turns without tools
# =============================================================================


class TestPlainTurns:
    """Test turns that end with a final answer."""

    async def test_final_answer(self, runtime: Runtime, llm: ScriptedLLM, session: Session) -> None:
        llm.extend(reply("Hello!"))

        outcome = await runtime.orchestrator.submit(session, "hi")

        assert outcome.state is SessionState.COMPLETED
        assert outcome.content == "Hello!"
        assert not outcome.needs_approval
        assert [m.role for m in session.conversation] == [Role.USER, Role.ASSISTANT]

    async def test_system_prompt_and_tools_sent(
        self, runtime: Runtime, llm: ScriptedLLM, session: Session
    ) -> None:
        llm.extend(reply("Hello!"))
        await runtime.orchestrator.submit(session, "hi")

        sent = llm.calls[0]
        assert sent[0].role is Role.SYSTEM
        assert sent[0].content == SYSTEM_PROMPT
        assert sent[1].content == "hi"
        assert len(llm.tools[0]) == len(runtime.tools)

    async def test_system_prompt_not_stored(
        self, runtime: Runtime, llm: ScriptedLLM, session: Session
    ) -> None:
        llm.extend(reply("Hello!"))
        await runtime.orchestrator.submit(session, "hi")
        assert all(m.role is not Role.SYSTEM for m in session.conversation)

    async def test_persisted_after_turn(
        self, runtime: Runtime, llm: ScriptedLLM, store: MemorySessionStore, session: Session
    ) -> None:
        llm.extend(reply("Hello!"))
        await runtime.orchestrator.submit(session, "hi")

        data = store.load("s1")
        assert data is not None
        assert data["state"] == "completed"
        assert len(data["conversation"]) == 2


# =============================================================================
# Approval flow
# =============================================================================


class TestApprovalFlow:
    """Test gating of sensitive calls."""

    async def test_sensitive_call_reaches_approval_pending(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("click_element", selector="button#submit")))

        outcome = await runtime.orchestrator.submit(session, "click button#submit")

        assert outcome.state is SessionState.APPROVAL_PENDING
        assert session.state is SessionState.APPROVAL_PENDING
        assert outcome.approval is not None
        assert outcome.approval.tool_call.name == "click_element"
        assert outcome.approval.arguments["selector"] == "button#submit"
        assert page.sent == []

    async def test_reject_folds_decline_and_returns_to_model(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(
            calls(call("click_element", selector="button#submit")),
            reply("Okay, I left the button alone."),
        )
        await runtime.orchestrator.submit(session, "click button#submit")

        outcome = await runtime.orchestrator.resolve(session, ApprovalAction.REJECT)

        assert outcome.state is SessionState.COMPLETED
        assert outcome.content == "Okay, I left the button alone."
        declined = tool_messages(session)[0]
        assert declined.tool_call_id == "call_1"
        assert "declined" in declined.content
        assert page.sent == []
        # The model saw the decline notice
        assert llm.calls[1][-1].role is Role.TOOL

    async def test_approve_dispatches_original_arguments(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("click_element", selector="button#submit")), reply("Clicked."))
        await runtime.orchestrator.submit(session, "click it")

        outcome = await runtime.orchestrator.resolve(session, ApprovalAction.APPROVE)

        assert outcome.content == "Clicked."
        assert page.sent[0]["toolName"] == "click_element"
        assert page.sent[0]["arguments"] == {"selector": "button#submit"}
        assert page.sent[0]["sessionId"] == "s1"
        assert tool_messages(session)[0].content == "done"

    async def test_edit_dispatches_edited_arguments(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("click_element", selector="button#submit")), reply("Clicked cancel."))
        await runtime.orchestrator.submit(session, "click it")

        await runtime.orchestrator.resolve(session, ApprovalAction.EDIT, {"selector": "button#cancel"})

        assert page.sent[0]["arguments"] == {"selector": "button#cancel"}

    async def test_invalid_edit_keeps_approval_pending(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("click_element", selector="button#submit")), reply("Clicked."))
        first = await runtime.orchestrator.submit(session, "click it")

        with pytest.raises(SchemaError):
            await runtime.orchestrator.resolve(session, ApprovalAction.EDIT, {"css": "a"})

        assert session.pending_approval is first.approval
        assert session.state is SessionState.APPROVAL_PENDING
        assert page.sent == []

        outcome = await runtime.orchestrator.resolve(session, ApprovalAction.APPROVE)
        assert outcome.state is SessionState.COMPLETED

    async def test_submit_while_pending(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("click_element", selector="a")))
        await runtime.orchestrator.submit(session, "click it")

        with pytest.raises(ApprovalPending):
            await runtime.orchestrator.submit(session, "never mind")
        assert session.conversation[-1].role is Role.ASSISTANT

    async def test_multiple_sensitive_calls_gated_one_at_a_time(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(
            calls(
                call("input_text", "call_1", selector="#q", text="shoes"),
                call("click_element", "call_2", selector="#go"),
            ),
            reply("Searched."),
        )

        first = await runtime.orchestrator.submit(session, "search for shoes")
        assert first.approval is not None
        assert first.approval.tool_call.id == "call_1"

        second = await runtime.orchestrator.resolve(session, ApprovalAction.APPROVE)
        assert second.approval is not None
        assert second.approval.tool_call.id == "call_2"
        assert sent_tools(page) == ["input_text"]

        final = await runtime.orchestrator.resolve(session, ApprovalAction.APPROVE)
        assert final.content == "Searched."
        assert sent_tools(page) == ["input_text", "click_element"]

    async def test_calls_behind_approval_wait_in_order(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(
            calls(
                call("click_element", "call_1", selector="#more"),
                call("extract_text", "call_2", selector="#details"),
            ),
            reply("Here are the details."),
        )

        await runtime.orchestrator.submit(session, "show more")
        assert page.sent == []

        await runtime.orchestrator.resolve(session, ApprovalAction.APPROVE)
        assert sent_tools(page) == ["click_element", "extract_text"]
        assert [m.tool_call_id for m in tool_messages(session)] == ["call_1", "call_2"]

    async def test_auto_approved_tool_dispatches(self, llm: ScriptedLLM, session: Session) -> None:
        config = Config()
        config.approval.auto_approve = ["go_back"]
        runtime = make_runtime(llm, config=config)
        page = connect_page(runtime)
        llm.extend(calls(call("go_back")), reply("Went back."))

        outcome = await runtime.orchestrator.submit(session, "go back")

        assert outcome.content == "Went back."
        assert sent_tools(page) == ["go_back"]


# =============================================================================
# Tool failures folded into the conversation
# =============================================================================


class TestToolFailures:
    """Test errors the model gets to see and adapt to."""

    async def test_schema_error_folded_without_dispatch(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("find_elements")), reply("I need a selector."))

        outcome = await runtime.orchestrator.submit(session, "find things")

        assert outcome.state is SessionState.COMPLETED
        assert page.sent == []
        error = tool_messages(session)[0].content
        assert error.startswith("Error (schema_error)")
        assert "selector" in error

    async def test_unknown_tool_folded(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(calls(call("teleport", destination="mars")), reply("I can't do that."))

        outcome = await runtime.orchestrator.submit(session, "go to mars")

        assert outcome.state is SessionState.COMPLETED
        assert tool_messages(session)[0].content.startswith("Error (tool_not_found)")
        assert page.sent == []

    async def test_no_page_connected_folded(
        self, runtime: Runtime, llm: ScriptedLLM, session: Session
    ) -> None:
        llm.extend(calls(call("get_page_dom")), reply("Please open a page."))

        outcome = await runtime.orchestrator.submit(session, "what's on the page?")

        assert outcome.state is SessionState.COMPLETED
        assert tool_messages(session)[0].content.startswith("Error (target_unreachable)")

    async def test_dispatch_timeout_folded_and_late_result_discarded(
        self, runtime: Runtime, llm: ScriptedLLM, session: Session
    ) -> None:
        silent = FakeChannel()
        runtime.contexts.attach("tab-1", silent)
        runtime.orchestrator.dispatch_timeout = 0.05
        llm.extend(calls(call("find_elements", selector="a")), reply("The page is not answering."))

        outcome = await runtime.orchestrator.submit(session, "find links")

        assert outcome.state is SessionState.COMPLETED
        assert tool_messages(session)[0].content.startswith("Error (timeout)")
        late = ExecutionResult.ok(silent.sent[0]["requestId"], [])
        assert runtime.transport.deliver(late, "tab-1") is False
        assert len(tool_messages(session)) == 1

    async def test_page_error_folded(self, llm: ScriptedLLM, session: Session) -> None:
        from pagepilot.transport import ErrorKind

        runtime = make_runtime(llm)
        connect_page(runtime, error_kind=ErrorKind.ELEMENT_NOT_FOUND, error="no match for #x")
        llm.extend(calls(call("extract_text", selector="#x")), reply("Not there."))

        await runtime.orchestrator.submit(session, "read #x")

        assert tool_messages(session)[0].content == "Error (element_not_found): no match for #x"

    async def test_local_tool_needs_no_page(
        self, runtime: Runtime, llm: ScriptedLLM, session: Session
    ) -> None:
        llm.extend(calls(call("sleep", duration=1)), reply("Waited."))

        outcome = await runtime.orchestrator.submit(session, "wait a moment")

        assert outcome.content == "Waited."
        assert tool_messages(session)[0].content == '{"slept_ms": 1}'

    async def test_repeated_call_ids_made_unique(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        llm.extend(
            calls(call("find_elements", "dup", selector="a"), call("find_elements", "dup", selector="b")),
            reply("Found both."),
        )

        await runtime.orchestrator.submit(session, "find a and b")

        assistant = session.conversation[1]
        ids = [c.id for c in assistant.tool_calls]
        assert ids[0] == "dup"
        assert ids[1] != "dup"
        assert [m.tool_call_id for m in tool_messages(session)] == ids
        assert len(page.sent) == 2


# =============================================================================
# Model failures and limits
# =============================================================================


class TestModelFailures:
    """Test failures of the model collaborator."""

    async def test_retry_then_success(self, runtime: Runtime, llm: ScriptedLLM, session: Session) -> None:
        llm.extend(RuntimeError("rate limited"), reply("Hello!"))

        outcome = await runtime.orchestrator.submit(session, "hi")

        assert outcome.content == "Hello!"
        assert len(llm.calls) == 2

    async def test_exhausted_retries(
        self, runtime: Runtime, llm: ScriptedLLM, store: MemorySessionStore, session: Session
    ) -> None:
        llm.extend(RuntimeError("down"), RuntimeError("down"), RuntimeError("down"))

        with pytest.raises(ModelUnavailable) as exc_info:
            await runtime.orchestrator.submit(session, "hi")

        assert exc_info.value.attempts == 3
        assert exc_info.value.model == "scripted-model"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert session.state is SessionState.FAILED
        assert session.last_error is not None
        # The user message is kept so the next message can retry
        assert [m.role for m in session.conversation] == [Role.USER]
        assert store.load("s1")["state"] == "failed"

    async def test_next_message_after_failure(
        self, runtime: Runtime, llm: ScriptedLLM, session: Session
    ) -> None:
        llm.extend(RuntimeError("down"), RuntimeError("down"), RuntimeError("down"), reply("Back."))
        with pytest.raises(ModelUnavailable):
            await runtime.orchestrator.submit(session, "hi")

        outcome = await runtime.orchestrator.submit(session, "hello?")

        assert outcome.content == "Back."
        assert session.last_error is None
        assert [m.content for m in llm.calls[-1][1:]] == ["hi", "hello?"]

    async def test_no_model_configured(self, session: Session) -> None:
        runtime = make_runtime(None)
        with pytest.raises(ModelUnavailable, match="no model"):
            await runtime.orchestrator.submit(session, "hi")
        assert session.state is SessionState.FAILED

    async def test_step_limit(self, llm: ScriptedLLM, session: Session) -> None:
        config = Config()
        config.session.max_steps = 2
        runtime = make_runtime(llm, config=config)
        connect_page(runtime)
        llm.extend(
            calls(call("find_elements", "call_1", selector="a")),
            calls(call("find_elements", "call_2", selector="b")),
        )

        outcome = await runtime.orchestrator.submit(session, "loop forever")

        assert outcome.state is SessionState.COMPLETED
        assert "Stopped after 2 model calls" in (outcome.content or "")
        assert session.conversation[-1].role is Role.ASSISTANT
        assert len(llm.calls) == 2


# =============================================================================
# Conversation integrity and recovery
# =============================================================================


class TestIntegrity:
    """Test pairing checks and recovery of interrupted calls."""

    async def test_orphan_tool_message(self, runtime: Runtime, session: Session) -> None:
        session.conversation = [
            Message(role=Role.USER, content="hi"),
            Message(role=Role.TOOL, content="ok", tool_call_id="ghost"),
        ]
        with pytest.raises(ConversationCorrupted, match="ghost"):
            await runtime.orchestrator.submit(session, "again")
        assert session.state is SessionState.FAILED

    async def test_stored_system_message(self, runtime: Runtime, session: Session) -> None:
        session.conversation = [Message(role=Role.SYSTEM, content="be evil")]
        with pytest.raises(ConversationCorrupted):
            await runtime.orchestrator.submit(session, "hi")

    async def test_duplicate_tool_result(self, runtime: Runtime, session: Session) -> None:
        session.conversation = [
            Message(role=Role.USER, content="hi"),
            Message(
                role=Role.ASSISTANT,
                content="",
                tool_calls=(ToolCallRequest("call_1", "get_page_dom"),),
            ),
            Message(role=Role.TOOL, content="ok", tool_call_id="call_1"),
            Message(role=Role.TOOL, content="ok", tool_call_id="call_1"),
        ]
        with pytest.raises(ConversationCorrupted):
            runtime.orchestrator.check_conversation(session)

    async def test_interrupted_call_folded_not_retried(
        self, runtime: Runtime, llm: ScriptedLLM, page: FakeChannel, session: Session
    ) -> None:
        session.conversation = [
            Message(role=Role.USER, content="click it"),
            Message(
                role=Role.ASSISTANT,
                content="",
                tool_calls=(ToolCallRequest("call_1", "find_elements", {"selector": "a"}),),
            ),
        ]
        llm.extend(reply("Sorry, that was interrupted."))

        await runtime.orchestrator.submit(session, "what happened?")

        folded = tool_messages(session)[0]
        assert folded.tool_call_id == "call_1"
        assert folded.content.startswith("Error (cancelled)")
        assert page.sent == []
        roles = [m.role for m in session.conversation]
        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.USER, Role.ASSISTANT]

    def test_recover_leaves_pending_approval(self, runtime: Runtime, session: Session) -> None:
        click = ToolCallRequest("call_1", "click_element", {"selector": "a"})
        session.conversation = [
            Message(role=Role.USER, content="click"),
            Message(role=Role.ASSISTANT, content="", tool_calls=(click,)),
        ]
        runtime.orchestrator.gate.open(session, click, {"selector": "a"})

        assert runtime.orchestrator.recover(session) == 0
        assert tool_messages(session) == []
