"""Session orchestrator: the model -> approval -> dispatch -> fold loop.

One turn of a session runs strictly sequentially:

    user message
      -> model call (full conversation + system prompt)
      -> for each tool call, in emission order:
           unknown tool      -> fold tool_not_found
           invalid arguments -> fold schema_error, nothing dispatched
           sensitive         -> open the approval gate and stop the turn
           otherwise         -> dispatch, fold the result
      -> back to the model until it answers without tool calls

Tool and schema failures become tool messages so the model can adapt. Model
failures surface to the caller as ModelUnavailable and leave the session
FAILED; the triggering user message stays in the conversation so the next
message can retry.

Which calls are still unresolved is derived from the conversation (calls on
the last assistant message without a matching tool message), so a restored
session resumes exactly where it stopped.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Any, NoReturn

from pagepilot.core.llm.provider import CompletionResult, Message, Role, ToolCallRequest
from pagepilot.errors import (
    ApprovalPending,
    ConversationCorrupted,
    ModelUnavailable,
    SchemaError,
    ToolNotFound,
)
from pagepilot.logging import get_logger, log_scope
from pagepilot.prompts import SYSTEM_PROMPT
from pagepilot.session.models import (
    ApprovalAction,
    Decision,
    Session,
    SessionState,
    TurnOutcome,
)
from pagepilot.tools.schema import ToolTarget
from pagepilot.transport.messages import ErrorKind, ExecutionRequest, ExecutionResult

if TYPE_CHECKING:
    from pagepilot.core.llm.provider import LLMProvider
    from pagepilot.session.approval import ApprovalGate
    from pagepilot.session.storage import SessionStore
    from pagepilot.tools.registry import ToolRegistry
    from pagepilot.tools.schema import ToolDescriptor
    from pagepilot.transport.transport import ExecutionTransport

log = get_logger("session")


def _failure_text(call: ToolCallRequest, kind: ErrorKind, message: str) -> str:
    return ExecutionResult.failure(call.id, kind, message).to_text()


def decline_notice(call: ToolCallRequest) -> str:
    """Tool-message content for a call the human rejected."""
    return (
        f"Error (declined): the user declined '{call.name}'. "
        "The action was not performed."
    )


def interrupted_notice(call: ToolCallRequest) -> str:
    """Tool-message content for a call cut off before it produced a result."""
    return _failure_text(
        call,
        ErrorKind.CANCELLED,
        f"'{call.name}' was interrupted before a result arrived and was not retried",
    )


class SessionOrchestrator:
    """Drives sessions through the conversation loop.

    The orchestrator holds no per-session state; everything lives on the
    Session. Callers must serialise calls per session (the SessionRegistry
    does this with a per-session lock).
    """

    def __init__(
        self,
        llm: LLMProvider | None,
        registry: ToolRegistry,
        gate: ApprovalGate,
        transport: ExecutionTransport,
        *,
        store: SessionStore | None = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_steps: int = 25,
        max_tokens: int = 4000,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        dispatch_timeout: float | None = None,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.gate = gate
        self.transport = transport
        self.store = store
        self.system_prompt = system_prompt
        self.max_steps = max_steps
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.dispatch_timeout = dispatch_timeout

    # ------------------------------------------------------------------
    # Caller entry points
    # ------------------------------------------------------------------

    async def submit(self, session: Session, text: str) -> TurnOutcome:
        """Append a user message and run the turn.

        Raises:
            ApprovalPending: The session is blocked on a human decision.
            ModelUnavailable: The model failed after all retries.
            ConversationCorrupted: The stored conversation is inconsistent.
        """
        with log_scope(session=session.session_id):
            return await self._submit(session, text)

    async def _submit(self, session: Session, text: str) -> TurnOutcome:
        pending = session.pending_approval
        if pending is not None and pending.is_pending:
            raise ApprovalPending(session.session_id, pending.id)

        self.check_conversation(session)
        self.recover(session)

        session.last_error = None
        session.append(Message(role=Role.USER, content=text))
        session.state = SessionState.AWAITING_MODEL
        self._flush(session)
        return await self._run(session)

    async def resolve(
        self,
        session: Session,
        action: ApprovalAction,
        edited_arguments: dict[str, Any] | None = None,
    ) -> TurnOutcome:
        """Resolve the pending approval and continue the turn.

        Raises:
            ApprovalNotPending, ApprovalExpired, SchemaError: from the gate;
                the session is unchanged.
            ModelUnavailable, ConversationCorrupted: as for submit().
        """
        with log_scope(session=session.session_id):
            return await self._resolve(session, action, edited_arguments)

    async def _resolve(
        self,
        session: Session,
        action: ApprovalAction,
        edited_arguments: dict[str, Any] | None,
    ) -> TurnOutcome:
        request = self.gate.resolve(session, action, edited_arguments)
        call = request.tool_call
        # The decision must be stored before the call can reach the page.
        # A restart mid-dispatch then sees an ungated unresolved call and
        # folds it as cancelled instead of asking for approval again.
        session.state = SessionState.TOOL_CALL_PENDING
        self._flush(session)

        if request.decision is Decision.REJECTED:
            session.state = SessionState.FOLDING_RESULT
            self._fold(session, call, decline_notice(call))
        else:
            descriptor = self.registry.lookup(call.name)
            await self._dispatch_and_fold(session, call, descriptor, request.effective_arguments)

        return await self._run(session)

    def recover(self, session: Session) -> int:
        """Fold interrupted results for unresolved, ungated calls.

        Calls left unresolved by a crash or cancellation are never retried:
        they may already have taken effect on the page. A pending approval
        (and the calls queued behind it) is left alone.

        Returns:
            Number of calls folded.
        """
        pending = session.pending_approval
        if pending is not None and pending.is_pending:
            return 0
        folded = 0
        for call in session.unresolved_tool_calls():
            self._fold(session, call, interrupted_notice(call))
            folded += 1
        if folded:
            log.warning(
                "Session %s: folded %d interrupted tool call(s)", session.session_id, folded
            )
        return folded

    def check_conversation(self, session: Session) -> None:
        """Verify tool-call/tool-result pairing.

        Every tool message must answer a call of the nearest preceding
        assistant message, at most once.

        Raises:
            ConversationCorrupted: The pairing is broken; the session is
                marked FAILED.
        """
        open_calls: set[str] = set()
        for index, message in enumerate(session.conversation):
            if message.role is Role.ASSISTANT:
                open_calls = {call.id for call in message.tool_calls}
            elif message.role is Role.TOOL:
                if message.tool_call_id not in open_calls:
                    self._corrupted(
                        session,
                        f"tool message at index {index} answers unknown call "
                        f"{message.tool_call_id!r}",
                    )
                open_calls.discard(message.tool_call_id)
            elif message.role is Role.SYSTEM:
                self._corrupted(session, f"system message stored at index {index}")

    def _corrupted(self, session: Session, reason: str) -> NoReturn:
        session.state = SessionState.FAILED
        error = ConversationCorrupted(session.session_id, reason)
        session.last_error = str(error)
        self._flush(session)
        log.error("%s", error)
        raise error

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, session: Session) -> TurnOutcome:
        steps = 0
        while True:
            pending = session.pending_approval
            if pending is not None and pending.is_pending:
                session.state = SessionState.APPROVAL_PENDING
                return TurnOutcome(session.session_id, session.state, approval=pending)

            unresolved = session.unresolved_tool_calls()
            if unresolved:
                outcome = await self._process_call(session, unresolved[0])
                if outcome is not None:
                    return outcome
                continue

            if steps >= self.max_steps:
                return self._finish_step_limit(session)
            steps += 1

            result = await self._call_model(session)
            calls = self._normalise_calls(result.tool_calls)
            session.append(Message(role=Role.ASSISTANT, content=result.content, tool_calls=calls))

            if not calls:
                session.state = SessionState.COMPLETED
                self._flush(session)
                log.info("turn completed after %d model call(s)", steps)
                return TurnOutcome(session.session_id, session.state, content=result.content)

            session.state = SessionState.TOOL_CALL_PENDING
            self._flush(session)
            log.debug(
                "model requested %s",
                ", ".join(call.name for call in calls),
            )

    def _finish_step_limit(self, session: Session) -> TurnOutcome:
        notice = (
            f"Stopped after {self.max_steps} model calls without finishing the task. "
            "Send another message to continue."
        )
        log.warning("step limit of %d reached", self.max_steps)
        session.append(Message(role=Role.ASSISTANT, content=notice))
        session.state = SessionState.COMPLETED
        self._flush(session)
        return TurnOutcome(session.session_id, session.state, content=notice)

    async def _process_call(self, session: Session, call: ToolCallRequest) -> TurnOutcome | None:
        """Handle one unresolved call. Returns an outcome only when gated."""
        session.state = SessionState.TOOL_CALL_PENDING

        try:
            descriptor = self.registry.lookup(call.name)
            arguments = self.registry.validate(call.name, call.arguments)
        except ToolNotFound as e:
            log.info("%s", e)
            self._fold(session, call, _failure_text(call, ErrorKind.TOOL_NOT_FOUND, str(e)))
            return None
        except SchemaError as e:
            log.info("%s", e)
            self._fold(session, call, _failure_text(call, ErrorKind.SCHEMA_ERROR, str(e)))
            return None

        if self.gate.requires_approval(call.name):
            request = self.gate.open(session, call, arguments)
            session.state = SessionState.APPROVAL_PENDING
            self._flush(session)
            return TurnOutcome(session.session_id, session.state, approval=request)

        await self._dispatch_and_fold(session, call, descriptor, arguments)
        return None

    async def _dispatch_and_fold(
        self,
        session: Session,
        call: ToolCallRequest,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
    ) -> ExecutionResult:
        session.state = SessionState.DISPATCHING
        request = ExecutionRequest.create(call.name, arguments, session.session_id)

        if descriptor.target is ToolTarget.LOCAL:
            result = await self.transport.execute_local(request)
        else:
            result = await self.transport.dispatch(request, timeout=self.dispatch_timeout)

        if result.success:
            log.debug("%s succeeded", call.name)
        else:
            log.info(
                "%s failed (%s): %s",
                call.name,
                result.error_kind.value if result.error_kind else "error",
                result.error,
            )

        session.state = SessionState.FOLDING_RESULT
        self._fold(session, call, result.to_text())
        return result

    def _fold(self, session: Session, call: ToolCallRequest, content: str) -> None:
        session.append(Message(role=Role.TOOL, content=content, tool_call_id=call.id))
        self._flush(session)

    @staticmethod
    def _normalise_calls(calls: list[ToolCallRequest]) -> tuple[ToolCallRequest, ...]:
        """Give repeated call ids a fresh id so each call gets its own result."""
        seen: set[str] = set()
        normalised = []
        for call in calls:
            if call.id in seen:
                call = ToolCallRequest(
                    id=f"call_{uuid.uuid4().hex[:12]}", name=call.name, arguments=call.arguments
                )
            seen.add(call.id)
            normalised.append(call)
        return tuple(normalised)

    # ------------------------------------------------------------------
    # Model collaborator
    # ------------------------------------------------------------------

    async def _call_model(self, session: Session) -> CompletionResult:
        session.state = SessionState.AWAITING_MODEL

        if self.llm is None:
            self._model_failed(session, ModelUnavailable(None, "no model is configured"))

        messages = [Message(role=Role.SYSTEM, content=self.system_prompt), *session.conversation]
        tools = self.registry.llm_tools()
        attempts = self.max_retries + 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.llm.complete(messages, tools=tools, max_tokens=self.max_tokens)
            except Exception as e:
                last_error = e
                log.warning(
                    "model call %d/%d failed: %s",
                    attempt,
                    attempts,
                    e,
                )
                if attempt < attempts:
                    await asyncio.sleep(self.retry_backoff * (2 ** (attempt - 1)))

        error = ModelUnavailable(self.llm.model, str(last_error), attempts)
        self._model_failed(session, error, cause=last_error)

    def _model_failed(
        self,
        session: Session,
        error: ModelUnavailable,
        cause: Exception | None = None,
    ) -> NoReturn:
        session.state = SessionState.FAILED
        session.last_error = str(error)
        self._flush(session)
        log.error("%s", error)
        raise error from cause

    def _flush(self, session: Session) -> None:
        if self.store is not None:
            self.store.save(session.session_id, session.to_dict())
