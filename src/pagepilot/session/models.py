"""Session state types.

A Session is one conversation thread. Its conversation is append-only; the
only other mutable parts are the pending approval, the state, and
bookkeeping timestamps.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pagepilot.core.llm.provider import Message, Role, ToolCallRequest


class SessionState(Enum):
    """Where the orchestrator loop is for a session."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_CALL_PENDING = "tool_call_pending"
    APPROVAL_PENDING = "approval_pending"
    DISPATCHING = "dispatching"
    FOLDING_RESULT = "folding_result"
    COMPLETED = "completed"
    FAILED = "failed"


class Decision(Enum):
    """Decision recorded on an ApprovalRequest."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EDITED = "edited"


class ApprovalAction(Enum):
    """What the human chose when resolving an approval."""

    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApprovalRequest:
    """A sensitive tool call waiting for a human decision."""

    session_id: str
    tool_call: ToolCallRequest
    arguments: dict[str, Any]  # Validated arguments of the original call
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    decision: Decision = Decision.PENDING
    edited_arguments: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=_now)
    expires_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.decision is Decision.PENDING

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _now()) >= self.expires_at

    @property
    def effective_arguments(self) -> dict[str, Any]:
        """Arguments to dispatch: the edited ones if the human edited."""
        if self.decision is Decision.EDITED and self.edited_arguments is not None:
            return self.edited_arguments
        return self.arguments

    def settle(self, decision: Decision, edited_arguments: dict[str, Any] | None = None) -> None:
        """Record the terminal decision. A request settles exactly once."""
        if not self.is_pending:
            raise RuntimeError(f"Approval {self.id} already resolved as {self.decision.value}")
        if decision is Decision.PENDING:
            raise ValueError("Cannot settle an approval as pending")
        self.decision = decision
        self.edited_arguments = edited_arguments
        self.resolved_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "tool_call": self.tool_call.to_dict(),
            "arguments": dict(self.arguments),
            "decision": self.decision.value,
            "edited_arguments": self.edited_arguments,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalRequest:
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            tool_call=ToolCallRequest.from_dict(data["tool_call"]),
            arguments=dict(data.get("arguments") or {}),
            decision=Decision(data.get("decision", "pending")),
            edited_arguments=data.get("edited_arguments"),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]) if data.get("expires_at") else None,
            resolved_at=datetime.fromisoformat(data["resolved_at"]) if data.get("resolved_at") else None,
        )


def generate_default_title() -> str:
    """Title like "Session 2026-01-17 10:30"."""
    return f"Session {datetime.now().strftime('%Y-%m-%d %H:%M')}"


@dataclass
class Session:
    """One conversation thread and its orchestration state."""

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    conversation: list[Message] = field(default_factory=list)
    pending_approval: ApprovalRequest | None = None
    state: SessionState = SessionState.IDLE
    last_activity: float = field(default_factory=time.time)
    title: str = field(default_factory=generate_default_title)
    created_at: datetime = field(default_factory=_now)
    last_error: str | None = None

    def append(self, message: Message) -> None:
        self.conversation.append(message)
        self.touch()

    def touch(self) -> None:
        self.last_activity = time.time()

    def last_assistant_index(self) -> int | None:
        for index in range(len(self.conversation) - 1, -1, -1):
            if self.conversation[index].role is Role.ASSISTANT:
                return index
        return None

    def unresolved_tool_calls(self) -> list[ToolCallRequest]:
        """Calls of the last assistant message that have no tool result yet.

        Returned in emission order. Calls of earlier assistant messages are
        never considered unresolved.
        """
        index = self.last_assistant_index()
        if index is None:
            return []
        assistant = self.conversation[index]
        if not assistant.tool_calls:
            return []
        answered = {
            m.tool_call_id
            for m in self.conversation[index + 1 :]
            if m.role is Role.TOOL and m.tool_call_id
        }
        return [call for call in assistant.tool_calls if call.id not in answered]

    def summary(self) -> dict[str, Any]:
        """Lightweight description for listings."""
        return {
            "session_id": self.session_id,
            "title": self.title,
            "state": self.state.value,
            "messages": len(self.conversation),
            "pending_approval": self.pending_approval.id if self.pending_approval else None,
            "last_activity": self.last_activity,
            "created_at": self.created_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "title": self.title,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity,
            "last_error": self.last_error,
            "pending_approval": self.pending_approval.to_dict() if self.pending_approval else None,
            "conversation": [m.to_dict() for m in self.conversation],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        pending = data.get("pending_approval")
        return cls(
            session_id=data["session_id"],
            title=data.get("title") or generate_default_title(),
            state=SessionState(data.get("state", "idle")),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _now(),
            last_activity=float(data.get("last_activity") or time.time()),
            last_error=data.get("last_error"),
            pending_approval=ApprovalRequest.from_dict(pending) if pending else None,
            conversation=[Message.from_dict(m) for m in data.get("conversation") or []],
        )


@dataclass
class TurnOutcome:
    """What a caller gets back from submitting a message or resolving an approval.

    Either ``content`` holds the final answer of the turn, or ``approval``
    holds the request the session is now blocked on.
    """

    session_id: str
    state: SessionState
    content: str | None = None
    approval: ApprovalRequest | None = None

    @property
    def needs_approval(self) -> bool:
        return self.approval is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "content": self.content,
            "approval": self.approval.to_dict() if self.approval else None,
            "needs_approval": self.needs_approval,
        }
