"""Error taxonomy for PagePilot.

Errors raised by tool validation and dispatch are recovered by the session
orchestrator and folded into the conversation as tool results. Errors from
the model collaborator and from caller misuse (unknown session, no pending
approval) propagate to the caller.

Every error carries a ``kind`` string matching the wire-level ``ErrorKind``
values so a folded tool result and a raised error describe the same failure
the same way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar


class PagePilotError(Exception):
    """Base class for all PagePilot errors."""

    kind: ClassVar[str] = "error"


@dataclass
class SchemaError(PagePilotError):
    """Tool arguments do not satisfy the tool's argument schema."""

    kind: ClassVar[str] = "schema_error"

    tool_name: str
    problems: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        detail = "; ".join(self.problems) if self.problems else "invalid arguments"
        return f"Invalid arguments for '{self.tool_name}': {detail}"


@dataclass
class ToolNotFound(PagePilotError):
    """The model asked for a tool that is not registered."""

    kind: ClassVar[str] = "tool_not_found"

    tool_name: str

    def __str__(self) -> str:
        return f"Tool '{self.tool_name}' not found"


@dataclass
class TargetUnreachable(PagePilotError):
    """No reachable page context exists for a dispatch."""

    kind: ClassVar[str] = "target_unreachable"

    target: str | None
    reason: str = "no page context is connected"

    def __str__(self) -> str:
        if self.target:
            return f"Page context '{self.target}' is unreachable: {self.reason}"
        return f"No reachable page context: {self.reason}"


@dataclass
class ExecutionTimeout(PagePilotError):
    """No execution result arrived before the deadline."""

    kind: ClassVar[str] = "timeout"

    tool_name: str
    timeout: float

    def __str__(self) -> str:
        return f"'{self.tool_name}' did not complete within {self.timeout * 1000:.0f} ms"


Timeout = ExecutionTimeout


@dataclass
class ModelUnavailable(PagePilotError):
    """The model collaborator could not produce a response."""

    kind: ClassVar[str] = "model_unavailable"

    model: str | None
    reason: str
    attempts: int = 1

    def __str__(self) -> str:
        model = self.model or "no model configured"
        return f"Model unavailable ({model}) after {self.attempts} attempt(s): {self.reason}"


@dataclass
class ApprovalExpired(PagePilotError):
    """An approval was resolved after the caller-imposed deadline."""

    kind: ClassVar[str] = "approval_expired"

    approval_id: str
    expired_at: datetime

    def __str__(self) -> str:
        return f"Approval {self.approval_id} expired at {self.expired_at.isoformat()}"


@dataclass
class ApprovalPending(PagePilotError):
    """The session is waiting on a human decision and cannot advance."""

    kind: ClassVar[str] = "approval_pending"

    session_id: str
    approval_id: str

    def __str__(self) -> str:
        return f"Session {self.session_id} is waiting on approval {self.approval_id}"


@dataclass
class ApprovalNotPending(PagePilotError):
    """resolve_approval was called with nothing to resolve."""

    kind: ClassVar[str] = "approval_not_pending"

    session_id: str

    def __str__(self) -> str:
        return f"Session {self.session_id} has no pending approval"


@dataclass
class SessionNotFound(PagePilotError):
    """No live or persisted session with the given id."""

    kind: ClassVar[str] = "session_not_found"

    session_id: str

    def __str__(self) -> str:
        return f"Session {self.session_id} not found"


@dataclass
class SessionExists(PagePilotError):
    """A session with the given id is already registered."""

    kind: ClassVar[str] = "session_exists"

    session_id: str

    def __str__(self) -> str:
        return f"Session {self.session_id} already exists"


@dataclass
class ConversationCorrupted(PagePilotError):
    """The stored conversation violates tool-call/tool-result pairing."""

    kind: ClassVar[str] = "conversation_corrupted"

    session_id: str
    reason: str

    def __str__(self) -> str:
        return f"Conversation for session {self.session_id} is corrupted: {self.reason}"
