"""Wire frames exchanged with page contexts.

Frames are JSON objects tagged by ``type``. Field names are camelCase on the
wire and snake_case in Python.

Server -> page:  execute, pong
Page -> server:  result, hello, activate, ping
"""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ErrorKind(str, Enum):
    """Typed failure reasons carried by an ExecutionResult."""

    SCHEMA_ERROR = "schema_error"
    TOOL_NOT_FOUND = "tool_not_found"
    TARGET_UNREACHABLE = "target_unreachable"
    TIMEOUT = "timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    EXECUTION_ERROR = "execution_error"
    CANCELLED = "cancelled"


class WireModel(BaseModel):
    """Base model for wire frames with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True)


class ExecutionRequest(WireModel):
    """Ask a page context to run one tool."""

    type: Literal["execute"] = "execute"
    request_id: str = Field(alias="requestId")
    tool_name: str = Field(alias="toolName")
    arguments: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = Field(default=None, alias="sessionId")

    @classmethod
    def create(
        cls,
        tool_name: str,
        arguments: dict[str, Any],
        session_id: str | None = None,
    ) -> ExecutionRequest:
        """Build a request with a fresh correlation id."""
        return cls(
            request_id=uuid.uuid4().hex,
            tool_name=tool_name,
            arguments=dict(arguments),
            session_id=session_id,
        )


class ExecutionResult(WireModel):
    """Outcome of one ExecutionRequest.

    Exactly one of ``payload`` (success) or ``error_kind`` + ``error``
    (failure) is meaningful.
    """

    type: Literal["result"] = "result"
    request_id: str = Field(alias="requestId")
    success: bool
    payload: Any = None
    error_kind: ErrorKind | None = Field(default=None, alias="errorKind")
    error: str | None = None

    @classmethod
    def ok(cls, request_id: str, payload: Any = None) -> ExecutionResult:
        return cls(request_id=request_id, success=True, payload=payload)

    @classmethod
    def failure(cls, request_id: str, kind: ErrorKind, error: str) -> ExecutionResult:
        return cls(request_id=request_id, success=False, error_kind=kind, error=error)

    def to_text(self) -> str:
        """Render the result as tool-message content for the model."""
        if self.success:
            if self.payload is None:
                return "ok"
            if isinstance(self.payload, str):
                return self.payload
            return json.dumps(self.payload, ensure_ascii=False, default=str)
        kind = self.error_kind.value if self.error_kind else ErrorKind.EXECUTION_ERROR.value
        return f"Error ({kind}): {self.error or 'tool failed'}"


class HelloFrame(WireModel):
    """First frame a page context sends: what it is showing."""

    type: Literal["hello"] = "hello"
    url: str | None = None
    title: str | None = None
    activate: bool = True


class ActivateFrame(WireModel):
    """The page gained focus; make it the active context."""

    type: Literal["activate"] = "activate"
    url: str | None = None
    title: str | None = None


class PingFrame(WireModel):
    type: Literal["ping"] = "ping"


class PongFrame(WireModel):
    type: Literal["pong"] = "pong"


PageFrame = Annotated[
    ExecutionResult | HelloFrame | ActivateFrame | PingFrame,
    Field(discriminator="type"),
]

_page_frame_adapter: TypeAdapter[Any] = TypeAdapter(PageFrame)


def parse_page_frame(data: str | bytes | dict[str, Any]) -> ExecutionResult | HelloFrame | ActivateFrame | PingFrame:
    """Validate a frame received from a page context.

    Raises:
        pydantic.ValidationError: Malformed JSON, unknown type or bad fields.
    """
    if isinstance(data, (str, bytes)):
        return _page_frame_adapter.validate_json(data)
    return _page_frame_adapter.validate_python(data)


def encode_frame(frame: WireModel) -> dict[str, Any]:
    """Serialize a frame to its JSON-ready wire shape."""
    return frame.model_dump(by_alias=True, mode="json", exclude_none=True)
