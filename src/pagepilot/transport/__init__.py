"""Execution transport: page contexts, wire frames and local tools."""

from pagepilot.transport.contexts import PageChannel, PageContext, PageContextRegistry
from pagepilot.transport.local import AssistanceRequest, LocalExecutor
from pagepilot.transport.messages import (
    ActivateFrame,
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
    HelloFrame,
    PingFrame,
    PongFrame,
    encode_frame,
    parse_page_frame,
)
from pagepilot.transport.transport import ExecutionTransport

__all__ = [
    "ActivateFrame",
    "AssistanceRequest",
    "ErrorKind",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionTransport",
    "HelloFrame",
    "LocalExecutor",
    "PageChannel",
    "PageContext",
    "PageContextRegistry",
    "PingFrame",
    "PongFrame",
    "encode_frame",
    "parse_page_frame",
]
