"""PagePilot: approval-gated agent sessions that act on live web pages."""

__version__ = "0.1.0"

# Public API
from pagepilot.config import Config, get_config, load_config
from pagepilot.core.llm import LiteLLMProvider, LLMProvider, Message, Role, ToolCallRequest
from pagepilot.errors import (
    ApprovalExpired,
    ApprovalNotPending,
    ApprovalPending,
    ConversationCorrupted,
    ExecutionTimeout,
    ModelUnavailable,
    PagePilotError,
    SchemaError,
    SessionExists,
    SessionNotFound,
    TargetUnreachable,
    Timeout,
    ToolNotFound,
)
from pagepilot.runtime import Runtime, create_runtime
from pagepilot.session import (
    ApprovalAction,
    ApprovalRequest,
    Session,
    SessionOrchestrator,
    SessionRegistry,
    SessionState,
    TurnOutcome,
)
from pagepilot.tools import ToolDescriptor, ToolRegistry, default_registry
from pagepilot.transport import ExecutionRequest, ExecutionResult, ExecutionTransport

__all__ = [
    # Runtime
    "Runtime",
    "create_runtime",
    # Config
    "Config",
    "load_config",
    "get_config",
    # LLM
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
    "ToolCallRequest",
    # Sessions
    "ApprovalAction",
    "ApprovalRequest",
    "Session",
    "SessionOrchestrator",
    "SessionRegistry",
    "SessionState",
    "TurnOutcome",
    # Tools and transport
    "ToolDescriptor",
    "ToolRegistry",
    "default_registry",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionTransport",
    # Errors
    "PagePilotError",
    "SchemaError",
    "ToolNotFound",
    "TargetUnreachable",
    "ExecutionTimeout",
    "Timeout",
    "ModelUnavailable",
    "ApprovalExpired",
    "ApprovalPending",
    "ApprovalNotPending",
    "SessionNotFound",
    "SessionExists",
    "ConversationCorrupted",
]
