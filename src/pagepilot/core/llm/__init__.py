"""LLM provider abstraction."""

from pagepilot.core.llm.discovery import (
    create_provider_from_config,
    get_available_providers,
    get_default_model,
    get_provider_config,
)
from pagepilot.core.llm.litellm_provider import LiteLLMProvider, parse_tool_calls
from pagepilot.core.llm.provider import (
    CompletionResult,
    LLMProvider,
    Message,
    Role,
    ToolCallRequest,
)
from pagepilot.core.llm.providers import (
    PROVIDER_CONFIGS,
    ModelConfig,
    ProviderConfig,
    get_model_config,
)

__all__ = [
    # Provider protocol and implementations
    "LLMProvider",
    "LiteLLMProvider",
    "CompletionResult",
    "Message",
    "Role",
    "ToolCallRequest",
    "parse_tool_calls",
    # Discovery
    "create_provider_from_config",
    "get_available_providers",
    "get_default_model",
    "get_provider_config",
    # Provider table
    "PROVIDER_CONFIGS",
    "ModelConfig",
    "ProviderConfig",
    "get_model_config",
]
