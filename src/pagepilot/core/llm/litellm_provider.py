"""LiteLLM provider implementation.

Supports the OpenAI and Anthropic tool-calling models through litellm:
- OpenAI: "gpt-4o-mini", "gpt-4o"
- Anthropic: "claude-3-5-sonnet-20241022"
- Local: "ollama/llama3.1" (any model litellm maps to function calling)

See https://docs.litellm.ai/docs/completion/function_call for details.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

import litellm

from pagepilot.core.llm.provider import (
    CompletionResult,
    Message,
    Role,
    ToolCallRequest,
)
from pagepilot.core.llm.providers import get_model_config
from pagepilot.logging import get_logger

log = get_logger("llm")


def _message_to_wire(message: Message) -> dict[str, Any]:
    """Convert a Message to the OpenAI chat format litellm expects."""
    if message.role is Role.TOOL:
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.content,
        }

    wire: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.tool_calls:
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": json.dumps(call.arguments),
                },
            }
            for call in message.tool_calls
        ]
    return wire


def _parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode a function-call argument payload.

    Undecodable payloads are kept under ``_raw`` so schema validation
    reports them to the model instead of the call silently becoming ``{}``.
    """
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return {"_raw": raw}
    if not isinstance(decoded, dict):
        return {"_raw": raw}
    return decoded


def parse_tool_calls(raw_calls: Any) -> list[ToolCallRequest]:
    """Extract ToolCallRequests from a litellm response message, in order."""
    calls: list[ToolCallRequest] = []
    for raw in raw_calls or []:
        function = getattr(raw, "function", None)
        if function is None and isinstance(raw, dict):
            function = raw.get("function")
        if function is None:
            continue
        if isinstance(function, dict):
            name = function.get("name")
            arguments = function.get("arguments")
        else:
            name = getattr(function, "name", None)
            arguments = getattr(function, "arguments", None)
        if not name:
            log.warning("Dropping tool call without a function name: %r", raw)
            continue

        call_id = raw.get("id") if isinstance(raw, dict) else getattr(raw, "id", None)
        calls.append(
            ToolCallRequest(
                id=call_id or f"call_{uuid.uuid4().hex[:12]}",
                name=name,
                arguments=_parse_arguments(arguments),
            )
        )
    return calls


class LiteLLMProvider:
    """LLM provider using litellm for multi-provider support.

    Usage:
        # OpenAI
        provider = LiteLLMProvider("gpt-4o-mini")

        # Anthropic
        provider = LiteLLMProvider("claude-3-5-sonnet-20241022")

        # With custom base URL
        provider = LiteLLMProvider("gpt-4o-mini", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the provider.

        Args:
            model: Model identifier (e.g., "gpt-4o-mini")
            api_key: API key (uses env vars if not provided)
            api_base: Custom API base URL
            temperature: Sampling temperature; None = provider table default
            **kwargs: Additional litellm options
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._temperature = temperature
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _resolve_temperature(self) -> float | None:
        if self._temperature is not None:
            return self._temperature
        model_config = get_model_config(self._model)
        if model_config is not None:
            return model_config.temperature
        return None

    def _build_kwargs(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        """Build kwargs for litellm call."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [_message_to_wire(m) for m in messages],
            "max_tokens": max_tokens,
            **self._kwargs,
        }

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        temperature = self._resolve_temperature()
        if temperature is not None:
            kwargs["temperature"] = temperature

        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base

        return kwargs

    async def complete(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 4096,
    ) -> CompletionResult:
        """Generate a completion (non-streaming).

        Args:
            messages: Conversation messages
            tools: Function definitions offered to the model
            max_tokens: Maximum tokens to generate
        """
        kwargs = self._build_kwargs(messages, tools=tools, max_tokens=max_tokens)

        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0]
        content = choice.message.content or ""
        tool_calls = parse_tool_calls(getattr(choice.message, "tool_calls", None))

        usage: dict[str, int] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(
            content=content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            usage=usage,
        )


def create_provider(
    model: str = "gpt-4o-mini",
    **kwargs: Any,
) -> LiteLLMProvider:
    """Create an LLM provider with sensible defaults."""
    return LiteLLMProvider(model, **kwargs)
