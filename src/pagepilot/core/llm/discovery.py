"""LLM model discovery based on environment variables.

Detects which LLM providers are available by checking for API keys
and picks the model a new runtime should talk to.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pagepilot.config.secrets import fetch_secret
from pagepilot.core.llm.litellm_provider import LiteLLMProvider
from pagepilot.core.llm.providers import PROVIDER_CONFIGS, ProviderConfig

if TYPE_CHECKING:
    from pagepilot.config.schema import LLMConfig


def _get_provider_api_key(config: ProviderConfig) -> str | None:
    return fetch_secret(config.env_var)


def get_available_providers() -> list[str]:
    """Return providers with API keys configured, in table order."""
    return [
        name for name, config in PROVIDER_CONFIGS.items() if _get_provider_api_key(config)
    ]


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a provider."""
    return PROVIDER_CONFIGS.get(provider)


def get_default_model(llm_config: LLMConfig | None = None) -> str | None:
    """Return the model to use.

    Selection priority:
    1. llm.model from config (or PAGEPILOT_MODEL via the loader)
    2. Default model of llm.provider, if that provider has a key
    3. Default model of the first provider with a key
    """
    if llm_config is not None:
        if llm_config.model:
            return llm_config.model
        if llm_config.provider:
            provider = get_provider_config(llm_config.provider)
            if provider is not None and _get_provider_api_key(provider):
                return provider.default_model

    available = get_available_providers()
    if not available:
        return None
    return PROVIDER_CONFIGS[available[0]].default_model


def create_provider_from_config(llm_config: LLMConfig) -> LiteLLMProvider | None:
    """Build a LiteLLMProvider for the configured or discovered model.

    Returns None when no model can be selected (no keys and no override).
    """
    model = get_default_model(llm_config)
    if model is None:
        return None

    api_key: str | None = None
    if llm_config.provider:
        provider = get_provider_config(llm_config.provider)
        if provider is not None:
            api_key = _get_provider_api_key(provider)

    return LiteLLMProvider(
        model,
        api_key=api_key,
        api_base=llm_config.api_base,
        temperature=llm_config.temperature,
    )
