"""LLM provider configurations.

Loads provider definitions from providers.yaml.
"""

from __future__ import annotations

import importlib.resources
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import yaml


@dataclass
class ModelConfig:
    """Configuration for a single model."""

    id: str
    name: str
    description: str
    context_length: int
    temperature: float | None = None


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    name: str
    env_var: str
    default_model: str
    models: list[ModelConfig] = field(default_factory=list)


@lru_cache(maxsize=1)
def _load_providers_yaml() -> dict[str, Any]:
    """Load providers.yaml from package resources."""
    resource = importlib.resources.files("pagepilot.core.llm").joinpath("providers.yaml")
    return yaml.safe_load(resource.read_text(encoding="utf-8")) or {}


def _build_provider_configs() -> dict[str, ProviderConfig]:
    data = _load_providers_yaml()
    configs: dict[str, ProviderConfig] = {}

    for provider_name, provider_data in data.get("providers", {}).items():
        models = [
            ModelConfig(
                id=m["id"],
                name=m["name"],
                description=m.get("description", ""),
                context_length=m["context_length"],
                temperature=m.get("temperature"),
            )
            for m in provider_data.get("models", [])
        ]
        configs[provider_name] = ProviderConfig(
            name=provider_name,
            env_var=provider_data["env_var"],
            default_model=provider_data.get("default_model", models[0].id if models else ""),
            models=models,
        )

    return configs


PROVIDER_CONFIGS: dict[str, ProviderConfig] = _build_provider_configs()


def get_model_config(model_id: str) -> ModelConfig | None:
    """Find a model in the provider table by id."""
    for provider in PROVIDER_CONFIGS.values():
        for model in provider.models:
            if model.id == model_id:
                return model
    return None
