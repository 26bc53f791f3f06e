"""Configuration schema dataclasses for PagePilot.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMConfig:
    """Model collaborator configuration."""

    provider: str | None = None  # "openai", "anthropic"; None = first with an API key
    model: str | None = None  # Explicit model override (e.g., "gpt-4o-mini")
    api_base: str | None = None  # Custom endpoint
    temperature: float | None = None  # None = provider table default
    max_tokens: int = 4000
    max_retries: int = 2  # Extra attempts after the first failed model call
    retry_backoff: float = 0.5  # Seconds, doubled per attempt


@dataclass
class SessionConfig:
    """Session lifecycle configuration.

    Example config.yaml:
        session:
          idle_timeout: 1800
          sweep_interval: 60
          max_sessions: 50
          storage_dir: ~/.pagepilot/sessions
    """

    idle_timeout: float = 1800.0  # Seconds of inactivity before reclamation
    sweep_interval: float = 60.0  # Seconds between idle sweeps
    max_sessions: int | None = None  # None = unbounded
    max_steps: int = 25  # Model calls per turn before giving up
    storage_dir: str | None = None  # None = in-memory only


@dataclass
class TransportConfig:
    """Execution transport configuration."""

    dispatch_timeout: float = 30.0  # Seconds to wait for a page context result
    local_timeout: float = 65.0  # Seconds for in-process tools (sleep can run 60s)


@dataclass
class ApprovalConfig:
    """Approval gate configuration.

    Sensitive tools are always gated unless listed in ``auto_approve``.
    The default list is empty.
    """

    timeout: float | None = None  # Seconds before a pending approval expires; None = never
    auto_approve: list[str] = field(default_factory=list)


@dataclass
class ServerConfig:
    """HTTP/WebSocket server configuration."""

    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
