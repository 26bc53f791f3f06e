"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Cascading merge of system, user and project files
- Environment variable overrides
- Conversion from dict to typed Config dataclass
- Caching of the global config
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from pagepilot.config.paths import config_layers
from pagepilot.config.schema import (
    ApprovalConfig,
    Config,
    LLMConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
    TransportConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("pagepilot.config")

_cached_config: Config | None = None

_KNOWN_SECTIONS = {"llm", "session", "transport", "approval", "server", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning an empty dict if missing or unusable."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}

    if not isinstance(data, dict):
        _log.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    return data


def merge_layers(*layers: dict[str, Any]) -> dict[str, Any]:
    """Merge config layers, later layers winning.

    Nested mappings merge key by key. Lists and scalars replace whatever the
    earlier layer had. A ``None`` value never overrides, so a layer can leave
    a key unset without erasing it.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        merged = _merge_two(merged, layer or {})
    return merged


def _merge_two(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in top.items():
        if value is None:
            continue
        current = out.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            out[key] = _merge_two(current, value)
        else:
            out[key] = value
    return out


def env_overrides() -> dict[str, Any]:
    """Build a config layer from environment variables.

    Recognised:
        PAGEPILOT_LOG     -> logging.file
        PAGEPILOT_MODEL   -> llm.model
        PAGEPILOT_VERBOSE -> logging.verbose
    API keys are NOT loaded here - use fetch_secret() for secrets.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("PAGEPILOT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    verbose = os.environ.get("PAGEPILOT_VERBOSE")
    if verbose:
        try:
            overrides.setdefault("logging", {})["verbose"] = int(verbose)
        except ValueError:
            _log.warning("Ignoring non-integer PAGEPILOT_VERBOSE=%r", verbose)

    model = os.environ.get("PAGEPILOT_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass.

    Unknown keys inside a known section are ignored; unknown top-level
    sections are kept in ``Config.extra``.
    """
    defaults = Config()

    llm_data = _section(data, "llm")
    llm = LLMConfig(
        provider=llm_data.get("provider"),
        model=llm_data.get("model"),
        api_base=llm_data.get("api_base"),
        temperature=llm_data.get("temperature"),
        max_tokens=int(llm_data.get("max_tokens", defaults.llm.max_tokens)),
        max_retries=int(llm_data.get("max_retries", defaults.llm.max_retries)),
        retry_backoff=float(llm_data.get("retry_backoff", defaults.llm.retry_backoff)),
    )

    session_data = _section(data, "session")
    max_sessions = session_data.get("max_sessions")
    session = SessionConfig(
        idle_timeout=float(session_data.get("idle_timeout", defaults.session.idle_timeout)),
        sweep_interval=float(
            session_data.get("sweep_interval", defaults.session.sweep_interval)
        ),
        max_sessions=int(max_sessions) if max_sessions is not None else None,
        max_steps=int(session_data.get("max_steps", defaults.session.max_steps)),
        storage_dir=session_data.get("storage_dir"),
    )

    transport_data = _section(data, "transport")
    transport = TransportConfig(
        dispatch_timeout=float(
            transport_data.get("dispatch_timeout", defaults.transport.dispatch_timeout)
        ),
        local_timeout=float(
            transport_data.get("local_timeout", defaults.transport.local_timeout)
        ),
    )

    approval_data = _section(data, "approval")
    approval_timeout = approval_data.get("timeout")
    auto_approve = approval_data.get("auto_approve", [])
    approval = ApprovalConfig(
        timeout=float(approval_timeout) if approval_timeout is not None else None,
        auto_approve=[name for name in auto_approve if isinstance(name, str)],
    )

    server_data = _section(data, "server")
    server = ServerConfig(
        host=server_data.get("host", defaults.server.host),
        port=int(server_data.get("port", defaults.server.port)),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(
        llm=llm,
        session=session,
        transport=transport,
        approval=approval,
        server=server,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.pagepilot/config.yaml)
    3. User config ($XDG_CONFIG_HOME, ~/.config/pagepilot/ or ~/.pagepilot/)
    4. System config (/etc/pagepilot/config.yaml, not on Windows)

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for source in config_layers(project_root):
        layer = load_yaml_file(source.path)
        if layer:
            _log.debug("Loaded %s config from %s", source.name, source.path)
            layers.append(layer)

    env_layer = env_overrides()
    if env_layer:
        layers.append(env_layer)

    config = dict_to_config(merge_layers(*layers))

    # Cache only the global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (tests, or to force a reload)."""
    global _cached_config
    _cached_config = None
