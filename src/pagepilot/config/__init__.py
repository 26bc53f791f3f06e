"""Configuration management for PagePilot.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/pagepilot/)
- User-level config ($XDG_CONFIG_HOME/pagepilot/, ~/.config/pagepilot/ or ~/.pagepilot/)
- Project-level config ($project_root/.pagepilot/)
- Environment variable overrides (highest priority)

Example usage:
    from pagepilot.config import load_config, get_config

    config = load_config(project_root="/path/to/project")
    print(config.transport.dispatch_timeout)
    print(config.approval.auto_approve)
"""

from pagepilot.config.loader import (
    dict_to_config,
    get_config,
    load_config,
    merge_layers,
    reset_config,
)
from pagepilot.config.paths import (
    ConfigLayer,
    config_layers,
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from pagepilot.config.schema import (
    ApprovalConfig,
    Config,
    LLMConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
    TransportConfig,
)
from pagepilot.config.secrets import clear_secret_cache, fetch_secret

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "dict_to_config",
    "merge_layers",
    # Schema types
    "ApprovalConfig",
    "LLMConfig",
    "LoggingConfig",
    "ServerConfig",
    "SessionConfig",
    "TransportConfig",
    # Secrets
    "fetch_secret",
    "clear_secret_cache",
    # Paths
    "ConfigLayer",
    "config_layers",
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
