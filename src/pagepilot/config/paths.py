"""Where PagePilot looks for ``config.yaml``.

Three file layers are read, lowest priority first:

- ``system``: /etc/pagepilot/config.yaml (none on Windows)
- ``user``: $XDG_CONFIG_HOME/pagepilot/, else ~/.config/pagepilot/ when
  ~/.config exists, else ~/.pagepilot/
- ``project``: <project_root>/.pagepilot/, only when a root is given

Environment overrides sit above all of them (see ``loader.env_overrides``).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "pagepilot"
SHORT_NAME = ".pagepilot"


@dataclass(frozen=True)
class ConfigLayer:
    """One config file location. The file may not exist."""

    name: str
    path: Path


def get_system_config_path() -> Path | None:
    """System-wide config file, or None where there is no such location."""
    if sys.platform == "win32":
        return None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path:
    """Per-user config file."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME

    home = Path.home()
    if (home / ".config").is_dir():
        return home / ".config" / APP_NAME / CONFIG_FILENAME
    return home / SHORT_NAME / CONFIG_FILENAME


def get_project_config_path(project_root: str) -> Path:
    return Path(project_root) / SHORT_NAME / CONFIG_FILENAME


def config_layers(project_root: str | None = None) -> list[ConfigLayer]:
    """File layers in merge order; later layers override earlier ones."""
    layers: list[ConfigLayer] = []
    system_path = get_system_config_path()
    if system_path is not None:
        layers.append(ConfigLayer("system", system_path))
    layers.append(ConfigLayer("user", get_user_config_path()))
    if project_root:
        layers.append(ConfigLayer("project", get_project_config_path(project_root)))
    return layers


def get_config_paths(project_root: str | None = None) -> list[Path]:
    """Paths of :func:`config_layers`, in the same order."""
    return [layer.path for layer in config_layers(project_root)]
