"""Session persistence.

The orchestrator treats storage as an injected key-value store: session id
-> serialized session. Two implementations:

- MemorySessionStore: process-local, for tests and ephemeral servers;
  not persistent, so reclaiming a session from memory destroys it
- YamlSessionStore: one YAML file per session under a directory,
  $storage_dir/<session-id>.yaml, written atomically
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from pagepilot.logging import get_logger

log = get_logger("storage")

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class SessionStore(Protocol):
    """Key-value store for serialized sessions."""

    # False when entries live only as long as the process
    persistent: bool

    def load(self, session_id: str) -> dict[str, Any] | None:
        """Return the stored session, or None if absent or unreadable."""
        ...

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        ...

    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns True if something was deleted."""
        ...

    def list_ids(self) -> list[str]:
        ...


class MemorySessionStore:
    """Dict-backed store."""

    persistent = False

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def load(self, session_id: str) -> dict[str, Any] | None:
        data = self._data.get(session_id)
        return yaml.safe_load(yaml.safe_dump(data)) if data is not None else None

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        # Round-trip through YAML so tests see the same shapes as the file store
        self._data[session_id] = yaml.safe_load(yaml.safe_dump(data))

    def delete(self, session_id: str) -> bool:
        return self._data.pop(session_id, None) is not None

    def list_ids(self) -> list[str]:
        return list(self._data)


class YamlSessionStore:
    """One YAML file per session."""

    persistent = True

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id):
            raise ValueError(f"Unsafe session id for file storage: {session_id!r}")
        return self.directory / f"{session_id}.yaml"

    def load(self, session_id: str) -> dict[str, Any] | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            log.warning("Failed to load session from %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            log.warning("Ignoring %s: not a session mapping", path)
            return None
        return data

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        """Write the session atomically via a temp file and rename."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(session_id)
        temp_path = path.with_suffix(".yaml.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            temp_path.replace(path)
        except (OSError, yaml.YAMLError) as e:
            if temp_path.exists():
                temp_path.unlink()
            raise RuntimeError(f"Failed to save session {session_id}: {e}") from e
        log.debug("Saved session %s to %s", session_id, path)

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        log.debug("Deleted session file %s", path)
        return True

    def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.yaml"))
