"""API key lookup for the model collaborator.

Keys are never stored in config.yaml. They come from the process environment
or, for local development, from a ``.env.secrets`` file next to the project
config (read with python-dotenv and cached).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"


@lru_cache(maxsize=8)
def _read_secrets_file(path: Path) -> dict[str, str | None]:
    if not path.is_file():
        return {}
    return dotenv_values(path)


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Return a secret from the environment, then the secrets file.

    The environment wins so tests can clear a key with ``monkeypatch.delenv``.

    Args:
        key: Environment variable name (e.g., "OPENAI_API_KEY")
        default: Returned when the key is found nowhere
        secrets_path: Secrets file to consult; defaults to ./.env.secrets
    """
    value = os.environ.get(key)
    if value:
        return value

    secrets = _read_secrets_file(secrets_path or Path(SECRETS_FILE))
    value = secrets.get(key)
    return value if value else default


def clear_secret_cache() -> None:
    """Forget cached secrets files (after editing .env.secrets, or in tests)."""
    _read_secrets_file.cache_clear()
