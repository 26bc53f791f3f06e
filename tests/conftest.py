"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from pagepilot.config import clear_secret_cache, reset_config

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Keep the developer's environment out of config-dependent tests."""
    for var in ("PAGEPILOT_LOG", "PAGEPILOT_MODEL", "PAGEPILOT_VERBOSE"):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"
