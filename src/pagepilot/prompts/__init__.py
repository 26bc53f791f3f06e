"""Static prompts for the page agent.

Prompts are loaded from markdown files in this package.
"""

from importlib.resources import files

_PROMPTS_PKG = files("pagepilot.prompts")


def load_prompt(name: str) -> str:
    """Load a prompt by name (without .md extension)."""
    return _PROMPTS_PKG.joinpath(f"{name}.md").read_text(encoding="utf-8")


def list_prompts() -> list[str]:
    """List available prompt names."""
    return [f.name[:-3] for f in _PROMPTS_PKG.iterdir() if f.name.endswith(".md")]


SYSTEM_PROMPT = load_prompt("system")

__all__ = [
    "load_prompt",
    "list_prompts",
    "SYSTEM_PROMPT",
]
