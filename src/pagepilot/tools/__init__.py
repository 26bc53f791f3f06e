"""Tool registry and built-in page tools."""

from pagepilot.tools.builtin import BUILTIN_TOOLS, MAX_SLEEP_MS
from pagepilot.tools.registry import ToolRegistry, default_registry
from pagepilot.tools.schema import TabArguments, ToolArguments, ToolDescriptor, ToolTarget

__all__ = [
    "BUILTIN_TOOLS",
    "MAX_SLEEP_MS",
    "TabArguments",
    "ToolArguments",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolTarget",
    "default_registry",
]
