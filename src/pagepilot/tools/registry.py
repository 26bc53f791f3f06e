"""Tool registry: name -> descriptor lookup and argument validation."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from pagepilot.errors import SchemaError, ToolNotFound
from pagepilot.tools.builtin import BUILTIN_TOOLS
from pagepilot.tools.schema import ToolDescriptor


def _format_problems(error: ValidationError) -> list[str]:
    problems = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        problems.append(f"{loc}: {item.get('msg', 'invalid')}")
    return problems


class ToolRegistry:
    """Immutable mapping of tool names to descriptors.

    The registry is built once and never changes, so concurrent readers
    need no locking.
    """

    def __init__(self, tools: Iterable[ToolDescriptor]) -> None:
        table: dict[str, ToolDescriptor] = {}
        for tool in tools:
            if tool.name in table:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            table[tool.name] = tool
        self._tools = MappingProxyType(table)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def lookup(self, name: str) -> ToolDescriptor:
        """Return the descriptor for ``name`` or raise ToolNotFound."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def validate(self, name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Validate arguments against the tool's schema.

        Returns:
            Normalised arguments (defaults filled in, unset optionals dropped).

        Raises:
            ToolNotFound: Unknown tool name.
            SchemaError: Arguments do not satisfy the schema.
        """
        tool = self.lookup(name)
        if arguments is not None and not isinstance(arguments, dict):
            raise SchemaError(name, ["arguments: expected an object"])
        try:
            parsed = tool.argument_schema.model_validate(arguments or {})
        except ValidationError as e:
            raise SchemaError(name, _format_problems(e)) from e
        return parsed.model_dump(exclude_none=True)

    def is_sensitive(self, name: str) -> bool:
        return self.lookup(name).sensitive

    def llm_tools(self) -> list[dict[str, Any]]:
        """Function definitions offered to the model, in registration order."""
        return [tool.to_llm_tool() for tool in self._tools.values()]


def default_registry() -> ToolRegistry:
    """Registry holding the built-in page tools."""
    return ToolRegistry(BUILTIN_TOOLS)
