"""Tool descriptor and argument model base classes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolTarget(Enum):
    """Where a tool executes."""

    LOCAL = "local"  # In-process, against the page-context registry
    REMOTE = "remote"  # Inside a connected page context


class ToolArguments(BaseModel):
    """Base class for tool argument models.

    Unknown keys are rejected so a misspelled argument reaches the model as a
    schema error instead of being silently ignored.
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)


class TabArguments(ToolArguments):
    """Arguments shared by every remote tool."""

    tab_id: str | None = Field(
        default=None,
        description="Page context (tab) id to act on; defaults to the active page",
    )


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """Static description of one tool.

    Attributes:
        name: Tool name the model calls
        description: One-line description shown to the model
        argument_schema: Pydantic model validating the call arguments
        sensitive: Whether a call needs human approval before dispatch
        target: Where the call executes
    """

    name: str
    description: str
    argument_schema: type[ToolArguments]
    sensitive: bool = False
    target: ToolTarget = ToolTarget.REMOTE

    def json_schema(self) -> dict[str, Any]:
        """JSON schema of the arguments, without pydantic's title noise."""
        schema = self.argument_schema.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def to_llm_tool(self) -> dict[str, Any]:
        """OpenAI-style function definition for the model collaborator."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.json_schema(),
            },
        }
