"""Tool descriptors and the registry that serves them."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import mcp.types as types
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

ToolFn = Callable[..., Awaitable[Any]]


class Tool(BaseModel):
    """Internal tool registration info."""

    model_config = ConfigDict(frozen=True)

    fn: ToolFn = Field(exclude=True)
    name: str = Field(description="Name of the tool")
    title: str | None = Field(None, description="Human-readable title of the tool")
    description: str = Field(description="Description of what the tool does")
    args_model: type[BaseModel] = Field(exclude=True, description="Pydantic model validating the tool arguments")
    parameters: dict[str, Any] = Field(description="JSON schema for tool parameters")

    @classmethod
    def from_function(
        cls,
        fn: ToolFn,
        args_model: type[BaseModel],
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> Tool:
        """Create a Tool from a coroutine function and its arguments model."""
        func_name = name or fn.__name__
        if func_name == "<lambda>":
            raise ValueError("You must provide a name for lambda functions")

        return cls(
            fn=fn,
            name=func_name,
            title=title,
            description=description or fn.__doc__ or "",
            args_model=args_model,
            parameters=args_model.model_json_schema(by_alias=True),
        )

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.parameters,
        )

    async def run(self, arguments: dict[str, Any]) -> Any:
        """Validate the arguments against the tool schema and run the tool."""
        try:
            validated = self.args_model.model_validate(arguments)
        except ValidationError as e:
            raise ToolError(f"Invalid arguments for tool {self.name}: {e}") from e

        try:
            return await self.fn(**validated.model_dump())
        except Exception as e:
            raise ToolError(f"Error executing tool {self.name}: {e}") from e


class ToolManager:
    """Keeps the registered tools, in registration order."""

    def __init__(self, warn_on_duplicate_tools: bool = True):
        self._tools: dict[str, Tool] = {}
        self.warn_on_duplicate_tools = warn_on_duplicate_tools

    def get_tool(self, name: str) -> Tool | None:
        """Get tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """List all registered tools."""
        return list(self._tools.values())

    def add_tool(
        self,
        fn: ToolFn,
        args_model: type[BaseModel],
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> Tool:
        """Add a tool to the registry."""
        tool = Tool.from_function(fn, args_model, name=name, title=title, description=description)
        existing = self._tools.get(tool.name)
        if existing:
            if self.warn_on_duplicate_tools:
                logger.warning(f"Tool already exists: {tool.name}")
            return existing
        self._tools[tool.name] = tool
        return tool

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Call a tool by name with arguments."""
        tool = self.get_tool(name)
        if not tool:
            raise ToolError(f"Unknown tool: {name}")

        return await tool.run(arguments)
