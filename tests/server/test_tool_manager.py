import logging

import pytest
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field

from slack_mcp.server.tools import Tool, ToolManager


class AddArgs(BaseModel):
    a: int
    b: int = Field(1, ge=0, le=10)


async def add(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b


class TestAddTools:
    def test_basic_function(self):
        """Test registering a coroutine with its arguments model."""
        manager = ToolManager()
        manager.add_tool(add, AddArgs)

        tool = manager.get_tool("add")
        assert tool is not None
        assert tool.name == "add"
        assert tool.description == "Add two numbers."
        assert tool.parameters["properties"]["a"]["type"] == "integer"
        assert tool.parameters["properties"]["b"]["default"] == 1
        assert tool.parameters["properties"]["b"]["maximum"] == 10
        assert tool.parameters["required"] == ["a"]

    def test_explicit_name_title_and_description(self):
        manager = ToolManager()
        tool = manager.add_tool(add, AddArgs, name="adder", title="Adder", description="Adds.")

        assert manager.get_tool("adder") is tool
        assert tool.title == "Adder"
        assert tool.description == "Adds."

    def test_add_lambda_with_no_name(self):
        with pytest.raises(ValueError, match="You must provide a name for lambda functions"):
            Tool.from_function(lambda a, b: a + b, AddArgs)

    def test_warn_on_duplicate_tools(self, caplog: pytest.LogCaptureFixture):
        manager = ToolManager()
        first = manager.add_tool(add, AddArgs)
        with caplog.at_level(logging.WARNING):
            second = manager.add_tool(add, AddArgs)
        assert "Tool already exists: add" in caplog.text
        assert second is first

    def test_disable_warn_on_duplicate_tools(self, caplog: pytest.LogCaptureFixture):
        manager = ToolManager(warn_on_duplicate_tools=False)
        manager.add_tool(add, AddArgs)
        with caplog.at_level(logging.WARNING):
            manager.add_tool(add, AddArgs)
        assert "Tool already exists" not in caplog.text

    def test_list_tools_keeps_registration_order(self):
        async def subtract(a: int, b: int) -> int:
            return a - b

        manager = ToolManager()
        manager.add_tool(subtract, AddArgs)
        manager.add_tool(add, AddArgs)
        assert [tool.name for tool in manager.list_tools()] == ["subtract", "add"]

    def test_to_mcp_tool(self):
        tool = Tool.from_function(add, AddArgs, title="Add")
        mcp_tool = tool.to_mcp_tool()
        dumped = mcp_tool.model_dump(by_alias=True, exclude_none=True)
        assert dumped["name"] == "add"
        assert dumped["title"] == "Add"
        assert dumped["inputSchema"]["type"] == "object"


class TestCallTools:
    @pytest.mark.anyio
    async def test_call_tool(self):
        manager = ToolManager()
        manager.add_tool(add, AddArgs)
        result = await manager.call_tool("add", {"a": 1, "b": 2})
        assert result == 3

    @pytest.mark.anyio
    async def test_call_tool_with_default_args(self):
        manager = ToolManager()
        manager.add_tool(add, AddArgs)
        result = await manager.call_tool("add", {"a": 1})
        assert result == 2

    @pytest.mark.anyio
    async def test_call_tool_with_missing_args(self):
        manager = ToolManager()
        manager.add_tool(add, AddArgs)
        with pytest.raises(ToolError, match="Invalid arguments for tool add"):
            await manager.call_tool("add", {})

    @pytest.mark.anyio
    async def test_call_tool_with_out_of_range_args(self):
        manager = ToolManager()
        manager.add_tool(add, AddArgs)
        with pytest.raises(ToolError, match="Invalid arguments for tool add"):
            await manager.call_tool("add", {"a": 1, "b": 11})

    @pytest.mark.anyio
    async def test_call_unknown_tool(self):
        manager = ToolManager()
        with pytest.raises(ToolError, match="Unknown tool: unknown"):
            await manager.call_tool("unknown", {"a": 1})

    @pytest.mark.anyio
    async def test_tool_exceptions_are_wrapped(self):
        async def broken(a: int, b: int) -> int:
            raise RuntimeError("boom")

        manager = ToolManager()
        manager.add_tool(broken, AddArgs)
        with pytest.raises(ToolError, match="Error executing tool broken: boom"):
            await manager.call_tool("broken", {"a": 1})
