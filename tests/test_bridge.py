"""Tests for exposing aggregated tools as LangChain tools."""

from __future__ import annotations

import json
from typing import Any

import pytest
import pytest_asyncio
from langchain_core.tools import StructuredTool

from mcp_stdio.bridge import mcp_to_langchain_tool, to_langchain_tools
from mcp_stdio.errors import PeerError, UnknownToolError
from mcp_stdio.manager import ToolServerManager
from mcp_stdio.tools import ToolDescriptor

TOOLS = [
    {
        "name": "echo",
        "description": "Echoes back the input message.",
        "inputSchema": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    },
    {"name": "search_files", "inputSchema": {"type": "object", "properties": {}}},
]


class EchoClient:
    """Answers echo, fails search_files."""

    def is_ready(self) -> bool:
        return True

    async def list_tools(self) -> list[ToolDescriptor]:
        return [ToolDescriptor.from_dict(tool) for tool in TOOLS]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        if name == "search_files":
            raise PeerError(-32000, "not found")
        return {"echo": (arguments or {}).get("message")}

    async def close(self) -> None:
        pass


@pytest_asyncio.fixture
async def manager() -> ToolServerManager:
    manager = ToolServerManager()
    manager.add_client("demo", EchoClient())
    await manager.refresh_tools()
    return manager


@pytest.mark.asyncio
async def test_wraps_every_tool(manager: ToolServerManager) -> None:
    """Each aggregated tool becomes a StructuredTool under its external name."""
    tools = to_langchain_tools(manager)
    assert all(isinstance(tool, StructuredTool) for tool in tools)
    assert [tool.name for tool in tools] == ["demo__echo", "demo__search_files"]
    assert tools[0].description == "Echoes back the input message."
    assert tools[1].description == "Execute search_files tool"


@pytest.mark.asyncio
async def test_description_override(manager: ToolServerManager) -> None:
    """An explicit description replaces the server's."""
    tool = mcp_to_langchain_tool(manager, "demo__echo", description_override="Say it back.")
    assert tool.description == "Say it back."


@pytest.mark.asyncio
async def test_unknown_tool_name(manager: ToolServerManager) -> None:
    """Wrapping a name the manager does not know fails immediately."""
    with pytest.raises(UnknownToolError):
        mcp_to_langchain_tool(manager, "demo__missing")


@pytest.mark.asyncio
async def test_invoke_routes_through_manager(manager: ToolServerManager) -> None:
    """Invoking the tool dispatches to the server and returns its result text."""
    tool = mcp_to_langchain_tool(manager, "demo__echo")
    output = await tool.ainvoke({"message": "hello"})
    assert json.loads(output) == {"echo": "hello"}


@pytest.mark.asyncio
async def test_invoke_error_is_returned_as_text(manager: ToolServerManager) -> None:
    """Tool failures come back as text the model can read."""
    tool = mcp_to_langchain_tool(manager, "demo__search_files")
    output = await tool.ainvoke({})
    assert output == "Error calling demo/search_files: not found"
