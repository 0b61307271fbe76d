"""
Bridge between stdio tool servers and LangChain.

Converts the manager's aggregated tools into LangChain tools, so any
LangChain chat model with tool calling can use them.

Usage:
    from mcp_stdio.bridge import mcp_to_langchain_tool, to_langchain_tools

    await manager.refresh_tools()

    # Single tool
    lc_tool = mcp_to_langchain_tool(manager, "filesystem__search_files")

    # All tools from all servers
    tools = to_langchain_tools(manager)
    model = model.bind_tools(tools)
"""

from __future__ import annotations

from typing import Any

from langchain_core.tools import StructuredTool

from mcp_stdio.manager import ToolServerManager


def mcp_to_langchain_tool(
    manager: ToolServerManager,
    external_name: str,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that wraps one aggregated tool.

    The returned tool is async-only. When an agent invokes it, the call is
    routed through ``manager.dispatch``; tool failures come back as the
    error text rather than raising, so the model can see and react to them.

    Args:
        manager: The ToolServerManager holding the current tool mapping
        external_name: The tool's external name (as listed by the manager)
        description_override: Optional override for the tool description

    Returns:
        A LangChain StructuredTool that proxies calls to the server.
    """
    mapping = manager.resolve(external_name)
    tool_param = mapping.to_tool_param()

    async def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to the tool server."""
        result = await manager.dispatch(external_name, kwargs)
        if result.is_error:
            return f"Error calling {mapping.server_id}/{mapping.tool_name}: {result.content}"
        return result.content

    return StructuredTool.from_function(
        coroutine=_call_mcp,
        name=external_name,
        description=description_override or tool_param["description"],
        args_schema=tool_param["input_schema"],
    )


def to_langchain_tools(manager: ToolServerManager) -> list[StructuredTool]:
    """Wrap every tool from the manager's last refresh."""
    return [
        mcp_to_langchain_tool(manager, mapping.external_name)
        for mapping in manager.mappings()
    ]
