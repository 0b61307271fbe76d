"""
Typed helpers for a filesystem tool server.

Thin wrappers over ``StdioClient.call_tool`` for the tools a filesystem
server conventionally declares.
"""

from __future__ import annotations

from typing import Any

from mcp_stdio.client import StdioClient


async def list_allowed_directories(client: StdioClient) -> Any:
    return await client.call_tool("list_allowed_directories")


async def read_multiple_files(client: StdioClient, paths: list[str]) -> Any:
    return await client.call_tool("read_multiple_files", {"paths": list(paths)})


async def search_files(client: StdioClient, path: str, pattern: str) -> Any:
    """Find files under ``path`` whose names match ``pattern``."""
    return await client.call_tool("search_files", {"path": path, "pattern": pattern})
