"""
Tool Server Manager: runs several servers and presents their tools as one set.

Every tool gets an external name built from its server id and its own
name (``filesystem__search_files``), so two servers may both declare
``read_file`` without clashing. Calls on an external name are routed back
to the originating server under the tool's original name.

Usage:
    manager = ToolServerManager()

    # Register servers
    manager.register_server("filesystem", ["node", "build/index.js"])
    manager.register_server("notes", ["python", "notes_server.py"])

    # Start them (in parallel) and discover tools
    await manager.start_all()
    await manager.refresh_tools()

    # Hand the tools to an LLM, then route its tool_use blocks back
    tools = manager.tool_params()
    result = await manager.dispatch("filesystem__read_file", {"path": "/tmp/a"})
    block = result.to_content_block(tool_use.id)

    # Stop everything
    await manager.stop_all()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from mcp_stdio.client import StdioClient
from mcp_stdio.config import ServerConfig
from mcp_stdio.errors import (
    MCPClientError,
    OriginUnavailableError,
    UnknownToolError,
)
from mcp_stdio.tools import ToolDescriptor, ToolResult, external_tool_name, unique_tool_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolMapping:
    """Where an externally named tool really lives."""
    server_id: str
    tool_name: str
    external_name: str
    descriptor: ToolDescriptor = field(compare=False)
    # sanitized argument key -> key the server declared
    argument_names: dict[str, str] = field(default_factory=dict, compare=False)

    def to_tool_param(self) -> dict[str, Any]:
        return self.descriptor.to_tool_param(name=self.external_name)

    def server_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Translate arguments keyed by the sanitized schema back to the server's keys."""
        if not self.argument_names:
            return dict(arguments)
        return {self.argument_names.get(key, key): value for key, value in arguments.items()}


class ToolServerManager:
    """
    Manages the lifecycle of tool server processes and routes tool calls.

    Responsibilities:
    - Launch servers as subprocesses (one StdioClient each)
    - Aggregate their tools under collision-free external names
    - Route tool calls to the correct server
    - Graceful shutdown
    """

    def __init__(self):
        self._servers: dict[str, dict] = {}
        # server_id → {
        #   "command": [...] | None (client supplied directly),
        #   "env": dict | None,
        #   "options": StdioClient kwargs,
        #   "client": StdioClient | None,
        #   "tools": [ToolDescriptor, ...] (discovered on refresh),
        # }
        self._mappings: dict[str, ToolMapping] = {}

    # ── Registration ──────────────────────────────────────

    def register_server(
        self,
        server_id: str,
        command: list[str],
        env: dict[str, str] | None = None,
        **client_options: Any,
    ) -> None:
        """
        Register a tool server (does not start it yet).

        Args:
            server_id: Unique identifier for this server
            command: Command to launch the server process
            env: Optional environment variables
            client_options: Extra StdioClient keyword arguments
        """
        if server_id in self._servers:
            raise ValueError(f"Server already registered: {server_id}")
        client_options.setdefault("name", server_id)
        self._servers[server_id] = {
            "command": list(command),
            "env": env,
            "options": client_options,
            "client": None,
            "tools": [],
        }
        logger.info(f"Registered server: {server_id} ({' '.join(command)})")

    def register_config(self, config: ServerConfig) -> None:
        self.register_server(config.server_id, config.command, config.env, **config.client_options())

    def add_client(self, server_id: str, client: Any) -> None:
        """Register an already constructed (and usually started) client."""
        if server_id in self._servers:
            raise ValueError(f"Server already registered: {server_id}")
        self._servers[server_id] = {
            "command": None,
            "env": None,
            "options": {},
            "client": client,
            "tools": [],
        }
        logger.info(f"Added client for server: {server_id}")

    async def remove_server(self, server_id: str) -> None:
        """Stop a server and forget it. Its tools disappear on the next refresh."""
        await self.stop(server_id)
        self._servers.pop(server_id, None)

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self, server_id: str, timeout: float | None = None) -> StdioClient:
        """
        Start a tool server and wait for its session.

        Returns:
            The ready client.
        """
        server = self._servers.get(server_id)
        if not server:
            raise ValueError(f"Unknown server: {server_id}")
        if server["command"] is None:
            raise ValueError(f"Server {server_id} was added as a client and cannot be launched")

        if server["client"] is not None:
            await self.stop(server_id)

        client = StdioClient(server["command"], server["env"], **server["options"])
        server["client"] = client
        if timeout is None:
            timeout = client.init_timeout + client.startup_delay
        try:
            await client.start()
            await client.wait_for_session(timeout)
        except BaseException:
            await client.close()
            server["client"] = None
            raise

        logger.info(f"Started {server_id}: {client.server_identity.name} {client.server_identity.version}")
        return client

    async def start_all(self) -> dict[str, bool]:
        """Start all launchable servers in parallel. Returns {server_id: started}."""
        server_ids = [sid for sid, s in self._servers.items() if s["command"] is not None]
        outcomes = await asyncio.gather(
            *(self.start(sid) for sid in server_ids),
            return_exceptions=True,
        )
        results = {}
        for server_id, outcome in zip(server_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to start {server_id}: {outcome}")
                results[server_id] = False
            else:
                results[server_id] = True
        return results

    async def stop(self, server_id: str) -> None:
        """Stop a tool server."""
        server = self._servers.get(server_id)
        if server and server["client"] is not None:
            await server["client"].close()
            server["client"] = None
            logger.info(f"Stopped {server_id}")

    async def stop_all(self) -> None:
        """Stop all running servers."""
        await asyncio.gather(*(self.stop(sid) for sid in list(self._servers)))

    # ── Discovery ─────────────────────────────────────────

    async def _list_server_tools(self, server_id: str, client: Any) -> list[ToolDescriptor]:
        try:
            return await client.list_tools()
        except Exception as e:
            logger.error(f"Failed to discover tools from {server_id}: {e}")
            return []

    async def refresh_tools(self) -> list[ToolMapping]:
        """
        Re-list tools on every ready server and rebuild the routing table.

        Servers are queried in parallel. The new table replaces the old one
        in a single assignment, so a dispatch never sees a mix of both.
        """
        origins = [
            (server_id, server["client"])
            for server_id, server in self._servers.items()
            if server["client"] is not None and server["client"].is_ready()
        ]
        listings = await asyncio.gather(
            *(self._list_server_tools(server_id, client) for server_id, client in origins)
        )

        mappings: dict[str, ToolMapping] = {}
        for (server_id, _), tools in zip(origins, listings):
            self._servers[server_id]["tools"] = tools
            for tool in tools:
                external_name = unique_tool_name(external_tool_name(server_id, tool.name), mappings)
                _, renamed = tool.sanitized_schema()
                mappings[external_name] = ToolMapping(
                    server_id=server_id,
                    tool_name=tool.name,
                    external_name=external_name,
                    descriptor=tool,
                    argument_names=renamed,
                )
            logger.info(f"Discovered {len(tools)} tool(s) on {server_id}: {[t.name for t in tools]}")

        self._mappings = mappings
        return list(mappings.values())

    def tool_params(self) -> list[dict[str, Any]]:
        """All current tools in LLM tool-calling format, under their external names."""
        return [mapping.to_tool_param() for mapping in self._mappings.values()]

    def mappings(self) -> list[ToolMapping]:
        return list(self._mappings.values())

    def resolve(self, external_name: str) -> ToolMapping:
        mapping = self._mappings.get(external_name)
        if mapping is None:
            raise UnknownToolError(external_name)
        return mapping

    # ── Calls ─────────────────────────────────────────────

    async def call(
        self,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> Any:
        """
        Call a tool on a specific server.

        Args:
            server_id: Which server to call
            tool_name: Which tool on that server
            arguments: Tool parameters

        Returns:
            The tool result.
        """
        client = self.get_client(server_id)
        if client is None:
            raise OriginUnavailableError(server_id, tool_name)
        return await client.call_tool(tool_name, arguments)

    async def dispatch(self, external_name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """
        Route a call on an external tool name to its server.

        Tool failures (peer errors, timeouts, a dead server) come back as a
        ToolResult with ``is_error`` set rather than as an exception.

        Raises:
            UnknownToolError: No tool has this external name.
            OriginUnavailableError: The tool's server is no longer registered.
        """
        mapping = self.resolve(external_name)
        client = self.get_client(mapping.server_id)
        if client is None:
            raise OriginUnavailableError(mapping.server_id, mapping.tool_name)

        try:
            result = await client.call_tool(
                mapping.tool_name,
                mapping.server_arguments(arguments or {}),
            )
        except MCPClientError as e:
            logger.warning(f"Tool call failed ({mapping.server_id}/{mapping.tool_name}): {e}")
            return ToolResult.failure(e)
        return ToolResult.success(result)

    # ── Introspection ─────────────────────────────────────

    def get_client(self, server_id: str) -> Any:
        server = self._servers.get(server_id)
        return server["client"] if server else None

    def list_tools(self, server_id: str) -> list[ToolDescriptor]:
        """List discovered tools for a server."""
        server = self._servers.get(server_id)
        return server["tools"] if server else []

    def list_servers(self) -> dict[str, bool]:
        """List all servers and their running status."""
        return {sid: self.is_running(sid) for sid in self._servers}

    def is_running(self, server_id: str) -> bool:
        """Check if a specific server is running."""
        client = self.get_client(server_id)
        return client is not None and client.is_ready()
