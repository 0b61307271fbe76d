"""
Stdio tool-server client: JSON-RPC over a subprocess's stdin/stdout.

Architecture:
    ┌──────────────┐     stdio      ┌──────────────┐
    │  StdioClient │ ──────────── │  Tool Server  │
    │  (asyncio)   │  JSON-RPC    │  (subprocess) │
    └──────────────┘     pipes     └──────────────┘

Each tool server is a standalone process that exchanges newline-delimited
JSON-RPC 2.0 messages with the client (the MCP stdio transport).

StdioClient owns one server process: handshake, request correlation,
ping/pong, timeouts. ToolServerManager runs several clients and presents
their tools to an LLM under collision-free names. The bridge turns those
tools into LangChain tools.
"""

from mcp_stdio.client import StdioClient
from mcp_stdio.config import ServerConfig, load_config_file, load_server_configs
from mcp_stdio.errors import (
    CallTimeoutError,
    ClientClosedError,
    FramingError,
    HandshakeProtocolError,
    InitTimeoutError,
    MCPClientError,
    NotReadyError,
    OriginUnavailableError,
    PeerError,
    ProcessExitedError,
    ProtocolError,
    TransportError,
    UnknownToolError,
)
from mcp_stdio.manager import ToolMapping, ToolServerManager
from mcp_stdio.session import ClientInfo, ServerIdentity, SessionState
from mcp_stdio.tools import ToolDescriptor, ToolResult


# Bridge requires langchain; lazy import keeps the client usable without it
def mcp_to_langchain_tool(*args, **kwargs):
    from mcp_stdio.bridge import mcp_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def to_langchain_tools(*args, **kwargs):
    from mcp_stdio.bridge import to_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "CallTimeoutError",
    "ClientClosedError",
    "ClientInfo",
    "FramingError",
    "HandshakeProtocolError",
    "InitTimeoutError",
    "MCPClientError",
    "NotReadyError",
    "OriginUnavailableError",
    "PeerError",
    "ProcessExitedError",
    "ProtocolError",
    "ServerConfig",
    "ServerIdentity",
    "SessionState",
    "StdioClient",
    "ToolDescriptor",
    "ToolMapping",
    "ToolResult",
    "ToolServerManager",
    "TransportError",
    "UnknownToolError",
    "load_config_file",
    "load_server_configs",
    "mcp_to_langchain_tool",
    "to_langchain_tools",
]
