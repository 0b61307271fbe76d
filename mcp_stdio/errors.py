"""
Error hierarchy for the stdio client.

Everything raised by this package derives from MCPClientError, so callers
can catch one type at the boundary. The split that matters in practice:

  - PeerError: the server answered, and the answer was an error.
  - TransportError: no usable answer arrived (timeout, process exit,
    unparseable output).
  - Session errors (NotReadyError, InitTimeoutError, ...): the channel
    was not in a state where the call could be made.
"""

from __future__ import annotations

from typing import Any


class MCPClientError(Exception):
    """Base exception for all stdio client errors."""


class NotReadyError(MCPClientError):
    """An operation was attempted before the handshake completed."""

    def __init__(self, state: str = "uninitialized"):
        self.state = state
        super().__init__(
            f"No active session (state: {state}). "
            "Make sure to wait for session initialization."
        )


class ClientClosedError(MCPClientError):
    """The client was closed explicitly."""

    def __init__(self, message: str = "Client is closed"):
        super().__init__(message)


class InitTimeoutError(MCPClientError, TimeoutError):
    """The session did not become ready within the deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Session initialization timeout after {timeout}s")


class ProtocolError(MCPClientError):
    """The peer sent a well-formed message with unexpected content."""


class HandshakeProtocolError(ProtocolError):
    """The initialize response lacked required fields."""


class PeerError(MCPClientError):
    """JSON-RPC error object returned by the peer."""

    def __init__(self, code: int | None, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    def __repr__(self) -> str:
        return f"PeerError(code={self.code!r}, message={self.message!r})"


class TransportError(MCPClientError):
    """The channel could not deliver a response."""


class CallTimeoutError(TransportError, TimeoutError):
    """No matching response arrived within the call's timeout."""

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request '{method}' timed out after {timeout}s")


class ProcessExitedError(TransportError):
    """The server process terminated."""

    def __init__(self, returncode: int | None):
        self.returncode = returncode
        super().__init__(f"Server process exited with code {returncode}")


class FramingError(TransportError):
    """Server output could not be parsed as JSON; the channel is unusable."""

    def __init__(self, message: str, raw: bytes = b""):
        self.raw = raw
        super().__init__(message)


class ToolLookupError(MCPClientError):
    """Base for multiplexer routing failures."""


class UnknownToolError(ToolLookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: '{name}'")


class OriginUnavailableError(ToolLookupError):
    def __init__(self, server_id: str, name: str):
        self.server_id = server_id
        self.name = name
        super().__init__(f"Server '{server_id}' for tool '{name}' is not available")
