"""
Session lifecycle and the initialize handshake.

    UNINITIALIZED ──start()──► HANDSHAKING ──ok──► READY
                                    │
                                    └──fail──► FAILED

    CLOSED is reachable from every state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from mcp_stdio.errors import CallTimeoutError, HandshakeProtocolError, InitTimeoutError
from mcp_stdio.transport import JsonRpcRequest

PROTOCOL_VERSION = "2024-11-05"


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class ServerIdentity:
    name: str = "Unknown"
    version: str = "0.0.0"

    @classmethod
    def from_dict(cls, data: Any) -> "ServerIdentity":
        if not isinstance(data, dict):
            return cls()
        return cls(
            name=str(data.get("name") or cls.name),
            version=str(data.get("version") or cls.version),
        )


@dataclass(frozen=True)
class ClientInfo:
    name: str = "mcp-client"
    version: str = "1.0.0"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version}


UNKNOWN_SERVER = ServerIdentity()


class SessionHandshake:
    """
    The one initialize exchange every channel performs before anything else.

    ``request`` sends a request and awaits its result, bypassing the
    readiness check (the session is not ready until this finishes).
    ``notify`` sends a notification.
    """

    def __init__(
        self,
        client_info: ClientInfo | None = None,
        protocol_version: str = PROTOCOL_VERSION,
        timeout: float = 30.0,
        *,
        logger: logging.Logger | None = None,
    ):
        self.client_info = client_info or ClientInfo()
        self.protocol_version = protocol_version
        self.timeout = timeout
        self._log = logger or logging.getLogger(__name__)

    def build_request(self) -> JsonRpcRequest:
        return JsonRpcRequest(
            method="initialize",
            params={
                "protocolVersion": self.protocol_version,
                "clientInfo": self.client_info.to_dict(),
                "capabilities": {"tools": {}},
            },
        )

    async def run(
        self,
        request: Callable[[JsonRpcRequest, float | None], Awaitable[Any]],
        notify: Callable[[JsonRpcRequest], Awaitable[None]],
    ) -> tuple[ServerIdentity, dict[str, Any]]:
        """
        Perform the handshake.

        Returns:
            The server identity and the raw initialize result.

        Raises:
            InitTimeoutError: No response within ``timeout``.
            HandshakeProtocolError: The response lacks ``protocolVersion``.
            PeerError: The server rejected the request.
        """
        self._log.debug("Initializing MCP session...")
        try:
            result = await request(self.build_request(), self.timeout)
        except CallTimeoutError as e:
            raise InitTimeoutError(self.timeout) from e

        if not isinstance(result, dict) or not result.get("protocolVersion"):
            raise HandshakeProtocolError(f"Invalid initialization response: {result!r}")

        identity = ServerIdentity.from_dict(result.get("serverInfo"))
        await notify(JsonRpcRequest(method="notifications/initialized"))

        self._log.debug(
            f"Session initialized successfully: {identity.name} {identity.version} "
            f"(protocol {result['protocolVersion']})"
        )
        return identity, result
