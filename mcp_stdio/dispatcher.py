"""
Routes framed messages from the server to where they belong.

    stdout chunks ──► LineFramer ──► json.loads ──┬─► ping      → pong written back
                                                  ├─► request   → "method not found"
                                                  ├─► notice    → logged
                                                  └─► response  → RequestCorrelator

A line that is not valid JSON poisons the channel: byte alignment with
the stream can no longer be trusted, so every pending call fails with
FramingError and further output is dropped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from mcp_stdio.correlator import RequestCorrelator
from mcp_stdio.errors import (
    FramingError,
    MCPClientError,
    PeerError,
    ProcessExitedError,
    ProtocolError,
)
from mcp_stdio.transport import JsonRpcRequest, JsonRpcResponse, LineFramer

METHOD_NOT_FOUND = -32601


class MessageDispatcher:
    """
    Consumes raw server output for one channel.

    Args:
        correlator: Pending-call table that responses are delivered to.
        write: Sends one message back to the server without waiting
               (used for pongs and error replies).
        logger: Diagnostic sink; defaults to this module's logger.
        on_fatal: Called once with the FramingError that broke the channel.
    """

    def __init__(
        self,
        correlator: RequestCorrelator,
        write: Callable[[dict[str, Any]], None],
        *,
        logger: logging.Logger | None = None,
        on_fatal: Callable[[FramingError], None] | None = None,
    ):
        self.correlator = correlator
        self._write = write
        self._log = logger or logging.getLogger(__name__)
        self._on_fatal = on_fatal
        self._framer = LineFramer()
        self.error: FramingError | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def feed(self, data: bytes) -> None:
        """Accept one chunk of server output, in arrival order."""
        if self.error is not None:
            return

        for line in self._framer.feed(data):
            try:
                message = json.loads(line)
            except (ValueError, RecursionError) as e:
                self._fail(FramingError(f"Error parsing server response: {e}", raw=line))
                return
            self.handle_message(message)

    def handle_message(self, message: Any) -> None:
        """Route one parsed message."""
        self._log.debug(f"Handling message: {message}")

        if not isinstance(message, dict):
            self._log.warning(f"Ignoring non-object message from server: {message!r}")
            return

        method = message.get("method")
        if method is not None:
            self._handle_server_message(method, message)
            return

        request_id = message.get("id")
        if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
            self._log.warning(f"Ignoring response without a usable id: {message}")
            return

        response = JsonRpcResponse.from_dict(message)
        if response.is_error:
            delivered = self.correlator.reject(
                request_id,
                PeerError(
                    response.error_code,
                    response.error_message,
                    response.error.get("data"),
                ),
            )
        elif response.has_result:
            delivered = self.correlator.resolve(request_id, response.result)
        else:
            delivered = self.correlator.reject(
                request_id,
                ProtocolError(f"Response {request_id!r} carries neither result nor error"),
            )

        if not delivered:
            self._log.warning(f"Response for unknown or completed request id: {request_id!r}")

    def _handle_server_message(self, method: str, message: dict[str, Any]) -> None:
        request_id = message.get("id")

        if method == "ping":
            pong = JsonRpcRequest(method="pong", id=request_id)
            self._log.debug(f"Sending pong response: {pong.to_json()}")
            self._reply(pong.to_dict())
            return

        if request_id is None:
            self._log.debug(f"Ignoring server notification: {method}")
            return

        self._log.warning(f"Server sent unsupported request '{method}', replying with an error")
        self._reply({
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"},
        })

    def _reply(self, message: dict[str, Any]) -> None:
        try:
            self._write(message)
        except (MCPClientError, OSError) as e:
            # The exit path rejects whatever is still pending
            self._log.warning(f"Could not reply to server: {e}")

    def _fail(self, error: FramingError) -> None:
        self._log.error(f"{error}. Raw response: {error.raw[:500]!r}")
        self.error = error
        self._framer.reset()
        self.correlator.reject_all(error)
        if self._on_fatal is not None:
            self._on_fatal(error)

    def connection_lost(self, returncode: int | None) -> None:
        """The server process is gone: fail everything still pending."""
        if self._framer.buffered:
            self._log.warning(
                f"Server exited with {self._framer.buffered} unterminated byte(s) buffered"
            )
            self._framer.reset()
        self.correlator.reject_all(ProcessExitedError(returncode))
