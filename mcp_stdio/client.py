"""
Stdio protocol client: one server subprocess, one session.

Usage:
    client = StdioClient(["node", "build/index.js"], env={"API_KEY": "..."})
    await client.start()               # spawns, handshake runs in background
    await client.wait_for_session()    # raises if the handshake failed

    tools = await client.list_tools()
    result = await client.call_tool("search_files", {"path": "/tmp", "pattern": "*.ts"})

    await client.close()

Or, equivalently:
    async with StdioClient(["node", "build/index.js"]) as client:
        ...
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from mcp_stdio.correlator import RequestCorrelator
from mcp_stdio.dispatcher import MessageDispatcher
from mcp_stdio.errors import (
    ClientClosedError,
    FramingError,
    InitTimeoutError,
    MCPClientError,
    NotReadyError,
    ProcessExitedError,
    ProtocolError,
    TransportError,
)
from mcp_stdio.session import (
    PROTOCOL_VERSION,
    UNKNOWN_SERVER,
    ClientInfo,
    ServerIdentity,
    SessionHandshake,
    SessionState,
)
from mcp_stdio.tools import ToolDescriptor
from mcp_stdio.transport import JsonRpcRequest, StdioTransport

SESSION_POLL_INTERVAL = 0.1


class StdioClient:
    """
    JSON-RPC client for a server launched as a subprocess.

    Any number of calls may be outstanding at once; each completes when its
    response arrives, when its timeout fires, or when the process exits,
    whichever comes first.
    """

    def __init__(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        *,
        name: str | None = None,
        client_info: ClientInfo | None = None,
        protocol_version: str = PROTOCOL_VERSION,
        request_timeout: float | None = 30.0,
        init_timeout: float = 30.0,
        startup_delay: float = 1.0,
        logger: logging.Logger | None = None,
    ):
        """
        Args:
            command: Command to launch the server process.
            env: Variables layered over the inherited environment.
            name: Label for log messages (defaults to the executable name).
            client_info: Identity sent in the initialize request.
            protocol_version: Protocol version offered to the server.
            request_timeout: Default per-call timeout in seconds (None = no limit).
            init_timeout: Timeout for the initialize request.
            startup_delay: Grace period between spawning the process and
                           sending initialize. A heuristic only; readiness is
                           decided by wait_for_session().
            logger: Diagnostic sink for every component of this channel.
        """
        self._log = logger or logging.getLogger(__name__)
        self.request_timeout = request_timeout
        self.startup_delay = startup_delay
        self.init_timeout = init_timeout

        self._transport = StdioTransport(command, env, name=name, logger=logger)
        self.name = self._transport.name
        self._correlator = RequestCorrelator(logger=logger)
        self._dispatcher = MessageDispatcher(
            self._correlator,
            self._transport.write,
            logger=logger,
            on_fatal=self._on_framing_error,
        )
        self._handshake = SessionHandshake(
            client_info, protocol_version, init_timeout, logger=logger
        )

        self._state = SessionState.UNINITIALIZED
        self._server_identity = UNKNOWN_SERVER
        self._init_result: dict[str, Any] | None = None
        self._session_error: BaseException | None = None
        self._exit_code: int | None = None
        self._exited = False
        self._closed = False
        self._handshake_task: asyncio.Task | None = None
        self._close_task: asyncio.Task | None = None

    # ── Lifecycle ─────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def server_identity(self) -> ServerIdentity:
        return self._server_identity

    @property
    def init_result(self) -> dict[str, Any] | None:
        """Raw initialize result (capabilities, instructions, ...)."""
        return self._init_result

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    async def start(self) -> None:
        """Spawn the server and begin the handshake in the background."""
        if self._state is not SessionState.UNINITIALIZED:
            raise RuntimeError(f"Client '{self.name}' already started (state: {self._state.value})")

        self._log.debug(f"Starting MCP server: {' '.join(self._transport.command)}")
        self._state = SessionState.HANDSHAKING
        try:
            await self._transport.start(self._dispatcher.feed, self._on_exit)
        except OSError as e:
            self._session_error = e
            self._state = SessionState.FAILED
            self._log.error(f"[{self.name}] Failed to start server process: {e}")
            raise
        self._handshake_task = asyncio.create_task(self._initialize())

    async def _initialize(self) -> None:
        try:
            if self.startup_delay > 0:
                await asyncio.sleep(self.startup_delay)
            identity, result = await self._handshake.run(self._send_request, self._send_notification)
        except Exception as e:
            self._session_error = e
            if self._state is SessionState.HANDSHAKING:
                self._state = SessionState.FAILED
            self._log.error(f"[{self.name}] Failed to initialize session: {e}")
            return

        if self._state is not SessionState.HANDSHAKING:
            return
        self._server_identity = identity
        self._init_result = result
        self._state = SessionState.READY
        self._log.info(f"[{self.name}] session ready: {identity.name} {identity.version}")

    def is_ready(self) -> bool:
        """Non-blocking check of the session state."""
        return self._state is SessionState.READY

    def is_connected(self) -> bool:
        """Check if the server process is running."""
        return not self._closed and self._transport.is_alive()

    async def wait_for_session(self, timeout: float = 30.0) -> None:
        """
        Block until the session is ready.

        Raises:
            InitTimeoutError: Not ready within ``timeout`` seconds.
            ProcessExitedError / PeerError / HandshakeProtocolError: The
                handshake failed; the original error is re-raised.
            ClientClosedError: The client was closed.
        """
        self._log.debug("Waiting for session to be ready...")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.is_ready():
            if self._session_error is not None:
                raise self._session_error
            if self._closed:
                raise ClientClosedError()
            if self._exited:
                raise ProcessExitedError(self._exit_code)
            if self._state is SessionState.UNINITIALIZED:
                raise NotReadyError(self._state.value)
            if loop.time() >= deadline:
                raise InitTimeoutError(timeout)
            await asyncio.sleep(SESSION_POLL_INTERVAL)
        self._log.debug("Session is ready!")

    async def close(self) -> None:
        """Terminate the server process. Safe to call more than once."""
        if self._closed:
            # A close scheduled after a framing error may still be stopping the process
            task = self._close_task
            if task is not None and task is not asyncio.current_task():
                await task
            return
        self._closed = True
        self._state = SessionState.CLOSED

        if self._handshake_task is not None and not self._handshake_task.done():
            self._handshake_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._handshake_task

        self._correlator.reject_all(ClientClosedError())
        await self._transport.stop()
        self._log.debug(f"[{self.name}] client closed")

    async def __aenter__(self) -> "StdioClient":
        await self.start()
        try:
            await self.wait_for_session(self.init_timeout + self.startup_delay)
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Channel events ────────────────────────────────────

    def _on_exit(self, returncode: int | None) -> None:
        self._exited = True
        self._exit_code = returncode
        if not self._closed:
            self._log.warning(f"[{self.name}] server process exited with code {returncode}")
            self._state = SessionState.CLOSED
        self._dispatcher.connection_lost(returncode)

    def _on_framing_error(self, error: FramingError) -> None:
        if self._closed:
            return
        self._log.error(f"[{self.name}] closing channel after framing error")
        self._close_task = asyncio.get_running_loop().create_task(self.close())

    # ── Requests ──────────────────────────────────────────

    def _check_usable(self) -> None:
        if self._closed:
            raise ClientClosedError()
        if self._exited:
            raise ProcessExitedError(self._exit_code)
        if self._dispatcher.error is not None:
            raise FramingError(str(self._dispatcher.error))

    async def _send_request(self, request: JsonRpcRequest, timeout: float | None) -> Any:
        """Send ``request`` under a fresh id and await its result."""
        self._check_usable()
        request.id = self._correlator.next_id()
        future = self._correlator.register(request.id, method=request.method, timeout=timeout)
        try:
            await self._transport.send(request.to_dict())
        except (BrokenPipeError, ConnectionResetError) as e:
            # Exit handling rejects the call with the real exit code
            self._log.debug(f"[{self.name}] write failed for {request.method}: {e}")
        except MCPClientError as e:
            self._correlator.reject(request.id, e)
        except Exception as e:
            error = TransportError(f"Failed to send {request.method}: {e}")
            error.__cause__ = e
            self._correlator.reject(request.id, error)
        return await future

    async def _send_notification(self, notification: JsonRpcRequest) -> None:
        self._check_usable()
        await self._transport.send(notification.to_dict())

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """
        Send an arbitrary request on a ready session.

        Args:
            method: JSON-RPC method name.
            params: Method parameters.
            timeout: Seconds to wait; defaults to ``request_timeout``.
        """
        self._check_usable()
        if self._state is not SessionState.READY:
            raise NotReadyError(self._state.value)
        if timeout is None:
            timeout = self.request_timeout
        request = JsonRpcRequest(method=method, params=params if params is not None else {})
        return await self._send_request(request, timeout)

    async def list_tools(
        self,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[ToolDescriptor]:
        """List the tools the server declares (``tools/list``)."""
        result = await self.request("tools/list", params or {}, timeout=timeout)
        declared = result.get("tools", []) if isinstance(result, dict) else result
        if declared is not None and not isinstance(declared, list):
            raise ProtocolError(f"tools/list returned {type(declared).__name__}, expected a list")

        tools = []
        for entry in declared or []:
            try:
                tools.append(ToolDescriptor.from_dict(entry))
            except ValueError as e:
                self._log.warning(f"[{self.name}] skipping tool: {e}")
        return tools

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """
        Invoke a tool by name (``tools/call``).

        Raises:
            PeerError: The server answered with an error; its message is
                       passed through verbatim.
            CallTimeoutError / ProcessExitedError / FramingError: No answer.
        """
        return await self.request(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            timeout=timeout,
        )

    def get_server_name(self) -> str:
        return self._server_identity.name

    def __repr__(self) -> str:
        return f"StdioClient(name={self.name!r}, state={self._state.value})"
