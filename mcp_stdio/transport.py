"""
Transport layer for JSON-RPC over a subprocess's stdio.

Implements:
  - JsonRpcRequest / JsonRpcResponse: wire envelopes
  - LineFramer: incremental newline framing over a chunked byte stream
  - StdioTransport: owns the subprocess and pumps its output streams

The transport knows nothing about request ids or sessions. It hands raw
stdout chunks to a callback and reports the exit code when stdout closes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from mcp_stdio.errors import ProcessExitedError


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. ``id=None`` makes it a notification."""
    method: str
    params: dict[str, Any] | None = None
    id: int | str | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": "2.0"}
        if self.id is not None:
            message["id"] = self.id
        message["method"] = self.method
        if self.params is not None:
            message["params"] = self.params
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @property
    def is_notification(self) -> bool:
        return self.id is None


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None
    has_result: bool = False

    @classmethod
    def from_dict(cls, parsed: dict[str, Any]) -> "JsonRpcResponse":
        error = parsed.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"message": str(error)}
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=error,
            has_result="result" in parsed,
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> "JsonRpcResponse":
        return cls.from_dict(json.loads(data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_code(self) -> int | None:
        return self.error.get("code") if self.error else None

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        return str(self.error.get("message", self.error))


class LineFramer:
    """
    Splits a byte stream into newline-delimited messages.

    Chunk boundaries carry no meaning: a partial line is kept in the
    buffer until the newline that completes it arrives.
    """

    def __init__(self):
        self._buffer = b""

    def feed(self, data: bytes) -> list[bytes]:
        """Add a chunk and return every line it completed (blank lines skipped)."""
        self._buffer += data
        if b"\n" not in data:
            return []
        *lines, self._buffer = self._buffer.split(b"\n")
        return [line.strip() for line in lines if line.strip()]

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for a newline."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer = b""


class Transport(ABC):
    """Abstract transport layer for JSON-RPC communication."""

    @abstractmethod
    async def start(
        self,
        on_data: Callable[[bytes], None],
        on_exit: Callable[[int | None], None],
    ) -> None:
        """Start the transport and begin delivering output to ``on_data``."""
        ...

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Write one message and wait until it is flushed."""
        ...

    @abstractmethod
    def write(self, message: dict[str, Any]) -> None:
        """Queue one message without waiting."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport (e.g., terminate subprocess)."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...


class StdioTransport(Transport):
    """
    Newline-delimited JSON-RPC over stdin/stdout pipes to a subprocess.

    stdout is read in fixed-size chunks (never line by line, so a message
    may span any number of reads) and handed to ``on_data``. stderr is
    diagnostic only and goes to the logger.
    """

    def __init__(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        *,
        name: str | None = None,
        logger: logging.Logger | None = None,
        read_size: int = 65536,
        stop_timeout: float = 5.0,
    ):
        """
        Args:
            command: Command to launch the server process.
                     e.g., ["node", "build/index.js"]
            env: Variables layered over the inherited environment.
            name: Label used in log messages (defaults to the executable).
            logger: Diagnostic sink; defaults to this module's logger.
        """
        if not command:
            raise ValueError("Transport command must not be empty")
        self.command = list(command)
        self.env = dict(env or {})
        self.name = name or os.path.basename(self.command[0])
        self.read_size = read_size
        self.stop_timeout = stop_timeout
        self._log = logger or logging.getLogger(__name__)
        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task] = []
        self._on_exit: Callable[[int | None], None] | None = None
        self.returncode: int | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(
        self,
        on_data: Callable[[bytes], None],
        on_exit: Callable[[int | None], None],
    ) -> None:
        """Launch the server subprocess and start the output pumps."""
        if self.is_alive():
            raise RuntimeError(f"Transport '{self.name}' is already running")

        self._log.info(f"Starting stdio transport: {' '.join(self.command)}")
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **self.env},
        )
        self.returncode = None
        self._on_exit = on_exit
        self._readers = [
            asyncio.create_task(self._pump_stdout(self._process, on_data)),
            asyncio.create_task(self._pump_stderr(self._process)),
        ]

    async def _pump_stdout(
        self,
        process: asyncio.subprocess.Process,
        on_data: Callable[[bytes], None],
    ) -> None:
        try:
            while True:
                chunk = await process.stdout.read(self.read_size)
                if not chunk:
                    break
                self._log.debug(f"[{self.name}] <- {chunk!r}")
                try:
                    on_data(chunk)
                except Exception:
                    self._log.exception(f"[{self.name}] error handling server output")
        finally:
            # on_exit must run however the reader ends
            returncode = await process.wait()
            self.returncode = returncode
            self._log.debug(f"[{self.name}] server process exited with code {returncode}")
            if self._on_exit is not None:
                self._on_exit(returncode)

    async def _pump_stderr(self, process: asyncio.subprocess.Process) -> None:
        while True:
            chunk = await process.stderr.read(self.read_size)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace").rstrip()
            if text:
                self._log.info(f"[{self.name}] stderr: {text}")

    def write(self, message: dict[str, Any]) -> None:
        """Queue one JSON line on the subprocess's stdin."""
        process = self._process
        if process is None or process.returncode is not None or process.stdin is None:
            raise ProcessExitedError(self.returncode)
        line = json.dumps(message) + "\n"
        self._log.debug(f"[{self.name}] -> {line.rstrip()}")
        process.stdin.write(line.encode("utf-8"))

    async def send(self, message: dict[str, Any]) -> None:
        """Write one JSON line and drain stdin."""
        self.write(message)
        await self._process.stdin.drain()

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.returncode is None

    async def stop(self) -> None:
        """Terminate the server subprocess."""
        process = self._process
        if process is None:
            return
        self._process = None

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                self._log.warning(f"[{self.name}] did not exit after terminate, killing")
                process.kill()
                await process.wait()

        # stdout may stay open if the server left children behind
        if self._readers:
            _, pending = await asyncio.wait(self._readers, timeout=1.0)
            for task in pending:
                task.cancel()
        self._readers = []
        self._log.info(f"Stdio transport stopped: {self.name}")
