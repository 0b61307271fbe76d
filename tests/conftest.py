"""Shared fixtures: a scripted stdio server and a client factory bound to it."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import pytest
import pytest_asyncio

from mcp_stdio.client import StdioClient

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_server.py"

ClientFactory = Callable[..., Awaitable[StdioClient]]


@pytest.fixture
def fake_server_command() -> list[str]:
    """argv that launches the scripted test server."""
    return [sys.executable, str(FAKE_SERVER)]


@pytest_asyncio.fixture
async def make_client(fake_server_command: list[str]) -> AsyncIterator[ClientFactory]:
    """Factory for clients talking to the fake server; all are closed on teardown.

    By default the client is started and the session awaited. Pass
    ``start=False`` or ``wait=False`` to stop earlier in the lifecycle.
    """
    clients: list[StdioClient] = []

    async def _make(
        env: dict[str, str] | None = None,
        *,
        start: bool = True,
        wait: bool = True,
        **options: Any,
    ) -> StdioClient:
        options.setdefault("startup_delay", 0)
        options.setdefault("request_timeout", 10.0)
        client = StdioClient(fake_server_command, env, **options)
        clients.append(client)
        if start:
            await client.start()
            if wait:
                await client.wait_for_session(10.0)
        return client

    yield _make

    for client in clients:
        await client.close()
