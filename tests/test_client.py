"""Integration tests for StdioClient against a scripted server subprocess."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import pytest

from mcp_stdio import filesystem
from mcp_stdio.client import StdioClient
from mcp_stdio.errors import (
    CallTimeoutError,
    ClientClosedError,
    FramingError,
    HandshakeProtocolError,
    InitTimeoutError,
    MCPClientError,
    NotReadyError,
    PeerError,
    ProcessExitedError,
    TransportError,
)
from mcp_stdio.session import SessionState

ClientFactory = Callable[..., Awaitable[StdioClient]]


# ── Handshake ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_handshake_reports_server_identity(make_client: ClientFactory) -> None:
    """After the handshake the session is ready and the server is named."""
    client = await make_client()
    assert client.is_ready()
    assert client.state is SessionState.READY
    assert client.get_server_name() == "demo"
    assert client.server_identity.version == "1.0"
    assert client.init_result["protocolVersion"] == "2024-11-05"
    assert client.is_connected()


@pytest.mark.asyncio
async def test_env_is_layered_over_inherited(make_client: ClientFactory) -> None:
    """Extra variables reach the server alongside the inherited environment."""
    client = await make_client({"FAKE_SERVER_NAME": "alpha", "FAKE_SERVER_VERSION": "2.3"})
    assert client.get_server_name() == "alpha"
    assert client.server_identity.version == "2.3"


@pytest.mark.asyncio
async def test_wait_before_start_raises_not_ready(make_client: ClientFactory) -> None:
    """Waiting on a client that was never started fails immediately."""
    client = await make_client(start=False)
    with pytest.raises(NotReadyError):
        await client.wait_for_session(1.0)


@pytest.mark.asyncio
async def test_call_before_handshake_raises_not_ready(make_client: ClientFactory) -> None:
    """Requests are refused until the handshake completes."""
    client = await make_client(wait=False, startup_delay=0.5)
    assert client.state is SessionState.HANDSHAKING
    with pytest.raises(NotReadyError):
        await client.list_tools()

    await client.wait_for_session(5.0)
    assert await client.list_tools()


@pytest.mark.asyncio
async def test_missing_server_info_defaults(make_client: ClientFactory) -> None:
    """A server that does not introduce itself is 'Unknown' 0.0.0."""
    client = await make_client({"FAKE_SERVER_INIT": "no_info"})
    assert client.get_server_name() == "Unknown"
    assert client.server_identity.version == "0.0.0"


@pytest.mark.asyncio
async def test_missing_protocol_version_fails_handshake(make_client: ClientFactory) -> None:
    """An initialize result without protocolVersion is a protocol error."""
    client = await make_client({"FAKE_SERVER_INIT": "no_version"}, wait=False)
    with pytest.raises(HandshakeProtocolError):
        await client.wait_for_session(5.0)
    assert client.state is SessionState.FAILED
    with pytest.raises(NotReadyError):
        await client.list_tools()


@pytest.mark.asyncio
async def test_rejected_initialize_surfaces_peer_error(make_client: ClientFactory) -> None:
    """A server refusing initialize fails the session with its error."""
    client = await make_client({"FAKE_SERVER_INIT": "error"}, wait=False)
    with pytest.raises(PeerError, match="initialization refused"):
        await client.wait_for_session(5.0)
    assert client.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_silent_server_times_out_handshake(make_client: ClientFactory) -> None:
    """No initialize response within init_timeout fails the session."""
    client = await make_client({"FAKE_SERVER_INIT": "silent"}, wait=False, init_timeout=0.3)
    with pytest.raises(InitTimeoutError) as exc_info:
        await client.wait_for_session(5.0)
    assert exc_info.value.timeout == 0.3
    assert isinstance(exc_info.value, TimeoutError)
    assert client.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_wait_deadline_shorter_than_handshake(make_client: ClientFactory) -> None:
    """wait_for_session gives up at its own deadline."""
    client = await make_client({"FAKE_SERVER_INIT": "silent"}, wait=False, init_timeout=10.0)
    with pytest.raises(InitTimeoutError) as exc_info:
        await client.wait_for_session(0.3)
    assert exc_info.value.timeout == 0.3
    assert client.state is SessionState.HANDSHAKING


@pytest.mark.asyncio
async def test_start_twice_raises(make_client: ClientFactory) -> None:
    """A client is started once."""
    client = await make_client()
    with pytest.raises(RuntimeError, match="already started"):
        await client.start()


@pytest.mark.asyncio
async def test_unlaunchable_command() -> None:
    """A command that cannot be spawned fails start() and the session."""
    client = StdioClient(["/nonexistent/tool-server"], startup_delay=0)
    with pytest.raises(FileNotFoundError):
        await client.start()
    assert client.state is SessionState.FAILED
    with pytest.raises(FileNotFoundError):
        await client.wait_for_session(1.0)
    await client.close()


# ── Calls ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_tools(make_client: ClientFactory) -> None:
    """Declared tools come back as descriptors."""
    client = await make_client()
    tools = await client.list_tools()
    names = [tool.name for tool in tools]
    assert names == ["echo", "read_file", "search_files", "stat"]
    assert tools[0].description == "Echoes back the input message."
    assert tools[3].display_description == "Execute stat tool"


@pytest.mark.asyncio
async def test_call_tool_echo(make_client: ClientFactory) -> None:
    """A tool result is returned as the server sent it."""
    client = await make_client()
    result = await client.call_tool("echo", {"message": "hello"})
    assert result == {"content": [{"type": "text", "text": "hello"}]}
    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_call_tool_error_passthrough(make_client: ClientFactory) -> None:
    """A server error reaches the caller with its message verbatim."""
    client = await make_client()
    with pytest.raises(PeerError) as exc_info:
        await client.call_tool("search_files", {"path": "/tmp", "pattern": "*.ts"})
    assert str(exc_info.value) == "not found"
    assert exc_info.value.code == -32000

    # The channel stays usable
    assert await client.call_tool("echo", {"message": "still here"})


@pytest.mark.asyncio
async def test_unknown_method(make_client: ClientFactory) -> None:
    """Arbitrary requests are allowed; unsupported ones fail with the server's error."""
    client = await make_client()
    with pytest.raises(PeerError) as exc_info:
        await client.request("resources/list")
    assert exc_info.value.code == -32601


@pytest.mark.asyncio
async def test_split_writes(make_client: ClientFactory) -> None:
    """Messages written in pieces are reassembled."""
    client = await make_client({"FAKE_SERVER_SPLIT": "1"})
    assert client.get_server_name() == "demo"
    result = await client.call_tool("echo", {"message": "in two halves"})
    assert result["content"][0]["text"] == "in two halves"


@pytest.mark.asyncio
async def test_concurrent_calls(make_client: ClientFactory) -> None:
    """Many outstanding calls each receive their own result."""
    client = await make_client()
    messages = [f"msg-{i}" for i in range(20)]
    results = await asyncio.gather(
        *(client.call_tool("echo", {"message": m}) for m in messages)
    )
    assert [r["content"][0]["text"] for r in results] == messages
    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_out_of_order_responses(make_client: ClientFactory) -> None:
    """Responses answered newest-first still reach the right callers."""
    client = await make_client()
    deferred = [
        asyncio.create_task(client.call_tool("deferred", {"tag": tag}))
        for tag in ("a", "b", "c")
    ]
    # Let the deferred requests reach the server before the release
    await asyncio.sleep(0.2)
    assert client.pending_count == 3

    released = await client.call_tool("release")
    assert released == {"released": 3}
    results = await asyncio.gather(*deferred)
    assert results == [{"tag": "a"}, {"tag": "b"}, {"tag": "c"}]


@pytest.mark.asyncio
async def test_server_ping_is_answered(make_client: ClientFactory) -> None:
    """A ping from the server gets a pong carrying the same id."""
    client = await make_client()
    result = await client.call_tool("ping_client")
    assert result == {"pong_id": "srv-ping-1", "pong_method": "pong"}


@pytest.mark.asyncio
async def test_duplicate_response_ignored(make_client: ClientFactory) -> None:
    """The first response wins; the duplicate is dropped."""
    client = await make_client()
    assert await client.call_tool("duplicate") == {"copy": 1}
    assert await client.call_tool("echo", {"message": "next"})
    assert client.pending_count == 0


# ── Failures ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_call_timeout(make_client: ClientFactory) -> None:
    """An unanswered call fails after its timeout and frees its slot."""
    client = await make_client()
    with pytest.raises(CallTimeoutError) as exc_info:
        await client.call_tool("hang", timeout=0.3)
    assert exc_info.value.method == "tools/call"
    assert client.pending_count == 0

    # Other calls are unaffected
    assert await client.call_tool("echo", {"message": "ok"})


@pytest.mark.asyncio
async def test_default_request_timeout(make_client: ClientFactory) -> None:
    """request_timeout applies when no per-call timeout is given."""
    client = await make_client(request_timeout=0.3)
    with pytest.raises(CallTimeoutError):
        await client.call_tool("hang")


@pytest.mark.asyncio
async def test_process_exit_fails_pending_calls(make_client: ClientFactory) -> None:
    """When the server dies, every pending call fails with its exit code."""
    client = await make_client()
    hanging = [asyncio.create_task(client.call_tool("hang")) for _ in range(2)]
    await asyncio.sleep(0.1)

    with pytest.raises(ProcessExitedError) as exc_info:
        await client.call_tool("crash", {"code": 1})
    assert exc_info.value.returncode == 1

    outcomes = await asyncio.gather(*hanging, return_exceptions=True)
    for outcome in outcomes:
        assert isinstance(outcome, ProcessExitedError)
        assert outcome.returncode == 1

    assert client.state is SessionState.CLOSED
    assert client.pending_count == 0
    assert not client.is_connected()

    # New calls fail at once instead of waiting for a timeout
    with pytest.raises(ProcessExitedError):
        await asyncio.wait_for(client.call_tool("echo", {"message": "x"}), timeout=1.0)


@pytest.mark.asyncio
async def test_unparseable_output_poisons_channel(make_client: ClientFactory) -> None:
    """Non-JSON output fails pending calls and closes the channel."""
    client = await make_client()
    hanging = asyncio.create_task(client.call_tool("hang"))
    await asyncio.sleep(0.1)

    with pytest.raises(FramingError):
        await client.call_tool("garbage")
    with pytest.raises(FramingError):
        await hanging

    with pytest.raises(MCPClientError):
        await client.call_tool("echo", {"message": "x"})

    for _ in range(50):
        if not client.is_connected():
            break
        await asyncio.sleep(0.1)
    assert client.state is SessionState.CLOSED
    assert not client.is_connected()


# ── Lifecycle ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_close_fails_pending_and_later_calls(make_client: ClientFactory) -> None:
    """close() rejects in-flight calls, stops the server and is idempotent."""
    client = await make_client()
    hanging = asyncio.create_task(client.call_tool("hang"))
    await asyncio.sleep(0.1)

    await client.close()
    with pytest.raises(ClientClosedError):
        await hanging

    assert client.state is SessionState.CLOSED
    assert not client.is_connected()
    with pytest.raises(ClientClosedError):
        await client.call_tool("echo", {"message": "x"})
    with pytest.raises(ClientClosedError):
        await client.wait_for_session(1.0)

    await client.close()


@pytest.mark.asyncio
async def test_close_during_handshake(make_client: ClientFactory) -> None:
    """Closing before the session is ready cancels the handshake."""
    client = await make_client({"FAKE_SERVER_INIT": "silent"}, wait=False)
    await client.close()
    assert client.state is SessionState.CLOSED
    with pytest.raises(ClientClosedError):
        await client.wait_for_session(1.0)


@pytest.mark.asyncio
async def test_async_context_manager(fake_server_command: list[str]) -> None:
    """``async with`` starts, waits for the session and closes."""
    async with StdioClient(fake_server_command, startup_delay=0) as client:
        assert client.is_ready()
        assert client.get_server_name() == "demo"
        assert "state=ready" in repr(client)
    assert client.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_stderr_goes_to_logger(make_client: ClientFactory, caplog: pytest.LogCaptureFixture) -> None:
    """Server stderr is logged through the client's logger, not parsed."""
    logger = logging.getLogger("tests.server-stderr")
    caplog.set_level(logging.INFO, logger=logger.name)

    client = await make_client(logger=logger, name="fake")
    assert await client.call_tool("stderr", {"message": "disk almost full"}) == {"ok": True}

    for _ in range(50):
        if "disk almost full" in caplog.text:
            break
        await asyncio.sleep(0.05)

    records = [r for r in caplog.records if r.name == logger.name]
    assert any("[fake] stderr: disk almost full" in r.getMessage() for r in records)
    assert client.is_ready()


@pytest.mark.asyncio
async def test_unparseably_nested_output_then_exit(make_client: ClientFactory) -> None:
    """A line too deep to parse fails the call even with no timeout, and exit is still seen."""
    client = await make_client(request_timeout=None)

    with pytest.raises(FramingError):
        await asyncio.wait_for(client.call_tool("nested"), timeout=5.0)

    for _ in range(50):
        if client.state is SessionState.CLOSED and client.pending_count == 0:
            break
        await asyncio.sleep(0.1)
    assert client.state is SessionState.CLOSED
    with pytest.raises(MCPClientError):
        await client.call_tool("echo", {"message": "x"})


@pytest.mark.asyncio
async def test_malformed_tool_entries_are_skipped(make_client: ClientFactory) -> None:
    """Entries without a name or not an object are dropped; valid tools remain."""
    client = await make_client({"FAKE_SERVER_BAD_TOOLS": "1"})
    tools = await client.list_tools()
    assert [tool.name for tool in tools] == ["echo", "read_file", "search_files", "stat"]


@pytest.mark.asyncio
async def test_unexpected_send_failure_is_transport_error(
    make_client: ClientFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A send that fails with a non-client exception surfaces as TransportError."""
    client = await make_client()

    async def failing_send(message: dict) -> None:
        raise RuntimeError("stdin unavailable")

    monkeypatch.setattr(client._transport, "send", failing_send)
    with pytest.raises(TransportError, match="stdin unavailable") as exc_info:
        await client.call_tool("echo", {"message": "x"})
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_filesystem_helpers(make_client: ClientFactory) -> None:
    """Filesystem wrappers issue plain tool calls."""
    client = await make_client()
    with pytest.raises(PeerError, match="not found"):
        await filesystem.search_files(client, "/tmp", "*.ts")
    with pytest.raises(PeerError) as exc_info:
        await filesystem.list_allowed_directories(client)
    assert exc_info.value.code == -32602

