"""
Pytest fixtures for AgentMail MCP Server tests.
"""

import asyncio
import os
from contextlib import asynccontextmanager

import httpx
import pytest
import pytest_asyncio
from starlette.responses import JSONResponse

# Set test environment variables before imports
os.environ["AGENTMAIL_API_KEY"] = "test-api-key"

from agentmail_mcp.config import TransportSettings
from agentmail_mcp.http_transport import HttpTransport


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSessionTransport:
    """
    Stand-in for the streamable HTTP transport.

    connect() yields the transport itself as both streams so a FakeServer
    can wait for it to be terminated.
    """

    def __init__(self, session_id: str):
        self.mcp_session_id = session_id
        self.requests: list[str] = []
        self.terminate_calls = 0
        self.closed = asyncio.Event()

    @asynccontextmanager
    async def connect(self):
        yield self, self

    async def handle_request(self, scope, receive, send) -> None:
        self.requests.append(scope["method"])
        if scope["method"] == "DELETE":
            await self.terminate()
        response = JSONResponse(
            {"jsonrpc": "2.0", "id": 1, "result": {}},
            headers={"mcp-session-id": self.mcp_session_id},
        )
        await response(scope, receive, send)

    async def terminate(self) -> None:
        self.terminate_calls += 1
        self.closed.set()


class FailingHandshakeTransport(FakeSessionTransport):
    """Transport whose first request blows up."""

    async def handle_request(self, scope, receive, send) -> None:
        raise RuntimeError("handshake failed")


class RejectingHandshakeTransport(FakeSessionTransport):
    """Transport that answers the handshake with 400, like a non-initialize POST."""

    async def handle_request(self, scope, receive, send) -> None:
        self.requests.append(scope["method"])
        response = JSONResponse(
            {"jsonrpc": "2.0", "id": "server-error", "error": {"code": -32600, "message": "Bad Request"}},
            status_code=400,
            headers={"mcp-session-id": self.mcp_session_id},
        )
        await response(scope, receive, send)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true, for work finishing in background tasks."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class FakeServer:
    """Protocol server that runs until its transport is terminated."""

    def __init__(self):
        self.served = False

    async def serve(self, read_stream, write_stream) -> None:
        self.served = True
        await read_stream.closed.wait()


class FailingServer:
    async def serve(self, read_stream, write_stream) -> None:
        raise RuntimeError("cannot bind")


async def settle(rounds: int = 5) -> None:
    """Let background server tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport_settings():
    """Small limits so tests can hit them quickly."""
    return TransportSettings(
        max_sessions=3,
        session_timeout=1800,
        cleanup_interval=300,
        rate_limit_window=60,
        rate_limit_max_requests=100,
    )


@pytest.fixture
def transports():
    """Session transports created by the transport under test, in order."""
    return []


@pytest_asyncio.fixture
async def http_transport(clock, transport_settings, transports):
    """HttpTransport wired to fake servers and fake session transports."""

    def transport_factory(session_id: str) -> FakeSessionTransport:
        transport = FakeSessionTransport(session_id)
        transports.append(transport)
        return transport

    transport = HttpTransport(
        server_factory=FakeServer,
        port=8080,
        settings=transport_settings,
        clock=clock,
        transport_factory=transport_factory,
    )
    yield transport
    await transport.stop()


@pytest_asyncio.fixture
async def client(http_transport):
    """httpx client talking to the transport in-process."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=http_transport),
        base_url="http://testserver",
    ) as client:
        yield client
