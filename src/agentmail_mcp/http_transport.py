"""
Session-aware HTTP transport for the AgentMail MCP server.

Routes:
- /mcp     Streamable HTTP. POST without mcp-session-id creates a session,
           any request with the header resumes (or closes) that session.
- /sse     Legacy SSE. GET opens a stream backed by an ephemeral protocol
           server; POST ?session_id=... delivers client messages to it.
- /health  Liveness probe.

Every request is host-checked and rate-limited per client address before
routing. Sessions are kept in memory only and are evicted after being idle
for the configured timeout.
"""

import asyncio
import json
import logging
import os
import re
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import Awaitable, Callable, Optional
from urllib.parse import SplitResult, urlsplit

import uvicorn
from mcp.server.sse import SseServerTransport
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.applications import Starlette
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount
from starlette.types import Message, Receive, Scope, Send

from . import __version__, __protocol_version__
from .config import Config, TransportSettings
from .rate_limit import RateLimiter
from .server import create_standalone_server
from .sessions import (
    CleanupScheduler,
    ProtocolServer,
    Session,
    SessionStore,
    SessionTransport,
)

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"
SSE_PATH = "/sse"
HEALTH_PATH = "/health"
MCP_SESSION_ID_HEADER = "mcp-session-id"
SERVICE_NAME = "agentmail-mcp"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

_HOST_PATTERN = re.compile(r"[a-zA-Z0-9.-]+(?::\d+)?")

Handler = Callable[[Scope, Receive, Send], Awaitable[None]]


def validate_host(host: Optional[str], port: int) -> str:
    """
    Return a host safe to build a request URL from.

    Only hostname[:port] with alphanumerics, '.' and '-' is accepted;
    anything else falls back to localhost:<port>.
    """
    if host and _HOST_PATTERN.fullmatch(host):
        return host
    return f"localhost:{port}"


def _request_url(scope: Scope, host: str) -> SplitResult:
    """
    Build the absolute request URL.

    Raises:
        ValueError: the URL is malformed (e.g. port out of range)
    """
    raw_path = scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else scope.get("path", "/")
    query = scope.get("query_string", b"").decode("latin-1")
    url = urlsplit(f"http://{host}{path}" + (f"?{query}" if query else ""))
    # .port is parsed lazily; reading it raises on invalid values
    _port = url.port
    return url


class _SecureSend:
    """ASGI send wrapper that stamps security headers on every response."""

    def __init__(self, send: Send):
        self._send = send
        self.response_started = False
        self.status_code: Optional[int] = None
        self.headers: Optional[MutableHeaders] = None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.response_started = True
            self.status_code = message["status"]
            message.setdefault("headers", [])
            self.headers = MutableHeaders(scope=message)
            for name, value in SECURITY_HEADERS.items():
                self.headers[name] = value
        await self._send(message)

    def established(self, session_id: str) -> bool:
        """True if the response accepted a handshake for session_id."""
        return (
            self.status_code is not None
            and self.status_code < 400
            and self.headers is not None
            and self.headers.get(MCP_SESSION_ID_HEADER) == session_id
        )


class HttpTransport:
    """
    ASGI application owning the session store, the rate limiter and the
    cleanup scheduler.

    Example:
        transport = HttpTransport(lambda: create_standalone_server(config))
        app = Starlette(routes=[Mount("/", app=transport)], lifespan=transport.lifespan)
    """

    def __init__(
        self,
        server_factory: Callable[[], ProtocolServer],
        port: int = 8080,
        settings: Optional[TransportSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        transport_factory: Optional[Callable[[str], SessionTransport]] = None,
        sse_transport: Optional[SseServerTransport] = None
    ):
        self.server_factory = server_factory
        self.port = port
        self.settings = settings or TransportSettings()
        self.clock = clock
        self.transport_factory = transport_factory or self._streamable_transport
        self.sse = sse_transport or SseServerTransport(SSE_PATH)

        self.sessions = SessionStore(max_sessions=self.settings.max_sessions)
        self.rate_limiter = RateLimiter(
            window=self.settings.rate_limit_window,
            max_requests=self.settings.rate_limit_max_requests,
            clock=clock,
        )
        self.cleanup = CleanupScheduler(
            self.sessions,
            session_timeout=self.settings.session_timeout,
            check_interval=self.settings.cleanup_interval,
            clock=clock,
            on_expired=self._close_session,
        )

        self._server_tasks: set[asyncio.Task] = set()
        self._routes: dict[str, Handler] = {
            MCP_PATH: self.handle_mcp_request,
            SSE_PATH: self.handle_sse_request,
            HEALTH_PATH: self.handle_health_check,
        }

    def _streamable_transport(self, session_id: str) -> StreamableHTTPServerTransport:
        return StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=self.settings.json_response,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        await self.cleanup.start()

    async def stop(self) -> None:
        """Stop the sweep, close every session and forget all client state."""
        await self.cleanup.stop()

        sessions = self.sessions.clear()
        for session in sessions:
            await self._close_session(session)

        tasks = list(self._server_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.rate_limiter.clear()
        logger.info(f"HTTP transport stopped, closed {len(sessions)} session(s)")

    @asynccontextmanager
    async def lifespan(self, app=None):
        """Starlette lifespan: start on startup, stop on shutdown."""
        await self.start()
        try:
            yield
        finally:
            await self.stop()

    # -------------------------------------------------------------------------
    # Entry point and routing
    # -------------------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        send = _SecureSend(send)

        host = validate_host(Headers(scope=scope).get("host"), self.port)
        try:
            url = _request_url(scope, host)
        except ValueError:
            await PlainTextResponse("Invalid URL", status_code=400)(scope, receive, send)
            return

        client = scope.get("client")
        client_ip = client[0] if client else "unknown"
        if not self.rate_limiter.check(client_ip):
            logger.warning(f"Rate limit exceeded for {client_ip}")
            response = PlainTextResponse(
                "Too Many Requests",
                status_code=429,
                headers={"Retry-After": str(self.rate_limiter.retry_after(client_ip))},
            )
            await response(scope, receive, send)
            return

        handler = self.dispatch(url.path)
        await handler(scope, receive, send)

    def dispatch(self, path: str) -> Handler:
        """Pick the handler for a path; unknown paths get the 404 responder."""
        return self._routes.get(path, self.handle_not_found)

    # -------------------------------------------------------------------------
    # /mcp - session lifecycle
    # -------------------------------------------------------------------------

    async def handle_mcp_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = Headers(scope=scope).get(MCP_SESSION_ID_HEADER)

        if session_id:
            session = self.sessions.get(session_id)
            if session is None:
                await PlainTextResponse("Session not found", status_code=404)(scope, receive, send)
                return

            session.touch(self.clock())
            try:
                await session.transport.handle_request(scope, receive, send)
            except Exception:
                logger.exception(f"Error handling request for session {session.short_id}")
                await self._error_response(scope, receive, send, 500, "Internal server error")
            return

        if scope["method"] == "POST":
            if self.sessions.is_full:
                await self._at_capacity(scope, receive, send)
                return
            await self._create_session(scope, receive, send)
            return

        await PlainTextResponse("Invalid request", status_code=400)(scope, receive, send)

    async def _create_session(self, scope: Scope, receive: Receive, send: _SecureSend) -> None:
        """
        Register a session and forward the handshake to it.

        The session stays registered only if its transport accepts the
        handshake; a rejected request (not an initialize, bad headers,
        unparsable body) is answered by the transport and the session is
        dropped again.
        """
        session: Optional[Session] = None
        try:
            session_id = uuid.uuid4().hex
            session = Session(
                id=session_id,
                transport=self.transport_factory(session_id),
                server=self.server_factory(),
                last_activity=self.clock(),
            )
            if not self.sessions.add(session):
                await self._at_capacity(scope, receive, send)
                return
            logger.info(f"New AgentMail session created: {session.short_id}")

            started = asyncio.get_running_loop().create_future()
            task = asyncio.create_task(self._run_session(session, started))
            self._server_tasks.add(task)
            task.add_done_callback(self._server_tasks.discard)

            await started
            await session.transport.handle_request(scope, receive, send)

            if not send.established(session.id):
                logger.warning(
                    f"Handshake rejected with status {send.status_code}, "
                    f"dropping session {session.short_id}"
                )
                self._on_transport_closed(session.id)
                await self._close_session(session)
        except Exception:
            logger.exception("Streamable HTTP connection error")
            if session is not None:
                self._on_transport_closed(session.id)
                await self._close_session(session)
            await self._error_response(scope, receive, send, 500, "Internal server error")

    async def _run_session(self, session: Session, started: asyncio.Future) -> None:
        """Run the session's protocol server until its transport closes."""
        try:
            async with session.transport.connect() as (read_stream, write_stream):
                started.set_result(None)
                await session.server.serve(read_stream, write_stream)
        except Exception as e:
            if not started.done():
                started.set_exception(e)
            else:
                logger.error(f"Protocol server for session {session.short_id} failed: {e}")
        finally:
            if not started.done():
                started.cancel()
            self._on_transport_closed(session.id)

    def _on_transport_closed(self, session_id: str) -> None:
        """Deregister a session. Safe to call more than once."""
        session = self.sessions.remove(session_id)
        if session is not None:
            logger.info(f"AgentMail session closed: {session.short_id}")

    async def _close_session(self, session: Session) -> None:
        try:
            await session.transport.terminate()
        except Exception as e:
            logger.error(f"Error terminating session {session.short_id}: {e}")

    async def _at_capacity(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.warning(f"Session limit reached ({self.sessions.max_sessions}), refusing new session")
        response = PlainTextResponse(
            "Server at capacity - too many active sessions",
            status_code=503,
            headers={"Retry-After": str(int(self.settings.cleanup_interval))},
        )
        await response(scope, receive, send)

    # -------------------------------------------------------------------------
    # /sse - legacy streaming binding
    # -------------------------------------------------------------------------

    async def handle_sse_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["method"] == "POST":
            await self.sse.handle_post_message(scope, receive, send)
            return

        try:
            server = self.server_factory()
            async with self.sse.connect_sse(scope, receive, send) as (read_stream, write_stream):
                logger.info("SSE connection established")
                await server.serve(read_stream, write_stream)
        except Exception:
            logger.exception("SSE connection error")
            await self._error_response(scope, receive, send, 500, "SSE connection failed")

    # -------------------------------------------------------------------------
    # Static responders
    # -------------------------------------------------------------------------

    async def handle_health_check(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = JSONResponse({
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "service": SERVICE_NAME,
            "version": __version__,
        })
        await response(scope, receive, send)

    async def handle_not_found(self, scope: Scope, receive: Receive, send: Send) -> None:
        await PlainTextResponse("Not Found", status_code=404)(scope, receive, send)

    async def _error_response(
        self,
        scope: Scope,
        receive: Receive,
        send: _SecureSend,
        status_code: int,
        text: str
    ) -> None:
        """Send an error unless the response is already under way."""
        if send.response_started:
            return
        await PlainTextResponse(text, status_code=status_code)(scope, receive, send)


# =============================================================================
# Server Entry Point
# =============================================================================

def create_app(config: Config, transport: Optional[HttpTransport] = None) -> Starlette:
    """Build the Starlette application serving the HTTP transport."""
    if transport is None:
        transport = HttpTransport(
            server_factory=lambda: create_standalone_server(config),
            port=config.port,
            settings=config.transport,
        )
    app = Starlette(routes=[Mount("/", app=transport)], lifespan=transport.lifespan)
    app.state.transport = transport
    return app


def log_server_start(config: Config) -> None:
    display_url = f"Port {config.port}" if config.is_production else f"http://localhost:{config.port}"
    logger.info(f"AgentMail MCP Server v{__version__} listening on {display_url}")
    logger.info(f"Protocol version: {__protocol_version__}")

    if not config.is_production:
        client_config = {
            "mcpServers": {
                "agentmail": {
                    "url": f"http://localhost:{config.port}{MCP_PATH}",
                },
            },
        }
        logger.info("Put this in your client config:\n" + json.dumps(client_config, indent=2))
        logger.info(f"For backward compatibility, you can also use the {SSE_PATH} endpoint.")


async def run_http_transport(config: Config) -> None:
    """Serve the HTTP transport until interrupted."""
    app = create_app(config)
    log_server_start(config)

    uvicorn_config = uvicorn.Config(
        app,
        host=config.bind_host,
        port=config.port,
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    )
    server = uvicorn.Server(uvicorn_config)
    await server.serve()
