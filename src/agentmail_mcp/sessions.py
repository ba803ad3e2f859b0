"""
Session store and idle-session cleanup for the HTTP transport.

A session pairs one streamable HTTP transport with the protocol server
bound to it. Sessions live only in process memory.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ProtocolServer(Protocol):
    """What the transport needs from a protocol server."""

    async def serve(self, read_stream: Any, write_stream: Any) -> None:
        ...


class SessionTransport(Protocol):
    """What the transport needs from a per-session duplex binding."""

    def connect(self) -> Any:
        """Async context manager yielding (read_stream, write_stream)."""
        ...

    async def handle_request(self, scope, receive, send) -> None:
        ...

    async def terminate(self) -> None:
        ...


def short_session_id(session_id: str) -> str:
    """Truncated form of a session id, safe to log."""
    return f"{session_id[:8]}..."


@dataclass
class Session:
    """One client's ongoing protocol conversation."""
    id: str
    transport: SessionTransport
    server: ProtocolServer
    last_activity: float

    def touch(self, now: float) -> None:
        self.last_activity = now

    @property
    def short_id(self) -> str:
        return short_session_id(self.id)


class SessionStore:
    """
    Bounded mapping of session id to Session.

    All access happens on the event loop thread and none of these
    methods suspend, so each call is atomic with respect to request
    handlers and the cleanup sweep.
    """

    def __init__(self, max_sessions: int = 1000):
        self.max_sessions = max_sessions
        self._sessions: dict[str, Session] = {}

    @property
    def is_full(self) -> bool:
        return len(self._sessions) >= self.max_sessions

    def add(self, session: Session) -> bool:
        """
        Register a session.

        Returns:
            False if the store is at capacity (nothing is registered)

        Raises:
            ValueError: a session with the same id already exists
        """
        if self.is_full:
            return False
        if session.id in self._sessions:
            raise ValueError(f"Duplicate session id: {session.short_id}")
        self._sessions[session.id] = session
        return True

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[Session]:
        """Remove a session. Removing an unknown id is a no-op returning None."""
        return self._sessions.pop(session_id, None)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def clear(self) -> list[Session]:
        """Remove every session and return them."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        return sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


class CleanupScheduler:
    """
    Background sweep that evicts idle sessions.

    Example:
        scheduler = CleanupScheduler(store, session_timeout=1800, check_interval=300)
        await scheduler.start()

        # To stop:
        await scheduler.stop()
    """

    def __init__(
        self,
        store: SessionStore,
        session_timeout: float = 30 * 60,
        check_interval: float = 5 * 60,
        clock: Callable[[], float] = time.monotonic,
        on_expired: Optional[Callable[[Session], Awaitable[None]]] = None
    ):
        self.store = store
        self.session_timeout = session_timeout
        self.check_interval = check_interval
        self.clock = clock
        self.on_expired = on_expired

        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            f"Session cleanup started (timeout={self.session_timeout}s, "
            f"interval={self.check_interval}s)"
        )

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session cleanup stopped")

    def is_running(self) -> bool:
        return self._running

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.check_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Session cleanup error: {e}")

    async def sweep(self) -> list[str]:
        """
        Evict every session idle for longer than the timeout.

        "now" is read once per sweep; each session's last activity is read
        when that session is inspected, so a session touched while earlier
        evictions are being closed is kept.

        Returns:
            Ids of the evicted sessions
        """
        now = self.clock()
        expired: list[str] = []

        for session_id in self.store.ids():
            session = self.store.get(session_id)
            if session is None:
                continue
            if now - session.last_activity <= self.session_timeout:
                continue

            self.store.remove(session_id)
            expired.append(session_id)
            logger.info(f"Cleaning up expired session: {session.short_id}")

            if self.on_expired:
                try:
                    await self.on_expired(session)
                except Exception as e:
                    logger.error(f"Error closing expired session {session.short_id}: {e}")

        return expired
