"""
Session Registry - tracks the live tool-server sessions held by this process
"""

import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List

from toolhub.service.tool_server import SessionTransport, ToolServer

EventSink = Callable[[str, Dict[str, Any]], Awaitable[None]]


class SessionState(str, Enum):
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionLogAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[session {self.extra['session_id']}] {msg}", kwargs


@dataclass
class Session:
    session_id: str
    server: ToolServer
    transport: SessionTransport
    logger: logging.LoggerAdapter
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: SessionState = SessionState.ACTIVE
    cleanups: List[Callable[[], Any]] = field(default_factory=list)

    def add_cleanup(self, callback: Callable[[], Any]):
        """Register a callback run once when the session is deregistered"""
        self.cleanups.append(callback)


class SessionRegistry:
    """
    Owns every session created by this process. A session stays valid for
    lookups until deregister() completes; afterwards every operation on its
    id raises SessionNotFoundError.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def active_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    async def create_session(self, server_factory: Callable[[], ToolServer], event_sink: EventSink) -> Session:
        """Build a tool server bound to a fresh transport and register it"""
        session_id = str(uuid.uuid4())
        session_logger = SessionLogAdapter(self.logger, {"session_id": session_id})

        async def send(message: Dict[str, Any]):
            await event_sink(session_id, message)

        server = server_factory()
        transport = SessionTransport(session_id, send, session_logger)
        await server.connect(transport)
        session = Session(session_id=session_id, server=server, transport=transport, logger=session_logger)
        server.on_close = lambda: self._on_server_close(session_id)

        self.register(session)
        return session

    def register(self, session: Session) -> str:
        if session.session_id in self._sessions:
            raise ValueError(f"Session {session.session_id} is already registered")
        self._sessions[session.session_id] = session
        self.logger.info(f"Session registered: {session.session_id} | active={len(self._sessions)}")
        return session.session_id

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def deregister(self, session_id: str):
        """Remove a session and release what it holds"""
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)

        session.state = SessionState.CLOSING
        for callback in session.cleanups:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                session.logger.error(f"Session cleanup callback failed: {e}")
        session.cleanups.clear()
        await session.server.close()
        session.state = SessionState.CLOSED
        self.logger.info(f"Session deregistered: {session_id} | active={len(self._sessions)}")

    async def close_all(self):
        for session_id in list(self._sessions):
            await self.deregister(session_id)

    async def _on_server_close(self, session_id: str):
        # Server closed from its own side; deregister() already popped it otherwise
        if session_id in self._sessions:
            await self.deregister(session_id)
