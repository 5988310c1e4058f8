"""
Stream Service - long-lived event streams that own the bridge's sessions
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

from starlette.requests import Request

from toolhub.pkg.redisclient.redisclient import BrokerChannel, BrokerError, event_channel, session_channel
from toolhub.service.session_registry import Session, SessionNotFoundError, SessionRegistry
from toolhub.service.session_worker import SessionWorker
from toolhub.service.tool_server import ToolServer

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_CLOSE_SENTINEL = object()


class StreamState(str, Enum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"
    CLIENT_ABORT = "client_abort"
    MAX_DURATION = "max_duration"
    SERVER_ERROR = "server_error"
    CLOSED = "closed"


def sse_frame(payload: Union[str, Dict[str, Any]]) -> str:
    if not isinstance(payload, str):
        payload = json.dumps(payload)
    return f"data: {payload}\n\n"


def now_ms() -> int:
    return int(time.time() * 1000)


class StreamingSession:
    """
    One event-stream connection and the session it owns.

    open() registers the session, arms its lifetime timer and subscribes its
    event and request channels;
    frames() yields SSE frames until the client leaves, the lifetime runs out or
    the session is closed from the server side. close() releases everything
    exactly once, however many teardown triggers fire.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        broker: BrokerChannel,
        server_factory: Callable[[], ToolServer],
        logger: logging.Logger,
        keepalive_interval: float = 30.0,
        lifetime: float = 795.0,
        handler_timeout: float = 8.0,
        disconnect_poll_interval: float = 1.0,
    ):
        self.registry = registry
        self.broker = broker
        self.server_factory = server_factory
        self.logger = logger
        self.keepalive_interval = keepalive_interval
        self.lifetime = lifetime
        self.handler_timeout = handler_timeout
        self.disconnect_poll_interval = disconnect_poll_interval

        self.state = StreamState.CONNECTING
        self.session: Optional[Session] = None
        self.worker: Optional[SessionWorker] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._heartbeat: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._events_subscribed = False
        self.close_reason: Optional[StreamState] = None
        self._closing = False
        self._closed = asyncio.Event()

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id if self.session else None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def open(self) -> bool:
        """Create the session and its subscriptions. False when subscribing failed."""
        self.session = await self.registry.create_session(self.server_factory, self._publish_event)
        self.session.add_cleanup(self._on_session_closed)
        self.logger.info(f"Created session ID for event stream: {self.session_id}")
        self._watchdog = asyncio.create_task(self._expire())

        try:
            await self.broker.subscribe(event_channel(self.session_id), self._forward_event)
            self._events_subscribed = True
            self.worker = SessionWorker(self.session, self.broker, self.handler_timeout)
            await self.worker.start()
        except BrokerError as e:
            self.logger.error(f"Subscription error for session {self.session_id}: {e}")
            self.state = StreamState.SERVER_ERROR
            self._queue.put_nowait({
                "type": "error",
                "message": "Failed to establish subscription",
                "error": str(e),
            })
            self._queue.put_nowait(_CLOSE_SENTINEL)
            return False

        self.state = StreamState.SUBSCRIBED
        await self._announce("client_connected")
        self._heartbeat = asyncio.create_task(self._beat())
        return True

    async def frames(self, request: Optional[Request] = None) -> AsyncIterator[str]:
        """SSE frames for the client; always ends with close()"""
        reason = StreamState.CLIENT_ABORT
        deadline = time.monotonic() + self.lifetime
        try:
            yield sse_frame({"type": "connection", "status": "established", "sessionId": self.session_id})
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logger.info(f"Stream for session {self.session_id} reached its maximum duration")
                    reason = StreamState.MAX_DURATION
                    return
                if request is not None and await request.is_disconnected():
                    self.logger.info(f"Client disconnected from session {self.session_id}")
                    reason = StreamState.CLIENT_ABORT
                    return
                try:
                    item = await asyncio.wait_for(
                        self._queue.get(), timeout=min(remaining, self.disconnect_poll_interval)
                    )
                except asyncio.TimeoutError:
                    continue
                if item is _CLOSE_SENTINEL:
                    reason = self.state if self.state == StreamState.SERVER_ERROR else StreamState.CLOSED
                    return
                if self.state == StreamState.SUBSCRIBED:
                    self.state = StreamState.STREAMING
                yield sse_frame(item)
        finally:
            # Starlette cancels this generator on disconnect; cleanup must still finish
            await asyncio.shield(self.close(reason))

    async def close(self, reason: StreamState = StreamState.CLOSED):
        """Release the session's resources. Later calls wait for the first to finish."""
        if self._closing:
            await self._closed.wait()
            return
        self._closing = True
        self.close_reason = StreamState.SERVER_ERROR if self.state == StreamState.SERVER_ERROR else reason
        self.logger.info(f"Cleaning up stream resources for session {self.session_id} | reason={self.close_reason.value}")

        if self._heartbeat:
            self._heartbeat.cancel()
            self._heartbeat = None
        if self._watchdog and self._watchdog is not asyncio.current_task():
            self._watchdog.cancel()
        self._watchdog = None

        if self.session is not None:
            if self.worker is not None:
                await self.worker.stop()
            if self._events_subscribed:
                try:
                    await self.broker.unsubscribe(event_channel(self.session_id))
                except BrokerError as e:
                    self.logger.error(f"Error during stream cleanup for session {self.session_id}: {e}")
                self._events_subscribed = False
            await self._announce("client_disconnected")
            try:
                await self.registry.deregister(self.session_id)
            except SessionNotFoundError:
                pass
            except Exception as e:
                self.logger.error(f"Failed to deregister session {self.session_id}: {e}")

        self.state = StreamState.CLOSED
        self._closed.set()

    async def _publish_event(self, session_id: str, message: Dict[str, Any]):
        await self.broker.publish(event_channel(session_id), json.dumps(message))

    async def _forward_event(self, message: str):
        self.logger.debug(f"Received event for session {self.session_id}: {message}")
        self._queue.put_nowait(message)

    def _on_session_closed(self):
        # Server-side close ends the stream too
        self._queue.put_nowait(_CLOSE_SENTINEL)

    async def _announce(self, kind: str):
        payload = {"type": kind, "sessionId": self.session_id, "timestamp": now_ms()}
        try:
            await self.broker.publish(session_channel(self.session_id), json.dumps(payload))
        except BrokerError as e:
            self.logger.error(f"Failed to publish {kind} for session {self.session_id}: {e}")

    async def _expire(self):
        # Runs whether or not frames() is ever iterated
        await asyncio.sleep(self.lifetime)
        self.logger.info(f"Session {self.session_id} reached its maximum duration")
        await self.close(StreamState.MAX_DURATION)

    async def _beat(self):
        while True:
            await asyncio.sleep(self.keepalive_interval)
            self._queue.put_nowait({"type": "ping", "timestamp": now_ms()})


class StreamService:
    """Builds streaming sessions wired to the process-wide broker and registry"""

    def __init__(self, registry: SessionRegistry, broker: BrokerChannel,
                 server_factory: Callable[[], ToolServer], logger: logging.Logger,
                 keepalive_interval: float = 30.0, lifetime: float = 795.0, handler_timeout: float = 8.0):
        self.registry = registry
        self.broker = broker
        self.server_factory = server_factory
        self.logger = logger
        self.keepalive_interval = keepalive_interval
        self.lifetime = lifetime
        self.handler_timeout = handler_timeout
        self._streams: List[StreamingSession] = []

    @classmethod
    def from_settings(cls, registry: SessionRegistry, broker: BrokerChannel,
                      server_factory: Callable[[], ToolServer], logger: logging.Logger, settings) -> "StreamService":
        return cls(
            registry,
            broker,
            server_factory,
            logger,
            keepalive_interval=settings.KEEPALIVE_INTERVAL,
            lifetime=settings.stream_lifetime,
            handler_timeout=settings.HANDLER_TIMEOUT,
        )

    @property
    def session_count(self) -> int:
        return len(self.registry)

    async def open_stream(self) -> StreamingSession:
        stream = StreamingSession(
            self.registry,
            self.broker,
            self.server_factory,
            self.logger,
            keepalive_interval=self.keepalive_interval,
            lifetime=self.lifetime,
            handler_timeout=self.handler_timeout,
        )
        self._streams = [s for s in self._streams if not s.closed]
        self._streams.append(stream)
        await stream.open()
        return stream

    async def close_all(self):
        streams, self._streams = self._streams, []
        for stream in streams:
            await stream.close(StreamState.CLOSED)
