"""
Redis pub/sub channel wrapper shared by every relay component of a process
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

MessageHandler = Callable[[str], Awaitable[None]]


class BrokerError(RuntimeError):
    """Raised when a publish, subscribe or connect against the broker fails"""


def request_channel(session_id: str) -> str:
    return f"requests:{session_id}"


def response_channel(session_id: str, request_id: str) -> str:
    return f"responses:{session_id}:{request_id}"


def event_channel(session_id: str) -> str:
    return f"events:{session_id}"


def session_channel(session_id: str) -> str:
    return f"session:{session_id}"


class BrokerChannel:
    """
    Named-channel publish/subscribe over one Redis publisher connection and one
    subscriber connection.

    Each channel carries exactly one async handler. A single listener task reads
    the subscriber connection and awaits the handler of each message inline, so
    delivery on a channel keeps the broker's order. Handlers must not call
    subscribe() themselves: the confirmation they would wait for is read by the
    same listener.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        subscribe_timeout: float = 5.0,
        poll_interval: float = 1.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.logger = logger or logging.getLogger(__name__)
        self.subscribe_timeout = subscribe_timeout
        self.poll_interval = poll_interval
        self.client = client
        self.pubsub = None

        self._handlers: Dict[str, MessageHandler] = {}
        self._confirmations: Dict[str, asyncio.Event] = {}
        self._activity = asyncio.Event()
        self._connect_lock = asyncio.Lock()
        self._listener: Optional[asyncio.Task] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribed_channels(self) -> List[str]:
        return list(self._handlers)

    async def connect(self) -> "BrokerChannel":
        """Establish the publisher/subscriber pair once; later calls reuse it"""
        if self._connected:
            return self
        async with self._connect_lock:
            if self._connected:
                return self
            if self.client is None and not self.redis_url:
                raise BrokerError("Redis URL is not provided")
            try:
                if self.client is None:
                    self.client = redis.from_url(self.redis_url, decode_responses=True)
                await self.client.ping()
                self.pubsub = self.client.pubsub()
            except (RedisError, OSError) as e:
                self.logger.error(f"Failed to connect to Redis: {e}")
                raise BrokerError(f"Redis connection failed: {e}") from e

            self._listener = asyncio.create_task(self._listen())
            self._connected = True
            self.logger.info("Redis connections established successfully")
        return self

    async def publish(self, channel: str, payload: str) -> int:
        """Fire-and-forget publish. Returns the number of receivers Redis reported."""
        await self.connect()
        try:
            return await self.client.publish(channel, payload)
        except (RedisError, OSError) as e:
            self.logger.error(f"Failed to publish to {channel}: {e}")
            raise BrokerError(f"Failed to publish to {channel}: {e}") from e

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:
        """Register the handler for a channel and return once Redis confirms it"""
        await self.connect()
        if channel in self._handlers:
            raise BrokerError(f"Channel {channel} already has a subscriber")

        confirmed = asyncio.Event()
        self._handlers[channel] = handler
        self._confirmations[channel] = confirmed
        try:
            await self.pubsub.subscribe(channel)
            self._activity.set()
            await asyncio.wait_for(confirmed.wait(), timeout=self.subscribe_timeout)
        except asyncio.TimeoutError:
            self._forget(channel)
            await self._unsubscribe_quietly(channel)
            raise BrokerError(f"Subscription to {channel} was not confirmed within {self.subscribe_timeout}s")
        except asyncio.CancelledError:
            self._forget(channel)
            await asyncio.shield(self._unsubscribe_quietly(channel))
            raise
        except (RedisError, OSError) as e:
            self._forget(channel)
            self.logger.error(f"Failed to subscribe to {channel}: {e}")
            raise BrokerError(f"Failed to subscribe to {channel}: {e}") from e
        self.logger.debug(f"Subscribed to {channel}")

    async def unsubscribe(self, channel: str) -> bool:
        """Drop the channel's handler. Returns False when nothing was subscribed."""
        if not self._forget(channel):
            return False
        try:
            await self.pubsub.unsubscribe(channel)
        except (RedisError, OSError) as e:
            self.logger.error(f"Failed to unsubscribe from {channel}: {e}")
            raise BrokerError(f"Failed to unsubscribe from {channel}: {e}") from e
        self.logger.debug(f"Unsubscribed from {channel}")
        return True

    async def close(self):
        """Stop the listener and release both connections"""
        if not self._connected:
            return
        self._connected = False
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        self._handlers.clear()
        self._confirmations.clear()
        try:
            await self.pubsub.aclose()
            await self.client.aclose()
        except (RedisError, OSError) as e:
            self.logger.warning(f"Error while closing Redis connections: {e}")
        self.logger.info("Redis connections closed")

    def _forget(self, channel: str) -> bool:
        self._confirmations.pop(channel, None)
        return self._handlers.pop(channel, None) is not None

    async def _unsubscribe_quietly(self, channel: str):
        try:
            await self.pubsub.unsubscribe(channel)
        except (RedisError, OSError) as e:
            self.logger.warning(f"Could not roll back subscription to {channel}: {e}")

    async def _listen(self):
        while True:
            # The subscriber connection only exists after the first SUBSCRIBE
            if self.pubsub.connection is None or not self.pubsub.subscribed:
                self._activity.clear()
                await self._activity.wait()
                continue
            try:
                message = await self.pubsub.get_message(timeout=self.poll_interval)
            except (RedisError, OSError) as e:
                self.logger.error(f"Redis subscriber error: {e}")
                await asyncio.sleep(self.poll_interval)
                continue
            if message:
                await self._dispatch(message)

    async def _dispatch(self, message: dict):
        kind = message.get("type")
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")

        if kind == "subscribe":
            confirmed = self._confirmations.pop(channel, None)
            if confirmed:
                confirmed.set()
            return
        if kind != "message":
            return

        handler = self._handlers.get(channel)
        if handler is None:
            # Published before our UNSUBSCRIBE reached Redis
            return
        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            await handler(data)
        except Exception as e:
            self.logger.error(f"Handler for channel {channel} failed: {e}")


AGENT_PINGS_KEY = "smart-action:v1.0:agent:{}:pings"
TOOL_PINGS_KEY = "smart-action:v1.0:tool:{}:pings"


class PingCounter:
    """Reads the usage counters kept next to the broker for agents and tools"""

    def __init__(self, client: redis.Redis, logger: Optional[logging.Logger] = None):
        self.client = client
        self.logger = logger or logging.getLogger(__name__)

    async def _read(self, names: Iterable[str], template: str) -> Dict[str, int]:
        names = list(names)
        if not names:
            return {}
        try:
            values = await self.client.mget([template.format(name) for name in names])
        except (RedisError, OSError) as e:
            # Counters are decoration; listing keeps working without them
            self.logger.warning(f"Failed to read ping counters: {e}")
            values = [None] * len(names)
        return {name: int(value) if value else 0 for name, value in zip(names, values)}

    async def get_agent_pings(self, agent_ids: Iterable[str]) -> Dict[str, int]:
        return await self._read(agent_ids, AGENT_PINGS_KEY)

    async def get_tool_pings(self, tool_names: Iterable[str]) -> Dict[str, int]:
        return await self._read(tool_names, TOOL_PINGS_KEY)
