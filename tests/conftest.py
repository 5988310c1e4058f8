import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, List, Tuple

import pytest

from toolhub.pkg.redisclient.redisclient import BrokerError
from toolhub.service.session_registry import SessionRegistry
from toolhub.service.stream_service import StreamService
from toolhub.service.tools import create_tool_server


class InMemoryBroker:
    """
    Stand-in for BrokerChannel. Messages are delivered by one pump task that
    awaits each channel handler inline, in publish order, like the Redis
    listener does.
    """

    def __init__(self):
        self.handlers: Dict[str, Callable[[str], Awaitable[None]]] = {}
        self.published: List[Tuple[str, str]] = []
        self.subscribe_calls: List[str] = []
        self.unsubscribe_calls: List[str] = []
        self.fail_subscribe = False
        self.fail_publish = False
        self.subscribe_delay = 0.0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump = None

    async def connect(self):
        if self._pump is None:
            self._pump = asyncio.create_task(self._run())
        return self

    async def publish(self, channel: str, payload: str) -> int:
        if self.fail_publish:
            raise BrokerError(f"Failed to publish to {channel}: connection lost")
        await self.connect()
        self.published.append((channel, payload))
        self._queue.put_nowait((channel, payload))
        return 1 if channel in self.handlers else 0

    async def subscribe(self, channel: str, handler) -> None:
        if self.fail_subscribe:
            raise BrokerError(f"Failed to subscribe to {channel}: connection lost")
        if channel in self.handlers:
            raise BrokerError(f"Channel {channel} already has a subscriber")
        await self.connect()
        self.subscribe_calls.append(channel)
        self.handlers[channel] = handler
        if self.subscribe_delay:
            # Confirmation still outstanding; a cancelled caller rolls back
            try:
                await asyncio.sleep(self.subscribe_delay)
            except asyncio.CancelledError:
                self.handlers.pop(channel, None)
                raise

    async def unsubscribe(self, channel: str) -> bool:
        self.unsubscribe_calls.append(channel)
        return self.handlers.pop(channel, None) is not None

    async def close(self):
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None

    def messages(self, channel: str) -> List[dict]:
        return [json.loads(payload) for name, payload in self.published if name == channel]

    async def _run(self):
        while True:
            channel, payload = await self._queue.get()
            handler = self.handlers.get(channel)
            if handler is None:
                continue
            try:
                await handler(payload)
            except Exception as e:
                logging.getLogger("tests.broker").error(f"Handler for {channel} failed: {e}")


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005):
    """Poll until predicate() is truthy or fail the test"""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def logger():
    return logging.getLogger("tests")


@pytest.fixture
async def broker():
    broker = InMemoryBroker()
    yield broker
    await broker.close()


@pytest.fixture
def registry(logger):
    return SessionRegistry(logger)


@pytest.fixture
def server_factory(logger):
    return lambda: create_tool_server("test server", "0.0.1", logger)


@pytest.fixture
async def streams(registry, broker, server_factory, logger):
    service = StreamService(registry, broker, server_factory, logger,
                            keepalive_interval=30.0, lifetime=60.0, handler_timeout=0.5)
    yield service
    await service.close_all()
