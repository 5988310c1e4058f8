"""
Relay Service - carries a unary request to the process holding its session

Each request gets a pending state object that moves CREATED -> PUBLISHED ->
(RESOLVED | TIMED_OUT). The reply channel is subscribed before the request is
published; whichever of reply, timeout or caller cancellation comes first
settles the request, and only that one releases the reply subscription.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from toolhub.entity.entity import RequestEnvelope, ResponseEnvelope
from toolhub.pkg.redisclient.redisclient import (
    BrokerChannel,
    BrokerError,
    request_channel,
    response_channel,
)


class RelayState(str, Enum):
    CREATED = "created"
    PUBLISHED = "published"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


@dataclass
class RelayResult:
    status: int
    body: str


@dataclass
class PendingRequest:
    request_id: str
    session_id: str
    envelope: RequestEnvelope
    future: asyncio.Future
    deadline: float
    created_at: float = field(default_factory=time.monotonic)
    state: RelayState = RelayState.CREATED
    timer: Optional[asyncio.Task] = None

    @property
    def reply_channel(self) -> str:
        return response_channel(self.session_id, self.request_id)


class RequestRelay:
    def __init__(self, broker: BrokerChannel, logger: logging.Logger, timeout: float = 10.0):
        self.broker = broker
        self.logger = logger
        self.timeout = timeout
        self._pending: Dict[str, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def relay(
        self,
        session_id: Optional[str],
        method: str,
        url: str,
        headers: Optional[Dict[str, Any]] = None,
        body: str = "",
    ) -> RelayResult:
        if not session_id:
            self.logger.info("No sessionId provided, returning 400")
            return RelayResult(400, "No sessionId provided")

        request_id = str(uuid.uuid4())
        envelope = RequestEnvelope(
            requestId=request_id,
            url=url,
            method=method,
            body=body,
            headers=headers or {},
        )
        pending = PendingRequest(
            request_id=request_id,
            session_id=session_id,
            envelope=envelope,
            future=asyncio.get_running_loop().create_future(),
            deadline=time.monotonic() + self.timeout,
        )
        self._pending[request_id] = pending

        try:
            await self.broker.subscribe(
                pending.reply_channel,
                lambda message: self._on_reply(request_id, message),
            )
        except BrokerError as e:
            self._pending.pop(request_id, None)
            self.logger.error(f"Failed to subscribe to {pending.reply_channel}: {e}")
            return RelayResult(500, f"Internal server error: {e}")
        except asyncio.CancelledError:
            self.logger.info(f"Caller cancelled request {request_id} while subscribing")
            await asyncio.shield(self._settle(request_id, None, RelayState.RESOLVED))
            raise

        pending.timer = asyncio.create_task(self._expire(request_id))
        try:
            await self.broker.publish(request_channel(session_id), envelope.model_dump_json())
        except BrokerError as e:
            await self._settle(request_id, RelayResult(500, f"Internal server error: {e}"), RelayState.RESOLVED)
        else:
            if pending.state == RelayState.CREATED:
                pending.state = RelayState.PUBLISHED
            self.logger.info(f"Published request {request_id} to {request_channel(session_id)}")

        try:
            return await pending.future
        except asyncio.CancelledError:
            # Caller went away; the handler side keeps running, its reply is dropped
            self.logger.info(f"Caller cancelled request {request_id}, releasing reply channel")
            await asyncio.shield(self._settle(request_id, None, RelayState.RESOLVED))
            raise

    async def _on_reply(self, request_id: str, message: str):
        try:
            response = ResponseEnvelope.model_validate_json(message)
            result = RelayResult(response.status, response.body)
        except ValidationError as e:
            self.logger.error(f"Failed to parse response for request {request_id}: {e}")
            result = RelayResult(500, f"Failed to parse response: {e}")
        await self._settle(request_id, result, RelayState.RESOLVED)

    async def _expire(self, request_id: str):
        pending = self._pending.get(request_id)
        if pending is None:
            return
        await asyncio.sleep(max(0.0, pending.deadline - time.monotonic()))
        self.logger.warning(f"Request {request_id} timed out after {self.timeout} seconds")
        await self._settle(request_id, RelayResult(408, "Request timed out"), RelayState.TIMED_OUT)

    async def _settle(self, request_id: str, result: Optional[RelayResult], state: RelayState):
        """First caller wins; later ones find nothing to settle"""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        pending.state = state
        if pending.timer and pending.timer is not asyncio.current_task():
            pending.timer.cancel()

        try:
            await self.broker.unsubscribe(pending.reply_channel)
        except BrokerError as e:
            self.logger.error(f"Failed to unsubscribe from {pending.reply_channel}: {e}")

        if result is not None and not pending.future.done():
            pending.future.set_result(result)
