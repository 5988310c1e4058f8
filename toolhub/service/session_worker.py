"""
Session Worker - answers the requests relayed onto a session's request channel
"""

import asyncio
import json
from typing import Optional, Set

from toolhub.entity.entity import RequestEnvelope, ResponseEnvelope
from toolhub.pkg.redisclient.redisclient import BrokerChannel, BrokerError, request_channel, response_channel
from toolhub.pkg.transport.transport import CapturedResponse, create_request, create_response
from toolhub.service.session_registry import Session


class SessionWorker:
    """
    Subscribes requests:{sessionId} and feeds every envelope, in arrival order,
    through the session's tool transport. Each envelope yields exactly one
    response envelope on responses:{sessionId}:{requestId}, including when the
    handler fails or never completes the response.
    """

    def __init__(self, session: Session, broker: BrokerChannel, handler_timeout: float = 8.0):
        self.session = session
        self.broker = broker
        self.handler_timeout = handler_timeout
        self.logger = session.logger
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self.channel = request_channel(session.session_id)

    async def start(self):
        await self.broker.subscribe(self.channel, self._enqueue)
        self._task = asyncio.create_task(self._run())
        self.logger.info(f"Listening on {self.channel}")

    async def stop(self):
        try:
            await self.broker.unsubscribe(self.channel)
        except BrokerError as e:
            self.logger.error(f"Failed to unsubscribe for session {self.session.session_id}: {e}")
        if self._task:
            self._task.cancel()
            self._task = None
        for task in list(self._inflight):
            task.cancel()

    async def _enqueue(self, message: str):
        self._queue.put_nowait(message)

    async def _run(self):
        while True:
            message = await self._queue.get()
            await self.process_message(message)

    async def process_message(self, message: str):
        """Handle one serialized request envelope and publish its response"""
        self.logger.info(f"Received message from Redis: {message}")
        request_id = None
        try:
            envelope = RequestEnvelope.model_validate_json(message)
            request_id = envelope.requestId

            status, body = await self._invoke(envelope)
            await self._publish(request_id, ResponseEnvelope(status=status, body=body))

            if 200 <= status < 300:
                self.logger.info(f"Request {self.session.session_id}:{request_id} succeeded: {body}")
            else:
                self.logger.error(f"Message for {self.session.session_id}:{request_id} failed with status {status}: {body}")
        except Exception as e:
            self.logger.error(f"Error processing message: {e}")
            request_id = request_id or _extract_request_id(message)
            if request_id is None:
                self.logger.error("Cannot answer a message without requestId; caller will time out")
                return
            try:
                await self._publish(request_id, ResponseEnvelope(status=500, body=f"Internal server error: {e}"))
            except BrokerError as publish_error:
                self.logger.error(f"Failed to publish error response: {publish_error}")

    async def _invoke(self, envelope: RequestEnvelope):
        request = create_request(envelope)
        response: CapturedResponse = create_response("capture")

        handler = asyncio.create_task(self.session.transport.handle_post_message(request, response))
        finished = asyncio.create_task(response.wait_finished())
        done, _ = await asyncio.wait(
            {handler, finished}, timeout=self.handler_timeout, return_when=asyncio.FIRST_COMPLETED
        )
        if not finished.done():
            finished.cancel()

        if handler in done and handler.exception() is not None:
            raise handler.exception()

        if not handler.done():
            # Handler keeps running (e.g. sending a reply event); only its ack was needed
            self._inflight.add(handler)
            handler.add_done_callback(self._forget_inflight)

        if response.finished:
            return response.status, response.body
        if handler in done:
            return response.status_code or 204, response.body
        if response.status_code is not None:
            return response.status_code, "Handler timed out, but status was set"
        return 504, "Handler timed out without setting status"

    def _forget_inflight(self, task: asyncio.Task):
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Handler failed after responding: {task.exception()}")

    async def _publish(self, request_id: str, response: ResponseEnvelope):
        channel = response_channel(self.session.session_id, request_id)
        await self.broker.publish(channel, response.model_dump_json())
        self.logger.debug(f"Response published to {channel}")


def _extract_request_id(message: str) -> Optional[str]:
    try:
        request_id = json.loads(message).get("requestId")
    except (json.JSONDecodeError, AttributeError, TypeError):
        return None
    return request_id if isinstance(request_id, str) and request_id else None
