"""
Bridge Handler - Event streams and the unary requests relayed to them
"""

import asyncio
import json

from fastapi import Request, status
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from .base_handler import BaseHandler
from toolhub.service.stream_service import SSE_HEADERS, StreamState

# Not an IANA status; nginx's code for a client that closed the connection
CLIENT_CLOSED_REQUEST = 499


class BridgeHandler(BaseHandler):
    """
    GET /sse opens a streaming session held by this process. POST /message is
    relayed over the broker to whichever process holds the session.
    """

    def __init__(self, relay, streams, logger, disconnect_poll_interval: float = 0.5):
        super().__init__(relay, logger)
        self.relay = relay
        self.streams = streams
        self.disconnect_poll_interval = disconnect_poll_interval

    async def open_stream(self, request: Request):
        accept = request.headers.get("accept", "")
        if "text/event-stream" not in accept:
            self.log_warning("Rejected stream request without event-stream accept header", accept=accept)
            return Response("Not Acceptable: client must accept text/event-stream",
                            status_code=status.HTTP_406_NOT_ACCEPTABLE)

        stream = await self.streams.open_stream()
        self.log_info("Event stream opened", session_id=stream.session_id, state=stream.state.value)
        # Runs after the response ends, even when frames() never started
        cleanup = BackgroundTask(stream.close, StreamState.CLIENT_ABORT)
        return StreamingResponse(stream.frames(request), headers=SSE_HEADERS,
                                 media_type="text/event-stream", background=cleanup)

    async def post_message(self, request: Request, session_id: str = None):
        body = (await request.body()).decode("utf-8", errors="replace")
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"

        relay_task = asyncio.create_task(
            self.relay.relay(session_id, request.method, url, dict(request.headers), body)
        )
        watcher = asyncio.create_task(self._wait_for_disconnect(request))
        try:
            done, _ = await asyncio.wait({relay_task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watcher.cancel()

        if relay_task not in done:
            self.log_info("Client went away before the relay resolved", session_id=session_id)
            relay_task.cancel()
            await asyncio.gather(relay_task, return_exceptions=True)
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        result = relay_task.result()
        if result.status >= 400:
            self.log_warning("Relayed request failed", session_id=session_id, status=result.status)
        else:
            self.log_debug("Relayed request resolved", session_id=session_id, status=result.status)
        return Response(content=result.body, status_code=result.status, media_type=_media_type(result.body))

    async def _wait_for_disconnect(self, request: Request):
        while not await request.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_interval)


def _media_type(body: str) -> str:
    try:
        json.loads(body)
    except ValueError:
        return "text/plain"
    return "application/json"
