"""
Bridge Routes - Event stream and relayed message endpoints
"""

from typing import Optional

from fastapi import APIRouter, Query, Request

from ..handlers import HandlerFactory


def create_bridge_routes(handlers: HandlerFactory) -> APIRouter:
    """Create the streaming session and message relay routes"""
    router = APIRouter(tags=["Tool Bridge"])

    @router.get(
        "/sse",
        summary="Open Event Stream",
        description="Open a tool session and stream its events (requires Accept: text/event-stream)",
    )
    async def open_stream(request: Request):
        return await handlers.bridge.open_stream(request)

    @router.post(
        "/message",
        summary="Post Session Message",
        description="Relay a tool protocol message to the process holding the session",
    )
    async def post_message(request: Request, sessionId: Optional[str] = Query(None)):
        return await handlers.bridge.post_message(request, sessionId)

    return router
