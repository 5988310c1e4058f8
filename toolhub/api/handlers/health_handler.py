"""
Health Handler - Manages health check operations
"""

from ..types import HealthResponse


class HealthHandler:
    """Handler for health check operations"""

    def __init__(self, streams=None):
        self.streams = streams

    async def healthcheck(self) -> HealthResponse:
        """Basic health check endpoint, with the number of sessions this process holds"""
        sessions = self.streams.session_count if self.streams else 0
        return HealthResponse(status="ok", sessions=sessions)
