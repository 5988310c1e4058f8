"""
Handler Factory for main app
Provides a single point of import for all handlers with proper dependency injection
"""

from .base_handler import BaseHandler
from .agent_handler import AgentHandler
from .bridge_handler import BridgeHandler
from .health_handler import HealthHandler
from .tool_handler import ToolHandler


class HandlerFactory:
    """
    Factory class that initializes and manages all handlers
    Provides a single point of access for all handler functionality
    """

    def __init__(self, service, logger, relay=None, streams=None):
        self.service = service
        self.logger = logger

        self.agents = AgentHandler(service, logger)
        self.tools = ToolHandler(service, logger)
        self.health = HealthHandler(streams)
        self.bridge = BridgeHandler(relay, streams, logger)


__all__ = [
    'HandlerFactory', 'BaseHandler',
    'AgentHandler', 'ToolHandler', 'HealthHandler', 'BridgeHandler'
]
