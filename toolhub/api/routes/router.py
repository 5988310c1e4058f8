"""
Main Router - Combines all feature-specific routes
"""

from fastapi import APIRouter

from .agent_routes import create_agent_routes
from .bridge_routes import create_bridge_routes
from .health_routes import create_health_routes
from .tool_routes import create_tool_routes
from ..handlers import HandlerFactory


def create_router(handlers: HandlerFactory, logger) -> APIRouter:
    """
    Create the registry API router by combining all feature-specific routes
    """
    router = APIRouter()

    router.include_router(create_agent_routes(handlers))
    router.include_router(create_tool_routes(handlers))

    logger.info("Registry routes registered")
    return router


def create_root_router(handlers: HandlerFactory, logger) -> APIRouter:
    """Routes served outside the versioned prefix: the bridge and the health check"""
    router = APIRouter()

    router.include_router(create_health_routes(handlers))
    router.include_router(create_bridge_routes(handlers))

    logger.info("Bridge routes registered")
    return router
