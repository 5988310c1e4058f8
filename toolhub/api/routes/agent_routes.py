"""
Agent Routes - Agent registry endpoints
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Path, Query

from ..handlers import HandlerFactory


def create_agent_routes(handlers: HandlerFactory) -> APIRouter:
    """Create agent registry routes"""
    router = APIRouter(prefix="/agents", tags=["Agent Registry"])

    @router.get(
        "",
        summary="List Agents",
        description="List registered agents, most used first",
    )
    async def list_agents(
        chainIds: Optional[str] = Query(None, description="Comma separated chain ids"),
        limit: int = Query(50, ge=0),
        offset: int = Query(0, ge=0),
        verifiedOnly: Optional[str] = Query(None, description="Pass 'false' to include unverified agents"),
    ):
        return await handlers.agents.list_agents(chainIds, limit, offset, verifiedOnly)

    @router.post(
        "",
        status_code=201,
        summary="Register Agent",
        description="Register a new, unverified agent",
    )
    async def create_agent(body: Dict[str, Any] = Body(...)):
        return await handlers.agents.create_agent(body)

    @router.get(
        "/{agent_id}",
        summary="Get Agent",
        description="Retrieve an agent by its id",
    )
    async def get_agent(agent_id: str = Path(..., description="Agent ID")):
        return await handlers.agents.get_agent(agent_id)

    return router
