"""
Tool Routes - Tool registry endpoints
"""

from typing import Optional

from fastapi import APIRouter, Query

from ..handlers import HandlerFactory


def create_tool_routes(handlers: HandlerFactory) -> APIRouter:
    router = APIRouter(prefix="/tools", tags=["Tool Registry"])

    @router.get(
        "",
        summary="List Tools",
        description="List the tools declared by registered agents, unique by function name",
    )
    async def list_tools(
        function: Optional[str] = Query(None, description="Function name substring"),
        verifiedOnly: Optional[str] = Query(None),
        offset: int = Query(0, ge=0),
        chainId: Optional[str] = Query(None, description="Only tools of agents on this chain"),
    ):
        return await handlers.tools.list_tools(function, verifiedOnly, offset, chainId)

    return router
