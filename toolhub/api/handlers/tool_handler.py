"""
Tool Handler - Lists the tools declared by registered agents
"""

from typing import Optional

from fastapi import HTTPException, status

from .base_handler import BaseHandler


class ToolHandler(BaseHandler):

    async def list_tools(self, function: Optional[str] = None, verified_only: Optional[str] = None,
                         offset: int = 0, chain_id: Optional[str] = None):
        try:
            tools = await self.service.list_tools(
                function_name=function or None,
                verified_only=self.parse_flag(verified_only),
                offset=offset,
                chain_id=chain_id or None,
            )
            self.log_info("Tools listed", count=len(tools), function=function, chain_id=chain_id)
            return self.to_json(tools)
        except Exception as e:
            self.log_error("Error fetching tools", e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch tools"
            )
