"""
Agent Handler - Manages agent registry operations
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from .base_handler import BaseHandler


class AgentHandler(BaseHandler):
    """Handler for agent registry operations"""

    async def list_agents(
        self,
        chain_ids: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        verified_only: Optional[str] = None,
    ):
        try:
            agents = await self.service.list_agents(
                verified_only=self.parse_flag(verified_only),
                chain_ids=self.parse_csv(chain_ids),
                offset=offset,
                limit=limit,
            )
            self.log_info("Agents listed", count=len(agents), offset=offset, limit=limit)
            return self.to_json(agents)
        except Exception as e:
            self.log_error("Error fetching agents", e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch agents"
            )

    async def create_agent(self, body: Dict[str, Any]):
        try:
            agent = await self.service.create_agent(body)
        except ValueError as e:
            self.log_warning("Rejected agent registration", reason=str(e))
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except Exception as e:
            self.log_error("Error creating agent", e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to create agent"
            )
        self.log_info("Agent created", agent_id=agent.id, name=agent.name)
        return JSONResponse(status_code=status.HTTP_201_CREATED, content=self.to_json(agent))

    async def get_agent(self, agent_id: str):
        """Get agent by ID"""
        try:
            self.log_debug("Fetching agent by ID", agent_id=agent_id)
            agent = await self.service.get_agent(agent_id)
            if agent:
                return self.to_json(agent)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Agent not found"
            )
        except HTTPException:
            raise
        except Exception as e:
            self.log_error("Error fetching agent", e, agent_id=agent_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch agent"
            )
