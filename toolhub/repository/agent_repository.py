"""
Agent Repository - Agent registry documents and the tools they declare
"""
from datetime import datetime, timezone
from typing import List, Optional

from .base_repository import BaseRepository

AGENTS_COLLECTION = "ai-assistants"


class AgentRepository(BaseRepository):
    """Repository for agent registry operations"""

    def __init__(self, db, logger):
        super().__init__(db, logger)
        self.AgentCollection = db[AGENTS_COLLECTION]

    async def ensure_indexes(self):
        """Ensure agent collection indexes"""
        try:
            await self.AgentCollection.create_index("id", unique=True)
            await self.AgentCollection.create_index("verified")
            await self.AgentCollection.create_index("chainIds")
            await self.AgentCollection.create_index("tools.function.name")
            self.logger.info("Agent collection indexes initialized successfully")
        except Exception as e:
            self.logger.warning(f"Error ensuring agent indexes: {e}")

    async def create_agent(self, agent_data: dict):
        """Insert a new agent document and return it as stored"""
        current_time = datetime.now(timezone.utc)
        agent_data.setdefault("created_at", current_time)
        agent_data.setdefault("updated_at", current_time)

        await self.AgentCollection.insert_one(agent_data)
        return await self.get_agent_by_id(agent_data["id"])

    async def get_agent_by_id(self, agent_id: str):
        self.logger.info(f"REPO: Looking for agent with id: {agent_id}")
        result = await self.AgentCollection.find_one({"id": agent_id})
        self.logger.info(f"REPO: Found agent: {result is not None}")
        return self._strip_id(result)

    async def query_agents(
        self,
        verified_only: bool = True,
        chain_ids: Optional[List[str]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ):
        """
        Agents filtered by verification flag and chain ids, in insertion order.

        Chain ids arrive as query-string values, so they are matched against
        the stored ids in their string form.
        """
        query = {"verified": True} if verified_only else {}
        cursor = self.AgentCollection.find(query)
        agents = [self._strip_id(doc) for doc in await cursor.to_list(length=None)]

        if chain_ids:
            wanted = set(chain_ids)
            agents = [
                agent for agent in agents
                if any(str(chain_id) in wanted for chain_id in agent.get("chainIds") or [])
            ]

        if offset or limit:
            end = offset + limit if limit else None
            agents = agents[offset:end]
        return agents

    async def query_tools(
        self,
        verified_only: bool = True,
        function_name: Optional[str] = None,
        chain_id: Optional[str] = None,
        offset: int = 0,
    ):
        """Tools flattened out of agent documents, unique by function name"""
        query = {"verified": True} if verified_only else {}
        projection = {"_id": 0, "tools": 1, "image": 1, "chainIds": 1}
        cursor = self.AgentCollection.find(query, projection)
        agents = await cursor.to_list(length=None)

        needle = function_name.lower() if function_name else None
        tools = []
        seen = set()
        for agent in agents:
            chain_ids = agent.get("chainIds") or []
            if chain_id and chain_id not in [str(c) for c in chain_ids]:
                continue
            for tool in agent.get("tools") or []:
                name = (tool.get("function") or {}).get("name", "")
                if needle and needle not in name.lower():
                    continue
                if name in seen:
                    continue
                seen.add(name)
                tools.append({**tool, "image": agent.get("image"), "chainIds": chain_ids})

        return tools[offset:] if offset else tools
