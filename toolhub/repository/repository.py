"""
Main Repository - Combines all repository modules
"""
from .agent_repository import AgentRepository


class Repository:
    """Main repository class that combines all repository modules"""

    def __init__(self, db, logger):
        self.db = db
        self.logger = logger

        self.agents = AgentRepository(db, logger)

    async def ensure_collections(self):
        """Ensure all collections exist and have proper indexes"""
        try:
            await self.agents.ensure_indexes()
            self.logger.info("Database collections and indexes initialized successfully")
        except Exception as e:
            self.logger.warning(f"Error ensuring collections: {e}")
            # Don't fail startup if index creation fails

    # Agent operations (delegate to agent repository)
    async def create_agent(self, agent_data: dict):
        return await self.agents.create_agent(agent_data)

    async def get_agent_by_id(self, agent_id: str):
        return await self.agents.get_agent_by_id(agent_id)

    async def query_agents(self, verified_only: bool = True, chain_ids=None, offset: int = 0, limit=None):
        return await self.agents.query_agents(verified_only, chain_ids, offset, limit)

    async def query_tools(self, verified_only: bool = True, function_name=None, chain_id=None, offset: int = 0):
        return await self.agents.query_tools(verified_only, function_name, chain_id, offset)
