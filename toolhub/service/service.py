from typing import Dict, List, Optional

from pydantic import ValidationError

from toolhub.entity.entity import AgentInDB
from toolhub.pkg.redisclient.redisclient import PingCounter
from toolhub.repository.repository import Repository

REQUIRED_AGENT_FIELDS = [
    "name",
    "accountId",
    "description",
    "instructions",
    "tools",
    "image",
    "repo",
    "generatedDescription",
]

# Tools served by the platform itself rather than by a registered agent
PRIMITIVE_TOOL_NAMES = [
    "create-drop",
    "generate-evm-tx",
    "generate-image",
    "generate-transaction",
    "getSwapTransactions",
    "getTokenMetadata",
    "render-chart",
    "share-twitter",
    "sign-message",
    "submit-query",
    "transfer-ft",
]


def sort_by_pings(items: List[Dict]) -> List[Dict]:
    return sorted(items, key=lambda item: item.get("pings") or 0, reverse=True)


def tool_name(tool: Dict) -> str:
    return (tool.get("function") or {}).get("name", "")


class Service:
    def __init__(self, repo: Repository, pings: PingCounter, logger):
        self.repo = repo
        self.pings = pings
        self.logger = logger

    ## Agent Registry Service Methods

    async def list_agents(
        self,
        verified_only: bool = True,
        chain_ids: Optional[List[str]] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> List[Dict]:
        agents = await self.repo.query_agents(verified_only, chain_ids, offset, limit)
        pings = await self.pings.get_agent_pings([agent["id"] for agent in agents])
        self.logger.info(f"SERVICE: Found {len(agents)} agents")
        return sort_by_pings([{**agent, "pings": pings.get(agent["id"], 0)} for agent in agents])

    async def create_agent(self, agent_data: Dict) -> AgentInDB:
        """Register a new, unverified agent. Raises ValueError on an incomplete body."""
        missing = [field for field in REQUIRED_AGENT_FIELDS if field not in agent_data]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        data = {key: value for key, value in agent_data.items() if key not in ("id", "verified")}
        try:
            agent = AgentInDB(**data)
        except ValidationError as e:
            raise ValueError(f"Invalid agent: {e}") from e

        self.logger.info(f"SERVICE: Creating agent {agent.name} with id {agent.id}")
        await self.repo.create_agent(agent.model_dump())
        return agent

    async def get_agent(self, agent_id: str) -> Optional[Dict]:
        return await self.repo.get_agent_by_id(agent_id)

    ## Tool Registry Service Methods

    async def list_tools(
        self,
        function_name: Optional[str] = None,
        verified_only: bool = True,
        offset: int = 0,
        chain_id: Optional[str] = None,
    ) -> List[Dict]:
        tools = await self.repo.query_tools(verified_only, function_name, chain_id, offset)
        names = [tool_name(tool) for tool in tools]
        pings = await self.pings.get_tool_pings(names)

        tools = [
            {
                **tool,
                "isPrimitive": tool.get("id") in PRIMITIVE_TOOL_NAMES,
                "pings": pings.get(tool_name(tool), 0),
            }
            for tool in tools
        ]
        self.logger.info(f"SERVICE: Found {len(tools)} tools")
        return sort_by_pings(tools)
