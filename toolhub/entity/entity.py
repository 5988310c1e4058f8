from datetime import datetime, timezone
from typing import List, Optional, Any, Dict
from uuid import uuid4

from pydantic import BaseModel, Field


# Broker envelopes. Field names are part of the wire contract shared with
# every process relaying the same sessions, keep them camelCase.
class RequestEnvelope(BaseModel):
    requestId: str
    url: str
    method: str
    body: str = ""
    headers: Dict[str, Any] = {}


class ResponseEnvelope(BaseModel):
    status: int
    body: str = ""


class ToolFunction(BaseModel):
    name: str
    description: str = ""


class ToolExecution(BaseModel):
    baseUrl: str
    path: str
    httpMethod: str


class Tool(BaseModel):
    id: str
    agentId: str
    type: str = "function"
    function: ToolFunction
    execution: Optional[ToolExecution] = None
    image: Optional[str] = None
    isPrimitive: bool = False
    chainIds: List[Any] = []


class AgentBase(BaseModel):
    name: str
    accountId: str
    description: str
    instructions: str
    tools: List[Tool] = []
    image: str
    repo: str
    generatedDescription: str
    chainIds: List[Any] = []

    model_config = {"extra": "allow"}


class AgentInDB(AgentBase):
    id: str = Field(default_factory=lambda: str(uuid4()))
    verified: bool = False

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
