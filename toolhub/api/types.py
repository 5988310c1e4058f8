from pydantic import BaseModel


# Health API Types
class HealthResponse(BaseModel):
    status: str
    sessions: int
