from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from orderdesk.models import AgentRole


class AutoAssignRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=5000)
    include_offline: bool = False


class AssignOrderRequest(BaseModel):
    include_offline: bool = False


class ManualAssignRequest(BaseModel):
    agent_id: UUID
    admin_id: Optional[str] = None


class AgentCreate(BaseModel):
    agent_code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)
    role: str = AgentRole.AGENT_SUIVI.value
    max_orders: int = Field(default=50, ge=1)

    @field_validator("role")
    @classmethod
    def normalize_role(cls, value: str) -> str:
        role = value.strip().upper()
        if role not in {item.value for item in AgentRole}:
            raise ValueError(f"role must be one of {', '.join(item.value for item in AgentRole)}")
        return role


class AgentProductsUpdate(BaseModel):
    product_names: list[str] = Field(default_factory=list, max_length=500)
