from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    store_filter: Optional[str] = None
    max_orders: Optional[int] = Field(default=None, ge=1, le=50000)
    references: Optional[list[str]] = None


class AttachAccountRequest(BaseModel):
    shipping_account_id: UUID


class StatusTableCheck(BaseModel):
    codes: dict[str, str]
