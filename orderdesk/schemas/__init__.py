from orderdesk.schemas.assignment import (
    AgentCreate,
    AgentProductsUpdate,
    AssignOrderRequest,
    AutoAssignRequest,
    ManualAssignRequest,
)
from orderdesk.schemas.settings import (
    CommissionProfileCreate,
    CommissionValues,
    WilayaSettingItem,
    WilayaSettingsUpsert,
    WilayaSettingUpdate,
)
from orderdesk.schemas.shipping import AttachAccountRequest, StatusTableCheck, SyncRequest

__all__ = [
    "AgentCreate",
    "AgentProductsUpdate",
    "AssignOrderRequest",
    "AutoAssignRequest",
    "ManualAssignRequest",
    "CommissionProfileCreate",
    "CommissionValues",
    "WilayaSettingItem",
    "WilayaSettingsUpsert",
    "WilayaSettingUpdate",
    "AttachAccountRequest",
    "StatusTableCheck",
    "SyncRequest",
]
