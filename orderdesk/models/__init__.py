from orderdesk.models.agent import Agent, AgentActivity, AgentProductAssignment, AgentRole
from orderdesk.models.order import (
    RESOLVED_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    ShippingAccountReassignmentError,
)
from orderdesk.models.settings import DefaultCommissionSettings, WilayaDeliverySetting
from orderdesk.models.shipping import ShippingAccount, ShippingCompany
from orderdesk.models.webhook_event import WebhookEvent

__all__ = [
    "Agent",
    "AgentActivity",
    "AgentProductAssignment",
    "AgentRole",
    "Order",
    "OrderItem",
    "OrderStatus",
    "RESOLVED_STATUSES",
    "ShippingAccountReassignmentError",
    "ShippingCompany",
    "ShippingAccount",
    "WilayaDeliverySetting",
    "DefaultCommissionSettings",
    "WebhookEvent",
]
