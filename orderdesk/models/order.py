import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import validates

from orderdesk.database import Base
from orderdesk.timeutils import utcnow


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    CONFIRMED = "CONFIRMED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


RESOLVED_STATUSES = (
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.RETURNED.value,
)


class ShippingAccountReassignmentError(ValueError):
    pass


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_assignment", "assigned_agent_id", "status"),
        Index("ix_orders_shipping_sync", "shipping_account_id", "tracking_number"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference = Column(String(64), unique=True, nullable=False)
    external_id = Column(String(64), index=True)
    store_identifier = Column(String(64), index=True)
    customer_name = Column(Text)
    customer_phone = Column(String(32))
    wilaya = Column(String(64))
    total = Column(Numeric(12, 2))
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)

    assigned_agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id"))
    assigned_at = Column(DateTime(timezone=True))

    shipping_account_id = Column(Uuid(as_uuid=True), ForeignKey("shipping_accounts.id"))
    tracking_number = Column(String(64))
    shipping_status = Column(String(64))
    provider_order_id = Column(String(64))

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @validates("shipping_account_id")
    def _validate_shipping_account_id(self, key, value):
        current = self.shipping_account_id
        if current is not None and value != current:
            raise ShippingAccountReassignmentError(
                f"Order {self.reference} is already bound to shipping account {current}"
            )
        return value


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64))
    sku = Column(String(64))
    title = Column(Text, nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2))
