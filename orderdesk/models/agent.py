import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, Uuid

from orderdesk.database import Base
from orderdesk.timeutils import utcnow


class AgentRole(str, Enum):
    ADMIN = "ADMIN"
    TEAM_MANAGER = "TEAM_MANAGER"
    COORDINATEUR = "COORDINATEUR"
    AGENT_SUIVI = "AGENT_SUIVI"
    AGENT_CALL_CENTER = "AGENT_CALL_CENTER"
    AGENT_QUALITE = "AGENT_QUALITE"


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_code = Column(String(64), unique=True, nullable=False)
    name = Column(Text, nullable=False)
    role = Column(String(32), nullable=False, default=AgentRole.AGENT_SUIVI.value)
    max_orders = Column(Integer, nullable=False, default=50)
    is_active = Column(Boolean, nullable=False, default=True)
    last_activity_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AgentActivity(Base):
    __tablename__ = "agent_activities"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id"), nullable=False, index=True)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"))
    activity_type = Column(String(32), nullable=False)  # ORDER_ASSIGNED, HEARTBEAT, WENT_OFFLINE
    description = Column(Text)
    metadata_json = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class AgentProductAssignment(Base):
    """Products an agent follows. Orders containing them go to these agents first."""

    __tablename__ = "agent_product_assignments"
    __table_args__ = (UniqueConstraint("agent_id", "product_name", name="uq_agent_product"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    product_name = Column(Text, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
