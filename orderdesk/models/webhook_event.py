import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, Uuid

from orderdesk.database import Base
from orderdesk.timeutils import utcnow


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source = Column(String(32), nullable=False, index=True)  # MAYSTRO, ECOMANAGER
    event_type = Column(String(64), nullable=False)
    order_reference = Column(String(64))
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True))
    error_message = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
