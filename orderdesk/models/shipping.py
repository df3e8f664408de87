import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, Uuid
from sqlalchemy.orm import relationship

from orderdesk.database import Base
from orderdesk.timeutils import utcnow


class ShippingCompany(Base):
    __tablename__ = "shipping_companies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    slug = Column(String(32), unique=True, nullable=False)  # maystro, guepex, nord_west
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    accounts = relationship("ShippingAccount", back_populates="company")


class ShippingAccount(Base):
    __tablename__ = "shipping_accounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("shipping_companies.id"), nullable=False)
    credentials = Column(JSON, nullable=False, default=dict)
    base_url = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    is_primary = Column(Boolean, nullable=False, default=False)

    request_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True))
    last_test_at = Column(DateTime(timezone=True))
    last_test_status = Column(String(16))
    last_test_error = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    company = relationship("ShippingCompany", back_populates="accounts")
