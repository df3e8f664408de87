import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Uuid

from orderdesk.database import Base
from orderdesk.timeutils import utcnow


class WilayaDeliverySetting(Base):
    __tablename__ = "wilaya_delivery_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wilaya_name = Column(String(64), unique=True, nullable=False)
    max_delivery_days = Column(Integer, nullable=False, default=2)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DefaultCommissionSettings(Base):
    __tablename__ = "default_commission_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(64), unique=True, nullable=False, default="default")
    base_commission = Column(Integer, nullable=False)
    tier78_bonus = Column(Integer, nullable=False)
    tier80_bonus = Column(Integer, nullable=False)
    tier82_bonus = Column(Integer, nullable=False)
    upsell_bonus = Column(Integer, nullable=False)
    upsell_min_percent = Column(Integer, nullable=False)
    pack2_bonus = Column(Integer, nullable=False)
    pack2_min_percent = Column(Integer, nullable=False)
    pack4_bonus = Column(Integer, nullable=False)
    pack4_min_percent = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
