"""Per-wilaya delivery deadlines and delivery-delay calculation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from orderdesk.cache import delete_keys, get_cache, read_json, write_json
from orderdesk.errors import NotFoundError
from orderdesk.logging_config import get_logger
from orderdesk.models import RESOLVED_STATUSES, Order, WilayaDeliverySetting
from orderdesk.services.status_codes import DELIVERED_LABEL
from orderdesk.timeutils import ensure_timezone, utcnow

logger = get_logger("wilaya_service")

SETTINGS_CACHE_KEY = "orderdesk:wilaya:settings:all"
UNIQUE_WILAYAS_CACHE_KEY = "orderdesk:wilaya:unique:orders"
SETTINGS_CACHE_TTL = 3600
UNIQUE_WILAYAS_CACHE_TTL = 1800

DEFAULT_MAX_DELIVERY_DAYS = 2
DELIVERED_MARKERS = {DELIVERED_LABEL, "DELIVERED"}


def setting_to_dict(setting: WilayaDeliverySetting) -> dict[str, Any]:
    return {
        "id": str(setting.id),
        "wilaya_name": setting.wilaya_name,
        "max_delivery_days": setting.max_delivery_days,
        "is_active": setting.is_active,
    }


def invalidate_cache() -> None:
    delete_keys(get_cache(), SETTINGS_CACHE_KEY, UNIQUE_WILAYAS_CACHE_KEY)


def list_settings(db: Session) -> list[dict[str, Any]]:
    cache = get_cache()
    cached = read_json(cache, SETTINGS_CACHE_KEY)
    if cached is not None:
        return cached
    settings_list = [
        setting_to_dict(setting)
        for setting in db.query(WilayaDeliverySetting).order_by(WilayaDeliverySetting.wilaya_name).all()
    ]
    write_json(cache, SETTINGS_CACHE_KEY, settings_list, SETTINGS_CACHE_TTL)
    return settings_list


def list_unique_wilayas(db: Session) -> list[str]:
    cache = get_cache()
    cached = read_json(cache, UNIQUE_WILAYAS_CACHE_KEY)
    if cached is not None:
        return cached
    rows = (
        db.query(Order.wilaya)
        .filter(Order.wilaya.isnot(None), Order.wilaya != "")
        .distinct()
        .order_by(Order.wilaya)
        .all()
    )
    wilayas = [row.wilaya for row in rows]
    write_json(cache, UNIQUE_WILAYAS_CACHE_KEY, wilayas, UNIQUE_WILAYAS_CACHE_TTL)
    return wilayas


def upsert_settings(db: Session, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Create or update one setting per wilaya. A name repeated in ``items`` keeps its last entry."""
    latest: dict[str, dict[str, Any]] = {}
    for item in items:
        latest[item["wilaya_name"].strip()] = item
    results = []
    for name, item in latest.items():
        setting = db.query(WilayaDeliverySetting).filter(WilayaDeliverySetting.wilaya_name == name).first()
        if setting is None:
            setting = WilayaDeliverySetting(id=uuid.uuid4(), wilaya_name=name)
            db.add(setting)
        setting.max_delivery_days = item["max_delivery_days"]
        if item.get("is_active") is not None:
            setting.is_active = item["is_active"]
        results.append(setting)
    db.commit()
    invalidate_cache()
    logger.info(f"Upserted {len(results)} wilaya settings")
    return [setting_to_dict(setting) for setting in results]


def _get_setting(db: Session, setting_id) -> WilayaDeliverySetting:
    setting = db.query(WilayaDeliverySetting).filter(WilayaDeliverySetting.id == setting_id).first()
    if not setting:
        raise NotFoundError("Wilaya setting not found", "WILAYA_SETTING_NOT_FOUND")
    return setting


def update_setting(
    db: Session,
    setting_id,
    *,
    max_delivery_days: Optional[int] = None,
    is_active: Optional[bool] = None,
) -> dict[str, Any]:
    setting = _get_setting(db, setting_id)
    if max_delivery_days is not None:
        setting.max_delivery_days = max_delivery_days
    if is_active is not None:
        setting.is_active = is_active
    db.commit()
    invalidate_cache()
    return setting_to_dict(setting)


def delete_setting(db: Session, setting_id) -> None:
    setting = _get_setting(db, setting_id)
    db.delete(setting)
    db.commit()
    invalidate_cache()


def initialize_settings(db: Session) -> dict[str, int]:
    """Create a default deadline for every wilaya seen in orders that has none yet."""
    existing = {row.wilaya_name for row in db.query(WilayaDeliverySetting.wilaya_name).all()}
    wilayas = [
        row.wilaya
        for row in db.query(Order.wilaya).filter(Order.wilaya.isnot(None), Order.wilaya != "").distinct().all()
    ]
    created = 0
    for wilaya in wilayas:
        if wilaya in existing:
            continue
        db.add(WilayaDeliverySetting(id=uuid.uuid4(), wilaya_name=wilaya, max_delivery_days=DEFAULT_MAX_DELIVERY_DAYS))
        created += 1
    db.commit()
    invalidate_cache()
    return {"created": created, "total_wilayas": len(wilayas)}


def _deadline_map(db: Session) -> dict[str, int]:
    return {
        item["wilaya_name"]: item["max_delivery_days"]
        for item in list_settings(db)
        if item.get("is_active", True)
    }


def is_delivered(shipping_status: Optional[str]) -> bool:
    return bool(shipping_status) and shipping_status.upper() in DELIVERED_MARKERS


def compute_delivery_delay(
    *,
    order_date: datetime,
    max_delivery_days: int,
    shipping_status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or utcnow()
    days_since_order = max((now - ensure_timezone(order_date)).days, 0)
    delay_days = max(0, days_since_order - max_delivery_days)
    delivered = is_delivered(shipping_status)

    level = "none"
    if not delivered:
        if delay_days >= 2:
            level = "critical"
        elif delay_days >= 1:
            level = "warning"
    return {
        "max_delivery_days": max_delivery_days,
        "days_since_order": days_since_order,
        "delay_days": delay_days,
        "is_delayed": level != "none",
        "delay_level": level,
        "is_delivered": delivered,
    }


def get_order_delivery_delay(db: Session, order_id, now: Optional[datetime] = None) -> dict[str, Any]:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found", "ORDER_NOT_FOUND")
    max_days = _deadline_map(db).get(order.wilaya, DEFAULT_MAX_DELIVERY_DAYS)
    delay = compute_delivery_delay(
        order_date=order.created_at,
        max_delivery_days=max_days,
        shipping_status=order.shipping_status,
        now=now,
    )
    return {"order_id": str(order.id), "reference": order.reference, "wilaya": order.wilaya, **delay}


def get_delay_statistics(db: Session, now: Optional[datetime] = None) -> dict[str, Any]:
    """Delay counts over open, not yet delivered orders, with a per-wilaya breakdown."""
    deadlines = _deadline_map(db)
    orders = (
        db.query(Order.wilaya, Order.created_at, Order.shipping_status)
        .filter(Order.status.notin_(RESOLVED_STATUSES), Order.tracking_number.isnot(None))
        .all()
    )
    totals = {"total_orders": 0, "delayed_orders": 0, "warning_level": 0, "critical_level": 0}
    by_wilaya: dict[str, dict[str, int]] = {}
    for row in orders:
        if is_delivered(row.shipping_status):
            continue
        delay = compute_delivery_delay(
            order_date=row.created_at,
            max_delivery_days=deadlines.get(row.wilaya, DEFAULT_MAX_DELIVERY_DAYS),
            shipping_status=row.shipping_status,
            now=now,
        )
        bucket = by_wilaya.setdefault(row.wilaya or "unknown", {"total": 0, "delayed": 0, "critical": 0})
        totals["total_orders"] += 1
        bucket["total"] += 1
        if delay["is_delayed"]:
            totals["delayed_orders"] += 1
            bucket["delayed"] += 1
            if delay["delay_level"] == "critical":
                totals["critical_level"] += 1
                bucket["critical"] += 1
            else:
                totals["warning_level"] += 1
    return {**totals, "by_wilaya": by_wilaya}
