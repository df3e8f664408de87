"""Inbound webhooks from Maystro and EcoManager, and the stored event log."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import uuid
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.errors import NotFoundError, ValidationError
from orderdesk.logging_config import get_logger
from orderdesk.models import Order, WebhookEvent
from orderdesk.services.ecomanager_service import apply_confirmation_change, ingest_order
from orderdesk.services.result import Result
from orderdesk.services.status_codes import map_status, order_status_for_label
from orderdesk.timeutils import ensure_timezone, utcnow

logger = get_logger("webhook_service")

SOURCE_MAYSTRO = "MAYSTRO"
SOURCE_ECOMANAGER = "ECOMANAGER"

STATS_PERIODS = {"24h": timedelta(hours=24), "7d": timedelta(days=7), "30d": timedelta(days=30)}
MAX_PAGE_SIZE = 100


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256=") :]
    return hmac.compare_digest(expected, provided.lower())


def decode_maystro_body(body: dict) -> dict:
    """Unwrap push-subscription envelopes (base64 JSON in ``message.data``)."""
    message = body.get("message") if isinstance(body, dict) else None
    if isinstance(message, dict) and message.get("data"):
        try:
            decoded = base64.b64decode(message["data"]).decode("utf-8")
            return json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise ValidationError(f"Invalid webhook envelope: {exc}", "INVALID_WEBHOOK_PAYLOAD") from exc
    return body


def record_event(
    db: Session,
    *,
    source: str,
    event_type: str,
    payload: dict,
    order_reference: Optional[str] = None,
) -> WebhookEvent:
    event = WebhookEvent(
        id=uuid.uuid4(),
        source=source,
        event_type=event_type or "unknown",
        order_reference=order_reference,
        payload=payload,
        processed=False,
    )
    db.add(event)
    db.commit()
    return event


def apply_maystro_status_change(db: Session, payload: dict) -> Result[Order]:
    """Apply an ``OrderStatusChanged`` push to the matching order."""
    data = payload.get("payload") or {}
    reference = str(data.get("external_order_id") or "").strip()
    if not reference:
        return Result.failure("external_order_id missing", "INVALID_WEBHOOK_PAYLOAD")

    order = db.query(Order).filter(Order.reference == reference).first()
    if not order:
        return Result.failure(f"Order not found for reference: {reference}", "ORDER_NOT_FOUND")

    label = map_status(data.get("status"))
    order.shipping_status = label
    tracking = data.get("display_id_order")
    if tracking and str(tracking) != settings.corrupted_tracking_number:
        order.tracking_number = str(tracking)
    new_status = order_status_for_label(label)
    if new_status:
        order.status = new_status
    db.commit()
    return Result.success(order)


def _dispatch(db: Session, event: WebhookEvent) -> Result:
    payload = event.payload or {}
    if event.source == SOURCE_MAYSTRO:
        if event.event_type == "OrderStatusChanged":
            return apply_maystro_status_change(db, payload)
        return Result.failure(f"Unhandled Maystro event {event.event_type}", "UNHANDLED_EVENT")

    if event.event_type == "OrderCreated":
        order, _ = ingest_order(db, payload, settings.ecomanager_store_identifier)
        return Result.success(order)
    if event.event_type == "OrderConfirmationStatusChanged":
        order = apply_confirmation_change(db, payload)
        if order is None:
            return Result.failure("Order not found", "ORDER_NOT_FOUND")
        return Result.success(order)
    return Result.failure(f"Unhandled EcoManager event {event.event_type}", "UNHANDLED_EVENT")


def process_event(db: Session, event: WebhookEvent) -> Result:
    try:
        result = _dispatch(db, event)
    except (ValidationError, ValueError, KeyError, TypeError) as exc:
        db.rollback()
        result = Result.failure(str(exc), "PROCESSING_ERROR")

    if result.ok:
        event.processed = True
        event.processed_at = utcnow()
        event.error_message = None
    else:
        event.error_message = result.error
        logger.warning(
            f"Webhook event not processed: {result.error}",
            extra={"context": {"event_id": str(event.id), "source": event.source, "type": event.event_type}},
        )
    db.commit()
    return result


def handle_maystro_webhook(db: Session, body: dict) -> tuple[WebhookEvent, Result]:
    payload = decode_maystro_body(body)
    reference = (payload.get("payload") or {}).get("external_order_id")
    event = record_event(
        db,
        source=SOURCE_MAYSTRO,
        event_type=payload.get("event") or "unknown",
        payload=payload,
        order_reference=str(reference) if reference else None,
    )
    return event, process_event(db, event)


def handle_ecomanager_webhook(db: Session, event_type: str, body: dict) -> tuple[WebhookEvent, Result]:
    event = record_event(
        db,
        source=SOURCE_ECOMANAGER,
        event_type=event_type,
        payload=body,
        order_reference=body.get("reference"),
    )
    return event, process_event(db, event)


def event_to_dict(event: WebhookEvent) -> dict[str, Any]:
    created_at = ensure_timezone(event.created_at)
    processed_at = ensure_timezone(event.processed_at)
    return {
        "id": str(event.id),
        "source": event.source,
        "event_type": event.event_type,
        "order_reference": event.order_reference,
        "processed": event.processed,
        "processed_at": processed_at.isoformat() if processed_at else None,
        "error_message": event.error_message,
        "retry_count": event.retry_count,
        "created_at": created_at.isoformat() if created_at else None,
        "payload": event.payload,
    }


def list_events(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    source: Optional[str] = None,
    processed: Optional[bool] = None,
    event_type: Optional[str] = None,
) -> dict[str, Any]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    query = db.query(WebhookEvent)
    if source:
        query = query.filter(WebhookEvent.source == source.upper())
    if processed is not None:
        query = query.filter(WebhookEvent.processed.is_(processed))
    if event_type:
        query = query.filter(WebhookEvent.event_type == event_type)

    total = query.count()
    events = query.order_by(WebhookEvent.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "events": [event_to_dict(event) for event in events],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


def get_event(db: Session, event_id) -> WebhookEvent:
    event = db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
    if not event:
        raise NotFoundError("Webhook event not found", "WEBHOOK_EVENT_NOT_FOUND")
    return event


def retry_event(db: Session, event_id) -> Result:
    event = get_event(db, event_id)
    if event.processed:
        return Result.failure("Webhook event already processed", "ALREADY_PROCESSED")
    event.retry_count = (event.retry_count or 0) + 1
    db.commit()
    return process_event(db, event)


def delete_event(db: Session, event_id) -> None:
    event = get_event(db, event_id)
    db.delete(event)
    db.commit()


def get_webhook_stats(db: Session, period: str = "24h") -> dict[str, Any]:
    if period not in STATS_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(STATS_PERIODS)}", "INVALID_PERIOD")
    since = utcnow() - STATS_PERIODS[period]
    base = db.query(WebhookEvent).filter(WebhookEvent.created_at >= since)

    total = base.count()
    processed = base.filter(WebhookEvent.processed.is_(True)).count()
    by_type = (
        db.query(WebhookEvent.event_type, func.count(WebhookEvent.id))
        .filter(WebhookEvent.created_at >= since)
        .group_by(WebhookEvent.event_type)
        .all()
    )
    return {
        "period": period,
        "total_events": total,
        "processed_events": processed,
        "failed_events": total - processed,
        "success_rate": round(processed / total * 100, 2) if total else 0.0,
        "events_by_type": {event_type: count for event_type, count in by_type},
    }
