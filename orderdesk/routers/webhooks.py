"""Provider webhooks and webhook event management."""

import json
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.database import get_db
from orderdesk.errors import ConflictError, UnauthorizedError, ValidationError
from orderdesk.logging_config import get_logger
from orderdesk.routers.deps import ok, rate_limit, require_admin_token
from orderdesk.services import webhook_service

logger = get_logger("routers.webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _parse_json(raw_body: bytes) -> dict:
    try:
        body = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON", "INVALID_JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", "INVALID_JSON")
    return body


@router.post("/maystro", dependencies=[Depends(rate_limit)])
async def maystro_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_maystro_signature: Optional[str] = Header(default=None, alias="X-Maystro-Signature"),
):
    raw_body = await request.body()
    if not webhook_service.verify_signature(raw_body, x_maystro_signature, settings.maystro_webhook_secret):
        logger.warning("Rejected Maystro webhook with invalid signature")
        raise UnauthorizedError("Invalid signature", "INVALID_SIGNATURE")

    event, result = webhook_service.handle_maystro_webhook(db, _parse_json(raw_body))
    # Always 200 once stored: failed events are retried from the event log.
    return {
        "success": result.ok,
        "event_id": str(event.id),
        "message": "processed" if result.ok else result.error,
    }


@router.get("/ecomanager")
def ecomanager_validation():
    return PlainTextResponse("OK")


@router.post("/ecomanager", dependencies=[Depends(rate_limit)])
async def ecomanager_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_ecomanager_signature: Optional[str] = Header(default=None, alias="X-EcoManager-Signature"),
    x_ecomanager_event: Optional[str] = Header(default=None, alias="X-EcoManager-Event"),
    x_ecomanager_webhook_id: Optional[str] = Header(default=None, alias="X-EcoManager-Webhook-Id"),
):
    if not x_ecomanager_signature or not x_ecomanager_event or not x_ecomanager_webhook_id:
        raise ValidationError("Missing required headers", "MISSING_HEADERS")

    raw_body = await request.body()
    if not webhook_service.verify_signature(raw_body, x_ecomanager_signature, settings.ecomanager_webhook_secret):
        logger.warning(
            "Rejected EcoManager webhook with invalid signature",
            extra={"context": {"webhook_id": x_ecomanager_webhook_id}},
        )
        raise UnauthorizedError("Invalid signature", "INVALID_SIGNATURE")

    event, result = webhook_service.handle_ecomanager_webhook(db, x_ecomanager_event, _parse_json(raw_body))
    return {
        "success": result.ok,
        "event_id": str(event.id),
        "message": "processed" if result.ok else result.error,
    }


@router.get("/events", dependencies=[Depends(require_admin_token)])
def list_webhook_events(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=webhook_service.MAX_PAGE_SIZE),
    source: Optional[str] = None,
    processed: Optional[bool] = None,
    event_type: Optional[str] = Query(default=None, alias="eventType"),
    db: Session = Depends(get_db),
):
    return ok(
        webhook_service.list_events(
            db, page=page, limit=limit, source=source, processed=processed, event_type=event_type
        )
    )


@router.get("/stats", dependencies=[Depends(require_admin_token)])
def webhook_stats(period: str = "24h", db: Session = Depends(get_db)):
    return ok(webhook_service.get_webhook_stats(db, period))


@router.post("/events/{event_id}/retry", dependencies=[Depends(require_admin_token)])
def retry_webhook_event(event_id: UUID, db: Session = Depends(get_db)):
    result = webhook_service.retry_event(db, event_id)
    if result.error_code == "ALREADY_PROCESSED":
        raise ConflictError(result.error, result.error_code)
    if not result.ok:
        return {"success": False, "error": {"message": result.error, "code": result.error_code}}
    return ok({"event_id": str(event_id), "processed": True})


@router.delete("/events/{event_id}", dependencies=[Depends(require_admin_token)])
def delete_webhook_event(event_id: UUID, db: Session = Depends(get_db)):
    webhook_service.delete_event(db, event_id)
    return ok(None, message="Webhook event deleted")
