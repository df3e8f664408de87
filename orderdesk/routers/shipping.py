"""Shipping accounts and tracking synchronization endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.errors import ConflictError, NotFoundError, UpstreamError
from orderdesk.routers.deps import ok, rate_limit, require_admin_token
from orderdesk.schemas import AttachAccountRequest, StatusTableCheck, SyncRequest
from orderdesk.services.shipping_account_service import (
    account_to_dict,
    attach_shipping_account,
    check_account_connection,
    list_accounts,
)
from orderdesk.services.status_codes import MAYSTRO_STATUS_TABLE_VERSION, find_label_divergences, status_table
from orderdesk.services.tracking_sync_service import reconcile_corrupted_tracking_numbers, sync_tracking_numbers

router = APIRouter(
    prefix="/api/shipping",
    tags=["shipping"],
    dependencies=[Depends(rate_limit), Depends(require_admin_token)],
)


@router.get("/accounts")
def shipping_accounts(company: Optional[str] = None, db: Session = Depends(get_db)):
    return ok([account_to_dict(account) for account in list_accounts(db, company_slug=company)])


@router.post("/accounts/{account_id}/sync")
def sync_account(account_id: UUID, request: Optional[SyncRequest] = None, db: Session = Depends(get_db)):
    request = request or SyncRequest()
    result = sync_tracking_numbers(
        db,
        account_id,
        store_filter=request.store_filter,
        max_orders=request.max_orders,
        references=request.references,
    )
    return ok(result.to_dict())


@router.post("/accounts/{account_id}/test")
def run_connection_test(account_id: UUID, db: Session = Depends(get_db)):
    result = check_account_connection(db, account_id)
    if not result.ok:
        raise UpstreamError(result.error, result.error_code)
    return ok(result.value)


@router.post("/reconcile-corrupted")
def reconcile_corrupted(db: Session = Depends(get_db)):
    return ok(reconcile_corrupted_tracking_numbers(db))


@router.put("/orders/{order_id}/account")
def attach_account(order_id: UUID, request: AttachAccountRequest, db: Session = Depends(get_db)):
    result = attach_shipping_account(db, order_id, request.shipping_account_id)
    if not result.ok:
        if result.error_code == "ORDER_NOT_FOUND":
            raise NotFoundError(result.error, result.error_code)
        raise ConflictError(result.error, result.error_code)
    return ok({"order_id": str(order_id), "shipping_account_id": str(request.shipping_account_id)})


@router.get("/status-codes")
def status_codes():
    return ok(status_table())


@router.post("/status-codes/check")
def check_status_codes(request: StatusTableCheck):
    divergences = find_label_divergences(request.codes)
    return ok(
        {
            "version": MAYSTRO_STATUS_TABLE_VERSION,
            "consistent": not divergences,
            "divergences": divergences,
        }
    )
