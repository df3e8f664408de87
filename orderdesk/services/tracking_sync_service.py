"""Shipping status synchronization, strictly partitioned by shipping account.

Every sync run is scoped to one shipping account. Orders are re-checked
against that account before any provider call and again after the batch is
written; writes are conditioned on the account id so a row that moved
between read and write is never touched.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.errors import ApiError, ValidationError
from orderdesk.logging_config import ShippingAccountLogger, get_logger
from orderdesk.models import Order, ShippingAccount, ShippingCompany
from orderdesk.services.alert_service import alert_critical, alert_error
from orderdesk.services.maystro_service import (
    ProviderError,
    ProviderOrder,
    UnsupportedProviderError,
    get_provider_client,
)
from orderdesk.services.shipping_account_service import ClientFactory, get_account, list_accounts, record_usage
from orderdesk.services.status_codes import FINAL_SHIPPING_LABELS, order_status_for_label
from orderdesk.timeutils import utcnow

logger = get_logger("tracking_sync_service")

MAX_DETAILS = 50
RECONCILE_SCAN_LIMIT = 50000


@dataclass
class SyncResult:
    shipping_account_id: str
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    not_found: int = 0
    errors: int = 0
    rejected: int = 0
    cancelled: bool = False
    details: list[dict[str, Any]] = field(default_factory=list)

    def add_detail(self, order, changes: dict[str, Any]) -> None:
        if len(self.details) >= MAX_DETAILS:
            return
        self.details.append(
            {
                "reference": order.reference,
                "status": changes.get("shipping_status", order.shipping_status),
                "tracking_number": changes.get("tracking_number", order.tracking_number),
            }
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "shipping_account_id": self.shipping_account_id,
            "processed": self.processed,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "not_found": self.not_found,
            "errors": self.errors,
            "rejected": self.rejected,
            "cancelled": self.cancelled,
            "details": self.details,
        }


def _chunks(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _load_candidates(
    db: Session,
    account: ShippingAccount,
    *,
    store_filter: Optional[str],
    references: Optional[list[str]],
    max_orders: int,
) -> list:
    sentinel = settings.corrupted_tracking_number
    columns = (
        Order.id,
        Order.reference,
        Order.shipping_account_id,
        Order.tracking_number,
        Order.shipping_status,
        Order.provider_order_id,
        Order.status,
    )
    if references:
        # No account filter here: foreign orders are rejected by the ownership check.
        query = db.query(*columns).filter(Order.reference.in_(references))
    else:
        query = db.query(*columns).filter(
            Order.shipping_account_id == account.id,
            or_(
                Order.tracking_number.is_(None),
                Order.tracking_number == sentinel,
                Order.shipping_status.is_(None),
                Order.shipping_status.notin_(FINAL_SHIPPING_LABELS),
            ),
        )
    if store_filter:
        query = query.filter(Order.store_identifier == store_filter)
    return query.order_by(Order.created_at.desc()).limit(max_orders).all()


def _partition_by_ownership(orders: list, account: ShippingAccount, log) -> tuple[list, list]:
    owned, foreign = [], []
    for order in orders:
        if order.shipping_account_id == account.id:
            owned.append(order)
        else:
            foreign.append(order)

    if foreign:
        sample = [
            {"reference": order.reference, "shipping_account_id": str(order.shipping_account_id)}
            for order in foreign[:10]
        ]
        log.error(
            f"Excluded {len(foreign)} orders that belong to another shipping account",
            context={"rejected": len(foreign), "sample": sample},
        )
        alert_critical(
            "Shipping sync refused orders from another account",
            {"shipping_account_id": str(account.id), "rejected": len(foreign)},
        )
    return owned, foreign


def compute_changes(order, remote: ProviderOrder) -> dict[str, Any]:
    """Fields that differ between the local order and the provider's view of it."""
    changes: dict[str, Any] = {}
    if remote.status_label and remote.status_label != order.shipping_status:
        changes["shipping_status"] = remote.status_label

    tracking = remote.tracking_number
    if tracking and tracking != settings.corrupted_tracking_number and tracking != order.tracking_number:
        changes["tracking_number"] = tracking

    if remote.provider_order_id and remote.provider_order_id != order.provider_order_id:
        changes["provider_order_id"] = remote.provider_order_id

    order_status = order_status_for_label(remote.status_label)
    if order_status and order_status != order.status:
        changes["status"] = order_status
    return changes


def _write_changes(db: Session, order, account: ShippingAccount, changes: dict[str, Any]) -> bool:
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.shipping_account_id == account.id)
        .values(**changes, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def _verify_batch_ownership(db: Session, account: ShippingAccount, order_ids: list, log) -> int:
    if not order_ids:
        return 0
    violations = (
        db.query(Order.reference, Order.shipping_account_id)
        .filter(Order.id.in_(order_ids))
        .filter(or_(Order.shipping_account_id.is_(None), Order.shipping_account_id != account.id))
        .all()
    )
    if violations:
        log.error(
            "Post-batch ownership check failed",
            context={"violations": [row.reference for row in violations[:10]], "count": len(violations)},
        )
        alert_critical(
            "Orders changed shipping account during sync",
            {"shipping_account_id": str(account.id), "count": len(violations)},
        )
    return len(violations)


def sync_tracking_numbers(
    db: Session,
    shipping_account_id,
    store_filter: Optional[str] = None,
    max_orders: Optional[int] = None,
    *,
    references: Optional[list[str]] = None,
    cancel_event: Optional[threading.Event] = None,
    client_factory: Optional[ClientFactory] = None,
) -> SyncResult:
    """Pull tracking numbers and shipment status for one account's orders.

    Raises ValidationError when no account id is given or the account cannot
    be synced in bulk, and NotFoundError when the account does not exist.
    Provider failures are counted per batch and never abort the run.
    """
    if not shipping_account_id:
        raise ValidationError("shipping_account_id is required", "SHIPPING_ACCOUNT_REQUIRED")
    account = get_account(db, shipping_account_id)
    if not account.is_active:
        raise ValidationError("Shipping account is inactive", "SHIPPING_ACCOUNT_INACTIVE")

    log = ShippingAccountLogger(logger, account)
    result = SyncResult(shipping_account_id=str(account.id))
    max_orders = max_orders or settings.sync_max_orders

    try:
        client = (client_factory or get_provider_client)(account)
    except UnsupportedProviderError as exc:
        raise ValidationError(str(exc), "UNSUPPORTED_PROVIDER") from exc
    except ProviderError as exc:
        raise ValidationError(str(exc), "PROVIDER_MISCONFIGURED") from exc

    candidates = _load_candidates(
        db, account, store_filter=store_filter, references=references, max_orders=max_orders
    )
    owned, foreign = _partition_by_ownership(candidates, account, log)
    result.rejected = len(foreign)
    log.info(f"Tracking sync started with {len(owned)} orders", context={"store_filter": store_filter})

    requests = successes = failures = 0
    with client:
        for chunk in _chunks(owned, settings.sync_batch_size):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                log.warning("Tracking sync cancelled", context={"processed": result.processed})
                break

            requests += 1
            result.processed += len(chunk)
            try:
                remote_orders = client.get_orders_by_references([order.reference for order in chunk])
            except ProviderError as exc:
                failures += 1
                result.errors += len(chunk)
                log.error(
                    f"Provider lookup failed for batch: {exc}",
                    context={"batch_size": len(chunk), "status_code": exc.status_code},
                )
                continue
            successes += 1

            written_ids = []
            for order in chunk:
                remote = remote_orders.get(order.reference)
                if remote is None:
                    result.not_found += 1
                    continue
                changes = compute_changes(order, remote)
                if not changes:
                    result.unchanged += 1
                    continue
                if _write_changes(db, order, account, changes):
                    result.updated += 1
                    written_ids.append(order.id)
                    result.add_detail(order, changes)
                else:
                    result.rejected += 1
            db.commit()

            if _verify_batch_ownership(db, account, written_ids, log):
                result.errors += 1

    record_usage(db, account, requests=requests, successes=successes, errors=failures)
    log.info("Tracking sync finished", context={k: v for k, v in result.to_dict().items() if k != "details"})
    return result


def sync_all_accounts(
    db: Session,
    *,
    cancel_event: Optional[threading.Event] = None,
    client_factory: Optional[ClientFactory] = None,
) -> dict[str, Any]:
    """Run the tracking sync for every active Maystro account, one account at a time."""
    summary: dict[str, Any] = {"accounts": [], "failed_accounts": []}
    for account in list_accounts(db, company_slug="maystro", active_only=True):
        if cancel_event is not None and cancel_event.is_set():
            break
        try:
            result = sync_tracking_numbers(db, account.id, cancel_event=cancel_event, client_factory=client_factory)
            summary["accounts"].append(result.to_dict())
        except (ApiError, ProviderError, SQLAlchemyError) as exc:
            db.rollback()
            logger.error(
                f"Tracking sync failed for account {account.name}: {exc}",
                extra={"context": {"shipping_account_id": str(account.id)}},
            )
            alert_error("Tracking sync failed", {"account": account.name, "error": str(exc)})
            summary["failed_accounts"].append({"shipping_account_id": str(account.id), "error": str(exc)})
    return summary


def count_corrupted(db: Session) -> int:
    return db.query(Order).filter(Order.tracking_number == settings.corrupted_tracking_number).count()


def reconcile_corrupted_tracking_numbers(
    db: Session,
    *,
    client_factory: Optional[ClientFactory] = None,
) -> dict[str, Any]:
    """Re-sync orders stuck on the corrupted tracking sentinel, account by account."""
    sentinel = settings.corrupted_tracking_number
    rows = (
        db.query(Order.reference, Order.shipping_account_id)
        .filter(Order.tracking_number == sentinel)
        .order_by(Order.created_at.desc())
        .limit(RECONCILE_SCAN_LIMIT)
        .all()
    )

    groups: dict[Any, list[str]] = defaultdict(list)
    orphaned = 0
    for row in rows:
        if row.shipping_account_id is None:
            orphaned += 1
        else:
            groups[row.shipping_account_id].append(row.reference)

    report: dict[str, Any] = {
        "found": len(rows),
        "orphaned_orders": orphaned,
        "accounts": [],
        "skipped_accounts": [],
        "failed_accounts": [],
    }
    if orphaned:
        logger.warning(f"{orphaned} corrupted orders have no shipping account and cannot be synced")

    for account_id, references in groups.items():
        account = (
            db.query(ShippingAccount)
            .join(ShippingCompany)
            .filter(ShippingAccount.id == account_id)
            .first()
        )
        if account is None:
            report["skipped_accounts"].append(
                {"shipping_account_id": str(account_id), "orders": len(references), "reason": "account_not_found"}
            )
            continue
        if account.company.slug != "maystro":
            report["skipped_accounts"].append(
                {
                    "shipping_account_id": str(account_id),
                    "orders": len(references),
                    "reason": f"unsupported_provider:{account.company.slug}",
                }
            )
            continue
        if not account.is_active:
            report["skipped_accounts"].append(
                {"shipping_account_id": str(account_id), "orders": len(references), "reason": "account_inactive"}
            )
            continue

        try:
            result = sync_tracking_numbers(
                db,
                account.id,
                max_orders=len(references),
                references=references,
                client_factory=client_factory,
            )
            report["accounts"].append(result.to_dict())
        except (ApiError, ProviderError, SQLAlchemyError) as exc:
            db.rollback()
            logger.error(
                f"Corrupted tracking reconciliation failed for account {account.name}: {exc}",
                extra={"context": {"shipping_account_id": str(account.id)}},
            )
            report["failed_accounts"].append({"shipping_account_id": str(account.id), "error": str(exc)})

    report["remaining_corrupted"] = count_corrupted(db)
    logger.info(
        "Corrupted tracking reconciliation finished",
        extra={"context": {k: report[k] for k in ("found", "orphaned_orders", "remaining_corrupted")}},
    )
    return report
