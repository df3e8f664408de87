from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, joinedload

from orderdesk.errors import NotFoundError, ValidationError
from orderdesk.logging_config import get_logger
from orderdesk.models import Order, ShippingAccount, ShippingCompany
from orderdesk.services.maystro_service import MaystroClient, ProviderError, get_provider_client
from orderdesk.services.result import Result
from orderdesk.timeutils import ensure_timezone, utcnow

logger = get_logger("shipping_account_service")

ClientFactory = Callable[[ShippingAccount], MaystroClient]


def get_account(db: Session, account_id) -> ShippingAccount:
    if not account_id:
        raise ValidationError("shipping_account_id is required", "SHIPPING_ACCOUNT_REQUIRED")
    account = (
        db.query(ShippingAccount)
        .options(joinedload(ShippingAccount.company))
        .filter(ShippingAccount.id == account_id)
        .first()
    )
    if not account:
        raise NotFoundError("Shipping account not found", "SHIPPING_ACCOUNT_NOT_FOUND")
    return account


def list_accounts(db: Session, company_slug: Optional[str] = None, active_only: bool = False) -> list[ShippingAccount]:
    query = db.query(ShippingAccount).join(ShippingCompany).options(joinedload(ShippingAccount.company))
    if company_slug:
        query = query.filter(ShippingCompany.slug == company_slug)
    if active_only:
        query = query.filter(ShippingAccount.is_active.is_(True), ShippingCompany.is_active.is_(True))
    return query.order_by(ShippingCompany.slug, ShippingAccount.name).all()


def account_to_dict(account: ShippingAccount) -> dict[str, Any]:
    last_used = ensure_timezone(account.last_used_at)
    last_test = ensure_timezone(account.last_test_at)
    return {
        "id": str(account.id),
        "name": account.name,
        "company": account.company.slug if account.company else None,
        "is_active": account.is_active,
        "is_primary": account.is_primary,
        "request_count": account.request_count,
        "success_count": account.success_count,
        "error_count": account.error_count,
        "last_used_at": last_used.isoformat() if last_used else None,
        "last_test_at": last_test.isoformat() if last_test else None,
        "last_test_status": account.last_test_status,
        "last_test_error": account.last_test_error,
    }


def record_usage(db: Session, account: ShippingAccount, *, requests: int, successes: int, errors: int) -> None:
    account.request_count = (account.request_count or 0) + requests
    account.success_count = (account.success_count or 0) + successes
    account.error_count = (account.error_count or 0) + errors
    account.last_used_at = utcnow()
    db.commit()


def check_account_connection(
    db: Session,
    account_id,
    client_factory: Optional[ClientFactory] = None,
) -> Result[dict]:
    account = get_account(db, account_id)
    status, error = "success", None
    try:
        with (client_factory or get_provider_client)(account) as client:
            client.test_connection()
    except ProviderError as exc:
        status, error = "failed", str(exc)
        logger.warning(
            "Shipping account connection test failed",
            extra={"context": {"shipping_account_id": str(account.id), "error": error}},
        )

    account.last_test_at = utcnow()
    account.last_test_status = status
    account.last_test_error = error
    db.commit()

    if error:
        return Result.failure(error, "CONNECTION_TEST_FAILED")
    return Result.success(account_to_dict(account))


def attach_shipping_account(db: Session, order_id, account_id) -> Result[Order]:
    """Bind an order to the account it ships with. A bound order never moves to another account."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        return Result.failure("Order not found", "ORDER_NOT_FOUND")
    account = get_account(db, account_id)
    result = db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            or_(Order.shipping_account_id.is_(None), Order.shipping_account_id == account.id),
        )
        .values(shipping_account_id=account.id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        logger.warning(
            "Refused to move order to another shipping account",
            extra={"context": {"order_id": str(order_id), "requested_account_id": str(account_id)}},
        )
        return Result.failure(
            f"Order {order_id} is already bound to another shipping account", "SHIPPING_ACCOUNT_IMMUTABLE"
        )
    db.commit()
    db.refresh(order)
    return Result.success(order)
