"""EcoManager order source: API client and ingestion of new orders as unassigned."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from sqlalchemy import Integer, cast, func
from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.models import Order, OrderItem, OrderStatus
from orderdesk.services.maystro_service import ProviderError
from orderdesk.timeutils import ensure_timezone

logger = get_logger("ecomanager_service")

BATCH_SIZE = 100
MAX_SCAN_PAGE = 4096

ORDER_STATE_MAP = {
    "En dispatch": OrderStatus.PENDING.value,
    "Confirmé": OrderStatus.CONFIRMED.value,
    "En cours": OrderStatus.IN_PROGRESS.value,
    "Livré": OrderStatus.DELIVERED.value,
    "Annulé": OrderStatus.CANCELLED.value,
    "Retourné": OrderStatus.RETURNED.value,
}


def map_order_state(state_name: Optional[str]) -> str:
    return ORDER_STATE_MAP.get((state_name or "").strip(), OrderStatus.PENDING.value)


class EcoManagerClient:
    def __init__(
        self,
        api_token: str,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        base_url = base_url or settings.ecomanager_base_url
        if not api_token or not base_url:
            raise ProviderError("EcoManager API token and base URL are required")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_token}", "Accept": "application/json"},
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EcoManagerClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def fetch_orders_page(self, page: int, per_page: int = BATCH_SIZE) -> list[dict]:
        try:
            response = self._client.get("/orders", params={"per_page": per_page, "page": page, "sort": "-id"})
        except httpx.HTTPError as exc:
            raise ProviderError(f"EcoManager request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(f"EcoManager returned HTTP {response.status_code}", status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("EcoManager returned a non-JSON body") from exc
        orders = body.get("data") if isinstance(body, dict) else None
        if orders is None:
            return []
        if not isinstance(orders, list):
            raise ProviderError("EcoManager returned an unexpected orders payload")
        for order in orders:
            parse_order_id(order)
        return orders

    def find_boundary_page(self, last_order_id: int, pages: Optional[dict[int, list[dict]]] = None) -> int:
        """Return the newest-first page holding ``last_order_id``.

        When every order is newer, this is the last non-empty page; 0 means the store is empty.
        Reads pages 1, 2, 4, ... until one reaches a known id, then binary searches the bracket.
        """
        pages = {} if pages is None else pages

        def reaches_known(page: int) -> bool:
            if page not in pages:
                pages[page] = self.fetch_orders_page(page)
            orders = pages[page]
            return not orders or parse_order_id(orders[-1]) <= last_order_id

        low, high = 0, 1
        while not reaches_known(high):
            if high >= MAX_SCAN_PAGE:
                raise ProviderError(f"EcoManager order {last_order_id} not found within {MAX_SCAN_PAGE} pages")
            low, high = high, high * 2
        while high - low > 1:
            middle = (low + high) // 2
            if reaches_known(middle):
                high = middle
            else:
                low = middle
        return high if pages[high] else high - 1

    def fetch_new_orders(self, last_order_id: int = 0, max_pages: Optional[int] = None) -> list[dict]:
        """Orders newer than ``last_order_id``, oldest first.

        Reading starts at the page holding ``last_order_id`` and moves toward newer pages, so a
        run stopped by ``max_pages`` leaves no gap behind the highest id it returns.
        """
        max_pages = max_pages or settings.ecomanager_max_pages
        pages: dict[int, list[dict]] = {}
        start = self.find_boundary_page(last_order_id, pages)
        if start and parse_order_id(pages[start][0]) <= last_order_id:
            start -= 1
        new_orders: list[dict] = []
        for page in range(start, max(start - max_pages, 0), -1):
            if page not in pages:
                pages[page] = self.fetch_orders_page(page)
            new_orders.extend(order for order in pages[page] if parse_order_id(order) > last_order_id)
        if start > max_pages:
            logger.info(
                "EcoManager backlog exceeds one run",
                extra={"context": {"since_id": last_order_id, "pages_left": start - max_pages}},
            )
        return sorted({parse_order_id(order): order for order in new_orders}.values(), key=parse_order_id)


def parse_order_id(order: Any) -> int:
    try:
        return int(order["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ProviderError(f"EcoManager order without a numeric id: {order!r:.100}") from exc


def _parse_total(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _parse_created_at(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return ensure_timezone(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def _order_items(order_id, items: Any) -> list[OrderItem]:
    rows = []
    for item in items or []:
        title = str(item.get("title") or "").strip() if isinstance(item, dict) else ""
        if not title:
            continue
        try:
            quantity = int(item.get("quantity") or 1)
        except (TypeError, ValueError):
            quantity = 1
        rows.append(
            OrderItem(
                id=uuid.uuid4(),
                order_id=order_id,
                product_id=str(item["product_id"]) if item.get("product_id") is not None else None,
                sku=item.get("sku"),
                title=title,
                quantity=quantity,
                unit_price=_parse_total(item.get("unit_price")),
            )
        )
    return rows


def ingest_order(db: Session, payload: dict, store_identifier: Optional[str] = None) -> tuple[Order, bool]:
    """Create the order if its reference is new. Returns (order, created)."""
    external_id = str(payload.get("id") or "").strip()
    reference = (payload.get("reference") or "").strip() or f"ECO-{external_id}"

    existing = db.query(Order).filter(Order.reference == reference).first()
    if existing:
        return existing, False

    order = Order(
        id=uuid.uuid4(),
        reference=reference,
        external_id=external_id or None,
        store_identifier=store_identifier or settings.ecomanager_store_identifier,
        customer_name=payload.get("full_name"),
        customer_phone=payload.get("telephone"),
        wilaya=payload.get("wilaya"),
        total=_parse_total(payload.get("total")),
        status=map_order_state(payload.get("order_state_name")),
    )
    created_at = _parse_created_at(payload.get("created_at"))
    if created_at:
        order.created_at = created_at
    db.add(order)
    db.add_all(_order_items(order.id, payload.get("items")))
    db.commit()
    logger.info(f"Order ingested: {reference}", extra={"context": {"store": order.store_identifier}})
    return order, True


def last_ingested_order_id(db: Session, store_identifier: str) -> int:
    value = (
        db.query(func.max(cast(Order.external_id, Integer)))
        .filter(Order.store_identifier == store_identifier, Order.external_id.isnot(None))
        .scalar()
    )
    return int(value or 0)


def ingest_new_orders(db: Session, client: EcoManagerClient, store_identifier: Optional[str] = None) -> dict:
    store_identifier = store_identifier or settings.ecomanager_store_identifier
    last_id = last_ingested_order_id(db, store_identifier)
    orders = client.fetch_new_orders(last_id)
    created = 0
    for payload in orders:
        _, was_created = ingest_order(db, payload, store_identifier)
        created += int(was_created)
    logger.info(
        "EcoManager ingestion finished",
        extra={"context": {"store": store_identifier, "fetched": len(orders), "created": created, "since_id": last_id}},
    )
    return {"fetched": len(orders), "created": created, "last_order_id": last_id}


def apply_confirmation_change(db: Session, payload: dict) -> Optional[Order]:
    reference = (payload.get("reference") or "").strip()
    if not reference:
        return None
    order = db.query(Order).filter(Order.reference == reference).first()
    if not order:
        return None
    state = payload.get("confirmation_state_name") or payload.get("order_state_name")
    new_status = ORDER_STATE_MAP.get((state or "").strip())
    if new_status and new_status != order.status:
        order.status = new_status
        db.commit()
    return order
