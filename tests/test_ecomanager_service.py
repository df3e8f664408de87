from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest

from orderdesk.config import settings
from orderdesk.models import Order, OrderItem
from orderdesk.services.ecomanager_service import (
    EcoManagerClient,
    apply_confirmation_change,
    ingest_new_orders,
    ingest_order,
    last_ingested_order_id,
    map_order_state,
)
from orderdesk.services.maystro_service import ProviderError


def eco_order(order_id, **fields):
    data = {
        "id": order_id,
        "reference": f"NATU{order_id}",
        "full_name": "Amine B.",
        "telephone": "0550000000",
        "wilaya": "Alger",
        "total": "4500.00",
        "order_state_name": "En dispatch",
        "created_at": "2026-03-01T10:00:00Z",
    }
    data.update(fields)
    return data


def pages_of(ids, per_page=100):
    newest_first = sorted(ids, reverse=True)
    return {
        number + 1: [eco_order(order_id) for order_id in newest_first[start : start + per_page]]
        for number, start in enumerate(range(0, len(newest_first), per_page))
    }


class PagedStore:
    def __init__(self, pages):
        self.pages = pages
        self.requested_pages = []

    def handler(self, request):
        page = int(request.url.params["page"])
        self.requested_pages.append(page)
        assert request.headers["Authorization"] == "Bearer eco-token"
        assert request.url.params["sort"] == "-id"
        return httpx.Response(200, json={"data": self.pages.get(page, [])})

    def client(self):
        return EcoManagerClient("eco-token", "https://eco.test/api", transport=httpx.MockTransport(self.handler))


class TestEcoManagerClient:
    def test_stops_at_first_known_order(self):
        store = PagedStore({1: [eco_order(12), eco_order(11)], 2: [eco_order(10), eco_order(9)], 3: [eco_order(8)]})

        with store.client() as client:
            orders = client.fetch_new_orders(last_order_id=9)

        assert [order["id"] for order in orders] == [10, 11, 12]
        assert store.requested_pages == [1, 2]

    def test_stops_on_empty_page(self):
        store = PagedStore({1: [eco_order(2), eco_order(1)]})

        with store.client() as client:
            orders = client.fetch_new_orders()

        assert [order["id"] for order in orders] == [1, 2]
        assert store.requested_pages == [1, 2]

    def test_max_pages_keeps_the_oldest_new_orders(self):
        store = PagedStore({page: [eco_order(100 - page)] for page in range(1, 10)})

        with store.client() as client:
            orders = client.fetch_new_orders(max_pages=3)

        assert [order["id"] for order in orders] == [91, 92, 93]

    def test_finds_page_holding_last_known_id(self):
        store = PagedStore(pages_of(range(1, 1001), per_page=10))

        with store.client() as client:
            page = client.find_boundary_page(455)
            orders = client.fetch_new_orders(last_order_id=455, max_pages=1)

        assert page == 55
        assert [order["id"] for order in orders] == [456, 457, 458, 459, 460]
        assert len(set(store.requested_pages)) < 20

    def test_empty_store(self):
        store = PagedStore({})

        with store.client() as client:
            assert client.find_boundary_page(0) == 0
            assert client.fetch_new_orders() == []

    def test_http_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        with EcoManagerClient("eco-token", "https://eco.test/api", transport=transport) as client:
            with pytest.raises(ProviderError) as exc_info:
                client.fetch_orders_page(1)
        assert exc_info.value.status_code == 503

    def test_requires_token(self):
        with pytest.raises(ProviderError):
            EcoManagerClient("", "https://eco.test/api")

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json={"data": {"id": 1}}),
            httpx.Response(200, json={"data": [{"reference": "NATU1"}]}),
            httpx.Response(200, json={"data": [{"id": "abc"}]}),
        ],
    )
    def test_malformed_page_is_a_provider_error(self, response):
        transport = httpx.MockTransport(lambda request: response)
        with EcoManagerClient("eco-token", "https://eco.test/api", transport=transport) as client:
            with pytest.raises(ProviderError):
                client.fetch_new_orders()


class TestIngestion:
    def test_new_order_is_unassigned(self, db_session):
        order, created = ingest_order(db_session, eco_order(7), "NATU")

        assert created is True
        assert order.reference == "NATU7"
        assert order.external_id == "7"
        assert order.status == "PENDING"
        assert order.assigned_agent_id is None
        assert order.total == Decimal("4500.00")

    def test_items_are_stored(self, db_session):
        items = [
            {"product_id": 3, "title": "Serum Vitamine C", "quantity": 2, "unit_price": 2250},
            {"product_id": 4, "title": "  "},
        ]
        order, _ = ingest_order(db_session, eco_order(9, items=items), "NATU")

        stored = db_session.query(OrderItem).filter(OrderItem.order_id == order.id).all()

        assert [(item.title, item.quantity, item.product_id) for item in stored] == [("Serum Vitamine C", 2, "3")]
        assert stored[0].unit_price == Decimal("2250")

    def test_ingestion_is_idempotent(self, db_session):
        ingest_order(db_session, eco_order(7), "NATU")
        _, created = ingest_order(db_session, eco_order(7, full_name="Changed"), "NATU")

        assert created is False
        assert db_session.query(Order).count() == 1

    def test_reference_fallback(self, db_session):
        order, _ = ingest_order(db_session, eco_order(8, reference=""), "NATU")

        assert order.reference == "ECO-8"

    def test_ingest_new_orders_resumes_after_last_id(self, db_session):
        ingest_order(db_session, eco_order(10), "NATU")
        store = PagedStore({1: [eco_order(12), eco_order(11), eco_order(10)]})

        with store.client() as client:
            summary = ingest_new_orders(db_session, client, "NATU")

        assert summary == {"fetched": 2, "created": 2, "last_order_id": 10}
        assert last_ingested_order_id(db_session, "NATU") == 12

    def test_backlog_larger_than_one_run_is_ingested_without_gaps(self, db_session):
        store = PagedStore(pages_of(range(1, 251)))
        runs = []

        with patch.object(settings, "ecomanager_max_pages", 1), store.client() as client:
            for _ in range(4):
                runs.append(ingest_new_orders(db_session, client, "NATU")["created"])

        ids = sorted(int(order.external_id) for order in db_session.query(Order).all())
        assert runs == [50, 100, 100, 0]
        assert ids == list(range(1, 251))

    def test_confirmation_change(self, db_session):
        ingest_order(db_session, eco_order(7), "NATU")

        order = apply_confirmation_change(db_session, {"reference": "NATU7", "confirmation_state_name": "Confirmé"})

        assert order.status == "CONFIRMED"
        assert apply_confirmation_change(db_session, {"reference": "UNKNOWN"}) is None

    def test_state_mapping_defaults_to_pending(self):
        assert map_order_state("Annulé") == "CANCELLED"
        assert map_order_state("Something new") == "PENDING"
        assert map_order_state(None) == "PENDING"
