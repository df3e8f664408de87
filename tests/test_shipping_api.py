import uuid
from unittest.mock import patch

import httpx
import pytest

from orderdesk.models import Order
from orderdesk.services.maystro_service import MaystroClient


@pytest.fixture(autouse=True)
def silence_alerts():
    with patch("orderdesk.services.tracking_sync_service.alert_critical"), patch(
        "orderdesk.services.tracking_sync_service.alert_error"
    ):
        yield


class TestSyncEndpoint:
    def test_sync_account(self, client, db_session, make_account, make_order, maystro_stub, admin_headers):
        account = make_account("A")
        order = make_order("A-1", shipping_account_id=account.id)
        stub = maystro_stub({"A-1": maystro_stub.payload("A-1", status=41, tracking="T-1")})

        with patch("orderdesk.services.tracking_sync_service.get_provider_client", stub.factory):
            response = client.post(f"/api/shipping/accounts/{account.id}/sync", json={}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["updated"] == 1
        db_session.refresh(order)
        assert order.tracking_number == "T-1"

    def test_unknown_account(self, client, admin_headers):
        response = client.post(f"/api/shipping/accounts/{uuid.uuid4()}/sync", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SHIPPING_ACCOUNT_NOT_FOUND"

    def test_unsupported_provider(self, client, make_account, admin_headers):
        account = make_account("Yal", slug="yalidine")

        response = client.post(f"/api/shipping/accounts/{account.id}/sync", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED_PROVIDER"

    def test_reconcile(self, client, make_account, make_order, maystro_stub, admin_headers):
        account = make_account("A")
        make_order("A-1", shipping_account_id=account.id, tracking_number="1762961157040242")
        stub = maystro_stub({"A-1": maystro_stub.payload("A-1", tracking="REAL")})

        with patch("orderdesk.services.tracking_sync_service.get_provider_client", stub.factory):
            body = client.post("/api/shipping/reconcile-corrupted", headers=admin_headers).json()

        assert body["data"]["found"] == 1
        assert body["data"]["remaining_corrupted"] == 0


class TestShippingAccounts:
    def test_list_accounts(self, client, make_account, admin_headers):
        make_account("A")
        make_account("Yal", slug="yalidine")

        body = client.get("/api/shipping/accounts", params={"company": "maystro"}, headers=admin_headers).json()

        assert [item["name"] for item in body["data"]] == ["A"]

    def test_connection_test_success(self, client, db_session, make_account, admin_headers):
        account = make_account("A")

        def factory(acc):
            transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"list": {"results": []}}))
            return MaystroClient("key", transport=transport)

        with patch("orderdesk.services.shipping_account_service.get_provider_client", factory):
            response = client.post(f"/api/shipping/accounts/{account.id}/test", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["last_test_status"] == "success"

    def test_connection_test_failure(self, client, db_session, make_account, admin_headers):
        account = make_account("A")

        def factory(acc):
            transport = httpx.MockTransport(lambda request: httpx.Response(401, text="bad key"))
            return MaystroClient("key", transport=transport)

        with patch("orderdesk.services.shipping_account_service.get_provider_client", factory):
            response = client.post(f"/api/shipping/accounts/{account.id}/test", headers=admin_headers)

        assert response.status_code == 502
        db_session.refresh(account)
        assert account.last_test_status == "failed"

    def test_attach_account_once(self, client, db_session, make_account, make_order, admin_headers):
        first = make_account("A")
        second = make_account("B")
        order = make_order()

        attached = client.put(
            f"/api/shipping/orders/{order.id}/account",
            json={"shipping_account_id": str(first.id)},
            headers=admin_headers,
        )
        moved = client.put(
            f"/api/shipping/orders/{order.id}/account",
            json={"shipping_account_id": str(second.id)},
            headers=admin_headers,
        )

        assert attached.status_code == 200
        assert moved.status_code == 409
        assert moved.json()["error"]["code"] == "SHIPPING_ACCOUNT_IMMUTABLE"
        db_session.expire_all()
        assert db_session.get(Order, order.id).shipping_account_id == first.id


class TestStatusCodeEndpoints:
    def test_table(self, client, admin_headers):
        body = client.get("/api/shipping/status-codes", headers=admin_headers).json()

        assert body["data"]["codes"]["50"] == "ANNULÉ"

    def test_check_divergent_copy(self, client, admin_headers):
        table = client.get("/api/shipping/status-codes", headers=admin_headers).json()["data"]["codes"]
        table["41"] = "LIVREE"

        body = client.post("/api/shipping/status-codes/check", json={"codes": table}, headers=admin_headers).json()

        assert body["data"]["consistent"] is False
        assert body["data"]["divergences"] == [
            {"code": 41, "kind": "label_mismatch", "expected": "LIVRÉ", "actual": "LIVREE"}
        ]
