import base64
import json
import uuid

import pytest

from orderdesk.errors import ValidationError
from orderdesk.models import WebhookEvent
from orderdesk.services.webhook_service import (
    compute_signature,
    decode_maystro_body,
    get_webhook_stats,
    verify_signature,
)

MAYSTRO_SECRET = "test-maystro-secret"
ECOMANAGER_SECRET = "test-ecomanager-secret"


def status_event(reference, status=41, display_id="TRK-99"):
    return {
        "event": "OrderStatusChanged",
        "payload": {"external_order_id": reference, "status": status, "display_id_order": display_id},
    }


def post_maystro(client, body, secret=MAYSTRO_SECRET):
    raw = json.dumps(body).encode()
    return client.post(
        "/webhooks/maystro",
        content=raw,
        headers={"Content-Type": "application/json", "X-Maystro-Signature": compute_signature(raw, secret)},
    )


def post_ecomanager(client, event_type, body, secret=ECOMANAGER_SECRET):
    raw = json.dumps(body).encode()
    return client.post(
        "/webhooks/ecomanager",
        content=raw,
        headers={
            "Content-Type": "application/json",
            "X-EcoManager-Signature": compute_signature(raw, secret),
            "X-EcoManager-Event": event_type,
            "X-EcoManager-Webhook-Id": "hook-1",
        },
    )


class TestSignatures:
    def test_verify_signature(self):
        raw = b'{"a": 1}'
        signature = compute_signature(raw, "secret")

        assert verify_signature(raw, signature, "secret") is True
        assert verify_signature(raw, f"sha256={signature}", "secret") is True
        assert verify_signature(raw, signature, "other") is False
        assert verify_signature(raw, None, "secret") is False
        assert verify_signature(raw, signature, "") is False

    def test_decode_envelope(self):
        inner = status_event("R-1")
        body = {"message": {"data": base64.b64encode(json.dumps(inner).encode()).decode()}}

        assert decode_maystro_body(body) == inner
        assert decode_maystro_body(inner) == inner

    def test_decode_rejects_garbage(self):
        with pytest.raises(ValidationError):
            decode_maystro_body({"message": {"data": "not base64 json!"}})


class TestMaystroWebhook:
    def test_updates_order_status(self, client, db_session, make_order):
        order = make_order("R-1")

        response = post_maystro(client, status_event("R-1"))

        assert response.status_code == 200
        assert response.json()["success"] is True
        db_session.refresh(order)
        assert order.shipping_status == "LIVRÉ"
        assert order.status == "DELIVERED"
        assert order.tracking_number == "TRK-99"
        assert db_session.query(WebhookEvent).one().processed is True

    def test_base64_envelope(self, client, db_session, make_order):
        order = make_order("R-1")
        inner = status_event("R-1", status=50)
        body = {"message": {"data": base64.b64encode(json.dumps(inner).encode()).decode()}}

        assert post_maystro(client, body).status_code == 200

        db_session.refresh(order)
        assert order.status == "CANCELLED"

    def test_sentinel_tracking_is_ignored(self, client, db_session, make_order):
        order = make_order("R-1", tracking_number="GOOD")

        post_maystro(client, status_event("R-1", status=31, display_id="1762961157040242"))

        db_session.refresh(order)
        assert order.tracking_number == "GOOD"
        assert order.shipping_status == "EXPÉDIÉ"

    def test_unknown_order_is_stored_for_retry(self, client, db_session):
        response = post_maystro(client, status_event("MISSING"))

        assert response.status_code == 200
        assert response.json()["success"] is False
        event = db_session.query(WebhookEvent).one()
        assert event.processed is False
        assert "MISSING" in event.error_message

    def test_bad_signature(self, client, db_session):
        response = post_maystro(client, status_event("R-1"), secret="wrong")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        assert db_session.query(WebhookEvent).count() == 0


class TestEcoManagerWebhook:
    def test_validation_ping(self, client):
        response = client.get("/webhooks/ecomanager")
        assert response.status_code == 200
        assert response.text == "OK"

    def test_order_created(self, client, db_session):
        response = post_ecomanager(client, "OrderCreated", {"id": 55, "reference": "NATU55", "full_name": "Nadia"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        event = db_session.query(WebhookEvent).one()
        assert event.source == "ECOMANAGER"
        assert event.processed is True

    def test_missing_headers(self, client):
        response = client.post("/webhooks/ecomanager", json={"id": 1})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_HEADERS"

    def test_bad_signature(self, client):
        response = post_ecomanager(client, "OrderCreated", {"id": 1}, secret="wrong")

        assert response.status_code == 401


class TestWebhookEventAdmin:
    def test_retry_after_order_arrives(self, client, db_session, make_order, admin_headers):
        post_maystro(client, status_event("LATE-1"))
        event = db_session.query(WebhookEvent).one()
        order = make_order("LATE-1")

        response = client.post(f"/webhooks/events/{event.id}/retry", headers=admin_headers)

        assert response.status_code == 200
        db_session.refresh(event)
        db_session.refresh(order)
        assert event.processed is True
        assert event.retry_count == 1
        assert order.status == "DELIVERED"

    def test_retry_processed_event_conflicts(self, client, db_session, make_order, admin_headers):
        make_order("R-1")
        post_maystro(client, status_event("R-1"))
        event = db_session.query(WebhookEvent).one()

        response = client.post(f"/webhooks/events/{event.id}/retry", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ALREADY_PROCESSED"

    def test_list_filters_and_stats(self, client, db_session, make_order, admin_headers):
        make_order("R-1")
        post_maystro(client, status_event("R-1"))
        post_maystro(client, status_event("MISSING"))

        listing = client.get("/webhooks/events", params={"processed": "false"}, headers=admin_headers).json()
        stats = client.get("/webhooks/stats", params={"period": "7d"}, headers=admin_headers).json()

        assert listing["data"]["pagination"]["total"] == 1
        assert listing["data"]["events"][0]["order_reference"] == "MISSING"
        assert stats["data"]["total_events"] == 2
        assert stats["data"]["success_rate"] == 50.0
        assert stats["data"]["events_by_type"] == {"OrderStatusChanged": 2}

    def test_invalid_stats_period(self, db_session):
        with pytest.raises(ValidationError):
            get_webhook_stats(db_session, "1y")

    def test_delete_event(self, client, db_session, admin_headers):
        post_maystro(client, status_event("MISSING"))
        event = db_session.query(WebhookEvent).one()

        assert client.delete(f"/webhooks/events/{event.id}", headers=admin_headers).status_code == 200
        assert db_session.query(WebhookEvent).count() == 0
        assert client.delete(f"/webhooks/events/{uuid.uuid4()}", headers=admin_headers).status_code == 404

    def test_admin_routes_require_token(self, client):
        response = client.get("/webhooks/events")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_ADMIN_TOKEN"
