import uuid
from unittest.mock import patch

import pytest

from orderdesk.services.tracking_sync_service import count_corrupted, reconcile_corrupted_tracking_numbers

SENTINEL = "1762961157040242"


@pytest.fixture(autouse=True)
def silence_alerts():
    with patch("orderdesk.services.tracking_sync_service.alert_critical"), patch(
        "orderdesk.services.tracking_sync_service.alert_error"
    ):
        yield


class TestReconcileCorrupted:
    def test_resyncs_each_account_separately(self, db_session, make_account, make_order, maystro_stub):
        account_a = make_account("A")
        account_b = make_account("B")
        a1 = make_order("A-1", shipping_account_id=account_a.id, tracking_number=SENTINEL)
        b1 = make_order("B-1", shipping_account_id=account_b.id, tracking_number=SENTINEL)
        stubs = {
            account_a.id: maystro_stub({"A-1": maystro_stub.payload("A-1", tracking="REAL-A")}),
            account_b.id: maystro_stub({"B-1": maystro_stub.payload("B-1", tracking="REAL-B")}),
        }

        report = reconcile_corrupted_tracking_numbers(
            db_session, client_factory=lambda account: stubs[account.id].factory(account)
        )

        assert report["found"] == 2
        assert len(report["accounts"]) == 2
        assert report["remaining_corrupted"] == 0
        assert stubs[account_a.id].requested_references() == ["A-1"]
        assert stubs[account_b.id].requested_references() == ["B-1"]
        db_session.refresh(a1)
        db_session.refresh(b1)
        assert (a1.tracking_number, b1.tracking_number) == ("REAL-A", "REAL-B")

    def test_orders_without_account_are_reported_not_synced(self, db_session, make_order, maystro_stub):
        make_order("X-1", tracking_number=SENTINEL)
        stub = maystro_stub()

        report = reconcile_corrupted_tracking_numbers(db_session, client_factory=stub.factory)

        assert report["orphaned_orders"] == 1
        assert report["accounts"] == []
        assert report["remaining_corrupted"] == 1
        assert stub.requests == []

    def test_skips_inactive_unsupported_and_missing_accounts(self, db_session, make_account, make_order, maystro_stub):
        inactive = make_account("Old", is_active=False)
        other = make_account("Yal", slug="yalidine")
        make_order("O-1", shipping_account_id=inactive.id, tracking_number=SENTINEL)
        make_order("Y-1", shipping_account_id=other.id, tracking_number=SENTINEL)
        make_order("M-1", shipping_account_id=uuid.uuid4(), tracking_number=SENTINEL)
        stub = maystro_stub()

        report = reconcile_corrupted_tracking_numbers(db_session, client_factory=stub.factory)

        reasons = sorted(item["reason"] for item in report["skipped_accounts"])
        assert reasons == ["account_inactive", "account_not_found", "unsupported_provider:yalidine"]
        assert report["remaining_corrupted"] == 3
        assert stub.requests == []

    def test_sentinel_returned_again_stays_corrupted(self, db_session, make_account, make_order, maystro_stub):
        account = make_account("A")
        make_order("A-1", shipping_account_id=account.id, tracking_number=SENTINEL)
        stub = maystro_stub({"A-1": maystro_stub.payload("A-1", tracking=SENTINEL)})

        report = reconcile_corrupted_tracking_numbers(db_session, client_factory=stub.factory)

        assert report["remaining_corrupted"] == 1
        assert count_corrupted(db_session) == 1
